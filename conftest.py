from datetime import date, datetime
from decimal import Decimal

import pytest
from django.core.cache import cache
from django.utils import timezone


@pytest.fixture(autouse=True)
def _isolated_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def _no_retry_wait(settings):
    settings.BOOKING_RETRY_MAX_WAIT = 0


@pytest.fixture
def now():
    """The evening before ``day``; every slot on ``day`` is still ahead."""
    return timezone.make_aware(datetime(2024, 5, 31, 18, 0), timezone.get_current_timezone())


@pytest.fixture
def day():
    return date(2024, 6, 1)


@pytest.fixture
def patient(db):
    from appointments.models import User
    return User.objects.create_user(username='patient1', password='P@ssw0rd1', role='patient')


@pytest.fixture
def other_patient(db):
    from appointments.models import User
    return User.objects.create_user(username='patient2', password='P@ssw0rd1', role='patient')


@pytest.fixture
def staff(db):
    from appointments.models import User
    return User.objects.create_user(username='staff1', password='P@ssw0rd1', role='staff')


@pytest.fixture
def doctor(db):
    from appointments.models import Doctor
    return Doctor.objects.create(name='Nguyen Van An', specialty='Cardiology', location='Ho Chi Minh City',
                                 rating=Decimal('4.8'), consultation_fee=Decimal('500000.00'))
