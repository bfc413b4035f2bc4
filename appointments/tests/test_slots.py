from datetime import date, datetime

import pytest
from django.db import OperationalError
from django.utils import timezone

from appointments.exceptions import BookingValidationError, NotFoundError, TransientError
from appointments.models import Appointment, Doctor
from appointments.services import slots
from appointments.services.slots import available_slots, canonical_grid, normalize_slot, parse_date


def test_default_grid_skips_lunch():
    grid = canonical_grid()
    assert len(grid) == 16
    assert grid[0] == '09:00 AM'
    assert grid[-1] == '05:30 PM'
    assert '12:00 PM' not in grid and '12:30 PM' not in grid
    assert '11:30 AM' in grid and '01:00 PM' in grid


def test_grid_follows_settings(settings):
    settings.BOOKING_BREAKS = []
    assert len(canonical_grid()) == 18
    settings.BOOKING_DAY_START = '08:00'
    settings.BOOKING_DAY_END = '10:00'
    settings.BOOKING_SLOT_MINUTES = 60
    assert canonical_grid() == ['08:00 AM', '09:00 AM', '10:00 AM']


def test_normalize_slot_accepts_loose_spelling():
    assert normalize_slot('9:00 am') == '09:00 AM'
    assert normalize_slot(' 01:30 PM ') == '01:30 PM'


@pytest.mark.parametrize('label', ['12:00 PM', '08:30 AM', '06:00 PM', '09:15 AM', '25:00', '', None])
def test_normalize_slot_rejects_off_grid(label):
    with pytest.raises(BookingValidationError):
        normalize_slot(label)


def test_parse_date():
    assert parse_date('2024-06-01') == date(2024, 6, 1)
    with pytest.raises(BookingValidationError):
        parse_date('01/06/2024')


def test_full_grid_for_free_day(doctor, day, now):
    assert available_slots(doctor.id, day, now=now) == canonical_grid()


def test_active_bookings_are_excluded_and_cancelled_ones_are_not(doctor, patient, day, now):
    Appointment.objects.create(user=patient, doctor=doctor, date=day, time='09:00 AM')
    Appointment.objects.create(user=patient, doctor=doctor, date=day, time='10:00 AM', status='confirmed')
    Appointment.objects.create(user=patient, doctor=doctor, date=day, time='02:00 PM', status='cancelled')

    free = available_slots(doctor.id, day.isoformat(), now=now)
    assert '09:00 AM' not in free
    assert '10:00 AM' not in free
    assert '02:00 PM' in free
    assert len(free) == 14
    # grid order is kept
    assert free == [s for s in canonical_grid() if s in free]


def test_other_doctors_and_days_do_not_interfere(doctor, patient, day, now):
    other = Doctor.objects.create(name='Tran Thi Binh', specialty='Dermatology')
    Appointment.objects.create(user=patient, doctor=other, date=day, time='09:00 AM')
    Appointment.objects.create(user=patient, doctor=doctor, date=date(2024, 6, 2), time='09:00 AM')
    assert '09:00 AM' in available_slots(doctor.id, day, now=now)


def test_elapsed_slots_are_hidden_today(doctor, day):
    mid_morning = timezone.make_aware(datetime(2024, 6, 1, 10, 15), timezone.get_current_timezone())
    free = available_slots(doctor.id, day, now=mid_morning)
    assert free[0] == '10:30 AM'
    assert '10:00 AM' not in free


def test_past_date_is_rejected(doctor, now):
    with pytest.raises(BookingValidationError):
        available_slots(doctor.id, '2024-05-30', now=now)


def test_unknown_doctor(db, day, now):
    with pytest.raises(NotFoundError):
        available_slots(999, day, now=now)


def test_failed_lookup_raises_instead_of_reporting_free(doctor, day, now, monkeypatch, settings):
    settings.BOOKING_RETRY_ATTEMPTS = 3
    calls = []

    class BrokenManager:
        def filter(self, *args, **kwargs):
            calls.append(kwargs)
            raise OperationalError('database is locked')

    class BrokenAppointment:
        STATUS_CANCELLED = Appointment.STATUS_CANCELLED
        objects = BrokenManager()

    monkeypatch.setattr(slots, 'Appointment', BrokenAppointment)
    with pytest.raises(TransientError):
        available_slots(doctor.id, day, now=now)
    assert len(calls) == 3
