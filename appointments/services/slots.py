"""
Slot availability.

The canonical grid is a fixed list of slot labels ("09:00 AM", ...)
built from the ``BOOKING_*`` settings.  Availability for a doctor on a
date is the grid minus the labels of that day's non-cancelled
appointments, in grid order.  A failed lookup of booked slots raises
instead of reporting a free day.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple, Union

from django.conf import settings
from django.utils import timezone

from appointments.exceptions import BookingValidationError
from appointments.models import Appointment
from appointments.services.doctors import get_doctor
from appointments.services.retry import db_retry

SLOT_FORMAT = '%I:%M %p'


def _parse_hhmm(value: str) -> time:
    return datetime.strptime(value.strip(), '%H:%M').time()


def _parse_break(value: str) -> Tuple[time, time]:
    start, _, end = value.partition('-')
    return _parse_hhmm(start), _parse_hhmm(end)


def format_slot(t: time) -> str:
    return t.strftime(SLOT_FORMAT)


def canonical_grid() -> List[str]:
    """Return the configured slot labels for one day, earliest first."""
    start = _parse_hhmm(settings.BOOKING_DAY_START)
    end = _parse_hhmm(settings.BOOKING_DAY_END)
    step = timedelta(minutes=settings.BOOKING_SLOT_MINUTES)
    if step <= timedelta(0):
        raise ValueError('BOOKING_SLOT_MINUTES must be positive')
    breaks = [_parse_break(b) for b in settings.BOOKING_BREAKS]

    labels: List[str] = []
    cursor = datetime.combine(date.today(), start)
    last = datetime.combine(date.today(), end)
    while cursor <= last:
        t = cursor.time()
        if not any(b_start <= t < b_end for b_start, b_end in breaks):
            labels.append(format_slot(t))
        cursor += step
    return labels


def parse_date(value: Union[date, str, None]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value or '').strip())
    except ValueError:
        raise BookingValidationError('Date must be in YYYY-MM-DD format.', code='invalid_date')


def normalize_slot(label: Optional[str]) -> str:
    """Return the canonical spelling of ``label``; reject anything off the grid."""
    try:
        parsed = datetime.strptime((label or '').strip().upper(), SLOT_FORMAT).time()
    except ValueError:
        raise BookingValidationError('Time must look like "09:00 AM".', code='invalid_time')
    canonical = format_slot(parsed)
    if canonical not in canonical_grid():
        raise BookingValidationError(f'{canonical} is not a bookable time slot.', code='invalid_time')
    return canonical


def slot_start(day: date, label: str) -> datetime:
    """Aware datetime at which the slot ``label`` on ``day`` begins (current time zone)."""
    t = datetime.strptime(label, SLOT_FORMAT).time()
    return timezone.make_aware(datetime.combine(day, t), timezone.get_current_timezone())


def ensure_bookable(day: date, label: str, now: datetime) -> None:
    if day < timezone.localdate(now):
        raise BookingValidationError('Cannot book a date in the past.', code='past_date')
    if slot_start(day, label) <= now:
        raise BookingValidationError('This time slot has already started.', code='past_slot')


@db_retry
def booked_times(doctor_id: int, day: date) -> set[str]:
    return set(
        Appointment.objects.filter(doctor_id=doctor_id, date=day)
        .exclude(status=Appointment.STATUS_CANCELLED)
        .values_list('time', flat=True)
    )


def subtract_booked(grid: Iterable[str], booked: Iterable[str]) -> List[str]:
    taken = set(booked)
    return [slot for slot in grid if slot not in taken]


def available_slots(doctor_id: int, day: Union[date, str], *, now: Optional[datetime] = None) -> List[str]:
    """Bookable slot labels for ``doctor_id`` on ``day``.

    Raises ``NotFoundError`` for an unknown doctor, ``BookingValidationError``
    for a malformed or past date and ``TransientError`` when the booked
    slots cannot be read.
    """
    now = now or timezone.now()
    day = parse_date(day)
    if day < timezone.localdate(now):
        raise BookingValidationError('Cannot list availability for a past date.', code='past_date')
    get_doctor(doctor_id)

    free = subtract_booked(canonical_grid(), booked_times(doctor_id, day))
    if day == timezone.localdate(now):
        free = [slot for slot in free if slot_start(day, slot) > now]
    return free
