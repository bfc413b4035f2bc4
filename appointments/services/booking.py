"""
Booking and rescheduling.

A slot is claimed with the doctor row locked (``SELECT ... FOR UPDATE``)
so that concurrent bookings for one doctor serialize on the database.
The unique ``active_slot`` key on each non-cancelled appointment backs
this up: an ``IntegrityError`` on insert means another request won the slot and is
reported as ``SlotUnavailableError``, never as a server error.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union

import bleach
import structlog
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from appointments.exceptions import BookingValidationError, InvalidTransitionError, SlotUnavailableError
from appointments.models import Appointment, Payment, User
from appointments.services.doctors import lock_doctor
from appointments.services.lifecycle import ensure_can_modify, lock_appointment, record_transition
from appointments.services.retry import db_retry
from appointments.services.slots import SLOT_FORMAT, ensure_bookable, normalize_slot, parse_date, slot_start

logger = structlog.get_logger(__name__)


def clean_notes(notes: Optional[str]) -> str:
    return bleach.clean(notes or '', tags=[], strip=True).strip()


def _slot_taken(doctor_id: int, day: date, label: str) -> bool:
    return (
        Appointment.objects.filter(doctor_id=doctor_id, date=day, time=label)
        .exclude(status=Appointment.STATUS_CANCELLED)
        .exists()
    )


def _insert_appointment(**fields) -> Appointment:
    """Insert inside a savepoint so a lost race leaves the outer transaction usable."""
    try:
        with transaction.atomic():
            return Appointment.objects.create(**fields)
    except IntegrityError as exc:
        logger.info('slot_conflict', doctor_id=fields['doctor'].id,
                    date=fields['date'].isoformat(), time=fields['time'], source='constraint')
        raise SlotUnavailableError(fields['doctor'].id, fields['date'].isoformat(), fields['time']) from exc


@db_retry
def book_appointment(user: User, doctor_id, day: Union[date, str], time_label: str,
                     notes: Optional[str] = None, *, now: Optional[datetime] = None) -> Appointment:
    """Create a pending appointment for ``user`` in a free slot.

    Raises ``BookingValidationError`` for malformed or past input,
    ``NotFoundError`` for an unknown doctor and ``SlotUnavailableError``
    when the slot already has an active appointment.
    """
    now = now or timezone.now()
    day = parse_date(day)
    label = normalize_slot(time_label)
    ensure_bookable(day, label, now)

    with transaction.atomic():
        doctor = lock_doctor(doctor_id)
        if _slot_taken(doctor.id, day, label):
            logger.info('slot_conflict', doctor_id=doctor.id, date=day.isoformat(), time=label, source='check')
            raise SlotUnavailableError(doctor.id, day.isoformat(), label)
        appt = _insert_appointment(
            user=user, doctor=doctor, date=day, time=label,
            notes=clean_notes(notes), status=Appointment.STATUS_PENDING,
        )
        record_transition(appt, None, Appointment.STATUS_PENDING, user, 'booked')

    logger.info('appointment_booked', appointment_id=appt.id, user_id=user.id,
                doctor_id=doctor.id, date=day.isoformat(), time=label)
    return appt


@db_retry
def reschedule_appointment(user: User, appointment_id, new_date: Union[date, str], new_time: str,
                           *, now: Optional[datetime] = None) -> Appointment:
    """Move an active appointment to another slot with the same doctor.

    The original is cancelled and linked to a new record through
    ``rescheduled_to``; completed payments follow the new record.  All of
    it happens in one transaction, so on any error the original booking
    is left exactly as it was.
    """
    now = now or timezone.now()
    day = parse_date(new_date)
    label = normalize_slot(new_time)

    with transaction.atomic():
        old = lock_appointment(appointment_id)
        ensure_can_modify(user, old)
        if old.status not in Appointment.ACTIVE_STATUSES:
            raise InvalidTransitionError(old.status, 'rescheduled',
                                         detail=f'Cannot reschedule a {old.status} appointment.')
        if old.date == day and old.time == label:
            raise BookingValidationError('The new slot is the same as the current one.', code='same_slot')
        ensure_bookable(day, label, now)

        doctor = lock_doctor(old.doctor_id)
        if _slot_taken(doctor.id, day, label):
            logger.info('slot_conflict', doctor_id=doctor.id, date=day.isoformat(), time=label, source='check')
            raise SlotUnavailableError(doctor.id, day.isoformat(), label)

        status = old.status
        old.status = Appointment.STATUS_CANCELLED
        old.save(update_fields=['status', 'updated_at'])
        record_transition(old, status, Appointment.STATUS_CANCELLED, user, 'rescheduled')

        new = _insert_appointment(
            user=old.user, doctor=doctor, date=day, time=label,
            notes=old.notes, status=status,
        )
        record_transition(new, None, status, user, f'rescheduled from #{old.id}')
        old.rescheduled_to = new
        old.save(update_fields=['rescheduled_to'])
        Payment.objects.filter(appointment=old, status=Payment.STATUS_COMPLETED).update(
            appointment=new, settled_for=new,
        )

    logger.info('appointment_rescheduled', appointment_id=old.id, new_appointment_id=new.id,
                user_id=user.id, date=day.isoformat(), time=label)
    return new


def _chronological(appt: Appointment):
    return appt.date, datetime.strptime(appt.time, SLOT_FORMAT).time(), appt.id


def appointments_for(user: User, *, which: str = 'all', now: Optional[datetime] = None) -> list[Appointment]:
    """``user``'s appointments; ``which`` is ``upcoming``, ``past`` or ``all``.

    Upcoming appointments come earliest first, the others latest first.
    Slot labels do not sort as strings, so ordering happens here.
    """
    now = now or timezone.now()
    today = timezone.localdate(now)
    qs = Appointment.objects.select_related('doctor').filter(user=user)
    upcoming = Q(date__gte=today) & ~Q(status__in=Appointment.TERMINAL_STATUSES)
    if which == 'upcoming':
        return sorted(qs.filter(upcoming), key=_chronological)
    if which == 'past':
        qs = qs.exclude(upcoming)
    return sorted(qs, key=_chronological, reverse=True)


def format_appointment(appt: Appointment) -> dict:
    doctor = appt.doctor
    return {
        'id': appt.id,
        'userId': appt.user_id,
        'doctorId': appt.doctor_id,
        'doctorName': doctor.name,
        'specialty': doctor.specialty,
        'location': doctor.location,
        'price': str(doctor.consultation_fee),
        'date': appt.date.isoformat(),
        'time': appt.time,
        'startsAt': slot_start(appt.date, appt.time).isoformat(),
        'notes': appt.notes,
        'status': appt.status,
        'rescheduledTo': appt.rescheduled_to_id,
        'createdAt': appt.created_at.isoformat(),
        'updatedAt': appt.updated_at.isoformat(),
    }
