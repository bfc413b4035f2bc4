"""
Appointment status lifecycle.

    pending ──> confirmed ──> completed
       │            │
       └──> cancelled <┘

``completed`` and ``cancelled`` are terminal.  Every change is written
as an :class:`AppointmentTransition` row in the same transaction as the
status update, with the appointment row locked.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog
from django.db import transaction
from django.utils import timezone

from appointments.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from appointments.models import Appointment, AppointmentTransition, User
from appointments.permissions import is_staff_user
from appointments.services.retry import db_retry
from appointments.services.slots import slot_start

logger = structlog.get_logger(__name__)

TRANSITIONS = {
    Appointment.STATUS_PENDING: (Appointment.STATUS_CONFIRMED, Appointment.STATUS_CANCELLED),
    Appointment.STATUS_CONFIRMED: (Appointment.STATUS_COMPLETED, Appointment.STATUS_CANCELLED),
    Appointment.STATUS_COMPLETED: (),
    Appointment.STATUS_CANCELLED: (),
}


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, ())


def lock_appointment(appointment_id) -> Appointment:
    appt = (
        Appointment.objects.select_for_update()
        .select_related('doctor', 'user')
        .filter(id=appointment_id)
        .first()
    )
    if appt is None:
        raise NotFoundError(f'Appointment {appointment_id} not found.', code='appointment_not_found')
    return appt


def ensure_can_modify(user: User, appt: Appointment) -> None:
    if appt.user_id != user.id and not is_staff_user(user):
        raise AuthorizationError()


def record_transition(appt: Appointment, from_status: Optional[str], to_status: str,
                      operator: Optional[User], reason: str = '') -> AppointmentTransition:
    return AppointmentTransition.objects.create(
        appointment=appt,
        from_status=from_status,
        to_status=to_status,
        operator=operator if operator is not None and operator.pk else None,
        reason=reason[:255],
    )


def apply_transition(appt: Appointment, target: str, operator: Optional[User], reason: str = '') -> Appointment:
    """Move a locked appointment to ``target``; raises ``InvalidTransitionError`` if not allowed."""
    if not can_transition(appt.status, target):
        raise InvalidTransitionError(appt.status, target)
    old = appt.status
    appt.status = target
    appt.save(update_fields=['status', 'updated_at'])
    record_transition(appt, old, target, operator, reason)
    logger.info('appointment_transition', appointment_id=appt.id, from_status=old,
                to_status=target, operator_id=getattr(operator, 'id', None), reason=reason)
    return appt


@db_retry
def confirm_appointment(user: User, appointment_id, *, now: Optional[datetime] = None) -> Appointment:
    now = now or timezone.now()
    with transaction.atomic():
        appt = lock_appointment(appointment_id)
        ensure_can_modify(user, appt)
        if appt.status == Appointment.STATUS_PENDING and slot_start(appt.date, appt.time) <= now:
            raise InvalidTransitionError(
                appt.status, Appointment.STATUS_CONFIRMED,
                detail='Cannot confirm an appointment whose time has passed.',
            )
        return apply_transition(appt, Appointment.STATUS_CONFIRMED, user, 'confirmed')


@db_retry
def cancel_appointment(user: User, appointment_id, *, reason: Optional[str] = None) -> Appointment:
    """Cancel an appointment.  Cancelling an already cancelled one is a no-op."""
    with transaction.atomic():
        appt = lock_appointment(appointment_id)
        ensure_can_modify(user, appt)
        if appt.status == Appointment.STATUS_CANCELLED:
            return appt
        if appt.status == Appointment.STATUS_COMPLETED:
            raise ConflictError('A completed appointment cannot be cancelled.', code='invalid_transition',
                                currentStatus=appt.status, targetStatus=Appointment.STATUS_CANCELLED)
        return apply_transition(appt, Appointment.STATUS_CANCELLED, user, reason or 'cancelled')


@db_retry
def complete_appointment(user: User, appointment_id, *, now: Optional[datetime] = None) -> Appointment:
    now = now or timezone.now()
    if not is_staff_user(user):
        raise AuthorizationError('Only staff can complete appointments.')
    with transaction.atomic():
        appt = lock_appointment(appointment_id)
        if appt.status == Appointment.STATUS_CONFIRMED and slot_start(appt.date, appt.time) > now:
            raise InvalidTransitionError(
                appt.status, Appointment.STATUS_COMPLETED,
                detail='Cannot complete an appointment before its scheduled time.',
            )
        return apply_transition(appt, Appointment.STATUS_COMPLETED, user, 'completed')
