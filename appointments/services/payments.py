"""
Card payments for appointments.

The card number is checked (length, Luhn, expiry, CVV shape) and then
reduced to brand, last four digits and an HMAC fingerprint keyed with
``PAYMENT_FINGERPRINT_KEY``.  Neither the full number nor the CVV is
stored or logged.  The charged amount is always the doctor's
consultation fee.
"""
from __future__ import annotations

import hashlib
import hmac
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import bleach
import structlog
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from appointments.exceptions import BookingValidationError, ConflictError
from appointments.models import Appointment, Payment, User
from appointments.services.lifecycle import apply_transition, ensure_can_modify, lock_appointment
from appointments.services.retry import db_retry
from appointments.services.slots import slot_start

logger = structlog.get_logger(__name__)

_EXPIRY_RE = re.compile(r'^(\d{2})\s*/\s*(\d{2})$')


def normalize_card_number(number: str) -> str:
    digits = re.sub(r'[\s-]', '', number or '')
    if not digits.isdigit() or not 13 <= len(digits) <= 19:
        raise BookingValidationError('Card number must be 13 to 19 digits.', code='invalid_card')
    return digits


def luhn_valid(digits: str) -> bool:
    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def card_brand(digits: str) -> str:
    if digits.startswith('4'):
        return 'visa'
    if digits[:2] in ('34', '37'):
        return 'amex'
    if 51 <= int(digits[:2]) <= 55 or 2221 <= int(digits[:4]) <= 2720:
        return 'mastercard'
    if digits.startswith('6011') or digits.startswith('65'):
        return 'discover'
    return 'card'


def card_fingerprint(digits: str) -> str:
    key = settings.PAYMENT_FINGERPRINT_KEY.encode()
    return hmac.new(key, digits.encode(), hashlib.sha256).hexdigest()


def check_expiry(expiry: str, today: date) -> None:
    match = _EXPIRY_RE.match((expiry or '').strip())
    if not match:
        raise BookingValidationError('Expiry must be in MM/YY format.', code='invalid_expiry')
    month, year = int(match.group(1)), 2000 + int(match.group(2))
    if not 1 <= month <= 12:
        raise BookingValidationError('Expiry month must be between 01 and 12.', code='invalid_expiry')
    # cards are valid through the last day of the expiry month
    if (year, month) < (today.year, today.month):
        raise BookingValidationError('Card has expired.', code='card_expired')


def check_cvv(cvv: str) -> None:
    if not re.fullmatch(r'\d{3,4}', (cvv or '').strip()):
        raise BookingValidationError('CVV must be 3 or 4 digits.', code='invalid_cvv')


@db_retry
def record_payment(user: User, appointment_id, *, card_number: str, card_holder: str, expiry: str,
                   cvv: str, amount: Optional[Decimal] = None, now: Optional[datetime] = None) -> Payment:
    """Charge the consultation fee for an appointment and store a tokenized record.

    A pending appointment whose time has not yet come is confirmed in the
    same transaction.
    """
    now = now or timezone.now()
    digits = normalize_card_number(card_number)
    if not luhn_valid(digits):
        raise BookingValidationError('Card number is not valid.', code='invalid_card')
    check_expiry(expiry, timezone.localdate(now))
    check_cvv(cvv)
    holder = bleach.clean(card_holder or '', tags=[], strip=True).strip()
    if not holder:
        raise BookingValidationError('Card holder is required.', code='invalid_card_holder')

    with transaction.atomic():
        appt = lock_appointment(appointment_id)
        ensure_can_modify(user, appt)
        if appt.status not in Appointment.ACTIVE_STATUSES:
            raise ConflictError(f'Cannot pay for a {appt.status} appointment.', code='invalid_transition',
                                currentStatus=appt.status)
        fee = appt.doctor.consultation_fee
        if amount is not None and Decimal(amount) != fee:
            raise BookingValidationError('Amount does not match the consultation fee.', code='amount_mismatch',
                                         expected=str(fee))
        if appt.payments.filter(status=Payment.STATUS_COMPLETED).exists():
            raise ConflictError('This appointment has already been paid.', code='already_paid')
        try:
            with transaction.atomic():
                payment = Payment.objects.create(
                    appointment=appt,
                    card_holder=holder[:128],
                    card_brand=card_brand(digits),
                    card_last4=digits[-4:],
                    card_fingerprint=card_fingerprint(digits),
                    amount=fee,
                    status=Payment.STATUS_COMPLETED,
                )
        except IntegrityError as exc:
            raise ConflictError('This appointment has already been paid.', code='already_paid') from exc

        if appt.status == Appointment.STATUS_PENDING and slot_start(appt.date, appt.time) > now:
            apply_transition(appt, Appointment.STATUS_CONFIRMED, user, 'payment received')

    logger.info('payment_recorded', payment_id=payment.id, appointment_id=appt.id, user_id=user.id,
                amount=str(fee), card_brand=payment.card_brand, card_last4=payment.card_last4)
    return payment


def format_payment(payment: Payment) -> dict:
    return {
        'id': payment.id,
        'appointmentId': payment.appointment_id,
        'amount': str(payment.amount),
        'status': payment.status,
        'cardBrand': payment.card_brand,
        'cardLast4': payment.card_last4,
        'cardHolder': payment.card_holder,
        'createdAt': payment.created_at.isoformat(),
    }
