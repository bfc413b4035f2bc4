"""
HTTP client for the booking API.

Wraps a ``requests.Session`` with a bounded timeout and maps error
envelopes back onto the exception classes in ``appointments.exceptions``.
A timeout, a dropped connection or a response that is not a well-formed
``{'ok': ...}`` envelope raises ``TransientError``; the client never
returns made-up data such as an empty slot list in their place.

Only reads are retried.  Bookings and status changes are sent once, so a
timed out write has to be checked by listing appointments before it is
sent again.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import requests
import structlog
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from appointments.exceptions import (
    AuthorizationError,
    BookingError,
    BookingValidationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    TransientError,
)

logger = structlog.get_logger(__name__)
_std_logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def error_from_envelope(status_code: int, error: Dict[str, Any]) -> BookingError:
    """Rebuild the domain exception described by an error envelope."""
    code = error.get('code') or ''
    message = error.get('message')
    if not isinstance(message, str):
        message = str(message) if message else None
    if code == 'slot_unavailable':
        return SlotUnavailableError(error.get('doctorId'), error.get('date'), error.get('time'), detail=message)
    if code == 'invalid_transition' and error.get('targetStatus'):
        return InvalidTransitionError(error.get('currentStatus') or '', error['targetStatus'], detail=message)
    if status_code == 409:
        return ConflictError(message, code=code or None)
    if status_code == 404:
        return NotFoundError(message, code=code or None)
    if status_code in (401, 403):
        return AuthorizationError(message, code=code or None)
    if 400 <= status_code < 500 and status_code != 429:
        return BookingValidationError(message, code=code or None, errors=error.get('message'))
    return TransientError(message, code=code or None)


class BookingClient:
    """Thin client over the booking endpoints.

    ``token`` is sent as ``Authorization: Token <token>``; pass
    ``bearer`` instead to authenticate with a JWT access token.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, *, bearer: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT, read_attempts: int = 3, retry_wait: float = 0.5,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.read_attempts = max(1, read_attempts)
        self.retry_wait = retry_wait
        self.session = session or requests.Session()
        if token:
            self.session.headers['Authorization'] = f'Token {token}'
        elif bearer:
            self.session.headers['Authorization'] = f'Bearer {bearer}'

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    def _send(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f'{self.base_url}{path}'
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            logger.warning('booking_api_timeout', method=method, path=path, timeout=self.timeout)
            raise TransientError('The booking service did not respond in time.', code='timeout') from exc
        except requests.ConnectionError as exc:
            logger.warning('booking_api_unreachable', method=method, path=path, error=str(exc))
            raise TransientError('The booking service is unreachable.', code='unreachable') from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise TransientError('Malformed response from the booking service.', code='bad_response') from exc
        if not isinstance(body, dict) or not isinstance(body.get('ok'), bool):
            raise TransientError('Malformed response from the booking service.', code='bad_response')
        if body['ok'] and resp.status_code < 400:
            return body
        error = body.get('error')
        if not isinstance(error, dict):
            raise TransientError('Malformed error from the booking service.', code='bad_response')
        raise error_from_envelope(resp.status_code, error)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        retrying = Retrying(
            stop=stop_after_attempt(self.read_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=8),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(_std_logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._send, 'GET', path, params=params)

    @staticmethod
    def _field(body: Dict[str, Any], key: str, kind: type):
        value = body.get(key)
        if not isinstance(value, kind):
            raise TransientError(f'Malformed response: missing {key}.', code='bad_response')
        return value

    # ------------------------------------------------------------------
    # endpoints
    # ------------------------------------------------------------------
    def available_slots(self, doctor_id: int, day: date | str) -> List[str]:
        body = self._get('/api/availability', {'doctorId': doctor_id, 'date': str(day)})
        slots = self._field(body, 'slots', list)
        if not all(isinstance(s, str) for s in slots):
            raise TransientError('Malformed response: slots.', code='bad_response')
        return slots

    def search_doctors(self, **filters) -> List[Dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        return self._field(self._get('/api/doctors', params), 'data', list)

    def list_appointments(self, which: str = 'all') -> List[Dict[str, Any]]:
        return self._field(self._get('/api/appointments', {'filter': which}), 'data', list)

    def get_appointment(self, appointment_id: int) -> Dict[str, Any]:
        return self._field(self._get(f'/api/appointments/{appointment_id}'), 'appointment', dict)

    def book(self, doctor_id: int, day: date | str, time: str, notes: Optional[str] = None) -> Dict[str, Any]:
        payload = {'doctorId': doctor_id, 'date': str(day), 'time': time}
        if notes:
            payload['notes'] = notes
        body = self._send('POST', '/api/appointments', json=payload)
        return self._field(body, 'appointment', dict)

    def reschedule(self, appointment_id: int, day: date | str, time: str) -> Dict[str, Any]:
        body = self._send('PATCH', f'/api/appointments/{appointment_id}/reschedule',
                          json={'date': str(day), 'time': time})
        return self._field(body, 'appointment', dict)

    def cancel(self, appointment_id: int, reason: Optional[str] = None) -> Dict[str, Any]:
        body = self._send('PATCH', f'/api/appointments/{appointment_id}/cancel',
                          json={'reason': reason} if reason else {})
        return self._field(body, 'appointment', dict)

    def confirm(self, appointment_id: int) -> Dict[str, Any]:
        body = self._send('PATCH', f'/api/appointments/{appointment_id}/confirm', json={})
        return self._field(body, 'appointment', dict)

    def complete(self, appointment_id: int) -> Dict[str, Any]:
        body = self._send('PATCH', f'/api/appointments/{appointment_id}/complete', json={})
        return self._field(body, 'appointment', dict)

    def pay(self, appointment_id: int, *, card_number: str, card_holder: str, expiry: str,
            cvv: str) -> Dict[str, Any]:
        body = self._send('POST', '/api/payments', json={
            'appointmentId': appointment_id,
            'cardNumber': card_number,
            'cardHolder': card_holder,
            'expiry': expiry,
            'cvv': cvv,
        })
        return self._field(body, 'payment', dict)
