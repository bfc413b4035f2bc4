"""
Error taxonomy for the booking API and the unified exception handler.

Every error leaves the API as ``{'ok': False, 'error': {'code', 'message', ...}}``.
Domain errors are DRF ``APIException`` subclasses so that services can
raise them directly and views need no per-error branches.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = structlog.get_logger(__name__)


class BookingError(exceptions.APIException):
    """Base class for domain errors; ``extra`` is merged into the error body."""

    def __init__(self, detail: Optional[str] = None, code: Optional[str] = None, **extra: Any):
        super().__init__(detail=detail, code=code)
        self.code = code or self.default_code
        self.extra: Dict[str, Any] = extra


class BookingValidationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'invalid'


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class ConflictError(BookingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The request conflicts with the current state.'
    default_code = 'conflict'


class SlotUnavailableError(ConflictError):
    """The slot was taken; the caller should re-fetch availability and pick another."""
    default_detail = 'This time slot is no longer available.'
    default_code = 'slot_unavailable'

    def __init__(self, doctor_id: int, date: str, time: str, detail: Optional[str] = None):
        super().__init__(detail=detail, doctorId=doctor_id, date=date, time=time, refetch=True)


class InvalidTransitionError(ConflictError):
    default_code = 'invalid_transition'

    def __init__(self, current: str, target: str, detail: Optional[str] = None):
        super().__init__(
            detail=detail or f'Cannot change appointment from {current} to {target}.',
            currentStatus=current,
            targetStatus=target,
        )


class TransientError(BookingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Service temporarily unavailable, try again later.'
    default_code = 'temporarily_unavailable'


class AuthorizationError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to modify this appointment.'
    default_code = 'forbidden'


def _error_code(exc: Exception) -> str:
    code = getattr(exc, 'code', None)
    if isinstance(code, str):
        return code
    if isinstance(exc, exceptions.ValidationError):
        return 'invalid'
    return getattr(exc, 'default_code', None) or 'api_error'


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled_api_error', view=type(context.get('view')).__name__)
        return Response(
            {'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error.'}},
            status=500,
        )
    # normalize response
    if isinstance(exc, (Http404, DjangoPermissionDenied)):
        exc = exceptions.NotFound() if isinstance(exc, Http404) else exceptions.PermissionDenied()
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    error: Dict[str, Any] = {'code': _error_code(exc), 'message': detail}
    error.update(getattr(exc, 'extra', {}) or {})
    if resp.status_code >= 500:
        logger.warning('api_error', code=error['code'], status=resp.status_code)
    # keep auth challenge and throttle hints
    headers = {k: v for k, v in resp.items() if k in ('WWW-Authenticate', 'Retry-After')}
    return Response({'ok': False, 'error': error}, status=resp.status_code, headers=headers)
