"""Bounded retries for transient database failures.

Lock wait timeouts, deadlocks and dropped connections surface from the
driver as ``OperationalError``.  Those are retried with exponential
back-off; when the attempts run out the caller gets a ``TransientError``
instead of a partial or fabricated result.
"""
import functools
import logging

import structlog
from django.conf import settings
from django.db import OperationalError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from appointments.exceptions import TransientError

logger = structlog.get_logger(__name__)
_std_logger = logging.getLogger(__name__)


def db_retry(func):
    """Retry ``func`` on ``OperationalError``; raise ``TransientError`` when exhausted."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        retrying = Retrying(
            stop=stop_after_attempt(max(1, settings.BOOKING_RETRY_ATTEMPTS)),
            wait=wait_exponential(multiplier=0.1, max=settings.BOOKING_RETRY_MAX_WAIT),
            retry=retry_if_exception_type(OperationalError),
            before_sleep=before_sleep_log(_std_logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(func, *args, **kwargs)
        except OperationalError as exc:
            logger.error('database_unavailable', operation=func.__name__, error=str(exc))
            raise TransientError() from exc

    return wrapper
