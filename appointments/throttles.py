"""
Scoped rate limits.  Rates come from ``REST_FRAMEWORK['DEFAULT_THROTTLE_RATES']``.
"""
from rest_framework.permissions import SAFE_METHODS
from rest_framework.throttling import AnonRateThrottle, UserRateThrottle


class LoginRateThrottle(AnonRateThrottle):
    scope = 'login'


class BookingRateThrottle(UserRateThrottle):
    """Limits writes only; listing appointments shares the view but is not counted."""
    scope = 'booking'

    def allow_request(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        return super().allow_request(request, view)
