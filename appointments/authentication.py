"""
Token authentication used by the API.

Kept apart from any view module so that DRF can import the
authentication classes during start-up without circular imports.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """DRF token authentication with the ``Token`` keyword.

    Bearer JWTs are handled by simplejwt's ``JWTAuthentication`` which
    is configured next to this class.
    """

    keyword = 'Token'
