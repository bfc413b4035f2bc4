"""
Authentication endpoints.

Login hands out both a DRF token (``Authorization: Token <key>``) and a
JWT pair (``Authorization: Bearer <access>``); either is accepted by
the API.  Registration always creates a patient.
"""
from __future__ import annotations

import structlog
from django.contrib.auth import authenticate
from django.db import transaction
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from .exceptions import BookingValidationError
from .models import User
from .serializers.auth import LoginSerializer, RegisterSerializer
from .throttles import LoginRateThrottle

logger = structlog.get_logger(__name__)


def _session_payload(user: User) -> dict:
    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    return {
        'ok': True,
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
        'role': user.role,
        'user': {
            'id': user.id,
            'username': user.username,
            'email': user.email,
            'name': user.get_full_name() or user.username,
            'role': user.role,
        },
    }


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def login_view(request):
    """
    Username (or email) and password login.  The role always comes from
    the stored account; nothing in the request can change it.
    """
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    account = s.validated_data['account']
    password = s.validated_data['password']

    username = account
    if '@' in account:
        match = User.objects.filter(email__iexact=account).only('username').first()
        if match:
            username = match.username
    user = authenticate(request, username=username, password=password)
    if not user:
        logger.info('login_failed', account=account, ip=request.META.get('REMOTE_ADDR'))
        return Response(
            {'ok': False, 'error': {'code': 'invalid_credentials', 'message': 'Invalid username or password.'}},
            status=status.HTTP_400_BAD_REQUEST,
        )
    logger.info('login_succeeded', user_id=user.id, ip=request.META.get('REMOTE_ADDR'))
    return Response(_session_payload(user), status=status.HTTP_200_OK)


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def register_view(request):
    s = RegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    first, _, last = vd['name'].partition(' ')
    with transaction.atomic():
        user = User.objects.create_user(
            username=vd['email'],
            email=vd['email'],
            password=vd['password'],
            first_name=first[:150],
            last_name=last[:150],
            phone=vd.get('phone', ''),
            address=vd.get('address', ''),
            role=User.ROLE_PATIENT,
        )
    logger.info('user_registered', user_id=user.id)
    return Response(_session_payload(user), status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token from a refresh token."""
    s = TokenRefreshSerializer(data={'refresh': request.data.get('refresh') or request.data.get('jwt_refresh')})
    try:
        s.is_valid(raise_exception=True)
    except TokenError as e:
        raise InvalidToken(e.args[0])
    data = dict(s.validated_data)
    payload = {'ok': True, 'jwt_access': data.pop('access')}
    if 'refresh' in data:
        payload['jwt_refresh'] = data['refresh']
    return Response(payload)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist the given refresh token, or all of the caller's outstanding ones."""
    refresh = request.data.get('refresh')
    count = 0
    if refresh:
        try:
            RefreshToken(refresh).blacklist()
        except TokenError as e:
            raise BookingValidationError(str(e), code='invalid_token')
        count = 1
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    Token.objects.filter(user=request.user).delete()
    return Response({'ok': True, 'blacklisted': count})
