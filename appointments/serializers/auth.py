import bleach
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from appointments.models import User


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField(required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    password = serializers.CharField()

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('Password is required.')
        return v

    def validate(self, attrs):
        account = (attrs.get('username') or attrs.get('email') or '').strip()
        if not account:
            raise serializers.ValidationError({'username': 'Username or email is required.'})
        attrs['account'] = account
        return attrs


class RegisterSerializer(serializers.Serializer):
    """Self-service sign up.  Always creates a patient; the role is not client controlled."""
    # stored as the username, which Django caps at 150 characters
    email = serializers.EmailField(max_length=150)
    password = serializers.CharField(min_length=8, max_length=128, write_only=True)
    name = serializers.CharField(max_length=150)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=20)
    address = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_email(self, v):
        v = v.strip().lower()
        if User.objects.filter(username__iexact=v).exists() or User.objects.filter(email__iexact=v).exists():
            raise serializers.ValidationError('An account with this email already exists.')
        return v

    def validate_name(self, v):
        v = bleach.clean(v.strip(), tags=[], strip=True)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters.')
        return v

    def validate_phone(self, v):
        return bleach.clean((v or '').strip(), tags=[], strip=True)

    def validate_address(self, v):
        return bleach.clean((v or '').strip(), tags=[], strip=True)

    def validate(self, attrs):
        candidate = User(username=attrs['email'], email=attrs['email'], first_name=attrs['name'])
        try:
            validate_password(attrs['password'], user=candidate)
        except DjangoValidationError as e:
            raise serializers.ValidationError({'password': list(e.messages)})
        return attrs
