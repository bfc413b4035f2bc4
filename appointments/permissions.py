"""
Role based permission classes and ownership checks.
"""
from rest_framework.permissions import BasePermission

STAFF_ROLES = {"staff"}


def is_staff_user(user) -> bool:
    return bool(user and (getattr(user, "role", None) in STAFF_ROLES or getattr(user, "is_superuser", False)))


class IsStaffRole(BasePermission):
    """Allow access only to clinic staff."""
    message = "Only clinic staff can perform this action."

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and is_staff_user(user))
