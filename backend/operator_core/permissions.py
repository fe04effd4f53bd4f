from __future__ import annotations

from typing import Iterable, Sequence

from rest_framework.permissions import BasePermission


def _is_staff(user) -> bool:
    return bool(user and user.is_authenticated and user.is_staff)


class IsOperator(BasePermission):
    """Authenticated staff only."""

    def has_permission(self, request, view):
        return _is_staff(getattr(request, "user", None))


class HasOperatorRole(BasePermission):
    """
    Staff users who belong to at least one of ``required_roles`` (auth groups).

    An empty role list denies everyone.
    """

    required_roles: Sequence[str] = ()

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not _is_staff(user) or not self.required_roles:
            return False
        return user.groups.filter(name__in=self.required_roles).exists()

    @classmethod
    def with_roles(cls, roles: Iterable[str]):
        role_tuple = tuple(roles)
        return type(f"{cls.__name__}WithRoles", (cls,), {"required_roles": role_tuple})
