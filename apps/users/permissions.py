"""Role-based permission classes."""

from __future__ import annotations

from rest_framework import permissions  # type: ignore


class _RolePermission(permissions.BasePermission):
    role_check = ""

    def has_permission(self, request, view) -> bool:  # type: ignore
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return bool(getattr(user, self.role_check)())


class IsExplorer(_RolePermission):
    """Only explorers may reserve spots and pay."""

    message = "Only explorers can perform this action."
    role_check = "is_explorer"


class IsOrganizer(_RolePermission):
    message = "Only organizers can perform this action."
    role_check = "is_organizer"


class IsPlatformAdmin(_RolePermission):
    """Admin role or Django superuser."""

    message = "Only administrators can perform this action."
    role_check = "is_platform_admin"
