from __future__ import annotations

from collections.abc import Iterable

from console_client.domain.permissions import PermissionSet
from console_client.services.session_context import SessionContext


class PermissionGuard:
    def __init__(self, context: SessionContext) -> None:
        self._context = context

    @property
    def permissions(self) -> PermissionSet:
        return self._context.navigation.permissions

    def has_permission(self, permission: str) -> bool:
        return self._context.navigation.permissions.allows(permission)

    def has_any_permission(self, permissions: str | Iterable[str]) -> bool:
        if isinstance(permissions, str):
            return self.has_permission(permissions)
        return self._context.navigation.permissions.allows_any(permissions)
