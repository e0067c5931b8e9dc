from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import httpx

from console_client.adapters.base import MenuBackend
from console_client.adapters.http_backend import HttpMenuBackend
from console_client.domain.models import LoginResult, RouteNode, RouteResolution
from console_client.domain.state_machine import NavigationState
from console_client.infra import db
from console_client.infra.components import ViewComponentRegistry, build_default_registry
from console_client.infra.logging_setup import configure_logging
from console_client.infra.session_store import (
    DEFAULT_PROFILE,
    CredentialStore,
    NavigationSnapshotStore,
)
from console_client.services.credential_service import ApiRequest, CredentialManager
from console_client.services.navigation_service import NavigationStateMachine
from console_client.services.permission_guard import PermissionGuard
from console_client.services.route_service import RouteSynthesizer, menu_display_routes
from console_client.services.session_context import SessionContext


class ConsoleSession:
    """Wires the session context, credential manager and navigation together."""

    def __init__(
        self,
        *,
        session_key: str,
        profile: str = DEFAULT_PROFILE,
        client: httpx.AsyncClient | None = None,
        registry: ViewComponentRegistry | None = None,
        backend: MenuBackend | None = None,
        single_flight: bool | None = None,
    ) -> None:
        self.context = SessionContext(
            credential_store=CredentialStore(profile),
            snapshot_store=NavigationSnapshotStore(session_key),
        )
        self.credentials = CredentialManager(self.context, client=client, single_flight=single_flight)
        self.guard = PermissionGuard(self.context)
        self.navigation = NavigationStateMachine(
            self.context,
            backend or HttpMenuBackend(self.credentials),
            RouteSynthesizer(registry or build_default_registry()),
            self.guard,
        )

    @classmethod
    def open(cls, *, session_key: str, **kwargs: Any) -> ConsoleSession:
        configure_logging()
        db.init_db()
        session = cls(session_key=session_key, **kwargs)
        session.navigation.on_process_start()
        return session

    async def __aenter__(self) -> ConsoleSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.credentials.aclose()

    @property
    def is_authenticated(self) -> bool:
        return self.context.is_authenticated

    @property
    def navigation_state(self) -> NavigationState:
        return self.context.navigation.state

    @property
    def route_tree(self) -> tuple[RouteNode, ...]:
        return self.context.route_registry.routes

    @property
    def menu_routes(self) -> tuple[RouteNode, ...]:
        roots = self.context.route_registry.routes
        return menu_display_routes(tuple(child for root in roots for child in root.children))

    async def login(self, username: str, password: str, **extra: Any) -> LoginResult:
        return await self.credentials.login(username, password, **extra)

    async def logout(self) -> None:
        await self.credentials.logout()

    async def resolve_route(self, target: str) -> RouteResolution:
        return await self.navigation.resolve_route(target)

    def has_permission(self, permission: str) -> bool:
        return self.guard.has_permission(permission)

    def has_any_permission(self, permissions: str | Iterable[str]) -> bool:
        return self.guard.has_any_permission(permissions)

    async def send(self, request: ApiRequest) -> Any:
        return await self.credentials.send(request)
