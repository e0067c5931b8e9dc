from __future__ import annotations

import asyncio
import logging

from console_client.adapters.base import MenuBackend
from console_client.domain.errors import (
    ApiError,
    MenuTreeError,
    NetworkUnavailable,
    ReauthenticationRequired,
)
from console_client.domain.models import RouteResolution
from console_client.domain.state_machine import NavigationState, RouteOutcome
from console_client.services.menu_service import extract_permissions, normalize_menu_tree
from console_client.services.permission_guard import PermissionGuard
from console_client.services.route_registry import normalize_route_path
from console_client.services.route_service import (
    DEFAULT_ROUTES,
    LANDING_PATH,
    LOGIN_PATH,
    NOT_FOUND_PATH,
    PUBLIC_PATHS,
    RouteSynthesizer,
    build_root_route,
)
from console_client.services.session_context import SessionContext

logger = logging.getLogger(__name__)

MAX_REDIRECT_HOPS = 8
GENERATION_ATTEMPTS = 2

GENERATION_FAILURES = (MenuTreeError, ApiError, NetworkUnavailable)


class NavigationStateMachine:
    """Decides, per navigation attempt, whether routes must be built first.

    ``UNSET`` triggers a menu fetch and a full synthesis; ``READY`` with an
    empty in-process registry (after ``on_process_start``) re-registers from
    the persisted menu snapshot without fetching; a failed generation installs
    the default routes and leaves the state ``UNSET`` so the next attempt
    retries.
    """

    def __init__(
        self,
        context: SessionContext,
        backend: MenuBackend,
        synthesizer: RouteSynthesizer,
        guard: PermissionGuard | None = None,
    ) -> None:
        self._context = context
        self._backend = backend
        self._synthesizer = synthesizer
        self._guard = guard or PermissionGuard(context)
        self._generation: asyncio.Future[None] | None = None

    @property
    def state(self) -> NavigationState:
        return self._context.navigation.state

    def on_process_start(self) -> bool:
        restored = self._context.restore()
        if restored:
            logger.info("navigation snapshot restored, routes will be re-registered on next navigation")
        return restored

    def reset(self) -> None:
        self._context.reset_navigation()

    async def resolve_route(self, target: str) -> RouteResolution:
        path = normalize_route_path(target)

        if path in PUBLIC_PATHS:
            if path == LOGIN_PATH and self._context.is_authenticated:
                return await self._resolve_after_login(target)
            return self._match(path, target)

        if not self._context.is_authenticated:
            return self._unauthenticated(target, "not authenticated")

        try:
            await self._ensure_routes()
        except ReauthenticationRequired as exc:
            return self._unauthenticated(target, exc.reason)
        return self._match(path, target)

    async def _resolve_after_login(self, target: str) -> RouteResolution:
        try:
            await self._ensure_routes()
        except ReauthenticationRequired as exc:
            return self._match(LOGIN_PATH, target, reason=exc.reason)
        destination = self._context.pop_intended_destination() or LANDING_PATH
        if normalize_route_path(destination) in PUBLIC_PATHS:
            destination = LANDING_PATH
        resolution = self._match(normalize_route_path(destination), target)
        return resolution.model_copy(update={"redirect_to": destination})

    async def _ensure_routes(self) -> None:
        if self._context.navigation.state == NavigationState.READY:
            if self._context.route_registry.is_registered:
                return
            if self._reregister():
                return

        for _ in range(GENERATION_ATTEMPTS):
            # Navigations arriving while a generation is in flight wait for it.
            generation = self._generation
            if generation is None or generation.done():
                generation = asyncio.ensure_future(self._generate())
                generation.add_done_callback(self._generation_done)
                self._generation = generation
            await asyncio.shield(generation)
            # A reset during the fetch discards that generation; start over once.
            if self._context.route_registry.is_registered or not self._context.is_authenticated:
                return

    def _generation_done(self, generation: asyncio.Future[None]) -> None:
        if self._generation is generation:
            self._generation = None
        # Retrieved here so a generation outliving its cancelled callers is still reported.
        if not generation.cancelled() and generation.exception() is not None:
            logger.warning("route generation ended with %r", generation.exception())

    def _reregister(self) -> bool:
        navigation = self._context.navigation
        if not (navigation.menu_tree or navigation.permissions):
            self._context.reset_navigation()
            return False
        try:
            result = self._synthesizer.synthesize(navigation.menu_tree)
        except MenuTreeError as exc:
            logger.warning("stored menu snapshot is unusable, regenerating routes: %s", exc)
            self._context.reset_navigation()
            return False
        self._context.register_restored_routes(
            (build_root_route(result.routes),),
            result.misses,
        )
        logger.info("re-registered %d routes from navigation snapshot", len(result.routes))
        return True

    async def _generate(self) -> None:
        context = self._context
        context.transition(NavigationState.GENERATING)
        try:
            raw_tree = await self._backend.fetch_user_menu_tree()
            if not context.is_authenticated:
                raise ReauthenticationRequired("session ended while loading the menu")
            if context.navigation.state != NavigationState.GENERATING:
                # Reset while the fetch was in flight; the next attempt starts over.
                return
            menu_tree = normalize_menu_tree(raw_tree)
            permissions = extract_permissions(menu_tree)
            result = self._synthesizer.synthesize(menu_tree)
        except GENERATION_FAILURES as exc:
            logger.error("route generation failed, falling back to default routes: %s", exc)
            context.fall_back(DEFAULT_ROUTES)
            return
        except BaseException:
            if context.navigation.state == NavigationState.GENERATING:
                context.transition(NavigationState.UNSET)
            raise

        context.commit_navigation(
            menu_tree,
            permissions,
            (build_root_route(result.routes),),
            result.misses,
        )
        logger.info(
            "routes generated routes=%d permissions=%d misses=%d",
            len(result.routes),
            len(permissions),
            len(result.misses),
        )

    def _match(self, path: str, target: str, *, reason: str | None = None) -> RouteResolution:
        registry = self._context.route_registry
        degraded = self._context.navigation.degraded
        current = path
        entry = registry.match(current)
        hops = 0
        while entry is not None and entry.route.redirect and hops < MAX_REDIRECT_HOPS:
            next_path = normalize_route_path(entry.route.redirect)
            next_entry = registry.match(next_path)
            if next_entry is None:
                break
            current, entry = next_path, next_entry
            hops += 1

        if entry is None:
            return RouteResolution(
                outcome=RouteOutcome.NOT_FOUND,
                target=target,
                path=current,
                route=registry.match(NOT_FOUND_PATH).route,
                redirect_to=NOT_FOUND_PATH,
                reason=reason or f"no route registered for {current}",
                degraded=degraded,
            )

        required = entry.required_permission
        if required and not self._guard.has_permission(required):
            logger.warning("navigation to %s denied, missing permission %s", current, required)
            return RouteResolution(
                outcome=RouteOutcome.DENIED,
                target=target,
                path=current,
                route=registry.match(NOT_FOUND_PATH).route,
                redirect_to=NOT_FOUND_PATH,
                reason=f"missing permission {required}",
                degraded=degraded,
            )

        if entry.route.meta.requires_auth:
            self._context.current_path = current
        return RouteResolution(
            outcome=RouteOutcome.ALLOWED,
            target=target,
            path=current,
            route=entry.route,
            redirect_to=current if current != path else None,
            reason=reason,
            degraded=degraded,
        )

    def _unauthenticated(self, target: str, reason: str) -> RouteResolution:
        self._context.intended_destination = target
        return RouteResolution(
            outcome=RouteOutcome.UNAUTHENTICATED,
            target=target,
            redirect_to=LOGIN_PATH,
            reason=reason,
        )
