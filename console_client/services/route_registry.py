from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from console_client.domain.models import RouteNode
from console_client.services.route_service import PUBLIC_ROUTES, join_route_path


def normalize_route_path(target: str) -> str:
    path = target.split("#", 1)[0].split("?", 1)[0].strip()
    if not path.startswith("/"):
        path = f"/{path}"
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


@dataclass(frozen=True)
class RegisteredRoute:
    full_path: str
    route: RouteNode
    required_permission: str


class RouteRegistry:
    """Routes registered for the lifetime of this process.

    Public routes are always present. ``register`` swaps in a complete new
    table, nothing is patched in place.
    """

    def __init__(self) -> None:
        self._routes: tuple[RouteNode, ...] = ()
        self._entries: dict[str, RegisteredRoute] = self._index(())
        self._registered = False

    @property
    def is_registered(self) -> bool:
        return self._registered

    @property
    def routes(self) -> tuple[RouteNode, ...]:
        return self._routes

    def register(self, routes: Sequence[RouteNode]) -> None:
        entries = self._index(routes)
        self._routes = tuple(routes)
        self._entries = entries
        self._registered = True

    def clear(self) -> None:
        self._routes = ()
        self._entries = self._index(())
        self._registered = False

    def match(self, target: str) -> RegisteredRoute | None:
        return self._entries.get(normalize_route_path(target))

    def paths(self) -> list[str]:
        return sorted(self._entries)

    @classmethod
    def _index(cls, routes: Sequence[RouteNode]) -> dict[str, RegisteredRoute]:
        entries: dict[str, RegisteredRoute] = {}
        for route in PUBLIC_ROUTES:
            entries[route.path] = RegisteredRoute(route.path, route, route.meta.permission)
        cls._index_level(routes, "", "", entries)
        return entries

    @classmethod
    def _index_level(
        cls,
        routes: Sequence[RouteNode],
        parent_path: str,
        inherited_permission: str,
        entries: dict[str, RegisteredRoute],
    ) -> None:
        for route in routes:
            full_path = join_route_path(parent_path, route.path)
            # The nearest declared permission applies, as with nested route meta.
            required = route.meta.permission or inherited_permission
            if "://" not in full_path:
                entries[normalize_route_path(full_path)] = RegisteredRoute(full_path, route, required)
            cls._index_level(route.children, full_path, required, entries)
