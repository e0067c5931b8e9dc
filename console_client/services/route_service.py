from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from console_client.domain.errors import DuplicateRouteNameError, MalformedTreeError
from console_client.domain.models import (
    ComponentResolutionMiss,
    MenuNode,
    RouteMeta,
    RouteNode,
)
from console_client.infra.components import (
    DASHBOARD_VIEW,
    DEFAULT_LAYOUT,
    LOGIN_VIEW,
    NOT_FOUND_VIEW,
    ViewComponentRegistry,
)

logger = logging.getLogger(__name__)

ROOT_PATH = "/"
LANDING_PATH = "/dashboard"
LOGIN_PATH = "/login"
NOT_FOUND_PATH = "/404"
PUBLIC_PATHS = frozenset({LOGIN_PATH, NOT_FOUND_PATH})

PUBLIC_ROUTES: tuple[RouteNode, ...] = (
    RouteNode(
        path=LOGIN_PATH,
        name="Login",
        component=LOGIN_VIEW,
        meta=RouteMeta(title="Login", requires_auth=False),
    ),
    RouteNode(
        path=NOT_FOUND_PATH,
        name="NotFound",
        component=NOT_FOUND_VIEW,
        meta=RouteMeta(title="404", hidden=True, requires_auth=False),
    ),
)

DASHBOARD_ROUTE = RouteNode(
    path="dashboard",
    name="Dashboard",
    component=DASHBOARD_VIEW,
    meta=RouteMeta(title="Dashboard", icon="dashboard"),
)


def build_root_route(children: Sequence[RouteNode] = ()) -> RouteNode:
    return RouteNode(
        path=ROOT_PATH,
        name="Root",
        component=DEFAULT_LAYOUT,
        is_container=True,
        redirect=LANDING_PATH,
        meta=RouteMeta(hidden=True),
        children=(DASHBOARD_ROUTE, *children),
    )


DEFAULT_ROUTES: tuple[RouteNode, ...] = (build_root_route(),)

# Names already taken by the routes every generated tree is registered next to.
BUILTIN_ROUTE_PATHS: dict[str, str] = {
    **{route.name: route.path for route in PUBLIC_ROUTES},
    DEFAULT_ROUTES[0].name: ROOT_PATH,
    DASHBOARD_ROUTE.name: LANDING_PATH,
}


def route_name_for(path: str) -> str:
    # "/system/user" -> "SystemUser"; only the first letter of each segment changes.
    return "".join(part[:1].upper() + part[1:] for part in path.split("/") if part)


def join_route_path(parent: str, child: str) -> str:
    if not parent or child.startswith("/") or "://" in child:
        return child
    return f"{parent.rstrip('/')}/{child}"


def menu_display_routes(routes: Sequence[RouteNode]) -> tuple[RouteNode, ...]:
    """Routes for the navigation menu: hidden routes and their subtrees removed."""
    return tuple(
        route.model_copy(update={"children": menu_display_routes(route.children)})
        for route in routes
        if not route.meta.hidden
    )


@dataclass(frozen=True)
class RouteSynthesisResult:
    routes: tuple[RouteNode, ...]
    misses: tuple[ComponentResolutionMiss, ...] = ()


class RouteSynthesizer:
    def __init__(self, registry: ViewComponentRegistry) -> None:
        self._registry = registry

    def synthesize(self, tree: Sequence[MenuNode]) -> RouteSynthesisResult:
        """Build the route tree for a normalized menu tree.

        Button nodes are dropped, hidden nodes are kept with ``meta.hidden``.
        Either the whole tree is returned or one error is raised: every
        colliding route name, including collisions with the built-in
        root, dashboard, login and not-found routes, is reported together in a
        single ``DuplicateRouteNameError``.
        """
        names: dict[str, list[str]] = {name: [path] for name, path in BUILTIN_ROUTE_PATHS.items()}
        misses: list[ComponentResolutionMiss] = []
        routes = self._build_level(tree, "", names, misses)
        duplicates = {name: paths for name, paths in names.items() if len(paths) > 1}
        if duplicates:
            raise DuplicateRouteNameError(duplicates)
        return RouteSynthesisResult(routes=routes, misses=tuple(misses))

    def _build_level(
        self,
        nodes: Sequence[MenuNode],
        parent_path: str,
        names: dict[str, list[str]],
        misses: list[ComponentResolutionMiss],
    ) -> tuple[RouteNode, ...]:
        routes: list[RouteNode] = []
        for node in nodes:
            if node.is_action:
                continue
            if not (node.is_directory or node.is_leaf):
                logger.warning(
                    "skipping menu id=%s path=%s with unknown menu type %r",
                    node.menu_id,
                    node.path,
                    node.kind,
                )
                continue
            routes.append(self._build_route(node, parent_path, names, misses))
        return tuple(routes)

    def _build_route(
        self,
        node: MenuNode,
        parent_path: str,
        names: dict[str, list[str]],
        misses: list[ComponentResolutionMiss],
    ) -> RouteNode:
        name = route_name_for(node.path)
        if not name:
            raise MalformedTreeError(f"menu id={node.menu_id} has no usable route path {node.path!r}")
        full_path = join_route_path(parent_path, node.path)
        names.setdefault(name, []).append(full_path)

        meta = RouteMeta(
            title=node.menu_name,
            icon=node.icon,
            permission=node.permission,
            hidden=node.is_hidden,
            keep_alive=node.is_cached,
            external_link=node.is_external_link,
            query=node.query,
        )
        redirect: str | None = None
        if node.is_directory:
            component = self._layout_for(node)
            first_visible = next(
                (
                    child
                    for child in node.children
                    if (child.is_directory or child.is_leaf) and not child.is_hidden
                ),
                None,
            )
            if first_visible is not None:
                redirect = join_route_path(full_path, first_visible.path)
        else:
            component = self._view_for(node, name, misses)

        return RouteNode(
            path=node.path,
            name=name,
            component=component,
            is_container=node.is_directory,
            redirect=redirect,
            meta=meta,
            children=self._build_level(node.children, full_path, names, misses),
        )

    def _layout_for(self, node: MenuNode) -> str:
        layout = node.component.strip()
        if not layout or layout == DEFAULT_LAYOUT:
            return DEFAULT_LAYOUT
        if self._registry.resolve_layout(layout) is None:
            logger.warning("unknown layout %r for menu id=%s, using %s", layout, node.menu_id, DEFAULT_LAYOUT)
            return DEFAULT_LAYOUT
        return layout

    def _view_for(
        self,
        node: MenuNode,
        route_name: str,
        misses: list[ComponentResolutionMiss],
    ) -> str:
        entry = self._registry.resolve(node.component)
        if entry is not None:
            return entry.key
        misses.append(
            ComponentResolutionMiss(
                route_name=route_name,
                component_key=node.component,
                fallback=NOT_FOUND_VIEW,
            )
        )
        logger.warning(
            "view component %r for route %s is not registered, using %s",
            node.component,
            route_name,
            NOT_FOUND_VIEW,
        )
        return NOT_FOUND_VIEW
