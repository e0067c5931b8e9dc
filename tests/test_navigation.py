from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import pytest
from sqlmodel import SQLModel, create_engine

from console_client.adapters.fake_backend import FakeMenuBackend
from console_client.domain.errors import ApiError, NetworkUnavailable
from console_client.domain.models import NavigationSnapshot, SessionCredential
from console_client.domain.state_machine import NavigationState, RouteOutcome, can_navigation_transition
from console_client.infra import db, redis_state
from console_client.infra.components import DASHBOARD_VIEW, NOT_FOUND_VIEW, build_default_registry
from console_client.infra.session_store import CredentialStore, NavigationSnapshotStore
from console_client.services.menu_service import normalize_menu_tree
from console_client.services.navigation_service import NavigationStateMachine
from console_client.services.permission_guard import PermissionGuard
from console_client.services.route_service import RouteSynthesizer
from console_client.services.session_context import SessionContext

VIEWS = {
    "system/user/index": lambda: "user",
    "system/role/index": lambda: "role",
}

MENU_TREE: list[dict[str, Any]] = [
    {
        "id": 1,
        "menuName": "System",
        "parentId": 0,
        "sort": 1,
        "path": "/system",
        "component": "Layout",
        "menuType": 0,
        "children": [
            {
                "id": 11,
                "menuName": "Users",
                "parentId": 1,
                "sort": 1,
                "path": "user",
                "component": "system/user/index",
                "menuType": 1,
                "perms": "user.list",
                "children": [
                    {"id": 111, "parentId": 11, "menuType": 2, "perms": "user.create"},
                ],
            },
            {
                "id": 12,
                "menuName": "Roles",
                "parentId": 1,
                "sort": 2,
                "path": "role",
                "component": "system/role/index",
                "menuType": 1,
                "perms": "role.list",
            },
        ],
    }
]


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._store[key] = value
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self._store.pop(key, None) is not None)

    def ping(self) -> bool:
        return True


@pytest.fixture()
def fake_redis(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> FakeRedis:
    db_path = tmp_path / "navigation_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    fake_redis = FakeRedis()

    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake_redis)
    return fake_redis


def _context(session_key: str = "s1") -> SessionContext:
    return SessionContext(
        credential_store=CredentialStore(),
        snapshot_store=NavigationSnapshotStore(session_key),
    )


def _machine(context: SessionContext, backend: FakeMenuBackend) -> NavigationStateMachine:
    synthesizer = RouteSynthesizer(build_default_registry(VIEWS))
    return NavigationStateMachine(context, backend, synthesizer, PermissionGuard(context))


def _logged_in_context(session_key: str = "s1") -> SessionContext:
    context = _context(session_key)
    context.start_session(SessionCredential(access_token="access-1", refresh_token="refresh-1"))
    return context


def test_first_navigation_generates_routes_once(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    backend = FakeMenuBackend(tree=MENU_TREE)
    machine = _machine(context, backend)
    assert machine.state == NavigationState.UNSET

    first = asyncio.run(machine.resolve_route("/system/user"))
    second = asyncio.run(machine.resolve_route("/system/role"))

    assert first.outcome == RouteOutcome.ALLOWED
    assert first.route is not None
    assert first.route.name == "User"
    assert second.allowed is True
    assert machine.state == NavigationState.READY
    assert backend.calls == 1
    assert context.navigation.permissions.tokens == frozenset({"user.list", "user.create", "role.list"})
    assert fake_redis.get("console:nav:s1") is not None


def test_directory_and_root_follow_redirects(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    machine = _machine(context, FakeMenuBackend(tree=MENU_TREE))

    directory = asyncio.run(machine.resolve_route("/system"))
    root = asyncio.run(machine.resolve_route("/"))

    assert directory.outcome == RouteOutcome.ALLOWED
    assert directory.path == "/system/user"
    assert directory.redirect_to == "/system/user"
    assert root.path == "/dashboard"
    assert context.current_path == "/dashboard"


def test_unknown_path_is_not_found(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    machine = _machine(context, FakeMenuBackend(tree=MENU_TREE))

    resolution = asyncio.run(machine.resolve_route("/system/missing"))

    assert resolution.outcome == RouteOutcome.NOT_FOUND
    assert resolution.redirect_to == "/404"
    assert resolution.route is not None
    assert resolution.route.component == NOT_FOUND_VIEW


def test_generation_failure_falls_back_and_retries(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    backend = FakeMenuBackend(tree=MENU_TREE)
    backend.fail_next(NetworkUnavailable("menu service unreachable"))
    machine = _machine(context, backend)

    degraded = asyncio.run(machine.resolve_route("/system/user"))

    assert degraded.outcome == RouteOutcome.NOT_FOUND
    assert degraded.degraded is True
    assert machine.state == NavigationState.UNSET
    assert context.route_registry.match("/dashboard") is not None
    assert fake_redis.get("console:nav:s1") is None

    recovered = asyncio.run(machine.resolve_route("/system/user"))

    assert recovered.outcome == RouteOutcome.ALLOWED
    assert recovered.degraded is False
    assert machine.state == NavigationState.READY
    assert backend.calls == 2


@pytest.mark.parametrize(
    "tree",
    [
        [{"menuType": 1, "path": "user"}],
        [
            {"id": 1, "menuType": 1, "path": "/user", "component": "system/user/index"},
            {
                "id": 2,
                "menuType": 0,
                "path": "/x",
                "children": [{"id": 3, "menuType": 1, "path": "user", "component": "system/user/index"}],
            },
        ],
    ],
)
def test_invalid_tree_commits_nothing(fake_redis: FakeRedis, tree: list[dict[str, Any]]) -> None:
    context = _logged_in_context()
    machine = _machine(context, FakeMenuBackend(tree=tree))

    resolution = asyncio.run(machine.resolve_route("/user"))

    assert resolution.outcome == RouteOutcome.NOT_FOUND
    assert resolution.degraded is True
    assert machine.state == NavigationState.UNSET
    assert context.route_registry.match("/user") is None
    assert len(context.navigation.permissions) == 0


def test_api_error_falls_back(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    backend = FakeMenuBackend(tree=MENU_TREE)
    backend.fail_next(ApiError(500, "menu query failed"))
    machine = _machine(context, backend)

    resolution = asyncio.run(machine.resolve_route("/dashboard"))

    assert resolution.outcome == RouteOutcome.ALLOWED
    assert resolution.degraded is True
    assert machine.state == NavigationState.UNSET


def test_concurrent_navigations_share_one_generation(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    backend = FakeMenuBackend(tree=MENU_TREE, delay_seconds=0.01)
    machine = _machine(context, backend)

    async def navigate() -> list[Any]:
        return await asyncio.gather(
            machine.resolve_route("/system/user"),
            machine.resolve_route("/system/role"),
            machine.resolve_route("/dashboard"),
        )

    results = asyncio.run(navigate())

    assert [result.outcome for result in results] == [RouteOutcome.ALLOWED] * 3
    assert backend.calls == 1


def test_restart_reregisters_without_fetching(fake_redis: FakeRedis) -> None:
    backend = FakeMenuBackend(tree=MENU_TREE)
    first = _machine(_logged_in_context(), backend)
    asyncio.run(first.resolve_route("/system/user"))
    assert backend.calls == 1

    restarted_context = _context()
    restarted = _machine(restarted_context, backend)

    assert restarted.on_process_start() is True
    assert restarted.state == NavigationState.READY
    assert restarted_context.route_registry.is_registered is False

    resolution = asyncio.run(restarted.resolve_route("/system/role"))

    assert resolution.outcome == RouteOutcome.ALLOWED
    assert restarted_context.route_registry.is_registered is True
    assert backend.calls == 1


def test_restart_without_snapshot_regenerates(fake_redis: FakeRedis) -> None:
    backend = FakeMenuBackend(tree=MENU_TREE)
    asyncio.run(_machine(_logged_in_context(), backend).resolve_route("/system/user"))
    fake_redis.delete("console:nav:s1")

    restarted = _machine(_context(), backend)

    assert restarted.on_process_start() is False
    assert restarted.state == NavigationState.UNSET
    assert asyncio.run(restarted.resolve_route("/system/user")).allowed is True
    assert backend.calls == 2


def test_missing_permission_is_denied_not_unauthenticated(fake_redis: FakeRedis) -> None:
    tree = normalize_menu_tree(
        [
            {
                "id": 1,
                "menuType": 0,
                "path": "/system",
                "children": [
                    {
                        "id": 12,
                        "menuType": 1,
                        "path": "role",
                        "component": "system/role/index",
                        "perms": "role.delete",
                    },
                ],
            }
        ]
    )
    _logged_in_context()
    NavigationSnapshotStore("s1").save(
        NavigationSnapshot(
            state=NavigationState.READY,
            permissions=["role.read"],
            menu_tree=list(tree),
        )
    )
    context = _context()
    backend = FakeMenuBackend(tree=MENU_TREE)
    machine = _machine(context, backend)
    assert machine.on_process_start() is True

    resolution = asyncio.run(machine.resolve_route("/system/role"))

    assert resolution.outcome == RouteOutcome.DENIED
    assert resolution.redirect_to == "/404"
    assert resolution.reason == "missing permission role.delete"
    assert context.is_authenticated is True
    assert PermissionGuard(context).has_permission("role.delete") is False
    assert PermissionGuard(context).has_permission("role.read") is True
    assert backend.calls == 0


def test_unauthenticated_navigation_preserves_destination(fake_redis: FakeRedis) -> None:
    context = _context()
    backend = FakeMenuBackend(tree=MENU_TREE)
    machine = _machine(context, backend)

    blocked = asyncio.run(machine.resolve_route("/system/role?tab=2"))

    assert blocked.outcome == RouteOutcome.UNAUTHENTICATED
    assert blocked.redirect_to == "/login"
    assert context.intended_destination == "/system/role?tab=2"
    assert backend.calls == 0

    context.start_session(SessionCredential(access_token="access-1", refresh_token="refresh-1"))
    landed = asyncio.run(machine.resolve_route("/login"))

    assert landed.outcome == RouteOutcome.ALLOWED
    assert landed.path == "/system/role"
    assert landed.redirect_to == "/system/role?tab=2"
    assert context.intended_destination is None


def test_public_routes_need_no_session(fake_redis: FakeRedis) -> None:
    context = _context()
    backend = FakeMenuBackend(tree=MENU_TREE)
    machine = _machine(context, backend)

    assert asyncio.run(machine.resolve_route("/login")).allowed is True
    assert asyncio.run(machine.resolve_route("/404")).allowed is True
    assert backend.calls == 0


def test_reset_forces_regeneration(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    backend = FakeMenuBackend(tree=MENU_TREE)
    machine = _machine(context, backend)
    asyncio.run(machine.resolve_route("/system/user"))

    machine.reset()

    assert machine.state == NavigationState.UNSET
    assert context.route_registry.is_registered is False
    assert fake_redis.get("console:nav:s1") is None
    asyncio.run(machine.resolve_route("/system/user"))
    assert backend.calls == 2


def test_navigation_transitions() -> None:
    assert can_navigation_transition(NavigationState.UNSET, NavigationState.GENERATING) is True
    assert can_navigation_transition(NavigationState.GENERATING, NavigationState.READY) is True
    assert can_navigation_transition(NavigationState.GENERATING, NavigationState.UNSET) is True
    assert can_navigation_transition(NavigationState.READY, NavigationState.UNSET) is True
    assert can_navigation_transition(NavigationState.UNSET, NavigationState.READY) is False
    assert can_navigation_transition(NavigationState.READY, NavigationState.GENERATING) is False


def test_menu_route_colliding_with_dashboard_is_rejected(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    backend = FakeMenuBackend(
        tree=[{"id": 1, "menuType": 1, "path": "dashboard", "component": "system/user/index"}],
    )
    machine = _machine(context, backend)

    resolution = asyncio.run(machine.resolve_route("/dashboard"))

    assert resolution.degraded is True
    assert resolution.route is not None
    assert resolution.route.component == DASHBOARD_VIEW
    assert machine.state == NavigationState.UNSET
    root = context.route_registry.routes[0]
    assert [child.name for child in root.children] == ["Dashboard"]


def test_reset_during_fetch_regenerates(fake_redis: FakeRedis) -> None:
    context = _logged_in_context()
    backend = FakeMenuBackend(tree=MENU_TREE, delay_seconds=0.02)
    machine = _machine(context, backend)

    async def scenario() -> Any:
        pending = asyncio.ensure_future(machine.resolve_route("/system/user"))
        await asyncio.sleep(0.005)
        machine.reset()
        return await pending

    resolution = asyncio.run(scenario())

    assert resolution.outcome == RouteOutcome.ALLOWED
    assert machine.state == NavigationState.READY
    assert backend.calls == 2


def test_generation_outliving_cancelled_navigation_is_reported(
    fake_redis: FakeRedis,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING, logger="console_client")
    context = _logged_in_context()
    backend = FakeMenuBackend(tree=MENU_TREE, delay_seconds=0.02)
    backend.fail_next(RuntimeError("menu source crashed"))
    machine = _machine(context, backend)

    async def scenario() -> None:
        pending = asyncio.ensure_future(machine.resolve_route("/system/user"))
        await asyncio.sleep(0.005)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert "route generation ended with RuntimeError('menu source crashed')" in caplog.text
    assert machine.state == NavigationState.UNSET
    assert asyncio.run(machine.resolve_route("/system/user")).allowed is True
    assert backend.calls == 2
