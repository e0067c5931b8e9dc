from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from redis.exceptions import RedisError

from console_client.domain.errors import SessionError
from console_client.domain.models import (
    ComponentResolutionMiss,
    MenuNode,
    NavigationSnapshot,
    RouteNode,
    SessionCredential,
    TokenPair,
    UserInfo,
)
from console_client.domain.permissions import EMPTY_PERMISSIONS, PermissionSet
from console_client.domain.state_machine import NavigationState, can_navigation_transition
from console_client.infra.session_store import CredentialStore, NavigationSnapshotStore
from console_client.services.route_registry import RouteRegistry

logger = logging.getLogger(__name__)


class NavigationTransitionError(SessionError):
    pass


@dataclass(frozen=True)
class NavigationRecord:
    state: NavigationState = NavigationState.UNSET
    permissions: PermissionSet = EMPTY_PERMISSIONS
    menu_tree: tuple[MenuNode, ...] = ()
    routes: tuple[RouteNode, ...] = ()
    misses: tuple[ComponentResolutionMiss, ...] = ()
    degraded: bool = False


@dataclass
class SessionContext:
    """The one mutable object shared by navigation and credential handling.

    Components hold a reference to the context and read through it after every
    await; nothing keeps its own copy of the credential or navigation record.
    """

    credential_store: CredentialStore
    snapshot_store: NavigationSnapshotStore
    route_registry: RouteRegistry = field(default_factory=RouteRegistry)
    credential: SessionCredential | None = None
    navigation: NavigationRecord = field(default_factory=NavigationRecord)
    intended_destination: str | None = None
    current_path: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.credential is not None and bool(self.credential.access_token)

    @property
    def access_token(self) -> str | None:
        return self.credential.access_token if self.credential else None

    @property
    def refresh_token(self) -> str | None:
        if self.credential is None or not self.credential.refresh_token:
            return None
        return self.credential.refresh_token

    @property
    def user(self) -> UserInfo | None:
        return self.credential.user if self.credential else None

    # credential lifecycle

    def start_session(self, credential: SessionCredential) -> None:
        self.reset_navigation()
        self.credential = credential
        self.credential_store.save(credential)

    def replace_credential(self, tokens: TokenPair) -> SessionCredential:
        user = self.credential.user if self.credential else None
        credential = SessionCredential.from_tokens(tokens, user=user)
        self.credential = credential
        self.credential_store.save(credential)
        return credential

    def update_user(self, user: UserInfo) -> None:
        if self.credential is None:
            return
        self.credential = self.credential.model_copy(update={"user": user})
        self.credential_store.save(self.credential)

    def clear(self, *, preserve_destination: str | None = None) -> None:
        self.credential = None
        self.credential_store.clear()
        self.reset_navigation()
        self.current_path = None
        self.intended_destination = preserve_destination

    def pop_intended_destination(self) -> str | None:
        destination, self.intended_destination = self.intended_destination, None
        return destination

    # navigation lifecycle

    def transition(self, target: NavigationState) -> None:
        source = self.navigation.state
        if source == target:
            return
        if not can_navigation_transition(source, target):
            raise NavigationTransitionError(f"navigation cannot move from {source} to {target}")
        self.navigation = replace(self.navigation, state=target)

    def commit_navigation(
        self,
        menu_tree: Sequence[MenuNode],
        permissions: PermissionSet,
        routes: Sequence[RouteNode],
        misses: Sequence[ComponentResolutionMiss] = (),
    ) -> None:
        self.transition(NavigationState.READY)
        self.navigation = NavigationRecord(
            state=NavigationState.READY,
            permissions=permissions,
            menu_tree=tuple(menu_tree),
            routes=tuple(routes),
            misses=tuple(misses),
        )
        self.route_registry.register(self.navigation.routes)
        self._save_snapshot()

    def register_restored_routes(
        self,
        routes: Sequence[RouteNode],
        misses: Sequence[ComponentResolutionMiss] = (),
    ) -> None:
        self.navigation = replace(self.navigation, routes=tuple(routes), misses=tuple(misses))
        self.route_registry.register(self.navigation.routes)

    def fall_back(self, routes: Sequence[RouteNode]) -> None:
        self.navigation = NavigationRecord(
            state=NavigationState.UNSET,
            routes=tuple(routes),
            degraded=True,
        )
        self.route_registry.register(self.navigation.routes)

    def reset_navigation(self) -> None:
        self.navigation = NavigationRecord()
        self.route_registry.clear()
        try:
            self.snapshot_store.clear()
        except RedisError as exc:
            logger.warning("could not clear navigation snapshot: %s", exc)

    # process start

    def restore(self) -> bool:
        """Load persisted state after a process start.

        Returns True when a ready navigation snapshot was restored; its routes
        still have to be registered before the next navigation completes.
        """
        self.credential = self.credential_store.load()
        self.navigation = NavigationRecord()
        self.route_registry.clear()
        try:
            snapshot = self.snapshot_store.load()
        except RedisError as exc:
            logger.warning("navigation snapshot unavailable, routes will be regenerated: %s", exc)
            return False
        if snapshot is None:
            return False
        if not self.is_authenticated or not snapshot.is_restorable:
            self.reset_navigation()
            return False
        self.navigation = NavigationRecord(
            state=NavigationState.READY,
            permissions=PermissionSet(snapshot.permissions),
            menu_tree=tuple(snapshot.menu_tree),
        )
        return True

    def _save_snapshot(self) -> None:
        snapshot = NavigationSnapshot(
            state=self.navigation.state,
            permissions=sorted(self.navigation.permissions.tokens),
            menu_tree=list(self.navigation.menu_tree),
        )
        try:
            self.snapshot_store.save(snapshot)
        except RedisError as exc:
            logger.warning("could not persist navigation snapshot: %s", exc)
