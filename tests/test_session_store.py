from __future__ import annotations

from pathlib import Path

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlmodel import SQLModel, create_engine

from console_client.domain.models import NavigationSnapshot, SessionCredential, UserInfo
from console_client.domain.state_machine import NavigationState
from console_client.infra import db, redis_state
from console_client.infra.session_store import CredentialStore, NavigationSnapshotStore
from console_client.services.menu_service import normalize_menu_tree
from console_client.services.session_context import SessionContext


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self.expiries: dict[str, int | None] = {}

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._store[key] = value
        self.expiries[key] = ex
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self._store.pop(key, None) is not None)


class BrokenRedis:
    def get(self, key: str) -> str | None:
        raise RedisConnectionError("redis unavailable")

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        raise RedisConnectionError("redis unavailable")

    def delete(self, *keys: str) -> int:
        raise RedisConnectionError("redis unavailable")


@pytest.fixture()
def fake_redis(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> FakeRedis:
    db_path = tmp_path / "session_store_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    fake_redis = FakeRedis()

    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake_redis)
    return fake_redis


def test_credential_survives_new_store_instance(fake_redis: FakeRedis) -> None:
    credential = SessionCredential(
        access_token="access-1",
        refresh_token="refresh-1",
        expires_in=1800,
        user=UserInfo(user_id=7, username="ops", dept="north"),
    )
    CredentialStore("ops").save(credential)

    loaded = CredentialStore("ops").load()

    assert loaded is not None
    assert loaded.access_token == "access-1"
    assert loaded.refresh_token == "refresh-1"
    assert loaded.user is not None
    assert loaded.user.user_id == 7
    assert loaded.user.model_extra == {"dept": "north"}
    assert CredentialStore("other").load() is None

    CredentialStore("ops").clear()
    assert CredentialStore("ops").load() is None


def test_snapshot_is_written_with_ttl(fake_redis: FakeRedis) -> None:
    store = NavigationSnapshotStore("s1", ttl_seconds=600)
    tree = normalize_menu_tree([{"id": 1, "menuType": 1, "path": "/user", "perms": "user.list"}])

    store.save(NavigationSnapshot(state=NavigationState.READY, permissions=["user.list"], menu_tree=list(tree)))
    loaded = store.load()

    assert fake_redis.expiries[store.key] == 600
    assert loaded is not None
    assert loaded.is_restorable is True
    assert loaded.menu_tree[0].is_leaf is True
    assert loaded.menu_tree[0].permission == "user.list"


def test_unreadable_snapshot_is_discarded(fake_redis: FakeRedis) -> None:
    store = NavigationSnapshotStore("s1")
    fake_redis.set(store.key, "{not json")

    assert store.load() is None
    assert fake_redis.get(store.key) is None


def test_restore_ignores_snapshot_without_credential(fake_redis: FakeRedis) -> None:
    store = NavigationSnapshotStore("s1")
    store.save(NavigationSnapshot(state=NavigationState.READY, permissions=["user.list"]))
    context = SessionContext(credential_store=CredentialStore(), snapshot_store=store)

    assert context.restore() is False
    assert context.navigation.state == NavigationState.UNSET
    assert store.load() is None


def test_unavailable_redis_does_not_block_restore(monkeypatch: pytest.MonkeyPatch, fake_redis: FakeRedis) -> None:
    context = SessionContext(credential_store=CredentialStore(), snapshot_store=NavigationSnapshotStore("s1"))
    context.start_session(SessionCredential(access_token="access-1", refresh_token="refresh-1"))
    monkeypatch.setattr(redis_state, "get_redis", lambda: BrokenRedis())

    assert context.restore() is False
    assert context.is_authenticated is True
    assert context.navigation.state == NavigationState.UNSET
