from __future__ import annotations

import logging
import os

from pydantic import ValidationError
from sqlmodel import Session

from console_client.domain.models import (
    NavigationSnapshot,
    SessionCredential,
    StoredCredential,
    UserInfo,
    now_utc,
)
from console_client.infra import db, redis_state

logger = logging.getLogger(__name__)

NAV_SNAPSHOT_KEY_PREFIX = "console:nav:"
SNAPSHOT_TTL_SECONDS = int(os.getenv("CONSOLE_SNAPSHOT_TTL_SECONDS", "28800"))
DEFAULT_PROFILE = "default"


class NavigationSnapshotStore:
    """Session-scoped navigation snapshot kept in Redis.

    Survives a process restart within one session, expires with the TTL.
    """

    def __init__(self, session_key: str, *, ttl_seconds: int | None = None) -> None:
        self._key = f"{NAV_SNAPSHOT_KEY_PREFIX}{session_key}"
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else SNAPSHOT_TTL_SECONDS

    @property
    def key(self) -> str:
        return self._key

    def load(self) -> NavigationSnapshot | None:
        raw = redis_state.get_redis().get(self._key)
        if raw is None:
            return None
        try:
            return NavigationSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning("discarding unreadable navigation snapshot key=%s", self._key)
            self.clear()
            return None

    def save(self, snapshot: NavigationSnapshot) -> None:
        redis = redis_state.get_redis()
        if self._ttl_seconds > 0:
            redis.set(self._key, snapshot.model_dump_json(), ex=self._ttl_seconds)
        else:
            redis.set(self._key, snapshot.model_dump_json())

    def clear(self) -> None:
        redis_state.get_redis().delete(self._key)


class CredentialStore:
    """Credential pair persisted in the database until explicitly cleared."""

    def __init__(self, profile: str = DEFAULT_PROFILE) -> None:
        self._profile = profile

    @property
    def profile(self) -> str:
        return self._profile

    def load(self) -> SessionCredential | None:
        with Session(db.get_engine()) as session:
            row = session.get(StoredCredential, self._profile)
            if row is None or not row.access_token:
                return None
            user = UserInfo.model_validate(row.user_info) if row.user_info else None
            return SessionCredential(
                access_token=row.access_token,
                refresh_token=row.refresh_token,
                expires_in=row.expires_in,
                refresh_expires_in=row.refresh_expires_in,
                user=user,
                issued_at=row.issued_at,
            )

    def save(self, credential: SessionCredential) -> None:
        user_info = credential.user.model_dump(mode="json") if credential.user else None
        with Session(db.get_engine()) as session:
            row = session.get(StoredCredential, self._profile)
            if row is None:
                row = StoredCredential(profile=self._profile, access_token=credential.access_token)
            row.access_token = credential.access_token
            row.refresh_token = credential.refresh_token
            row.expires_in = credential.expires_in
            row.refresh_expires_in = credential.refresh_expires_in
            row.user_info = user_info
            row.issued_at = credential.issued_at
            row.updated_at = now_utc()
            session.add(row)
            session.commit()

    def clear(self) -> None:
        with Session(db.get_engine()) as session:
            row = session.get(StoredCredential, self._profile)
            if row is None:
                return
            session.delete(row)
            session.commit()
