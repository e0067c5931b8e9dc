from __future__ import annotations

import os

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

DATABASE_URL = os.getenv(
    "CONSOLE_DATABASE_URL",
    "sqlite:///./console_session.db",
)

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)


def get_engine() -> Engine:
    return engine


def init_db() -> None:
    # Registers the credential table on the shared metadata.
    from console_client.domain import models  # noqa: F401

    SQLModel.metadata.create_all(get_engine())
