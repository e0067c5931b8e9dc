from __future__ import annotations

import os

import httpx

API_BASE_URL = os.getenv("CONSOLE_API_BASE_URL", "http://localhost:8080")
HTTP_TIMEOUT_SECONDS = float(os.getenv("CONSOLE_HTTP_TIMEOUT_SECONDS", "30"))
CLIENT_KEY = os.getenv("CONSOLE_CLIENT_KEY", "console-web")
CLIENT_SECRET = os.getenv("CONSOLE_CLIENT_SECRET", "console-web-secret")

LOGIN_PATH = "/login"
LOGOUT_PATH = "/logout"
REFRESH_PATH = "/auth/refresh"
ME_PATH = "/me"
USER_MENU_TREE_PATH = "/api/v1/menu/user/tree"

# Calls whose 401 must never start a refresh cycle.
NON_RETRYABLE_PATH_MARKERS = ("/login", "/refresh")


def create_async_client(
    *,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout_seconds: float | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url or API_BASE_URL,
        transport=transport,
        timeout=timeout_seconds if timeout_seconds is not None else HTTP_TIMEOUT_SECONDS,
        headers={"Content-Type": "application/json;charset=UTF-8"},
    )


def bearer_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def is_retryable_path(url: str) -> bool:
    return not any(marker in url for marker in NON_RETRYABLE_PATH_MARKERS)
