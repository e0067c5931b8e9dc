from __future__ import annotations

from typing import Any

from console_client.infra.http_client import USER_MENU_TREE_PATH
from console_client.services.credential_service import CredentialManager


class HttpMenuBackend:
    def __init__(self, manager: CredentialManager, *, path: str = USER_MENU_TREE_PATH) -> None:
        self._manager = manager
        self._path = path

    async def fetch_user_menu_tree(self) -> Any:
        data = await self._manager.get(self._path)
        return [] if data is None else data
