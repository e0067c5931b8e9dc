from __future__ import annotations

from typing import Any, Protocol


class MenuBackend(Protocol):
    async def fetch_user_menu_tree(self) -> Any: ...
