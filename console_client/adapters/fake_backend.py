from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from typing import Any


@dataclass
class FakeMenuBackend:
    """In-memory menu source with scriptable failures."""

    tree: list[dict[str, Any]] = field(default_factory=list)
    delay_seconds: float = 0.0
    failures: list[BaseException] = field(default_factory=list)
    calls: int = 0

    def set_tree(self, tree: list[dict[str, Any]]) -> None:
        self.tree = tree

    def fail_next(self, *errors: BaseException) -> None:
        self.failures.extend(errors)

    async def fetch_user_menu_tree(self) -> Any:
        self.calls += 1
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        if self.failures:
            raise self.failures.pop(0)
        return copy.deepcopy(self.tree)
