from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_LAYOUT = "Layout"
BLANK_LAYOUT = "BlankLayout"
NOT_FOUND_VIEW = "error/404"
DASHBOARD_VIEW = "dashboard/index"
LOGIN_VIEW = "auth/login/index"

VIEW_KEY_PREFIXES = ("/src/views/", "src/views/", "@/views/")
VIEW_KEY_SUFFIXES = (".vue", ".py")

ComponentFactory = Callable[[], Any]


def normalize_view_key(reference: str) -> str:
    """Reduce a component reference to its registry key.

    ``/src/views/system/user/index.vue``, ``system/user/index`` and
    ``/system/user/index`` all map to ``system/user/index``.
    """
    key = reference.strip().replace("\\", "/")
    for prefix in VIEW_KEY_PREFIXES:
        if key.startswith(prefix):
            key = key[len(prefix) :]
            break
    for suffix in VIEW_KEY_SUFFIXES:
        if key.endswith(suffix):
            key = key[: -len(suffix)]
            break
    return key.strip("/")


@dataclass(frozen=True)
class ComponentEntry:
    key: str
    factory: ComponentFactory


class ViewComponentRegistry:
    """Process-wide table of layouts and views, filled once at startup."""

    def __init__(self) -> None:
        self._views: dict[str, ComponentEntry] = {}
        self._layouts: dict[str, ComponentEntry] = {}
        self._frozen = False

    def register_view(self, reference: str, factory: ComponentFactory) -> None:
        self._ensure_open()
        key = normalize_view_key(reference)
        self._views[key] = ComponentEntry(key=key, factory=factory)

    def register_views(self, views: Mapping[str, ComponentFactory]) -> None:
        for reference, factory in views.items():
            self.register_view(reference, factory)

    def register_layout(self, name: str, factory: ComponentFactory) -> None:
        self._ensure_open()
        self._layouts[name] = ComponentEntry(key=name, factory=factory)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def resolve(self, reference: str) -> ComponentEntry | None:
        if not reference:
            return None
        return self._views.get(normalize_view_key(reference))

    def resolve_layout(self, name: str) -> ComponentEntry | None:
        return self._layouts.get(name)

    def view_keys(self) -> list[str]:
        return sorted(self._views)

    def _ensure_open(self) -> None:
        if self._frozen:
            raise RuntimeError("component registry is frozen after startup")


def _placeholder(key: str) -> ComponentFactory:
    return lambda: key


def build_default_registry(
    views: Mapping[str, ComponentFactory] | None = None,
    *,
    freeze: bool = True,
) -> ViewComponentRegistry:
    registry = ViewComponentRegistry()
    registry.register_layout(DEFAULT_LAYOUT, _placeholder(DEFAULT_LAYOUT))
    registry.register_layout(BLANK_LAYOUT, _placeholder(BLANK_LAYOUT))
    for key in (NOT_FOUND_VIEW, DASHBOARD_VIEW, LOGIN_VIEW):
        registry.register_view(key, _placeholder(key))
    if views:
        registry.register_views(views)
    if freeze:
        registry.freeze()
    return registry
