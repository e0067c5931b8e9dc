from __future__ import annotations

import os
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from console_client.domain.errors import MalformedTreeError
from console_client.domain.models import MenuKind, MenuNode, MenuStatus, Visibility
from console_client.domain.permissions import PermissionSet

MAX_MENU_DEPTH = int(os.getenv("CONSOLE_MAX_MENU_DEPTH", "32"))

MENU_KIND_CODES: dict[int, MenuKind] = {
    0: MenuKind.DIRECTORY,
    1: MenuKind.LEAF,
    2: MenuKind.ACTION,
}

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "menu_id": ("id", "menuId", "menu_id"),
    "menu_name": ("menuName", "menu_name", "title", "name"),
    "parent_id": ("parentId", "parent_id"),
    "sort_order": ("sort", "sortOrder", "sort_order"),
    "path": ("path",),
    "component": ("component",),
    "query": ("query",),
    "is_external_link": ("isFrame", "is_frame", "isExternalLink"),
    "is_cached": ("isCache", "is_cache", "isCached"),
    "kind": ("menuType", "menu_type", "kind"),
    "visibility": ("visible", "visibility"),
    "status": ("status",),
    "permission": ("perms", "permission"),
    "icon": ("icon",),
    "children": ("children",),
}

TRUTHY_FLAGS = {"1", "true", "yes", "y"}


def _pick(record: Mapping[str, Any], field: str) -> Any:
    for alias in FIELD_ALIASES[field]:
        value = record.get(alias)
        if value is not None and value != "":
            return value
    return None


def _as_int(value: Any, field: str, path: Sequence[int], *, default: int | None = None) -> int:
    if value is None:
        if default is None:
            raise MalformedTreeError(f"menu record is missing {field}", path=path)
        return default
    if isinstance(value, bool):
        raise MalformedTreeError(f"menu {field} must be an integer, got {value!r}", path=path)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedTreeError(f"menu {field} must be an integer, got {value!r}", path=path) from exc


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def _as_flag(value: Any) -> bool:
    return _as_str(value).strip().lower() in TRUTHY_FLAGS


def _as_kind(value: Any, path: Sequence[int]) -> MenuKind | int | str:
    if value is None:
        raise MalformedTreeError("menu record is missing menuType", path=path)
    if isinstance(value, int) and not isinstance(value, bool):
        return MENU_KIND_CODES.get(value, value)
    if isinstance(value, str):
        try:
            return MenuKind(value)
        except ValueError:
            return value
    raise MalformedTreeError(f"menu type has unsupported value {value!r}", path=path)


def _as_visibility(value: Any, path: Sequence[int]) -> Visibility:
    if value is None:
        return Visibility.VISIBLE
    try:
        return Visibility(_as_str(value).strip())
    except ValueError as exc:
        raise MalformedTreeError(f"menu visible has unsupported value {value!r}", path=path) from exc


def _as_status(value: Any, path: Sequence[int]) -> MenuStatus:
    if value is None:
        return MenuStatus.ACTIVE
    try:
        return MenuStatus(_as_str(value).strip())
    except ValueError as exc:
        raise MalformedTreeError(f"menu status has unsupported value {value!r}", path=path) from exc


def _normalize_record(
    record: Any,
    *,
    path: tuple[int, ...],
    max_depth: int,
) -> MenuNode:
    if not isinstance(record, Mapping):
        raise MalformedTreeError(f"menu record must be an object, got {type(record).__name__}", path=path)

    raw_children = _pick(record, "children") or []
    children = _normalize_level(raw_children, path=path, max_depth=max_depth)

    return MenuNode(
        menu_id=_as_int(_pick(record, "menu_id"), "id", path),
        menu_name=_as_str(_pick(record, "menu_name")),
        parent_id=_as_int(_pick(record, "parent_id"), "parentId", path, default=0),
        sort_order=_as_int(_pick(record, "sort_order"), "sort", path, default=0),
        path=_as_str(_pick(record, "path")),
        component=_as_str(_pick(record, "component")),
        query=_as_str(_pick(record, "query")),
        is_external_link=_as_flag(_pick(record, "is_external_link")),
        is_cached=_as_flag(_pick(record, "is_cached")),
        kind=_as_kind(_pick(record, "kind"), path),
        visibility=_as_visibility(_pick(record, "visibility"), path),
        status=_as_status(_pick(record, "status"), path),
        permission=_as_str(_pick(record, "permission")).strip(),
        icon=_as_str(_pick(record, "icon")),
        children=children,
    )


def _normalize_level(
    records: Any,
    *,
    path: tuple[int, ...],
    max_depth: int,
) -> tuple[MenuNode, ...]:
    if not isinstance(records, (list, tuple)):
        raise MalformedTreeError(f"menu children must be a list, got {type(records).__name__}", path=path)
    if records and len(path) >= max_depth:
        raise MalformedTreeError(f"menu tree exceeds maximum depth {max_depth}", path=path)
    nodes = [
        _normalize_record(record, path=(*path, index), max_depth=max_depth)
        for index, record in enumerate(records)
    ]
    # sorted() is stable: equal sort keys keep backend order.
    return tuple(sorted(nodes, key=lambda node: node.sort_order))


def normalize_menu_tree(records: Any, *, max_depth: int | None = None) -> tuple[MenuNode, ...]:
    """Map raw backend menu records onto canonical ``MenuNode`` trees.

    Accepts camelCase or snake_case field names and the integer menu type
    encoding (0 directory, 1 page, 2 button). Unknown integer kinds are kept
    unchanged. Raises ``MalformedTreeError`` for structurally invalid input,
    including trees deeper than ``max_depth``.
    """
    if records is None:
        return ()
    return _normalize_level(records, path=(), max_depth=max_depth or MAX_MENU_DEPTH)


def iter_menu_nodes(tree: Sequence[MenuNode]) -> Iterator[MenuNode]:
    stack = list(reversed(tree))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def extract_permissions(tree: Sequence[MenuNode]) -> PermissionSet:
    # Hidden, disabled and button nodes all count.
    return PermissionSet(node.permission for node in iter_menu_nodes(tree) if node.permission)
