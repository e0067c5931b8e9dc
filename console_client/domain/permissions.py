from __future__ import annotations

from collections.abc import Iterable, Iterator

PERM_WILDCARD = "*"
PERM_PREFIX_WILDCARD_SUFFIX = ".*"


class PermissionSet:
    """Immutable set of permission tokens with wildcard-aware membership.

    ``token in permissions`` holds when the token is stored verbatim, when the
    universal ``*`` is stored, or when a stored ``prefix.*`` token covers it
    (``user.*`` covers ``user.create`` but not ``username.read``).
    """

    __slots__ = ("_tokens", "_prefixes")

    def __init__(self, tokens: Iterable[str] = ()) -> None:
        self._tokens = frozenset(token for token in tokens if token)
        self._prefixes = tuple(
            sorted(
                token[: -len(PERM_PREFIX_WILDCARD_SUFFIX)] + "."
                for token in self._tokens
                if token.endswith(PERM_PREFIX_WILDCARD_SUFFIX)
            )
        )

    @property
    def tokens(self) -> frozenset[str]:
        return self._tokens

    def allows(self, permission: str) -> bool:
        if not permission:
            return True
        if permission in self._tokens or PERM_WILDCARD in self._tokens:
            return True
        return any(permission.startswith(prefix) for prefix in self._prefixes)

    def allows_any(self, permissions: Iterable[str]) -> bool:
        expected = [item for item in permissions if item]
        if not expected:
            return True
        return any(self.allows(item) for item in expected)

    def __contains__(self, permission: object) -> bool:
        return isinstance(permission, str) and self.allows(permission)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._tokens))

    def __len__(self) -> int:
        return len(self._tokens)

    def __bool__(self) -> bool:
        return bool(self._tokens)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PermissionSet):
            return self._tokens == other._tokens
        if isinstance(other, (set, frozenset)):
            return self._tokens == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._tokens)

    def __repr__(self) -> str:
        return f"PermissionSet({sorted(self._tokens)!r})"


EMPTY_PERMISSIONS = PermissionSet()
