from __future__ import annotations

from collections.abc import Sequence


class MenuTreeError(Exception):
    pass


class MalformedTreeError(MenuTreeError):
    def __init__(self, message: str, *, path: Sequence[int] = ()) -> None:
        location = "/".join(str(index) for index in path)
        super().__init__(f"{message} (at node {location})" if location else message)
        self.path = tuple(path)


class DuplicateRouteNameError(MenuTreeError):
    def __init__(self, duplicates: dict[str, list[str]]) -> None:
        details = "; ".join(
            f"{name}: {', '.join(paths)}" for name, paths in sorted(duplicates.items())
        )
        super().__init__(f"Duplicate route names: {details}")
        self.duplicates = duplicates

    @property
    def names(self) -> list[str]:
        return sorted(self.duplicates)


class SessionError(Exception):
    pass


class CredentialExpired(SessionError):
    pass


class RefreshFailed(SessionError):
    pass


class NetworkUnavailable(SessionError):
    pass


class ReauthenticationRequired(SessionError):
    def __init__(self, reason: str, *, redirect: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.redirect = redirect


class ApiError(SessionError):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
