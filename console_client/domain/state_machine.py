from __future__ import annotations

from enum import StrEnum


class NavigationState(StrEnum):
    UNSET = "UNSET"
    GENERATING = "GENERATING"
    READY = "READY"


NAVIGATION_ALLOWED_TRANSITIONS: dict[NavigationState, set[NavigationState]] = {
    NavigationState.UNSET: {NavigationState.GENERATING},
    NavigationState.GENERATING: {NavigationState.READY, NavigationState.UNSET},
    NavigationState.READY: {NavigationState.UNSET},
}


def can_navigation_transition(source: NavigationState, target: NavigationState) -> bool:
    return target in NAVIGATION_ALLOWED_TRANSITIONS.get(source, set())


class RouteOutcome(StrEnum):
    ALLOWED = "ALLOWED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    DENIED = "DENIED"
    NOT_FOUND = "NOT_FOUND"
