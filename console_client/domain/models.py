from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from console_client.domain.state_machine import NavigationState, RouteOutcome


def now_utc() -> datetime:
    return datetime.now(UTC)


class MenuKind(StrEnum):
    DIRECTORY = "M"
    LEAF = "C"
    ACTION = "F"


class Visibility(StrEnum):
    VISIBLE = "0"
    HIDDEN = "1"


class MenuStatus(StrEnum):
    ACTIVE = "0"
    DISABLED = "1"


class MenuNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    menu_id: int
    menu_name: str = ""
    parent_id: int = 0
    sort_order: int = 0
    path: str = ""
    component: str = ""
    query: str = ""
    is_external_link: bool = False
    is_cached: bool = False
    # Out-of-range backend kinds are kept as-is so they stay visible downstream.
    kind: MenuKind | int | str
    visibility: Visibility = Visibility.VISIBLE
    status: MenuStatus = MenuStatus.ACTIVE
    permission: str = ""
    icon: str = ""
    children: tuple[MenuNode, ...] = ()

    @property
    def is_directory(self) -> bool:
        return self.kind == MenuKind.DIRECTORY

    @property
    def is_leaf(self) -> bool:
        return self.kind == MenuKind.LEAF

    @property
    def is_action(self) -> bool:
        return self.kind == MenuKind.ACTION

    @property
    def is_hidden(self) -> bool:
        return self.visibility == Visibility.HIDDEN


class RouteMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    icon: str = ""
    permission: str = ""
    hidden: bool = False
    keep_alive: bool = False
    external_link: bool = False
    query: str = ""
    requires_auth: bool = True


class RouteNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    name: str
    component: str
    is_container: bool = False
    redirect: str | None = None
    meta: RouteMeta = PydanticField(default_factory=RouteMeta)
    children: tuple[RouteNode, ...] = ()


class ComponentResolutionMiss(BaseModel):
    model_config = ConfigDict(frozen=True)

    route_name: str
    component_key: str
    fallback: str


class RouteResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: RouteOutcome
    target: str
    path: str | None = None
    route: RouteNode | None = None
    redirect_to: str | None = None
    reason: str | None = None
    degraded: bool = False

    @property
    def allowed(self) -> bool:
        return self.outcome == RouteOutcome.ALLOWED


class UserInfo(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_id: int | str | None = PydanticField(
        default=None,
        validation_alias=AliasChoices("userId", "user_id"),
    )
    username: str = ""
    nickname: str = ""
    email: str | None = None
    avatar: str | None = None
    user_type: str | None = PydanticField(
        default=None,
        validation_alias=AliasChoices("userType", "user_type"),
    )


class TokenPair(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = PydanticField(validation_alias=AliasChoices("accessToken", "access_token"))
    refresh_token: str = PydanticField(
        default="",
        validation_alias=AliasChoices("refreshToken", "refresh_token"),
    )
    expires_in: int | None = PydanticField(
        default=None,
        validation_alias=AliasChoices("expiresIn", "expires_in"),
    )
    refresh_expires_in: int | None = PydanticField(
        default=None,
        validation_alias=AliasChoices("refreshExpiresIn", "refresh_expires_in"),
    )


class LoginResult(TokenPair):
    user_info: UserInfo | None = PydanticField(
        default=None,
        validation_alias=AliasChoices("userInfo", "user_info"),
    )


class SessionCredential(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str = ""
    expires_in: int | None = None
    refresh_expires_in: int | None = None
    user: UserInfo | None = None
    issued_at: datetime = PydanticField(default_factory=now_utc)

    @classmethod
    def from_tokens(cls, tokens: TokenPair, user: UserInfo | None = None) -> SessionCredential:
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
            refresh_expires_in=tokens.refresh_expires_in,
            user=user,
        )


class StoredCredential(SQLModel, table=True):
    __tablename__ = "session_credentials"

    profile: str = Field(primary_key=True)
    access_token: str
    refresh_token: str = ""
    expires_in: int | None = None
    refresh_expires_in: int | None = None
    user_info: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    issued_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class NavigationSnapshot(BaseModel):
    state: NavigationState = NavigationState.UNSET
    permissions: list[str] = PydanticField(default_factory=list)
    menu_tree: list[MenuNode] = PydanticField(default_factory=list)

    @property
    def is_restorable(self) -> bool:
        return self.state == NavigationState.READY and bool(self.permissions or self.menu_tree)


class ApiEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: int
    message: str = PydanticField(default="", validation_alias=AliasChoices("msg", "message"))
    data: Any = None
