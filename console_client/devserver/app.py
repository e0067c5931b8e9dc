from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import AliasChoices, BaseModel, ConfigDict
from pydantic import Field as PydanticField

from console_client.devserver.auth import (
    ACCESS_TTL_SECONDS,
    REFRESH_TTL_SECONDS,
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    TokenError,
    create_token,
    decode_token,
)
from console_client.domain.permissions import PermissionSet
from console_client.infra.http_client import CLIENT_KEY, CLIENT_SECRET

CODE_OK = 200
CODE_BAD_REQUEST = 400
CODE_UNAUTHORIZED = 401
CODE_FORBIDDEN = 403


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


@dataclass
class DevUser:
    user_id: int
    username: str
    password_hash: str
    nickname: str
    grants: list[str] = field(default_factory=list)

    def info(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "nickname": self.nickname,
            "userType": "sys_user",
        }


def _menu(
    menu_id: int,
    name: str,
    parent_id: int,
    sort: int,
    path: str,
    menu_type: int,
    *,
    component: str = "",
    perms: str = "",
    visible: int = 0,
    icon: str = "",
    children: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "id": menu_id,
        "menuName": name,
        "parentId": parent_id,
        "sort": sort,
        "path": path,
        "component": component,
        "menuType": menu_type,
        "visible": visible,
        "status": 0,
        "isFrame": 0,
        "isCache": 0,
        "perms": perms,
        "icon": icon,
        "children": children or [],
    }


DEV_MENU_TREE: list[dict[str, Any]] = [
    _menu(
        1, "System", 0, 1, "/system", 0, component="Layout", icon="setting",
        children=[
            _menu(
                11, "Users", 1, 1, "user", 1, component="system/user/index", perms="user.list",
                children=[
                    _menu(111, "Create user", 11, 1, "", 2, perms="user.create"),
                    _menu(112, "Delete user", 11, 2, "", 2, perms="user.delete"),
                ],
            ),
            _menu(
                12, "Roles", 1, 2, "role", 1, component="system/role/index", perms="role.list",
                children=[_menu(121, "Delete role", 12, 1, "", 2, perms="role.delete")],
            ),
            _menu(13, "Menus", 1, 3, "menu", 1, component="system/menu/index", perms="menu.list"),
        ],
    ),
    _menu(
        2, "Monitor", 0, 2, "/monitor", 0, icon="monitor",
        children=[
            _menu(21, "Login log", 2, 1, "loginlog", 1, component="monitor/loginlog/index", perms="log.login.list"),
            _menu(
                22, "Operation log detail", 2, 2, "operlog-detail", 1,
                component="monitor/operlog/detail", perms="log.oper.query", visible=1,
            ),
        ],
    ),
]


def default_users() -> dict[str, DevUser]:
    users = [
        DevUser(1, "admin", _hash_password("admin123"), "Administrator", ["*"]),
        DevUser(2, "viewer", _hash_password("viewer123"), "Viewer", ["user.list", "role.list", "log.*"]),
    ]
    return {user.username: user for user in users}


@dataclass
class DevServerState:
    users: dict[str, DevUser] = field(default_factory=default_users)
    menu_tree: list[dict[str, Any]] = field(default_factory=lambda: DEV_MENU_TREE)
    access_ttl_seconds: int = ACCESS_TTL_SECONDS
    refresh_ttl_seconds: int = REFRESH_TTL_SECONDS
    revoked_refresh: set[str] = field(default_factory=set)
    refresh_calls: int = 0
    menu_calls: int = 0

    def issue_tokens(self, user: DevUser, client_key: str) -> dict[str, Any]:
        return {
            "accessToken": create_token(
                user_id=str(user.user_id),
                token_type=TOKEN_TYPE_ACCESS,
                expires_seconds=self.access_ttl_seconds,
                client_key=client_key,
            ),
            "refreshToken": create_token(
                user_id=str(user.user_id),
                token_type=TOKEN_TYPE_REFRESH,
                expires_seconds=self.refresh_ttl_seconds,
                client_key=client_key,
            ),
            "expiresIn": self.access_ttl_seconds,
            "refreshExpiresIn": self.refresh_ttl_seconds,
        }

    def user_by_id(self, user_id: str) -> DevUser | None:
        return next((user for user in self.users.values() if str(user.user_id) == user_id), None)


class EnvelopeError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    grant_type: str = PydanticField(default="password", validation_alias=AliasChoices("grantType", "grant_type"))
    username: str = ""
    password: str = ""
    client_key: str = PydanticField(default="", validation_alias=AliasChoices("clientKey", "client_key"))
    client_secret: str = PydanticField(default="", validation_alias=AliasChoices("clientSecret", "client_secret"))


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = PydanticField(validation_alias=AliasChoices("refreshToken", "refresh_token"))
    client_key: str = PydanticField(default="", validation_alias=AliasChoices("clientKey", "client_key"))
    client_secret: str = PydanticField(default="", validation_alias=AliasChoices("clientSecret", "client_secret"))


def ok(data: Any = None) -> dict[str, Any]:
    return {"code": CODE_OK, "msg": "success", "data": data}


def filter_menu_tree(nodes: list[dict[str, Any]], grants: PermissionSet) -> list[dict[str, Any]]:
    kept: list[dict[str, Any]] = []
    for node in nodes:
        perms = node.get("perms") or ""
        if perms and not grants.allows(perms):
            continue
        children = filter_menu_tree(node.get("children") or [], grants)
        if node.get("menuType") == 0 and not children:
            continue
        kept.append({**node, "children": children})
    return kept


bearer_scheme = HTTPBearer(auto_error=False)


def get_state(request: Request) -> DevServerState:
    return request.app.state.dev


def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> DevUser:
    if credentials is None:
        raise EnvelopeError(CODE_UNAUTHORIZED, "missing token")
    try:
        claims = decode_token(credentials.credentials, expected_type=TOKEN_TYPE_ACCESS)
    except TokenError as exc:
        raise EnvelopeError(CODE_UNAUTHORIZED, str(exc)) from exc
    user = get_state(request).user_by_id(str(claims.get("sub")))
    if user is None:
        raise EnvelopeError(CODE_UNAUTHORIZED, "unknown user")
    return user


State = Annotated[DevServerState, Depends(get_state)]
CurrentUser = Annotated[DevUser, Depends(get_current_user)]


def create_app(state: DevServerState | None = None) -> FastAPI:
    """Reference backend for the login, refresh and user menu tree endpoints.

    Errors use the ``{code, msg, data}`` envelope with HTTP 200, the way the
    production backend reports them.
    """
    app = FastAPI(title="console-devserver", version="0.1.0")
    app.state.dev = state or DevServerState()

    @app.exception_handler(EnvelopeError)
    async def _envelope_error(_request: Request, exc: EnvelopeError) -> JSONResponse:
        return JSONResponse({"code": exc.code, "msg": exc.message, "data": None})

    @app.post("/login")
    def login(payload: LoginRequest, dev: State) -> dict[str, Any]:
        if payload.client_key != CLIENT_KEY or payload.client_secret != CLIENT_SECRET:
            raise EnvelopeError(CODE_BAD_REQUEST, "unknown client")
        user = dev.users.get(payload.username)
        if user is None or user.password_hash != _hash_password(payload.password):
            raise EnvelopeError(CODE_UNAUTHORIZED, "invalid username or password")
        return ok({**dev.issue_tokens(user, payload.client_key), "userInfo": user.info()})

    @app.post("/auth/refresh")
    def refresh(payload: RefreshRequest, dev: State) -> dict[str, Any]:
        dev.refresh_calls += 1
        try:
            claims = decode_token(payload.refresh_token, expected_type=TOKEN_TYPE_REFRESH)
        except TokenError as exc:
            raise EnvelopeError(CODE_UNAUTHORIZED, str(exc)) from exc
        jti = str(claims.get("jti"))
        if jti in dev.revoked_refresh:
            raise EnvelopeError(CODE_UNAUTHORIZED, "refresh token already used")
        user = dev.user_by_id(str(claims.get("sub")))
        if user is None:
            raise EnvelopeError(CODE_UNAUTHORIZED, "unknown user")
        dev.revoked_refresh.add(jti)
        return ok(dev.issue_tokens(user, payload.client_key))

    @app.post("/logout")
    def logout(_user: CurrentUser) -> dict[str, Any]:
        return ok()

    @app.get("/me")
    def me(user: CurrentUser) -> dict[str, Any]:
        return ok(user.info())

    @app.get("/api/v1/menu/user/tree")
    def user_menu_tree(user: CurrentUser, dev: State) -> dict[str, Any]:
        dev.menu_calls += 1
        return ok(filter_menu_tree(dev.menu_tree, PermissionSet(user.grants)))

    @app.get("/api/v1/user")
    def list_users(user: CurrentUser, dev: State) -> dict[str, Any]:
        if not PermissionSet(user.grants).allows("user.list"):
            raise EnvelopeError(CODE_FORBIDDEN, "Missing permission: user.list")
        return ok([{"userId": item.user_id, "username": item.username} for item in dev.users.values()])

    return app


app = create_app()
