from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, NoReturn

import httpx
from pydantic import ValidationError

from console_client.domain.errors import (
    ApiError,
    CredentialExpired,
    NetworkUnavailable,
    ReauthenticationRequired,
    RefreshFailed,
    SessionError,
)
from console_client.domain.models import (
    ApiEnvelope,
    LoginResult,
    SessionCredential,
    TokenPair,
    UserInfo,
)
from console_client.infra.http_client import (
    CLIENT_KEY,
    CLIENT_SECRET,
    LOGIN_PATH,
    LOGOUT_PATH,
    ME_PATH,
    REFRESH_PATH,
    bearer_header,
    create_async_client,
    is_retryable_path,
)
from console_client.services.session_context import SessionContext

logger = logging.getLogger(__name__)

# Concurrent expiries share one refresh call when enabled. Disabled, every
# expired call refreshes on its own and the last refresh to finish wins.
REFRESH_SINGLE_FLIGHT = os.getenv("CONSOLE_REFRESH_SINGLE_FLIGHT", "1").lower() not in {"0", "false", "no"}

ENVELOPE_OK = 200
ENVELOPE_UNAUTHORIZED = 401


@dataclass(frozen=True)
class ApiRequest:
    method: str
    url: str
    params: dict[str, Any] | None = None
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    authenticate: bool = True
    retry_on_expiry: bool = True


def unwrap_response(response: httpx.Response) -> Any:
    """Return the ``data`` of a success envelope or raise the matching error."""
    if response.status_code == 401:
        raise CredentialExpired(f"{response.request.method} {response.request.url} returned 401")
    try:
        payload = response.json()
    except ValueError as exc:
        if response.is_success:
            return response.text
        raise ApiError(response.status_code, response.text or response.reason_phrase) from exc

    if isinstance(payload, dict) and "code" in payload:
        try:
            envelope = ApiEnvelope.model_validate(payload)
        except ValidationError as exc:
            raise ApiError(response.status_code, "malformed response envelope") from exc
        if envelope.code == ENVELOPE_OK:
            return envelope.data
        if envelope.code == ENVELOPE_UNAUTHORIZED:
            raise CredentialExpired(envelope.message or "unauthorized")
        raise ApiError(envelope.code, envelope.message or "request failed")

    if response.is_success:
        return payload
    raise ApiError(response.status_code, response.reason_phrase)


class CredentialManager:
    """Attaches the access credential to calls and recovers from expiry.

    An expired call triggers a refresh (unless it is the login or refresh call
    itself), then the same request is sent exactly once more with the new
    credential. Callers only ever see the response data, ``ApiError``,
    ``NetworkUnavailable`` or ``ReauthenticationRequired``.
    """

    def __init__(
        self,
        context: SessionContext,
        *,
        client: httpx.AsyncClient | None = None,
        single_flight: bool | None = None,
        client_key: str = CLIENT_KEY,
        client_secret: str = CLIENT_SECRET,
    ) -> None:
        self._context = context
        self._owns_client = client is None
        self._client = client or create_async_client()
        self._single_flight = REFRESH_SINGLE_FLIGHT if single_flight is None else single_flight
        self._client_key = client_key
        self._client_secret = client_secret
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def single_flight(self) -> bool:
        return self._single_flight

    async def __aenter__(self) -> CredentialManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, request: ApiRequest) -> Any:
        sent_token = self._context.access_token
        try:
            return unwrap_response(await self._dispatch(request))
        except CredentialExpired:
            if not (request.retry_on_expiry and request.authenticate and is_retryable_path(request.url)):
                raise

        await self._recover(sent_token)

        try:
            return unwrap_response(await self._dispatch(request))
        except CredentialExpired as exc:
            self._expire_session("credential rejected after refresh", cause=exc)

    async def get(self, url: str, *, params: dict[str, Any] | None = None) -> Any:
        return await self.send(ApiRequest("GET", url, params=params))

    async def post(self, url: str, json: Any = None) -> Any:
        return await self.send(ApiRequest("POST", url, json=json))

    async def put(self, url: str, json: Any = None) -> Any:
        return await self.send(ApiRequest("PUT", url, json=json))

    async def delete(self, url: str) -> Any:
        return await self.send(ApiRequest("DELETE", url))

    async def login(
        self,
        username: str,
        password: str,
        *,
        grant_type: str = "password",
        **extra: Any,
    ) -> LoginResult:
        payload = {
            "grantType": grant_type,
            "username": username,
            "password": password,
            "clientKey": self._client_key,
            "clientSecret": self._client_secret,
            **extra,
        }
        try:
            data = await self.send(ApiRequest("POST", LOGIN_PATH, json=payload, authenticate=False))
        except CredentialExpired as exc:
            raise ApiError(ENVELOPE_UNAUTHORIZED, str(exc)) from exc
        try:
            result = LoginResult.model_validate(data)
        except ValidationError as exc:
            raise ApiError(ENVELOPE_OK, "login response carries no credential") from exc
        self._context.start_session(SessionCredential.from_tokens(result, user=result.user_info))
        logger.info("login succeeded user=%s", result.user_info.username if result.user_info else username)
        return result

    async def logout(self) -> None:
        try:
            await self.send(ApiRequest("POST", LOGOUT_PATH, retry_on_expiry=False))
        except SessionError as exc:
            logger.warning("logout call failed, clearing local state anyway: %s", exc)
        finally:
            self._context.clear()

    async def fetch_current_user(self) -> UserInfo:
        user = UserInfo.model_validate(await self.get(ME_PATH))
        self._context.update_user(user)
        return user

    async def refresh(self) -> SessionCredential:
        await self._recover(None)
        credential = self._context.credential
        if credential is None:
            raise ReauthenticationRequired("session ended during refresh")
        return credential

    async def _dispatch(self, request: ApiRequest) -> httpx.Response:
        headers = dict(request.headers)
        token = self._context.access_token
        if request.authenticate and token:
            headers.update(bearer_header(token))
        try:
            return await self._client.request(
                request.method,
                request.url,
                params=request.params,
                json=request.json,
                headers=headers,
            )
        except httpx.TransportError as exc:
            raise NetworkUnavailable(f"{request.method} {request.url}: {exc}") from exc

    async def _recover(self, sent_token: str | None) -> None:
        if sent_token and self._context.credential is None:
            # Another flow already ended the session; its preserved destination stays.
            raise ReauthenticationRequired(
                "session ended during refresh",
                redirect=self._context.intended_destination,
            )
        if not self._single_flight:
            await self._refresh_credential()
            return

        current = self._context.access_token
        if sent_token and current and current != sent_token:
            # Another flow already replaced the credential this call was sent with.
            return
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._refresh_credential())
            task.add_done_callback(self._refresh_done)
            self._refresh_task = task
        await asyncio.shield(task)

    def _refresh_done(self, task: asyncio.Future[None]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Retrieved here so a refresh outliving its cancelled callers is still reported.
        if not task.cancelled() and task.exception() is not None:
            logger.debug("credential refresh finished with %r", task.exception())

    async def _refresh_credential(self) -> None:
        refresh_token = self._context.refresh_token
        if refresh_token is None:
            self._expire_session("no refresh token held")

        request = ApiRequest(
            "POST",
            REFRESH_PATH,
            json={
                "refreshToken": refresh_token,
                "clientKey": self._client_key,
                "clientSecret": self._client_secret,
            },
            authenticate=False,
        )
        try:
            tokens = TokenPair.model_validate(unwrap_response(await self._dispatch(request)))
        except NetworkUnavailable:
            logger.warning("credential refresh could not reach the server, session kept")
            raise
        except (CredentialExpired, ApiError, ValidationError) as exc:
            logger.warning("credential refresh failed: %s", exc)
            self._expire_session("credential refresh failed", cause=RefreshFailed(str(exc)))

        if self._context.credential is None:
            raise ReauthenticationRequired("session ended during refresh")
        self._context.replace_credential(tokens)
        logger.info("credential refreshed")

    def _expire_session(self, reason: str, *, cause: BaseException | None = None) -> NoReturn:
        destination = self._context.current_path or self._context.intended_destination
        self._context.clear(preserve_destination=destination)
        logger.warning("session cleared, re-authentication required: %s", reason)
        raise ReauthenticationRequired(reason, redirect=destination) from cause
