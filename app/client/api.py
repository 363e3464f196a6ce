"""Async HTTP client for the notes auth API with transparent token refresh."""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from app.client.refresh import RefreshCoordinator, TokenStore
from app.core.errors import CredentialConflict, InvalidCredentials, SessionExpired, ValidationError

logger = logging.getLogger(__name__)

# The API answers 401 for a missing token and 403 for an invalid or expired one
AUTH_ERROR_STATUSES = frozenset({401, 403})


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if not isinstance(data, dict):
        return default
    return data.get("error") or default


class NotesAuthClient:
    """
    Talks to the auth endpoints and attaches the bearer token to every other
    call. A call rejected for authentication triggers one refresh, shared
    with any other call that fails at the same time, and is then retried
    exactly once with the new access token.
    """

    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
        tokens: Optional[TokenStore] = None,
    ):
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self.tokens = tokens or TokenStore()
        self.coordinator = RefreshCoordinator(self.tokens, self._refresh)
        self.user: Optional[Dict[str, Any]] = None

    async def __aenter__(self) -> "NotesAuthClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def signup(self, username: str, email: str, password: str) -> Dict[str, Any]:
        response = await self._http.post(
            "/auth/signup",
            json={"username": username, "email": email, "password": password},
        )
        if response.status_code == 400:
            message = _error_message(response, "Signup failed")
            if "errors" in response.json():
                raise ValidationError(message)
            raise CredentialConflict(message)
        response.raise_for_status()
        return self._start_session(response.json())

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        response = await self._http.post("/auth/login", json={"email": email, "password": password})
        if response.status_code == 400:
            raise ValidationError(_error_message(response, "Validation failed"))
        if response.status_code == 401:
            raise InvalidCredentials(_error_message(response, InvalidCredentials.message))
        response.raise_for_status()
        return self._start_session(response.json())

    async def logout(self) -> None:
        refresh_token = self.tokens.refresh_token
        try:
            if refresh_token:
                response = await self._http.post("/auth/logout", json={"refreshToken": refresh_token})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Logout error: {type(e).__name__}: {e}")
        finally:
            self.tokens.clear()
            self.user = None

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        sent_token = self.tokens.access_token
        response = await self._send(method, url, sent_token, **kwargs)
        if response.status_code not in AUTH_ERROR_STATUSES or sent_token is None:
            return response

        current_token = self.tokens.access_token
        if current_token and current_token != sent_token:
            # refreshed by another call while this one was in flight
            access_token = current_token
        else:
            try:
                access_token = await self.coordinator.refresh()
            except Exception:
                # the coordinator already dropped the tokens; the session is over
                self.user = None
                raise

        # the retry goes out once; its outcome is final
        return await self._send(method, url, access_token, **kwargs)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def _send(self, method: str, url: str, access_token: Optional[str], **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return await self._http.request(method, url, headers=headers, **kwargs)

    async def _refresh(self, refresh_token: str) -> Tuple[str, Optional[str]]:
        response = await self._http.post("/auth/refresh", json={"refreshToken": refresh_token})
        if response.status_code in (400, 401):
            raise SessionExpired(_error_message(response, SessionExpired.message))
        response.raise_for_status()
        data = response.json()
        return data["accessToken"], data.get("refreshToken")

    def _start_session(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self.tokens.set(data["accessToken"], data["refreshToken"])
        self.user = data.get("user")
        return data
