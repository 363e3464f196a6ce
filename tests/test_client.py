import asyncio
import json

import httpx
import pytest

from tests.conftest import STRONG_PASSWORD


# ── Refresh coordinator ───────────────────────────────────────────────────

def _gated_refresh(results, gate=None):
    calls = []

    async def refresh_func(refresh_token):
        calls.append(refresh_token)
        if gate is not None:
            await gate.wait()
        outcome = results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return refresh_func, calls


def test_concurrent_refreshes_share_one_exchange():
    from app.client.refresh import RefreshCoordinator, TokenStore

    async def scenario():
        gate = asyncio.Event()
        refresh_func, calls = _gated_refresh([("access-2", None)], gate)
        tokens = TokenStore("access-1", "refresh-1")
        coordinator = RefreshCoordinator(tokens, refresh_func)

        pending = [asyncio.create_task(coordinator.refresh()) for _ in range(5)]
        await asyncio.sleep(0)
        assert coordinator.refreshing
        gate.set()
        results = await asyncio.gather(*pending)
        return results, calls, tokens, coordinator

    results, calls, tokens, coordinator = asyncio.run(scenario())
    assert results == ["access-2"] * 5
    assert calls == ["refresh-1"]
    assert coordinator.exchanges == 1
    assert not coordinator.refreshing
    assert tokens.access_token == "access-2"
    assert tokens.refresh_token == "refresh-1"


def test_failed_refresh_reaches_every_waiter_and_clears_tokens():
    from app.client.refresh import RefreshCoordinator, TokenStore
    from app.core.errors import SessionExpired

    async def scenario():
        gate = asyncio.Event()
        refresh_func, calls = _gated_refresh([SessionExpired()], gate)
        tokens = TokenStore("access-1", "refresh-1")
        coordinator = RefreshCoordinator(tokens, refresh_func)

        pending = [asyncio.create_task(coordinator.refresh()) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*pending, return_exceptions=True)
        return results, calls, tokens, coordinator

    results, calls, tokens, coordinator = asyncio.run(scenario())
    assert len(calls) == 1
    assert all(isinstance(result, SessionExpired) for result in results)
    assert tokens.access_token is None
    assert tokens.refresh_token is None
    assert not tokens.authenticated
    assert not coordinator.refreshing


def test_refresh_without_refresh_token():
    from app.client.refresh import RefreshCoordinator, TokenStore
    from app.core.errors import SessionExpired
    refresh_func, calls = _gated_refresh([])
    coordinator = RefreshCoordinator(TokenStore("access-1"), refresh_func)

    with pytest.raises(SessionExpired):
        asyncio.run(coordinator.refresh())
    assert calls == []
    assert coordinator.exchanges == 0


def test_rotated_refresh_token_is_kept():
    from app.client.refresh import RefreshCoordinator, TokenStore
    refresh_func, _ = _gated_refresh([("access-2", "refresh-2")])
    tokens = TokenStore("access-1", "refresh-1")
    coordinator = RefreshCoordinator(tokens, refresh_func)

    assert asyncio.run(coordinator.refresh()) == "access-2"
    assert tokens.refresh_token == "refresh-2"


def test_sequential_refreshes_each_exchange():
    from app.client.refresh import RefreshCoordinator, TokenStore
    refresh_func, calls = _gated_refresh([("access-2", None), ("access-3", None)])
    coordinator = RefreshCoordinator(TokenStore("access-1", "refresh-1"), refresh_func)

    async def scenario():
        return [await coordinator.refresh(), await coordinator.refresh()]

    assert asyncio.run(scenario()) == ["access-2", "access-3"]
    assert coordinator.exchanges == 2


# ── HTTP client against a mocked API ──────────────────────────────────────

class FakeApi:
    """Answers like the auth API; protected calls accept only ``valid_token``."""

    def __init__(self, refresh_status=200, valid_token="fresh-access"):
        self.refresh_status = refresh_status
        self.valid_token = valid_token
        self.refresh_calls = 0
        self.protected_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            self.refresh_calls += 1
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "Invalid or expired refresh token"})
            return httpx.Response(200, json={"accessToken": "fresh-access"})
        if request.url.path == "/auth/logout":
            assert json.loads(request.content) == {"refreshToken": "refresh-1"}
            return httpx.Response(200, json={"message": "Logout successful"})

        self.protected_calls += 1
        authorization = request.headers.get("Authorization")
        if authorization is None:
            return httpx.Response(401, json={"error": "Access token required"})
        if authorization != f"Bearer {self.valid_token}":
            return httpx.Response(403, json={"error": "Invalid or expired token"})
        return httpx.Response(200, json={"notes": []})


def _client(api, access_token="stale-access", refresh_token="refresh-1"):
    from app.client import NotesAuthClient, TokenStore
    return NotesAuthClient(
        "http://api.test",
        transport=httpx.MockTransport(api),
        tokens=TokenStore(access_token, refresh_token),
    )


def test_expired_call_is_refreshed_and_retried():
    api = FakeApi()

    async def scenario():
        async with _client(api) as client:
            response = await client.get("/notes")
            return response, client.tokens.access_token

    response, access_token = asyncio.run(scenario())
    assert response.status_code == 200
    assert access_token == "fresh-access"
    assert api.refresh_calls == 1
    assert api.protected_calls == 2


def test_retry_happens_once():
    api = FakeApi(valid_token="never-matches")

    async def scenario():
        async with _client(api) as client:
            return await client.get("/notes")

    response = asyncio.run(scenario())
    assert response.status_code == 403
    assert api.refresh_calls == 1
    assert api.protected_calls == 2


def test_failed_refresh_ends_session():
    from app.core.errors import SessionExpired
    api = FakeApi(refresh_status=401)

    async def scenario():
        async with _client(api) as client:
            client.user = {"id": 1, "username": "alice", "email": "alice@example.com"}
            with pytest.raises(SessionExpired):
                await client.get("/notes")
            return client.tokens, client.user

    tokens, user = asyncio.run(scenario())
    assert not tokens.authenticated
    assert tokens.access_token is None
    assert user is None


@pytest.mark.parametrize("response", [
    httpx.Response(401, json=["unexpected"]),
    httpx.Response(401, text="not json"),
    httpx.Response(401, json={"detail": "other shape"}),
])
def test_error_message_falls_back_on_odd_bodies(response):
    from app.client.api import _error_message
    assert _error_message(response, "fallback") == "fallback"


def test_refresh_error_with_non_object_body():
    from app.core.errors import SessionExpired
    api = FakeApi(refresh_status=401)

    def handler(request):
        if request.url.path == "/auth/refresh":
            return httpx.Response(401, json=["not", "an", "object"])
        return api(request)

    async def scenario():
        from app.client import NotesAuthClient, TokenStore
        client = NotesAuthClient(
            "http://api.test",
            transport=httpx.MockTransport(handler),
            tokens=TokenStore("stale-access", "refresh-1"),
        )
        async with client:
            with pytest.raises(SessionExpired) as exc_info:
                await client.get("/notes")
        return exc_info.value.message

    assert asyncio.run(scenario()) == "Invalid or expired refresh token"


def test_anonymous_call_is_not_refreshed():
    api = FakeApi()

    async def scenario():
        async with _client(api, access_token=None, refresh_token=None) as client:
            return await client.get("/notes")

    response = asyncio.run(scenario())
    assert response.status_code == 401
    assert api.refresh_calls == 0


def test_logout_clears_tokens():
    api = FakeApi()

    async def scenario():
        async with _client(api) as client:
            await client.logout()
            return client.tokens

    tokens = asyncio.run(scenario())
    assert not tokens.authenticated


# ── HTTP client against the app ───────────────────────────────────────────

def test_parallel_expired_calls_refresh_once(app, clock):
    from app.client import NotesAuthClient

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with NotesAuthClient("http://testserver", transport=transport) as client:
            await client.signup("alice", "alice@example.com", STRONG_PASSWORD)
            assert client.user["username"] == "alice"
            clock.advance(minutes=16)
            responses = await asyncio.gather(
                client.get("/auth/me"),
                client.get("/auth/me"),
                client.get("/auth/me"),
            )
            return responses, client.coordinator.exchanges

    responses, exchanges = asyncio.run(scenario())
    assert [response.status_code for response in responses] == [200, 200, 200]
    assert exchanges == 1


def test_client_login_errors(app):
    from app.client import NotesAuthClient
    from app.core.errors import CredentialConflict, InvalidCredentials, ValidationError

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with NotesAuthClient("http://testserver", transport=transport) as client:
            await client.signup("alice", "alice@example.com", STRONG_PASSWORD)
            with pytest.raises(CredentialConflict):
                await client.signup("alice", "alice@example.com", STRONG_PASSWORD)
            with pytest.raises(ValidationError):
                await client.signup("a", "bad", "weak")
            with pytest.raises(InvalidCredentials):
                await client.login("alice@example.com", "Wrong1234")
            await client.logout()
            assert not client.tokens.authenticated
            await client.login("alice@example.com", STRONG_PASSWORD)
            return (await client.get("/auth/me")).json()

    assert asyncio.run(scenario())["email"] == "alice@example.com"
