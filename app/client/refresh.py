"""Single-flight coordination of access token refreshes on the client."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional, Tuple

from app.core.errors import SessionExpired

logger = logging.getLogger(__name__)

# takes the refresh token, returns (access token, rotated refresh token or None)
RefreshFunc = Callable[[str], Awaitable[Tuple[str, Optional[str]]]]


@dataclass
class TokenStore:
    """In-memory holder for the caller's current token pair."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    def set(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        self.access_token = access_token
        if refresh_token:
            self.refresh_token = refresh_token

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None

    @property
    def authenticated(self) -> bool:
        return self.refresh_token is not None


class RefreshCoordinator:
    """
    Collapses concurrent refresh attempts into a single exchange.

    The first caller to ask for a refresh performs it; everyone who asks
    while it is in flight is parked on a future and receives the same
    outcome: the new access token, or the exception that ended the
    exchange. A failed exchange also wipes the token store so the caller
    has to authenticate again.

    State is only touched between awaits on one event loop, so the flag
    and the queue need no lock.
    """

    def __init__(self, tokens: TokenStore, refresh_func: RefreshFunc):
        self.tokens = tokens
        self._refresh_func = refresh_func
        self._refreshing = False
        self._waiters: Deque[asyncio.Future] = deque()
        self.exchanges = 0

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    async def refresh(self) -> str:
        if self._refreshing:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            return await waiter

        self._refreshing = True
        try:
            access_token = await self._exchange()
        except Exception as exc:
            self.tokens.clear()
            self._settle(error=exc)
            raise
        except BaseException:
            # cancelled mid-exchange; nobody is left to finish the refresh
            self._settle(error=SessionExpired("Token refresh was cancelled"))
            raise
        else:
            self._settle(access_token=access_token)
            return access_token
        finally:
            self._refreshing = False

    async def _exchange(self) -> str:
        refresh_token = self.tokens.refresh_token
        if not refresh_token:
            raise SessionExpired("No refresh token available")

        self.exchanges += 1
        access_token, rotated = await self._refresh_func(refresh_token)
        self.tokens.set(access_token, rotated)
        logger.debug("Access token refreshed")
        return access_token

    def _settle(self, access_token: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        waiters, self._waiters = self._waiters, deque()
        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(access_token)
