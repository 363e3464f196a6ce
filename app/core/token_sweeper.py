import asyncio
import logging
from typing import Optional
from sqlalchemy.orm import sessionmaker
from app.core.errors import PersistenceError
from app.core.metrics import REFRESH_TOKENS_SWEPT
from app.core.refresh_tokens import RefreshTokenManager
from app.core.security import Clock, utcnow

logger = logging.getLogger(__name__)


class TokenSweeper:
    """Deletes expired refresh tokens on a fixed interval, off the request path."""

    def __init__(self, session_factory: sessionmaker, interval_seconds: float, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    def sweep_once(self) -> int:
        db = self.session_factory()
        try:
            count = RefreshTokenManager(db, clock=self._clock).sweep_expired()
        finally:
            db.close()
        if count:
            REFRESH_TOKENS_SWEPT.inc(count)
            logger.info(f"Swept {count} expired refresh token(s)")
        return count

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.sweep_once)
            except PersistenceError:
                logger.warning("Refresh token sweep failed, retrying next interval")
            except Exception as e:
                logger.error(f"Unexpected refresh token sweep error: {type(e).__name__}", exc_info=True)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
            logger.info(f"Refresh token sweep scheduled every {self.interval_seconds:.0f}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
