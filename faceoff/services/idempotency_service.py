import asyncio
import logging
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from faceoff.core.config import settings
from faceoff.models.processed_notification import ProcessedNotification

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """
    Cheap early answer to "was this notification applied already?".

    Only a shortcut: the settlement transaction checks the marker again and
    is the real gate, so when the store cannot answer here we say "no" and
    let the transaction decide.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds

    async def _lookup(self, notification_key: str, session_factory: async_sessionmaker) -> bool:
        async with session_factory() as db_session:
            result = await db_session.execute(
                select(ProcessedNotification.key).where(ProcessedNotification.key == notification_key))
            return result.scalar_one_or_none() is not None

    async def has_been_processed(self, notification_key: str, session_factory: async_sessionmaker) -> bool:
        timeout = self.timeout_seconds
        if timeout is None:
            timeout = settings.PRECHECK_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(self._lookup(notification_key, session_factory), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Idempotency pre-check for %s timed out; continuing to settlement", notification_key)
        except Exception as e:
            logger.warning("Idempotency pre-check for %s failed (%s); continuing to settlement",
                           notification_key, e)
        return False


idempotency_guard = IdempotencyGuard()
