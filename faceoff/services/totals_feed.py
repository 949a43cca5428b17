import asyncio
import logging
from collections import deque
from typing import Deque, Dict, Iterable, Optional, Set
from pydantic import ValidationError
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker
from faceoff.crud.team import team_crud_service, to_totals_update
from faceoff.schemas.team import TotalsUpdate

logger = logging.getLogger(__name__)


class _QueueListener:
    def __init__(self, broker: "InMemoryTotalsBroker"):
        self._broker = broker
        self.queue: asyncio.Queue = asyncio.Queue()

    async def get(self) -> TotalsUpdate:
        return await self.queue.get()

    async def close(self):
        self._broker._listeners.discard(self)


class InMemoryTotalsBroker:
    """Fan-out inside one process. Enough for a single worker and for tests."""
    name = "memory"

    def __init__(self):
        self._listeners: Set[_QueueListener] = set()

    async def publish(self, update: TotalsUpdate):
        for listener in list(self._listeners):
            listener.queue.put_nowait(update)

    async def listen(self) -> _QueueListener:
        listener = _QueueListener(self)
        self._listeners.add(listener)
        return listener

    async def close(self):
        self._listeners.clear()


class _RedisListener:
    def __init__(self, pubsub, channel: str):
        self._pubsub = pubsub
        self._channel = channel

    async def get(self) -> TotalsUpdate:
        while True:
            message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if not message or message["type"] != "message":
                continue
            try:
                return TotalsUpdate.model_validate_json(message["data"])
            except ValidationError:
                logger.warning("Dropping malformed totals message on %s", self._channel)

    async def close(self):
        await self._pubsub.unsubscribe(self._channel)
        await self._pubsub.aclose()


class RedisTotalsBroker:
    """Redis pub/sub, so every worker sees updates applied by any other."""
    name = "redis"

    def __init__(self, redis: Redis, channel: str):
        self._redis = redis
        self._channel = channel

    async def publish(self, update: TotalsUpdate):
        await self._redis.publish(self._channel, update.model_dump_json())

    async def listen(self) -> _RedisListener:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        return _RedisListener(pubsub, self._channel)

    async def close(self):
        pass


class TotalsSubscription:
    """
    Handle returned by TotalsFeed.subscribe.

    Opening it registers a listener and then reads the current totals, so an
    update committed while the snapshot is being read is not lost; it may
    arrive twice, and the copy that is not newer is dropped. Iterate it (or
    call next_update) to get the snapshot followed by live updates.
    cancel() must be called when the consumer goes away; `async with`
    does it automatically.
    """

    def __init__(self, feed: "TotalsFeed", session_factory: async_sessionmaker,
                 team_ids: Optional[Iterable[str]] = None):
        self._feed = feed
        self._session_factory = session_factory
        self._team_ids = set(team_ids) if team_ids is not None else None
        self._listener = None
        self._pending: Deque[TotalsUpdate] = deque()
        self._seen: Dict[str, int] = {}
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def open(self) -> "TotalsSubscription":
        if self._listener is not None or self._cancelled:
            return self
        self._listener = await self._feed.broker.listen()
        self._feed._active += 1
        try:
            async with self._session_factory() as db_session:
                teams = await team_crud_service.list_teams(db_session, self._team_ids)
        except BaseException:
            await self.cancel()
            raise
        for team in teams:
            self._pending.append(to_totals_update(team))
        return self

    def _accept(self, update: TotalsUpdate) -> bool:
        if self._team_ids is not None and update.team_id not in self._team_ids:
            return False
        # totals only grow, so anything not above what we sent is stale
        if update.donation_total <= self._seen.get(update.team_id, -1):
            return False
        self._seen[update.team_id] = update.donation_total
        return True

    async def next_update(self, timeout: Optional[float] = None) -> Optional[TotalsUpdate]:
        """Next fresh update, or None when nothing arrived within timeout
        or the subscription was cancelled."""
        if self._cancelled:
            return None
        if self._listener is None:
            await self.open()
        while self._pending:
            update = self._pending.popleft()
            if self._accept(update):
                return update
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            try:
                update = await asyncio.wait_for(self._listener.get(), timeout=remaining)
            except asyncio.TimeoutError:
                return None
            if self._accept(update):
                return update

    async def cancel(self):
        if self._cancelled:
            return
        self._cancelled = True
        listener, self._listener = self._listener, None
        self._pending.clear()
        if listener is not None:
            self._feed._active -= 1
            await listener.close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> TotalsUpdate:
        update = await self.next_update()
        if update is None:
            raise StopAsyncIteration
        return update

    async def __aenter__(self) -> "TotalsSubscription":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb):
        await self.cancel()


class TotalsFeed:
    def __init__(self, broker=None):
        self.broker = broker or InMemoryTotalsBroker()
        self._active = 0

    @property
    def active_subscriptions(self) -> int:
        return self._active

    def use_broker(self, broker):
        self.broker = broker

    async def publish(self, update: TotalsUpdate):
        await self.broker.publish(update)

    def subscribe(self, session_factory: async_sessionmaker,
                  team_ids: Optional[Iterable[str]] = None) -> TotalsSubscription:
        return TotalsSubscription(self, session_factory, team_ids)


totals_feed = TotalsFeed()
