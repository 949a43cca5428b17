from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from faceoff.core.config import settings

# Shared by the totals broker when TOTALS_FEED_BACKEND=redis.
# Connections open on first use, so importing this never touches the network.
redis_pool = ConnectionPool.from_url(settings.REDIS_URL, decode_responses=True)
redis_client = Redis(connection_pool=redis_pool)


async def close_redis():
    await redis_client.aclose()
    await redis_pool.disconnect()
