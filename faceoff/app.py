import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from faceoff.core.config import settings
from faceoff.core.exceptions import LedgerError
from faceoff.core.logging import configure_logging
from faceoff.db.core import async_session_factory, init_db
from faceoff.crud.team import team_crud_service
from faceoff.redis import close_redis, redis_client
from faceoff.services.totals_feed import InMemoryTotalsBroker, RedisTotalsBroker, totals_feed
import faceoff.api.routes_admin as routes_admin
import faceoff.api.routes_checkout as routes_checkout
import faceoff.api.routes_health as routes_health
import faceoff.api.routes_totals as routes_totals
import faceoff.api.routes_webhook as routes_webhook

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting %s (%s)", settings.APP_NAME, settings.ENV)
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET is not set; every notification will be refused with 500")
    await init_db()
    if settings.ENV == "development" and settings.SEED_TEAMS_ON_STARTUP:
        async with async_session_factory() as db_session:
            await team_crud_service.seed_teams(db_session)
    if settings.TOTALS_FEED_BACKEND == "redis":
        totals_feed.use_broker(RedisTotalsBroker(redis_client, settings.TOTALS_CHANNEL))
    else:
        totals_feed.use_broker(InMemoryTotalsBroker())
    yield  # App runs here
    logger.info("Shutting down")
    await totals_feed.broker.close()
    if settings.TOTALS_FEED_BACKEND == "redis":
        await close_redis()


def create_app():
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )

    for module in (routes_health, routes_webhook, routes_totals, routes_checkout, routes_admin):
        app.include_router(module.router, prefix="/api/v1")

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request, ex: LedgerError):
        return JSONResponse(status_code=ex.status_code,
                            content={"error": {"code": ex.code, "message": ex.message}})

    return app


app = create_app()
