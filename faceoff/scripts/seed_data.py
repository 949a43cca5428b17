"""
Create the tables and seed the two faceoff teams.

    python -m faceoff.scripts.seed_data

Teams that already exist keep their totals.
"""
import asyncio
import logging
from faceoff.core.config import settings
from faceoff.core.logging import configure_logging
from faceoff.crud.team import team_crud_service
from faceoff.db.core import async_session_factory, engine, init_db

logger = logging.getLogger(__name__)


async def seed():
    await init_db()
    async with async_session_factory() as db_session:
        created = await team_crud_service.seed_teams(db_session)
    if not created:
        logger.info("All teams already present, nothing to seed")
    await engine.dispose()
    return created


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(seed())
