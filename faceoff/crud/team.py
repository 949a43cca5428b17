import logging
from typing import Iterable, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from faceoff.core.exceptions import TeamNotFoundError
from faceoff.models.team import Team
from faceoff.schemas.team import TeamTotalResponse, TotalsUpdate

logger = logging.getLogger(__name__)

# The two sides of the faceoff and the totals they opened with.
DEFAULT_TEAMS = [
    {"id": "dallasStars", "name": "Dallas Stars",
     "charity_name": "Dallas Stars Foundation", "donation_total": 25750},
    {"id": "coloradoAvalanche", "name": "Colorado Avalanche",
     "charity_name": "Kroenke Sports Charities", "donation_total": 28500},
]


def to_total_response(team: Team) -> TeamTotalResponse:
    return TeamTotalResponse(team_id=team.id,
                             name=team.name,
                             charity_name=team.charity_name,
                             donation_total=team.donation_total,
                             last_updated=team.last_updated)


def to_totals_update(team: Team) -> TotalsUpdate:
    return TotalsUpdate(team_id=team.id,
                        donation_total=team.donation_total,
                        last_updated=team.last_updated)


class TeamCrudService:
    async def get_team(self, team_id: str, db_session: AsyncSession) -> Team:
        result = await db_session.execute(select(Team).where(Team.id == team_id))
        team = result.scalar_one_or_none()
        if team is None:
            raise TeamNotFoundError(team_id)
        return team

    async def list_teams(self, db_session: AsyncSession, team_ids: Optional[Iterable[str]] = None) -> List[Team]:
        query = select(Team).order_by(Team.id)
        if team_ids is not None:
            query = query.where(Team.id.in_(list(team_ids)))
        result = await db_session.execute(query)
        return list(result.scalars().all())

    async def seed_teams(self, db_session: AsyncSession, teams: Optional[List[dict]] = None) -> List[str]:
        """
        Insert the configured teams that do not exist yet.
        Existing rows are left alone, their totals included.
        """
        created = []
        async with db_session.begin():
            for data in teams if teams is not None else DEFAULT_TEAMS:
                existing = await db_session.execute(select(Team.id).where(Team.id == data["id"]))
                if existing.scalar_one_or_none() is not None:
                    continue
                db_session.add(Team(**data))
                created.append(data["id"])
        if created:
            logger.info("Seeded teams: %s", ", ".join(created))
        return created


team_crud_service = TeamCrudService()
