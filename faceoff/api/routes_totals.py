import time
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from faceoff.core.config import settings
from faceoff.crud.team import team_crud_service, to_total_response
from faceoff.db.core import get_db_session, get_session_factory
from faceoff.schemas.team import TeamTotalResponse
from faceoff.services.totals_feed import totals_feed

router = APIRouter(prefix="/totals")


@router.get("", response_model=List[TeamTotalResponse])
async def list_totals(db_session: AsyncSession = Depends(get_db_session)):
    teams = await team_crud_service.list_teams(db_session)
    return [to_total_response(team) for team in teams]


@router.get("/stream")
async def stream_totals(request: Request,
                        team_id: Optional[List[str]] = Query(None),
                        session_factory: async_sessionmaker = Depends(get_session_factory)):
    """
    Server-Sent Events: current totals first, then every change.
    A client that reconnects gets a fresh snapshot, so nothing missed while
    it was away is lost.
    """
    heartbeat = settings.TOTALS_HEARTBEAT_SECONDS

    async def event_generator():
        # acquired and released in one scope, so a client that leaves before
        # the first byte never holds a listener
        async with totals_feed.subscribe(session_factory, team_ids=team_id) as subscription:
            last_heartbeat = time.monotonic()
            while not subscription.cancelled:
                if await request.is_disconnected():
                    return
                update = await subscription.next_update(timeout=1.0)
                if update is not None:
                    yield f"event: total\ndata: {update.model_dump_json()}\n\n"
                    last_heartbeat = time.monotonic()
                elif time.monotonic() - last_heartbeat >= heartbeat:
                    yield f": heartbeat {int(time.time())}\n\n"
                    last_heartbeat = time.monotonic()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/{team_id}", response_model=TeamTotalResponse)
async def get_total(team_id: str, db_session: AsyncSession = Depends(get_db_session)):
    team = await team_crud_service.get_team(team_id, db_session)
    return to_total_response(team)
