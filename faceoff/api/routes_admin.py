import hmac
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession
from faceoff.core.config import settings
from faceoff.core.exceptions import AdminAuthError, MisconfigurationError
from faceoff.crud.webhook_event import webhook_event_crud_service
from faceoff.db.core import get_db_session
from faceoff.schemas.settlement import AdjustTotalRequest, AdjustTotalResponse
from faceoff.schemas.team import ConfigDiagnostics, DiagnosticsResponse, WebhookEventResponse
from faceoff.services.settlement_service import settlement_applier
from faceoff.services.totals_feed import totals_feed

logger = logging.getLogger(__name__)


async def require_admin(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")):
    if not settings.ADMIN_API_TOKEN:
        logger.error("ADMIN_API_TOKEN is not configured; admin routes are disabled")
        raise MisconfigurationError("Admin access is not configured")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, settings.ADMIN_API_TOKEN):
        raise AdminAuthError()


router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.post("/teams/{team_id}/total", response_model=AdjustTotalResponse)
async def adjust_team_total(team_id: str,
                            request: AdjustTotalRequest,
                            idempotency_key: str = Header(..., alias="Idempotency-Key"),
                            db_session: AsyncSession = Depends(get_db_session)):
    result = await settlement_applier.adjust(team_id=team_id,
                                             mode=request.mode,
                                             amount=request.amount,
                                             request_key=idempotency_key,
                                             db_session=db_session)
    return AdjustTotalResponse(team_id=result.team_id,
                               status=result.status,
                               previous_total=result.previous_total,
                               new_total=result.new_total)


@router.get("/reconciliation/failures", response_model=List[WebhookEventResponse])
async def list_failures(limit: int = Query(50, ge=1, le=200),
                        db_session: AsyncSession = Depends(get_db_session)):
    return await webhook_event_crud_service.list_failures(db_session, limit=limit)


@router.get("/diagnostics", response_model=DiagnosticsResponse)
async def diagnostics(db_session: AsyncSession = Depends(get_db_session)):
    secret_key = settings.STRIPE_SECRET_KEY
    webhook_secret = settings.STRIPE_WEBHOOK_SECRET
    config = ConfigDiagnostics(
        stripe_secret_key_configured=bool(secret_key),
        stripe_secret_key_well_formed=secret_key.startswith("sk_"),
        stripe_webhook_secret_configured=bool(webhook_secret),
        stripe_webhook_secret_well_formed=webhook_secret.startswith("whsec_"),
        currency=settings.CURRENCY,
        totals_feed_backend=totals_feed.broker.name,
        active_subscriptions=totals_feed.active_subscriptions,
    )
    return DiagnosticsResponse(
        env=settings.ENV,
        config=config,
        processed_notifications=await webhook_event_crud_service.count_processed(db_session),
        open_failures=await webhook_event_crud_service.count_open_failures(db_session),
        recent_events=[WebhookEventResponse.model_validate(event)
                       for event in await webhook_event_crud_service.list_recent(db_session, limit=5)],
    )
