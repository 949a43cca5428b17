import logging
from typing import List
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from faceoff.models.processed_notification import ProcessedNotification
from faceoff.models.webhook_event import ReconciliationOutcome, WebhookEvent

logger = logging.getLogger(__name__)


class WebhookEventCrudService:
    async def record(self, db_session: AsyncSession, **fields) -> WebhookEvent:
        """Append one outcome row. Runs in its own transaction."""
        outcome = fields["outcome"]
        event = WebhookEvent(needs_review=outcome is ReconciliationOutcome.FAILED, **fields)
        async with db_session.begin():
            db_session.add(event)
        return event

    async def list_failures(self, db_session: AsyncSession, limit: int = 50) -> List[WebhookEvent]:
        result = await db_session.execute(
            select(WebhookEvent)
            .where(WebhookEvent.needs_review.is_(True))
            .order_by(desc(WebhookEvent.created_at))
            .limit(limit))
        return list(result.scalars().all())

    async def list_recent(self, db_session: AsyncSession, limit: int = 5) -> List[WebhookEvent]:
        result = await db_session.execute(
            select(WebhookEvent).order_by(desc(WebhookEvent.created_at)).limit(limit))
        return list(result.scalars().all())

    async def count_open_failures(self, db_session: AsyncSession) -> int:
        result = await db_session.execute(
            select(func.count()).select_from(WebhookEvent).where(WebhookEvent.needs_review.is_(True)))
        return result.scalar_one()

    async def count_processed(self, db_session: AsyncSession) -> int:
        result = await db_session.execute(select(func.count()).select_from(ProcessedNotification))
        return result.scalar_one()


webhook_event_crud_service = WebhookEventCrudService()
