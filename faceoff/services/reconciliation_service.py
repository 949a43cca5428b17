import asyncio
import logging
from typing import Optional
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from faceoff.core.config import settings
from faceoff.core.exceptions import InvalidAmountError, LedgerError, TeamNotFoundError, TransientStoreError
from faceoff.crud.webhook_event import webhook_event_crud_service
from faceoff.models.webhook_event import ReconciliationOutcome
from faceoff.schemas.notification import CheckoutSessionObject, SettlementInstruction, VerifiedEvent
from faceoff.schemas.settlement import ReconciliationResponse, SettlementStatus
from faceoff.services.idempotency_service import IdempotencyGuard, idempotency_guard
from faceoff.services.settlement_service import SettlementApplier, settlement_applier
from faceoff.services.verifier import NotificationVerifier, notification_verifier

logger = logging.getLogger(__name__)

SESSION_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
HANDLED_EVENT_TYPES = {SESSION_COMPLETED, ASYNC_PAYMENT_SUCCEEDED}


def extract_instruction(checkout_session: CheckoutSessionObject) -> SettlementInstruction:
    """
    Turn a paid Checkout Session into what the applier needs.
    The amount is the settled amount_total; client metadata never decides it.
    """
    metadata = checkout_session.metadata or {}
    team_id = metadata.get("teamId") or None
    amount_minor = checkout_session.amount_total
    currency = (checkout_session.currency or "").lower()
    # same order as the applier: team first, then amount
    if not team_id:
        raise TeamNotFoundError()
    if currency and currency != settings.CURRENCY.lower():
        raise InvalidAmountError(f"Unsupported currency {currency!r}")
    if not isinstance(amount_minor, int) or amount_minor <= 0 or amount_minor % 100:
        raise InvalidAmountError(f"Settled amount {amount_minor!r} is not a positive whole {settings.CURRENCY} amount")
    email = checkout_session.customer_details.email if checkout_session.customer_details else None
    return SettlementInstruction(notification_key=checkout_session.id,
                                 team_id=str(team_id),
                                 amount=amount_minor // 100,
                                 currency=currency or settings.CURRENCY,
                                 payer_email=email)


class ReconciliationService:
    """
    Verify, extract, pre-check, apply, then record what happened.

    Only a failed verification or a missing secret escapes as an error. Every
    other outcome is answered with 200 so Stripe stops retrying; failures are
    logged at error level and kept in the outcome log for manual follow-up.
    """

    def __init__(self,
                 verifier: NotificationVerifier = notification_verifier,
                 guard: IdempotencyGuard = idempotency_guard,
                 applier: SettlementApplier = settlement_applier):
        self.verifier = verifier
        self.guard = guard
        self.applier = applier

    async def handle(self, raw_body: bytes, signature_header: Optional[str],
                     session_factory: async_sessionmaker) -> ReconciliationResponse:
        # nothing touches the ledger before this succeeds
        event = self.verifier.verify(raw_body, signature_header, settings.STRIPE_WEBHOOK_SECRET)
        logger.info("Received notification %s (%s)", event.id, event.type)

        if event.type not in HANDLED_EVENT_TYPES:
            return await self._finish(session_factory, event, ReconciliationOutcome.IGNORED,
                                      reason=f"unhandled event type {event.type}")
        try:
            checkout_session = CheckoutSessionObject.model_validate(event.data.object)
        except ValidationError:
            return await self._fail(session_factory, event, None, "MALFORMED_NOTIFICATION",
                                    "Notification carries no checkout session")
        if event.type == SESSION_COMPLETED and checkout_session.payment_status != "paid":
            # async payment methods settle later with their own event
            return await self._finish(session_factory, event, ReconciliationOutcome.IGNORED,
                                      notification_key=checkout_session.id,
                                      reason=f"payment_status is {checkout_session.payment_status}")
        try:
            instruction = extract_instruction(checkout_session)
        except LedgerError as e:
            return await self._fail(session_factory, event, None, e.code, e.message,
                                    notification_key=checkout_session.id,
                                    team_id=checkout_session.metadata.get("teamId"))

        if await self.guard.has_been_processed(instruction.notification_key, session_factory):
            logger.info("Notification %s already processed (pre-check)", instruction.notification_key)
            return await self._finish(session_factory, event, ReconciliationOutcome.ALREADY_PROCESSED,
                                      instruction=instruction)
        return await self._apply(session_factory, event, instruction)

    async def _apply(self, session_factory: async_sessionmaker, event: VerifiedEvent,
                     instruction: SettlementInstruction) -> ReconciliationResponse:
        try:
            async with session_factory() as db_session:
                result = await asyncio.wait_for(
                    self.applier.apply(instruction.notification_key,
                                       instruction.team_id,
                                       instruction.amount,
                                       db_session,
                                       payer_email=instruction.payer_email),
                    timeout=settings.LEDGER_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            error = TransientStoreError(f"Settlement did not finish within {settings.LEDGER_TIMEOUT_SECONDS}s")
            return await self._fail(session_factory, event, instruction, error.code, error.message)
        except (SQLAlchemyError, OSError) as e:
            error = TransientStoreError(f"Ledger store unavailable: {e}")
            return await self._fail(session_factory, event, instruction, error.code, error.message)
        except LedgerError as e:
            # TeamNotFound, InvalidAmount, TransientStoreError from the applier
            return await self._fail(session_factory, event, instruction, e.code, e.message)
        if result.status is SettlementStatus.ALREADY_PROCESSED:
            return await self._finish(session_factory, event, ReconciliationOutcome.ALREADY_PROCESSED,
                                      instruction=instruction)
        return await self._finish(session_factory, event, ReconciliationOutcome.APPLIED, instruction=instruction)

    async def _fail(self, session_factory, event: VerifiedEvent, instruction: Optional[SettlementInstruction],
                    code: str, message: str, **fields) -> ReconciliationResponse:
        key = instruction.notification_key if instruction else fields.get("notification_key")
        logger.error("Notification %s (event %s) FAILED and needs manual reconciliation: %s %s",
                     key, event.id, code, message)
        return await self._finish(session_factory, event, ReconciliationOutcome.FAILED,
                                  instruction=instruction, error_code=code, reason=message, **fields)

    async def _finish(self, session_factory, event: VerifiedEvent, outcome: ReconciliationOutcome,
                      instruction: Optional[SettlementInstruction] = None, reason: Optional[str] = None,
                      error_code: Optional[str] = None, notification_key: Optional[str] = None,
                      team_id: Optional[str] = None) -> ReconciliationResponse:
        if instruction is not None:
            notification_key = instruction.notification_key
            team_id = instruction.team_id
        if outcome is ReconciliationOutcome.IGNORED:
            logger.info("Ignored notification %s: %s", event.id, reason)
        try:
            async with session_factory() as db_session:
                await webhook_event_crud_service.record(
                    db_session,
                    event_id=event.id,
                    event_type=event.type,
                    livemode=event.livemode,
                    notification_key=notification_key,
                    team_id=team_id,
                    amount=instruction.amount if instruction else None,
                    outcome=outcome,
                    error_code=error_code,
                    error_message=reason if outcome is ReconciliationOutcome.FAILED else None)
        except Exception as e:
            logger.error("Could not record outcome %s for notification %s: %s",
                         outcome.value, event.id, e, exc_info=True)
        return ReconciliationResponse(outcome=outcome,
                                      event_id=event.id,
                                      notification_key=notification_key,
                                      reason=reason)


reconciliation_service = ReconciliationService()
