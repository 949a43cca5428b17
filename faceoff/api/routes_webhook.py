from typing import Optional
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import async_sessionmaker
from faceoff.db.core import get_session_factory
from faceoff.schemas.settlement import ReconciliationResponse
from faceoff.services.reconciliation_service import reconciliation_service

router = APIRouter(prefix="/webhooks")


@router.post("/stripe", response_model=ReconciliationResponse)
async def stripe_webhook(request: Request,
                         stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
                         session_factory: async_sessionmaker = Depends(get_session_factory)):
    """
    Settlement notifications from Stripe.

    400 when the signature does not check out, 500 when no secret is
    configured, 200 for everything else including failures, which are
    flagged for review instead of retried.
    """
    # raw bytes; the signature is computed over them
    payload = await request.body()
    return await reconciliation_service.handle(payload, stripe_signature, session_factory)
