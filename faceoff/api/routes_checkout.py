from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from faceoff.db.core import get_db_session
from faceoff.schemas.checkout import CheckoutRequest, CheckoutResponse
from faceoff.services.checkout_service import checkout_service

router = APIRouter(prefix="/checkout")


@router.post("", response_model=CheckoutResponse)
async def create_checkout_session(request: CheckoutRequest, db_session: AsyncSession = Depends(get_db_session)):
    return await checkout_service.create_session(request, db_session)
