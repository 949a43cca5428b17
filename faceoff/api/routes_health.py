from fastapi import APIRouter
from faceoff.core.config import settings

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok", "service": settings.APP_NAME, "version": settings.APP_VERSION}
