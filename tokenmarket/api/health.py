import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.database import get_db
from tokenmarket.models.listing import Listing
from tokenmarket.models.market_event import MarketEvent
from tokenmarket.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_VERSION = "0.1.0"


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    listings = (await db.execute(select(func.count(Listing.id)))).scalar() or 0
    open_listings = (
        await db.execute(select(func.count(Listing.id)).where(Listing.quantity > 0))
    ).scalar() or 0
    events = (await db.execute(select(func.count(MarketEvent.id)))).scalar() or 0

    return HealthResponse(
        status="healthy",
        version=_VERSION,
        listings_count=listings,
        open_listings_count=open_listings,
        events_count=events,
    )


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Readiness probe: verifies DB connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ready", "database": "connected"}
    except Exception:
        logger.exception("Readiness check failed, database unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "database": "unavailable"},
        )
