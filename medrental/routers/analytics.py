# medrental/routers/analytics.py
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import crud, schemas, security
from ..config import Settings, get_settings
from ..core.clock import get_now
from ..database import get_db
from ..services.analytics_service import build_analytics_summary

router = APIRouter(
    prefix="/admin",
    tags=["Analytics"],
    dependencies=[Depends(security.require_manager)],
)


@router.get("/analytics", response_model=schemas.AnalyticsSummary)
def read_analytics(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    """
    Fleet-wide revenue, patient, rental, diagnostic and user statistics.
    Accessible by admins and managers.
    """
    try:
        return build_analytics_summary(db, now, settings)
    except crud.CRUDError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="⚠️ **Unavailable:** Failed to load analytics data.")
