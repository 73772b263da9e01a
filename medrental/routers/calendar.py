# medrental/routers/calendar.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import sessionmaker

from .. import schemas, security
from ..config import Settings, get_settings
from ..core.clock import get_now
from ..database import get_session_factory
from ..services.calendar_service import (
    CalendarDataError, load_calendar_sources, build_calendar_events, build_calendar_stats,
)
from ..services.notification_service import build_notifications

router = APIRouter(
    prefix="/calendar",
    tags=["Calendar"],
    dependencies=[Depends(security.get_current_user)],
)

LOAD_FAILED_DETAIL = "⚠️ **Unavailable:** Failed to load calendar data. Please try again."


async def load_sources_or_503(
    session_factory: sessionmaker,
    settings: Settings,
    patient_id: Optional[int] = None,
) -> schemas.CalendarSources:
    try:
        return await load_calendar_sources(
            session_factory, patient_id=patient_id, timeout=settings.calendar_fetch_timeout_seconds
        )
    except CalendarDataError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=LOAD_FAILED_DETAIL)


def events_for(sources: schemas.CalendarSources, now: datetime, settings: Settings) -> List[schemas.CalendarEvent]:
    return build_calendar_events(
        sources,
        now,
        horizon_days=settings.open_rental_horizon_days,
        payment_term_days=settings.payment_term_days,
        grace_days=settings.overdue_grace_days,
    )


@router.get("/events", response_model=List[schemas.CalendarEvent])
async def read_calendar_events(
    patient_id: Optional[int] = None,
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    """
    Unified timeline of appointments, rental periods, payments, sales and diagnostics, sorted by date.
    """
    sources = await load_sources_or_503(session_factory, settings, patient_id)
    return events_for(sources, now, settings)


@router.get("/notifications", response_model=List[schemas.NotificationItem])
async def read_calendar_notifications(
    patient_id: Optional[int] = None,
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    sources = await load_sources_or_503(session_factory, settings, patient_id)
    return build_notifications(
        sources,
        now,
        due_soon_hours=settings.appointment_due_soon_hours,
        rental_ending_days=settings.rental_ending_window_days,
        payment_term_days=settings.payment_term_days,
        grace_days=settings.overdue_grace_days,
    )


@router.get("/stats", response_model=schemas.CalendarStats)
async def read_calendar_stats(
    patient_id: Optional[int] = None,
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    sources = await load_sources_or_503(session_factory, settings, patient_id)
    return build_calendar_stats(
        sources, now, payment_term_days=settings.payment_term_days, grace_days=settings.overdue_grace_days
    )
