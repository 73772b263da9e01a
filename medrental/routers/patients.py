# medrental/routers/patients.py
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, sessionmaker

from .. import crud, models, schemas, security
from ..config import Settings, get_settings
from ..core.clock import get_now
from ..database import get_db, get_session_factory
from ..services.patient_tracker import patient_payment_summary, patient_rental_summary, patient_sales_summary
from ..services.rental_timeline import rental_timeline_entry
from .calendar import load_sources_or_503, events_for

router = APIRouter(
    tags=["Patients"],
    dependencies=[Depends(security.get_current_user)],
    responses={404: {"description": "Not found"}},
)

PATIENT_NOT_FOUND = "🔍 **Not Found:** The patient with the specified ID could not be found."


def existing_patient(patient_id: int, db: Session = Depends(get_db)) -> models.Patient:
    """Resolve the path patient or answer 404."""
    try:
        patient = crud.get_patient(db, patient_id=patient_id)
    except crud.CRUDError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="⚠️ **Unavailable:** Failed to load patient data.")
    if patient is None:
        raise HTTPException(status_code=404, detail=PATIENT_NOT_FOUND)
    return patient


def _rentals_or_503(db: Session, patient_id: int) -> List[schemas.RentalRecord]:
    try:
        return crud.get_rentals(db, patient_id=patient_id)
    except crud.CRUDError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="⚠️ **Unavailable:** Failed to load rental data.")


def _sales_or_503(db: Session, patient_id: int) -> List[schemas.SaleRecord]:
    try:
        return crud.get_sales(db, patient_id=patient_id)
    except crud.CRUDError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="⚠️ **Unavailable:** Failed to load sale data.")


@router.get("/patients/{patient_id}/calendar", response_model=List[schemas.CalendarEvent])
async def read_patient_calendar(
    patient: models.Patient = Depends(existing_patient),
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    """
    The calendar timeline restricted to one patient.
    """
    sources = await load_sources_or_503(session_factory, settings, patient.id)
    return events_for(sources, now, settings)


@router.get("/patients/{patient_id}/rentals", response_model=List[schemas.RentalTimelineEntry])
def read_patient_rentals(
    patient: models.Patient = Depends(existing_patient),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Rental tracker: progress and timeline status of every rental of the patient, newest first.
    """
    return [rental_timeline_entry(rental, now) for rental in _rentals_or_503(db, patient.id)]


@router.get("/patients/{patient_id}/rentals/summary", response_model=schemas.PatientRentalSummary)
def read_patient_rental_summary(
    patient: models.Patient = Depends(existing_patient),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    """
    Active and completed counts, revenue, unpaid item balance, and rentals ending soon or overdue.
    """
    rentals = _rentals_or_503(db, patient.id)
    return patient_rental_summary(rentals, now, ending_window_days=settings.rental_ending_window_days)


@router.get("/patients/{patient_id}/payments", response_model=schemas.PatientPaymentSummary)
def read_patient_payments(
    patient: models.Patient = Depends(existing_patient),
    db: Session = Depends(get_db),
):
    """
    Payment tracker: paid and outstanding per rental and sale, with totals per payment method.
    """
    return patient_payment_summary(_rentals_or_503(db, patient.id), _sales_or_503(db, patient.id))


@router.get("/patients/{patient_id}/sales/summary", response_model=schemas.PatientSalesSummary)
def read_patient_sales_summary(
    patient: models.Patient = Depends(existing_patient),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    return patient_sales_summary(_sales_or_503(db, patient.id), now, recent_days=settings.recent_sales_days)
