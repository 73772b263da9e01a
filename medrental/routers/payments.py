# medrental/routers/payments.py
import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import crud, schemas, security, models
from ..config import Settings, get_settings
from ..core.clock import get_now
from ..database import get_db
from ..services.overdue import overdue_payment_entries

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/payments",
    tags=["Payments"],
    dependencies=[Depends(security.get_current_user)],
)


@router.post("", response_model=schemas.PaymentResponse, status_code=status.HTTP_201_CREATED)
def create_new_payment(
    payment: schemas.PaymentCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    """
    Record a payment; its due and overdue dates are filled in when missing.
    """
    try:
        return crud.create_payment(
            db, payment, now,
            payment_term_days=settings.payment_term_days,
            grace_days=settings.overdue_grace_days,
        )
    except crud.NotFoundError:
        raise HTTPException(status_code=404, detail="🔍 **Not Found:** The rental or sale for this payment could not be found.")
    except crud.CRUDError:
        raise HTTPException(status_code=500, detail="💥 **Server Error:** The payment could not be saved.")


@router.get("/overdue", response_model=List[schemas.OverduePaymentEntry])
def read_overdue_payments(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    try:
        rentals = crud.get_rentals(db)
        sales = crud.get_sales(db)
    except crud.CRUDError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="⚠️ **Unavailable:** Failed to load payment data.")
    return overdue_payment_entries(
        rentals, sales, now,
        payment_term_days=settings.payment_term_days,
        grace_days=settings.overdue_grace_days,
    )


@router.post("/refresh-overdue", response_model=schemas.OverdueRefreshReport)
def refresh_overdue_payments(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
    current_user: models.Technician = Depends(security.require_admin),
):
    """
    Rewrite the stored overdue flags of every payment as of now. Admin only.
    """
    try:
        report = crud.refresh_overdue_flags(
            db, now,
            payment_term_days=settings.payment_term_days,
            grace_days=settings.overdue_grace_days,
        )
    except crud.CRUDError:
        raise HTTPException(status_code=500, detail="💥 **Server Error:** Overdue flags could not be refreshed.")
    logger.info(f"Technician {current_user.id} refreshed overdue flags ({report.updated}/{report.checked} changed)")
    return report
