# medrental/services/calendar_service.py
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .. import schemas, crud
from .overdue import payment_overdue_info, PAYMENT_TERM_DAYS, OVERDUE_GRACE_DAYS
from .rental_timeline import expand_rental_period, event_patient, OPEN_RENTAL_HORIZON_DAYS

logger = logging.getLogger(__name__)


class CalendarDataError(Exception):
    """Raised when any source collection of the calendar cannot be loaded."""
    pass


# ==================== Source loading ====================

def _fetch_with_session(session_factory: Callable[[], Session], fetcher, patient_id: Optional[int]):
    db = session_factory()
    try:
        return fetcher(db, patient_id=patient_id)
    finally:
        db.close()


async def load_calendar_sources(
    session_factory: Callable[[], Session],
    patient_id: Optional[int] = None,
    timeout: Optional[float] = None,
) -> schemas.CalendarSources:
    """Fetch appointments, rentals, sales and diagnostics concurrently.

    Each fetch runs in a worker thread with its own session. The load is
    all-or-nothing: one failing or late fetch fails the whole load.
    """
    fetchers = (crud.get_appointments, crud.get_rentals, crud.get_sales, crud.get_diagnostics)
    tasks = [
        asyncio.to_thread(_fetch_with_session, session_factory, fetcher, patient_id)
        for fetcher in fetchers
    ]
    try:
        appointments, rentals, sales, diagnostics = await asyncio.wait_for(asyncio.gather(*tasks), timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"Calendar data load timed out after {timeout}s (patient_id={patient_id})")
        raise CalendarDataError("Failed to load calendar data") from e
    except Exception as e:
        logger.error(f"Error fetching calendar data (patient_id={patient_id}): {e}", exc_info=True)
        raise CalendarDataError("Failed to load calendar data") from e

    return schemas.CalendarSources(
        appointments=appointments,
        rentals=rentals,
        sales=sales,
        diagnostics=diagnostics,
    )


# ==================== Event aggregation ====================

def _appointment_event(appointment: schemas.AppointmentRecord) -> schemas.CalendarEvent:
    return schemas.CalendarEvent(
        id=f"appointment-{appointment.id}",
        title=f"Appointment: {appointment.patient.full_name}",
        date=appointment.appointment_date,
        type=schemas.EventType.appointment,
        status=appointment.status.value,
        patient=event_patient(appointment.patient),
        details=schemas.AppointmentDetails(
            type=appointment.type,
            notes=appointment.notes,
            region=appointment.patient.region,
            linked_rental=appointment.linked_rental,
            linked_sale=appointment.linked_sale,
            linked_diagnostic=appointment.linked_diagnostic,
        ),
    )


def _payment_event(payment: schemas.PaymentRecord, event_id: str, title: str,
                   patient: schemas.PatientRef, now: datetime,
                   contract_number: Optional[str] = None,
                   sale_amount: Optional[float] = None,
                   **overdue_kwargs) -> schemas.CalendarEvent:
    overdue = payment_overdue_info(payment, now, **overdue_kwargs)
    return schemas.CalendarEvent(
        id=event_id,
        title=title,
        date=payment.due_date,
        type=schemas.EventType.payment,
        status="OVERDUE" if overdue.is_overdue else "DUE",
        patient=event_patient(patient),
        details=schemas.PaymentDetails(
            amount=payment.amount,
            payment_type=payment.type,
            due_date=overdue.due_date,
            overdue_date=overdue.overdue_date,
            is_overdue=overdue.is_overdue,
            overdue_days=overdue.overdue_days,
            contract_number=contract_number,
            sale_amount=sale_amount,
        ),
    )


def _sale_event(sale: schemas.SaleRecord) -> schemas.CalendarEvent:
    return schemas.CalendarEvent(
        id=f"sale-{sale.id}",
        title=f"Sale: {sale.patient.full_name}",
        date=sale.date,
        type=schemas.EventType.sale,
        status=sale.status.value,
        patient=event_patient(sale.patient),
        details=schemas.SaleDetails(amount=sale.amount, notes=sale.notes),
    )


def _diagnostic_event(diagnostic: schemas.DiagnosticRecord) -> schemas.CalendarEvent:
    return schemas.CalendarEvent(
        id=f"diagnostic-{diagnostic.id}",
        title=f"Diagnostic: {diagnostic.patient.full_name}",
        date=diagnostic.date,
        type=schemas.EventType.diagnostic,
        status="COMPLETED",
        patient=event_patient(diagnostic.patient),
        details=schemas.DiagnosticDetails(
            polygraph=diagnostic.polygraph,
            iah_result=diagnostic.iah_result,
            id_result=diagnostic.id_result,
            remarks=diagnostic.remarks,
        ),
    )


def build_calendar_events(
    sources: schemas.CalendarSources,
    now: datetime,
    horizon_days: int = OPEN_RENTAL_HORIZON_DAYS,
    payment_term_days: int = PAYMENT_TERM_DAYS,
    grace_days: int = OVERDUE_GRACE_DAYS,
) -> List[schemas.CalendarEvent]:
    """Merge every source collection into one timeline sorted by date.

    Pure and side-effect free: the same sources and ``now`` always give the
    same events in the same order.
    """
    overdue_kwargs = {"payment_term_days": payment_term_days, "grace_days": grace_days}
    events: List[schemas.CalendarEvent] = []

    for appointment in sources.appointments:
        events.append(_appointment_event(appointment))

    for rental in sources.rentals:
        events.extend(expand_rental_period(rental, now, horizon_days))
        for payment in rental.payments:
            if payment.due_date is None:
                continue
            events.append(_payment_event(
                payment,
                event_id=f"payment-{payment.id}",
                title=f"Payment due: {rental.patient.full_name}",
                patient=rental.patient,
                now=now,
                contract_number=rental.contract_number,
                **overdue_kwargs,
            ))

    for sale in sources.sales:
        events.append(_sale_event(sale))
        for payment in sale.payments:
            if payment.due_date is None:
                continue
            events.append(_payment_event(
                payment,
                event_id=f"sale-payment-{payment.id}",
                title=f"Sale payment due: {sale.patient.full_name}",
                patient=sale.patient,
                now=now,
                sale_amount=sale.amount,
                **overdue_kwargs,
            ))

    for diagnostic in sources.diagnostics:
        events.append(_diagnostic_event(diagnostic))

    # sorted() is stable: same-date events keep their encounter order
    return sorted(events, key=lambda event: event.date)


def build_calendar_stats(sources: schemas.CalendarSources, now: datetime, **overdue_kwargs) -> schemas.CalendarStats:
    payments = [p for r in sources.rentals for p in r.payments] + [p for s in sources.sales for p in s.payments]
    overdue_payments = sum(1 for p in payments if payment_overdue_info(p, now, **overdue_kwargs).is_overdue)
    return schemas.CalendarStats(
        appointments=len(sources.appointments),
        rentals=len(sources.rentals),
        sales=len(sources.sales),
        diagnostics=len(sources.diagnostics),
        overdue_payments=overdue_payments,
    )
