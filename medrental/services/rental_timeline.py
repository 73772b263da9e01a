# medrental/services/rental_timeline.py
"""Rental period expansion and rental progress.

A rental is expanded into one ``rental_period`` event per calendar day plus
a start bookend and, when the rental has an end date, an end bookend. Open
rentals are drawn up to a display horizon past ``now``; the horizon never
leaks into the non-visual progress figures, which stay ``None`` instead.
"""
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from .. import schemas
from ..models import ReturnStatus, TransactionStatus

OPEN_RENTAL_HORIZON_DAYS = 30

_DAY = timedelta(days=1)


class PeriodStatus(str, Enum):
    completed = "completed"
    ongoing = "ongoing"
    scheduled = "scheduled"
    active = "active"


class TimelineStatus(str, Enum):
    completed = "completed"
    cancelled = "cancelled"
    overdue = "overdue"
    open = "open"
    active = "active"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def ceil_days(delta: timedelta) -> int:
    return math.ceil(delta / _DAY)


def event_patient(patient: schemas.PatientRef) -> schemas.EventPatient:
    return schemas.EventPatient(id=patient.id, full_name=patient.full_name, phone=patient.phone)


def effective_end_date(rental: schemas.RentalRecord, now: datetime,
                       horizon_days: int = OPEN_RENTAL_HORIZON_DAYS) -> datetime:
    if rental.end_date is not None:
        return rental.end_date
    return now + timedelta(days=horizon_days)


def period_total_days(rental: schemas.RentalRecord, now: datetime,
                      horizon_days: int = OPEN_RENTAL_HORIZON_DAYS) -> int:
    """Number of calendar days drawn for the rental, both ends included.

    Zero when the end falls before the start, e.g. an open rental starting
    beyond the display horizon.
    """
    return max(0, ceil_days(effective_end_date(rental, now, horizon_days) - rental.start_date) + 1)


def classify_period_day(current: datetime, now: datetime, return_status: ReturnStatus) -> PeriodStatus:
    """Status of one day of a rental period.

    A returned rental is completed on every day. A rental still out is
    ongoing up to ``now`` and scheduled after it. Partially returned and
    damaged rentals have no date-based state.
    """
    if return_status == ReturnStatus.RETURNED:
        return PeriodStatus.completed
    if return_status == ReturnStatus.NOT_RETURNED:
        if current <= now:
            return PeriodStatus.ongoing
        return PeriodStatus.scheduled
    return PeriodStatus.active


def expand_rental_period(rental: schemas.RentalRecord, now: datetime,
                         horizon_days: int = OPEN_RENTAL_HORIZON_DAYS) -> List[schemas.CalendarEvent]:
    """Expand a rental into its per-day period events and its start/end bookends."""
    start_date = rental.start_date
    end_date = effective_end_date(rental, now, horizon_days)
    is_open = rental.end_date is None
    total_days = period_total_days(rental, now, horizon_days)
    patient = event_patient(rental.patient)
    name = rental.patient.full_name
    amount = rental.amount

    events = []
    for i in range(total_days):
        current = start_date + timedelta(days=i)
        status = classify_period_day(current, now, rental.return_status)
        is_ongoing = rental.return_status == ReturnStatus.NOT_RETURNED and current <= now

        if i == 0:
            title = f"{name} (start)"
        elif i == total_days - 1:
            title = f"{name} (end)"
        else:
            title = name

        events.append(schemas.CalendarEvent(
            id=f"rental-period-{rental.id}-day-{i}",
            title=title,
            date=current,
            type=schemas.EventType.rental_period,
            status=status.value,
            patient=patient,
            start_date=start_date,
            end_date=end_date,
            is_ongoing=is_ongoing,
            day_in_period=i + 1,
            total_days=total_days,
            rental_id=rental.id,
            details=schemas.RentalPeriodDetails(
                amount=amount,
                contract_number=rental.contract_number,
                return_status=rental.return_status,
                day_in_period=i + 1,
                total_days=total_days,
                progress_percentage=round_half_up((i + 1) / total_days * 100),
                actual_return_date=rental.actual_return_date,
                is_open_rental=is_open,
            ),
        ))

    events.append(schemas.CalendarEvent(
        id=f"rental-start-{rental.id}",
        title=f"Rental start: {name}",
        date=start_date,
        type=schemas.EventType.rental,
        status=rental.status.value,
        patient=patient,
        details=schemas.RentalStartDetails(
            amount=amount,
            contract_number=rental.contract_number,
            return_status=rental.return_status,
            end_date=rental.end_date,
            total_days=total_days,
            is_open_rental=is_open,
        ),
    ))

    if not is_open:
        events.append(schemas.CalendarEvent(
            id=f"rental-end-{rental.id}",
            title=f"Rental end: {name}",
            date=rental.end_date,
            type=schemas.EventType.rental,
            status=rental.return_status.value,
            patient=patient,
            details=schemas.RentalEndDetails(
                amount=amount,
                contract_number=rental.contract_number,
                actual_return_date=rental.actual_return_date,
                start_date=start_date,
                total_days=total_days,
            ),
        ))

    return events


# ==================== Rental progress ====================

def is_active_rental(rental: schemas.RentalRecord) -> bool:
    return (
        rental.status in (TransactionStatus.PENDING, TransactionStatus.COMPLETED)
        and rental.return_status == ReturnStatus.NOT_RETURNED
    )


def is_out_rental(rental: schemas.RentalRecord) -> bool:
    """Equipment still (at least partly) with the patient."""
    return (
        rental.status in (TransactionStatus.PENDING, TransactionStatus.COMPLETED)
        and rental.return_status in (ReturnStatus.NOT_RETURNED, ReturnStatus.PARTIALLY_RETURNED)
    )


def rental_duration_days(rental: schemas.RentalRecord) -> Optional[int]:
    """Contracted length in days; None for an open rental."""
    if rental.end_date is None:
        return None
    return ceil_days(rental.end_date - rental.start_date)


def rental_progress(rental: schemas.RentalRecord, now: datetime) -> schemas.RentalProgress:
    days_elapsed = max(0, ceil_days(now - rental.start_date))

    if rental.end_date is None:
        # Open rentals have no remaining days, no percentage and cannot run late
        return schemas.RentalProgress(days_elapsed=days_elapsed)

    total_days = rental_duration_days(rental)
    if total_days <= 0:
        percentage = 100.0 if now >= rental.start_date else 0.0
    else:
        percentage = min(100.0, max(0.0, days_elapsed / total_days * 100))

    return schemas.RentalProgress(
        total_days=total_days,
        days_elapsed=days_elapsed,
        days_remaining=max(0, ceil_days(rental.end_date - now)),
        progress_percentage=round_half_up(percentage),
        is_overdue=now > rental.end_date,
    )


def timeline_status(rental: schemas.RentalRecord, now: datetime) -> TimelineStatus:
    if rental.return_status == ReturnStatus.RETURNED:
        return TimelineStatus.completed
    if rental.status == TransactionStatus.CANCELLED:
        return TimelineStatus.cancelled
    if rental.return_status == ReturnStatus.NOT_RETURNED:
        if rental.end_date is not None and now > rental.end_date:
            return TimelineStatus.overdue
        if rental.end_date is None:
            return TimelineStatus.open
    return TimelineStatus.active


def rental_equipment(rental: schemas.RentalRecord) -> List[schemas.EquipmentEntry]:
    return [
        schemas.EquipmentEntry(type=item.item_type.value.lower(), name=item.name, model=item.model)
        for item in rental.items
    ]


def rental_timeline_entry(rental: schemas.RentalRecord, now: datetime) -> schemas.RentalTimelineEntry:
    progress = rental_progress(rental, now)
    return schemas.RentalTimelineEntry(
        id=rental.id,
        contract_number=rental.contract_number,
        patient=event_patient(rental.patient),
        start_date=rental.start_date,
        end_date=rental.end_date,
        actual_return_date=rental.actual_return_date,
        status=rental.status,
        return_status=rental.return_status,
        timeline_status=timeline_status(rental, now).value,
        total_days=progress.total_days,
        days_elapsed=progress.days_elapsed,
        days_remaining=progress.days_remaining,
        progress_percentage=progress.progress_percentage,
        amount=rental.amount,
        equipment=rental_equipment(rental),
    )
