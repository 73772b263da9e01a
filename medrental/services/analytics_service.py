# medrental/services/analytics_service.py
"""Fleet-wide and per-patient rollups for the admin analytics view.

Every helper here is a pure function over records. ``build_analytics_summary``
fetches the records once and runs each helper isolated, so one failing
statistic degrades to an empty value instead of failing the whole summary.
"""
import calendar
import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session

from .. import schemas, crud
from ..config import Settings
from .overdue import payment_overdue_info
from .rental_timeline import (
    event_patient, is_active_rental, is_out_rental, rental_duration_days,
    rental_progress, rental_timeline_entry, round_half_up, ceil_days,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

AGE_GROUPS = ("0-20", "21-40", "41-60", "61-80", "80+")
UNSPECIFIED = "Unspecified"


# ==================== Month helpers ====================

def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def last_months(now: datetime, months: int) -> List[Tuple[int, int]]:
    """(year, month) pairs for the ``months`` calendar months ending with the current one, oldest first."""
    return [_shift_month(now.year, now.month, -offset) for offset in range(months - 1, -1, -1)]


def _month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def _is_current_month(value: Optional[datetime], now: datetime) -> bool:
    return value is not None and value.year == now.year and value.month == now.month


# ==================== Rentals and revenue ====================

def all_payments(rentals: Iterable[schemas.RentalRecord], sales: Iterable[schemas.SaleRecord]) -> List[schemas.PaymentRecord]:
    return [p for r in rentals for p in r.payments] + [p for s in sales for p in s.payments]


def count_active_rentals(rentals: Iterable[schemas.RentalRecord]) -> int:
    return sum(1 for rental in rentals if is_active_rental(rental))


def count_overdue_payments(payments: Iterable[schemas.PaymentRecord], now: datetime, **overdue_kwargs) -> int:
    return sum(1 for p in payments if payment_overdue_info(p, now, **overdue_kwargs).is_overdue)


def monthly_revenue(sales: List[schemas.SaleRecord], rentals: List[schemas.RentalRecord],
                    now: datetime, months: int = 6) -> List[schemas.MonthlyRevenue]:
    """Sale and rental amounts bucketed by the calendar month of the sale date / rental start."""
    buckets: Dict[Tuple[int, int], Dict[str, float]] = {
        key: {"sales": 0.0, "rentals": 0.0} for key in last_months(now, months)
    }
    for sale in sales:
        bucket = buckets.get((sale.date.year, sale.date.month))
        if bucket is not None:
            bucket["sales"] += sale.amount
    for rental in rentals:
        bucket = buckets.get((rental.start_date.year, rental.start_date.month))
        if bucket is not None:
            bucket["rentals"] += rental.amount

    return [
        schemas.MonthlyRevenue(
            month=_month_key(year, month),
            label=calendar.month_abbr[month],
            sales=values["sales"],
            rentals=values["rentals"],
            total=values["sales"] + values["rentals"],
        )
        for (year, month), values in buckets.items()
    ]


def yearly_revenue(sales: List[schemas.SaleRecord], rentals: List[schemas.RentalRecord]) -> List[schemas.YearlyRevenue]:
    totals: Dict[int, float] = {}
    for sale in sales:
        totals[sale.date.year] = totals.get(sale.date.year, 0.0) + sale.amount
    for rental in rentals:
        totals[rental.start_date.year] = totals.get(rental.start_date.year, 0.0) + rental.amount
    return [schemas.YearlyRevenue(year=year, total=total) for year, total in sorted(totals.items())]


def average_rental_duration(rentals: Iterable[schemas.RentalRecord]) -> int:
    """Rounded mean length of closed rentals; open rentals are left out."""
    durations = [abs(ceil_days(r.end_date - r.start_date)) for r in rentals if r.end_date is not None]
    if not durations:
        return 0
    return round_half_up(sum(durations) / len(durations))


def rentals_by_status(rentals: Iterable[schemas.RentalRecord]) -> List[schemas.StatusCount]:
    counts = Counter(rental.status.value for rental in rentals)
    return [schemas.StatusCount(status=status, count=count) for status, count in counts.items()]


def rentals_by_patient(rentals: Iterable[schemas.RentalRecord], limit: Optional[int] = 20) -> List[schemas.PatientRentalRollup]:
    """Per-patient rollup ranked by rental count; ties keep encounter order."""
    rollups: Dict[int, schemas.PatientRentalRollup] = {}
    durations: Dict[int, List[int]] = {}

    for rental in rentals:
        patient_id = rental.patient.id
        rollup = rollups.get(patient_id)
        if rollup is None:
            rollup = schemas.PatientRentalRollup(patient=event_patient(rental.patient))
            rollups[patient_id] = rollup
            durations[patient_id] = []
        rollup.total_rentals += 1
        rollup.total_revenue += rental.amount
        rollup.rental_ids.append(rental.id)
        if is_active_rental(rental):
            rollup.active_rentals += 1
        duration = rental_duration_days(rental)
        if duration is not None:
            durations[patient_id].append(duration)

    for patient_id, rollup in rollups.items():
        closed = durations[patient_id]
        rollup.avg_duration = round_half_up(sum(closed) / len(closed)) if closed else None

    ranked = sorted(rollups.values(), key=lambda r: r.total_rentals, reverse=True)
    return ranked[:limit] if limit is not None else ranked


def patient_rentals_timeline(rentals: Iterable[schemas.RentalRecord], now: datetime,
                             limit: Optional[int] = 50) -> List[schemas.RentalTimelineEntry]:
    recent = sorted(rentals, key=lambda r: r.start_date, reverse=True)
    if limit is not None:
        recent = recent[:limit]
    return [rental_timeline_entry(rental, now) for rental in recent]


def _equipment_summary(names: List[str]) -> str:
    summary = ", ".join(names[:3])
    return summary + "..." if len(names) > 3 else summary


def active_rentals_with_progress(rentals: Iterable[schemas.RentalRecord], now: datetime) -> List[schemas.ActiveRentalProgress]:
    entries = []
    for rental in sorted(rentals, key=lambda r: r.start_date, reverse=True):
        if not is_out_rental(rental):
            continue
        progress = rental_progress(rental, now)
        names = [item.name for item in rental.items if item.name]
        entries.append(schemas.ActiveRentalProgress(
            id=rental.id,
            contract_number=rental.contract_number,
            patient=event_patient(rental.patient),
            start_date=rental.start_date,
            end_date=rental.end_date,
            total_days=progress.total_days,
            days_elapsed=progress.days_elapsed,
            days_remaining=progress.days_remaining,
            progress_percentage=progress.progress_percentage,
            is_overdue=progress.is_overdue,
            amount=rental.amount,
            equipment_count=len(rental.items),
            equipment_summary=_equipment_summary(names),
        ))
    return entries


# ==================== Patients ====================

def _age(date_of_birth: datetime, now: datetime) -> int:
    before_birthday = (now.month, now.day) < (date_of_birth.month, date_of_birth.day)
    return now.year - date_of_birth.year - int(before_birthday)


def patients_by_age(patients: Iterable[schemas.PatientRef], now: datetime) -> List[schemas.AgeBucket]:
    groups = dict.fromkeys(AGE_GROUPS, 0)
    for patient in patients:
        if patient.date_of_birth is None:
            continue
        age = _age(patient.date_of_birth, now)
        if age <= 20:
            groups["0-20"] += 1
        elif age <= 40:
            groups["21-40"] += 1
        elif age <= 60:
            groups["41-60"] += 1
        elif age <= 80:
            groups["61-80"] += 1
        else:
            groups["80+"] += 1
    return [schemas.AgeBucket(age=age, count=count) for age, count in groups.items()]


def iah_severity(iah_value: float) -> str:
    """Sleep apnea severity from the apnea-hypopnea index."""
    if iah_value < 0:
        raise ValueError("IAH value cannot be negative")
    if iah_value <= 15:
        return "negative"
    if iah_value <= 29:
        return "moderate"
    return "severe"


def patients_by_condition(diagnostics: Iterable[schemas.DiagnosticRecord]) -> List[schemas.ConditionBucket]:
    """Patients counted by the severity of their most recent diagnostic."""
    latest: Dict[int, schemas.DiagnosticRecord] = {}
    for diagnostic in diagnostics:
        current = latest.get(diagnostic.patient.id)
        if current is None or diagnostic.date > current.date:
            latest[diagnostic.patient.id] = diagnostic
    counts = Counter(iah_severity(d.iah_result) for d in latest.values())
    return [schemas.ConditionBucket(condition=c, count=n) for c, n in counts.most_common(10)]


def patient_growth(patients: Iterable[schemas.PatientRef], now: datetime, months: int = 12) -> List[schemas.GrowthPoint]:
    counts = {key: 0 for key in last_months(now, months)}
    for patient in patients:
        if patient.created_at is None:
            continue
        key = (patient.created_at.year, patient.created_at.month)
        if key in counts:
            counts[key] += 1
    return [
        schemas.GrowthPoint(month=_month_key(year, month), label=f"{calendar.month_abbr[month]} {year}", count=count)
        for (year, month), count in counts.items()
    ]


# ==================== Diagnostics ====================

def diagnostics_by_type(diagnostics: Iterable[schemas.DiagnosticRecord]) -> List[schemas.TypeCount]:
    counts = Counter(d.polygraph or UNSPECIFIED for d in diagnostics)
    return [schemas.TypeCount(type=t, count=n) for t, n in counts.most_common()]


def diagnostics_by_technician(diagnostics: Iterable[schemas.DiagnosticRecord]) -> List[schemas.TechnicianCount]:
    counts = Counter(d.technician_name or "Unknown" for d in diagnostics if d.technician_id is not None)
    return [schemas.TechnicianCount(technician=t, count=n) for t, n in counts.most_common()]


# ==================== Users ====================

def user_activity(
    technicians: List[schemas.TechnicianRecord],
    rentals: Iterable[schemas.RentalRecord],
    sales: Iterable[schemas.SaleRecord],
    diagnostics: Iterable[schemas.DiagnosticRecord],
    patients_created: Dict[int, int],
    limit: int = 10,
) -> List[schemas.UserActivity]:
    """Recorded actions per technician: patients, rentals and sales created, diagnostics performed."""
    actions = Counter(patients_created)
    actions.update(r.created_by for r in rentals if r.created_by is not None)
    actions.update(s.created_by for s in sales if s.created_by is not None)
    actions.update(d.technician_id for d in diagnostics if d.technician_id is not None)
    return [
        schemas.UserActivity(user=t.name, actions=actions.get(t.id, 0), last_active=t.updated_at)
        for t in technicians[:limit]
    ]


# ==================== Summary ====================

def _isolated(section: str, default: T, fn: Callable[..., T], *args, **kwargs) -> T:
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.warning(f"Analytics section '{section}' failed, returning empty result: {e}", exc_info=True)
        return default


def build_analytics_summary(db: Session, now: datetime, settings: Settings) -> schemas.AnalyticsSummary:
    """Compose the admin analytics summary as of ``now``.

    A failure fetching the base collections raises ``crud.CRUDError``;
    failures inside individual statistics do not.
    """
    patients = crud.get_patients(db)
    rentals = crud.get_rentals(db)
    sales = crud.get_sales(db)
    diagnostics = crud.get_diagnostics(db)
    technicians = crud.get_technicians(db)

    overdue_kwargs = {"payment_term_days": settings.payment_term_days, "grace_days": settings.overdue_grace_days}
    sales_revenue = sum(s.amount for s in sales)
    rental_revenue = sum(r.amount for r in rentals)
    active_rentals = count_active_rentals(rentals)
    overdue_payments = _isolated("overduePayments", 0, count_overdue_payments,
                                 all_payments(rentals, sales), now, **overdue_kwargs)
    new_patients = sum(1 for p in patients if _is_current_month(p.created_at, now))

    overview = schemas.OverviewStats(
        total_patients=len(patients),
        total_rentals=len(rentals),
        total_sales=len(sales),
        total_diagnostics=len(diagnostics),
        total_revenue=sales_revenue + rental_revenue,
        active_rentals=active_rentals,
        overdue_payments=overdue_payments,
        new_patients_this_month=new_patients,
    )

    revenue = schemas.RevenueSection(
        monthly=_isolated("monthlyRevenue", [], monthly_revenue, sales, rentals, now, settings.analytics_revenue_months),
        yearly=_isolated("yearlyRevenue", [], yearly_revenue, sales, rentals),
    )

    patients_section = schemas.PatientsSection(
        total_patients=len(patients),
        new_patients_this_month=new_patients,
        # Every registered patient counts as active
        active_patients=len(patients),
        inactive_patients=0,
        patients_by_age=_isolated("patientsByAge", [], patients_by_age, patients, now),
        patients_by_condition=_isolated("patientsByCondition", [], patients_by_condition, diagnostics),
        patient_growth=_isolated("patientGrowth", [], patient_growth, patients, now, settings.analytics_growth_months),
    )

    rentals_section = schemas.RentalsSection(
        active_rentals=active_rentals,
        total_rentals=len(rentals),
        overdue_payments=overdue_payments,
        rentals_by_status=_isolated("rentalsByStatus", [], rentals_by_status, rentals),
        rental_revenue=rental_revenue,
        average_rental_duration=_isolated("averageRentalDuration", 0, average_rental_duration, rentals),
        patient_rentals=_isolated("patientRentals", [], patient_rentals_timeline, rentals, now,
                                  settings.analytics_timeline_limit),
        active_rentals_with_progress=_isolated("activeRentalsWithProgress", [], active_rentals_with_progress, rentals, now),
        rentals_by_patient=_isolated("rentalsByPatient", [], rentals_by_patient, rentals, settings.analytics_top_patients),
    )

    diagnostics_section = schemas.DiagnosticsSection(
        total_diagnostics=len(diagnostics),
        diagnostics_this_month=sum(1 for d in diagnostics if _is_current_month(d.date, now)),
        diagnostics_by_type=_isolated("diagnosticsByType", [], diagnostics_by_type, diagnostics),
        diagnostics_by_technician=_isolated("diagnosticsByTechnician", [], diagnostics_by_technician, diagnostics),
    )

    patients_created = _isolated("patientsCreated", {}, crud.count_patients_created_by, db)
    users_section = schemas.UsersSection(
        total_users=len(technicians),
        active_users=sum(1 for t in technicians if t.is_active),
        user_activity=_isolated("userActivity", [], user_activity, technicians, rentals, sales, diagnostics, patients_created),
    )

    logger.info(
        f"Analytics summary built: {len(patients)} patients, {len(rentals)} rentals, "
        f"{len(sales)} sales, {len(diagnostics)} diagnostics"
    )
    return schemas.AnalyticsSummary(
        overview=overview,
        revenue=revenue,
        patients=patients_section,
        rentals=rentals_section,
        diagnostics=diagnostics_section,
        users=users_section,
    )
