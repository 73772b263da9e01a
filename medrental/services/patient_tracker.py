# medrental/services/patient_tracker.py
"""Per-patient rollups behind the rental, payment and sale trackers of a patient file."""
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from .. import schemas
from ..models import PaymentType, ReturnStatus, TransactionStatus
from .notification_service import RENTAL_ENDING_WINDOW_DAYS

RECENT_SALES_DAYS = 30


def _paid(payments: Iterable[schemas.PaymentRecord]) -> float:
    return sum(p.amount for p in payments)


def item_outstanding(item: schemas.RentalItemRecord) -> float:
    """Price of the item minus what its own payments cover; negative when overpaid."""
    return item.total_price - _paid(item.payments)


def patient_rental_summary(rentals: List[schemas.RentalRecord], now: datetime,
                           ending_window_days: int = RENTAL_ENDING_WINDOW_DAYS) -> schemas.PatientRentalSummary:
    """Counts and balances of the rental tracker.

    A rental is active while its equipment is not returned. Among active
    rentals with an end date, those ending between ``now`` and the window
    are ending soon and those that ended before ``now`` are overdue; the two
    never overlap.
    """
    active = [r for r in rentals if r.return_status == ReturnStatus.NOT_RETURNED]
    ending_limit = now + timedelta(days=ending_window_days)
    return schemas.PatientRentalSummary(
        total_rentals=len(rentals),
        active_rentals=len(active),
        completed_rentals=sum(1 for r in rentals if r.return_status == ReturnStatus.RETURNED),
        total_revenue=sum(r.amount for r in rentals),
        total_outstanding=sum(item_outstanding(item) for r in rentals for item in r.items),
        ending_soon_rental_ids=[
            r.id for r in active if r.end_date is not None and now <= r.end_date <= ending_limit
        ],
        overdue_rental_ids=[r.id for r in active if r.end_date is not None and r.end_date < now],
    )


def patient_payment_summary(rentals: List[schemas.RentalRecord],
                            sales: List[schemas.SaleRecord]) -> schemas.PatientPaymentSummary:
    """Paid and outstanding amounts per rental and sale, and totals per payment method.

    A rental counts every payment attached to it, its items or its groups.
    Outstanding amounts never go below zero.
    """
    balances: List[schemas.PaymentBalance] = []
    payments: List[schemas.PaymentRecord] = []

    owners = [(schemas.EntityType.rental, r) for r in rentals] + [(schemas.EntityType.sale, s) for s in sales]
    for entity_type, owner in owners:
        paid = _paid(owner.payments)
        payments.extend(owner.payments)
        balances.append(schemas.PaymentBalance(
            entity_type=entity_type,
            entity_id=owner.id,
            amount=owner.amount,
            paid=paid,
            outstanding=max(0.0, owner.amount - paid),
        ))

    counts: Dict[PaymentType, int] = {}
    amounts: Dict[PaymentType, float] = {}
    for payment in payments:
        counts[payment.type] = counts.get(payment.type, 0) + 1
        amounts[payment.type] = amounts.get(payment.type, 0.0) + payment.amount
    by_method = [
        schemas.PaymentMethodTotal(type=method, count=counts[method], amount=amounts[method])
        for method in counts
    ]

    total_paid = _paid(payments)
    total_outstanding = sum(b.outstanding for b in balances)
    return schemas.PatientPaymentSummary(
        total_payments=len(payments),
        total_paid=total_paid,
        total_outstanding=total_outstanding,
        total_revenue=total_paid + total_outstanding,
        balances=balances,
        by_method=sorted(by_method, key=lambda m: m.amount, reverse=True),
    )


def patient_sales_summary(sales: List[schemas.SaleRecord], now: datetime,
                          recent_days: int = RECENT_SALES_DAYS) -> schemas.PatientSalesSummary:
    total_revenue = sum(s.amount for s in sales)
    total_paid = sum(_paid(s.payments) for s in sales)
    since = now - timedelta(days=recent_days)
    return schemas.PatientSalesSummary(
        total_sales=len(sales),
        completed_sales=sum(1 for s in sales if s.status == TransactionStatus.COMPLETED),
        pending_sales=sum(1 for s in sales if s.status == TransactionStatus.PENDING),
        cancelled_sales=sum(1 for s in sales if s.status == TransactionStatus.CANCELLED),
        total_revenue=total_revenue,
        total_paid=total_paid,
        outstanding_amount=total_revenue - total_paid,
        recent_sale_ids=[s.id for s in sales if s.date >= since],
    )
