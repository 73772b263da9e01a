# medrental/services/overdue.py
"""Payment overdue derivation.

A payment is due on its ``due_date`` and becomes overdue once ``now`` is
strictly past its ``overdue_date``. Missing dates are filled in from the
coverage window, the payment date, or ``now`` itself.
"""
import math
from datetime import datetime, timedelta
from typing import List, Optional

from .. import schemas

PAYMENT_TERM_DAYS = 30
OVERDUE_GRACE_DAYS = 7

_DAY = timedelta(days=1)


def calculate_overdue_info(
    now: datetime,
    due_date: Optional[datetime] = None,
    overdue_date: Optional[datetime] = None,
    period_end_date: Optional[datetime] = None,
    payment_date: Optional[datetime] = None,
    payment_term_days: int = PAYMENT_TERM_DAYS,
    grace_days: int = OVERDUE_GRACE_DAYS,
) -> schemas.OverdueInfo:
    """Compute due/overdue dates and the overdue state of a payment as of ``now``.

    The result depends on ``now``; recompute it on every read instead of
    caching it.
    """
    if due_date is None:
        if period_end_date is not None:
            due_date = period_end_date
        elif payment_date is not None:
            due_date = payment_date + timedelta(days=payment_term_days)
        else:
            due_date = now + timedelta(days=payment_term_days)

    if overdue_date is None:
        overdue_date = due_date + timedelta(days=grace_days)

    is_overdue = now > overdue_date
    overdue_days = math.floor((now - overdue_date) / _DAY) if is_overdue else 0

    return schemas.OverdueInfo(
        due_date=due_date,
        overdue_date=overdue_date,
        is_overdue=is_overdue,
        overdue_days=overdue_days,
    )


def payment_overdue_info(payment: schemas.PaymentRecord, now: datetime, **kwargs) -> schemas.OverdueInfo:
    return calculate_overdue_info(
        now,
        due_date=payment.due_date,
        overdue_date=payment.overdue_date,
        period_end_date=payment.period_end_date,
        payment_date=payment.payment_date,
        **kwargs,
    )


def overdue_payment_entries(
    rentals: List[schemas.RentalRecord],
    sales: List[schemas.SaleRecord],
    now: datetime,
    **kwargs,
) -> List[schemas.OverduePaymentEntry]:
    """Every overdue rental and sale payment, most overdue first."""
    entries = []
    owners = [(schemas.EntityType.rental, r) for r in rentals] + [(schemas.EntityType.sale, s) for s in sales]
    for entity_type, owner in owners:
        for payment in owner.payments:
            overdue = payment_overdue_info(payment, now, **kwargs)
            if not overdue.is_overdue:
                continue
            entries.append(schemas.OverduePaymentEntry(
                payment=payment,
                overdue=overdue,
                entity_type=entity_type,
                entity_id=owner.id,
                patient=schemas.EventPatient(
                    id=owner.patient.id, full_name=owner.patient.full_name, phone=owner.patient.phone
                ),
            ))
    return sorted(entries, key=lambda entry: entry.overdue.overdue_days, reverse=True)
