# medrental/services/notification_service.py
from datetime import datetime, timedelta
from typing import List

from .. import schemas
from ..models import AppointmentStatus, ReturnStatus
from .overdue import payment_overdue_info, PAYMENT_TERM_DAYS, OVERDUE_GRACE_DAYS

APPOINTMENT_DUE_SOON_HOURS = 24
RENTAL_ENDING_WINDOW_DAYS = 7


def _payment_notifications(payments, patient, entity_label, now, overdue_kwargs):
    for payment in payments:
        overdue = payment_overdue_info(payment, now, **overdue_kwargs)
        if overdue.is_overdue and overdue.overdue_days > 0:
            yield schemas.NotificationItem(
                id=f"overdue-payment-{payment.id}",
                title="Payment overdue",
                message=f"{entity_label} payment overdue by {overdue.overdue_days} days for {patient.full_name}",
                type=schemas.NotificationType.overdue,
                date=overdue.due_date,
                entity_type=schemas.EntityType.payment,
                entity_id=payment.id,
                patient_name=patient.full_name,
            )


def build_notifications(
    sources: schemas.CalendarSources,
    now: datetime,
    due_soon_hours: int = APPOINTMENT_DUE_SOON_HOURS,
    rental_ending_days: int = RENTAL_ENDING_WINDOW_DAYS,
    payment_term_days: int = PAYMENT_TERM_DAYS,
    grace_days: int = OVERDUE_GRACE_DAYS,
) -> List[schemas.NotificationItem]:
    """Alerts for missed and imminent appointments, overdue payments and rentals ending soon.

    Nothing is remembered between calls; every call recomputes from the sources.
    """
    overdue_kwargs = {"payment_term_days": payment_term_days, "grace_days": grace_days}
    soon = now + timedelta(hours=due_soon_hours)
    ending_limit = now + timedelta(days=rental_ending_days)
    notifications: List[schemas.NotificationItem] = []

    for appointment in sources.appointments:
        if appointment.status != AppointmentStatus.SCHEDULED:
            continue
        name = appointment.patient.full_name
        if appointment.appointment_date < now:
            notifications.append(schemas.NotificationItem(
                id=f"overdue-appointment-{appointment.id}",
                title="Missed appointment",
                message=f"Appointment scheduled with {name}",
                type=schemas.NotificationType.overdue,
                date=appointment.appointment_date,
                entity_type=schemas.EntityType.appointment,
                entity_id=appointment.id,
                patient_name=name,
            ))
        elif appointment.appointment_date <= soon:
            notifications.append(schemas.NotificationItem(
                id=f"upcoming-appointment-{appointment.id}",
                title="Upcoming appointment",
                message=f"Appointment with {name} in less than {due_soon_hours}h",
                type=schemas.NotificationType.due_soon,
                date=appointment.appointment_date,
                entity_type=schemas.EntityType.appointment,
                entity_id=appointment.id,
                patient_name=name,
            ))

    for rental in sources.rentals:
        notifications.extend(_payment_notifications(rental.payments, rental.patient, "Rental", now, overdue_kwargs))
    for sale in sources.sales:
        notifications.extend(_payment_notifications(sale.payments, sale.patient, "Sale", now, overdue_kwargs))

    for rental in sources.rentals:
        if rental.end_date is None or rental.return_status != ReturnStatus.NOT_RETURNED:
            continue
        if now <= rental.end_date <= ending_limit:
            name = rental.patient.full_name
            notifications.append(schemas.NotificationItem(
                id=f"rental-ending-{rental.id}",
                title="Rental ending soon",
                message=f"Rental for {name} ends within {rental_ending_days} days",
                type=schemas.NotificationType.reminder,
                date=rental.end_date,
                entity_type=schemas.EntityType.rental,
                entity_id=rental.id,
                patient_name=name,
            ))

    return sorted(notifications, key=lambda item: item.date)
