# medrental/crud.py
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
from typing import Optional, List
import logging

from . import models, schemas
from .services.overdue import calculate_overdue_info, PAYMENT_TERM_DAYS, OVERDUE_GRACE_DAYS

logger = logging.getLogger(__name__)


class CRUDError(Exception):
    pass


class NotFoundError(CRUDError):
    pass


# ==================== RECORD CONVERSION ====================

def _patient_ref(patient: models.Patient) -> schemas.PatientRef:
    return schemas.PatientRef.model_validate(patient)


def _payment_record(payment: models.Payment) -> schemas.PaymentRecord:
    return schemas.PaymentRecord.model_validate(payment)


def _rental_payments(rental: models.Rental) -> List[schemas.PaymentRecord]:
    """Payments attached to the rental, its items and its groups, each once."""
    seen = set()
    payments = []
    sources = list(rental.payments)
    for item in rental.rental_items:
        sources.extend(item.payments)
    for group in rental.rental_groups:
        sources.extend(group.payments)
    for payment in sources:
        if payment.id in seen:
            continue
        seen.add(payment.id)
        payments.append(_payment_record(payment))
    return payments


def _rental_item_record(item: models.RentalItem) -> schemas.RentalItemRecord:
    equipment = item.device if item.item_type == models.RentalItemType.DEVICE else item.accessory
    return schemas.RentalItemRecord(
        id=item.id,
        item_type=item.item_type,
        name=equipment.name if equipment else None,
        model=equipment.model if equipment else None,
        quantity=item.quantity,
        unit_price=item.unit_price,
        total_price=item.total_price,
        payments=[_payment_record(p) for p in item.payments],
    )


def _rental_record(rental: models.Rental) -> schemas.RentalRecord:
    return schemas.RentalRecord(
        id=rental.id,
        start_date=rental.start_date,
        end_date=rental.end_date,
        amount=rental.amount,
        status=rental.status,
        return_status=rental.return_status,
        actual_return_date=rental.actual_return_date,
        contract_number=rental.contract_number,
        patient=_patient_ref(rental.patient),
        items=[_rental_item_record(item) for item in rental.rental_items],
        payments=_rental_payments(rental),
        created_by=rental.created_by,
    )


def _sale_record(sale: models.Sale) -> schemas.SaleRecord:
    return schemas.SaleRecord(
        id=sale.id,
        date=sale.date,
        amount=sale.amount,
        status=sale.status,
        notes=sale.notes,
        patient=_patient_ref(sale.patient),
        payments=[_payment_record(p) for p in sale.payments],
        created_by=sale.created_by,
    )


def _diagnostic_record(diagnostic: models.Diagnostic) -> schemas.DiagnosticRecord:
    return schemas.DiagnosticRecord(
        id=diagnostic.id,
        date=diagnostic.date,
        polygraph=diagnostic.polygraph,
        iah_result=diagnostic.iah_result,
        id_result=diagnostic.id_result,
        remarks=diagnostic.remarks,
        technician_id=diagnostic.technician_id,
        technician_name=diagnostic.technician.name if diagnostic.technician else None,
        patient=_patient_ref(diagnostic.patient),
    )


def _appointment_record(appointment: models.Appointment) -> schemas.AppointmentRecord:
    return schemas.AppointmentRecord(
        id=appointment.id,
        appointment_date=appointment.appointment_date,
        type=appointment.type,
        status=appointment.status,
        notes=appointment.notes,
        patient=_patient_ref(appointment.patient),
        linked_rental=appointment.rental.contract_number if appointment.rental else None,
        linked_sale=appointment.sale.amount if appointment.sale else None,
        linked_diagnostic=appointment.diagnostic.polygraph if appointment.diagnostic else None,
    )


# ==================== PATIENTS / TECHNICIANS ====================

def get_patient(db: Session, patient_id: int) -> Optional[models.Patient]:
    """Get a single patient by ID."""
    try:
        return db.query(models.Patient).filter(models.Patient.id == patient_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching patient {patient_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_patients(db: Session) -> List[schemas.PatientRef]:
    try:
        patients = db.query(models.Patient).order_by(models.Patient.id.asc()).all()
        return [_patient_ref(p) for p in patients]
    except SQLAlchemyError as e:
        logger.error(f"Error fetching patients: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_technicians(db: Session) -> List[schemas.TechnicianRecord]:
    """Technicians, most recently updated first."""
    try:
        technicians = db.query(models.Technician).order_by(models.Technician.updated_at.desc()).all()
        return [schemas.TechnicianRecord.model_validate(t) for t in technicians]
    except SQLAlchemyError as e:
        logger.error(f"Error fetching technicians: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_technician_by_email(db: Session, email: str) -> Optional[models.Technician]:
    return db.query(models.Technician).filter(func.lower(models.Technician.email) == email.lower()).first()


def get_technician(db: Session, technician_id: int) -> Optional[models.Technician]:
    return db.query(models.Technician).filter(models.Technician.id == technician_id).first()


def count_patients_created_by(db: Session) -> dict:
    """Number of patients created per technician id."""
    try:
        rows = db.query(models.Patient.created_by, func.count(models.Patient.id)).filter(
            models.Patient.created_by.isnot(None)
        ).group_by(models.Patient.created_by).all()
        return {technician_id: count for technician_id, count in rows}
    except SQLAlchemyError as e:
        logger.error(f"Error counting patients per creator: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== ENTITY FETCHERS ====================

def get_appointments(db: Session, patient_id: Optional[int] = None) -> List[schemas.AppointmentRecord]:
    try:
        query = db.query(models.Appointment).options(
            joinedload(models.Appointment.patient),
            joinedload(models.Appointment.rental),
            joinedload(models.Appointment.sale),
            joinedload(models.Appointment.diagnostic),
        )
        if patient_id is not None:
            query = query.filter(models.Appointment.patient_id == patient_id)
        appointments = query.order_by(models.Appointment.appointment_date.asc()).all()
        return [_appointment_record(a) for a in appointments]
    except SQLAlchemyError as e:
        logger.error(f"Error fetching appointments: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_rentals(db: Session, patient_id: Optional[int] = None) -> List[schemas.RentalRecord]:
    """Rentals with items and every payment, newest first."""
    try:
        query = db.query(models.Rental).options(
            joinedload(models.Rental.patient),
            selectinload(models.Rental.payments),
            selectinload(models.Rental.rental_items).selectinload(models.RentalItem.payments),
            selectinload(models.Rental.rental_items).joinedload(models.RentalItem.device),
            selectinload(models.Rental.rental_items).joinedload(models.RentalItem.accessory),
            selectinload(models.Rental.rental_groups).selectinload(models.RentalGroup.payments),
        )
        if patient_id is not None:
            query = query.filter(models.Rental.patient_id == patient_id)
        rentals = query.order_by(models.Rental.start_date.desc(), models.Rental.id.desc()).all()
        return [_rental_record(r) for r in rentals]
    except SQLAlchemyError as e:
        logger.error(f"Error fetching rentals: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_sales(db: Session, patient_id: Optional[int] = None) -> List[schemas.SaleRecord]:
    try:
        query = db.query(models.Sale).options(
            joinedload(models.Sale.patient),
            selectinload(models.Sale.payments),
        )
        if patient_id is not None:
            query = query.filter(models.Sale.patient_id == patient_id)
        sales = query.order_by(models.Sale.date.desc(), models.Sale.id.desc()).all()
        return [_sale_record(s) for s in sales]
    except SQLAlchemyError as e:
        logger.error(f"Error fetching sales: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_diagnostics(db: Session, patient_id: Optional[int] = None) -> List[schemas.DiagnosticRecord]:
    try:
        query = db.query(models.Diagnostic).options(
            joinedload(models.Diagnostic.patient),
            joinedload(models.Diagnostic.technician),
        )
        if patient_id is not None:
            query = query.filter(models.Diagnostic.patient_id == patient_id)
        diagnostics = query.order_by(models.Diagnostic.date.desc(), models.Diagnostic.id.desc()).all()
        return [_diagnostic_record(d) for d in diagnostics]
    except SQLAlchemyError as e:
        logger.error(f"Error fetching diagnostics: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== PAYMENTS ====================

def _payment_owner_exists(db: Session, payment_in: schemas.PaymentCreate) -> bool:
    owners = (
        (payment_in.rental_id, models.Rental),
        (payment_in.rental_item_id, models.RentalItem),
        (payment_in.rental_group_id, models.RentalGroup),
        (payment_in.sale_id, models.Sale),
    )
    for owner_id, model in owners:
        if owner_id is not None:
            return db.query(model.id).filter(model.id == owner_id).first() is not None
    return False


def create_payment(
    db: Session,
    payment_in: schemas.PaymentCreate,
    now: datetime,
    payment_term_days: int = PAYMENT_TERM_DAYS,
    grace_days: int = OVERDUE_GRACE_DAYS,
) -> models.Payment:
    """Persist a payment with its due/overdue tracking computed as of ``now``."""
    if not _payment_owner_exists(db, payment_in):
        raise NotFoundError("The rental, rental item, rental group or sale for this payment does not exist")

    overdue = calculate_overdue_info(
        now,
        due_date=payment_in.due_date,
        overdue_date=payment_in.overdue_date,
        period_end_date=payment_in.period_end_date,
        payment_date=payment_in.payment_date,
        payment_term_days=payment_term_days,
        grace_days=grace_days,
    )
    data = payment_in.model_dump(exclude={"due_date", "overdue_date", "payment_date"})
    db_payment = models.Payment(
        **data,
        payment_date=payment_in.payment_date or now,
        due_date=overdue.due_date,
        overdue_date=overdue.overdue_date,
        is_overdue=overdue.is_overdue,
        overdue_days=overdue.overdue_days,
    )
    try:
        db.add(db_payment)
        db.commit()
        db.refresh(db_payment)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating payment: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    logger.info(f"Created payment {db_payment.id} due {overdue.due_date:%Y-%m-%d} (overdue={overdue.is_overdue})")
    return db_payment


def refresh_overdue_flags(
    db: Session,
    now: datetime,
    payment_term_days: int = PAYMENT_TERM_DAYS,
    grace_days: int = OVERDUE_GRACE_DAYS,
) -> schemas.OverdueRefreshReport:
    """Recompute the stored overdue flags of every payment as of ``now``."""
    try:
        payments = db.query(models.Payment).all()
        updated = 0
        for payment in payments:
            overdue = calculate_overdue_info(
                now,
                due_date=payment.due_date,
                overdue_date=payment.overdue_date,
                period_end_date=payment.period_end_date,
                payment_date=payment.payment_date,
                payment_term_days=payment_term_days,
                grace_days=grace_days,
            )
            changed = (
                payment.due_date != overdue.due_date
                or payment.overdue_date != overdue.overdue_date
                or payment.is_overdue != overdue.is_overdue
                or payment.overdue_days != overdue.overdue_days
            )
            if changed:
                payment.due_date = overdue.due_date
                payment.overdue_date = overdue.overdue_date
                payment.is_overdue = overdue.is_overdue
                payment.overdue_days = overdue.overdue_days
                updated += 1
        db.commit()
        logger.info(f"Refreshed overdue flags: {updated} of {len(payments)} payments changed")
        return schemas.OverdueRefreshReport(checked=len(payments), updated=updated)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error refreshing overdue flags: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
