# tests/factories.py
from datetime import datetime

from medrental import schemas
from medrental.models import (
    AppointmentStatus, PaymentType, RentalItemType, ReturnStatus, TechnicianRole, TransactionStatus,
)

NOW = datetime(2024, 6, 15, 12, 0, 0)
ADMIN_PASSWORD = "s3cret-pass"


def patient(id=1, full_name="Amel Ben Salah", phone="20123456", **kwargs):
    return schemas.PatientRef(id=id, full_name=full_name, phone=phone, **kwargs)


def payment(id=1, amount=100.0, type=PaymentType.CASH, **kwargs):
    return schemas.PaymentRecord(id=id, amount=amount, type=type, **kwargs)


def rental_item(id=1, name="ResMed AirSense 10", item_type=RentalItemType.DEVICE, **kwargs):
    return schemas.RentalItemRecord(id=id, name=name, item_type=item_type, **kwargs)


def rental(id=1, start_date=datetime(2024, 6, 1), end_date=None, amount=300.0,
           status=TransactionStatus.COMPLETED, return_status=ReturnStatus.NOT_RETURNED,
           patient_ref=None, **kwargs):
    return schemas.RentalRecord(
        id=id,
        start_date=start_date,
        end_date=end_date,
        amount=amount,
        status=status,
        return_status=return_status,
        patient=patient_ref or patient(),
        **kwargs,
    )


def sale(id=1, date=datetime(2024, 6, 5), amount=1200.0, status=TransactionStatus.COMPLETED,
         patient_ref=None, **kwargs):
    return schemas.SaleRecord(id=id, date=date, amount=amount, status=status,
                              patient=patient_ref or patient(), **kwargs)


def diagnostic(id=1, date=datetime(2024, 5, 28), polygraph="Nox T3", iah_result=22.5, id_result=18.0,
               patient_ref=None, **kwargs):
    return schemas.DiagnosticRecord(id=id, date=date, polygraph=polygraph, iah_result=iah_result,
                                    id_result=id_result, patient=patient_ref or patient(), **kwargs)


def appointment(id=1, appointment_date=datetime(2024, 6, 16, 9, 0), type="INSTALLATION",
                status=AppointmentStatus.SCHEDULED, patient_ref=None, **kwargs):
    return schemas.AppointmentRecord(id=id, appointment_date=appointment_date, type=type, status=status,
                                     patient=patient_ref or patient(), **kwargs)


def technician(id=1, name="Sami Gharbi", email="sami@example.com", role=TechnicianRole.EMPLOYEE, **kwargs):
    return schemas.TechnicianRecord(id=id, name=name, email=email, role=role, **kwargs)
