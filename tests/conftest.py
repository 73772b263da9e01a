# tests/conftest.py
from datetime import datetime
from types import SimpleNamespace

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from medrental import models, security
from medrental.core.clock import get_now
from medrental.database import Base, get_db, get_session_factory
from medrental.main import app

from factories import NOW, ADMIN_PASSWORD


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'medrental_test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db):
    """A small fleet: two patients, a closed and an open rental, a sale, a diagnostic and an appointment."""
    admin = models.Technician(name="Admin", email="admin@example.com", role=models.TechnicianRole.ADMIN,
                              password_hash=security.get_password_hash(ADMIN_PASSWORD),
                              updated_at=datetime(2024, 6, 14))
    manager = models.Technician(name="Manager", email="manager@example.com", role=models.TechnicianRole.MANAGER,
                                password_hash="x", updated_at=datetime(2024, 6, 10))
    employee = models.Technician(name="Sami Gharbi", email="sami@example.com", role=models.TechnicianRole.EMPLOYEE,
                                 password_hash="x", updated_at=datetime(2024, 6, 1))
    db.add_all([admin, manager, employee])
    db.flush()

    amel = models.Patient(full_name="Amel Ben Salah", phone="20123456", region="Tunis",
                          date_of_birth=datetime(1950, 3, 10), created_at=datetime(2024, 6, 2),
                          created_by=employee.id)
    karim = models.Patient(full_name="Karim Trabelsi", phone="98765432", region="Sfax",
                           date_of_birth=datetime(1985, 11, 2), created_at=datetime(2023, 11, 20),
                           created_by=employee.id)
    db.add_all([amel, karim])
    db.flush()

    device = models.Device(name="ResMed AirSense 10", model="AS10")
    mask = models.Accessory(name="Nasal mask", model="N20")
    db.add_all([device, mask])
    db.flush()

    closed_rental = models.Rental(
        patient_id=amel.id, start_date=datetime(2024, 6, 1), end_date=datetime(2024, 6, 20), amount=300,
        status=models.TransactionStatus.COMPLETED, return_status=models.ReturnStatus.NOT_RETURNED,
        contract_number="CTR-001", created_by=employee.id,
    )
    open_rental = models.Rental(
        patient_id=karim.id, start_date=datetime(2024, 6, 10), end_date=None, amount=200,
        status=models.TransactionStatus.PENDING, return_status=models.ReturnStatus.NOT_RETURNED,
        contract_number="CTR-002", created_by=admin.id,
    )
    db.add_all([closed_rental, open_rental])
    db.flush()

    device_item = models.RentalItem(rental_id=closed_rental.id, item_type=models.RentalItemType.DEVICE,
                                    quantity=1, unit_price=250, total_price=250, device_id=device.id)
    mask_item = models.RentalItem(rental_id=closed_rental.id, item_type=models.RentalItemType.ACCESSORY,
                                  quantity=1, unit_price=50, total_price=50, accessory_id=mask.id)
    db.add_all([device_item, mask_item])
    db.flush()

    overdue_payment = models.Payment(amount=150, type=models.PaymentType.CASH, rental_id=closed_rental.id,
                                     payment_date=datetime(2024, 4, 20), due_date=datetime(2024, 5, 20))
    item_payment = models.Payment(amount=100, type=models.PaymentType.CNAM, rental_item_id=device_item.id,
                                  period_start_date=datetime(2024, 6, 1), period_end_date=datetime(2024, 6, 30))

    sale = models.Sale(patient_id=karim.id, date=datetime(2024, 6, 5), amount=1200,
                       status=models.TransactionStatus.COMPLETED, created_by=employee.id)
    db.add(sale)
    db.flush()
    sale_payment = models.Payment(amount=1200, type=models.PaymentType.CHEQUE, sale_id=sale.id,
                                  due_date=datetime(2024, 7, 5))
    db.add_all([overdue_payment, item_payment, sale_payment])

    diagnostic = models.Diagnostic(patient_id=amel.id, technician_id=admin.id, date=datetime(2024, 5, 28),
                                   polygraph="Nox T3", iah_result=22.5, id_result=18.0)
    db.add(diagnostic)
    db.flush()

    appointment = models.Appointment(patient_id=amel.id, appointment_date=datetime(2024, 6, 16, 9, 0),
                                     type="INSTALLATION", status=models.AppointmentStatus.SCHEDULED,
                                     rental_id=closed_rental.id)
    db.add(appointment)
    db.commit()

    return SimpleNamespace(
        admin=admin, manager=manager, employee=employee,
        amel=amel, karim=karim,
        closed_rental=closed_rental, open_rental=open_rental,
        device_item=device_item,
        overdue_payment=overdue_payment, item_payment=item_payment, sale_payment=sale_payment,
        sale=sale, diagnostic=diagnostic, appointment=appointment,
    )


@pytest.fixture
async def async_client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_now] = lambda: NOW
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(technician: models.Technician) -> dict:
        token = security.create_access_token(
            data={"sub": technician.email, "user_id": technician.id, "role": technician.role.value}
        )
        return {"Authorization": f"Bearer {token}"}
    return _headers
