# medrental/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Float,
    Enum as SQLAlchemyEnum, Boolean, Numeric, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
import enum


class TechnicianRole(str, enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    DOCTOR = "DOCTOR"
    EMPLOYEE = "EMPLOYEE"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReturnStatus(str, enum.Enum):
    NOT_RETURNED = "NOT_RETURNED"
    RETURNED = "RETURNED"
    PARTIALLY_RETURNED = "PARTIALLY_RETURNED"
    DAMAGED = "DAMAGED"


class RentalItemType(str, enum.Enum):
    DEVICE = "DEVICE"
    ACCESSORY = "ACCESSORY"


class PaymentType(str, enum.Enum):
    CASH = "CASH"
    CHEQUE = "CHEQUE"
    TRAITE = "TRAITE"
    CNAM = "CNAM"
    VIREMENT = "VIREMENT"
    MONDAT = "MONDAT"


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# User Management Models
class Technician(Base):
    """Application user: technicians, doctors and administrators."""
    __tablename__ = "technicians"
    __table_args__ = (
        Index('idx_technicians_email', 'email'),
        Index('idx_technicians_role_active', 'role', 'is_active'),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(SQLAlchemyEnum(TechnicianRole, name='technician_role'), default=TechnicianRole.EMPLOYEE, nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    created_patients = relationship("Patient", back_populates="creator", foreign_keys="Patient.created_by")
    created_rentals = relationship("Rental", back_populates="creator")
    created_sales = relationship("Sale", back_populates="creator")
    diagnostics = relationship("Diagnostic", back_populates="technician")


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        Index('idx_patients_phone', 'phone'),
        Index('idx_patients_created', 'created_at'),
    )

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=False)
    region = Column(String(100), nullable=True)
    address = Column(Text, nullable=True)
    doctor_name = Column(String(200), nullable=True)
    date_of_birth = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey("technicians.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    creator = relationship("Technician", back_populates="created_patients", foreign_keys=[created_by])
    rentals = relationship("Rental", back_populates="patient", cascade="all, delete-orphan")
    sales = relationship("Sale", back_populates="patient", cascade="all, delete-orphan")
    diagnostics = relationship("Diagnostic", back_populates="patient", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="patient", cascade="all, delete-orphan")


# ==================== Equipment ====================

class Device(Base):
    """A medical device; linked to a sale when sold outright."""
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    model = Column(String(100), nullable=True)
    serial_number = Column(String(100), nullable=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=True)

    sale = relationship("Sale", back_populates="devices")


class Accessory(Base):
    __tablename__ = "accessories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    model = Column(String(100), nullable=True)
    is_free = Column(Boolean, default=False)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=True)

    sale = relationship("Sale", back_populates="accessories")


# ==================== Rentals ====================

class Rental(Base):
    """A rental contract. An open rental has no end_date."""
    __tablename__ = "rentals"
    __table_args__ = (
        Index('idx_rentals_patient_start', 'patient_id', 'start_date'),
        Index('idx_rentals_status_return', 'status', 'return_status'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(SQLAlchemyEnum(TransactionStatus, name='transaction_status'), default=TransactionStatus.PENDING, nullable=False)
    return_status = Column(SQLAlchemyEnum(ReturnStatus, name='return_status'), default=ReturnStatus.NOT_RETURNED, nullable=False)
    actual_return_date = Column(DateTime, nullable=True)
    contract_number = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, ForeignKey("technicians.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    patient = relationship("Patient", back_populates="rentals")
    creator = relationship("Technician", back_populates="created_rentals")
    rental_items = relationship("RentalItem", back_populates="rental", cascade="all, delete-orphan")
    rental_groups = relationship("RentalGroup", back_populates="rental", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="rental", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="rental")


class RentalGroup(Base):
    """A named bundle of rental items sharing payments."""
    __tablename__ = "rental_groups"

    id = Column(Integer, primary_key=True, index=True)
    rental_id = Column(Integer, ForeignKey("rentals.id"), nullable=False)
    name = Column(String(200), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False, default=0)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    rental = relationship("Rental", back_populates="rental_groups")
    items = relationship("RentalItem", back_populates="rental_group")
    payments = relationship("Payment", back_populates="rental_group", cascade="all, delete-orphan")


class RentalItem(Base):
    # total_price == unit_price * quantity is enforced by the entry form
    __tablename__ = "rental_items"

    id = Column(Integer, primary_key=True, index=True)
    rental_id = Column(Integer, ForeignKey("rentals.id"), nullable=False)
    rental_group_id = Column(Integer, ForeignKey("rental_groups.id"), nullable=True)
    item_type = Column(SQLAlchemyEnum(RentalItemType, name='rental_item_type'), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(10, 2), nullable=False, default=0)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    device_id = Column(Integer, ForeignKey("devices.id"), nullable=True)
    accessory_id = Column(Integer, ForeignKey("accessories.id"), nullable=True)

    rental = relationship("Rental", back_populates="rental_items")
    rental_group = relationship("RentalGroup", back_populates="items")
    device = relationship("Device")
    accessory = relationship("Accessory")
    payments = relationship("Payment", back_populates="rental_item", cascade="all, delete-orphan")


# ==================== Sales ====================

class Sale(Base):
    __tablename__ = "sales"
    __table_args__ = (
        Index('idx_sales_patient_date', 'patient_id', 'date'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    date = Column(DateTime, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(SQLAlchemyEnum(TransactionStatus, name='transaction_status'), default=TransactionStatus.PENDING, nullable=False)
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, ForeignKey("technicians.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    patient = relationship("Patient", back_populates="sales")
    creator = relationship("Technician", back_populates="created_sales")
    devices = relationship("Device", back_populates="sale")
    accessories = relationship("Accessory", back_populates="sale")
    payments = relationship("Payment", back_populates="sale", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="sale")


# ==================== Diagnostics ====================

class Diagnostic(Base):
    """A polygraphy session and its clinical indices."""
    __tablename__ = "diagnostics"
    __table_args__ = (
        Index('idx_diagnostics_patient_date', 'patient_id', 'date'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    technician_id = Column(Integer, ForeignKey("technicians.id"), nullable=True)
    date = Column(DateTime, nullable=False)
    polygraph = Column(String(100), nullable=False)
    iah_result = Column(Float, nullable=False)  # apnea-hypopnea index
    id_result = Column(Float, nullable=False)   # desaturation index
    remarks = Column(Text, nullable=True)

    patient = relationship("Patient", back_populates="diagnostics")
    technician = relationship("Technician", back_populates="diagnostics")
    appointments = relationship("Appointment", back_populates="diagnostic")


# ==================== Payments ====================

class Payment(Base):
    """A payment or scheduled installment owned by a rental, rental item, rental group or sale."""
    __tablename__ = "payments"
    __table_args__ = (
        Index('idx_payments_due_date', 'due_date'),
        Index('idx_payments_overdue', 'is_overdue'),
    )

    id = Column(Integer, primary_key=True, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    type = Column(SQLAlchemyEnum(PaymentType, name='payment_type'), nullable=False)
    payment_date = Column(DateTime, nullable=True)
    period_start_date = Column(DateTime, nullable=True)
    period_end_date = Column(DateTime, nullable=True)

    # Overdue tracking
    due_date = Column(DateTime, nullable=True)
    overdue_date = Column(DateTime, nullable=True)
    is_overdue = Column(Boolean, default=False, nullable=False)
    overdue_days = Column(Integer, default=0, nullable=False)
    reminder_sent = Column(Boolean, default=False, nullable=False)

    # Method specific
    cheque_number = Column(String(50), nullable=True)
    cheque_date = Column(DateTime, nullable=True)
    traite_due_date = Column(DateTime, nullable=True)
    cnam_status = Column(String(50), nullable=True)
    cnam_followup_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    rental_id = Column(Integer, ForeignKey("rentals.id"), nullable=True)
    rental_item_id = Column(Integer, ForeignKey("rental_items.id"), nullable=True)
    rental_group_id = Column(Integer, ForeignKey("rental_groups.id"), nullable=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    rental = relationship("Rental", back_populates="payments")
    rental_item = relationship("RentalItem", back_populates="payments")
    rental_group = relationship("RentalGroup", back_populates="payments")
    sale = relationship("Sale", back_populates="payments")


# ==================== Appointments ====================

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_patient_date', 'patient_id', 'appointment_date'),
        Index('idx_appointments_status_date', 'status', 'appointment_date'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    appointment_date = Column(DateTime, nullable=False)
    type = Column(String(50), nullable=False)
    status = Column(SQLAlchemyEnum(AppointmentStatus, name='appointment_status'), default=AppointmentStatus.SCHEDULED, nullable=False)
    notes = Column(Text, nullable=True)

    rental_id = Column(Integer, ForeignKey("rentals.id"), nullable=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=True)
    diagnostic_id = Column(Integer, ForeignKey("diagnostics.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("technicians.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    patient = relationship("Patient", back_populates="appointments")
    rental = relationship("Rental", back_populates="appointments")
    sale = relationship("Sale", back_populates="appointments")
    diagnostic = relationship("Diagnostic", back_populates="appointments")
