# medrental/schemas.py
from datetime import datetime, timezone
from typing import Annotated, List, Optional, Union, Literal
from pydantic import BaseModel, ConfigDict, Field, FiniteFloat, field_validator, model_validator
from pydantic.alias_generators import to_camel
from enum import Enum

from .models import (
    TransactionStatus, ReturnStatus, RentalItemType, PaymentType,
    AppointmentStatus, TechnicianRole,
)


# --- Base Schemas ---
class BaseSchema(BaseModel):
    """camelCase on the wire, snake_case in Python, readable from ORM rows."""
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class RecordSchema(BaseSchema):
    """Base for records handed to the derivation services; datetimes are normalised to naive UTC."""

    @field_validator("*", mode="after")
    @classmethod
    def _naive_utc(cls, v):
        if isinstance(v, datetime) and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


# ==================== Input records ====================

class PatientRef(RecordSchema):
    id: int
    full_name: str
    phone: str
    region: Optional[str] = None
    address: Optional[str] = None
    doctor_name: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PaymentRecord(RecordSchema):
    id: int
    amount: FiniteFloat
    type: PaymentType
    payment_date: Optional[datetime] = None
    period_start_date: Optional[datetime] = None
    period_end_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    overdue_date: Optional[datetime] = None
    is_overdue: bool = False
    overdue_days: int = 0


class RentalItemRecord(RecordSchema):
    id: int
    item_type: RentalItemType
    name: Optional[str] = None
    model: Optional[str] = None
    quantity: int = 1
    unit_price: FiniteFloat = 0
    total_price: FiniteFloat = 0
    payments: List[PaymentRecord] = Field(default_factory=list)


class RentalRecord(RecordSchema):
    id: int
    start_date: datetime
    end_date: Optional[datetime] = None
    amount: FiniteFloat
    status: TransactionStatus
    return_status: ReturnStatus
    actual_return_date: Optional[datetime] = None
    contract_number: Optional[str] = None
    patient: PatientRef
    items: List[RentalItemRecord] = Field(default_factory=list)
    # Union of direct, item and group payments
    payments: List[PaymentRecord] = Field(default_factory=list)
    created_by: Optional[int] = None


class SaleRecord(RecordSchema):
    id: int
    date: datetime
    amount: FiniteFloat
    status: TransactionStatus
    notes: Optional[str] = None
    patient: PatientRef
    payments: List[PaymentRecord] = Field(default_factory=list)
    created_by: Optional[int] = None


class DiagnosticRecord(RecordSchema):
    id: int
    date: datetime
    polygraph: str
    iah_result: FiniteFloat = Field(..., ge=0)
    id_result: FiniteFloat = Field(..., ge=0)
    remarks: Optional[str] = None
    technician_id: Optional[int] = None
    technician_name: Optional[str] = None
    patient: PatientRef


class AppointmentRecord(RecordSchema):
    id: int
    appointment_date: datetime
    type: str
    status: AppointmentStatus
    notes: Optional[str] = None
    patient: PatientRef
    linked_rental: Optional[str] = None
    linked_sale: Optional[FiniteFloat] = None
    linked_diagnostic: Optional[str] = None


class TechnicianRecord(RecordSchema):
    id: int
    name: str
    email: str
    role: TechnicianRole
    is_active: bool = True
    updated_at: Optional[datetime] = None


class CalendarSources(BaseSchema):
    appointments: List[AppointmentRecord] = Field(default_factory=list)
    rentals: List[RentalRecord] = Field(default_factory=list)
    sales: List[SaleRecord] = Field(default_factory=list)
    diagnostics: List[DiagnosticRecord] = Field(default_factory=list)


# ==================== Overdue / progress ====================

class OverdueInfo(BaseSchema):
    model_config = ConfigDict(frozen=True)

    due_date: datetime
    overdue_date: datetime
    is_overdue: bool
    overdue_days: int


class RentalProgress(BaseSchema):
    model_config = ConfigDict(frozen=True)

    total_days: Optional[int] = None
    days_elapsed: int
    days_remaining: Optional[int] = None
    progress_percentage: Optional[int] = None
    is_overdue: bool = False


# ==================== Calendar events ====================

class EventType(str, Enum):
    appointment = "appointment"
    rental = "rental"
    sale = "sale"
    diagnostic = "diagnostic"
    payment = "payment"
    rental_period = "rental_period"


class EventPatient(BaseSchema):
    id: int
    full_name: str
    phone: str


class DetailSchema(BaseSchema):
    """Base for the per-kind ``details`` payload of a calendar event."""
    model_config = ConfigDict(frozen=True)


class AppointmentDetails(DetailSchema):
    kind: Literal["appointment"] = "appointment"
    type: str
    notes: Optional[str] = None
    region: Optional[str] = None
    linked_rental: Optional[str] = None
    linked_sale: Optional[float] = None
    linked_diagnostic: Optional[str] = None


class RentalPeriodDetails(DetailSchema):
    kind: Literal["rental_period"] = "rental_period"
    amount: float
    contract_number: Optional[str] = None
    return_status: ReturnStatus
    day_in_period: int
    total_days: int
    progress_percentage: int
    actual_return_date: Optional[datetime] = None
    is_open_rental: bool


class RentalStartDetails(DetailSchema):
    kind: Literal["rental_start"] = "rental_start"
    amount: float
    contract_number: Optional[str] = None
    return_status: ReturnStatus
    end_date: Optional[datetime] = None
    total_days: int
    is_open_rental: bool


class RentalEndDetails(DetailSchema):
    kind: Literal["rental_end"] = "rental_end"
    amount: float
    contract_number: Optional[str] = None
    actual_return_date: Optional[datetime] = None
    start_date: datetime
    total_days: int


class PaymentDetails(DetailSchema):
    kind: Literal["payment"] = "payment"
    amount: float
    payment_type: PaymentType
    due_date: datetime
    overdue_date: datetime
    is_overdue: bool
    overdue_days: int
    contract_number: Optional[str] = None
    sale_amount: Optional[float] = None


class SaleDetails(DetailSchema):
    kind: Literal["sale"] = "sale"
    amount: float
    notes: Optional[str] = None


class DiagnosticDetails(DetailSchema):
    kind: Literal["diagnostic"] = "diagnostic"
    polygraph: str
    iah_result: float
    id_result: float
    remarks: Optional[str] = None


EventDetails = Annotated[
    Union[
        AppointmentDetails, RentalPeriodDetails, RentalStartDetails, RentalEndDetails,
        PaymentDetails, SaleDetails, DiagnosticDetails,
    ],
    Field(discriminator="kind"),
]


class CalendarEvent(BaseSchema):
    """One entry of the unified timeline. Built fresh on every aggregation and never mutated."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    date: datetime
    type: EventType
    status: str
    patient: EventPatient
    details: EventDetails
    # rental_period only
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_ongoing: Optional[bool] = None
    day_in_period: Optional[int] = None
    total_days: Optional[int] = None
    rental_id: Optional[int] = None


class NotificationType(str, Enum):
    overdue = "overdue"
    due_soon = "due_soon"
    reminder = "reminder"


class EntityType(str, Enum):
    appointment = "appointment"
    rental = "rental"
    sale = "sale"
    diagnostic = "diagnostic"
    payment = "payment"


class NotificationItem(BaseSchema):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    message: str
    type: NotificationType
    date: datetime
    entity_type: EntityType
    entity_id: int
    patient_name: Optional[str] = None


class CalendarStats(BaseSchema):
    appointments: int
    rentals: int
    sales: int
    diagnostics: int
    overdue_payments: int


# ==================== Analytics ====================

class OverviewStats(BaseSchema):
    total_patients: int
    total_rentals: int
    total_sales: int
    total_diagnostics: int
    total_revenue: float
    active_rentals: int
    overdue_payments: int
    new_patients_this_month: int


class MonthlyRevenue(BaseSchema):
    month: str  # YYYY-MM
    label: str
    sales: float
    rentals: float
    total: float


class YearlyRevenue(BaseSchema):
    year: int
    total: float


class RevenueSection(BaseSchema):
    monthly: List[MonthlyRevenue] = Field(default_factory=list)
    yearly: List[YearlyRevenue] = Field(default_factory=list)


class AgeBucket(BaseSchema):
    age: str
    count: int


class ConditionBucket(BaseSchema):
    condition: str
    count: int


class GrowthPoint(BaseSchema):
    month: str
    label: str
    count: int


class PatientsSection(BaseSchema):
    total_patients: int
    new_patients_this_month: int
    active_patients: int
    inactive_patients: int
    patients_by_age: List[AgeBucket] = Field(default_factory=list)
    patients_by_condition: List[ConditionBucket] = Field(default_factory=list)
    patient_growth: List[GrowthPoint] = Field(default_factory=list)


class StatusCount(BaseSchema):
    status: str
    count: int


class EquipmentEntry(BaseSchema):
    type: str
    name: Optional[str] = None
    model: Optional[str] = None


class RentalTimelineEntry(BaseSchema):
    id: int
    contract_number: Optional[str] = None
    patient: EventPatient
    start_date: datetime
    end_date: Optional[datetime] = None
    actual_return_date: Optional[datetime] = None
    status: TransactionStatus
    return_status: ReturnStatus
    timeline_status: str
    total_days: Optional[int] = None
    days_elapsed: int
    days_remaining: Optional[int] = None
    progress_percentage: Optional[int] = None
    amount: float
    equipment: List[EquipmentEntry] = Field(default_factory=list)


class ActiveRentalProgress(BaseSchema):
    id: int
    contract_number: Optional[str] = None
    patient: EventPatient
    start_date: datetime
    end_date: Optional[datetime] = None
    total_days: Optional[int] = None
    days_elapsed: int
    days_remaining: Optional[int] = None
    progress_percentage: Optional[int] = None
    is_overdue: bool
    amount: float
    equipment_count: int
    equipment_summary: str


class PatientRentalRollup(BaseSchema):
    patient: EventPatient
    total_rentals: int = 0
    active_rentals: int = 0
    total_revenue: float = 0
    # None when every rental of the patient is open-ended
    avg_duration: Optional[int] = None
    rental_ids: List[int] = Field(default_factory=list)


class RentalsSection(BaseSchema):
    active_rentals: int
    total_rentals: int
    overdue_payments: int
    rentals_by_status: List[StatusCount] = Field(default_factory=list)
    rental_revenue: float
    average_rental_duration: int
    patient_rentals: List[RentalTimelineEntry] = Field(default_factory=list)
    active_rentals_with_progress: List[ActiveRentalProgress] = Field(default_factory=list)
    rentals_by_patient: List[PatientRentalRollup] = Field(default_factory=list)


class TypeCount(BaseSchema):
    type: str
    count: int


class TechnicianCount(BaseSchema):
    technician: str
    count: int


class DiagnosticsSection(BaseSchema):
    total_diagnostics: int
    diagnostics_this_month: int
    diagnostics_by_type: List[TypeCount] = Field(default_factory=list)
    diagnostics_by_technician: List[TechnicianCount] = Field(default_factory=list)


class UserActivity(BaseSchema):
    user: str
    actions: int
    last_active: Optional[datetime] = None


class UsersSection(BaseSchema):
    total_users: int
    active_users: int
    user_activity: List[UserActivity] = Field(default_factory=list)


class AnalyticsSummary(BaseSchema):
    overview: OverviewStats
    revenue: RevenueSection
    patients: PatientsSection
    rentals: RentalsSection
    diagnostics: DiagnosticsSection
    users: UsersSection


# ==================== Patient trackers ====================

class PatientRentalSummary(BaseSchema):
    total_rentals: int
    active_rentals: int
    completed_rentals: int
    total_revenue: float
    # Item prices not yet covered by item payments
    total_outstanding: float
    ending_soon_rental_ids: List[int] = Field(default_factory=list)
    overdue_rental_ids: List[int] = Field(default_factory=list)


class PaymentBalance(BaseSchema):
    entity_type: EntityType
    entity_id: int
    amount: float
    paid: float
    outstanding: float


class PaymentMethodTotal(BaseSchema):
    type: PaymentType
    count: int
    amount: float


class PatientPaymentSummary(BaseSchema):
    total_payments: int
    total_paid: float
    total_outstanding: float
    total_revenue: float
    balances: List[PaymentBalance] = Field(default_factory=list)
    by_method: List[PaymentMethodTotal] = Field(default_factory=list)


class PatientSalesSummary(BaseSchema):
    total_sales: int
    completed_sales: int
    pending_sales: int
    cancelled_sales: int
    total_revenue: float
    total_paid: float
    outstanding_amount: float
    recent_sale_ids: List[int] = Field(default_factory=list)


# ==================== Payments API ====================

class PaymentCreate(BaseSchema):
    amount: FiniteFloat = Field(..., gt=0)
    type: PaymentType
    payment_date: Optional[datetime] = None
    period_start_date: Optional[datetime] = None
    period_end_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    overdue_date: Optional[datetime] = None
    cheque_number: Optional[str] = Field(None, max_length=50)
    cheque_date: Optional[datetime] = None
    traite_due_date: Optional[datetime] = None
    cnam_status: Optional[str] = Field(None, max_length=50)
    cnam_followup_date: Optional[datetime] = None
    notes: Optional[str] = None

    rental_id: Optional[int] = None
    rental_item_id: Optional[int] = None
    rental_group_id: Optional[int] = None
    sale_id: Optional[int] = None

    @field_validator(
        "payment_date", "period_start_date", "period_end_date", "due_date",
        "overdue_date", "cheque_date", "traite_due_date", "cnam_followup_date",
        mode="after",
    )
    @classmethod
    def _naive_utc(cls, v):
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode="after")
    def check_single_owner(self):
        owners = [self.rental_id, self.rental_item_id, self.rental_group_id, self.sale_id]
        if sum(owner is not None for owner in owners) != 1:
            raise ValueError("A payment must belong to exactly one rental, rental item, rental group or sale")
        if self.period_start_date and self.period_end_date and self.period_end_date < self.period_start_date:
            raise ValueError("period_end_date must not be before period_start_date")
        return self


class PaymentResponse(PaymentRecord):
    reminder_sent: bool = False
    cheque_number: Optional[str] = None
    cnam_status: Optional[str] = None
    notes: Optional[str] = None
    rental_id: Optional[int] = None
    rental_item_id: Optional[int] = None
    rental_group_id: Optional[int] = None
    sale_id: Optional[int] = None


class OverduePaymentEntry(BaseSchema):
    payment: PaymentRecord
    overdue: OverdueInfo
    entity_type: EntityType
    entity_id: int
    patient: EventPatient


class OverdueRefreshReport(BaseSchema):
    checked: int
    updated: int


# ==================== Auth ====================

class Token(BaseModel):
    access_token: str
    token_type: str


class TechnicianResponse(BaseSchema):
    id: int
    name: str
    email: str
    role: TechnicianRole
    is_active: Optional[bool] = None
