from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator

from garage_backend.models import (
    ApprovalDecision,
    BudgetApprovalStatus,
    PaymentMethod,
    ServiceOrderStatus,
)


# ============================================================================
# BUDGET LINE SCHEMAS
# ============================================================================
class PartLine(BaseModel):
    part_id: Optional[int] = None
    code: Optional[str] = None
    description: str = ""
    quantity: int = Field(gt=0)
    unit_price: float = Field(default=0, ge=0)
    total_price: Optional[float] = Field(default=None, ge=0)
    from_inventory: bool = False

    @model_validator(mode="after")
    def check_line(self):
        if self.from_inventory and not self.part_id:
            raise ValueError("Inventory lines must reference a part_id")
        if self.total_price is None:
            self.total_price = round(self.quantity * self.unit_price, 2)
        return self


class ServiceLine(BaseModel):
    description: str
    estimated_hours: float = Field(default=0, ge=0)
    price_per_hour: float = Field(default=0, ge=0)
    total_price: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def fill_total(self):
        if self.total_price is None:
            self.total_price = round(self.estimated_hours * self.price_per_hour, 2)
        return self


class ChecklistItem(BaseModel):
    description: str
    checked: bool = False
    notes: Optional[str] = None


class TestDrive(BaseModel):
    performed: bool = False
    date: Optional[datetime] = None
    notes: Optional[str] = None


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================
class ServiceOrderCreate(BaseModel):
    vehicle_id: int
    current_mileage: Optional[int] = Field(default=None, ge=0)
    reported_problem: str = Field(min_length=1)
    entry_checklist: List[ChecklistItem] = []
    fuel_level: Optional[str] = None
    visible_damages: List[str] = []
    identified_problems: List[str] = []
    required_parts: List[PartLine] = []
    services: List[ServiceLine] = []
    estimated_completion_date: Optional[datetime] = None
    technical_observations: Optional[str] = None


class ServiceOrderEdit(BaseModel):
    id: int
    vehicle_id: Optional[int] = None
    current_mileage: Optional[int] = Field(default=None, ge=0)
    reported_problem: Optional[str] = Field(default=None, min_length=1)
    entry_checklist: Optional[List[ChecklistItem]] = None
    fuel_level: Optional[str] = None
    visible_damages: Optional[List[str]] = None
    identified_problems: Optional[List[str]] = None
    required_parts: Optional[List[PartLine]] = None
    services: Optional[List[ServiceLine]] = None
    estimated_completion_date: Optional[datetime] = None
    technical_observations: Optional[str] = None


class IdRequest(BaseModel):
    id: int


class StatusUpdateRequest(BaseModel):
    id: int
    status: ServiceOrderStatus
    notes: Optional[str] = None


class DiagnosticRequest(BaseModel):
    id: int
    identified_problems: List[str] = []
    required_parts: List[PartLine] = []
    services: List[ServiceLine] = []
    estimated_completion_date: Optional[datetime] = None
    technical_observations: Optional[str] = None


class CompleteRequest(BaseModel):
    id: int
    exit_checklist: List[ChecklistItem] = []
    test_drive: Optional[TestDrive] = None
    invoice_number: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    final_total_parts: Optional[Decimal] = Field(default=None, ge=0)
    final_total_services: Optional[Decimal] = Field(default=None, ge=0)
    final_total: Optional[Decimal] = Field(default=None, ge=0)


class DeliverRequest(BaseModel):
    id: int
    payment_method: Optional[PaymentMethod] = None
    invoice_number: Optional[str] = None


class MechanicWorkRequest(BaseModel):
    id: int
    mechanic_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    total_hours: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_period(self):
        if self.end_time and self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class MechanicWorkUpdateRequest(MechanicWorkRequest):
    work_id: str


class VehicleHistoryRequest(BaseModel):
    vehicle_id: int


class ApprovalTokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)


class RejectTokenRequest(ApprovalTokenRequest):
    reason: Optional[str] = Field(default=None, max_length=1000)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================
class StatusHistoryEntry(BaseModel):
    status: ServiceOrderStatus
    date: datetime
    notes: Optional[str] = None


class MechanicWork(BaseModel):
    id: str
    mechanic_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    total_hours: Optional[float] = None
    notes: Optional[str] = None


class BudgetApprovalResponse(BaseModel):
    """Link state without the token itself."""
    created_at: datetime
    expires_at: datetime
    used: bool
    used_at: Optional[datetime] = None
    decision: Optional[ApprovalDecision] = None
    rejection_reason: Optional[str] = None

    class Config:
        from_attributes = True


class ServiceOrderResponse(BaseModel):
    id: int
    order_number: str
    vehicle_id: int
    opening_date: Optional[datetime] = None
    current_mileage: Optional[int] = None
    reported_problem: str
    entry_checklist: List[ChecklistItem] = []
    fuel_level: Optional[str] = None
    visible_damages: List[str] = []
    status: ServiceOrderStatus
    status_history: List[StatusHistoryEntry] = []
    identified_problems: List[str] = []
    required_parts: List[PartLine] = []
    services: List[ServiceLine] = []
    estimated_completion_date: Optional[datetime] = None
    estimated_total_parts: Decimal
    estimated_total_services: Decimal
    estimated_total: Decimal
    budget_approval_status: Optional[BudgetApprovalStatus] = None
    budget_approval_date: Optional[datetime] = None
    budget_approval: Optional[BudgetApprovalResponse] = None
    mechanic_works: List[MechanicWork] = []
    technical_observations: Optional[str] = None
    exit_checklist: List[ChecklistItem] = []
    test_drive: Optional[TestDrive] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    final_total_parts: Optional[Decimal] = None
    final_total_services: Optional[Decimal] = None
    final_total: Optional[Decimal] = None
    completion_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class ClientSummary(BaseModel):
    name: str
    phone: Optional[str] = None

    class Config:
        from_attributes = True


class VehicleSummary(BaseModel):
    plate: str
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    client: Optional[ClientSummary] = None

    class Config:
        from_attributes = True


class PublicServiceOrderResponse(BaseModel):
    """What an anonymous approval-link holder may see."""
    order_number: str
    status: ServiceOrderStatus
    opening_date: Optional[datetime] = None
    reported_problem: str
    identified_problems: List[str] = []
    required_parts: List[PartLine] = []
    services: List[ServiceLine] = []
    estimated_completion_date: Optional[datetime] = None
    technical_observations: Optional[str] = None
    estimated_total_parts: Decimal
    estimated_total_services: Decimal
    estimated_total: Decimal
    vehicle: Optional[VehicleSummary] = None

    class Config:
        from_attributes = True
