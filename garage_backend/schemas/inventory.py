from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field


# ============================================================================
# PART SCHEMAS
# ============================================================================
class PartBase(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    unit: str = "un"
    selling_price: Decimal = Field(default=Decimal("0"), ge=0)
    cost_price: Decimal = Field(default=Decimal("0"), ge=0)
    profit_margin: Decimal = Field(default=Decimal("0"), ge=0)
    minimum_stock: int = Field(default=0, ge=0)
    category: Optional[str] = None
    location: Optional[str] = None
    barcode: Optional[str] = None
    manufacturer_code: Optional[str] = None


class PartCreate(PartBase):
    pass


class PartEdit(BaseModel):
    id: int
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    unit: Optional[str] = None
    selling_price: Optional[Decimal] = Field(default=None, ge=0)
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    profit_margin: Optional[Decimal] = Field(default=None, ge=0)
    minimum_stock: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = None
    location: Optional[str] = None
    barcode: Optional[str] = None
    manufacturer_code: Optional[str] = None


class PartResponse(PartBase):
    id: int
    average_cost: Decimal
    current_stock: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PartStockResponse(BaseModel):
    part_id: int
    current_stock: int
    unit: str
    minimum_stock: int
    name: str


class AvailabilityItem(BaseModel):
    part_id: int
    quantity: int = Field(gt=0)


class AvailabilityRequest(BaseModel):
    items: List[AvailabilityItem] = Field(min_length=1)


# ============================================================================
# INVENTORY MOVEMENT SCHEMAS
# ============================================================================
class EntryCreate(BaseModel):
    part_id: int
    # Sign and positivity are enforced by the inventory service
    quantity: int
    cost_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    profit_margin: Optional[Decimal] = None
    invoice_number: Optional[str] = None
    supplier_id: Optional[int] = None
    entry_date: Optional[datetime] = None
    description: Optional[str] = None
    reference: Optional[str] = None


class ExitCreate(BaseModel):
    part_id: int
    quantity: int
    description: str = Field(min_length=1)
    exit_type: str = Field(default="manual", pattern="^(manual|loss|transfer)$")
    reference: Optional[str] = None
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    selling_price: Optional[Decimal] = Field(default=None, ge=0)


class EntryEdit(BaseModel):
    id: int
    quantity: Optional[int] = None
    cost_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    profit_margin: Optional[Decimal] = None
    invoice_number: Optional[str] = None
    supplier_id: Optional[int] = None
    entry_date: Optional[datetime] = None
    description: Optional[str] = None
    reference: Optional[str] = None


class MovementResponse(BaseModel):
    id: int
    part_id: int
    quantity: int
    cost_price: Decimal
    selling_price: Decimal
    profit_margin: Decimal
    movement_type: str
    exit_type: Optional[str] = None
    reference: Optional[str] = None
    description: Optional[str] = None
    invoice_number: Optional[str] = None
    supplier_id: Optional[int] = None
    entry_date: Optional[datetime] = None
    current_quantity: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IdRequest(BaseModel):
    id: int
