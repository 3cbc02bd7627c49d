"""
Stock Movement model - the inventory ledger

Append-only rows of signed quantities per (garage_id, part_id):
- entries are positive, exits negative
- the running sum per part is the current stock and never goes negative
  at a committed state
- current_quantity is an informational snapshot taken when the row was written
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, Numeric, DateTime, ForeignKey,
    CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from garage_backend.core.database import Base
from garage_backend.core.utils import utcnow


class MovementType(str, PyEnum):
    ENTRY = "entry"
    EXIT = "exit"


class ExitType(str, PyEnum):
    SERVICE_ORDER = "service_order"
    MANUAL = "manual"
    LOSS = "loss"
    TRANSFER = "transfer"


class StockMovement(Base):
    """Signed quantity movement for one part"""
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    garage_id = Column(Integer, ForeignKey("garages.id", ondelete="CASCADE"), nullable=False)
    part_id = Column(
        Integer,
        ForeignKey("parts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    quantity = Column(Integer, nullable=False)  # positive for entry, negative for exit

    # Same scale as Part.average_cost so returns are valued exactly
    cost_price = Column(Numeric(12, 4), nullable=False, default=0)
    selling_price = Column(Numeric(12, 2), nullable=False, default=0)
    profit_margin = Column(Numeric(7, 2), nullable=False, default=0)

    movement_type = Column(String(10), nullable=False, default=MovementType.ENTRY.value)
    exit_type = Column(String(20), nullable=True)  # exits only

    # Service order id for consumption/restoration, free text otherwise
    reference = Column(String(100), nullable=True, index=True)
    description = Column(Text, nullable=True)
    invoice_number = Column(String(50), nullable=True)
    supplier_id = Column(Integer, nullable=True)

    entry_date = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    current_quantity = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    part = relationship("Part")

    __table_args__ = (
        CheckConstraint(
            "movement_type IN ('entry', 'exit')",
            name="chk_movement_type"
        ),
        CheckConstraint(
            "exit_type IS NULL OR exit_type IN ('service_order', 'manual', 'loss', 'transfer')",
            name="chk_exit_type"
        ),
        Index("ix_stock_movements_garage_part", garage_id, part_id),
        Index("ix_stock_movements_created_desc", created_at.desc()),
    )

    def __repr__(self):
        return f"<StockMovement {self.id}: {self.movement_type} {self.quantity:+d} on part {self.part_id}>"
