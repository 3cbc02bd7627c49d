"""
Part catalog model

Pricing and cost fields are cached here. Current stock is never stored: it is
the running sum of the part's stock movements. ``average_cost`` is refreshed
from the ledger after every movement write.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Numeric, DateTime, ForeignKey,
    UniqueConstraint
)
from sqlalchemy.sql import func

from garage_backend.core.database import Base
from garage_backend.core.utils import utcnow


class Part(Base):
    __tablename__ = "parts"

    id = Column(Integer, primary_key=True, index=True)
    garage_id = Column(Integer, ForeignKey("garages.id", ondelete="CASCADE"), nullable=False, index=True)

    code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    unit = Column(String(10), nullable=False, default="un")

    # Pricing
    selling_price = Column(Numeric(12, 2), nullable=False, default=0)
    cost_price = Column(Numeric(12, 2), nullable=False, default=0)
    profit_margin = Column(Numeric(7, 2), nullable=False, default=0)  # percent
    average_cost = Column(Numeric(12, 4), nullable=False, default=0)  # derived from ledger

    minimum_stock = Column(Integer, nullable=False, default=0)

    category = Column(String(100), nullable=True)
    location = Column(String(100), nullable=True)
    barcode = Column(String(50), nullable=True, index=True)
    manufacturer_code = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("garage_id", "code", name="uq_parts_garage_code"),
    )

    def __repr__(self):
        return f"<Part {self.id}: {self.code} {self.name}>"
