"""
Service Order model - aggregate root of the repair workflow

Holds diagnosis, budget lines, status and status history, mechanic work and the
public budget approval link.

Notes:
- status_history is newest-first and only ever prepended
- list columns are JSON; always assign a new list, never mutate in place,
  so the ORM sees the change
- required_parts lines with from_inventory=True carry a part_id and are the
  only lines that touch the stock ledger
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON,
    Numeric, ForeignKey, Index, Enum, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from garage_backend.core.database import Base
from garage_backend.core.utils import utcnow


# =============================================================================
# ENUMS
# =============================================================================

class ServiceOrderStatus(str, PyEnum):
    """
    Service order lifecycle.

    OPENED → DIAGNOSING → WAITING_APPROVAL → APPROVED | REJECTED →
    IN_PROGRESS ⇄ WAITING_PARTS → COMPLETED → DELIVERED, with CANCELED
    reachable before completion.
    """
    OPENED = "aberta"
    DIAGNOSING = "em_diagnostico"
    WAITING_APPROVAL = "aguardando_aprovacao"
    APPROVED = "aprovada"
    REJECTED = "rejeitada"
    IN_PROGRESS = "em_andamento"
    WAITING_PARTS = "aguardando_pecas"
    COMPLETED = "concluida"
    DELIVERED = "entregue"
    CANCELED = "cancelada"


class BudgetApprovalStatus(str, PyEnum):
    WAITING = "aguardando"
    APPROVED = "aprovado"
    REJECTED = "rejeitado"


class PaymentMethod(str, PyEnum):
    CASH = "dinheiro"
    CREDIT_CARD = "cartao_credito"
    DEBIT_CARD = "cartao_debito"
    PIX_PERSONAL = "pix_pf"
    PIX_BUSINESS = "pix_pj"
    BANK_TRANSFER = "transferencia"
    INSTALLMENTS = "parcelado"


class ApprovalDecision(str, PyEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


def _enum_column(enum_cls, name: str):
    # Persist enum values (not member names) as plain strings
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=30,
        values_callable=lambda members: [m.value for m in members],
    )


@dataclass
class BudgetApproval:
    """Public approval link state, replaced wholesale on regeneration."""
    token: str
    created_at: datetime
    expires_at: datetime
    used: bool = False
    used_at: Optional[datetime] = None
    decision: Optional[ApprovalDecision] = None
    rejection_reason: Optional[str] = None


def select_inventory_lines(lines) -> list:
    return [
        line for line in (lines or [])
        if line.get("from_inventory") and line.get("part_id")
    ]


# =============================================================================
# MODEL
# =============================================================================

class ServiceOrder(Base):
    __tablename__ = "service_orders"

    id = Column(Integer, primary_key=True, index=True)
    garage_id = Column(Integer, ForeignKey("garages.id", ondelete="CASCADE"), nullable=False)
    order_number = Column(String(20), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Reception
    opening_date = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    current_mileage = Column(Integer, nullable=True)
    reported_problem = Column(Text, nullable=False)
    entry_checklist = Column(JSON, nullable=False, default=list)
    fuel_level = Column(String(20), nullable=True)
    visible_damages = Column(JSON, nullable=False, default=list)

    # Status
    status = Column(
        _enum_column(ServiceOrderStatus, "service_order_status"),
        nullable=False,
        default=ServiceOrderStatus.OPENED,
        index=True,
    )
    status_history = Column(JSON, nullable=False, default=list)

    # Diagnosis and budget
    identified_problems = Column(JSON, nullable=False, default=list)
    required_parts = Column(JSON, nullable=False, default=list)
    services = Column(JSON, nullable=False, default=list)
    estimated_completion_date = Column(DateTime(timezone=True), nullable=True)
    estimated_total_parts = Column(Numeric(12, 2), nullable=False, default=0)
    estimated_total_services = Column(Numeric(12, 2), nullable=False, default=0)
    estimated_total = Column(Numeric(12, 2), nullable=False, default=0)
    budget_approval_status = Column(_enum_column(BudgetApprovalStatus, "budget_approval_status"), nullable=True)
    budget_approval_date = Column(DateTime(timezone=True), nullable=True)

    # Public approval link (see budget_approval property)
    approval_token = Column(String(64), nullable=True, unique=True, index=True)
    approval_created_at = Column(DateTime(timezone=True), nullable=True)
    approval_expires_at = Column(DateTime(timezone=True), nullable=True)
    approval_used = Column(Boolean, nullable=False, default=False)
    approval_used_at = Column(DateTime(timezone=True), nullable=True)
    approval_decision = Column(_enum_column(ApprovalDecision, "approval_decision"), nullable=True)
    approval_rejection_reason = Column(Text, nullable=True)

    # Execution
    mechanic_works = Column(JSON, nullable=False, default=list)
    technical_observations = Column(Text, nullable=True)

    # Completion and delivery
    exit_checklist = Column(JSON, nullable=False, default=list)
    test_drive = Column(JSON, nullable=True)  # {performed, date, notes}
    invoice_number = Column(String(50), nullable=True)
    invoice_date = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(_enum_column(PaymentMethod, "payment_method"), nullable=True)
    final_total_parts = Column(Numeric(12, 2), nullable=True)
    final_total_services = Column(Numeric(12, 2), nullable=True)
    final_total = Column(Numeric(12, 2), nullable=True)
    completion_date = Column(DateTime(timezone=True), nullable=True)
    delivery_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    vehicle = relationship("Vehicle")

    __table_args__ = (
        UniqueConstraint("garage_id", "order_number", name="uq_service_orders_garage_number"),
        Index("ix_service_orders_garage_status", garage_id, status),
    )

    @property
    def budget_approval(self) -> Optional[BudgetApproval]:
        if self.approval_token is None:
            return None
        return BudgetApproval(
            token=self.approval_token,
            created_at=self.approval_created_at,
            expires_at=self.approval_expires_at,
            used=bool(self.approval_used),
            used_at=self.approval_used_at,
            decision=self.approval_decision,
            rejection_reason=self.approval_rejection_reason,
        )

    @budget_approval.setter
    def budget_approval(self, value: Optional[BudgetApproval]) -> None:
        # Every field is written so no state from a previous link survives
        self.approval_token = value.token if value else None
        self.approval_created_at = value.created_at if value else None
        self.approval_expires_at = value.expires_at if value else None
        self.approval_used = value.used if value else False
        self.approval_used_at = value.used_at if value else None
        self.approval_decision = value.decision if value else None
        self.approval_rejection_reason = value.rejection_reason if value else None

    def inventory_lines(self) -> list:
        """Budget lines that draw from stock."""
        return select_inventory_lines(self.required_parts)

    def __repr__(self):
        return f"<ServiceOrder {self.id}: {self.order_number} [{self.status}]>"
