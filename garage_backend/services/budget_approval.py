"""
Budget Approval Service

Single-use, time-limited public links that let a client approve or reject a
budget without logging in.

- generating a link replaces the previous link state wholesale
- expiry is checked on every lookup, used or not
- a decided link answers AlreadyDecidedError on any further decision
"""
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from garage_backend.core.config import settings
from garage_backend.core.exceptions import (
    AlreadyDecidedError,
    InvalidStatusError,
    LinkExpiredError,
    LinkNotFoundError,
)
from garage_backend.core.utils import as_aware, utcnow
from garage_backend.models import (
    ApprovalDecision,
    BudgetApproval,
    ServiceOrder,
    ServiceOrderStatus,
    Vehicle,
)
from garage_backend.repositories import TenantScope
from garage_backend.services.service_order_service import ServiceOrderService

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def approval_link(token: str) -> str:
    return f"{settings.APPROVAL_LINK_BASE_URL.rstrip('/')}/approval/{token}"


class BudgetApprovalService:

    @staticmethod
    async def generate_approval_link(scope: TenantScope, order_id: int) -> Dict[str, Any]:
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        if order.status != ServiceOrderStatus.WAITING_APPROVAL:
            raise InvalidStatusError(
                "Service order is not waiting for budget approval",
                current_status=order.status,
            )

        now = utcnow()
        approval = BudgetApproval(
            token=secrets.token_hex(TOKEN_BYTES),
            created_at=now,
            expires_at=now + timedelta(days=settings.BUDGET_APPROVAL_TTL_DAYS),
        )
        order.budget_approval = approval
        await scope.flush()

        logger.info(
            f"Approval link generated for service order {order.order_number} "
            f"(garage={scope.garage_id}), expires {approval.expires_at.isoformat()}"
        )
        return {
            "approval_link": approval_link(approval.token),
            "expires_at": approval.expires_at,
        }

    @staticmethod
    async def _find_by_token(db: AsyncSession, token: str, for_update: bool = False) -> ServiceOrder:
        if not token:
            raise LinkNotFoundError()
        stmt = select(ServiceOrder).where(ServiceOrder.approval_token == token)
        if for_update:
            stmt = stmt.with_for_update()
        else:
            stmt = stmt.options(selectinload(ServiceOrder.vehicle).selectinload(Vehicle.client))
        result = await db.execute(stmt)
        order = result.scalar_one_or_none()
        if not order:
            raise LinkNotFoundError()

        expires_at = as_aware(order.approval_expires_at)
        if expires_at is None or expires_at < utcnow():
            raise LinkExpiredError(details={"expired_at": expires_at.isoformat() if expires_at else None})
        return order

    @staticmethod
    async def get_details_by_token(db: AsyncSession, token: str) -> Dict[str, Any]:
        order = await BudgetApprovalService._find_by_token(db, token)
        return {
            "service_order": order,
            "budget_details": {
                "total_parts": order.estimated_total_parts,
                "total_services": order.estimated_total_services,
                "total": order.estimated_total,
            },
            "approval_pending": not order.approval_used,
        }

    @staticmethod
    async def _decide(
        db: AsyncSession,
        token: str,
        decision: ApprovalDecision,
        reason: Optional[str] = None,
    ) -> ServiceOrder:
        order = await BudgetApprovalService._find_by_token(db, token, for_update=True)
        if order.approval_used:
            raise AlreadyDecidedError(
                getattr(order.approval_decision, "value", order.approval_decision)
            )

        scope = TenantScope(db, order.garage_id)
        if decision == ApprovalDecision.APPROVED:
            notes = "Budget approved by the client via link"
        elif reason:
            notes = f"Budget rejected by the client via link. Reason: {reason}"
        else:
            notes = "Budget rejected by the client via link"

        await ServiceOrderService.decide_budget(
            scope, order, decision == ApprovalDecision.APPROVED, notes
        )

        approval = order.budget_approval
        approval.used = True
        approval.used_at = utcnow()
        approval.decision = decision
        approval.rejection_reason = reason if decision == ApprovalDecision.REJECTED else None
        order.budget_approval = approval
        await scope.flush()

        logger.info(
            f"Budget {decision.value} via link for service order {order.order_number} "
            f"(garage={order.garage_id})"
        )
        return order

    @staticmethod
    async def approve_via_token(db: AsyncSession, token: str) -> ServiceOrder:
        return await BudgetApprovalService._decide(db, token, ApprovalDecision.APPROVED)

    @staticmethod
    async def reject_via_token(db: AsyncSession, token: str, reason: Optional[str] = None) -> ServiceOrder:
        return await BudgetApprovalService._decide(db, token, ApprovalDecision.REJECTED, reason)
