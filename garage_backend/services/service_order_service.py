"""
Service Order Service

Owns the service order aggregate and orchestrates status changes with the
inventory ledger:

1. lock the order row and read its current status
2. classify the transition (consume / restore / nothing)
3. run the inventory side in the same transaction; the ledger position of
   the order decides whether anything is actually written, so an order never
   consumes twice and only returns what it took
4. on a consumption failure, put the old status back with a corrective
   history note, commit that, and surface the error

Restoration failures never block a status change; they are logged.
"""
import logging
import re
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from garage_backend.core.audit_log import log_inventory_action, ACTION_STATUS_REVERT
from garage_backend.core.exceptions import (
    GarageError,
    InvalidStatusError,
    NotFoundError,
    OrderNumberConflictError,
    ServiceOrderNotFoundError,
    TransactionError,
    ValidationError,
    VehicleNotFoundError,
    log_exception,
)
from garage_backend.core.utils import utcnow, to_money, sum_line_totals
from garage_backend.models import (
    BudgetApprovalStatus,
    PaymentMethod,
    ServiceOrder,
    ServiceOrderStatus,
    Vehicle,
)
from garage_backend.models.service_order import select_inventory_lines
from garage_backend.repositories import TenantScope
from garage_backend.services.inventory_service import InventoryService
from garage_backend.services.status_machine import (
    InventoryAction,
    inventory_action,
    is_documented_transition,
)

logger = logging.getLogger(__name__)

FIRST_ORDER_NUMBER = "AA0001"
MAX_SEQUENCE = 9999

# Fields accepted by create/edit; status and stock-related fields have their own flows
ORDER_FIELDS = (
    "vehicle_id",
    "current_mileage",
    "reported_problem",
    "entry_checklist",
    "fuel_level",
    "visible_damages",
    "identified_problems",
    "required_parts",
    "services",
    "estimated_completion_date",
    "technical_observations",
)

DIAGNOSTIC_LOCKED_STATUSES = (
    ServiceOrderStatus.COMPLETED,
    ServiceOrderStatus.DELIVERED,
    ServiceOrderStatus.CANCELED,
)
COMPLETABLE_STATUSES = (
    ServiceOrderStatus.IN_PROGRESS,
    ServiceOrderStatus.APPROVED,
    ServiceOrderStatus.WAITING_PARTS,
)
MECHANIC_WORK_STATUSES = (
    ServiceOrderStatus.IN_PROGRESS,
    ServiceOrderStatus.APPROVED,
)


def next_order_number(last_order_number: Optional[str]) -> str:
    """
    Next number in the AA0001 … AA9999 → AB0001 … ZZ9999 → AAA0001 sequence.

    The letter prefix is incremented right to left with Z wrapping to A;
    a carry out of the first letter adds a new leading A.
    """
    if not last_order_number:
        return FIRST_ORDER_NUMBER

    prefix = re.sub(r"[0-9]", "", last_order_number) or "AA"
    digits = re.sub(r"[^0-9]", "", last_order_number)
    sequence = int(digits) + 1 if digits else 1

    if sequence <= MAX_SEQUENCE:
        return f"{prefix}{sequence:04d}"

    letters = list(prefix)
    position = len(letters) - 1
    carry = True
    while carry and position >= 0:
        letters[position] = "A" if letters[position] == "Z" else chr(ord(letters[position]) + 1)
        carry = letters[position] == "A"
        position -= 1
    if carry:
        letters.insert(0, "A")

    return f"{''.join(letters)}{1:04d}"


def history_entry(status: ServiceOrderStatus, notes: str) -> Dict[str, Any]:
    return {
        "status": ServiceOrderStatus(status).value,
        "date": utcnow().isoformat(),
        "notes": notes,
    }


def _json_ready(value: Any) -> Any:
    """Make budget/mechanic payloads storable in JSON columns."""
    if isinstance(value, dict):
        return {k: _json_ready(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_ready(v) for v in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


JSON_FIELDS = (
    "entry_checklist",
    "visible_damages",
    "identified_problems",
    "required_parts",
    "services",
)


def _order_fields(data: dict) -> Dict[str, Any]:
    """Keep editable fields, converting list payloads for the JSON columns."""
    return {
        k: _json_ready(v) if k in JSON_FIELDS else v
        for k, v in data.items() if k in ORDER_FIELDS
    }


def _hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if not start or not end:
        return None
    return round((end - start).total_seconds() / 3600, 2)


class ServiceOrderService:

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    @staticmethod
    async def get_order(scope: TenantScope, order_id: int, for_update: bool = False) -> ServiceOrder:
        order = await scope.get(ServiceOrder, order_id, for_update=for_update)
        if not order:
            raise ServiceOrderNotFoundError(order_id)
        return order

    @staticmethod
    async def list_orders(
        scope: TenantScope,
        search: Optional[str] = None,
        status: Optional[ServiceOrderStatus] = None,
        limit: int = 20,
        page: int = 1,
    ) -> List[ServiceOrder]:
        stmt = scope.select(ServiceOrder)
        if status is not None:
            stmt = stmt.where(ServiceOrder.status == ServiceOrderStatus(status))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                ServiceOrder.order_number.ilike(pattern),
                ServiceOrder.reported_problem.ilike(pattern),
            ))
        stmt = (
            stmt.order_by(ServiceOrder.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return await scope.all(stmt)

    @staticmethod
    async def _require_vehicle(scope: TenantScope, vehicle_id: int) -> Vehicle:
        vehicle = await scope.get(Vehicle, vehicle_id)
        if not vehicle:
            raise VehicleNotFoundError(vehicle_id, message="Vehicle not found in your garage")
        return vehicle

    @staticmethod
    async def _generate_order_number(scope: TenantScope) -> str:
        stmt = scope.select(ServiceOrder, ServiceOrder.order_number).order_by(ServiceOrder.id.desc()).limit(1)
        return next_order_number(await scope.scalar(stmt))

    # =========================================================================
    # CRUD
    # =========================================================================

    @staticmethod
    async def create_order(scope: TenantScope, data: dict) -> ServiceOrder:
        await ServiceOrderService._require_vehicle(scope, data["vehicle_id"])

        fields = _order_fields(data)
        for list_field in JSON_FIELDS:
            fields[list_field] = fields.get(list_field) or []

        order = ServiceOrder(
            **fields,
            order_number=await ServiceOrderService._generate_order_number(scope),
            status=ServiceOrderStatus.OPENED,
            status_history=[history_entry(ServiceOrderStatus.OPENED, "Service order created")],
            mechanic_works=[],
            exit_checklist=[],
            opening_date=utcnow(),
        )
        order.estimated_total_parts = sum_line_totals(order.required_parts)
        order.estimated_total_services = sum_line_totals(order.services)
        order.estimated_total = order.estimated_total_parts + order.estimated_total_services
        scope.add(order)
        try:
            await scope.flush()
        except IntegrityError as exc:
            # Two creates read the same last number; the unique constraint caught the second
            logger.warning(
                f"Order number {order.order_number} already taken (garage={scope.garage_id})"
            )
            raise OrderNumberConflictError(order.order_number) from exc

        logger.info(f"Service order {order.order_number} created (garage={scope.garage_id}, id={order.id})")
        return order

    @staticmethod
    async def update_order(scope: TenantScope, order_id: int, changes: dict) -> ServiceOrder:
        """
        Edit reception/budget data.

        Status moves through update_status(). While stock is consumed the
        inventory-backed lines are frozen, since restoring uses them.
        """
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)

        if changes.get("vehicle_id") is not None:
            await ServiceOrderService._require_vehicle(scope, changes["vehicle_id"])

        changes = {k: v for k, v in _order_fields(changes).items() if v is not None}
        if "required_parts" in changes and await InventoryService.holds_stock(scope, order):
            if select_inventory_lines(changes["required_parts"]) != _json_ready(order.inventory_lines()):
                raise ValidationError(
                    "Inventory parts cannot be changed while they are consumed; "
                    "move the order back to a non-executing status first",
                    details={"status": order.status.value},
                )

        for field, value in changes.items():
            setattr(order, field, value)
        if "required_parts" in changes or "services" in changes:
            order.estimated_total_parts = sum_line_totals(order.required_parts)
            order.estimated_total_services = sum_line_totals(order.services)
            order.estimated_total = order.estimated_total_parts + order.estimated_total_services

        await scope.flush()
        return order

    @staticmethod
    async def remove_order(scope: TenantScope, order_id: int) -> None:
        """Delete an order, giving back any stock it consumed."""
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        # Whatever the status, including CANCELED after execution
        await InventoryService.restore(scope, order)
        await scope.delete(order)
        await scope.flush()
        logger.info(f"Service order {order.order_number} removed (garage={scope.garage_id})")

    # =========================================================================
    # STATUS ORCHESTRATION
    # =========================================================================

    @staticmethod
    def _prepend_history(order: ServiceOrder, status: ServiceOrderStatus, notes: str) -> None:
        order.status_history = [history_entry(status, notes)] + list(order.status_history or [])

    @staticmethod
    async def _transition(
        scope: TenantScope,
        order: ServiceOrder,
        new_status: ServiceOrderStatus,
        notes: str,
    ) -> ServiceOrder:
        """Set a new status and apply its stock effect on the same transaction."""
        old_status = ServiceOrderStatus(order.status)
        new_status = ServiceOrderStatus(new_status)
        action = inventory_action(old_status, new_status)

        order.status = new_status
        ServiceOrderService._prepend_history(order, new_status, notes)

        if action == InventoryAction.CONSUME:
            await ServiceOrderService._consume_or_revert(scope, order, old_status, new_status)
        elif action == InventoryAction.RESTORE:
            await ServiceOrderService._restore_best_effort(scope, order, new_status, notes)

        await scope.flush()
        return order

    @staticmethod
    async def _consume_or_revert(
        scope: TenantScope,
        order: ServiceOrder,
        old_status: ServiceOrderStatus,
        new_status: ServiceOrderStatus,
    ) -> None:
        try:
            await InventoryService.consume(scope, order)
        except GarageError as exc:
            # Nothing was written to the ledger; record the attempt and put the old status back
            order.status = old_status
            ServiceOrderService._prepend_history(
                order, old_status,
                f"Status reverted automatically due to inventory error: {exc.message}",
            )
            await scope.db.commit()
            log_inventory_action(
                ACTION_STATUS_REVERT, scope.garage_id, reference=order.id,
                details={"attempted_status": new_status.value, "error": exc.code},
                success=False,
            )
            logger.warning(
                f"Service order {order.id} (garage={scope.garage_id}) reverted to "
                f"{old_status.value}: {exc.message}"
            )
            raise
        except SQLAlchemyError as exc:
            logger.error(
                f"Storage error consuming stock for service order {order.id} "
                f"(garage={scope.garage_id}): {exc}"
            )
            order_id = order.id
            await scope.db.rollback()
            reloaded = await scope.get(ServiceOrder, order_id)
            if reloaded is not None:
                await scope.db.refresh(reloaded)
                ServiceOrderService._prepend_history(
                    reloaded, reloaded.status,
                    f"Status change to {new_status.value} failed: stock could not be updated",
                )
                await scope.db.commit()
            raise TransactionError(
                "Stock could not be updated; the previous status was kept",
                details={"service_order_id": order_id, "attempted_status": new_status.value},
            ) from exc

    @staticmethod
    async def _restore_best_effort(
        scope: TenantScope,
        order: ServiceOrder,
        new_status: ServiceOrderStatus,
        notes: str,
    ) -> None:
        try:
            await InventoryService.restore(scope, order)
        except GarageError as exc:
            log_exception(
                exc,
                context={"garage_id": scope.garage_id, "service_order_id": order.id, "action": "restore"},
                level=logging.ERROR,
            )
        except SQLAlchemyError as exc:
            logger.error(
                f"Storage error restoring stock for service order {order.id} "
                f"(garage={scope.garage_id}): {exc}"
            )
            order_id = order.id
            await scope.db.rollback()
            reloaded = await scope.get(ServiceOrder, order_id)
            if reloaded is not None:
                await scope.db.refresh(reloaded)
                reloaded.status = new_status
                ServiceOrderService._prepend_history(reloaded, new_status, notes)
                ServiceOrderService._prepend_history(
                    reloaded, new_status, "Stock could not be restored automatically; review the inventory"
                )

    @staticmethod
    async def update_status(
        scope: TenantScope,
        order_id: int,
        status: ServiceOrderStatus,
        notes: Optional[str] = None,
    ) -> ServiceOrder:
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        status = ServiceOrderStatus(status)
        if not is_documented_transition(order.status, status):
            logger.warning(
                f"Service order {order.id} (garage={scope.garage_id}) moved off the documented "
                f"graph: {ServiceOrderStatus(order.status).value} -> {status.value}"
            )
        return await ServiceOrderService._transition(
            scope, order, status, notes or f"Status updated to {status.value}"
        )

    # =========================================================================
    # DIAGNOSIS AND BUDGET
    # =========================================================================

    @staticmethod
    async def generate_diagnostic(scope: TenantScope, order_id: int, data: dict) -> ServiceOrder:
        """Store the diagnosis and budget and wait for the client's decision."""
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        if order.status in DIAGNOSTIC_LOCKED_STATUSES:
            raise InvalidStatusError(
                "Cannot change the budget of a completed, delivered or canceled service order",
                current_status=order.status,
            )

        # Stock consumed under the previous budget comes back before the lines change
        await InventoryService.restore(scope, order)

        order.identified_problems = _json_ready(data.get("identified_problems") or [])
        order.required_parts = _json_ready(data.get("required_parts") or [])
        order.services = _json_ready(data.get("services") or [])
        order.estimated_completion_date = data.get("estimated_completion_date")
        if data.get("technical_observations") is not None:
            order.technical_observations = data["technical_observations"]

        order.estimated_total_parts = sum_line_totals(order.required_parts)
        order.estimated_total_services = sum_line_totals(order.services)
        order.estimated_total = order.estimated_total_parts + order.estimated_total_services
        order.budget_approval_status = BudgetApprovalStatus.WAITING

        order.status = ServiceOrderStatus.WAITING_APPROVAL
        ServiceOrderService._prepend_history(
            order, ServiceOrderStatus.WAITING_APPROVAL,
            "Budget generated, waiting for client approval",
        )
        await scope.flush()
        return order

    @staticmethod
    async def decide_budget(
        scope: TenantScope,
        order: ServiceOrder,
        approved: bool,
        notes: str,
    ) -> ServiceOrder:
        """Record the client's decision and move the order accordingly."""
        if order.status != ServiceOrderStatus.WAITING_APPROVAL:
            raise InvalidStatusError(
                "Service order is not waiting for budget approval",
                current_status=order.status,
            )
        order.budget_approval_status = (
            BudgetApprovalStatus.APPROVED if approved else BudgetApprovalStatus.REJECTED
        )
        order.budget_approval_date = utcnow()
        new_status = ServiceOrderStatus.APPROVED if approved else ServiceOrderStatus.REJECTED
        return await ServiceOrderService._transition(scope, order, new_status, notes)

    @staticmethod
    async def approve_budget(scope: TenantScope, order_id: int) -> ServiceOrder:
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        return await ServiceOrderService.decide_budget(
            scope, order, True, "Budget approved by the client"
        )

    @staticmethod
    async def reject_budget(scope: TenantScope, order_id: int) -> ServiceOrder:
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        return await ServiceOrderService.decide_budget(
            scope, order, False, "Budget rejected by the client"
        )

    # =========================================================================
    # COMPLETION AND DELIVERY
    # =========================================================================

    @staticmethod
    async def complete_order(scope: TenantScope, order_id: int, data: dict) -> ServiceOrder:
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        if order.status not in COMPLETABLE_STATUSES:
            raise InvalidStatusError(
                "Service order is not in progress, approved or waiting for parts",
                current_status=order.status,
            )

        await ServiceOrderService._transition(
            scope, order, ServiceOrderStatus.COMPLETED, "Service order completed"
        )

        now = utcnow()
        order.exit_checklist = _json_ready(data.get("exit_checklist") or [])
        order.test_drive = _json_ready(data.get("test_drive"))
        order.invoice_number = data.get("invoice_number")
        order.invoice_date = now
        order.payment_method = PaymentMethod(data.get("payment_method") or PaymentMethod.CASH)

        final_parts = data.get("final_total_parts")
        final_services = data.get("final_total_services")
        order.final_total_parts = to_money(final_parts if final_parts is not None else order.estimated_total_parts)
        order.final_total_services = to_money(
            final_services if final_services is not None else order.estimated_total_services
        )
        final_total = data.get("final_total")
        order.final_total = to_money(
            final_total if final_total is not None else order.final_total_parts + order.final_total_services
        )
        order.completion_date = now
        await scope.flush()
        return order

    @staticmethod
    async def deliver_order(
        scope: TenantScope,
        order_id: int,
        payment_method: Optional[PaymentMethod] = None,
        invoice_number: Optional[str] = None,
    ) -> ServiceOrder:
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        if order.status != ServiceOrderStatus.COMPLETED:
            raise InvalidStatusError("Service order is not completed", current_status=order.status)

        if payment_method:
            order.payment_method = PaymentMethod(payment_method)
            if invoice_number is not None:
                order.invoice_number = invoice_number
        if not order.payment_method:
            raise ValidationError("Select a payment method before registering the delivery")

        await ServiceOrderService._transition(
            scope, order, ServiceOrderStatus.DELIVERED, "Vehicle delivered to the client"
        )
        order.delivery_date = utcnow()
        await scope.flush()
        return order

    # =========================================================================
    # MECHANIC WORK
    # =========================================================================

    @staticmethod
    async def add_mechanic_work(scope: TenantScope, order_id: int, work: dict) -> ServiceOrder:
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)
        if order.status not in MECHANIC_WORK_STATUSES:
            raise InvalidStatusError(
                "Service order is not in progress or approved",
                current_status=order.status,
            )

        entry = {
            "id": uuid.uuid4().hex,
            "mechanic_id": work["mechanic_id"],
            "start_time": work["start_time"],
            "end_time": work.get("end_time"),
            "total_hours": work.get("total_hours"),
            "notes": work.get("notes"),
        }
        hours = _hours_between(work.get("start_time"), work.get("end_time"))
        if hours is not None:
            entry["total_hours"] = hours

        order.mechanic_works = list(order.mechanic_works or []) + [_json_ready(entry)]
        await scope.flush()
        return order

    @staticmethod
    async def update_mechanic_work(
        scope: TenantScope,
        order_id: int,
        work_id: str,
        work: dict,
    ) -> ServiceOrder:
        order = await ServiceOrderService.get_order(scope, order_id, for_update=True)

        works = list(order.mechanic_works or [])
        index = next((i for i, w in enumerate(works) if w.get("id") == work_id), None)
        if index is None:
            raise NotFoundError(work_id, message="Mechanic work entry not found")

        entry = {
            "id": work_id,
            "mechanic_id": work["mechanic_id"],
            "start_time": work["start_time"],
            "end_time": work.get("end_time"),
            "total_hours": work.get("total_hours"),
            "notes": work.get("notes"),
        }
        hours = _hours_between(work.get("start_time"), work.get("end_time"))
        if hours is not None:
            entry["total_hours"] = hours

        works[index] = _json_ready(entry)
        order.mechanic_works = works
        await scope.flush()
        return order

    # =========================================================================
    # VEHICLE HISTORY
    # =========================================================================

    @staticmethod
    async def vehicle_history(scope: TenantScope, vehicle_id: int) -> Dict[str, Any]:
        """All orders of a vehicle plus spending totals over delivered ones."""
        stmt = (
            scope.select(ServiceOrder)
            .where(ServiceOrder.vehicle_id == vehicle_id)
            .options(selectinload(ServiceOrder.vehicle))
            .order_by(ServiceOrder.opening_date.desc(), ServiceOrder.id.desc())
        )
        orders = await scope.all(stmt)

        total_services = Decimal("0.00")
        total_parts = Decimal("0.00")
        history = []
        for order in orders:
            parts_total = (
                to_money(order.final_total_parts) if order.final_total_parts
                else sum_line_totals(order.required_parts)
            )
            services_total = (
                to_money(order.final_total_services) if order.final_total_services
                else sum_line_totals(order.services)
            )
            if order.status == ServiceOrderStatus.DELIVERED:
                total_parts += parts_total
                total_services += services_total

            history.append({
                "id": order.id,
                "order_number": order.order_number,
                "opening_date": order.opening_date,
                "status": order.status.value,
                "reported_problem": order.reported_problem or "",
                "identified_problems": order.identified_problems or [],
                "services": order.services or [],
                "required_parts": order.required_parts or [],
                "completion_date": order.completion_date,
                "total_parts": parts_total,
                "total_services": services_total,
                "final_total": to_money(order.final_total) if order.final_total else parts_total + services_total,
                "technical_observations": order.technical_observations or "",
                "vehicle": {
                    "plate": order.vehicle.plate if order.vehicle else "",
                    "brand": order.vehicle.brand if order.vehicle else "",
                    "model": order.vehicle.model if order.vehicle else "",
                },
            })

        return {
            "history": history,
            "summary": {
                "total_services": total_services,
                "total_parts": total_parts,
                "total_orders": len(orders),
            },
        }
