"""
Inventory Service

Manual entries and exits, plus the stock side of the service order
lifecycle:
- consume(): write one exit per inventory-backed budget line
- restore(): write the matching entries back

Every write path locks the affected part rows, reads the running stock on the
same session, verifies, and only then appends movements. A batch either passes
verification for every line or writes nothing.
"""
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional

from garage_backend.core.audit_log import (
    log_inventory_action,
    ACTION_ENTRY_CREATE,
    ACTION_ENTRY_UPDATE,
    ACTION_ENTRY_DELETE,
    ACTION_EXIT_MANUAL,
    ACTION_CONSUME,
    ACTION_RESTORE,
)
from garage_backend.core.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    MovementNotFoundError,
    PartNotFoundError,
    ValidationError,
)
from garage_backend.models import (
    ExitType,
    MovementType,
    Part,
    ServiceOrder,
    StockMovement,
)
from garage_backend.repositories import TenantScope
from garage_backend.services.part_catalog import PartCatalog, calculate_selling_price
from garage_backend.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


def _unit_cost(part: Part) -> Decimal:
    """Average cost at its stored 4-place precision when known, else the catalog cost price."""
    if part.average_cost:
        return Decimal(str(part.average_cost))
    return Decimal(str(part.cost_price or 0))


def _required_by_part(lines: List[dict]) -> "OrderedDict[int, int]":
    required: "OrderedDict[int, int]" = OrderedDict()
    for line in lines:
        part_id = int(line["part_id"])
        required[part_id] = required.get(part_id, 0) + int(line.get("quantity") or 0)
    return required


class InventoryService:

    # =========================================================================
    # SERVICE ORDER CONSUMPTION / RESTORATION
    # =========================================================================

    @staticmethod
    async def consume(scope: TenantScope, order: ServiceOrder) -> List[StockMovement]:
        """
        Take the order's inventory lines out of stock.

        Does nothing when the ledger shows the order already holds stock, so a
        second trip into an executing status never consumes twice. Raises
        PartNotFoundError / InsufficientStockError before any write when a line
        cannot be served.
        """
        lines = order.inventory_lines()
        if not lines:
            return []

        required = _required_by_part(lines)
        parts = await StockLedger.lock_parts(scope, required.keys())

        held = await StockLedger.held_by_order(scope, order.id)
        if held:
            logger.info(
                f"Service order {order.order_number} already holds stock for parts "
                f"{sorted(held)}; nothing consumed"
            )
            return []

        stock: Dict[int, int] = {}
        for part_id, quantity in required.items():
            if quantity <= 0:
                raise InvalidQuantityError(quantity, details={"part_id": part_id})
            part = parts.get(part_id)
            if not part:
                raise PartNotFoundError(part_id)
            available = await StockLedger.current_stock(scope, part_id)
            if available < quantity:
                raise InsufficientStockError(part.name, available, quantity, part_id=part_id)
            stock[part_id] = available

        movements = []
        for line in lines:
            part = parts[int(line["part_id"])]
            quantity = int(line["quantity"])
            movement = await StockLedger.record(
                scope,
                part,
                -quantity,
                MovementType.EXIT,
                exit_type=ExitType.SERVICE_ORDER.value,
                cost_price=_unit_cost(part),
                reference=str(order.id),
                description=f"Consumption for service order {order.order_number}",
                stock_before=stock[part.id],
            )
            stock[part.id] -= quantity
            movements.append(movement)
            log_inventory_action(
                ACTION_CONSUME, scope.garage_id, part.id, -quantity, reference=order.id
            )

        for part_id in parts:
            await PartCatalog.recompute_part_cache(scope, part_id)

        logger.info(
            f"Consumed {len(movements)} line(s) for service order {order.order_number} "
            f"(garage={scope.garage_id})"
        )
        return movements

    @staticmethod
    async def restore(scope: TenantScope, order: ServiceOrder) -> List[StockMovement]:
        """
        Put back what the order has out of stock.

        Quantities come from the ledger rather than the current lines, so the
        order returns exactly what it took. Nothing is written when it holds
        nothing.
        """
        held = await StockLedger.held_by_order(scope, order.id)
        if not held:
            return []

        parts = await StockLedger.lock_parts(scope, held.keys())
        missing = [part_id for part_id in held if part_id not in parts]
        if missing:
            raise PartNotFoundError(missing[0], details={"missing": missing})

        movements = []
        for part_id in sorted(held):
            part = parts[part_id]
            quantity = held[part_id]
            movement = await StockLedger.record(
                scope,
                part,
                quantity,
                MovementType.ENTRY,
                cost_price=_unit_cost(part),
                reference=str(order.id),
                description=f"Return from service order {order.order_number}",
            )
            movements.append(movement)
            log_inventory_action(
                ACTION_RESTORE, scope.garage_id, part.id, quantity, reference=order.id
            )

        for part_id in parts:
            await PartCatalog.recompute_part_cache(scope, part_id)

        logger.info(
            f"Restored {len(movements)} part(s) from service order {order.order_number} "
            f"(garage={scope.garage_id})"
        )
        return movements

    @staticmethod
    async def holds_stock(scope: TenantScope, order: ServiceOrder) -> bool:
        return bool(await StockLedger.held_by_order(scope, order.id))

    # =========================================================================
    # MANUAL MOVEMENTS
    # =========================================================================

    @staticmethod
    async def create_manual_exit(
        scope: TenantScope,
        part_id: int,
        quantity: int,
        description: str,
        exit_type: ExitType = ExitType.MANUAL,
        reference: Optional[str] = None,
        cost_price: Optional[Decimal] = None,
        selling_price: Optional[Decimal] = None,
    ) -> StockMovement:
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError(quantity)

        parts = await StockLedger.lock_parts(scope, [part_id])
        part = parts.get(part_id)
        if not part:
            raise PartNotFoundError(part_id)

        available = await StockLedger.current_stock(scope, part_id)
        if available < quantity:
            raise InsufficientStockError(part.name, available, quantity, part_id=part_id)

        movement = await StockLedger.record(
            scope,
            part,
            -quantity,
            MovementType.EXIT,
            exit_type=ExitType(exit_type).value,
            cost_price=cost_price if cost_price is not None else _unit_cost(part),
            selling_price=selling_price,
            reference=reference,
            description=description,
            stock_before=available,
        )
        await PartCatalog.recompute_part_cache(scope, part_id)

        log_inventory_action(
            ACTION_EXIT_MANUAL, scope.garage_id, part_id, -quantity,
            reference=reference, details={"exit_type": movement.exit_type},
        )
        logger.info(
            f"Manual exit: part={part.name} quantity={quantity} "
            f"stock {available} -> {available - quantity}"
        )
        return movement

    @staticmethod
    async def create_entry(scope: TenantScope, data: dict) -> StockMovement:
        """Record a purchase/receipt and refresh the part's pricing from it."""
        quantity = data.get("quantity")
        if not quantity or quantity <= 0:
            raise InvalidQuantityError(quantity)
        if data.get("cost_price") is not None and data["cost_price"] < 0:
            raise ValidationError("Cost price cannot be negative")
        if data.get("selling_price") is not None and data["selling_price"] < 0:
            raise ValidationError("Selling price cannot be negative")

        part_id = data["part_id"]
        parts = await StockLedger.lock_parts(scope, [part_id])
        part = parts.get(part_id)
        if not part:
            raise PartNotFoundError(part_id)

        cost_price = data.get("cost_price")
        if cost_price is None:
            cost_price = part.cost_price or 0
        profit_margin = data.get("profit_margin")
        if profit_margin is None:
            profit_margin = part.profit_margin or 0
        selling_price = data.get("selling_price")
        if not selling_price and cost_price and profit_margin:
            selling_price = calculate_selling_price(cost_price, profit_margin)
        if selling_price is None:
            selling_price = part.selling_price or 0

        logger.info(
            f"Creating stock entry: part={part.name} quantity={quantity} cost={cost_price}"
        )
        movement = await StockLedger.record(
            scope,
            part,
            quantity,
            MovementType.ENTRY,
            cost_price=cost_price,
            selling_price=selling_price,
            profit_margin=profit_margin,
            reference=data.get("reference"),
            description=data.get("description"),
            invoice_number=data.get("invoice_number"),
            supplier_id=data.get("supplier_id"),
            entry_date=data.get("entry_date"),
        )

        # Latest receipt becomes the catalog price
        part.cost_price = cost_price
        part.selling_price = selling_price
        part.profit_margin = profit_margin
        await PartCatalog.recompute_part_cache(scope, part_id)

        log_inventory_action(
            ACTION_ENTRY_CREATE, scope.garage_id, part_id, quantity,
            reference=data.get("reference"),
        )
        return movement

    @staticmethod
    async def edit_entry(scope: TenantScope, movement_id: int, changes: dict) -> StockMovement:
        """
        Edit a movement as a whole row.

        ``quantity`` is given as a positive amount; exits keep their negative
        sign. Refused when the new running stock would go below zero.
        """
        movement = await StockLedger.get(scope, movement_id)
        if not movement:
            raise MovementNotFoundError(movement_id)

        changes = dict(changes)
        if "quantity" in changes and changes["quantity"] is not None:
            if changes["quantity"] <= 0:
                raise InvalidQuantityError(changes["quantity"])
            if movement.movement_type == MovementType.EXIT.value:
                changes["quantity"] = -changes["quantity"]
        else:
            changes.pop("quantity", None)
        for price_field in ("cost_price", "selling_price"):
            if changes.get(price_field) is not None and changes[price_field] < 0:
                raise ValidationError(f"{price_field} cannot be negative")
        if (changes.get("cost_price") and changes.get("profit_margin")
                and not changes.get("selling_price")):
            changes["selling_price"] = calculate_selling_price(
                changes["cost_price"], changes["profit_margin"]
            )
        changes = {k: v for k, v in changes.items() if v is not None}

        parts = await StockLedger.lock_parts(scope, [movement.part_id])
        part = parts.get(movement.part_id)
        if not part:
            raise PartNotFoundError(movement.part_id)

        if "quantity" in changes:
            available = await StockLedger.current_stock(scope, part.id)
            resulting = available - movement.quantity + changes["quantity"]
            if resulting < 0:
                raise InsufficientStockError(
                    part.name, available, movement.quantity - changes["quantity"], part_id=part.id
                )

        logger.info(f"Editing stock movement {movement_id}: changes={sorted(changes)}")
        await StockLedger.edit(scope, movement, changes)
        await PartCatalog.recompute_part_cache(scope, part.id)

        log_inventory_action(
            ACTION_ENTRY_UPDATE, scope.garage_id, part.id, movement.quantity,
            reference=movement.reference, details={"movement_id": movement_id},
        )
        return movement

    @staticmethod
    async def remove_entry(scope: TenantScope, movement_id: int) -> None:
        """Delete a movement; refused when it would drive stock negative."""
        movement = await StockLedger.get(scope, movement_id)
        if not movement:
            raise MovementNotFoundError(movement_id)

        parts = await StockLedger.lock_parts(scope, [movement.part_id])
        part = parts.get(movement.part_id)
        if not part:
            raise PartNotFoundError(movement.part_id)

        available = await StockLedger.current_stock(scope, part.id)
        if available - movement.quantity < 0:
            raise InsufficientStockError(part.name, available, movement.quantity, part_id=part.id)

        part_id, quantity, reference = movement.part_id, movement.quantity, movement.reference
        await StockLedger.remove(scope, movement)
        await PartCatalog.recompute_part_cache(scope, part_id)

        log_inventory_action(
            ACTION_ENTRY_DELETE, scope.garage_id, part_id, -quantity,
            reference=reference, details={"movement_id": movement_id},
        )
        logger.info(f"Stock movement {movement_id} removed, part {part_id} recalculated")

    @staticmethod
    async def list_movements(
        scope: TenantScope,
        part_id: Optional[int] = None,
        movement_type: Optional[MovementType] = None,
        limit: int = 20,
        page: int = 1,
    ) -> List[StockMovement]:
        stmt = scope.select(StockMovement)
        if part_id is not None:
            stmt = stmt.where(StockMovement.part_id == part_id)
        if movement_type is not None:
            stmt = stmt.where(StockMovement.movement_type == MovementType(movement_type).value)
        stmt = (
            stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return await scope.all(stmt)
