"""
Stock Ledger

The stock_movements table is the source of truth for inventory:
- current stock = sum of signed quantities per (garage_id, part_id)
- average cost = quantity-weighted mean cost of the positive rows

All reads run on the caller's session so they see the caller's uncommitted
writes. This layer performs no sufficiency checks; InventoryService verifies
before it writes, while holding the part row locks taken by lock_parts().
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy import func, or_

from garage_backend.models import ExitType, Part, StockMovement, MovementType
from garage_backend.repositories import TenantScope

logger = logging.getLogger(__name__)

# Whole-row fields a movement edit may replace
EDITABLE_FIELDS = (
    "quantity",
    "cost_price",
    "selling_price",
    "profit_margin",
    "description",
    "invoice_number",
    "supplier_id",
    "entry_date",
    "reference",
)


class StockLedger:
    """Queries and writes against the stock movement ledger."""

    @staticmethod
    async def current_stock(scope: TenantScope, part_id: int) -> int:
        stmt = scope.select(
            StockMovement, func.coalesce(func.sum(StockMovement.quantity), 0)
        ).where(StockMovement.part_id == part_id)
        return int(await scope.scalar(stmt) or 0)

    @staticmethod
    async def average_cost(scope: TenantScope, part_id: int) -> Decimal:
        """Quantity-weighted mean cost over entries; 0 when there are none."""
        stmt = scope.select(
            StockMovement, StockMovement.quantity, StockMovement.cost_price
        ).where(
            StockMovement.part_id == part_id,
            StockMovement.quantity > 0,
        )
        result = await scope.db.execute(stmt)
        total_quantity = 0
        total_value = Decimal("0")
        for quantity, cost_price in result.all():
            total_quantity += quantity
            total_value += Decimal(str(cost_price or 0)) * quantity

        if total_quantity == 0:
            return Decimal("0")
        return (total_value / total_quantity).quantize(Decimal("0.0001"))

    @staticmethod
    async def count_movements(scope: TenantScope, part_id: int) -> int:
        stmt = scope.select(StockMovement, func.count(StockMovement.id)).where(
            StockMovement.part_id == part_id
        )
        return int(await scope.scalar(stmt) or 0)

    @staticmethod
    async def held_by_order(scope: TenantScope, order_id: int) -> Dict[int, int]:
        """
        Units each part currently has out on a service order.

        Service order exits tagged with the order id, less the entries that
        came back under the same reference. Parts with nothing out are omitted.
        """
        stmt = (
            scope.select(StockMovement, StockMovement.part_id, func.sum(StockMovement.quantity))
            .where(
                StockMovement.reference == str(order_id),
                or_(
                    StockMovement.exit_type == ExitType.SERVICE_ORDER.value,
                    StockMovement.movement_type == MovementType.ENTRY.value,
                ),
            )
            .group_by(StockMovement.part_id)
        )
        result = await scope.db.execute(stmt)
        return {part_id: -int(net) for part_id, net in result.all() if net is not None and net < 0}

    @staticmethod
    async def lock_parts(scope: TenantScope, part_ids: Iterable[int]) -> Dict[int, Part]:
        """
        Row-lock the given parts in ascending id order.

        Returns the parts found for this garage keyed by id; unknown ids are
        simply absent so the caller can report them.
        """
        ids = sorted(set(part_ids))
        if not ids:
            return {}
        stmt = (
            scope.select(Part)
            .where(Part.id.in_(ids))
            .order_by(Part.id)
            .with_for_update()
        )
        parts = await scope.all(stmt)
        return {part.id: part for part in parts}

    @staticmethod
    async def record(
        scope: TenantScope,
        part: Part,
        quantity: int,
        movement_type: MovementType,
        exit_type: Optional[str] = None,
        cost_price: Optional[Decimal] = None,
        selling_price: Optional[Decimal] = None,
        profit_margin: Optional[Decimal] = None,
        reference: Optional[str] = None,
        description: Optional[str] = None,
        invoice_number: Optional[str] = None,
        supplier_id: Optional[int] = None,
        entry_date=None,
        stock_before: Optional[int] = None,
    ) -> StockMovement:
        """
        Append one movement row.

        ``quantity`` is already signed. ``current_quantity`` snapshots the
        stock after this row; pass ``stock_before`` when the caller already
        knows it to avoid another sum query.
        """
        if stock_before is None:
            stock_before = await StockLedger.current_stock(scope, part.id)

        movement = StockMovement(
            part_id=part.id,
            quantity=quantity,
            movement_type=movement_type.value,
            exit_type=exit_type,
            cost_price=cost_price if cost_price is not None else (part.cost_price or 0),
            selling_price=selling_price if selling_price is not None else (part.selling_price or 0),
            profit_margin=profit_margin if profit_margin is not None else (part.profit_margin or 0),
            reference=reference,
            description=description,
            invoice_number=invoice_number,
            supplier_id=supplier_id,
            current_quantity=stock_before + quantity,
        )
        if entry_date is not None:
            movement.entry_date = entry_date
        scope.add(movement)
        await scope.flush()
        return movement

    @staticmethod
    async def get(scope: TenantScope, movement_id: int, for_update: bool = False) -> Optional[StockMovement]:
        return await scope.get(StockMovement, movement_id, for_update=for_update)

    @staticmethod
    async def edit(scope: TenantScope, movement: StockMovement, changes: dict) -> StockMovement:
        """Replace the editable fields of a movement row."""
        for field in EDITABLE_FIELDS:
            if field in changes:
                setattr(movement, field, changes[field])
        await scope.flush()
        return movement

    @staticmethod
    async def remove(scope: TenantScope, movement: StockMovement) -> None:
        await scope.delete(movement)
        await scope.flush()
