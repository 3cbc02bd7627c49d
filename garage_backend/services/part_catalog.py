"""
Part Catalog

CRUD for parts plus the stock views built on the ledger. The part row only
caches pricing and ``average_cost``; stock is always read from the ledger.
"""
import logging
import math
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select

from garage_backend.core.exceptions import (
    PartNotFoundError,
    PartInUseError,
    ValidationError,
)
from garage_backend.models import Part, StockMovement
from garage_backend.repositories import TenantScope
from garage_backend.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)

PART_FIELDS = (
    "code",
    "name",
    "description",
    "unit",
    "selling_price",
    "cost_price",
    "profit_margin",
    "minimum_stock",
    "category",
    "location",
    "barcode",
    "manufacturer_code",
)

STOCK_STATUS_FILTERS = ("all", "available", "low", "out")

# sort name -> (column, descending)
SORT_ORDERS = {
    "name": ("name", False),
    "name_desc": ("name", True),
    "code": ("code", False),
    "price_asc": ("selling_price", False),
    "price_desc": ("selling_price", True),
    "stock_asc": ("stock", False),
    "stock_desc": ("stock", True),
}


def calculate_selling_price(cost_price: Any, profit_margin: Any) -> Decimal:
    """cost * (1 + margin%)"""
    cost = Decimal(str(cost_price))
    margin = Decimal(str(profit_margin))
    return (cost * (1 + margin / 100)).quantize(Decimal("0.01"))


def _fill_selling_price(data: dict) -> dict:
    if not data.get("selling_price") and data.get("cost_price") and data.get("profit_margin"):
        data["selling_price"] = calculate_selling_price(data["cost_price"], data["profit_margin"])
    return data


class PartCatalog:

    @staticmethod
    async def recompute_part_cache(scope: TenantScope, part_id: int) -> Optional[Part]:
        """Refresh the part's cached average cost from the ledger."""
        part = await scope.get(Part, part_id)
        if not part:
            return None
        part.average_cost = await StockLedger.average_cost(scope, part_id)
        await scope.flush()
        return part

    @staticmethod
    async def get_part(scope: TenantScope, part_id: int) -> Part:
        part = await scope.get(Part, part_id)
        if not part:
            raise PartNotFoundError(part_id)
        return part

    @staticmethod
    async def list_parts(
        scope: TenantScope,
        search: Optional[str] = None,
        stock_status: str = "all",
        category: Optional[str] = None,
        sort: str = "name",
        limit: int = 20,
        page: int = 1,
    ) -> Dict[str, Any]:
        """
        One page of the catalog with each part's ledger stock.

        ``stock_status`` is available (stock > 0), low (0 < stock < minimum),
        out (no stock) or all. ``category`` "all" or None lists every part and
        an empty string lists parts without one. Returns ``items`` as
        (part, stock) pairs plus ``total_items`` and ``total_pages`` for the
        filtered set.
        """
        if stock_status not in STOCK_STATUS_FILTERS:
            raise ValidationError(
                f"Unknown stock status filter {stock_status}",
                details={"allowed": list(STOCK_STATUS_FILTERS)},
            )
        if sort not in SORT_ORDERS:
            raise ValidationError(f"Unknown sort order {sort}", details={"allowed": list(SORT_ORDERS)})

        ledger = (
            scope.select(StockMovement, StockMovement.part_id, func.sum(StockMovement.quantity).label("stock"))
            .group_by(StockMovement.part_id)
            .subquery()
        )
        stock = func.coalesce(ledger.c.stock, 0)

        stmt = scope.select(Part, Part, stock).outerjoin(ledger, ledger.c.part_id == Part.id)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                Part.name.ilike(pattern),
                Part.code.ilike(pattern),
                Part.barcode.ilike(pattern),
                Part.manufacturer_code.ilike(pattern),
                Part.unit.ilike(pattern),
            ))
        if category == "":
            stmt = stmt.where(or_(Part.category.is_(None), Part.category == ""))
        elif category and category != "all":
            stmt = stmt.where(Part.category == category)

        if stock_status == "available":
            stmt = stmt.where(stock > 0)
        elif stock_status == "low":
            stmt = stmt.where(stock > 0, stock < Part.minimum_stock)
        elif stock_status == "out":
            stmt = stmt.where(stock <= 0)

        total_items = int(await scope.db.scalar(select(func.count()).select_from(stmt.subquery())) or 0)

        column, descending = SORT_ORDERS[sort]
        sort_key = stock if column == "stock" else getattr(Part, column)
        stmt = (
            stmt.order_by(sort_key.desc() if descending else sort_key.asc(), Part.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await scope.db.execute(stmt)
        return {
            "items": [(part, int(part_stock)) for part, part_stock in result.all()],
            "total_items": total_items,
            "total_pages": math.ceil(total_items / limit) if total_items else 0,
        }

    @staticmethod
    async def create_part(scope: TenantScope, data: dict) -> Part:
        data = _fill_selling_price({k: v for k, v in data.items() if k in PART_FIELDS})

        existing = await scope.scalar(
            scope.select(Part).where(Part.code == data["code"])
        )
        if existing:
            raise ValidationError(
                f"A part with code {data['code']} already exists",
                details={"code": data["code"]},
            )

        part = scope.add(Part(**data))
        await scope.flush()
        logger.info(f"Part created: garage={scope.garage_id} id={part.id} code={part.code}")
        return part

    @staticmethod
    async def update_part(scope: TenantScope, part_id: int, changes: dict) -> Part:
        part = await PartCatalog.get_part(scope, part_id)
        changes = _fill_selling_price({k: v for k, v in changes.items() if k in PART_FIELDS})

        if "code" in changes and changes["code"] != part.code:
            clash = await scope.scalar(
                scope.select(Part).where(Part.code == changes["code"], Part.id != part_id)
            )
            if clash:
                raise ValidationError(
                    f"A part with code {changes['code']} already exists",
                    details={"code": changes["code"]},
                )

        for field, value in changes.items():
            setattr(part, field, value)
        await scope.flush()
        return part

    @staticmethod
    async def delete_part(scope: TenantScope, part_id: int) -> None:
        """Delete a part that has never been moved through the ledger."""
        part = await PartCatalog.get_part(scope, part_id)
        movement_count = await StockLedger.count_movements(scope, part_id)
        if movement_count > 0:
            raise PartInUseError(part_id, movement_count)
        await scope.delete(part)
        await scope.flush()
        logger.info(f"Part deleted: garage={scope.garage_id} id={part_id}")

    @staticmethod
    async def get_stock(scope: TenantScope, part_id: int) -> Dict[str, Any]:
        part = await PartCatalog.get_part(scope, part_id)
        return {
            "part_id": part.id,
            "current_stock": await StockLedger.current_stock(scope, part.id),
            "unit": part.unit,
            "minimum_stock": part.minimum_stock,
            "name": part.name,
        }

    @staticmethod
    async def check_availability(scope: TenantScope, items: List[dict]) -> Dict[str, Any]:
        """
        Report whether each requested quantity is in stock.

        Unknown parts are reported unavailable instead of raising.
        """
        results = []
        for item in items:
            part_id = item["part_id"]
            required = int(item["quantity"])
            part = await scope.get(Part, part_id)
            if not part:
                results.append({
                    "part_id": part_id,
                    "available": False,
                    "required_quantity": required,
                    "available_quantity": 0,
                    "part_name": "not found",
                })
                continue

            stock = await StockLedger.current_stock(scope, part_id)
            results.append({
                "part_id": part_id,
                "available": stock >= required,
                "required_quantity": required,
                "available_quantity": stock,
                "part_name": part.name,
            })

        return {
            "items": results,
            "all_available": all(r["available"] for r in results),
        }
