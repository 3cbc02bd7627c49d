"""
Inventory Entry API Routes

Manual stock movements: purchases/receipts (entries) and manual exits
(losses, transfers, counter sales). Service order consumption is driven by
status changes, not by these endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from garage_backend.api.deps import TenantContext, get_current_tenant
from garage_backend.models import ExitType, MovementType
from garage_backend.schemas.inventory import (
    EntryCreate,
    EntryEdit,
    ExitCreate,
    IdRequest,
    MovementResponse,
)
from garage_backend.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/inventory-entries", tags=["inventory"])


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_entry(
    request: EntryCreate,
    tenant: TenantContext = Depends(get_current_tenant),
):
    movement = await InventoryService.create_entry(tenant.scope, request.model_dump())
    return {"result": MovementResponse.model_validate(movement), "msg": "Stock entry created successfully"}


@router.post("/create-exit", status_code=status.HTTP_201_CREATED)
async def create_exit(
    request: ExitCreate,
    tenant: TenantContext = Depends(get_current_tenant),
):
    movement = await InventoryService.create_manual_exit(
        tenant.scope,
        part_id=request.part_id,
        quantity=request.quantity,
        description=request.description,
        exit_type=ExitType(request.exit_type),
        reference=request.reference,
        cost_price=request.cost_price,
        selling_price=request.selling_price,
    )
    return {"result": MovementResponse.model_validate(movement), "msg": "Stock exit created successfully"}


@router.post("/edit")
async def edit_entry(
    request: EntryEdit,
    tenant: TenantContext = Depends(get_current_tenant),
):
    changes = request.model_dump(exclude_unset=True, exclude={"id"})
    movement = await InventoryService.edit_entry(tenant.scope, request.id, changes)
    return {"result": MovementResponse.model_validate(movement), "msg": "Stock movement updated successfully"}


@router.post("/remove")
async def remove_entry(
    request: IdRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    await InventoryService.remove_entry(tenant.scope, request.id)
    return {"result": None, "msg": "Stock movement removed successfully"}


@router.get("/list")
async def list_entries(
    part_id: Optional[int] = None,
    movement_type: Optional[MovementType] = None,
    limit: int = 20,
    page: int = 1,
    tenant: TenantContext = Depends(get_current_tenant),
):
    movements = await InventoryService.list_movements(
        tenant.scope,
        part_id=part_id,
        movement_type=movement_type,
        limit=max(1, min(limit, 100)),
        page=max(1, page),
    )
    return {
        "result": [MovementResponse.model_validate(m) for m in movements],
        "msg": "Stock movements listed successfully",
    }
