"""
Part API Routes

Catalog maintenance plus stock views computed from the ledger.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from garage_backend.api.deps import TenantContext, get_current_tenant
from garage_backend.schemas.inventory import (
    AvailabilityRequest,
    IdRequest,
    PartCreate,
    PartEdit,
    PartResponse,
    PartStockResponse,
)
from garage_backend.services.part_catalog import PartCatalog
from garage_backend.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/parts", tags=["parts"])


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_part(
    request: PartCreate,
    tenant: TenantContext = Depends(get_current_tenant),
):
    part = await PartCatalog.create_part(tenant.scope, request.model_dump())
    response = PartResponse.model_validate(part).model_copy(update={"current_stock": 0})
    return {"result": response, "msg": "Part created successfully"}


@router.post("/get")
async def get_part(
    request: IdRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    part = await PartCatalog.get_part(tenant.scope, request.id)
    stock = await StockLedger.current_stock(tenant.scope, part.id)
    response = PartResponse.model_validate(part).model_copy(update={"current_stock": stock})
    return {"result": response, "msg": "Part retrieved successfully"}


@router.get("/list")
async def list_parts(
    search: Optional[str] = None,
    stock_status: str = Query("all", pattern="^(all|available|low|out)$"),
    category: Optional[str] = None,
    sort: str = Query("name", pattern="^(name|name_desc|code|price_asc|price_desc|stock_asc|stock_desc)$"),
    limit: int = 20,
    page: int = 1,
    tenant: TenantContext = Depends(get_current_tenant),
):
    page = max(1, page)
    listing = await PartCatalog.list_parts(
        tenant.scope,
        search=search,
        stock_status=stock_status,
        category=category,
        sort=sort,
        limit=max(1, min(limit, 100)),
        page=page,
    )
    parts = [
        PartResponse.model_validate(part).model_copy(update={"current_stock": stock})
        for part, stock in listing["items"]
    ]
    return {
        "result": {
            "parts": parts,
            "page": page,
            "total_items": listing["total_items"],
            "total_pages": listing["total_pages"],
        },
        "msg": "Parts listed successfully",
    }


@router.post("/edit")
async def edit_part(
    request: PartEdit,
    tenant: TenantContext = Depends(get_current_tenant),
):
    changes = request.model_dump(exclude_unset=True, exclude={"id"})
    part = await PartCatalog.update_part(tenant.scope, request.id, changes)
    return {"result": PartResponse.model_validate(part), "msg": "Part updated successfully"}


@router.post("/remove")
async def remove_part(
    request: IdRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    await PartCatalog.delete_part(tenant.scope, request.id)
    return {"result": None, "msg": "Part removed successfully"}


@router.post("/check-availability")
async def check_availability(
    request: AvailabilityRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    items = [item.model_dump() for item in request.items]
    availability = await PartCatalog.check_availability(tenant.scope, items)
    return {"result": availability, "msg": "Availability checked successfully"}


@router.get("/{part_id}/stock")
async def get_part_stock(
    part_id: int,
    tenant: TenantContext = Depends(get_current_tenant),
):
    stock = await PartCatalog.get_stock(tenant.scope, part_id)
    return {"result": PartStockResponse(**stock), "msg": "Stock retrieved successfully"}
