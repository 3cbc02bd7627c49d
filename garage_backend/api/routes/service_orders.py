"""
Service Order API Routes

Authenticated endpoints for the service order lifecycle plus the anonymous
budget approval endpoints reached through the link sent to the client.

Domain errors propagate to the GarageError handler, which maps them to
their HTTP status with a {msg, code, details} body.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from garage_backend.api.deps import TenantContext, get_current_tenant
from garage_backend.core.database import get_db
from garage_backend.core.rate_limit import get_public_limit
from garage_backend.models import ServiceOrder, ServiceOrderStatus
from garage_backend.schemas.service_order import (
    ApprovalTokenRequest,
    CompleteRequest,
    DeliverRequest,
    DiagnosticRequest,
    IdRequest,
    MechanicWorkRequest,
    MechanicWorkUpdateRequest,
    PublicServiceOrderResponse,
    RejectTokenRequest,
    ServiceOrderCreate,
    ServiceOrderEdit,
    ServiceOrderResponse,
    StatusUpdateRequest,
    VehicleHistoryRequest,
)
from garage_backend.services.budget_approval import BudgetApprovalService
from garage_backend.services.service_order_service import ServiceOrderService
from garage_backend.services.status_machine import (
    AFFECTING_STATUSES,
    NON_AFFECTING_STATUSES,
    transition_graph,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/service-orders", tags=["service-orders"])


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def format_order_response(order: ServiceOrder) -> ServiceOrderResponse:
    return ServiceOrderResponse.model_validate(order)


def envelope(result, msg: str) -> dict:
    return {"result": result, "msg": msg}


# =============================================================================
# ENDPOINTS - SERVICE ORDERS
# =============================================================================

@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_service_order(
    request: ServiceOrderCreate,
    tenant: TenantContext = Depends(get_current_tenant),
):
    data = request.model_dump()
    order = await ServiceOrderService.create_order(tenant.scope, data)
    return envelope(format_order_response(order), "Service order created successfully")


@router.get("/list")
async def list_service_orders(
    search: Optional[str] = None,
    status_filter: Optional[ServiceOrderStatus] = None,
    limit: int = 20,
    page: int = 1,
    tenant: TenantContext = Depends(get_current_tenant),
):
    limit = max(1, min(limit, 100))
    page = max(1, page)
    orders = await ServiceOrderService.list_orders(
        tenant.scope, search=search, status=status_filter, limit=limit, page=page
    )
    return envelope([format_order_response(o) for o in orders], "Service orders listed successfully")


@router.get("/status/transitions")
async def get_status_transitions(
    tenant: TenantContext = Depends(get_current_tenant),
):
    """Documented status graph and which statuses hold consumed stock."""
    return envelope(
        {
            "transitions": transition_graph(),
            "stock_affecting": sorted(s.value for s in AFFECTING_STATUSES),
            "non_stock_affecting": sorted(s.value for s in NON_AFFECTING_STATUSES),
        },
        "Status transitions",
    )


@router.post("/edit")
async def edit_service_order(
    request: ServiceOrderEdit,
    tenant: TenantContext = Depends(get_current_tenant),
):
    changes = request.model_dump(exclude_unset=True, exclude={"id"})
    order = await ServiceOrderService.update_order(tenant.scope, request.id, changes)
    return envelope(format_order_response(order), "Service order updated successfully")


@router.post("/remove")
async def remove_service_order(
    request: IdRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    await ServiceOrderService.remove_order(tenant.scope, request.id)
    return envelope(None, "Service order removed successfully")


@router.post("/status/update")
async def update_service_order_status(
    request: StatusUpdateRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    """
    Change status; entering or leaving the executing statuses moves stock.

    On a stock shortfall the order keeps its previous status and the
    response is 400 naming the part.
    """
    order = await ServiceOrderService.update_status(
        tenant.scope, request.id, request.status, request.notes
    )
    return envelope(format_order_response(order), "Status updated successfully")


@router.post("/diagnostic")
async def generate_diagnostic(
    request: DiagnosticRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    data = request.model_dump(exclude={"id"})
    order = await ServiceOrderService.generate_diagnostic(tenant.scope, request.id, data)
    return envelope(format_order_response(order), "Diagnostic and budget generated successfully")


@router.post("/complete")
async def complete_service_order(
    request: CompleteRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    data = request.model_dump(exclude={"id"})
    order = await ServiceOrderService.complete_order(tenant.scope, request.id, data)
    return envelope(format_order_response(order), "Service order completed successfully")


@router.post("/deliver")
async def deliver_vehicle(
    request: DeliverRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    order = await ServiceOrderService.deliver_order(
        tenant.scope, request.id, request.payment_method, request.invoice_number
    )
    return envelope(format_order_response(order), "Vehicle delivered successfully")


@router.post("/mechanic-work/add")
async def add_mechanic_work(
    request: MechanicWorkRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    order = await ServiceOrderService.add_mechanic_work(
        tenant.scope, request.id, request.model_dump(exclude={"id"})
    )
    return envelope(format_order_response(order), "Mechanic work added successfully")


@router.post("/mechanic-work/update")
async def update_mechanic_work(
    request: MechanicWorkUpdateRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    order = await ServiceOrderService.update_mechanic_work(
        tenant.scope, request.id, request.work_id, request.model_dump(exclude={"id", "work_id"})
    )
    return envelope(format_order_response(order), "Mechanic work updated successfully")


@router.post("/vehicle-history")
async def get_vehicle_history(
    request: VehicleHistoryRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    history = await ServiceOrderService.vehicle_history(tenant.scope, request.vehicle_id)
    return envelope(history, "Vehicle history retrieved successfully")


# =============================================================================
# ENDPOINTS - BUDGET (AUTHENTICATED)
# =============================================================================

@router.post("/budget/approve")
async def approve_budget(
    request: IdRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    order = await ServiceOrderService.approve_budget(tenant.scope, request.id)
    return envelope(format_order_response(order), "Budget approved successfully")


@router.post("/budget/reject")
async def reject_budget(
    request: IdRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    order = await ServiceOrderService.reject_budget(tenant.scope, request.id)
    return envelope(format_order_response(order), "Budget rejected successfully")


@router.post("/budget/generate-approval-link")
async def generate_approval_link(
    request: IdRequest,
    tenant: TenantContext = Depends(get_current_tenant),
):
    link = await BudgetApprovalService.generate_approval_link(tenant.scope, request.id)
    return envelope(link, "Approval link generated successfully")


# =============================================================================
# ENDPOINTS - BUDGET (PUBLIC, TOKEN-BASED)
# =============================================================================

@router.get("/budget/approval-details/{token}")
@get_public_limit()
async def get_approval_details(
    request: Request,
    token: str,
    db: AsyncSession = Depends(get_db),
):
    details = await BudgetApprovalService.get_details_by_token(db, token)
    return envelope(
        {
            "service_order": PublicServiceOrderResponse.model_validate(details["service_order"]),
            "budget_details": details["budget_details"],
            "approval_pending": details["approval_pending"],
        },
        "Approval details retrieved successfully",
    )


@router.post("/budget/approve-external")
@get_public_limit()
async def approve_budget_external(
    request: Request,
    body: ApprovalTokenRequest,
    db: AsyncSession = Depends(get_db),
):
    order = await BudgetApprovalService.approve_via_token(db, body.token)
    return envelope(
        {"order_number": order.order_number, "status": order.status.value},
        "Budget approved successfully",
    )


@router.post("/budget/reject-external")
@get_public_limit()
async def reject_budget_external(
    request: Request,
    body: RejectTokenRequest,
    db: AsyncSession = Depends(get_db),
):
    order = await BudgetApprovalService.reject_via_token(db, body.token, body.reason)
    return envelope(
        {"order_number": order.order_number, "status": order.status.value},
        "Budget rejected successfully",
    )


# Declared last so the literal GET paths above win
@router.get("/{order_id}")
async def get_service_order(
    order_id: int,
    tenant: TenantContext = Depends(get_current_tenant),
):
    order = await ServiceOrderService.get_order(tenant.scope, order_id)
    return envelope(format_order_response(order), "Service order retrieved successfully")
