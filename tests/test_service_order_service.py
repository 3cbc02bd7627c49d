"""
Tests for the service order lifecycle.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from garage_backend.core.exceptions import (
    InvalidStatusError,
    NotFoundError,
    OrderNumberConflictError,
    PartNotFoundError,
    ServiceOrderNotFoundError,
    TransactionError,
    ValidationError,
    VehicleNotFoundError,
)
from garage_backend.models import BudgetApprovalStatus, PaymentMethod, ServiceOrderStatus, StockMovement
from garage_backend.repositories import TenantScope
from garage_backend.services.inventory_service import InventoryService
from garage_backend.services.service_order_service import ServiceOrderService, history_entry
from garage_backend.services.stock_ledger import StockLedger


def order_data(vehicle_id, **extra):
    data = {
        "vehicle_id": vehicle_id,
        "reported_problem": "Engine overheating",
        "current_mileage": 82000,
        "entry_checklist": [{"description": "Spare tire", "checked": True}],
    }
    data.update(extra)
    return data


def brake_line(part_id, quantity=2):
    return {
        "part_id": part_id,
        "description": "Brake pads",
        "quantity": quantity,
        "unit_price": 60.0,
        "total_price": quantity * 60.0,
        "from_inventory": True,
    }


LABOR = {"description": "Brake service", "estimated_hours": 2, "price_per_hour": 50.0, "total_price": 100.0}


async def stocked(scope, part, quantity=10):
    await InventoryService.create_entry(
        scope, {"part_id": part.id, "quantity": quantity, "cost_price": Decimal("5")}
    )


class TestCreateAndEdit:

    @pytest.mark.asyncio
    async def test_create_order(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))

        assert order.order_number == "AA0001"
        assert order.status == ServiceOrderStatus.OPENED
        assert order.garage_id == scope.garage_id
        assert len(order.status_history) == 1
        assert order.status_history[0]["notes"] == "Service order created"
        assert order.required_parts == []

    @pytest.mark.asyncio
    async def test_order_numbers_are_sequential(self, scope, vehicle):
        first = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        second = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        assert (first.order_number, second.order_number) == ("AA0001", "AA0002")

    @pytest.mark.asyncio
    async def test_create_with_unknown_vehicle(self, scope):
        with pytest.raises(VehicleNotFoundError) as exc_info:
            await ServiceOrderService.create_order(scope, order_data(9999))
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_vehicle_of_other_garage_is_unknown(self, db, vehicle, other_garage):
        other = TenantScope(db, other_garage.id)
        with pytest.raises(VehicleNotFoundError):
            await ServiceOrderService.create_order(other, order_data(vehicle.id))

    @pytest.mark.asyncio
    async def test_estimated_totals(self, scope, vehicle, part):
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id)], services=[LABOR])
        )
        assert order.estimated_total_parts == Decimal("120.00")
        assert order.estimated_total_services == Decimal("100.00")
        assert order.estimated_total == Decimal("220.00")

    @pytest.mark.asyncio
    async def test_get_order_of_other_garage(self, db, scope, vehicle, other_garage):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        with pytest.raises(ServiceOrderNotFoundError):
            await ServiceOrderService.get_order(TenantScope(db, other_garage.id), order.id)

    @pytest.mark.asyncio
    async def test_edit_recomputes_totals(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        await ServiceOrderService.update_order(scope, order.id, {"services": [LABOR], "fuel_level": "1/2"})

        assert order.fuel_level == "1/2"
        assert order.estimated_total == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_inventory_lines_frozen_while_consumed(self, scope, vehicle, part):
        await stocked(scope, part)
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id)])
        )
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.IN_PROGRESS)

        with pytest.raises(ValidationError):
            await ServiceOrderService.update_order(
                scope, order.id, {"required_parts": [brake_line(part.id, quantity=5)]}
            )
        # Non-inventory fields stay editable
        await ServiceOrderService.update_order(scope, order.id, {"technical_observations": "Rotor worn"})
        assert order.technical_observations == "Rotor worn"

    @pytest.mark.asyncio
    async def test_remove_gives_stock_back(self, scope, vehicle, part):
        await stocked(scope, part)
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id, quantity=4)])
        )
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.IN_PROGRESS)
        assert await StockLedger.current_stock(scope, part.id) == 6

        await ServiceOrderService.remove_order(scope, order.id)

        assert await StockLedger.current_stock(scope, part.id) == 10
        with pytest.raises(ServiceOrderNotFoundError):
            await ServiceOrderService.get_order(scope, order.id)


class TestStatusUpdates:

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.DIAGNOSING)
        await ServiceOrderService.update_status(
            scope, order.id, ServiceOrderStatus.CANCELED, notes="Client gave up"
        )

        statuses = [entry["status"] for entry in order.status_history]
        assert statuses == ["cancelada", "em_diagnostico", "aberta"]
        assert order.status_history[0]["notes"] == "Client gave up"
        assert order.status_history[1]["notes"] == "Status updated to em_diagnostico"

    @pytest.mark.asyncio
    async def test_cancel_from_executing_keeps_stock_consumed(self, scope, vehicle, part):
        await stocked(scope, part)
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id)])
        )
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.IN_PROGRESS)
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.CANCELED)

        assert await StockLedger.current_stock(scope, part.id) == 8

    def test_history_entry_shape(self):
        entry = history_entry(ServiceOrderStatus.APPROVED, "ok")
        assert entry["status"] == "aprovada"
        assert entry["notes"] == "ok"
        assert datetime.fromisoformat(entry["date"]).tzinfo is not None


class TestDiagnosticAndBudget:

    @pytest.mark.asyncio
    async def test_generate_diagnostic(self, scope, vehicle, part):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))

        await ServiceOrderService.generate_diagnostic(scope, order.id, {
            "identified_problems": ["Worn pads"],
            "required_parts": [brake_line(part.id)],
            "services": [LABOR],
        })

        assert order.status == ServiceOrderStatus.WAITING_APPROVAL
        assert order.budget_approval_status == BudgetApprovalStatus.WAITING
        assert order.estimated_total == Decimal("220.00")
        assert order.status_history[0]["notes"] == "Budget generated, waiting for client approval"

    @pytest.mark.asyncio
    async def test_diagnostic_restores_consumed_stock_first(self, scope, vehicle, part):
        await stocked(scope, part)
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id, quantity=3)])
        )
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.IN_PROGRESS)
        assert await StockLedger.current_stock(scope, part.id) == 7

        await ServiceOrderService.generate_diagnostic(
            scope, order.id, {"required_parts": [brake_line(part.id, quantity=1)]}
        )

        assert await StockLedger.current_stock(scope, part.id) == 10
        assert order.status == ServiceOrderStatus.WAITING_APPROVAL

    @pytest.mark.asyncio
    async def test_diagnostic_locked_after_completion(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.CANCELED)

        with pytest.raises(InvalidStatusError):
            await ServiceOrderService.generate_diagnostic(scope, order.id, {})

    @pytest.mark.asyncio
    async def test_approve_and_reject(self, scope, vehicle):
        approved = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        rejected = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        for order in (approved, rejected):
            await ServiceOrderService.generate_diagnostic(scope, order.id, {"services": [LABOR]})

        await ServiceOrderService.approve_budget(scope, approved.id)
        await ServiceOrderService.reject_budget(scope, rejected.id)

        assert approved.status == ServiceOrderStatus.APPROVED
        assert approved.budget_approval_status == BudgetApprovalStatus.APPROVED
        assert approved.budget_approval_date is not None
        assert rejected.status == ServiceOrderStatus.REJECTED

    @pytest.mark.asyncio
    async def test_approve_requires_waiting_approval(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        with pytest.raises(InvalidStatusError):
            await ServiceOrderService.approve_budget(scope, order.id)


class TestCompletionAndDelivery:

    @pytest.mark.asyncio
    async def test_complete_and_deliver(self, scope, vehicle, part):
        await stocked(scope, part)
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id)], services=[LABOR])
        )
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.IN_PROGRESS)

        await ServiceOrderService.complete_order(scope, order.id, {
            "exit_checklist": [{"description": "Washed", "checked": True}],
            "test_drive": {"performed": True, "notes": "No noise"},
        })
        assert order.status == ServiceOrderStatus.COMPLETED
        assert order.payment_method == PaymentMethod.CASH
        assert order.final_total == Decimal("220.00")
        assert order.completion_date is not None
        assert order.test_drive["performed"] is True

        await ServiceOrderService.deliver_order(scope, order.id, PaymentMethod.PIX_PERSONAL, "NF-100")
        assert order.status == ServiceOrderStatus.DELIVERED
        assert order.payment_method == PaymentMethod.PIX_PERSONAL
        assert order.invoice_number == "NF-100"
        assert order.delivery_date is not None
        # Executing statuses share one consumption
        assert await StockLedger.current_stock(scope, part.id) == 8

    @pytest.mark.asyncio
    async def test_complete_from_approved_consumes(self, scope, vehicle, part):
        await stocked(scope, part)
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id)])
        )
        await ServiceOrderService.generate_diagnostic(
            scope, order.id, {"required_parts": [brake_line(part.id)]}
        )
        await ServiceOrderService.approve_budget(scope, order.id)

        await ServiceOrderService.complete_order(
            scope, order.id, {"final_total": Decimal("99.90")}
        )

        assert order.final_total == Decimal("99.90")
        assert await StockLedger.current_stock(scope, part.id) == 8

    @pytest.mark.asyncio
    async def test_complete_requires_work_status(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        with pytest.raises(InvalidStatusError):
            await ServiceOrderService.complete_order(scope, order.id, {})

    @pytest.mark.asyncio
    async def test_deliver_requires_completed(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        with pytest.raises(InvalidStatusError):
            await ServiceOrderService.deliver_order(scope, order.id, PaymentMethod.CASH)


class TestMechanicWork:

    @pytest.mark.asyncio
    async def test_add_and_update(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.IN_PROGRESS)
        start = datetime(2024, 5, 10, 8, 0, tzinfo=timezone.utc)

        await ServiceOrderService.add_mechanic_work(scope, order.id, {
            "mechanic_id": 7,
            "start_time": start,
            "end_time": start + timedelta(hours=2, minutes=30),
        })
        work = order.mechanic_works[0]
        assert work["total_hours"] == 2.5
        assert work["start_time"] == start.isoformat()

        await ServiceOrderService.update_mechanic_work(scope, order.id, work["id"], {
            "mechanic_id": 7,
            "start_time": start,
            "end_time": start + timedelta(hours=1),
            "notes": "Stopped for parts",
        })
        assert len(order.mechanic_works) == 1
        assert order.mechanic_works[0]["total_hours"] == 1.0
        assert order.mechanic_works[0]["notes"] == "Stopped for parts"

    @pytest.mark.asyncio
    async def test_add_requires_work_status(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        with pytest.raises(InvalidStatusError):
            await ServiceOrderService.add_mechanic_work(
                scope, order.id, {"mechanic_id": 1, "start_time": datetime.now(timezone.utc)}
            )

    @pytest.mark.asyncio
    async def test_update_unknown_work(self, scope, vehicle):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        with pytest.raises(NotFoundError):
            await ServiceOrderService.update_mechanic_work(
                scope, order.id, "missing", {"mechanic_id": 1, "start_time": datetime.now(timezone.utc)}
            )


class TestVehicleHistory:

    @pytest.mark.asyncio
    async def test_totals_count_delivered_orders_only(self, scope, vehicle):
        delivered = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, services=[LABOR])
        )
        await ServiceOrderService.create_order(scope, order_data(vehicle.id, services=[LABOR]))
        await ServiceOrderService.update_status(scope, delivered.id, ServiceOrderStatus.IN_PROGRESS)
        await ServiceOrderService.complete_order(scope, delivered.id, {})
        await ServiceOrderService.deliver_order(scope, delivered.id)

        result = await ServiceOrderService.vehicle_history(scope, vehicle.id)

        assert result["summary"]["total_orders"] == 2
        assert result["summary"]["total_services"] == Decimal("100.00")
        assert result["summary"]["total_parts"] == Decimal("0.00")
        assert result["history"][0]["vehicle"]["plate"] == "ABC1D23"


def storage_failure():
    return OperationalError("INSERT INTO stock_movements", {}, Exception("disk I/O error"))


async def executing_order(db, scope, vehicle, part, quantity=4):
    """Order holding ``quantity`` units of ``part``, committed."""
    await stocked(scope, part)
    order = await ServiceOrderService.create_order(
        scope, order_data(vehicle.id, required_parts=[brake_line(part.id, quantity=quantity)])
    )
    await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.IN_PROGRESS)
    await db.commit()
    return order


class TestStockFollowsLedger:

    @pytest.mark.asyncio
    async def test_removing_canceled_order_returns_its_stock(self, db, scope, vehicle, part):
        order = await executing_order(db, scope, vehicle, part)
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.CANCELED)
        assert await StockLedger.current_stock(scope, part.id) == 6

        await ServiceOrderService.remove_order(scope, order.id)

        assert await StockLedger.current_stock(scope, part.id) == 10

    @pytest.mark.asyncio
    async def test_reopening_canceled_order_does_not_consume_twice(self, db, scope, vehicle, part):
        order = await executing_order(db, scope, vehicle, part)

        for status in (ServiceOrderStatus.CANCELED, ServiceOrderStatus.OPENED, ServiceOrderStatus.IN_PROGRESS):
            await ServiceOrderService.update_status(scope, order.id, status)

        assert await StockLedger.current_stock(scope, part.id) == 6
        exits = await scope.all(
            scope.select(StockMovement).where(StockMovement.movement_type == "exit")
        )
        assert [row.quantity for row in exits] == [-4]
        assert await StockLedger.held_by_order(scope, order.id) == {part.id: 4}

    @pytest.mark.asyncio
    async def test_reopened_order_gives_stock_back_once(self, db, scope, vehicle, part):
        order = await executing_order(db, scope, vehicle, part)
        for status in (ServiceOrderStatus.CANCELED, ServiceOrderStatus.OPENED, ServiceOrderStatus.IN_PROGRESS):
            await ServiceOrderService.update_status(scope, order.id, status)

        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.APPROVED)
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.OPENED)

        assert await StockLedger.current_stock(scope, part.id) == 10
        assert await StockLedger.held_by_order(scope, order.id) == {}

    @pytest.mark.asyncio
    async def test_restore_without_consumption_writes_nothing(self, scope, vehicle, part):
        await stocked(scope, part)
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id)])
        )

        assert await InventoryService.restore(scope, order) == []
        assert await StockLedger.count_movements(scope, part.id) == 1

    @pytest.mark.asyncio
    async def test_canceled_order_keeps_inventory_lines_frozen(self, db, scope, vehicle, part):
        order = await executing_order(db, scope, vehicle, part)
        await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.CANCELED)

        with pytest.raises(ValidationError):
            await ServiceOrderService.update_order(
                scope, order.id, {"required_parts": [brake_line(part.id, quantity=1)]}
            )

    @pytest.mark.asyncio
    async def test_off_graph_transition_is_logged(self, scope, vehicle, caplog):
        order = await ServiceOrderService.create_order(scope, order_data(vehicle.id))
        logger_name = "garage_backend.services.service_order_service"

        with caplog.at_level(logging.WARNING, logger=logger_name):
            await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.DIAGNOSING)
            assert "documented graph" not in caplog.text
            await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.DELIVERED)

        assert "em_diagnostico -> entregue" in caplog.text
        assert order.status == ServiceOrderStatus.DELIVERED


class TestInventoryFailures:

    @pytest.mark.asyncio
    async def test_failed_restore_is_logged_and_status_kept(self, db, scope, vehicle, part, caplog):
        order = await executing_order(db, scope, vehicle, part)

        with patch.object(InventoryService, "restore", AsyncMock(side_effect=PartNotFoundError(part.id))):
            with caplog.at_level(logging.ERROR, logger="garage_backend.core.exceptions"):
                await ServiceOrderService.update_status(scope, order.id, ServiceOrderStatus.APPROVED)

        assert order.status == ServiceOrderStatus.APPROVED
        assert order.status_history[0]["status"] == "aprovada"
        assert "PartNotFoundError" in caplog.text
        assert await StockLedger.current_stock(scope, part.id) == 6

    @pytest.mark.asyncio
    async def test_storage_error_on_restore_keeps_new_status(self, db, scope, vehicle, part):
        order = await executing_order(db, scope, vehicle, part)

        with patch.object(InventoryService, "restore", AsyncMock(side_effect=storage_failure())):
            result = await ServiceOrderService.update_status(
                scope, order.id, ServiceOrderStatus.APPROVED, notes="Back to approved"
            )

        assert result.status == ServiceOrderStatus.APPROVED
        notes = [entry["notes"] for entry in result.status_history[:2]]
        assert notes == [
            "Stock could not be restored automatically; review the inventory",
            "Back to approved",
        ]
        assert await StockLedger.current_stock(scope, part.id) == 6

    @pytest.mark.asyncio
    async def test_storage_error_on_consume_keeps_old_status(self, db, scope, vehicle, part):
        await stocked(scope, part)
        order = await ServiceOrderService.create_order(
            scope, order_data(vehicle.id, required_parts=[brake_line(part.id)])
        )
        await db.commit()
        order_id = order.id

        with patch.object(InventoryService, "consume", AsyncMock(side_effect=storage_failure())):
            with pytest.raises(TransactionError) as exc_info:
                await ServiceOrderService.update_status(scope, order_id, ServiceOrderStatus.IN_PROGRESS)

        assert exc_info.value.status_code == 500
        assert exc_info.value.details["attempted_status"] == "em_andamento"

        reloaded = await ServiceOrderService.get_order(scope, order_id)
        assert reloaded.status == ServiceOrderStatus.OPENED
        assert reloaded.status_history[0]["notes"] == (
            "Status change to em_andamento failed: stock could not be updated"
        )
        assert reloaded.status_history[0]["status"] == "aberta"
        assert await StockLedger.current_stock(scope, part.id) == 10


class TestOrderNumberConflict:

    @pytest.mark.asyncio
    async def test_duplicate_number_is_a_conflict(self, scope, vehicle):
        first = await ServiceOrderService.create_order(scope, order_data(vehicle.id))

        taken = AsyncMock(return_value=first.order_number)
        with patch.object(ServiceOrderService, "_generate_order_number", taken):
            with pytest.raises(OrderNumberConflictError) as exc_info:
                await ServiceOrderService.create_order(scope, order_data(vehicle.id))

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["order_number"] == "AA0001"
