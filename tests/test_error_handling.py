"""
Tests for the exception hierarchy, error handler and audit logging.
"""
import json
import logging
from unittest.mock import MagicMock

import pytest

from garage_backend.core.audit_log import ACTION_CONSUME, log_inventory_action
from garage_backend.core.error_handler import (
    garage_error_handler,
    is_sensitive_error,
    sanitize_error_message,
)
from garage_backend.core.exceptions import (
    AlreadyDecidedError,
    GarageError,
    InsufficientStockError,
    LinkExpiredError,
    PartInUseError,
    TransactionError,
    VehicleNotFoundError,
)
from garage_backend.core.security_headers import is_public_approval_path
from garage_backend.models import Part
from garage_backend.repositories import TenantScope


def fake_request(path="/api/service-orders/status/update"):
    request = MagicMock()
    request.method = "POST"
    request.url.path = path
    return request


class TestExceptions:

    def test_insufficient_stock_message(self):
        exc = InsufficientStockError("P1", 3, 4, part_id=7)
        assert exc.message == "Insufficient stock for part P1. Available: 3, Requested: 4"
        assert exc.code == "INSUFFICIENT_STOCK"
        assert exc.status_code == 400
        assert exc.details == {"part_id": 7, "part_name": "P1", "available": 3, "requested": 4}

    @pytest.mark.parametrize("exc,status", [
        (VehicleNotFoundError(1), 400),
        (PartInUseError(1, 2), 409),
        (LinkExpiredError(), 410),
        (AlreadyDecidedError("approved"), 409),
        (TransactionError("boom"), 500),
    ])
    def test_status_codes(self, exc, status):
        assert exc.status_code == status
        assert isinstance(exc, GarageError)

    def test_to_dict(self):
        data = PartInUseError(5, 3).to_dict()
        assert data["error_type"] == "PartInUseError"
        assert data["details"]["movement_count"] == 3


class TestErrorHandler:

    @pytest.mark.asyncio
    async def test_domain_error_body(self):
        response = await garage_error_handler(fake_request(), InsufficientStockError("P1", 0, 1))
        body = json.loads(response.body)
        assert response.status_code == 400
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["msg"].startswith("Insufficient stock for part P1")

    @pytest.mark.asyncio
    async def test_server_errors_are_sanitized(self):
        exc = TransactionError("sqlalchemy.exc.OperationalError: connection lost")
        response = await garage_error_handler(fake_request(), exc)
        body = json.loads(response.body)
        assert response.status_code == 500
        assert "sqlalchemy" not in body["msg"]

    def test_sanitize(self):
        assert is_sensitive_error("asyncpg failed on host")
        assert sanitize_error_message("Part not found") == "Part not found"
        assert sanitize_error_message("x" * 300).endswith("...")


class TestAuditLog:

    def test_structured_entry(self, caplog):
        with caplog.at_level(logging.INFO, logger="inventory.audit"):
            log_inventory_action(ACTION_CONSUME, 1, part_id=2, quantity=-3, reference=10)

        record = caplog.records[-1]
        assert record.audit["action"] == ACTION_CONSUME
        assert record.audit["quantity"] == -3
        assert record.audit["reference"] == "10"

    def test_failure_logged_as_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="inventory.audit"):
            log_inventory_action(ACTION_CONSUME, 1, success=False)
        assert caplog.records[-1].levelno == logging.WARNING


class TestTenantScope:

    def test_add_stamps_garage(self, mock_db):
        scope = TenantScope(mock_db, 3)
        part = scope.add(Part(code="X", name="X"))
        assert part.garage_id == 3
        mock_db.add.assert_called_once_with(part)

    @pytest.mark.asyncio
    async def test_delete_refuses_other_garage(self, mock_db):
        scope = TenantScope(mock_db, 3)
        with pytest.raises(ValueError):
            await scope.delete(Part(garage_id=4, code="X", name="X"))
        mock_db.delete.assert_not_called()

    def test_select_filters_by_garage(self, mock_db):
        stmt = TenantScope(mock_db, 3).select(Part)
        assert "parts.garage_id" in str(stmt)


class TestSecurityHeaders:

    @pytest.mark.parametrize("path,public", [
        ("/api/service-orders/budget/approval-details/abc", True),
        ("/api/service-orders/budget/approve-external", True),
        ("/api/service-orders/budget/reject-external", True),
        ("/api/service-orders/budget/approve", False),
        ("/api/parts/list", False),
    ])
    def test_public_approval_paths(self, path, public):
        assert is_public_approval_path(path) is public
