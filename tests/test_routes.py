"""
Tests for the HTTP surface: envelopes, error mapping, headers and auth.
"""
import pytest

from garage_backend.core.security import create_access_token


LABOR = {"description": "Alignment", "estimated_hours": 1, "price_per_hour": 80.0}


async def create_order(client, headers, vehicle_id, **extra):
    payload = {"vehicle_id": vehicle_id, "reported_problem": "Pulls to the right"}
    payload.update(extra)
    response = await client.post("/api/service-orders/create", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["result"]


class TestHealth:

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    @pytest.mark.asyncio
    async def test_health_pings_database(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_security_headers(self, client):
        response = await client.get("/")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


class TestAuth:

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/service-orders/list")
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_token_without_garage(self, client):
        token = create_access_token({"sub": "42"})
        response = await client.get(
            "/api/service-orders/list", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_for_unknown_garage(self, client):
        token = create_access_token({"sub": "42", "garage_id": 9999})
        response = await client.get(
            "/api/service-orders/list", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


class TestServiceOrderRoutes:

    @pytest.mark.asyncio
    async def test_create_get_and_list(self, client, auth_headers, vehicle):
        vehicle_id = vehicle.id
        created = await create_order(client, auth_headers, vehicle_id, services=[LABOR])

        assert created["order_number"] == "AA0001"
        assert created["status"] == "aberta"
        assert created["services"][0]["total_price"] == 80.0

        response = await client.get(f"/api/service-orders/{created['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["result"]["id"] == created["id"]

        response = await client.get("/api/service-orders/list", headers=auth_headers)
        assert [o["order_number"] for o in response.json()["result"]] == ["AA0001"]

    @pytest.mark.asyncio
    async def test_unknown_vehicle_is_bad_request(self, client, auth_headers, garage):
        response = await client.post(
            "/api/service-orders/create",
            json={"vehicle_id": 9999, "reported_problem": "x"},
            headers=auth_headers,
        )
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VEHICLE_NOT_FOUND"
        assert set(body) == {"msg", "code", "details"}

    @pytest.mark.asyncio
    async def test_unknown_order_is_not_found(self, client, auth_headers, garage):
        response = await client.get("/api/service-orders/9999", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["code"] == "SERVICE_ORDER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_shortfall_keeps_previous_status(self, client, auth_headers, vehicle, part):
        vehicle_id, part_id = vehicle.id, part.id
        response = await client.post(
            "/api/inventory-entries/create",
            json={"part_id": part_id, "quantity": 1, "cost_price": "5.00"},
            headers=auth_headers,
        )
        assert response.status_code == 201

        order = await create_order(client, auth_headers, vehicle_id, required_parts=[{
            "part_id": part_id, "description": "Brake pads", "quantity": 3,
            "unit_price": 10.0, "from_inventory": True,
        }])

        response = await client.post(
            "/api/service-orders/status/update",
            json={"id": order["id"], "status": "em_andamento"},
            headers=auth_headers,
        )
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"]["available"] == 1
        assert body["details"]["requested"] == 3
        assert "Brake pads" in body["msg"]

        response = await client.get(f"/api/service-orders/{order['id']}", headers=auth_headers)
        result = response.json()["result"]
        assert result["status"] == "aberta"
        assert result["status_history"][0]["notes"].startswith("Status reverted automatically")

        response = await client.get(f"/api/parts/{part_id}/stock", headers=auth_headers)
        assert response.json()["result"]["current_stock"] == 1

    @pytest.mark.asyncio
    async def test_inventory_line_requires_part(self, client, auth_headers, vehicle):
        response = await client.post(
            "/api/service-orders/create",
            json={
                "vehicle_id": vehicle.id,
                "reported_problem": "x",
                "required_parts": [{"description": "?", "quantity": 1, "from_inventory": True}],
            },
            headers=auth_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_status_transitions(self, client, auth_headers):
        response = await client.get("/api/service-orders/status/transitions", headers=auth_headers)
        assert response.status_code == 200
        result = response.json()["result"]
        assert "cancelada" not in result["stock_affecting"]
        assert "em_andamento" in result["stock_affecting"]


class TestPublicApprovalRoutes:

    async def _link(self, client, headers, vehicle_id):
        order = await create_order(client, headers, vehicle_id)
        response = await client.post(
            "/api/service-orders/diagnostic",
            json={"id": order["id"], "services": [LABOR]},
            headers=headers,
        )
        assert response.status_code == 200, response.text
        response = await client.post(
            "/api/service-orders/budget/generate-approval-link",
            json={"id": order["id"]},
            headers=headers,
        )
        assert response.status_code == 200, response.text
        return response.json()["result"]["approval_link"].rsplit("/", 1)[-1]

    @pytest.mark.asyncio
    async def test_details_approve_and_replay(self, client, auth_headers, vehicle):
        token = await self._link(client, auth_headers, vehicle.id)

        response = await client.get(f"/api/service-orders/budget/approval-details/{token}")
        assert response.status_code == 200
        assert response.headers["Referrer-Policy"] == "no-referrer"
        assert response.headers["Cache-Control"] == "no-store"
        result = response.json()["result"]
        assert result["approval_pending"] is True
        assert result["service_order"]["vehicle"]["plate"] == "ABC1D23"
        assert "approval_token" not in result["service_order"]

        response = await client.post(
            "/api/service-orders/budget/approve-external", json={"token": token}
        )
        assert response.status_code == 200
        assert response.json()["result"]["status"] == "aprovada"
        assert response.headers["Referrer-Policy"] == "no-referrer"

        response = await client.post(
            "/api/service-orders/budget/reject-external", json={"token": token, "reason": "no"}
        )
        assert response.status_code == 409
        assert response.json()["code"] == "APPROVAL_ALREADY_DECIDED"

    @pytest.mark.asyncio
    async def test_unknown_token(self, client):
        response = await client.get("/api/service-orders/budget/approval-details/unknown")
        assert response.status_code == 404
        assert response.json()["code"] == "APPROVAL_LINK_NOT_FOUND"


class TestPartRoutes:

    @pytest.mark.asyncio
    async def test_create_and_remove_in_use(self, client, auth_headers):
        response = await client.post(
            "/api/parts/create",
            json={"code": "F10", "name": "Air filter", "cost_price": "10", "profit_margin": "50"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        part = response.json()["result"]
        assert part["selling_price"] == "15.00"

        response = await client.post(
            "/api/inventory-entries/create",
            json={"part_id": part["id"], "quantity": 2},
            headers=auth_headers,
        )
        assert response.status_code == 201

        response = await client.post("/api/parts/remove", json={"id": part["id"]}, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "PART_IN_USE"

    @pytest.mark.asyncio
    async def test_list_filters_by_stock_status(self, client, auth_headers, part, second_part):
        part_id = part.id
        response = await client.post(
            "/api/inventory-entries/create",
            json={"part_id": part_id, "quantity": 4, "cost_price": "5.00"},
            headers=auth_headers,
        )
        assert response.status_code == 201

        response = await client.get(
            "/api/parts/list", params={"stock_status": "out", "sort": "stock_desc"}, headers=auth_headers
        )
        assert response.status_code == 200
        result = response.json()["result"]
        assert [p["code"] for p in result["parts"]] == ["P2"]
        assert result["parts"][0]["current_stock"] == 0
        assert (result["total_items"], result["total_pages"], result["page"]) == (1, 1, 1)

        response = await client.get("/api/parts/list", params={"sort": "newest"}, headers=auth_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_manual_exit_with_bad_quantity(self, client, auth_headers, part):
        response = await client.post(
            "/api/inventory-entries/create-exit",
            json={"part_id": part.id, "quantity": 0, "description": "x"},
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_QUANTITY"
