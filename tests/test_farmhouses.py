# Farmhouse catalogue tests: admin creation with price tables, status toggling and listing order.
from __future__ import annotations

from decimal import Decimal

from fastapi.testclient import TestClient

from conftest import auth_headers

FARM = {
    "name": "Mango Grove",
    "slug": "mango-grove",
    "farm_no": "F-101",
    "max_persons": 12,
    "check_in_from": "09:30",
    "check_out_to": "21:00",
    "price_options": [
        {"category": "REGULAR_12HR", "price": "2500", "max_people": 10},
        {"category": "WEEKEND_24HR", "price": "8000", "max_people": 12},
    ],
}


def test_admin_creates_farmhouse_with_prices(client: TestClient, admin):
    token, _ = admin
    r = client.post("/api/v1/farmhouses", headers=auth_headers(token), json=FARM)
    assert r.status_code == 201, r.text
    farm = r.json()["data"]
    assert farm["status"] is True
    assert farm["is_most_visited"] is False
    assert {p["category"]: Decimal(p["price"]) for p in farm["price_options"]} == {
        "REGULAR_12HR": Decimal("2500"),
        "WEEKEND_24HR": Decimal("8000"),
    }

    # Slugs are unique
    r = client.post("/api/v1/farmhouses", headers=auth_headers(token), json=FARM)
    assert r.status_code == 409
    assert r.json()["msg"] == "Farmhouse slug already exists"


def test_farmhouse_validation(client: TestClient, admin, customer):
    admin_token, _ = admin
    customer_token, _ = customer

    r = client.post("/api/v1/farmhouses", headers=auth_headers(customer_token), json=FARM)
    assert r.status_code == 403

    bad_time = {**FARM, "check_in_from": "9am"}
    r = client.post("/api/v1/farmhouses", headers=auth_headers(admin_token), json=bad_time)
    assert r.status_code == 422

    duplicated = {**FARM, "price_options": FARM["price_options"] + [FARM["price_options"][0]]}
    r = client.post("/api/v1/farmhouses", headers=auth_headers(admin_token), json=duplicated)
    assert r.status_code == 409


def test_inactive_farmhouses_are_hidden_and_unbookable(client: TestClient, admin, farmhouse: int):
    token, _ = admin
    r = client.patch(f"/api/v1/farmhouses/{farmhouse}/status", headers=auth_headers(token), json={"status": False})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["status"] is False

    assert client.get("/api/v1/farmhouses").json()["data"] == []

    r = client.post(
        "/api/v1/bookings",
        json={
            "farmhouse_id": farmhouse,
            "booking_date": "2099-06-01",
            "booking_type": "REGULAR_12HR",
            "number_of_persons": 2,
            "customer_name": "Walk In",
            "customer_email": "Walk.In@Example.com",
        },
    )
    assert r.status_code == 400
    assert r.json()["msg"] == "Farmhouse is not available"


def test_missing_farmhouse_uses_envelope(client: TestClient):
    r = client.get("/api/v1/farmhouses/999")
    assert r.status_code == 404
    assert r.json() == {"error": True, "msg": "Farmhouse not found", "data": None}
    assert client.get("/healthz").json() == {"status": "ok"}
