# Booking API test suite: pricing, overlap rules, payment transitions, admin tooling and authorization.
from __future__ import annotations

from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from farmstay import models
from farmstay.db import SessionLocal

from conftest import auth_headers, seed_farmhouse

# Far enough ahead that every booking is upcoming when the test runs
DAY = "2099-06-01"
NEXT_DAY = "2099-06-02"


def create_booking(client: TestClient, farmhouse_id: int, token: str | None = None, **overrides):
    """POST /bookings and return the raw response."""
    payload = {
        "farmhouse_id": farmhouse_id,
        "booking_date": DAY,
        "booking_type": "REGULAR_12HR",
        "number_of_persons": 4,
        "customer_name": "Walk In",
        "customer_mobile": "9800000000",
    }
    payload.update(overrides)
    headers = auth_headers(token) if token else {}
    return client.post("/api/v1/bookings", json=payload, headers=headers)


def test_guest_booking_uses_farmhouse_hours_and_no_discount(client: TestClient, farmhouse: int):
    r = create_booking(client, farmhouse)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["error"] is False
    b = body["data"]
    assert Decimal(b["original_price"]) == Decimal("2000")
    assert Decimal(b["discount_amount"]) == Decimal("0")
    assert Decimal(b["final_price"]) == Decimal("2000")
    assert b["check_in_at"] == "2099-06-01T10:00:00"
    assert b["check_out_at"] == "2099-06-01T22:00:00"
    assert b["start_date"] == b["end_date"] == DAY
    assert b["booking_hours"] == 12
    assert b["booking_status"] == "upcoming"
    assert b["farm_status"] == "available"
    assert b["is_logged_in"] is False
    assert b["invoice_token"].startswith("INV-")
    assert [e["to_status"] for e in b["payment_history"]] == ["incomplete"]

    # Walk-in details create a customer account
    with SessionLocal() as db:
        guest = db.query(models.User).filter(models.User.mobile_no == "9800000000").one()
        assert guest.role == "customer"
        assert guest.is_any_farm_booked is True
        assert len(guest.booking_history) == 1


def test_logged_in_customer_gets_discount(client: TestClient, farmhouse: int, customer):
    token, user_id = customer
    r = create_booking(client, farmhouse, token=token)
    assert r.status_code == 201, r.text
    b = r.json()["data"]
    assert b["is_logged_in"] is True
    assert b["user"]["id"] == user_id
    assert Decimal(b["discount_amount"]) == Decimal("100")
    assert Decimal(b["final_price"]) == Decimal("1900")

    r = client.get("/api/v1/bookings/my-orders", headers=auth_headers(token))
    assert r.status_code == 200
    assert [o["id"] for o in r.json()["data"]] == [b["id"]]


def test_overlapping_booking_is_rejected(client: TestClient, farmhouse: int):
    first = create_booking(client, farmhouse, booking_type="REGULAR_24HR")
    assert first.status_code == 201, first.text
    assert first.json()["data"]["check_out_at"] == "2099-06-02T10:00:00"

    r = create_booking(client, farmhouse, customer_mobile="9811111111")
    assert r.status_code == 409
    body = r.json()
    assert body["error"] is True
    assert body["msg"] == "This date is already booked"
    assert body["data"]["conflicting_booking_id"] == first.json()["data"]["id"]


def test_touching_intervals_are_allowed(client: TestClient, farmhouse: int):
    first = create_booking(client, farmhouse, booking_type="REGULAR_24HR")
    assert first.status_code == 201, first.text
    second = create_booking(client, farmhouse, booking_date=NEXT_DAY, customer_mobile="9811111111")
    assert second.status_code == 201, second.text
    assert second.json()["data"]["check_in_at"] == first.json()["data"]["check_out_at"]


def test_cancelled_booking_frees_the_slot(client: TestClient, farmhouse: int, admin):
    token, _ = admin
    first = create_booking(client, farmhouse).json()["data"]
    r = client.post(f"/api/v1/bookings/{first['id']}/cancel", headers=auth_headers(token))
    assert r.status_code == 200, r.text
    assert r.json()["data"]["payment_status"] == "cancel"

    second = create_booking(client, farmhouse, customer_mobile="9811111111")
    assert second.status_code == 201, second.text

    # Reinstating the cancelled booking would now overlap
    r = client.patch(
        f"/api/v1/bookings/{first['id']}/payment-status",
        headers=auth_headers(token),
        json={"payment_status": "paid"},
    )
    assert r.status_code == 409


def test_capacity_and_missing_price(client: TestClient):
    farm = seed_farmhouse(slug="tiny", max_persons=6, prices={"REGULAR_12HR": ("1500", 4)})
    r = create_booking(client, farm, number_of_persons=7)
    assert r.status_code == 409
    r = create_booking(client, farm, number_of_persons=5)
    assert r.status_code == 409
    assert "Maximum 4 persons" in r.json()["msg"]
    r = create_booking(client, farm, booking_type="WEEKEND_24HR")
    assert r.status_code == 404
    assert r.json()["msg"].startswith("Price option not found")


def test_invalid_requests(client: TestClient, farmhouse: int):
    r = create_booking(client, farmhouse, booking_type="MONTHLY")
    assert r.status_code == 422
    assert r.json()["error"] is True
    r = create_booking(client, farmhouse, customer_mobile=None)
    assert r.status_code == 400
    r = create_booking(client, 999)
    assert r.status_code == 404
    assert r.json()["msg"] == "Farmhouse not found"
    r = create_booking(client, farmhouse, user_id=999)
    assert r.status_code == 404


def test_partial_payment_on_create_and_update(client: TestClient, farmhouse: int, admin):
    token, _ = admin
    r = create_booking(client, farmhouse, payment_status="partial", paid_amount="500")
    assert r.status_code == 201, r.text
    b = r.json()["data"]
    assert Decimal(b["paid_amount"]) == Decimal("500")
    assert Decimal(b["remaining_amount"]) == Decimal("1500")
    assert b["farm_status"] == "unavailable"

    r = client.patch(
        f"/api/v1/bookings/{b['id']}/payment-status",
        headers=auth_headers(token),
        json={"payment_status": "partial", "paid_amount": "2000"},
    )
    assert r.status_code == 400

    r = client.patch(
        f"/api/v1/bookings/{b['id']}/payment-status",
        headers=auth_headers(token),
        json={"payment_status": "paid", "notes": "Settled at the gate"},
    )
    assert r.status_code == 200, r.text
    b = r.json()["data"]
    assert b["payment_status"] == "paid"
    assert Decimal(b["remaining_amount"]) == Decimal("0")
    history = b["payment_history"]
    assert [e["to_status"] for e in history] == ["partial", "paid"]
    assert history[1]["from_status"] == "partial"
    assert history[1]["notes"] == "Settled at the gate"


def test_admin_reschedule_and_reprice(client: TestClient, farmhouse: int, admin):
    token, _ = admin
    first = create_booking(client, farmhouse).json()["data"]
    other = create_booking(client, farmhouse, booking_date=NEXT_DAY, customer_mobile="9811111111").json()["data"]

    # Moving onto the other booking's day conflicts
    r = client.patch(f"/api/v1/bookings/{first['id']}", headers=auth_headers(token), json={"booking_date": NEXT_DAY})
    assert r.status_code == 409
    assert r.json()["data"]["conflicting_booking_id"] == other["id"]

    r = client.patch(
        f"/api/v1/bookings/{first['id']}",
        headers=auth_headers(token),
        json={"booking_date": "2099-06-05", "booking_type": "WEEKEND_24HR", "is_logged_in": True},
    )
    assert r.status_code == 200, r.text
    b = r.json()["data"]
    assert b["check_in_at"] == "2099-06-05T10:00:00"
    assert b["check_out_at"] == "2099-06-06T10:00:00"
    assert Decimal(b["original_price"]) == Decimal("9000")
    assert Decimal(b["discount_amount"]) == Decimal("499")
    assert Decimal(b["final_price"]) == Decimal("8501")


def test_create_reports_booked_and_freed_days(client: TestClient, farmhouse: int):
    b = create_booking(client, farmhouse).json()["data"]
    assert b["booked_dates"] == [DAY]
    assert b["available_dates"] == [NEXT_DAY]

    b = create_booking(client, farmhouse, booking_date="2099-06-03", booking_type="REGULAR_24HR").json()["data"]
    assert b["booked_dates"] == ["2099-06-03"]
    assert b["available_dates"] == ["2099-06-04"]

    # Hints are not part of the stored booking
    assert "booked_dates" not in client.get(f"/api/v1/bookings/invoice/{b['invoice_token']}").json()["data"]


def test_patch_with_nulls_leaves_fields_unchanged(client: TestClient, farmhouse: int, admin, customer):
    token, _ = admin
    b = create_booking(client, farmhouse, token=customer[0]).json()["data"]
    assert b["is_logged_in"] is True

    r = client.patch(
        f"/api/v1/bookings/{b['id']}",
        headers=auth_headers(token),
        json={"number_of_persons": None, "farm_status": None, "is_logged_in": None, "booking_date": None},
    )
    assert r.status_code == 200, r.text
    updated = r.json()["data"]
    assert updated["number_of_persons"] == 4
    assert updated["farm_status"] == "available"
    assert updated["is_logged_in"] is True
    assert updated["check_in_at"] == b["check_in_at"]
    assert Decimal(updated["discount_amount"]) == Decimal("100")
    assert Decimal(updated["final_price"]) == Decimal("1900")


def test_failed_write_returns_503_and_keeps_booking(client: TestClient, farmhouse: int, admin, monkeypatch):
    token, _ = admin
    b = create_booking(client, farmhouse).json()["data"]

    def locked(self):
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", locked)
    r = client.post(f"/api/v1/bookings/{b['id']}/cancel", headers=auth_headers(token))
    monkeypatch.undo()

    assert r.status_code == 503
    assert r.json() == {"error": True, "msg": "Failed to cancel booking", "data": None}
    with SessionLocal() as db:
        assert db.get(models.Booking, b["id"]).payment_status == "incomplete"


def test_invoice_is_public_by_token(client: TestClient, farmhouse: int):
    b = create_booking(client, farmhouse).json()["data"]
    r = client.get(f"/api/v1/bookings/invoice/{b['invoice_token']}")
    assert r.status_code == 200, r.text
    invoice = r.json()["data"]
    assert invoice["booking_id"] == b["id"]
    assert invoice["customer"]["name"] == "Walk In"
    assert Decimal(invoice["remaining_amount"]) == Decimal("2000")

    r = client.get("/api/v1/bookings/invoice/INV-0-doesnotexist")
    assert r.status_code == 404


def test_available_farms_for_a_day(client: TestClient, farmhouse: int):
    other = seed_farmhouse(slug="river-view")
    create_booking(client, farmhouse, booking_type="REGULAR_24HR")

    r = client.get("/api/v1/bookings/available-farms", params={"date": DAY, "duration_category": "REGULAR_12HR"})
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert [f["id"] for f in data["available_farms"]] == [other]
    assert Decimal(data["available_farms"][0]["price"]) == Decimal("2000")
    assert data["total_farms"] == 2

    r = client.get("/api/v1/bookings/available-farms")
    assert r.json()["data"]["total_available"] == 2


def test_farm_availability_and_statistics(client: TestClient, farmhouse: int, admin):
    token, _ = admin
    create_booking(client, farmhouse, payment_status="paid")
    create_booking(client, farmhouse, booking_date=NEXT_DAY, customer_mobile="9811111111",
                   payment_status="partial", paid_amount="500")
    cancelled = create_booking(client, farmhouse, booking_date="2099-06-03", customer_mobile="9822222222").json()["data"]
    client.post(f"/api/v1/bookings/{cancelled['id']}/cancel", headers=auth_headers(token))

    r = client.get(f"/api/v1/bookings/farm/{farmhouse}/availability")
    assert r.status_code == 200
    assert r.json()["data"]["total_bookings"] == 2

    r = client.get(f"/api/v1/bookings/farm/{farmhouse}/statistics", headers=auth_headers(token))
    assert r.status_code == 200, r.text
    stats = r.json()["data"]
    assert stats["total_orders"] == 2
    assert Decimal(stats["total_income"]) == Decimal("4000")
    assert Decimal(stats["amount_collected"]) == Decimal("2500")
    assert Decimal(stats["amount_outstanding"]) == Decimal("1500")
    assert stats["paid_orders"] == 1
    assert stats["partial_orders"] == 1
    assert stats["upcoming_orders"] == 2


def test_admin_listing_filters_and_search(client: TestClient, farmhouse: int, admin, customer):
    admin_token, _ = admin
    customer_token, _ = customer
    create_booking(client, farmhouse, customer_name="Ravi Kumar")
    create_booking(client, farmhouse, booking_date=NEXT_DAY, customer_mobile="9811111111",
                   customer_name="Meera", payment_status="paid")

    r = client.get("/api/v1/bookings", headers=auth_headers(customer_token))
    assert r.status_code == 403
    assert r.json()["error"] is True

    r = client.get("/api/v1/bookings", headers=auth_headers(admin_token), params={"limit": 1})
    page = r.json()["data"]
    assert page["total"] == 2
    assert page["total_pages"] == 2
    assert len(page["bookings"]) == 1

    r = client.get("/api/v1/bookings", headers=auth_headers(admin_token), params={"search": "ravi"})
    assert r.json()["data"]["total"] == 1

    r = client.get("/api/v1/bookings", headers=auth_headers(admin_token), params={"payment_status": "paid"})
    assert r.json()["data"]["total"] == 1

    r = client.get("/api/v1/bookings", headers=auth_headers(admin_token), params={"booking_status": "upcoming"})
    assert r.json()["data"]["total"] == 2


def test_booking_access_is_owner_or_admin(client: TestClient, farmhouse: int, customer, admin):
    customer_token, _ = customer
    admin_token, _ = admin
    guest_booking = create_booking(client, farmhouse).json()["data"]

    r = client.get(f"/api/v1/bookings/{guest_booking['id']}", headers=auth_headers(customer_token))
    assert r.status_code == 403
    r = client.get(f"/api/v1/bookings/{guest_booking['id']}", headers=auth_headers(admin_token))
    assert r.status_code == 200
    r = client.get(f"/api/v1/bookings/{guest_booking['id']}")
    assert r.status_code == 401
    assert r.json()["msg"] == "Authorization header missing"


def test_delete_recomputes_most_visited(client: TestClient, farmhouse: int, admin):
    token, _ = admin
    other = seed_farmhouse(slug="river-view")
    create_booking(client, farmhouse)
    b1 = create_booking(client, other).json()["data"]
    b2 = create_booking(client, other, booking_date=NEXT_DAY, customer_mobile="9811111111").json()["data"]

    r = client.get(f"/api/v1/farmhouses/{other}")
    assert r.json()["data"]["is_most_visited"] is True

    for b in (b1, b2):
        r = client.delete(f"/api/v1/bookings/{b['id']}", headers=auth_headers(token))
        assert r.status_code == 200
        assert r.json()["data"] is None

    assert client.get(f"/api/v1/farmhouses/{other}").json()["data"]["is_most_visited"] is False
    assert client.get(f"/api/v1/farmhouses/{farmhouse}").json()["data"]["is_most_visited"] is True

    r = client.get(f"/api/v1/bookings/{b1['id']}", headers=auth_headers(token))
    assert r.status_code == 404


def test_refresh_endpoints(client: TestClient, farmhouse: int, admin):
    token, _ = admin
    b = create_booking(client, farmhouse).json()["data"]
    r = client.post(f"/api/v1/bookings/{b['id']}/refresh-status", headers=auth_headers(token))
    assert r.status_code == 200, r.text
    assert r.json()["data"]["changed"] is False
    assert r.json()["msg"] == "No change needed. Status remains upcoming"

    r = client.post("/api/v1/bookings/admin/refresh-statuses", headers=auth_headers(token))
    assert r.status_code == 200
    assert r.json()["data"] == {"total": 1, "updated": 0, "failed": 0}
