from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from eventhub.db import Base
from eventhub.main import app, get_db


def _make_client() -> TestClient:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def _create_stall(client: TestClient, name: str = "C-01", **extra) -> int:
    payload = {"counter_name": name, "participant_name": "Anitha K", "mobile": "9847000000"}
    payload.update(extra)
    resp = client.post("/api/v1/stalls", json=payload)
    assert resp.status_code == 200
    return resp.json()["data"]["stall_id"]


def _bill(client: TestClient, stall_id: int, items: list[dict]) -> dict:
    resp = client.post("/api/v1/billing-transactions", json={"stall_id": stall_id, "items": items})
    assert resp.status_code == 200
    return resp.json()["data"]


def test_create_stall_and_reject_duplicate_counter_name() -> None:
    client = _make_client()
    with client:
        stall_id = _create_stall(client, registration_fee=500)
        get_resp = client.get(f"/api/v1/stalls/{stall_id}")
        assert get_resp.status_code == 200
        assert get_resp.json()["data"]["registration_fee"] == 500.0
        assert get_resp.json()["data"]["is_verified"] is False

        dup = client.post(
            "/api/v1/stalls", json={"counter_name": "C-01", "participant_name": "Someone else"}
        )
        assert dup.status_code == 409

        assert client.get("/api/v1/stalls/999").status_code == 404


def test_verify_stall_and_filter_list() -> None:
    client = _make_client()
    with client:
        first = _create_stall(client, "C-01")
        _create_stall(client, "C-02")

        verify_resp = client.post(f"/api/v1/stalls/{first}:verify")
        assert verify_resp.status_code == 200
        assert verify_resp.json()["data"]["is_verified"] is True

        list_resp = client.get("/api/v1/stalls", params={"is_verified": True})
        data = list_resp.json()["data"]
        assert [row["stall_id"] for row in data] == [first]


def test_list_stalls_paginates_by_id() -> None:
    client = _make_client()
    with client:
        for n in range(3):
            _create_stall(client, f"C-0{n}")
        page = client.get("/api/v1/stalls", params={"limit": 2}).json()
        assert len(page["data"]) == 2
        cursor = page["meta"]["page"]["cursor"]
        assert cursor is not None

        rest = client.get("/api/v1/stalls", params={"limit": 2, "cursor": int(cursor)}).json()
        assert len(rest["data"]) == 1


def test_product_selling_price_and_billing_defaults() -> None:
    client = _make_client()
    with client:
        stall_id = _create_stall(client)
        product_resp = client.post(
            f"/api/v1/stalls/{stall_id}/products",
            json={"item_name": "Pickle jar", "cost_price": 80, "event_margin": 25},
        )
        assert product_resp.status_code == 200
        product = product_resp.json()["data"]
        assert product["selling_price"] == 100.0

        bill = _bill(client, stall_id, [{"product_id": product["product_id"], "quantity": 3}])
        assert bill["items"][0]["price"] == 100.0
        assert bill["items"][0]["event_margin"] == 25.0
        assert bill["items"][0]["item_name"] == "Pickle jar"
        assert bill["subtotal"] == 300.0
        assert bill["total"] == 300.0
        assert bill["receipt_number"].startswith("RCP-")

        listed = client.get(f"/api/v1/stalls/{stall_id}/products").json()["data"]
        assert len(listed) == 1


def test_billing_rejects_product_from_other_stall() -> None:
    client = _make_client()
    with client:
        first = _create_stall(client, "C-01")
        second = _create_stall(client, "C-02")
        product_id = client.post(
            f"/api/v1/stalls/{first}/products", json={"item_name": "Tea", "cost_price": 10}
        ).json()["data"]["product_id"]

        resp = client.post(
            "/api/v1/billing-transactions",
            json={"stall_id": second, "items": [{"product_id": product_id}]},
        )
        assert resp.status_code == 400

        missing = client.post(
            "/api/v1/billing-transactions",
            json={"stall_id": 999, "items": [{"price": 10}]},
        )
        assert missing.status_code == 404


def test_billing_transaction_lookup_and_list() -> None:
    client = _make_client()
    with client:
        stall_id = _create_stall(client)
        other_id = _create_stall(client, "C-02")
        bill = _bill(client, stall_id, [{"price": 50, "quantity": 2}])
        _bill(client, other_id, [{"price": 10}])

        get_resp = client.get(f"/api/v1/billing-transactions/{bill['billing_transaction_id']}")
        assert get_resp.status_code == 200
        assert get_resp.json()["data"]["counter_name"] == "C-01"

        listed = client.get("/api/v1/billing-transactions", params={"stall_id": stall_id}).json()["data"]
        assert [row["billing_transaction_id"] for row in listed] == [bill["billing_transaction_id"]]

        assert client.get("/api/v1/billing-transactions/999").status_code == 404


def test_participant_payment_respects_remaining_balance() -> None:
    client = _make_client()
    with client:
        stall_id = _create_stall(client)
        _bill(client, stall_id, [{"item_name": "Saree", "price": 100, "quantity": 2, "event_margin": 20}])

        account = client.get(f"/api/v1/accounts/stalls/{stall_id}").json()["data"]
        assert account["billed_amount"] == 200.0
        assert account["bill_balance"] == 160.0
        assert account["margin_deducted"] == 40.0
        assert account["remaining_balance"] == 160.0

        pay_resp = client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": stall_id, "amount_paid": 50},
        )
        assert pay_resp.status_code == 200
        payment = pay_resp.json()["data"]
        assert payment["total_billed"] == 200.0
        assert payment["margin_deducted"] == 40.0
        assert payment["narration"] == "Payment to C-01"

        account = client.get(f"/api/v1/accounts/stalls/{stall_id}").json()["data"]
        assert account["already_paid"] == 50.0
        assert account["remaining_balance"] == 110.0

        too_much = client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": stall_id, "amount_paid": 200},
        )
        assert too_much.status_code == 422
        assert "exceeds remaining balance" in too_much.json()["detail"]

        zero = client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": stall_id, "amount_paid": 0},
        )
        assert zero.status_code == 422

        rest = client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": stall_id, "amount_paid": 110},
        )
        assert rest.status_code == 200
        account = client.get(f"/api/v1/accounts/stalls/{stall_id}").json()["data"]
        assert account["remaining_balance"] == 0.0
        assert account["fully_paid"] is True


def test_participant_payment_requires_existing_stall() -> None:
    client = _make_client()
    with client:
        no_stall = client.post("/api/v1/payments", json={"payment_type": "participant", "amount_paid": 10})
        assert no_stall.status_code == 400

        unknown = client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": 42, "amount_paid": 10},
        )
        assert unknown.status_code == 404


def test_other_payment_requires_narration() -> None:
    client = _make_client()
    with client:
        missing = client.post("/api/v1/payments", json={"payment_type": "other", "amount_paid": 40})
        assert missing.status_code == 400

        negative = client.post(
            "/api/v1/payments",
            json={"payment_type": "other", "amount_paid": -5, "narration": "Sound system"},
        )
        assert negative.status_code == 422

        ok = client.post(
            "/api/v1/payments",
            json={"payment_type": "other", "amount_paid": 40, "narration": "Sound system"},
        )
        assert ok.status_code == 200
        assert ok.json()["data"]["stall_id"] is None

        listed = client.get("/api/v1/payments", params={"payment_type": "other"}).json()["data"]
        assert len(listed) == 1


def test_accounts_summary_and_collections() -> None:
    client = _make_client()
    with client:
        verified = _create_stall(client, "C-01", registration_fee=500, is_verified=True)
        _create_stall(client, "C-02", registration_fee=300)
        _bill(client, verified, [{"price": 100, "quantity": 2, "event_margin": 20}])

        client.post(
            "/api/v1/registrations",
            json={"registration_type": "employment_registration", "name": "Rahul", "amount": 100},
        )
        client.post(
            "/api/v1/registrations",
            json={"registration_type": "stall_counter", "name": "C-01", "amount": 999},
        )
        client.post(
            "/api/v1/payments",
            json={"payment_type": "other", "amount_paid": 40, "narration": "Lights"},
        )
        client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": verified, "amount_paid": 50},
        )

        summary_resp = client.get("/api/v1/accounts/summary")
        assert summary_resp.status_code == 200
        summary = summary_resp.json()["data"]
        assert summary["total_billing_collected"] == 200.0
        assert summary["total_registration_collected"] == 100.0
        assert summary["stall_booking_fees"] == 500.0
        assert summary["total_collected"] == 800.0
        assert summary["total_paid"] == 40.0
        assert summary["cash_balance"] == 760.0
        assert summary["stall_payments_total"] == 50.0
        assert summary["employment_registration_total"] == 100.0
        assert "total_paid_excludes_stall_payments" in summary_resp.json()["meta"]["warnings"]

        entries = client.get("/api/v1/accounts/collections").json()["data"]
        categories = sorted(entry["category"] for entry in entries)
        assert categories == ["Employment Registration", "Stall Billing", "Stall Booking Fee"]
        billing = next(entry for entry in entries if entry["type"] == "billing")
        assert billing["description"] == "C-01"


def test_registrations_filter_by_type() -> None:
    client = _make_client()
    with client:
        client.post(
            "/api/v1/registrations",
            json={"registration_type": "employment_booking", "name": "Asha", "amount": 50},
        )
        client.post(
            "/api/v1/registrations",
            json={"registration_type": "employment_registration", "name": "Ravi", "amount": 100},
        )
        bad = client.post(
            "/api/v1/registrations", json={"registration_type": "unknown", "name": "X"}
        )
        assert bad.status_code == 422

        listed = client.get(
            "/api/v1/registrations", params={"registration_type": "employment_booking"}
        ).json()["data"]
        assert [row["name"] for row in listed] == ["Asha"]


def _create_panchayath_with_ward(client: TestClient) -> tuple[int, int]:
    panchayath_id = client.post("/api/v1/panchayaths", json={"name": "Kodiyathur"}).json()["data"][
        "panchayath_id"
    ]
    ward_resp = client.post(
        f"/api/v1/panchayaths/{panchayath_id}/wards", json={"ward_number": "7", "ward_name": "Cheruvadi"}
    )
    assert ward_resp.status_code == 200
    return panchayath_id, ward_resp.json()["data"]["ward_id"]


def test_panchayath_and_ward_management() -> None:
    client = _make_client()
    with client:
        panchayath_id, ward_id = _create_panchayath_with_ward(client)

        dup = client.post(f"/api/v1/panchayaths/{panchayath_id}/wards", json={"ward_number": "7"})
        assert dup.status_code == 409

        wards = client.get(f"/api/v1/panchayaths/{panchayath_id}/wards").json()["data"]
        assert [w["ward_id"] for w in wards] == [ward_id]

        assert client.delete(f"/api/v1/wards/{ward_id}").status_code == 200
        assert client.get(f"/api/v1/panchayaths/{panchayath_id}/wards").json()["data"] == []

        assert client.delete(f"/api/v1/panchayaths/{panchayath_id}").status_code == 200
        assert client.get("/api/v1/panchayaths").json()["data"] == []


def test_survey_content_ordering_and_toggle() -> None:
    client = _make_client()
    with client:
        first = client.post(
            "/api/v1/survey-content", json={"content_type": "poster", "title": "Poster A"}
        ).json()["data"]
        second = client.post(
            "/api/v1/survey-content", json={"content_type": "poster", "title": "Poster B"}
        ).json()["data"]
        assert first["display_order"] == 1
        assert second["display_order"] == 2

        toggle = client.patch(f"/api/v1/survey-content/{first['content_id']}", json={"is_active": False})
        assert toggle.status_code == 200

        active = client.get("/api/v1/survey-content", params={"content_type": "poster"}).json()["data"]
        assert [c["title"] for c in active] == ["Poster B"]

        everything = client.get(
            "/api/v1/survey-content", params={"content_type": "poster", "active_only": False}
        ).json()["data"]
        assert len(everything) == 2

        assert client.delete(f"/api/v1/survey-content/{second['content_id']}").status_code == 200
        assert client.delete(f"/api/v1/survey-content/{second['content_id']}").status_code == 404


def test_survey_share_links_and_results() -> None:
    client = _make_client()
    with client:
        panchayath_id, ward_id = _create_panchayath_with_ward(client)
        share_resp = client.post(
            "/api/v1/survey-shares",
            json={"name": "Suresh", "mobile": "9847000002", "panchayath_id": panchayath_id, "ward_id": ward_id},
        )
        assert share_resp.status_code == 200
        share = share_resp.json()["data"]
        assert "/survey-view?name=Suresh&panchayath=Kodiyathur&ward=7" in share["view_url"]
        assert share["whatsapp_url"].startswith("https://wa.me/?text=")

        blank = client.post(
            "/api/v1/survey-shares",
            json={"name": " ", "mobile": "9847000002", "panchayath_id": panchayath_id, "ward_id": ward_id},
        )
        assert blank.status_code == 400

        results = client.get(
            "/api/v1/survey-shares/results", params={"panchayath_id": panchayath_id}
        ).json()["data"]
        assert results["total_shares"] == 1
        assert results["wards_with_shares"] == 1
        assert results["wards"][0]["share_count"] == 1


def test_stall_enquiry_conditional_fields() -> None:
    client = _make_client()
    with client:
        panchayath_id, ward_id = _create_panchayath_with_ward(client)
        home_made = client.post(
            "/api/v1/stall-enquiry-fields",
            json={"field_label": "Home made?", "field_type": "radio", "options": ["Yes", "No"], "display_order": 1},
        ).json()["data"]
        client.post(
            "/api/v1/stall-enquiry-fields",
            json={
                "field_label": "Products",
                "field_type": "text",
                "display_order": 2,
                "show_conditional_on": home_made["field_id"],
                "conditional_value": "Yes",
            },
        )
        contact = {"name": "Anitha", "mobile": "9847000000", "panchayath_id": panchayath_id, "ward_id": ward_id}
        key = str(home_made["field_id"])

        hidden = client.post("/api/v1/stall-enquiries", json={**contact, "responses": {key: "No"}})
        assert hidden.status_code == 200
        assert hidden.json()["data"]["responses"] == {key: "No"}
        assert hidden.json()["data"]["status"] == "pending"

        shown = client.post("/api/v1/stall-enquiries", json={**contact, "responses": {key: "Yes"}})
        assert shown.status_code == 422
        assert "Products is required" in shown.json()["errors"]

        short_mobile = client.post(
            "/api/v1/stall-enquiries", json={**contact, "mobile": "12345", "responses": {key: "No"}}
        )
        assert short_mobile.status_code == 422

        enquiry_id = hidden.json()["data"]["enquiry_id"]
        update = client.patch(f"/api/v1/stall-enquiries/{enquiry_id}", json={"status": "contacted"})
        assert update.json()["data"]["status"] == "contacted"


def test_enquiry_field_type_validation() -> None:
    client = _make_client()
    with client:
        bad_type = client.post("/api/v1/stall-enquiry-fields", json={"field_label": "X", "field_type": "slider"})
        assert bad_type.status_code == 422

        no_options = client.post(
            "/api/v1/stall-enquiry-fields", json={"field_label": "Pick", "field_type": "select"}
        )
        assert no_options.status_code == 422


def test_admin_permissions_require_super_admin() -> None:
    client = _make_client()
    with client:
        first_admin = client.post("/api/v1/admins", json={"username": "desk", "role": "admin"})
        assert first_admin.status_code == 400

        root = client.post("/api/v1/admins", json={"username": "root", "role": "super_admin"}).json()["data"]
        headers = {"X-Admin-Id": str(root["admin_id"])}
        desk = client.post("/api/v1/admins", json={"username": "desk"}, headers=headers).json()["data"]

        assert client.get("/api/v1/admins").status_code == 401
        forbidden = client.get("/api/v1/admins", headers={"X-Admin-Id": str(desk["admin_id"])})
        assert forbidden.status_code == 403

        listed = client.get("/api/v1/admins", headers=headers).json()["data"]
        assert [a["username"] for a in listed] == ["desk"]

        matrix = client.get(f"/api/v1/admins/{desk['admin_id']}/permissions", headers=headers).json()["data"]
        assert len(matrix["permissions"]) == 10
        assert not any(p["can_read"] for p in matrix["permissions"])

        put_resp = client.put(
            f"/api/v1/admins/{desk['admin_id']}/permissions",
            json={"permissions": [{"module": "billing", "can_read": True, "can_create": True}]},
            headers=headers,
        )
        assert put_resp.status_code == 200

        access = client.get(
            "/api/v1/admins/me/access",
            params={"module": "billing", "action": "create"},
            headers={"X-Admin-Id": str(desk["admin_id"])},
        ).json()["data"]
        assert access["allowed"] is True

        denied = client.get(
            "/api/v1/admins/me/access",
            params={"module": "accounts", "action": "read"},
            headers={"X-Admin-Id": str(desk["admin_id"])},
        ).json()["data"]
        assert denied["allowed"] is False

        unknown = client.put(
            f"/api/v1/admins/{desk['admin_id']}/permissions",
            json={"permissions": [{"module": "rockets", "can_read": True}]},
            headers=headers,
        )
        assert unknown.status_code == 400


def test_money_inputs_reject_fractions_of_a_cent() -> None:
    client = _make_client()
    with client:
        stall_id = _create_stall(client)
        _bill(client, stall_id, [{"price": 100, "quantity": 2, "event_margin": 20}])

        sub_cent = client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": stall_id, "amount_paid": "0.004"},
        )
        assert sub_cent.status_code == 422
        assert client.get("/api/v1/payments").json()["data"] == []

        fee = client.post(
            "/api/v1/stalls",
            json={"counter_name": "C-02", "participant_name": "Ravi", "registration_fee": "10.005"},
        )
        assert fee.status_code == 422

        price = client.post(
            "/api/v1/billing-transactions",
            json={"stall_id": stall_id, "items": [{"price": "1.001"}]},
        )
        assert price.status_code == 422

        cost = client.post(
            f"/api/v1/stalls/{stall_id}/products", json={"item_name": "Tea", "cost_price": "9.999"}
        )
        assert cost.status_code == 422

        amount = client.post(
            "/api/v1/registrations",
            json={"registration_type": "employment_booking", "name": "Asha", "amount": "5.555"},
        )
        assert amount.status_code == 422

        account = client.get(f"/api/v1/accounts/stalls/{stall_id}").json()["data"]
        assert account["already_paid"] == 0.0


def test_fractional_cent_bill_can_be_settled() -> None:
    client = _make_client()
    with client:
        stall_id = _create_stall(client)
        _bill(client, stall_id, [{"price": "33.33", "quantity": 1, "event_margin": 15}])

        pay = client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": stall_id, "amount_paid": "28.33"},
        )
        assert pay.status_code == 200

        account = client.get(f"/api/v1/accounts/stalls/{stall_id}").json()["data"]
        assert account["remaining_balance"] == 0.0
        assert account["fully_paid"] is True

        extra = client.post(
            "/api/v1/payments",
            json={"payment_type": "participant", "stall_id": stall_id, "amount_paid": "0.01"},
        )
        assert extra.status_code == 422


def _submit_enquiry(client: TestClient, panchayath_id: int, ward_id: int) -> int:
    resp = client.post(
        "/api/v1/stall-enquiries",
        json={"name": "Anitha", "mobile": "9847000000", "panchayath_id": panchayath_id, "ward_id": ward_id},
    )
    assert resp.status_code == 200
    return resp.json()["data"]["enquiry_id"]


def test_enquiry_list_rejects_unknown_status() -> None:
    client = _make_client()
    with client:
        panchayath_id, ward_id = _create_panchayath_with_ward(client)
        _submit_enquiry(client, panchayath_id, ward_id)

        assert client.get("/api/v1/stall-enquiries", params={"status": "archived"}).status_code == 422
        pending = client.get("/api/v1/stall-enquiries", params={"status": "pending"}).json()["data"]
        assert len(pending) == 1


def test_locations_referenced_by_enquiries_cannot_be_deleted() -> None:
    client = _make_client()
    with client:
        panchayath_id, ward_id = _create_panchayath_with_ward(client)
        _submit_enquiry(client, panchayath_id, ward_id)

        assert client.delete(f"/api/v1/wards/{ward_id}").status_code == 409
        assert client.delete(f"/api/v1/panchayaths/{panchayath_id}").status_code == 409

        wards = client.get(f"/api/v1/panchayaths/{panchayath_id}/wards").json()["data"]
        assert [w["ward_id"] for w in wards] == [ward_id]
        enquiry = client.get("/api/v1/stall-enquiries").json()["data"][0]
        assert enquiry["ward_id"] == ward_id
