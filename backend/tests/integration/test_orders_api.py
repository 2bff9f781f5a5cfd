from __future__ import annotations

import time

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from signpay.db.models import OrderModel
from signpay.exceptions import SIGNATURE_REJECTED_MESSAGE
from signpay.services import order_service
from signpay.services.signature_service import canonical_pairs, signed_payload
from sign_request import to_query_string

FORM_HEADERS = {"content-type": "application/x-www-form-urlencoded"}


def _submit_fields(merchant_id: int, **overrides) -> dict:
    fields = {
        "merchandiser_id": merchant_id,
        "trade_no": "T-1001",
        "subject": "Coffee beans",
        "amount": "25.50",
        "returnUrl": "https://example.com/return",
        "notifyUrl": "https://example.com/notify",
        "items": [{"sku": "beans-1kg", "quantity": 1}],
    }
    fields.update(overrides)
    return fields


def _submit(client, keys, merchant_id: int, **overrides):
    body = signed_payload(_submit_fields(merchant_id, **overrides), keys.private_pem)
    return client.post("/api/orders", json=body)


def _order_count(sync_engine) -> int:
    with Session(sync_engine) as session:
        return session.scalar(select(func.count()).select_from(OrderModel))


def _set_status(sync_engine, order_id: int, status: str) -> None:
    with Session(sync_engine) as session:
        session.execute(update(OrderModel).where(OrderModel.id == order_id).values(status=status))
        session.commit()


def _create_order(client, keys, merchant_id: int, status: str = "pending", sync_engine=None) -> dict:
    response = _submit(client, keys, merchant_id)
    assert response.status_code == 200
    order = response.json()["data"]
    if status != "pending":
        _set_status(sync_engine, order["id"], status)
    return order


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------

def test_submit_creates_pending_order(client, rsa_keys, merchant_id, sync_engine) -> None:
    response = _submit(client, rsa_keys, merchant_id)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == 0
    assert body["message"] == ""
    order = body["data"]
    assert order["merchandiser_id"] == merchant_id
    assert order["trade_no"] == "T-1001"
    assert order["status"] == "pending"
    assert order["amount"] == "25.50"
    assert order["items"] == [{"sku": "beans-1kg", "quantity": 1}]
    assert order["returnUrl"] == "https://example.com/return"
    assert _order_count(sync_engine) == 1


def test_resubmit_while_pending_updates_in_place(client, rsa_keys, merchant_id, sync_engine) -> None:
    first = _submit(client, rsa_keys, merchant_id).json()["data"]
    second = _submit(
        client, rsa_keys, merchant_id, subject="Espresso beans", amount="30.00", items=[{"sku": "esp"}]
    ).json()["data"]

    assert second["id"] == first["id"]
    assert second["subject"] == "Espresso beans"
    assert second["amount"] == "30.00"
    assert second["items"] == [{"sku": "esp"}]
    assert second["status"] == "pending"
    assert _order_count(sync_engine) == 1


def test_submit_after_processing_conflicts(client, rsa_keys, merchant_id, sync_engine) -> None:
    order = _create_order(client, rsa_keys, merchant_id, "processing", sync_engine)

    response = _submit(client, rsa_keys, merchant_id, subject="Changed")

    assert response.status_code == 409
    assert response.json() == {"data": None, "message": "trade_no already exists", "status": 409}
    with Session(sync_engine) as session:
        assert session.get(OrderModel, order["id"]).subject == "Coffee beans"


def test_submit_with_foreign_domain_is_rejected(client, rsa_keys, merchant_id, sync_engine) -> None:
    response = _submit(client, rsa_keys, merchant_id, returnUrl="https://other.com/x")

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == 400
    assert body["data"] is None
    assert "example.com" in body["message"]
    assert _order_count(sync_engine) == 0


def test_submit_with_bad_signature_is_rejected(client, rsa_keys, other_rsa_keys, merchant_id, sync_engine) -> None:
    response = _submit(client, other_rsa_keys, merchant_id)

    assert response.status_code == 403
    assert response.json() == {"data": None, "message": SIGNATURE_REJECTED_MESSAGE, "status": 403}
    assert _order_count(sync_engine) == 0


def test_submit_with_stale_timestamp_gets_same_message(client, rsa_keys, merchant_id) -> None:
    body = signed_payload(_submit_fields(merchant_id), rsa_keys.private_pem, timestamp=int(time.time()) - 600)

    response = client.post("/api/orders", json=body)

    assert response.status_code == 403
    assert response.json()["message"] == SIGNATURE_REJECTED_MESSAGE


def test_submit_without_sign_is_rejected(client, merchant_id) -> None:
    body = dict(_submit_fields(merchant_id), timestamp=int(time.time()))

    response = client.post("/api/orders", json=body)

    assert response.status_code == 403


def test_submit_for_non_alive_merchant_is_not_found(client, rsa_keys, frozen_merchant_id, sync_engine) -> None:
    response = _submit(client, rsa_keys, frozen_merchant_id)

    assert response.status_code == 404
    assert response.json()["status"] == 404
    assert _order_count(sync_engine) == 0


def test_submit_with_missing_fields_is_validation_error(client, rsa_keys, merchant_id) -> None:
    fields = _submit_fields(merchant_id)
    del fields["subject"]

    response = client.post("/api/orders", json=signed_payload(fields, rsa_keys.private_pem))

    assert response.status_code == 400
    assert "subject" in response.json()["message"]


def test_submit_with_non_object_json_is_validation_error(client) -> None:
    response = client.post("/api/orders", json=["not", "an", "object"])

    assert response.status_code == 400


def test_submit_as_form_body_with_items(client, rsa_keys, merchant_id, sync_engine) -> None:
    fields = _submit_fields(merchant_id)
    del fields["items"]
    form = signed_payload(fields, rsa_keys.private_pem)
    # items ride along unsigned, in bracket notation
    form["items[0][sku]"] = "beans-1kg"
    form["items[0][quantity]"] = "1"
    form["items[1][sku]"] = "filter-papers"

    response = client.post("/api/orders", data=form)

    assert response.status_code == 200
    assert response.json()["data"]["items"] == [
        {"sku": "beans-1kg", "quantity": "1"},
        {"sku": "filter-papers"},
    ]
    assert _order_count(sync_engine) == 1


def test_signing_script_query_output_is_accepted(client, rsa_keys, merchant_id) -> None:
    data = signed_payload(_submit_fields(merchant_id), rsa_keys.private_pem)

    response = client.post("/api/orders", content=to_query_string(data), headers=FORM_HEADERS)

    assert response.status_code == 200
    assert response.json()["data"]["items"] == [{"sku": "beans-1kg", "quantity": "1"}]


def test_repeated_form_field_is_rejected(client, rsa_keys, merchant_id, sync_engine) -> None:
    data = signed_payload(_submit_fields(merchant_id), rsa_keys.private_pem)
    body = to_query_string(data) + "&trade_no=T-other"

    response = client.post("/api/orders", content=body, headers=FORM_HEADERS)

    assert response.status_code == 400
    assert "trade_no" in response.json()["message"]
    assert _order_count(sync_engine) == 0


def test_lost_create_race_falls_back_to_update(client, rsa_keys, merchant_id, sync_engine, monkeypatch) -> None:
    first = _submit(client, rsa_keys, merchant_id).json()["data"]

    real_find = order_service._find_by_trade_no
    calls = []

    async def find_missing_once(db, merchant, trade_no):
        calls.append(trade_no)
        if len(calls) == 1:
            return None
        return await real_find(db, merchant, trade_no)

    monkeypatch.setattr(order_service, "_find_by_trade_no", find_missing_once)

    response = _submit(client, rsa_keys, merchant_id, subject="Second writer")

    assert response.status_code == 200
    assert response.json()["data"]["id"] == first["id"]
    assert response.json()["data"]["subject"] == "Second writer"
    assert len(calls) == 2
    assert _order_count(sync_engine) == 1


# ---------------------------------------------------------------------------
# fetch
# ---------------------------------------------------------------------------

def test_fetch_returns_snapshot(client, rsa_keys, merchant_id) -> None:
    order = _create_order(client, rsa_keys, merchant_id)

    params = signed_payload({}, rsa_keys.private_pem)
    response = client.get(f"/api/orders/{order['id']}", params=params)

    assert response.status_code == 200
    assert response.json()["data"]["trade_no"] == "T-1001"
    assert response.json()["status"] == 0


def test_fetch_with_wrong_key_is_rejected(client, rsa_keys, other_rsa_keys, merchant_id) -> None:
    order = _create_order(client, rsa_keys, merchant_id)

    params = signed_payload({}, other_rsa_keys.private_pem)
    response = client.get(f"/api/orders/{order['id']}", params=params)

    assert response.status_code == 403
    assert response.json()["data"] is None


def test_fetch_unknown_order_is_not_found(client, rsa_keys, merchant_id) -> None:
    response = client.get("/api/orders/999", params=signed_payload({}, rsa_keys.private_pem))

    assert response.status_code == 404


def test_fetch_with_extra_signed_query_fields(client, rsa_keys, merchant_id) -> None:
    order = _create_order(client, rsa_keys, merchant_id)
    data = signed_payload(
        {"trade_no": "T-1001", "channel": "web", "meta": {"ref": "abc", "tags": ["a", "b"]}},
        rsa_keys.private_pem,
    )

    response = client.get(f"/api/orders/{order['id']}", params=canonical_pairs(data, excluded_fields=frozenset()))

    assert response.status_code == 200
    assert response.json()["data"]["id"] == order["id"]


# ---------------------------------------------------------------------------
# complete
# ---------------------------------------------------------------------------

def test_complete_processing_order_twice(client, rsa_keys, merchant_id, sync_engine) -> None:
    order = _create_order(client, rsa_keys, merchant_id, "processing", sync_engine)
    url = f"/api/orders/{order['id']}/complete"

    first = client.post(url, json=signed_payload({"trade_no": "T-1001"}, rsa_keys.private_pem))
    second = client.post(url, json=signed_payload({"trade_no": "T-1001"}, rsa_keys.private_pem))

    assert first.status_code == 200
    assert first.json()["data"]["status"] == "done"
    assert second.status_code == 200
    assert second.json()["status"] == 0
    assert second.json()["data"]["status"] == "done"


def test_complete_pending_order_is_loose_no_op(client, rsa_keys, merchant_id) -> None:
    # Completing outside processing succeeds without changing the status.
    order = _create_order(client, rsa_keys, merchant_id)

    response = client.post(
        f"/api/orders/{order['id']}/complete",
        json=signed_payload({"trade_no": "T-1001"}, rsa_keys.private_pem),
    )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "pending"


def test_complete_with_other_trade_no_is_not_found(client, rsa_keys, merchant_id, sync_engine) -> None:
    order = _create_order(client, rsa_keys, merchant_id, "processing", sync_engine)

    response = client.post(
        f"/api/orders/{order['id']}/complete",
        json=signed_payload({"trade_no": "T-9999"}, rsa_keys.private_pem),
    )

    assert response.status_code == 404
    assert response.json()["message"] == "trade_no not matched"


def test_complete_with_integer_trade_no_is_not_found(client, rsa_keys, merchant_id, sync_engine) -> None:
    order = _submit(client, rsa_keys, merchant_id, trade_no="1001").json()["data"]
    _set_status(sync_engine, order["id"], "processing")

    response = client.post(
        f"/api/orders/{order['id']}/complete",
        json=signed_payload({"trade_no": 1001}, rsa_keys.private_pem),
    )

    assert response.status_code == 404
    with Session(sync_engine) as session:
        assert session.get(OrderModel, order["id"]).status == "processing"


def test_complete_with_bad_signature_is_rejected(client, rsa_keys, other_rsa_keys, merchant_id, sync_engine) -> None:
    order = _create_order(client, rsa_keys, merchant_id, "processing", sync_engine)

    response = client.post(
        f"/api/orders/{order['id']}/complete",
        json=signed_payload({"trade_no": "T-1001"}, other_rsa_keys.private_pem),
    )

    assert response.status_code == 403
    with Session(sync_engine) as session:
        assert session.get(OrderModel, order["id"]).status == "processing"


# ---------------------------------------------------------------------------
# remove
# ---------------------------------------------------------------------------

def test_remove_pending_order_is_refused(client, rsa_keys, merchant_id, sync_engine) -> None:
    order = _create_order(client, rsa_keys, merchant_id)

    response = client.request(
        "DELETE",
        f"/api/orders/{order['id']}",
        json=signed_payload({"trade_no": "T-1001"}, rsa_keys.private_pem),
    )

    assert response.status_code == 405
    assert response.json() == {"data": None, "message": "Cannot delete this order", "status": 405}
    assert _order_count(sync_engine) == 1


def test_remove_refunded_order(client, rsa_keys, merchant_id, sync_engine) -> None:
    order = _create_order(client, rsa_keys, merchant_id, "refunded", sync_engine)

    response = client.request(
        "DELETE",
        f"/api/orders/{order['id']}",
        json=signed_payload({"trade_no": "T-1001"}, rsa_keys.private_pem),
    )

    assert response.status_code == 200
    assert response.json() == {"data": None, "message": "", "status": 0}
    assert _order_count(sync_engine) == 0


def test_remove_cancelled_order_with_other_trade_no(client, rsa_keys, merchant_id, sync_engine) -> None:
    order = _create_order(client, rsa_keys, merchant_id, "cancelled", sync_engine)

    response = client.request(
        "DELETE",
        f"/api/orders/{order['id']}",
        json=signed_payload({"trade_no": "T-2"}, rsa_keys.private_pem),
    )

    assert response.status_code == 404
    assert _order_count(sync_engine) == 1


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
