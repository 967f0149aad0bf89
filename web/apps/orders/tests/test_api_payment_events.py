"""API tests for the payment-succeeded event endpoint.

Delivery is at-least-once, so the same event may arrive several times; the
endpoint must apply it once and acknowledge every copy.
"""
from decimal import Decimal
from uuid import uuid4

import pytest

from apps.orders.domain import StoreError
from apps.orders.models import OrderModel, OrderReceiptModel

EVENT_URL = "/api/orders/events/payment-succeeded/"


def _event(order_id, payment_id="ch_3PqX", receipt_url="https://pay.stripe.com/receipts/abc"):
    return {"paymentId": payment_id, "orderId": str(order_id), "receiptUrl": receipt_url}


def _send(client, payload):
    return client.post(EVENT_URL, data=payload, content_type="application/json")


@pytest.fixture
def order(db):
    return OrderModel.objects.create(total_amount=Decimal("25.00"), total_items=3)


def test_payment_event_marks_order_paid(client, order):
    r = _send(client, _event(order.id))
    assert r.status_code == 202
    assert r.json() == {"outcome": "APPLIED"}

    order.refresh_from_db()
    assert order.status == "PAID"
    assert order.paid is True
    assert order.paid_at is not None
    assert order.payment_reference == "ch_3PqX"
    assert order.receipt.receipt_url == "https://pay.stripe.com/receipts/abc"


def test_payment_event_redelivery_is_noop(client, order):
    assert _send(client, _event(order.id)).status_code == 202
    order.refresh_from_db()
    paid_at = order.paid_at

    r = _send(client, _event(order.id))
    assert r.status_code == 202
    assert r.json() == {"outcome": "DUPLICATE"}
    assert OrderReceiptModel.objects.filter(order=order).count() == 1
    order.refresh_from_db()
    assert order.paid_at == paid_at


def test_payment_event_shows_in_order_detail(client, order):
    _send(client, _event(order.id))
    body = client.get(f"/api/orders/{order.id}/").json()
    assert body["paid"] is True
    assert body["receipt"]["receipt_url"] == "https://pay.stripe.com/receipts/abc"


def test_payment_event_unknown_order_is_acknowledged_as_rejected(client, db):
    r = _send(client, _event(uuid4()))
    assert r.status_code == 202
    assert r.json() == {"outcome": "REJECTED"}


def test_payment_event_conflicting_reference_is_rejected(client, order):
    _send(client, _event(order.id, payment_id="ch_1"))
    r = _send(client, _event(order.id, payment_id="ch_2"))
    assert r.json() == {"outcome": "REJECTED"}
    order.refresh_from_db()
    assert order.payment_reference == "ch_1"


def test_payment_event_store_failure_asks_for_redelivery(client, order, monkeypatch):
    def broken(self, *args, **kwargs):
        raise StoreError("database is locked")
    monkeypatch.setattr("apps.orders.repository.OrderRepository.mark_paid", broken)

    r = _send(client, _event(order.id))
    assert r.status_code == 503
    assert r.json() == {"outcome": "RETRY"}
    monkeypatch.undo()

    r = _send(client, _event(order.id))
    assert r.json() == {"outcome": "APPLIED"}


@pytest.mark.parametrize(
    "payload",
    [
        {"paymentId": "ch_1", "orderId": "not-a-uuid", "receiptUrl": "https://x/r"},
        {"paymentId": "ch_1", "orderId": str(uuid4()), "receiptUrl": "not a url"},
        {"orderId": str(uuid4()), "receiptUrl": "https://x/r"},
        {"paymentId": "ch_" + "9" * 300, "orderId": str(uuid4()), "receiptUrl": "https://x/r"},
        {"paymentId": "ch_1", "orderId": str(uuid4()), "receiptUrl": "https://x/" + "r" * 600},
    ],
)
def test_payment_event_malformed(client, db, payload):
    r = _send(client, payload)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


def test_payment_event_too_long_for_storage_is_not_retried(client, order):
    r = _send(client, _event(order.id, payment_id="ch_" + "x" * 256))
    assert r.status_code == 400
    order.refresh_from_db()
    assert order.paid is False
    assert order.payment_reference is None
