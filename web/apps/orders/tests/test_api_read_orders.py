from decimal import Decimal
from uuid import uuid4

import pytest

from apps.orders.models import OrderItemModel, OrderModel

DETAIL_URL = "/api/orders/{oid}/"
LIST_URL = "/api/orders/"


def _seed(n, status="PENDING"):
    return [
        OrderModel.objects.create(total_amount=Decimal("15.00"), total_items=2, status=status)
        for _ in range(n)
    ]


@pytest.mark.django_db
def test_get_order_by_id_returns_200_with_item_names(client):
    o = OrderModel.objects.create(total_amount=Decimal("25.00"), total_items=3)
    OrderItemModel.objects.create(order=o, product_id=1, quantity=2, price=Decimal("10.00"))
    OrderItemModel.objects.create(order=o, product_id=2, quantity=1, price=Decimal("5.00"))

    r = client.get(DETAIL_URL.format(oid=str(o.id)))
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == str(o.id)
    assert body["status"] == "PENDING"
    assert Decimal(body["total_amount"]) == Decimal("25")
    assert body["receipt"] is None
    assert [(i["product_id"], i["name"]) for i in body["items"]] == [
        (1, "Mechanical keyboard"),
        (2, "USB-C cable"),
    ]


@pytest.mark.django_db
def test_get_order_not_found_returns_404(client):
    oid = str(uuid4())
    r = client.get(DETAIL_URL.format(oid=oid))
    assert r.status_code == 404
    body = r.json()
    assert body["detail"] == "NOT_FOUND"
    assert body["order_id"] == oid


@pytest.mark.django_db
def test_list_orders_pagination_meta(client):
    _seed(25)

    r = client.get(LIST_URL, {"page": 3, "limit": 10})
    assert r.status_code == 200
    body = r.json()
    assert len(body["data"]) == 5
    assert body["meta"] == {"total": 25, "page": 3, "lastPage": 3}
    assert all({"id", "status", "total_amount", "total_items"} <= set(x) for x in body["data"])
    assert all("items" not in x for x in body["data"])

    r = client.get(LIST_URL, {"page": 4, "limit": 10})
    assert r.status_code == 200
    assert r.json() == {"data": [], "meta": {"total": 25, "page": 4, "lastPage": 3}}


@pytest.mark.django_db
def test_list_orders_defaults_and_status_filter(client):
    _seed(12)
    paid = _seed(2, status="PAID")

    r = client.get(LIST_URL)
    assert r.json()["meta"] == {"total": 14, "page": 1, "lastPage": 2}
    assert len(r.json()["data"]) == 10

    r = client.get(LIST_URL, {"status": "PAID"})
    body = r.json()
    assert body["meta"]["total"] == 2
    assert {x["id"] for x in body["data"]} == {str(o.id) for o in paid}


@pytest.mark.django_db
@pytest.mark.parametrize("query", [{"page": 0}, {"limit": 1000}, {"status": "SHIPPED"}, {"page": "x"}])
def test_list_orders_invalid_query(client, query):
    r = client.get(LIST_URL, query)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"
