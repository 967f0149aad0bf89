"""Tests for the Django ORM order store."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from apps.orders.adapters import CatalogStub, PaymentsStub
from apps.orders.domain import (
    InvalidTransitionError,
    NotFoundError,
    Order,
    OrderItem,
    OrderLine,
    OrderOrchestrator,
    OrderStatus,
    Product,
)
from apps.orders.models import OrderModel, OrderReceiptModel
from apps.orders.repository import OrderRepository

pytestmark = pytest.mark.django_db

PAID_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def repo():
    return OrderRepository()


@pytest.fixture
def order(repo):
    return repo.create(
        Order(
            id=None,
            items=[
                OrderItem(product_id=1, quantity=2, price=Decimal("10.00"), name="not stored"),
                OrderItem(product_id=2, quantity=1, price=Decimal("5.00")),
            ],
            total_amount=Decimal("25.00"),
            total_items=3,
        )
    )


def test_create_and_get(repo, order):
    got = repo.get(order.id)
    assert got.id == order.id
    assert got.status == OrderStatus.PENDING
    assert got.total_amount == Decimal("25.00")
    assert [(i.product_id, i.quantity, i.price, i.name) for i in got.items] == [
        (1, 2, Decimal("10.00"), None),
        (2, 1, Decimal("5.00"), None),
    ]
    assert got.receipt is None


@pytest.mark.parametrize("bad_id", ["00000000-0000-0000-0000-000000000000", "not-a-uuid"])
def test_get_unknown(repo, bad_id):
    with pytest.raises(NotFoundError):
        repo.get(bad_id)


def test_update_status_is_conditional(repo, order):
    updated = repo.update_status(order.id, OrderStatus.CANCELLED, expected=OrderStatus.PENDING)
    assert updated.status == OrderStatus.CANCELLED

    with pytest.raises(InvalidTransitionError) as e:
        repo.update_status(order.id, OrderStatus.CANCELLED, expected=OrderStatus.PENDING)
    assert e.value.current == OrderStatus.CANCELLED


def test_mark_paid_writes_everything_once(repo, order):
    paid, applied = repo.mark_paid(order.id, "ch_1", "https://r/1", paid_at=PAID_AT)
    assert applied is True
    assert paid.status == OrderStatus.PAID
    assert paid.paid is True
    assert paid.paid_at == PAID_AT
    assert paid.receipt.receipt_url == "https://r/1"

    again, applied = repo.mark_paid(order.id, "ch_1", "https://r/1", paid_at=datetime.now(timezone.utc))
    assert applied is False
    assert again.paid_at == PAID_AT
    assert OrderReceiptModel.objects.count() == 1


def test_mark_paid_refuses_closed_order(repo, order):
    repo.update_status(order.id, OrderStatus.CANCELLED, expected=OrderStatus.PENDING)
    with pytest.raises(InvalidTransitionError):
        repo.mark_paid(order.id, "ch_1", "https://r/1", paid_at=PAID_AT)
    assert OrderReceiptModel.objects.count() == 0
    assert OrderModel.objects.get(id=order.id).paid is False


def test_list_by_status_beyond_last_page(repo, order):
    rows, total = repo.list_by_status(None, page=2, page_size=10)
    assert rows == [] and total == 1

    rows, total = repo.list_by_status(OrderStatus.PENDING, page=1, page_size=10)
    assert [o.id for o in rows] == [order.id]
    assert rows[0].items == []


def test_sub_cent_catalog_price_keeps_stored_totals_consistent(repo):
    service = OrderOrchestrator(CatalogStub([Product(7, "Sticker", Decimal("0.005"))]), PaymentsStub(), repo)
    out = service.create_order([OrderLine(7, 3)])

    stored = repo.get(out.order.id)
    assert stored.items[0].price == Decimal("0.01")
    assert stored.total_amount == Decimal("0.03")
    assert stored.total_amount == sum(it.price * it.quantity for it in stored.items)
