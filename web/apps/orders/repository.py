"""Repository layer for persisting orders.

``OrderRepository`` implements ``OrderStorePort`` on top of the Django ORM.
It maps between ``OrderModel`` rows and domain ``Order`` objects so the
domain layer is not coupled to ORM types, and it turns database failures
into ``StoreError``.

Atomicity:
    - ``create`` writes the order and its items in one transaction.
    - ``update_status`` is a conditional ``UPDATE ... WHERE status = expected``.
    - ``mark_paid`` locks the order row (``SELECT ... FOR UPDATE``), decides,
      and writes status, payment fields and receipt in one transaction, so
      concurrent re-deliveries of the same confirmation apply once.
"""

import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from django.core.exceptions import ObjectDoesNotExist
from django.db import DatabaseError, transaction
from django.utils import timezone

from .domain import (
    NotFoundError,
    InvalidTransitionError,
    Order,
    OrderItem,
    OrderReceipt,
    OrderStatus,
    OrderStorePort,
    StoreError,
    check_payable,
)
from .models import OrderItemModel, OrderModel, OrderReceiptModel


def _parse_id(order_id) -> uuid.UUID:
    try:
        return order_id if isinstance(order_id, uuid.UUID) else uuid.UUID(str(order_id))
    except ValueError:
        raise NotFoundError(order_id)


def _receipt_of(obj: OrderModel) -> Optional[OrderReceipt]:
    try:
        rec = obj.receipt
    except ObjectDoesNotExist:
        return None
    return OrderReceipt(receipt_url=rec.receipt_url, created_at=rec.created_at)


def to_domain(obj: OrderModel, with_items: bool = True) -> Order:
    """Map an ``OrderModel`` (and optionally its items) to a domain ``Order``."""
    items: List[OrderItem] = []
    if with_items:
        items = [
            OrderItem(product_id=it.product_id, quantity=it.quantity, price=it.price)
            for it in obj.items.all()
        ]
    return Order(
        id=str(obj.id),
        items=items,
        total_amount=obj.total_amount,
        total_items=obj.total_items,
        status=OrderStatus(obj.status),
        paid=obj.paid,
        paid_at=obj.paid_at,
        payment_reference=obj.payment_reference,
        receipt=_receipt_of(obj),
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


class OrderRepository(OrderStorePort):
    """Order store backed by the Django ORM."""

    def create(self, order: Order) -> Order:
        """Persist a new order with its items.

        Args:
            order: Domain ``Order`` with computed totals and priced items.

        Returns:
            The persisted order, with its generated UUID as ``id``.

        Raises:
            StoreError: If the transaction fails.
        """
        try:
            with transaction.atomic():
                obj = OrderModel.objects.create(
                    total_amount=order.total_amount,
                    total_items=order.total_items,
                    status=order.status.value,
                )
                OrderItemModel.objects.bulk_create(
                    [
                        OrderItemModel(order=obj, product_id=it.product_id, quantity=it.quantity, price=it.price)
                        for it in order.items
                    ]
                )
        except DatabaseError as exc:
            raise StoreError(f"Could not persist order: {exc}") from exc
        return self.get(obj.id)

    def get(self, order_id) -> Order:
        """Fetch one order with items and receipt.

        Raises:
            NotFoundError: If no order has this id (or it is not a UUID).
            StoreError: On database failure.
        """
        pk = _parse_id(order_id)
        try:
            obj = (
                OrderModel.objects.select_related("receipt")
                .prefetch_related("items")
                .get(id=pk)
            )
            return to_domain(obj)
        except OrderModel.DoesNotExist:
            raise NotFoundError(order_id)
        except DatabaseError as exc:
            raise StoreError(f"Could not read order {order_id}: {exc}") from exc

    def list_by_status(
        self, status: Optional[OrderStatus], page: int, page_size: int
    ) -> Tuple[List[Order], int]:
        """Return one page of order summaries (without items) and the total count."""
        qs = OrderModel.objects.select_related("receipt").order_by("-created_at")
        if status is not None:
            qs = qs.filter(status=OrderStatus(status).value)
        offset = (page - 1) * page_size
        try:
            total = qs.count()
            rows = list(qs[offset:offset + page_size])
        except DatabaseError as exc:
            raise StoreError(f"Could not list orders: {exc}") from exc
        return [to_domain(o, with_items=False) for o in rows], total

    def update_status(self, order_id, status: OrderStatus, expected: OrderStatus) -> Order:
        """Set ``status`` only if the stored status is still ``expected``.

        Raises:
            NotFoundError: If the order does not exist.
            InvalidTransitionError: If the status changed concurrently.
            StoreError: On database failure.
        """
        pk = _parse_id(order_id)
        try:
            with transaction.atomic():
                changed = OrderModel.objects.filter(id=pk, status=expected.value).update(
                    status=status.value, updated_at=timezone.now()
                )
                if not changed:
                    current = OrderModel.objects.filter(id=pk).values_list("status", flat=True).first()
                    if current is None:
                        raise NotFoundError(order_id)
                    raise InvalidTransitionError(
                        order_id, OrderStatus(current), status, reason="status changed concurrently"
                    )
        except DatabaseError as exc:
            raise StoreError(f"Could not update order {order_id}: {exc}") from exc
        return self.get(pk)

    def mark_paid(
        self, order_id, payment_reference: str, receipt_url: str, paid_at: datetime
    ) -> Tuple[Order, bool]:
        """Record a payment confirmation and its receipt atomically.

        Returns:
            tuple[Order, bool]: The stored order and whether this call wrote
            anything (False for a re-delivered confirmation).

        Raises:
            NotFoundError: If the order does not exist.
            InvalidTransitionError: If the order is paid with another
                reference or cannot move to PAID.
            StoreError: On database failure.
        """
        pk = _parse_id(order_id)
        try:
            with transaction.atomic():
                try:
                    obj = OrderModel.objects.select_for_update().get(id=pk)
                except OrderModel.DoesNotExist:
                    raise NotFoundError(order_id)

                if not check_payable(to_domain(obj, with_items=False), payment_reference):
                    return self.get(pk), False

                obj.status = OrderStatus.PAID.value
                obj.paid = True
                obj.paid_at = paid_at
                obj.payment_reference = payment_reference
                obj.save(update_fields=["status", "paid", "paid_at", "payment_reference", "updated_at"])
                OrderReceiptModel.objects.create(order=obj, receipt_url=receipt_url)
        except DatabaseError as exc:
            raise StoreError(f"Could not mark order {order_id} paid: {exc}") from exc
        return self.get(pk), True
