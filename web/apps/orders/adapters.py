"""In-process adapters for the orders domain ports.

These adapters implement ``CatalogPort``, ``PaymentsPort`` and
``OrderStorePort`` without any network or database access. They are
intended for unit tests and local development where deterministic behavior
is useful and external services are not required.
"""

import copy
import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .domain import (
    CatalogError,
    CatalogPort,
    NotFoundError,
    InvalidTransitionError,
    Order,
    OrderReceipt,
    OrderStatus,
    OrderStorePort,
    PaymentLine,
    PaymentSession,
    PaymentsPort,
    Product,
    check_payable,
)


DEFAULT_PRODUCTS = (
    Product(1, "Mechanical keyboard", Decimal("10.00")),
    Product(2, "USB-C cable", Decimal("5.00")),
    Product(3, "Wireless mouse", Decimal("24.50")),
    Product(4, "27in monitor", Decimal("199.99")),
)


class CatalogStub(CatalogPort):
    """Stub implementation of ``CatalogPort`` backed by a fixed product list.

    Unknown ids raise ``CatalogError`` the same way the remote catalog
    rejects them.
    """

    def __init__(self, products=DEFAULT_PRODUCTS):
        self.products: Dict[int, Product] = {p.id: p for p in products}
        self.calls: List[List[int]] = []

    def validate_products(self, product_ids: List[int]) -> List[Product]:
        """Return the catalog records for ``product_ids``.

        Raises:
            CatalogError: Listing every id that is not in the catalog.
        """
        self.calls.append(list(product_ids))
        missing = [pid for pid in product_ids if pid not in self.products]
        if missing:
            raise CatalogError(
                "Some products were not found",
                product_ids=missing,
                reason=CatalogError.UNKNOWN_PRODUCT,
            )
        return [self.products[pid] for pid in product_ids]


class PaymentsStub(PaymentsPort):
    """Stub implementation of ``PaymentsPort``.

    Always opens a session whose URLs embed the order id, and records the
    requests it received.
    """

    base_url = "https://payments.local"

    def __init__(self):
        self.requests: List[Tuple[str, str, List[PaymentLine]]] = []

    def create_session(self, order_id: str, currency: str, items: List[PaymentLine]) -> PaymentSession:
        self.requests.append((order_id, currency, list(items)))
        return PaymentSession(
            session_url=f"{self.base_url}/checkout/{order_id}",
            success_url=f"{self.base_url}/success",
            cancel_url=f"{self.base_url}/cancel",
        )


class InMemoryOrderStore(OrderStorePort):
    """Thread-safe in-memory implementation of ``OrderStorePort``.

    A single lock makes every method atomic, which is enough to honour the
    store contract (atomic create and mark_paid, conditional status update).
    Copies are returned so callers cannot mutate stored state.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self.writes = 0

    def create(self, order: Order) -> Order:
        now = datetime.now(timezone.utc)
        stored = copy.deepcopy(order)
        stored.id = str(uuid.uuid4())
        stored.created_at = stored.updated_at = now
        for it in stored.items:
            it.name = None
        with self._lock:
            self._orders[stored.id] = stored
            self.writes += 1
            return copy.deepcopy(stored)

    def get(self, order_id: str) -> Order:
        with self._lock:
            return copy.deepcopy(self._get_locked(order_id))

    def list_by_status(self, status: Optional[OrderStatus], page: int, page_size: int):
        with self._lock:
            rows = [o for o in self._orders.values() if status is None or o.status == status]
        rows.sort(key=lambda o: o.created_at, reverse=True)
        offset = (page - 1) * page_size
        summaries = []
        for o in rows[offset:offset + page_size]:
            summary = copy.deepcopy(o)
            summary.items = []
            summaries.append(summary)
        return summaries, len(rows)

    def update_status(self, order_id: str, status: OrderStatus, expected: OrderStatus) -> Order:
        with self._lock:
            stored = self._get_locked(order_id)
            if stored.status != expected:
                raise InvalidTransitionError(
                    order_id, stored.status, status, reason="status changed concurrently"
                )
            stored.status = status
            stored.updated_at = datetime.now(timezone.utc)
            self.writes += 1
            return copy.deepcopy(stored)

    def mark_paid(self, order_id: str, payment_reference: str, receipt_url: str, paid_at: datetime):
        with self._lock:
            stored = self._get_locked(order_id)
            if not check_payable(stored, payment_reference):
                return copy.deepcopy(stored), False
            stored.status = OrderStatus.PAID
            stored.paid = True
            stored.paid_at = paid_at
            stored.payment_reference = payment_reference
            stored.receipt = OrderReceipt(receipt_url=receipt_url, created_at=paid_at)
            stored.updated_at = paid_at
            self.writes += 1
            return copy.deepcopy(stored), True

    def _get_locked(self, order_id: str) -> Order:
        try:
            return self._orders[str(order_id)]
        except KeyError:
            raise NotFoundError(order_id)
