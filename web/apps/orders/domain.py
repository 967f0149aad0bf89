"""Domain models, ports and orchestrator for orders.

This module contains the dataclasses used as DTOs for orders, the error
taxonomy raised by the core, protocol definitions (ports) for the external
collaborators (product catalog, payment gateway and order store), and the
orchestrator that drives the order lifecycle on top of those ports.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

logger = logging.getLogger("orders")

# Storage precision of every money column.
CENT = Decimal("0.01")


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    Values travel as plain strings on the wire and in storage.
    """

    PENDING = "PENDING"
    PAID = "PAID"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Forward-only lifecycle. PAID is entered only through payment confirmation.
ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True when ``target`` is a permitted forward move from ``current``."""
    return target in ALLOWED_TRANSITIONS[current]


class PaymentOutcome(str, Enum):
    """Result of handling a payment confirmation event."""

    APPLIED = "APPLIED"
    DUPLICATE = "DUPLICATE"
    REJECTED = "REJECTED"
    RETRY = "RETRY"


# ---- Errors ----
class OrderError(Exception):
    """Base class for errors raised by the orders core.

    Attributes:
        code: Stable, upper-case error code suitable for API responses.
    """

    code = "ORDER_ERROR"

    def context(self) -> dict:
        """Return the attributes an operator needs to act on the error."""
        return {}


class ValidationError(OrderError):
    """Malformed input rejected before any remote call or write."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []

    def context(self) -> dict:
        return {"errors": self.errors} if self.errors else {}


class CatalogError(OrderError):
    """The catalog rejected some products or could not be reached.

    Attributes:
        product_ids: The offending product ids, empty when the failure is
            not tied to specific products (transport errors, timeouts).
        reason: ``UNKNOWN_PRODUCT`` or ``CATALOG_UNAVAILABLE``.
    """

    UNKNOWN_PRODUCT = "UNKNOWN_PRODUCT"
    UNAVAILABLE = "CATALOG_UNAVAILABLE"

    def __init__(self, message: str, product_ids: Iterable[int] = (), reason: str = UNAVAILABLE):
        super().__init__(message)
        self.product_ids = tuple(sorted(set(product_ids)))
        self.reason = reason

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.reason

    def context(self) -> dict:
        return {"product_ids": list(self.product_ids)} if self.product_ids else {}


class NotFoundError(OrderError):
    """No order exists with the given id."""

    code = "NOT_FOUND"

    def __init__(self, order_id):
        super().__init__(f"Order with id {order_id} not found")
        self.order_id = str(order_id)

    def context(self) -> dict:
        return {"order_id": self.order_id}


class InvalidTransitionError(OrderError):
    """A status change that is not a permitted forward move."""

    code = "INVALID_TRANSITION"

    def __init__(self, order_id, current: OrderStatus, target: OrderStatus, reason: str = ""):
        message = f"Order {order_id} cannot move from {current.value} to {target.value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.order_id = str(order_id)
        self.current = current
        self.target = target
        self.reason = reason

    def context(self) -> dict:
        return {
            "order_id": self.order_id,
            "current_status": self.current.value,
            "target_status": self.target.value,
        }


class PaymentGatewayError(OrderError):
    """Payment session creation failed for an already persisted order."""

    code = "PAYMENT_GATEWAY_ERROR"

    def __init__(self, message: str, order_id=None):
        super().__init__(message)
        self.order_id = str(order_id) if order_id is not None else None

    def context(self) -> dict:
        return {"order_id": self.order_id} if self.order_id else {}


class StoreError(OrderError):
    """Persistence failure in the order store."""

    code = "STORE_ERROR"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Product:
    """Authoritative product record returned by the catalog."""

    id: int
    name: str
    price: Decimal


@dataclass(frozen=True)
class OrderLine:
    """A requested line item: which product and how many units.

    The dataclass is frozen because requests are immutable once parsed.
    """

    product_id: int
    quantity: int


@dataclass
class OrderItem:
    """A persisted line item.

    Attributes:
        product_id: Catalog identifier of the product.
        quantity: Number of units ordered.
        price: Unit price snapshot taken at creation time.
        name: Product name joined from the catalog at read time. It is
            never persisted, so it is None on items fresh from the store.
    """

    product_id: int
    quantity: int
    price: Decimal
    name: Optional[str] = None


@dataclass
class OrderReceipt:
    receipt_url: str
    created_at: Optional[datetime] = None


@dataclass
class Order:
    """Container for order data.

    Attributes:
        id: Persistent identifier (UUID string), or None if not yet saved.
        items: Line items. Empty on summaries returned by listings.
        total_amount: Sum of price x quantity, fixed at creation.
        total_items: Sum of quantities, fixed at creation.
        status: Current OrderStatus.
        paid: True once a payment confirmation was applied.
        paid_at: When the payment confirmation was applied.
        payment_reference: External charge id from the payment provider.
        receipt: Receipt created together with the payment confirmation.
    """

    id: Optional[str]
    items: List[OrderItem] = field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    total_items: int = 0
    status: OrderStatus = OrderStatus.PENDING
    paid: bool = False
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    receipt: Optional[OrderReceipt] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentLine:
    """Line item as sent to the payment gateway."""

    name: str
    price: Decimal
    quantity: int


@dataclass(frozen=True)
class PaymentSession:
    """Payment session descriptor returned by the payment gateway."""

    session_url: str
    success_url: str
    cancel_url: str


@dataclass
class OrderCreation:
    """Result of ``create_order``.

    ``payment_error`` is set (and ``payment_session`` is None) when the
    order was persisted but the payment session could not be created.
    """

    order: Order
    payment_session: Optional[PaymentSession] = None
    payment_error: Optional[PaymentGatewayError] = None


@dataclass
class OrderPage:
    orders: List[Order]
    total: int
    page: int
    last_page: int


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the product catalog used by the domain."""

    def validate_products(self, product_ids: List[int]) -> List[Product]:
        """Resolve product ids into authoritative product records.

        Args:
            product_ids: Distinct, non-empty list of product ids.

        Returns:
            One Product per requested id.

        Raises:
            CatalogError: If any id is unknown or the catalog is unreachable.
        """
        raise NotImplementedError()


class PaymentsPort(Protocol):
    """Port describing the payment gateway used by the domain."""

    def create_session(self, order_id: str, currency: str, items: List[PaymentLine]) -> PaymentSession:
        """Request a checkout session for an order.

        Args:
            order_id: Identifier of the persisted order.
            currency: Currency code the session is priced in.
            items: Named line items to charge.

        Returns:
            PaymentSession with the checkout, success and cancel URLs.

        Raises:
            PaymentGatewayError: If the session could not be created.
        """
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Port describing durable order persistence.

    ``create`` and ``mark_paid`` must each be a single atomic write.
    """

    def create(self, order: Order) -> Order:
        raise NotImplementedError()

    def get(self, order_id: str) -> Order:
        raise NotImplementedError()

    def list_by_status(
        self, status: Optional[OrderStatus], page: int, page_size: int
    ) -> Tuple[List[Order], int]:
        raise NotImplementedError()

    def update_status(self, order_id: str, status: OrderStatus, expected: OrderStatus) -> Order:
        raise NotImplementedError()

    def mark_paid(
        self, order_id: str, payment_reference: str, receipt_url: str, paid_at: datetime
    ) -> Tuple[Order, bool]:
        raise NotImplementedError()


def check_payable(order: Order, payment_reference: str) -> bool:
    """Decide whether a payment confirmation should be written.

    Stores call this while holding the order row so the decision and the
    write are atomic.

    Returns:
        True when the confirmation must be applied, False when it is a
        re-delivery of the payment already recorded.

    Raises:
        InvalidTransitionError: When the order is paid with another
            reference or its status cannot move to PAID.
    """
    if order.paid:
        if order.payment_reference == payment_reference:
            return False
        raise InvalidTransitionError(
            order.id, order.status, OrderStatus.PAID,
            reason=f"already paid with reference {order.payment_reference}",
        )
    if not can_transition(order.status, OrderStatus.PAID):
        raise InvalidTransitionError(order.id, order.status, OrderStatus.PAID)
    return True


# ---- Orchestrator ----
class OrderOrchestrator:
    """Coordinates catalog, payment gateway and store for the order lifecycle.

    The orchestrator is stateless beyond the injected ports, so a single
    instance can serve concurrent requests. Remote errors are propagated
    as domain errors and never replaced by defaults.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        payments: PaymentsPort,
        store: OrderStorePort,
        currency: str = "usd",
    ):
        """Initialize the orchestrator with its collaborators.

        Args:
            catalog: CatalogPort used to validate products and resolve names.
            payments: PaymentsPort used to create payment sessions.
            store: OrderStorePort holding all order state.
            currency: Currency code sent with payment session requests.
        """
        self.catalog = catalog
        self.payments = payments
        self.store = store
        self.currency = currency

    def _resolve_products(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        wanted = sorted(set(product_ids))
        products = {p.id: p for p in self.catalog.validate_products(wanted)}
        missing = [pid for pid in wanted if pid not in products]
        if missing:
            raise CatalogError(
                f"Products not found: {', '.join(map(str, missing))}",
                product_ids=missing,
                reason=CatalogError.UNKNOWN_PRODUCT,
            )
        return products

    def create_order(self, lines: List[OrderLine]) -> OrderCreation:
        """Validate, persist and open a payment session for a new order.

        Nothing is written when validation or the catalog call fails. A
        payment gateway failure happens after the order is persisted and
        does not roll it back: the result carries the persisted order and
        the error so the caller can retry the session later.

        Catalog prices are rounded half-up to cents before the totals are
        computed.

        Args:
            lines: Requested line items, at least one.

        Returns:
            OrderCreation with the persisted order (item names resolved)
            and either the payment session or the payment error.

        Raises:
            ValidationError: If the list is empty or a quantity is not positive.
            CatalogError: If a product is unknown or the catalog fails.
            StoreError: If the order could not be persisted.
        """
        if not lines:
            raise ValidationError("EMPTY_ORDER")
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError(
                    f"Quantity for product {line.product_id} must be positive",
                    errors=[{"product_id": line.product_id, "quantity": line.quantity}],
                )

        products = self._resolve_products(line.product_id for line in lines)

        items = [
            OrderItem(
                product_id=line.product_id,
                quantity=line.quantity,
                price=products[line.product_id].price.quantize(CENT, rounding=ROUND_HALF_UP),
            )
            for line in lines
        ]
        draft = Order(
            id=None,
            items=items,
            total_amount=sum((it.price * it.quantity for it in items), Decimal("0")),
            total_items=sum(it.quantity for it in items),
        )
        order = self.store.create(draft)
        self._attach_names(order, products)
        logger.info(
            "order created",
            extra={"order_id": order.id, "total_amount": str(order.total_amount), "total_items": order.total_items},
        )

        try:
            session = self._request_session(order)
        except PaymentGatewayError as exc:
            logger.warning(
                "payment session failed for persisted order",
                extra={"order_id": order.id, "error": str(exc)},
            )
            return OrderCreation(order=order, payment_error=exc)
        return OrderCreation(order=order, payment_session=session)

    def retry_payment_session(self, order_id: str) -> PaymentSession:
        """Request a new payment session for an existing unpaid order.

        Raises:
            NotFoundError: If the order does not exist.
            InvalidTransitionError: If the order is paid or no longer PENDING.
            CatalogError: If item names cannot be resolved.
            PaymentGatewayError: If the gateway fails again.
        """
        order = self.find_one(order_id)
        if order.paid or order.status != OrderStatus.PENDING:
            raise InvalidTransitionError(
                order.id, order.status, OrderStatus.PAID, reason="order is not awaiting payment"
            )
        return self._request_session(order)

    def _request_session(self, order: Order) -> PaymentSession:
        lines = [PaymentLine(name=it.name, price=it.price, quantity=it.quantity) for it in order.items]
        try:
            return self.payments.create_session(order.id, self.currency, lines)
        except PaymentGatewayError as exc:
            if exc.order_id is None:
                exc.order_id = order.id
            raise

    def find_all(self, status: Optional[OrderStatus] = None, page: int = 1, page_size: int = 10) -> OrderPage:
        """List order summaries, optionally filtered by status.

        A page beyond the last one yields an empty list with the real total.
        """
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive")
        orders, total = self.store.list_by_status(status, page, page_size)
        return OrderPage(
            orders=orders,
            total=total,
            page=page,
            last_page=math.ceil(total / page_size),
        )

    def find_one(self, order_id: str) -> Order:
        """Fetch an order with item names joined from the catalog.

        Raises:
            NotFoundError: If the order does not exist.
            CatalogError: If the catalog cannot resolve the item products.
        """
        order = self.store.get(order_id)
        if order.items:
            self._attach_names(order, self._resolve_products(it.product_id for it in order.items))
        return order

    def change_status(self, order_id: str, status) -> Order:
        """Move an order forward in its lifecycle.

        Requesting the current status returns the order without writing.

        Raises:
            ValidationError: If ``status`` is not a known status value.
            NotFoundError: If the order does not exist.
            InvalidTransitionError: If the move is not permitted, including
                any request to set PAID directly.
        """
        try:
            target = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status {status!r}")

        order = self.find_one(order_id)
        if order.status == target:
            return order

        if target == OrderStatus.PAID:
            raise InvalidTransitionError(
                order.id, order.status, target, reason="orders are marked paid by payment confirmation only"
            )
        if not can_transition(order.status, target):
            raise InvalidTransitionError(order.id, order.status, target)

        updated = self.store.update_status(order.id, target, expected=order.status)
        names = {it.product_id: it.name for it in order.items}
        for it in updated.items:
            it.name = names.get(it.product_id)
        logger.info(
            "order status changed",
            extra={"order_id": order.id, "from_status": order.status.value, "to_status": target.value},
        )
        return updated

    def on_payment_confirmed(self, order_id: str, payment_reference: str, receipt_url: str) -> PaymentOutcome:
        """Apply a payment confirmation event.

        The event has no caller awaiting a reply, so nothing is raised:
        failures are logged and reported through the returned outcome.
        Re-delivery of an already applied confirmation is a no-op.

        Returns:
            PaymentOutcome: APPLIED, DUPLICATE, REJECTED (permanent, not worth
            redelivering) or RETRY (transient store failure).
        """
        log_extra = {"order_id": str(order_id), "payment_reference": payment_reference}
        try:
            _, applied = self.store.mark_paid(
                order_id, payment_reference, receipt_url, paid_at=datetime.now(timezone.utc)
            )
        except StoreError:
            logger.exception("payment confirmation could not be stored", extra=log_extra)
            return PaymentOutcome.RETRY
        except (NotFoundError, InvalidTransitionError) as exc:
            logger.error(
                "payment confirmation rejected",
                extra={**log_extra, "error_code": exc.code, "error": str(exc)},
            )
            return PaymentOutcome.REJECTED
        except Exception:
            logger.exception("unexpected error applying payment confirmation", extra=log_extra)
            return PaymentOutcome.RETRY

        if not applied:
            logger.info("duplicate payment confirmation ignored", extra=log_extra)
            return PaymentOutcome.DUPLICATE
        logger.info("order paid", extra=log_extra)
        return PaymentOutcome.APPLIED

    @staticmethod
    def _attach_names(order: Order, products: Dict[int, Product]) -> None:
        for it in order.items:
            it.name = products[it.product_id].name
