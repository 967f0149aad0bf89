"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements the catalog and payment gateway ports using
``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
    by the gateway middleware.
- Circuit breaker per downstream service (catalog, payments) to avoid
    hammering unhealthy dependencies, with HALF_OPEN probing after a timeout.
- Retry policy with exponential backoff for transport errors and 5xx.
- A mandatory timeout on every call, so a hung dependency surfaces as the
    corresponding domain error instead of blocking the worker thread.
- Payments idempotency: each session request carries an ``Idempotency-Key``
    that stays the same across its retries.
"""

import logging
import threading
import time
import uuid
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import (
    CatalogError,
    CatalogPort,
    PaymentGatewayError,
    PaymentLine,
    PaymentSession,
    PaymentsPort,
    Product,
)

logger = logging.getLogger("orders.http")


# ---------------- Circuit Breaker ---------------- #

class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a dependency whose circuit is open."""


class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when consecutive failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; only one probe may be in
      flight; a failed probe reopens the circuit.

    All state changes happen under an internal lock, so one breaker can be
    shared by every worker thread.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current state, applying the OPEN → HALF_OPEN timeout."""
        with self._lock:
            if self._state == CircuitState.OPEN and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = False
            return self._state

    def before_call(self) -> CircuitState:
        """Admit a call or refuse it.

        Raises:
            CircuitOpenError: If the circuit is OPEN or a HALF_OPEN probe is
                already running.
        """
        with self._lock:
            st = self.state
            if st == CircuitState.OPEN:
                raise CircuitOpenError(f"{self.name} circuit is open")
            if st == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(f"{self.name} circuit is probing")
                self._probe_in_flight = True
            return st

    def on_success(self):
        """Record a successful call and close the breaker."""
        with self._lock:
            self._failures = 0
            self._state = CircuitState.CLOSED
            self._probe_in_flight = False

    def on_failure(self):
        """Record a failed call; open the breaker at the threshold or on a failed probe."""
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._failures >= self.fail_threshold and self._state != CircuitState.OPEN
            ):
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                self._probe_in_flight = False

    def on_finish(self):
        """Release the HALF_OPEN probe slot after a call finishes."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False


# Per-service instances
_catalog_cb = CircuitBreaker(
    "catalog",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)
_payments_cb = CircuitBreaker(
    "payments",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build outgoing headers: ``X-Request-ID`` from the context plus ``extra``."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return (retries after the first attempt, backoff base seconds, max sleep)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 2),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def _post_json(breaker: CircuitBreaker, url: str, payload: Any, timeout: float, extra_headers=None):
    """POST ``payload`` with circuit breaker, timeout and retries.

    Responses below 500 are returned to the caller, which maps them to
    business outcomes; they never count as circuit failures.

    Returns:
        httpx.Response: The first non-retriable response.

    Raises:
        CircuitOpenError: If the breaker refuses the call.
        httpx.RequestError: Transport error (timeouts included) after retries.
        httpx.HTTPStatusError: 5xx response after retries.
    """
    max_retries, backoff, cap = _retry_policy()
    state = breaker.before_call()
    headers = _request_headers({**(extra_headers or {}), "X-Circuit-State": state.value, "X-Retry-Count": "0"})
    tries = 0

    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = client.post(url, json=payload, headers=headers)
                    if not _should_retry(resp, None):
                        breaker.on_success()
                        return resp
                except httpx.RequestError as e:
                    exc = e

                if tries >= max_retries:
                    breaker.on_failure()
                    if exc is not None:
                        raise exc
                    raise httpx.HTTPStatusError(
                        f"{breaker.name} answered {resp.status_code}",
                        request=getattr(resp, "request", None),
                        response=resp,
                    )

                tries += 1
                headers["X-Retry-Count"] = str(tries)
                logger.warning(
                    "retrying downstream call",
                    extra={
                        "downstream": breaker.name,
                        "attempt": tries,
                        "status_code": getattr(resp, "status_code", None),
                        "error": repr(exc) if exc else None,
                    },
                )
                time.sleep(min(backoff * (2 ** (tries - 1)), cap))
    finally:
        breaker.on_finish()


def _json_or_none(resp) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


# ---------------- Catalog Adapter ---------------- #

class HttpCatalogClient(CatalogPort):
    """HTTP client for the product catalog with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.CATALOG_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def validate_products(self, product_ids: List[int]) -> List[Product]:
        """Resolve product ids through ``POST /products/validate``.

        Business mappings:
        - 200 → list of products; every requested id must be present.
        - 400/404/422 → unknown products (``missing`` ids taken from the
          body when provided); not counted as circuit failures.

        Args:
            product_ids: Product ids to validate.

        Returns:
            list[Product]: One record per distinct requested id.

        Raises:
            CatalogError: ``UNKNOWN_PRODUCT`` for rejected ids,
                ``CATALOG_UNAVAILABLE`` for transport errors, timeouts, 5xx
                after retries, an open circuit or a malformed body.
        """
        wanted = sorted(set(product_ids))
        try:
            resp = _post_json(_catalog_cb, f"{self.base_url}/products/validate", wanted, self.timeout)
        except (httpx.HTTPError, CircuitOpenError) as exc:
            logger.error("catalog unavailable", extra={"product_ids": wanted, "error": repr(exc)})
            raise CatalogError(f"Catalog unavailable: {exc}", product_ids=wanted) from exc

        body = _json_or_none(resp)
        if resp.status_code in (400, 404, 422):
            missing = body.get("missing") if isinstance(body, dict) else None
            message = body.get("message") if isinstance(body, dict) else None
            raise CatalogError(
                message or "Some products were not found",
                product_ids=missing or wanted,
                reason=CatalogError.UNKNOWN_PRODUCT,
            )
        if resp.status_code != 200 or not isinstance(body, list):
            raise CatalogError(
                f"Unexpected catalog response ({resp.status_code})", product_ids=wanted
            )

        products = {}
        try:
            for raw in body:
                p = Product(id=int(raw["id"]), name=str(raw["name"]), price=Decimal(str(raw["price"])))
                products[p.id] = p
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise CatalogError("Malformed catalog response", product_ids=wanted) from exc

        missing = [pid for pid in wanted if pid not in products]
        if missing:
            raise CatalogError(
                "Some products were not found",
                product_ids=missing,
                reason=CatalogError.UNKNOWN_PRODUCT,
            )
        return [products[pid] for pid in wanted]


# ---------------- Payments Adapter ---------------- #

class HttpPaymentsClient(PaymentsPort):
    """HTTP client for the payment gateway with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.PAYMENTS_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def create_session(self, order_id: str, currency: str, items: List[PaymentLine]) -> PaymentSession:
        """Open a checkout session through ``POST /payment-sessions``.

        Business mappings:
        - 200/201 → PaymentSession from ``url``, ``successUrl``, ``cancelUrl``.
        - other 4xx → rejected request, not counted as circuit failure.

        Raises:
            PaymentGatewayError: On rejection, transport errors, timeouts,
                5xx after retries, an open circuit or a malformed body.
        """
        payload = {
            "orderId": str(order_id),
            "currency": currency,
            "items": [
                {"name": it.name, "price": float(it.price), "quantity": it.quantity}
                for it in items
            ],
        }
        idem_key = f"{order_id}:{uuid.uuid4().hex}"
        try:
            resp = _post_json(
                _payments_cb,
                f"{self.base_url}/payment-sessions",
                payload,
                self.timeout,
                extra_headers={"Idempotency-Key": idem_key},
            )
        except (httpx.HTTPError, CircuitOpenError) as exc:
            logger.error("payment gateway unavailable", extra={"order_id": str(order_id), "error": repr(exc)})
            raise PaymentGatewayError(f"Payment gateway unavailable: {exc}", order_id=order_id) from exc

        body = _json_or_none(resp)
        if resp.status_code not in (200, 201):
            detail = body.get("message") if isinstance(body, dict) else None
            raise PaymentGatewayError(
                detail or f"Payment session rejected ({resp.status_code})", order_id=order_id
            )
        try:
            return PaymentSession(
                session_url=body["url"],
                success_url=body["successUrl"],
                cancel_url=body["cancelUrl"],
            )
        except (KeyError, TypeError) as exc:
            raise PaymentGatewayError("Malformed payment session response", order_id=order_id) from exc
