"""HTTP views for the orders app.

This module contains the DRF API views of the orders service. Views are
kept intentionally small: they validate requests (via Pydantic), call the
``OrderOrchestrator`` and translate the result, or the domain error, into
an HTTP response.

The views obtain a configured orchestrator from
``providers.get_order_orchestrator()`` which wires HTTP adapter-backed
ports (``HttpCatalogClient``, ``HttpPaymentsClient``) or in-process stubs
(``CatalogStub``, ``PaymentsStub``) depending on runtime settings. This
allows tests and local development to swap implementations without
changing view logic.

Payment events: the payment-succeeded endpoint acknowledges with 202 once
the event is applied, recognised as a duplicate, or permanently rejected.
Transient store failures answer 503 so the at-least-once transport
redelivers the event.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import (
    CatalogError,
    InvalidTransitionError,
    NotFoundError,
    OrderError,
    PaymentGatewayError,
    PaymentOutcome,
    ValidationError,
)
from .schemas import (
    ChangeOrderStatusDTO,
    CreateOrderDTO,
    OrderDetailOut,
    OrderPageOut,
    OrderPaginationDTO,
    OrderSummaryOut,
    PageMetaOut,
    PaidOrderDTO,
    PaymentSessionOut,
    parse_payload,
)

logger = logging.getLogger("orders.api")


def _status_for(exc: OrderError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, CatalogError):
        if exc.reason == CatalogError.UNKNOWN_PRODUCT:
            return 422
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvalidTransitionError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, PaymentGatewayError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(exc: OrderError) -> dict:
    """Body shared by every error response: code, message and context."""
    return {"detail": exc.code, "message": str(exc), **exc.context()}


def error_response(exc: OrderError) -> Response:
    """Map a domain error to its HTTP response."""
    code = _status_for(exc)
    if code >= 500:
        logger.error("request failed", extra={"error_code": exc.code, "error": str(exc)})
    return Response(error_body(exc), status=code)


def _detail(order) -> dict:
    return OrderDetailOut.model_validate(order).model_dump(mode="json")


def _session(session) -> dict:
    return PaymentSessionOut(
        url=session.session_url,
        success_url=session.success_url,
        cancel_url=session.cancel_url,
    ).model_dump(mode="json")


class OrdersCollectionView(APIView):
    """List orders (GET) and create an order (POST)."""

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        """List order summaries.

        Query parameters: ``status`` (optional), ``page`` (default 1) and
        ``limit`` (default 10, max 100).

        Returns:
            Response: 200 with ``{"data": [...], "meta": {"total", "page",
            "lastPage"}}``; 400 for invalid query parameters.
        """
        try:
            dto = parse_payload(OrderPaginationDTO, request.query_params.dict())
            page = providers.get_order_orchestrator().find_all(dto.status, dto.page, dto.limit)
        except OrderError as e:
            return error_response(e)

        body = OrderPageOut(
            data=[OrderSummaryOut.model_validate(o) for o in page.orders],
            meta=PageMetaOut(total=page.total, page=page.page, last_page=page.last_page),
        )
        return Response(body.model_dump(mode="json", by_alias=True), status=status.HTTP_200_OK)

    def post(self, request):
        """Create a new order.

        Args:
            request (Request): DRF request with ``{"items": [{"product_id",
                "quantity"}, ...]}``.

        Returns:
            Response: One of the following responses.
            - 201 with ``{order, payment_session, payment_error}``. When the
              payment gateway failed after the order was persisted,
              ``payment_session`` is null and ``payment_error`` carries the
              error code and the order id to retry with.
            - 400 for payload validation errors.
            - 422 with ``{detail: "UNKNOWN_PRODUCT", product_ids}`` when the
              catalog rejects a product. Nothing is persisted.
            - 503 with ``{detail: "CATALOG_UNAVAILABLE"}`` when the catalog
              cannot be reached.
        """
        try:
            dto = parse_payload(CreateOrderDTO, request.data)
            result = providers.get_order_orchestrator().create_order(dto.to_lines())
        except OrderError as e:
            return error_response(e)

        body = {
            "order": _detail(result.order),
            "payment_session": _session(result.payment_session) if result.payment_session else None,
            "payment_error": error_body(result.payment_error) if result.payment_error else None,
        }
        return Response(body, status=status.HTTP_201_CREATED)


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            order = providers.get_order_orchestrator().find_one(str(oid))
        except OrderError as e:
            return error_response(e)
        return Response(_detail(order), status=status.HTTP_200_OK)


class OrderStatusView(APIView):
    """Change the status of an order (``changeOrderStatus``)."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_update"

    def patch(self, request, oid):
        """Move the order to ``{"status": ...}``.

        Returns:
            Response: 200 with the order (unchanged when the status is the
            current one); 400 for an unknown status; 404 for an unknown
            order; 409 with ``INVALID_TRANSITION`` for a move that is not
            permitted.
        """
        try:
            dto = parse_payload(ChangeOrderStatusDTO, request.data)
            order = providers.get_order_orchestrator().change_status(str(oid), dto.status)
        except OrderError as e:
            return error_response(e)
        return Response(_detail(order), status=status.HTTP_200_OK)


class OrderPaymentSessionView(APIView):
    """Open a new payment session for a pending order."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_update"

    def post(self, request, oid):
        try:
            session = providers.get_order_orchestrator().retry_payment_session(str(oid))
        except OrderError as e:
            return error_response(e)
        return Response({"payment_session": _session(session)}, status=status.HTTP_201_CREATED)


class PaymentSucceededView(APIView):
    """Inbound ``paidOrder`` event from the payment service."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payment_events"

    def post(self, request):
        """Apply a payment confirmation.

        Returns:
            Response: 202 with ``{"outcome"}`` for APPLIED, DUPLICATE and
            REJECTED; 503 for RETRY; 400 for a malformed event.
        """
        try:
            dto = parse_payload(PaidOrderDTO, request.data)
        except ValidationError as e:
            logger.warning("malformed payment event", extra={"error": str(e)})
            return Response(error_body(e), status=status.HTTP_400_BAD_REQUEST)

        outcome = providers.get_order_orchestrator().on_payment_confirmed(
            str(dto.order_id), dto.payment_id, str(dto.receipt_url)
        )
        code = status.HTTP_503_SERVICE_UNAVAILABLE if outcome == PaymentOutcome.RETRY else status.HTTP_202_ACCEPTED
        return Response({"outcome": outcome.value}, status=code)
