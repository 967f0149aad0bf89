"""Service provider helpers for wiring the OrderOrchestrator with ports.

``get_order_orchestrator`` returns a configured ``OrderOrchestrator``. When
``settings.USE_HTTP_ADAPTERS`` is truthy the catalog and payment gateway
are reached over HTTP; otherwise fast in-process stubs are used, which is
what tests and local development rely on. Orders are always stored through
the Django ORM repository.
"""

from django.conf import settings

from .adapters import CatalogStub, PaymentsStub
from .domain import OrderOrchestrator
from .http_adapters import HttpCatalogClient, HttpPaymentsClient
from .repository import OrderRepository


def get_order_orchestrator() -> OrderOrchestrator:
    """Return an OrderOrchestrator wired for the current settings.

    A new instance is built per call; the orchestrator holds no state of
    its own, so nothing is shared between requests except the per-service
    circuit breakers inside the HTTP adapters.

    Returns:
        OrderOrchestrator: Orchestrator with catalog, payments and store ports.
    """
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        catalog, payments = HttpCatalogClient(), HttpPaymentsClient()
    else:
        catalog, payments = CatalogStub(), PaymentsStub()

    return OrderOrchestrator(
        catalog=catalog,
        payments=payments,
        store=OrderRepository(),
        currency=getattr(settings, "PAYMENTS_CURRENCY", "usd"),
    )
