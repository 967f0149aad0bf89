import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False


@pytest.fixture(autouse=True)
def reset_shared_state():
    # throttle counters live in the cache; breakers are module-level
    from apps.orders.http_adapters import _catalog_cb, _payments_cb

    cache.clear()
    _catalog_cb.on_success()
    _payments_cb.on_success()
    yield
