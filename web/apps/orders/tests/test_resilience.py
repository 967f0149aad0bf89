import httpx
import pytest

from apps.orders.domain import CatalogError, PaymentGatewayError


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch, settings):
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)


def test_catalog_retries_on_5xx(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    calls = {"n": 0, "retry_headers": []}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        calls["retry_headers"].append(headers["X-Retry-Count"])
        if calls["n"] == 1:
            class R:
                status_code = 500
            return R()

        class R2:
            status_code = 200
            def json(self): return [{"id": 1, "name": "Keyboard", "price": 10}]
        return R2()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    from apps.orders.http_adapters import HttpCatalogClient
    products = HttpCatalogClient(base_url="http://x").validate_products([1])
    assert [p.id for p in products] == [1]
    assert calls["n"] == 2
    assert calls["retry_headers"] == ["0", "1"]


def test_catalog_gives_up_after_retries(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 2
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        class R:
            status_code = 503
        return R()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    from apps.orders.http_adapters import HttpCatalogClient
    with pytest.raises(CatalogError) as e:
        HttpCatalogClient(base_url="http://x").validate_products([1])
    assert e.value.code == "CATALOG_UNAVAILABLE"
    assert calls["n"] == 3


def test_payments_no_retry_on_4xx(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 3
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        class R:
            status_code = 402
            def json(self): return {}
        return R()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    from apps.orders.http_adapters import HttpPaymentsClient, _payments_cb
    with pytest.raises(PaymentGatewayError):
        HttpPaymentsClient(base_url="http://x").create_session("order-1", "usd", [])
    assert calls["n"] == 1
    assert _payments_cb.state.value == "CLOSED"


def test_payments_idempotency_key_stable_across_retries(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 2
    keys = []

    def fake_post(self, url, json=None, headers=None, **kwargs):
        keys.append(headers["Idempotency-Key"])
        if len(keys) < 3:
            raise httpx.ConnectError("boom")
        class R:
            status_code = 200
            def json(self): return {"url": "u", "successUrl": "s", "cancelUrl": "c"}
        return R()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    from apps.orders.http_adapters import HttpPaymentsClient
    session = HttpPaymentsClient(base_url="http://x").create_session("order-1", "usd", [])
    assert session.session_url == "u"
    assert len(keys) == 3 and len(set(keys)) == 1


def test_circuit_opens_after_threshold_and_short_circuits(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 0
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    from apps.orders.http_adapters import HttpCatalogClient, _catalog_cb
    client = HttpCatalogClient(base_url="http://x")
    for _ in range(_catalog_cb.fail_threshold):
        with pytest.raises(CatalogError):
            client.validate_products([1])
    assert _catalog_cb.state.value == "OPEN"

    with pytest.raises(CatalogError) as e:
        client.validate_products([1])
    assert "circuit is open" in str(e.value)
    assert calls["n"] == _catalog_cb.fail_threshold


def test_circuit_half_open_probe_closes_on_success():
    from apps.orders.http_adapters import CircuitBreaker, CircuitOpenError, CircuitState

    cb = CircuitBreaker("test", fail_threshold=1, reset_timeout=0.0)
    cb.on_failure()
    assert cb.state == CircuitState.HALF_OPEN

    assert cb.before_call() == CircuitState.HALF_OPEN
    with pytest.raises(CircuitOpenError):
        cb.before_call()
    cb.on_success()
    cb.on_finish()
    assert cb.state == CircuitState.CLOSED
