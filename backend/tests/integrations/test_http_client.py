import pytest
import requests

from app.integrations.platforms.errors import PlatformHttpError, PlatformNetworkError
from app.integrations.platforms.http_client import PlatformHttpClient, header_int
from tests.conftest import FakeResponse, ScriptedSession


def _client(responses, max_retries=2):
    waits = []
    client = PlatformHttpClient(session=ScriptedSession(responses), max_retries=max_retries,
                                retry_delay=1.0, sleep=waits.append)
    return client, waits


def test_read_retries_transient_status_then_succeeds():
    client, waits = _client([FakeResponse(503, text="busy"), FakeResponse(200, [{"id": 1}], {"X-WP-Total": "1"})])

    data, headers = client.get_json("https://shop.example.com/wp-json/wc/v3/products", op="test")

    assert data == [{"id": 1}]
    assert header_int(headers, "x-wp-total") == 1
    assert len(waits) == 1


def test_read_does_not_retry_client_errors():
    client, waits = _client([FakeResponse(401, {"code": "woocommerce_rest_cannot_view"})])

    with pytest.raises(PlatformHttpError) as exc:
        client.request("GET", "https://shop.example.com/wp-json/wc/v3/products")

    assert exc.value.status == 401
    assert exc.value.code == "woocommerce_rest_cannot_view"
    assert exc.value.retryable is False
    assert waits == []


def test_read_gives_up_after_max_retries():
    client, waits = _client([FakeResponse(500, text="x")] * 3)
    with pytest.raises(PlatformHttpError) as exc:
        client.request("GET", "https://shop.example.com/wp-json/")
    assert exc.value.retryable is True
    assert len(waits) == 2


def test_network_errors_are_wrapped():
    class Broken(ScriptedSession):
        def request(self, method, url, **kwargs):
            raise requests.ConnectionError("dns")

    client = PlatformHttpClient(session=Broken([]), max_retries=0, sleep=lambda s: None)
    with pytest.raises(PlatformNetworkError):
        client.request("GET", "https://shop.example.com/")


def test_header_int_defaults():
    assert header_int({"X-WP-TotalPages": "abc"}, "X-WP-TotalPages", 1) == 1
    assert header_int({}, "X-WP-Total") == 0
