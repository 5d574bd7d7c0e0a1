import pytest
import requests

from app.integrations.platforms.errors import UnsupportedPlatformError
from app.integrations.platforms.registry import get_adapter, registered_platforms
from app.integrations.woocommerce.adapter import WooCommerceAdapter
from app.integrations.woocommerce.payload import build_woo_payload
from app.services.credentials import WooCommerceCredentials
from tests.conftest import FakeResponse, FakeSession

CREDS = WooCommerceCredentials(consumer_key="ck_test", consumer_secret="cs_test")


def _adapter(handler):
    session = FakeSession(handler)
    return WooCommerceAdapter("https://shop.example.com", CREDS, session=session), session


# ---------- payload ----------
def test_payload_only_contains_present_dirty_fields():
    payload = {"title": "Desk", "regular_price": 12.5, "sku": "D-1", "internal_note": "x"}
    body = build_woo_payload(payload, ["title", "regular_price", "internal_note", "missing"])
    assert body == {"name": "Desk", "regular_price": "12.5"}


def test_payload_writes_seo_for_both_plugins():
    body = build_woo_payload({"seo": {"title": "T", "description": "D"}}, ["seo"])
    meta = {m["key"]: m["value"] for m in body["meta_data"]}
    assert meta == {
        "_yoast_wpseo_title": "T", "rank_math_title": "T",
        "_yoast_wpseo_metadesc": "D", "rank_math_description": "D",
    }


def test_payload_maps_status_categories_and_images():
    payload = {
        "status": "published",
        "categories": [{"id": 3, "name": "Chairs"}, "4", "bad"],
        "images": [{"id": 9}, {"src": "https://cdn.example.com/a.jpg", "alt": "A"}, {}],
    }
    body = build_woo_payload(payload, ["status", "categories", "images"])
    assert body["status"] == "publish"
    assert body["categories"] == [{"id": 3}, {"id": 4}]
    assert body["images"] == [{"id": 9}, {"src": "https://cdn.example.com/a.jpg", "alt": "A"}]


# ---------- adapter ----------
def test_empty_mapping_is_noop_without_request():
    adapter, session = _adapter(lambda m, u, kw: FakeResponse(200, {}))
    result = adapter.update_product("101", {"internal_note": "x"}, ["internal_note"])
    assert result.success and result.skipped_call
    assert session.calls == []


def test_success_returns_snapshot():
    adapter, session = _adapter(lambda m, u, kw: FakeResponse(200, {"id": 101, "name": "Desk"}))
    result = adapter.update_product("101", {"title": "Desk"}, ["title"])
    assert result.success
    assert result.updated_snapshot == {"id": 101, "name": "Desk"}
    [(_, _, kwargs)] = session.calls
    assert kwargs["params"] == {"consumer_key": "ck_test", "consumer_secret": "cs_test"}


@pytest.mark.parametrize(
    "status, body, retryable",
    [
        (429, {"code": "too_many_requests"}, True),
        (500, {"code": "internal_server_error"}, True),
        (503, None, True),
        (400, {"code": "rest_invalid_param"}, False),
        (404, {"code": "woocommerce_rest_product_invalid_id"}, False),
        (400, {"code": "product_invalid_sku"}, False),
        (500, {"code": "product_invalid_sku"}, False),
    ],
)
def test_http_errors_are_classified(status, body, retryable):
    adapter, _ = _adapter(lambda m, u, kw: FakeResponse(status, body, text=None if body else "down"))
    result = adapter.update_product("101", {"title": "Desk"}, ["title"])
    assert result.success is False
    assert result.retryable is retryable
    assert str(status) in result.error


def test_network_error_is_retryable():
    def boom(method, url, kwargs):
        raise requests.ConnectionError("connection reset")

    adapter, _ = _adapter(boom)
    result = adapter.update_product("101", {"title": "Desk"}, ["title"])
    assert result.success is False
    assert result.retryable is True


def test_registry_resolves_platform_case_insensitively():
    adapter = get_adapter("WooCommerce", "https://shop.example.com", CREDS, session=FakeSession(lambda *a: None))
    assert isinstance(adapter, WooCommerceAdapter)
    assert registered_platforms() == ["shopify", "woocommerce"]
    with pytest.raises(UnsupportedPlatformError):
        get_adapter("magento", "https://shop.example.com", CREDS)
