from app.integrations.shopify.adapter import ShopifyAdapter
from app.integrations.shopify.payload_utils import build_shopify_input, snapshot_from_product
from app.services.credentials import ShopifyCredentials
from tests.conftest import FakeResponse, FakeSession


def _adapter(handler):
    session = FakeSession(handler)
    return ShopifyAdapter("my-shop", ShopifyCredentials("shpat_test"), session=session), session


def test_input_maps_dirty_fields_only():
    data = build_shopify_input("55", {"title": "Lamp", "seo_title": "Lamp | Shop", "sku": "L-1"},
                               ["title", "seo_title", "sku"])
    assert data == {"id": "gid://shopify/Product/55", "title": "Lamp", "seo": {"title": "Lamp | Shop"}}


def test_snapshot_uses_local_field_names():
    snap = snapshot_from_product({"id": "gid://shopify/Product/55", "title": "Lamp", "status": "ACTIVE",
                                  "updatedAt": "2026-06-01T00:00:00Z"})
    assert snap == {"id": "55", "title": "Lamp", "status": "publish", "date_modified": "2026-06-01T00:00:00Z"}


def test_update_posts_graphql_with_token():
    body = {"data": {"productUpdate": {"product": {"id": "gid://shopify/Product/55", "title": "Lamp"},
                                       "userErrors": []}}}
    adapter, session = _adapter(lambda m, u, kw: FakeResponse(200, body))

    result = adapter.update_product("55", {"title": "Lamp"}, ["title"])

    assert result.success
    assert result.updated_snapshot["title"] == "Lamp"
    [(method, url, kwargs)] = session.calls
    assert method == "POST"
    assert url.startswith("https://my-shop.myshopify.com/admin/api/")
    assert kwargs["headers"]["X-Shopify-Access-Token"] == "shpat_test"
    assert kwargs["json"]["variables"]["input"]["title"] == "Lamp"


def test_user_errors_are_permanent():
    body = {"data": {"productUpdate": {"product": None, "userErrors": [{"field": ["title"], "message": "blank"}]}}}
    adapter, _ = _adapter(lambda m, u, kw: FakeResponse(200, body))
    result = adapter.update_product("55", {"title": ""}, ["title"])
    assert (result.success, result.retryable, result.error) == (False, False, "blank")


def test_throttled_is_retryable():
    adapter, _ = _adapter(lambda m, u, kw: FakeResponse(429, text="Throttled"))
    result = adapter.update_product("55", {"title": "Lamp"}, ["title"])
    assert result.retryable is True


def test_graphql_throttled_body_is_retryable():
    # Shopify 限流：HTTP 200，errors[].extensions.code == THROTTLED
    body = {"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}
    adapter, _ = _adapter(lambda m, u, kw: FakeResponse(200, body))
    result = adapter.update_product("55", {"title": "Lamp"}, ["title"])
    assert (result.success, result.retryable, result.error) == (False, True, "Shopify API throttled")


def test_other_graphql_errors_are_permanent():
    body = {"errors": [{"message": "Field 'foo' doesn't exist on type 'Product'",
                        "extensions": {"code": "undefinedField"}}]}
    adapter, _ = _adapter(lambda m, u, kw: FakeResponse(200, body))
    result = adapter.update_product("55", {"title": "Lamp"}, ["title"])
    assert (result.success, result.retryable) == (False, False)
