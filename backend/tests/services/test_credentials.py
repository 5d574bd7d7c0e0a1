import json
from types import SimpleNamespace

import pytest

from app.integrations.platforms.errors import CredentialsError, UnsupportedPlatformError
from app.services.credentials import (
    ShopifyCredentials,
    WooCommerceCredentials,
    normalize_shopify_domain,
    normalize_store_url,
    resolve_credentials,
    resolve_wordpress_credentials,
)


def _conn(blob=None, api_key=None, api_secret=None):
    return SimpleNamespace(credentials_encrypted=blob, api_key=api_key, api_secret=api_secret)


@pytest.mark.parametrize(
    "blob",
    [
        {"consumer_key": "ck_1", "consumer_secret": "cs_1"},
        {"api_key": "ck_1", "api_secret": "cs_1"},
        {"consumerKey": "ck_1", "consumerSecret": "cs_1"},
        json.dumps({"consumer_key": "ck_1", "consumer_secret": "cs_1"}),
    ],
)
def test_woocommerce_aliases(blob):
    creds = resolve_credentials("woocommerce", _conn(blob))
    assert creds == WooCommerceCredentials(consumer_key="ck_1", consumer_secret="cs_1")
    assert creds.uses_query_auth


def test_woocommerce_falls_back_to_legacy_columns():
    creds = resolve_credentials("WooCommerce", _conn(None, api_key="user", api_secret="pass"))
    assert creds == WooCommerceCredentials(consumer_key="user", consumer_secret="pass")
    assert not creds.uses_query_auth


def test_missing_secret_is_credentials_error():
    with pytest.raises(CredentialsError):
        resolve_credentials("woocommerce", _conn({"consumer_key": "ck_1"}))
    with pytest.raises(CredentialsError):
        resolve_credentials("woocommerce", None)


def test_shopify_token_and_unknown_platform():
    assert resolve_credentials("shopify", _conn({"access_token": "shpat"})) == ShopifyCredentials("shpat")
    with pytest.raises(UnsupportedPlatformError):
        resolve_credentials("magento", _conn({"api_key": "x"}))


def test_wordpress_credentials_optional():
    assert resolve_wordpress_credentials(_conn({"consumer_key": "ck"})) is None
    wp = resolve_wordpress_credentials(_conn({"username": "ed", "application_password": "p w"}))
    assert (wp.username, wp.app_password) == ("ed", "p w")


def test_store_url_requires_https_except_localhost():
    assert normalize_store_url("shop.example.com/") == "https://shop.example.com"
    assert normalize_store_url("http://localhost:8080") == "http://localhost:8080"
    with pytest.raises(CredentialsError):
        normalize_store_url("http://shop.example.com")
    with pytest.raises(CredentialsError):
        normalize_store_url("  ")


def test_shopify_domain():
    assert normalize_shopify_domain("https://my-shop.myshopify.com/admin") == "my-shop.myshopify.com"
    assert normalize_shopify_domain("my-shop") == "my-shop.myshopify.com"
