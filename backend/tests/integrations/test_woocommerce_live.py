"""Read-only checks against a real WooCommerce store (skipped unless STORE_TEST_* is set)."""

import os
from datetime import timedelta

import pytest

from app.integrations.woocommerce.client import WooCommerceClient
from app.services.credentials import WooCommerceCredentials
from app.utils.clock import now_utc


def _has_store_credentials() -> bool:
    return all(os.getenv(k) for k in ("STORE_TEST_URL", "STORE_TEST_CONSUMER_KEY", "STORE_TEST_CONSUMER_SECRET"))


pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not _has_store_credentials(), reason="STORE_TEST_URL / consumer key / secret not configured."),
]


@pytest.fixture
def woo():
    client = WooCommerceClient(
        os.environ["STORE_TEST_URL"],
        WooCommerceCredentials(os.environ["STORE_TEST_CONSUMER_KEY"], os.environ["STORE_TEST_CONSUMER_SECRET"]),
    )
    try:
        yield client
    finally:
        client.close()


def test_count_and_first_page(woo):
    total = woo.count_products()
    assert total >= 0
    page = woo.list_products_page(1, per_page=5)
    assert len(page) == min(total, 5)


def test_modified_since_is_bounded(woo):
    products = woo.list_modified_since(now_utc() - timedelta(days=7), max_products=10)
    assert len(products) <= 10


def test_detect_seo_plugin(woo):
    assert woo.detect_seo_plugin() in ("yoast", "rankmath", "none")
