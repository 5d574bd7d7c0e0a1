#!/usr/bin/env python3
from __future__ import annotations
import argparse, json, sys

from app.db.session import session_scope
from app.integrations.platforms.errors import PlatformError
from app.integrations.shopify.shopify_client import ShopifyClient
from app.integrations.woocommerce.client import WooCommerceClient
from app.repository.store_repo import get_store_with_connection
from app.services.credentials import resolve_credentials


'''
运维小脚本：用店铺里存的连接信息打一次平台，确认域名 / 凭据 / 网络都 OK
    - WooCommerce：读商品总数 + 探测 SEO 插件
    - Shopify：shop ping
    - 用法：python scripts/ping_store.py --store <store_id>
'''
def main():
    ap = argparse.ArgumentParser(description="Check a store's platform connection.")
    ap.add_argument("--store", required=True, help="stores.id")
    args = ap.parse_args()

    with session_scope() as db:
        store, conn = get_store_with_connection(db, args.store)
    if store is None or conn is None:
        print("ERROR: store or connection not found", file=sys.stderr)
        sys.exit(2)

    try:
        creds = resolve_credentials(store.platform, conn)
        if store.platform == "shopify":
            client = ShopifyClient(conn.shop_url, creds)
            result = client.ping()
        else:
            client = WooCommerceClient(conn.shop_url, creds)
            result = {"products": client.count_products(), "seo_plugin": client.detect_seo_plugin()}
        client.close()
    except PlatformError as e:
        print(f"ERROR: {e.__class__.__name__}: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result, ensure_ascii=False, indent=2))

if __name__ == "__main__":
    main()
