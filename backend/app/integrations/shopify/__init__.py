"""
Shopify Admin GraphQL：读客户端（心跳）与写适配器（productUpdate）。
"""

from .shopify_client import ShopifyClient
from .payload_utils import build_shopify_input, map_heartbeat_product, to_product_gid


__all__ = ["ShopifyClient", "build_shopify_input", "map_heartbeat_product", "to_product_gid"]
