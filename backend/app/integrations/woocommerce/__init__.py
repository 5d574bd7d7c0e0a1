"""
对外统一入口：WooCommerce 读客户端、写适配器、字段映射。
"""

from .client import WooCommerceClient
from .payload import build_woo_payload
from .normalizers import (
    transform_woo_product,
    transform_woo_category,
    normalize_variation,
    map_heartbeat_product,
    is_variable_product,
)


__all__ = [
    "WooCommerceClient",
    "build_woo_payload",
    "transform_woo_product", "transform_woo_category", "normalize_variation",
    "map_heartbeat_product", "is_variable_product",
]
