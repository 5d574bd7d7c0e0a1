"""
WordPress（博客文章）：导入读取 + push-to-store 写回。
"""

from .client import WordPressClient, build_post_update
from .normalizers import transform_wp_post


__all__ = ["WordPressClient", "build_post_update", "transform_wp_post"]
