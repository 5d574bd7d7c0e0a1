import json


# 连通性探测
SHOP_PING = """
{
  shop {
    name
    myshopifyDomain
  }
}
""".strip()


# 局部更新：只带 dirty 字段映射出来的 input
PRODUCT_UPDATE = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id title handle status descriptionHtml seo { title description } updatedAt }
    userErrors { field message }
  }
}
""".strip()


# 心跳：按 updated_at 游标翻页（首个变体带出 sku/价格/库存）
PRODUCTS_UPDATED_SINCE = """
query getModifiedProducts($query: String!, $first: Int!, $after: String) {
  products(query: $query, first: $first, after: $after, sortKey: UPDATED_AT) {
    edges {
      node {
        id
        title
        handle
        status
        descriptionHtml
        seo { title description }
        variants(first: 1) {
          edges {
            node {
              sku
              price
              compareAtPrice
              inventoryQuantity
            }
          }
        }
        updatedAt
      }
      cursor
    }
    pageInfo { hasNextPage }
  }
}
""".strip()


def updated_since_filter(since_iso: str) -> str:
    """Shopify 搜索语法：updated_at:>'2024-01-01T00:00:00Z'"""
    value = json.dumps(since_iso or "")[1:-1]
    return f"updated_at:>'{value}'"
