"""Graph persistence for the product catalog.

Functions are importable at package level; `GraphCatalogGateway` adapts them
to the async gateway contract used by the ingestor.
"""
from .catalog import (
    get_category_by_slug,
    upsert_category,
    get_product_by_detail_url,
    upsert_product,
    GraphCatalogGateway,
)

__all__ = [
    # categories
    'get_category_by_slug', 'upsert_category',
    # products
    'get_product_by_detail_url', 'upsert_product',
    # gateway
    'GraphCatalogGateway',
]
