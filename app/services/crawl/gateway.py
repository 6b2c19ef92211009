from __future__ import annotations

import copy
import time
from typing import Any, Dict, Optional

from .base import ProductRecord, RawCategory


class CatalogGateway:
    """Persistence contract used by the ingestor.

    Upserts are keyed by natural key (category slug, product detail URL) and
    must be idempotent. Lookups return the stored source/target text fields
    that translation reuse compares against, or None.
    """

    async def get_category_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def upsert_category(self, category: RawCategory) -> Any:
        raise NotImplementedError

    async def get_product_by_detail_url(self, detail_url: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def upsert_product(self, product: ProductRecord, category_id: Any) -> Any:
        raise NotImplementedError


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class InMemoryCatalogGateway(CatalogGateway):
    """Process-local store for dry runs and tests."""

    def __init__(self) -> None:
        self.categories: Dict[str, Dict[str, Any]] = {}
        self.products: Dict[str, Dict[str, Any]] = {}

    async def get_category_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        row = self.categories.get(slug)
        return copy.deepcopy(row) if row else None

    async def upsert_category(self, category: RawCategory) -> Any:
        row = self.categories.get(category.slug)
        cid = row["id"] if row else len(self.categories) + 1
        self.categories[category.slug] = {**category.to_dict(), "id": cid, "updated_at": _now_iso()}
        return cid

    async def get_product_by_detail_url(self, detail_url: str) -> Optional[Dict[str, Any]]:
        row = self.products.get(detail_url)
        return copy.deepcopy(row) if row else None

    async def upsert_product(self, product: ProductRecord, category_id: Any) -> Any:
        row = self.products.get(product.detail_url)
        pid = row["id"] if row else len(self.products) + 1
        self.products[product.detail_url] = {
            **product.to_dict(),
            "id": pid,
            "category_id": category_id,
            "updated_at": _now_iso(),
        }
        return pid
