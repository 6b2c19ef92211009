from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def sha256_hexdigest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class RawCategory:
    name_source: str
    slug: str
    url: str
    image_url: Optional[str] = None
    name_target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RawProductSummary:
    name_source: str
    detail_url: str
    category_slug: str
    product_code: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[int] = None
    dimensions: Optional[str] = None
    description_source: Optional[str] = None
    name_target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SceneImage:
    name: Optional[str]
    image_url: Optional[str]
    scene_url: Optional[str]


@dataclass
class ColorOption:
    name_source: str
    name_target: Optional[str] = None


@dataclass
class ProductDetail:
    """Everything a detail page can contribute on top of the list-page summary."""

    detail_url: str
    product_code: Optional[str] = None
    model_number: Optional[str] = None
    image_url: Optional[str] = None
    image_gallery: List[str] = field(default_factory=list)
    description_source: Optional[str] = None
    material: Optional[str] = None
    dimensions: Optional[str] = None
    weight: Optional[str] = None
    specs: Dict[str, str] = field(default_factory=dict)
    color_options: List[str] = field(default_factory=list)
    scene_images: List[SceneImage] = field(default_factory=list)
    regular_price: Optional[int] = None
    sale_price: Optional[int] = None
    special_notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProductRecord:
    """Merged summary + detail + translations, ready for upsert."""

    name_source: str
    detail_url: str
    category_slug: str
    name_target: Optional[str] = None
    product_code: Optional[str] = None
    model_number: Optional[str] = None
    image_url: Optional[str] = None
    image_gallery: List[str] = field(default_factory=list)
    price: Optional[int] = None
    regular_price: Optional[int] = None
    sale_price: Optional[int] = None
    dimensions: Optional[str] = None
    weight: Optional[str] = None
    description_source: Optional[str] = None
    description_target: Optional[str] = None
    material_source: Optional[str] = None
    material_target: Optional[str] = None
    specs_source: Dict[str, str] = field(default_factory=dict)
    specs_target: Dict[str, Optional[str]] = field(default_factory=dict)
    color_options: List[ColorOption] = field(default_factory=list)
    scene_images: List[SceneImage] = field(default_factory=list)
    special_notes: List[str] = field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: RawProductSummary) -> "ProductRecord":
        return cls(
            name_source=summary.name_source,
            name_target=summary.name_target,
            detail_url=summary.detail_url,
            category_slug=summary.category_slug,
            product_code=summary.product_code,
            image_url=summary.image_url,
            price=summary.price,
            sale_price=summary.price,
            dimensions=summary.dimensions,
            description_source=summary.description_source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CrawlResult:
    categories: List[RawCategory] = field(default_factory=list)
    products: List[ProductRecord] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    stats: Dict[str, int] = field(
        default_factory=lambda: {
            "total_products": 0,
            "products_with_images": 0,
            "products_without_images": 0,
            "detail_crawl_success": 0,
            "detail_crawl_failed": 0,
            "detail_skipped": 0,
        }
    )
    categories_saved: int = 0
    products_saved: int = 0
