"""Defensive parsing of embedded JSON-LD product blocks.

A page may carry zero or more `<script type="application/ld+json">` blocks,
each holding an object, a list, or an `@graph` wrapper. Only the first
`Product` node is of interest, and only for its images and description.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from selectolax.parser import HTMLParser

_PRODUCT_TYPES = {"Product", "http://schema.org/Product", "https://schema.org/Product"}


@dataclass
class ProductLinkedData:
    images: List[str] = field(default_factory=list)
    description: Optional[str] = None
    name: Optional[str] = None


@dataclass
class LinkedDataOk:
    product: ProductLinkedData


@dataclass
class LinkedDataMalformed:
    reason: str


LinkedDataResult = Union[LinkedDataOk, LinkedDataMalformed]


def _is_product(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    t = node.get("@type")
    if isinstance(t, list):
        return any(x in _PRODUCT_TYPES for x in t)
    return t in _PRODUCT_TYPES


def _candidates(payload: Any) -> Iterable[Any]:
    items = payload if isinstance(payload, list) else [payload]
    for item in items:
        yield item
        if isinstance(item, dict) and isinstance(item.get("@graph"), list):
            yield from item["@graph"]


def _image_refs(value: Any) -> List[str]:
    values = value if isinstance(value, list) else [value]
    out: List[str] = []
    for v in values:
        if isinstance(v, str):
            out.append(v)
        elif isinstance(v, dict):
            ref = v.get("url") or v.get("contentUrl") or v.get("@id")
            if isinstance(ref, str):
                out.append(ref)
    return [u.strip() for u in out if u and u.strip()]


def parse_product_block(text: str) -> LinkedDataResult:
    """Parse one script body. Anything unusable folds into LinkedDataMalformed."""
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as exc:
        return LinkedDataMalformed(f"invalid json: {exc}")
    for node in _candidates(payload):
        if _is_product(node):
            desc = node.get("description")
            name = node.get("name")
            return LinkedDataOk(
                ProductLinkedData(
                    images=_image_refs(node.get("image")),
                    description=desc.strip() if isinstance(desc, str) and desc.strip() else None,
                    name=name.strip() if isinstance(name, str) and name.strip() else None,
                )
            )
    return LinkedDataMalformed("no Product node")


def find_product_linked_data(doc: HTMLParser) -> Optional[ProductLinkedData]:
    """Return the first well-formed Product block on the page, or None."""
    for script in doc.css('script[type="application/ld+json"]'):
        result = parse_product_block(script.text(deep=True) or "")
        if isinstance(result, LinkedDataOk):
            return result.product
    return None
