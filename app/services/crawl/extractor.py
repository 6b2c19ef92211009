"""Heuristic extraction of catalog records from storefront HTML.

Every field is resolved by an ordered tuple of small strategy functions taking a
`Scope` (parsed document, optional context element, flattened page text). The
first strategy returning a usable value wins; a strategy that raises is logged
and skipped, so a field that cannot be found is simply None/empty.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from .base import ProductDetail, RawCategory, RawProductSummary, SceneImage
from .images import normalize_image_url, resolve
from .linked_data import find_product_linked_data

logger = logging.getLogger(__name__)

IMG_ATTRS = ("src", "data-src", "data-lazy-src", "data-original", "data-image")
CATEGORY_HEADINGS = ("Category", "カテゴリー")
EXCLUDED_COLLECTIONS = ("scene_", "color_", "quick_delivery", "outlet")
PLATFORM_IMAGE_SELECTORS = (
    'img[class*="product-image"]',
    'img[class*="featured-image"]',
    'img[class*="main-image"]',
    '[class*="product-image"] img',
    '[class*="featured-image"] img',
    '[class*="main-image"] img',
)
GALLERY_SELECTORS = (
    ".product-single__media img",
    ".product__media img",
    "[data-product-image] img",
    ".product-gallery img",
    ".product-images img",
    '[class*="product-image"] img',
    '[class*="featured-image"] img',
    '[class*="main-image"] img',
    "ul li img",
    '[class*="gallery"] img',
    '[class*="slider"] img',
    '[class*="carousel"] img',
)
IMAGE_LINK_SELECTOR = 'a[href*="cdn/shop/products"], a[href*="cdn/shop/files"], a[href*="products"], a[href*="files"]'
IMAGE_LINK_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")

_CODE_IN_NAME_RE = re.compile(r"[A-Z]{2,}\d+")
_CODE_LABEL_RE = re.compile(r"商品番号[：:]\s*([A-Z0-9_]+)", re.IGNORECASE)
_CODE_TOKEN_RE = re.compile(r"([A-Z]{2,}\d+[_\d]*)")
_MODEL_RE = re.compile(r"([A-Z]{2,}\d+_\d+)")
_DIMENSIONS_RE = re.compile(r"W/D/H[:\s]*([\d/xX\s]+(?:mm|cm|m)?)", re.IGNORECASE)
_YEN_RE = re.compile(r"¥\s*([\d,]+)")
_REGULAR_PRICE_RE = re.compile(r"通常価格[：:\s]*¥?([\d,]+)")
_SALE_PRICE_RE = re.compile(r"販売価格[：:\s]*¥?([\d,]+)")
_SPEC_LINE_RE = re.compile(r"^(.+?)[：:]\s*(.+)$")
_COLOR_LINE_RE = re.compile(r"カラー[：:]\s*(.+?)(?:\n|$)")
_BACKGROUND_RE = re.compile(r"background(?:-image)?\s*:[^;]*url\(\s*['\"]?([^'\")]+)['\"]?\s*\)", re.IGNORECASE)


@dataclass
class Scope:
    doc: HTMLParser
    node: Optional[Node] = None
    text: str = ""
    url: str = ""

    def first(self, selector: str) -> Optional[Node]:
        root = self.node if self.node is not None else self.doc
        return root.css_first(selector)

    def all(self, selector: str) -> List[Node]:
        root = self.node if self.node is not None else self.doc
        return root.css(selector) or []


Strategy = Callable[[Scope], object]


def first_success(
    strategies: Sequence[Strategy],
    scope: Scope,
    transform: Optional[Callable[[object], object]] = None,
):
    """Evaluate strategies in priority order; the first usable value wins."""
    for strategy in strategies:
        try:
            value = strategy(scope)
            if transform is not None and value:
                value = transform(value)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Strategy %s failed on %s: %s", getattr(strategy, "__name__", strategy), scope.url, exc)
            continue
        if value:
            return value
    return None


# --- node helpers ---

def clean_text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return " ".join((node.text(deep=True, separator=" ") or "").split())


def _attr(node: Optional[Node], *names: str) -> Optional[str]:
    if node is None:
        return None
    attrs = node.attributes or {}
    for name in names:
        value = attrs.get(name)
        if value and value.strip():
            return value.strip()
    return None


def _usable_image_attr(node: Optional[Node]) -> Optional[str]:
    """First image attribute that is not a lazy-load placeholder."""
    if node is None:
        return None
    attrs = node.attributes or {}
    for name in IMG_ATTRS:
        value = attrs.get(name)
        if value and normalize_image_url(value):
            return value.strip()
    return None


def srcset_urls(srcset: Optional[str]) -> List[str]:
    urls: List[str] = []
    for part in (srcset or "").split(","):
        bits = part.strip().split()
        if bits:
            urls.append(bits[0])
    return urls


def _closest(node: Node, tags: Set[str]) -> Optional[Node]:
    parent = node.parent
    while parent is not None:
        if parent.tag in tags:
            return parent
        parent = parent.parent
    return None


def _next_element(node: Node) -> Optional[Node]:
    sibling = node.next
    while sibling is not None and sibling.tag in ("-text", "-comment"):
        sibling = sibling.next
    return sibling


def headed_section(doc: HTMLParser, heading_selector: str, needles: Iterable[str]) -> Optional[Node]:
    """The enclosing div/section of the first heading whose text contains a needle."""
    needles = tuple(needles)
    for heading in doc.css(heading_selector) or []:
        text = clean_text(heading)
        if any(n in text for n in needles):
            return _closest(heading, {"div", "section"})
    return None


def page_text(html: str) -> str:
    tree = HTMLParser(html)
    tree.strip_tags(["script", "style", "noscript"])
    root = tree.body or tree.root
    return root.text(deep=True, separator="\n") if root is not None else ""


def _to_int(digits: Optional[str]) -> Optional[int]:
    if not digits:
        return None
    try:
        return int(digits.replace(",", ""))
    except ValueError:
        return None


# --- image strategies ---

def _image_from_img_attributes(scope: Scope) -> Optional[str]:
    return _usable_image_attr(scope.first("img"))


def _image_from_responsive_source(scope: Scope) -> Optional[str]:
    img = scope.first("img")
    urls = srcset_urls(_attr(img, "srcset", "data-srcset"))
    if not urls:
        urls = srcset_urls(_attr(scope.first("picture source"), "srcset", "data-srcset"))
    return urls[0] if urls else None


def _image_from_linked_data(scope: Scope) -> Optional[str]:
    data = find_product_linked_data(scope.doc)
    return data.images[0] if data and data.images else None


def _image_from_background(scope: Scope) -> Optional[str]:
    nodes = [scope.node] if scope.node is not None else []
    nodes += scope.all('[style*="background"]')
    for node in nodes:
        m = _BACKGROUND_RE.search(_attr(node, "style") or "")
        if m:
            return m.group(1)
    return None


def _image_from_platform_markers(scope: Scope) -> Optional[str]:
    for selector in PLATFORM_IMAGE_SELECTORS:
        value = _attr(scope.first(selector), "src", "data-src", "data-lazy-src")
        if value:
            return value
    return None


IMAGE_STRATEGIES = (
    _image_from_img_attributes,
    _image_from_responsive_source,
    _image_from_linked_data,
    _image_from_background,
    _image_from_platform_markers,
)


def extract_image_url(scope: Scope, base_url: str) -> Optional[str]:
    return first_success(IMAGE_STRATEGIES, scope, transform=lambda v: normalize_image_url(v, base_url))


# --- categories ---

def _category_slug(href: str) -> str:
    tail = href.split("/collections/", 1)[-1]
    return tail.split("?", 1)[0].split("#", 1)[0].strip("/")


def _collect_categories(root, base_url: str) -> List[RawCategory]:
    categories: List[RawCategory] = []
    seen: Set[str] = set()
    for a in root.css('a[href*="/collections/"]') or []:
        href = _attr(a, "href")
        name = clean_text(a)
        if not href or not name or any(x in href for x in EXCLUDED_COLLECTIONS):
            continue
        slug = _category_slug(href)
        if not slug or slug in seen:
            continue
        seen.add(slug)
        categories.append(
            RawCategory(
                name_source=name,
                slug=slug,
                url=urljoin(base_url.rstrip("/") + "/", href),
                image_url=normalize_image_url(_usable_image_attr(a.css_first("img")), base_url),
            )
        )
    return categories


def extract_categories(html: str, base_url: str) -> List[RawCategory]:
    """Category links from the storefront home page, unique by slug."""
    doc = HTMLParser(html or "")
    section = headed_section(doc, "h2", CATEGORY_HEADINGS)
    if section is not None:
        found = _collect_categories(section, base_url)
        if found:
            return found
    return _collect_categories(doc, base_url)


# --- product list ---

def _summary_name(a: Node) -> str:
    return clean_text(a.css_first('h2, h3, h4, [class*="product"], [class*="title"]')) or clean_text(a)


def extract_product_summaries(html: str, category_slug: str, base_url: str) -> List[RawProductSummary]:
    """Product cards from a collection page, unique by detail URL in page order."""
    doc = HTMLParser(html or "")
    by_url: Dict[str, RawProductSummary] = {}
    for a in doc.css('a[href*="/products/"]') or []:
        href = _attr(a, "href")
        if not href or "#" in href:
            continue
        detail_url = urljoin(base_url.rstrip("/") + "/", href)
        name = _summary_name(a)
        image = extract_image_url(Scope(doc=doc, node=a, url=detail_url), base_url)

        code_match = _CODE_IN_NAME_RE.search(name)
        dim_match = _DIMENSIONS_RE.search(clean_text(a))
        price_match = _YEN_RE.search(" ".join(clean_text(n) for n in a.css('[class*="price"]') or []))

        found = RawProductSummary(
            name_source=name,
            detail_url=detail_url,
            category_slug=category_slug,
            product_code=code_match.group(0) if code_match else None,
            image_url=image,
            price=_to_int(price_match.group(1)) if price_match else None,
            dimensions=dim_match.group(1).strip() if dim_match else None,
            description_source=clean_text(a.css_first('[class*="description"]')) or None,
        )
        existing = by_url.get(detail_url)
        if existing is None:
            by_url[detail_url] = found
            continue
        # Same product linked twice (image tile + title); fill gaps only
        for attr in ("name_source", "product_code", "image_url", "price", "dimensions", "description_source"):
            if not getattr(existing, attr) and getattr(found, attr):
                setattr(existing, attr, getattr(found, attr))
    summaries = [s for s in by_url.values() if s.name_source]
    for s in summaries:
        if not s.image_url:
            logger.warning("No image found on list page for %s", s.detail_url)
    return summaries


# --- product detail ---

def _code_from_label(scope: Scope) -> Optional[str]:
    m = _CODE_LABEL_RE.search(scope.text)
    return m.group(1) if m else None


def _code_from_token(scope: Scope) -> Optional[str]:
    m = _CODE_TOKEN_RE.search(scope.text)
    return m.group(1).split("_")[0] if m else None


CODE_STRATEGIES = (_code_from_label, _code_from_token)


def _long_text(node: Optional[Node]) -> Optional[str]:
    text = (node.text(deep=True) or "").strip() if node is not None else ""
    return text if len(text) > 20 else None


def _description_first_paragraph(scope: Scope) -> Optional[str]:
    return _long_text(scope.doc.css_first("p"))


def _description_block(scope: Scope) -> Optional[str]:
    return _long_text(scope.doc.css_first('[class*="description"]'))


def _description_after_title(scope: Scope) -> Optional[str]:
    h1 = scope.doc.css_first("h1")
    sibling = _next_element(h1) if h1 is not None else None
    return _long_text(sibling) if sibling is not None and sibling.tag == "p" else None


def _description_from_linked_data(scope: Scope) -> Optional[str]:
    data = find_product_linked_data(scope.doc)
    return data.description if data else None


DESCRIPTION_STRATEGIES = (
    _description_first_paragraph,
    _description_block,
    _description_after_title,
    _description_from_linked_data,
)


def _colors_from_widget(scope: Scope) -> List[str]:
    widget = scope.doc.css_first('[aria-label*="Color"], [class*="color"]')
    if widget is None:
        return []
    names: List[str] = []
    for el in widget.css('button, [role="button"], [class*="color-option"]') or []:
        name = _attr(el, "aria-label", "title") or clean_text(el)
        if name and name not in names:
            names.append(name)
    return names


def _colors_from_text(scope: Scope) -> List[str]:
    m = _COLOR_LINE_RE.search(scope.text)
    if not m:
        return []
    return [c.strip() for c in re.split(r"[、,]", m.group(1)) if c.strip()]


COLOR_STRATEGIES = (_colors_from_widget, _colors_from_text)


def _gallery_candidates(scope: Scope, linked_images: List[str]) -> List[str]:
    raw: List[str] = list(linked_images)
    for selector in GALLERY_SELECTORS:
        for img in scope.doc.css(selector) or []:
            value = _usable_image_attr(img)
            if value:
                raw.append(value)
                continue
            urls = srcset_urls(_attr(img, "srcset", "data-srcset"))
            if urls:
                # srcset lists ascending widths; the last entry is usually the largest
                raw.append(urls[-1])
    for a in scope.doc.css(IMAGE_LINK_SELECTOR) or []:
        href = _attr(a, "href") or ""
        if any(ext in href.lower() for ext in IMAGE_LINK_EXTENSIONS):
            raw.append(href)
    for source in scope.doc.css("picture source") or []:
        raw.extend(srcset_urls(_attr(source, "srcset", "data-srcset")))
    return raw


def _section_list_items(doc: HTMLParser, needle: str) -> List[str]:
    section = headed_section(doc, "strong, h3, h4", (needle,))
    if section is None:
        return []
    return [t for t in (clean_text(li) for li in section.css("li") or []) if t]


def _scene_images(doc: HTMLParser, base_url: str) -> List[SceneImage]:
    section = headed_section(doc, "h2", ("Scene",)) or headed_section(doc, "h4", ("シーン",))
    if section is None:
        return []
    scenes: List[SceneImage] = []
    for el in section.css('a[href*="/collections/scene"], img') or []:
        if el.tag == "img" and _closest(el, {"a"}) is not None:
            continue
        img = el.css_first("img") if el.tag == "a" else el
        scene_url = _attr(el, "href") if el.tag == "a" else None
        image = normalize_image_url(_usable_image_attr(img), base_url)
        name = _attr(el, "aria-label", "alt") or _attr(img, "alt") or clean_text(el) or None
        if image or scene_url:
            scenes.append(
                SceneImage(
                    name=name,
                    image_url=image,
                    scene_url=urljoin(base_url.rstrip("/") + "/", scene_url) if scene_url else None,
                )
            )
    return scenes


def extract_product_detail(html: str, url: str, base_url: str) -> Optional[ProductDetail]:
    """Parse a product page. Returns None only when there is no document to parse."""
    if not html or not html.strip():
        return None
    doc = HTMLParser(html)
    if doc.body is None:
        return None
    scope = Scope(doc=doc, text=page_text(html), url=url)
    linked = find_product_linked_data(doc)
    detail = ProductDetail(detail_url=url)

    if "variant=" in url:
        m = _MODEL_RE.search(scope.text)
        detail.model_number = m.group(1) if m else None
    detail.product_code = first_success(CODE_STRATEGIES, scope)

    gallery = resolve(_gallery_candidates(scope, linked.images if linked else []), base_url)
    detail.image_gallery = gallery.canonical_gallery
    detail.image_url = gallery.primary or extract_image_url(scope, base_url)

    detail.description_source = first_success(DESCRIPTION_STRATEGIES, scope)

    for line in _section_list_items(doc, "製品情報"):
        m = _SPEC_LINE_RE.match(line)
        if not m:
            continue
        key, value = m.group(1).strip(), m.group(2).strip()
        detail.specs[key] = value
        if "サイズ" in key:
            detail.dimensions = value
        elif "重量" in key:
            detail.weight = value
        elif "素材" in key:
            detail.material = value

    detail.color_options = first_success(COLOR_STRATEGIES, scope) or []
    detail.scene_images = _scene_images(doc, base_url)

    regular = _REGULAR_PRICE_RE.search(scope.text)
    sale = _SALE_PRICE_RE.search(scope.text)
    detail.regular_price = _to_int(regular.group(1)) if regular else None
    detail.sale_price = _to_int(sale.group(1)) if sale else detail.regular_price

    detail.special_notes = _section_list_items(doc, "特記事項")
    return detail
