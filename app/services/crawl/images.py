"""Image URL canonicalization and gallery deduplication.

Storefront CDNs serve the same picture under many names: protocol-relative and
root-relative forms, `?width=`/`?height=` resizes and `_300x300`/`_333x`
filename variants. `resolve()` collapses those into one URL per picture, keeping
first-seen order.

Within a group of variants the bare (unsuffixed) URL wins; otherwise the
largest pixel area wins, and equal areas go to the shorter URL. The length
tie-break is a heuristic, not a guarantee that the shorter URL is the original.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

_SIZE_SUFFIX_RE = re.compile(r"_(\d+)x(\d*)(\.(?:jpe?g|png|webp|gif))$", re.IGNORECASE)
_PLACEHOLDER_RE = re.compile(r"placeholder|no-?image|spacer|blank|(?<!\d)1x1(?!\d)", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*:", re.IGNORECASE)
_SIZE_PARAMS = {"width", "height", "crop", "scale"}
_NULLISH = {"null", "undefined", "none"}


def normalize_image_url(url: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Absolute, placeholder-free URL with resize query parameters removed.

    The filename size suffix is kept; it is only stripped for grouping (see
    canonical_base). normalize(normalize(u)) == normalize(u).
    """
    if not url:
        return None
    url = url.strip()
    if not url or url.lower() in _NULLISH or url.lower().startswith("data:"):
        return None
    if _PLACEHOLDER_RE.search(url):
        return None

    if url.startswith("//"):
        url = f"https:{url}"
    elif not _SCHEME_RE.match(url) and base_url:
        url = urljoin(base_url.rstrip("/") + "/", url)

    parts = urlsplit(url)
    if parts.query:
        pairs = parse_qsl(parts.query, keep_blank_values=True)
        kept = [(k, v) for k, v in pairs if k.lower() not in _SIZE_PARAMS]
        if len(kept) != len(pairs):
            url = urlunsplit(parts._replace(query=urlencode(kept)))
    return url


def _strip_query(url: str) -> str:
    return url.split("#", 1)[0].split("?", 1)[0]


def canonical_base(url: str) -> str:
    """Grouping key: the URL without query, fragment or size suffix."""
    return _SIZE_SUFFIX_RE.sub(r"\3", _strip_query(url))


def parse_size_variant(url: str) -> Optional[Tuple[int, int]]:
    """(width, height) from a `_WxH.ext` suffix; `_Wx.ext` is read as a square."""
    m = _SIZE_SUFFIX_RE.search(_strip_query(url))
    if not m:
        return None
    width = int(m.group(1))
    height = int(m.group(2)) if m.group(2) else width
    return width, height


@dataclass
class ImageCandidate:
    url: str
    base: str
    width: Optional[int] = None
    height: Optional[int] = None

    @classmethod
    def from_url(cls, url: str) -> "ImageCandidate":
        size = parse_size_variant(url)
        if size is None:
            return cls(url=url, base=canonical_base(url))
        return cls(url=url, base=canonical_base(url), width=size[0], height=size[1])

    @property
    def bare(self) -> bool:
        return self.width is None

    @property
    def area(self) -> int:
        if self.width is None or self.height is None:
            return 0
        return self.width * self.height


@dataclass
class ImageGroup:
    base: str
    candidates: List[ImageCandidate] = field(default_factory=list)

    def canonical(self) -> str:
        for c in self.candidates:
            if c.bare:
                return c.url
        # max() keeps the first of equal keys, so discovery order breaks full ties
        best = max(self.candidates, key=lambda c: (c.area, -len(c.url)))
        return best.url


@dataclass
class ResolvedGallery:
    canonical_gallery: List[str]
    primary: Optional[str]


def group_candidates(urls: Iterable[str]) -> List[ImageGroup]:
    groups: "OrderedDict[str, ImageGroup]" = OrderedDict()
    for url in urls:
        cand = ImageCandidate.from_url(url)
        group = groups.get(cand.base)
        if group is None:
            group = groups[cand.base] = ImageGroup(base=cand.base)
        group.candidates.append(cand)
    return list(groups.values())


def resolve(
    raw_urls: Iterable[Optional[str]],
    base_url: Optional[str] = None,
    *,
    fallback: Optional[str] = None,
) -> ResolvedGallery:
    """Collapse raw image URLs into a minimal ordered gallery.

    `fallback` (typically a page-level image found by another strategy) becomes
    the primary image only when the gallery is empty.
    """
    normalized = [n for n in (normalize_image_url(u, base_url) for u in raw_urls) if n]

    gallery: List[str] = []
    seen = set()
    for group in group_candidates(normalized):
        url = group.canonical()
        if url not in seen:
            seen.add(url)
            gallery.append(url)

    primary = gallery[0] if gallery else normalize_image_url(fallback, base_url)
    return ResolvedGallery(canonical_gallery=gallery, primary=primary)
