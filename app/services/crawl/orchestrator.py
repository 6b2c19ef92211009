"""Full catalog ingest: categories in order, products in bounded parallel batches.

Failures are absorbed at the smallest scope that can absorb them: a product
falls back to its list-page summary, a category is recorded in the error list
and skipped. Only an exception outside those guards ends the run in error.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from .base import ColorOption, CrawlResult, ProductDetail, ProductRecord, RawCategory, RawProductSummary, SceneImage
from .extractor import extract_categories, extract_product_detail, extract_product_summaries
from .gateway import CatalogGateway
from .status import CrawlRun, IngestionStatusTracker
from .translation_memo import TranslationMemo

logger = logging.getLogger(__name__)

BATCH_SIZE = 5

ENRICHED = "enriched"
SKIPPED = "skipped"
FAILED = "failed"


def merge_detail(summary: RawProductSummary, detail: ProductDetail) -> ProductRecord:
    """Detail page values win, except the list-page image and list price fallbacks."""
    record = ProductRecord.from_summary(summary)
    record.image_url = summary.image_url or detail.image_url
    record.image_gallery = list(detail.image_gallery)
    record.description_source = detail.description_source or summary.description_source
    record.product_code = detail.product_code or summary.product_code
    record.model_number = detail.model_number
    record.dimensions = detail.dimensions or summary.dimensions
    record.weight = detail.weight
    record.material_source = detail.material
    record.specs_source = dict(detail.specs)
    record.color_options = [ColorOption(name_source=name) for name in detail.color_options]
    record.scene_images = list(detail.scene_images)
    record.regular_price = detail.regular_price
    record.sale_price = detail.sale_price or summary.price
    record.special_notes = list(detail.special_notes)
    return record


_CARRIED_PAIRS = (
    ("description_source", "description_target"),
    ("material_source", "material_target"),
    ("specs_source", "specs_target"),
)
_CARRIED_FIELDS = ("image_url", "image_gallery", "model_number", "weight", "regular_price", "special_notes")


def carry_forward(record: ProductRecord, prior: Optional[Dict[str, Any]]) -> ProductRecord:
    """Keep stored detail-page fields on a summary-only fallback record.

    A translation is carried only together with the source text it was made from.
    """
    if not prior:
        return record
    for src, tgt in _CARRIED_PAIRS:
        if not getattr(record, src) and prior.get(src):
            setattr(record, src, copy.deepcopy(prior[src]))
        if getattr(record, src) == prior.get(src) and not getattr(record, tgt) and prior.get(tgt):
            setattr(record, tgt, copy.deepcopy(prior[tgt]))
    for attr in _CARRIED_FIELDS:
        if not getattr(record, attr) and prior.get(attr):
            setattr(record, attr, copy.deepcopy(prior[attr]))
    if not record.color_options:
        record.color_options = [
            ColorOption(name_source=c["name_source"], name_target=c.get("name_target"))
            for c in prior.get("color_options") or []
            if isinstance(c, dict) and c.get("name_source")
        ]
    if not record.scene_images:
        record.scene_images = [
            SceneImage(name=s.get("name"), image_url=s.get("image_url"), scene_url=s.get("scene_url"))
            for s in prior.get("scene_images") or []
            if isinstance(s, dict)
        ]
    return record


def build_result_payload(result: CrawlResult, duration: float) -> Dict[str, Any]:
    return {
        "categories": {"crawled": len(result.categories), "saved": result.categories_saved},
        "products": {"crawled": len(result.products), "saved": result.products_saved},
        "errors": list(result.errors),
        "stats": dict(result.stats),
        "duration_seconds": round(duration, 2),
    }


class CatalogIngestor:
    def __init__(
        self,
        *,
        fetcher: Any,
        gateway: CatalogGateway,
        memo: TranslationMemo,
        base_url: str,
        batch_size: int = BATCH_SIZE,
        tracker: Optional[IngestionStatusTracker] = None,
    ) -> None:
        self.fetcher = fetcher
        self.gateway = gateway
        self.memo = memo
        self.base_url = base_url.rstrip("/")
        self.batch_size = max(1, int(batch_size))
        self.tracker = tracker or IngestionStatusTracker()
        self._slots = asyncio.Semaphore(self.batch_size)

    async def run(self) -> CrawlRun:
        """Crawl, persist and record the terminal state. Never raises."""
        started = time.perf_counter()
        try:
            result = await self.crawl_all()
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Catalog ingest failed")
            return self.tracker.fail(str(exc))
        payload = build_result_payload(result, time.perf_counter() - started)
        logger.info("Catalog ingest finished: %s", payload["stats"])
        return self.tracker.complete(payload)

    async def crawl_all(self) -> CrawlResult:
        result = CrawlResult()
        self.tracker.update(progress=10, message="Crawling categories...")

        home = await self.fetcher.fetch(self.base_url)
        categories = extract_categories(home, self.base_url)
        await self._translate_category_names(categories)
        result.categories = categories
        logger.info("Found %d categories", len(categories))

        total = len(categories)
        for index, category in enumerate(categories):
            self.tracker.update(
                progress=10 + int(80 * index / total),
                message=f"[{index + 1}/{total}] Crawling category {category.name_source}",
            )
            try:
                await self._ingest_category(category, result)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Category %s failed: %s", category.slug, exc)
                result.errors.append({"type": "category", "slug": category.slug, "error": str(exc)})

        self.tracker.update(progress=90, message="Finalizing...")
        stats = result.stats
        stats["total_products"] = len(result.products)
        stats["products_with_images"] = sum(1 for p in result.products if p.image_url)
        stats["products_without_images"] = stats["total_products"] - stats["products_with_images"]
        return result

    async def _translate_category_names(self, categories: List[RawCategory]) -> None:
        priors = [await self.gateway.get_category_by_slug(c.slug) for c in categories]
        names = await self.memo.translate_names([c.name_source for c in categories], priors)
        for category, name in zip(categories, names):
            category.name_target = name

    async def _ingest_category(self, category: RawCategory, result: CrawlResult) -> None:
        category_id = await self.gateway.upsert_category(category)
        result.categories_saved += 1

        html = await self.fetcher.fetch(category.url)
        summaries = extract_product_summaries(html, category.slug, self.base_url)
        logger.info("Category %s: %d products on list page", category.slug, len(summaries))
        if not summaries:
            return

        priors: Dict[str, Optional[Dict[str, Any]]] = {}
        for s in summaries:
            priors[s.detail_url] = await self.gateway.get_product_by_detail_url(s.detail_url)
        names = await self.memo.translate_names([s.name_source for s in summaries], [priors[s.detail_url] for s in summaries])
        for summary, name in zip(summaries, names):
            summary.name_target = name

        records: List[Optional[ProductRecord]] = [None] * len(summaries)
        for start in range(0, len(summaries), self.batch_size):
            batch = summaries[start:start + self.batch_size]
            outcomes = await asyncio.gather(*(self._bounded(s, priors[s.detail_url]) for s in batch))
            for offset, (record, outcome, error) in enumerate(outcomes):
                # gather() keeps submission order; index explicitly anyway
                records[start + offset] = record
                if outcome == ENRICHED:
                    result.stats["detail_crawl_success"] += 1
                elif outcome == SKIPPED:
                    result.stats["detail_skipped"] += 1
                else:
                    result.stats["detail_crawl_failed"] += 1
                    result.errors.append({"type": "product", "url": record.detail_url, "error": error})

        for record in records:
            result.products.append(record)
            try:
                await self.gateway.upsert_product(record, category_id)
                result.products_saved += 1
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Saving %s failed: %s", record.detail_url, exc)
                result.errors.append({"type": "persist", "url": record.detail_url, "error": str(exc)})

    async def _bounded(self, summary: RawProductSummary, prior: Optional[Dict[str, Any]]):
        async with self._slots:
            return await self._process_product(summary, prior)

    async def _process_product(
        self, summary: RawProductSummary, prior: Optional[Dict[str, Any]]
    ) -> Tuple[ProductRecord, str, Optional[str]]:
        needs_detail = not summary.image_url or not summary.description_source or not summary.product_code
        try:
            if needs_detail:
                html = await self.fetcher.fetch(summary.detail_url)
                detail = extract_product_detail(html, summary.detail_url, self.base_url)
                if detail is None:
                    raise ValueError("empty detail page")
                record = merge_detail(summary, detail)
                outcome = ENRICHED
            else:
                record = ProductRecord.from_summary(summary)
                outcome = SKIPPED
            await self.memo.translate_record(record, prior)
            return record, outcome, None
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Detail crawl failed for %s: %s", summary.detail_url, exc)
            return carry_forward(ProductRecord.from_summary(summary), prior), FAILED, str(exc)
