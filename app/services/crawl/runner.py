from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from typing import Optional

from app.config import IngestSettings
from app.services.ingest_service import build_gateway, get_tracker, run_ingest
from app.services.translator import get_translator

from .extractor import extract_product_detail
from .fetcher import Fetcher
from .gateway import InMemoryCatalogGateway
from .pipeline import write_jsonl

logger = logging.getLogger(__name__)


async def _run_full_ingest(settings: IngestSettings, *, dry_run: bool, out_dir: str) -> int:
    gateway = InMemoryCatalogGateway() if dry_run else build_gateway(settings)
    tracker = get_tracker()
    tracker.try_start()
    run = await run_ingest(settings, tracker=tracker, gateway=gateway)
    print(json.dumps(run.to_dict(), ensure_ascii=False, indent=2))
    if isinstance(gateway, InMemoryCatalogGateway):
        cat_path = write_jsonl(gateway.categories.values(), out_dir=out_dir, filename_prefix="categories")
        prod_path = write_jsonl(gateway.products.values(), out_dir=out_dir, filename_prefix="products")
        print(cat_path)
        print(prod_path)
    return 0 if run.state.value == "completed" else 1


async def _run_detail(settings: IngestSettings, *, url: Optional[str], file: Optional[str]) -> int:
    if url:
        async with Fetcher(timeout=settings.timeout, headers=settings.headers) as fetcher:
            html = await fetcher.fetch(url)
        source = url
    else:
        with open(file, "r", encoding="utf-8") as f:
            html = f.read()
        source = file
    detail = extract_product_detail(html, source, settings.base_url)
    if detail is None:
        logger.error("No document to parse at %s", source)
        return 1
    print(json.dumps(detail.to_dict(), ensure_ascii=False, indent=2))
    return 0


async def _run_translate(settings: IngestSettings, texts: list) -> int:
    translator = get_translator(settings)
    print(json.dumps(await translator.translate_batch(texts), ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Run catalog crawl tasks")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    default_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
    ingest = sub.add_parser("ingest", help="Crawl the whole catalog and save it")
    ingest.add_argument("--dry-run", action="store_true", help="Keep records in memory instead of the configured store")
    ingest.add_argument("--base-url", help="Override CATALOG_BASE_URL")
    ingest.add_argument("--batch-size", type=int, help="Override CRAWL_BATCH_SIZE")
    ingest.add_argument("--out-dir", default=os.path.join(default_root, "data", "scraped", "catalog"),
                        help="Output directory for JSONL files (dry run only)")

    detail = sub.add_parser("detail", help="Parse one product detail page and print it as JSON")
    src = detail.add_mutually_exclusive_group(required=True)
    src.add_argument("--url", help="Detail page URL to fetch")
    src.add_argument("--file", help="Local HTML file path")

    translate = sub.add_parser("translate", help="Translate texts with the configured provider")
    translate.add_argument("texts", nargs="+")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = IngestSettings.from_env()

    if args.cmd == "ingest":
        if args.base_url:
            settings.base_url = args.base_url.rstrip("/")
        if args.batch_size:
            settings.batch_size = max(1, args.batch_size)
        if args.dry_run:
            os.makedirs(args.out_dir, exist_ok=True)
        return asyncio.run(_run_full_ingest(settings, dry_run=args.dry_run, out_dir=args.out_dir))

    if args.cmd == "detail":
        return asyncio.run(_run_detail(settings, url=args.url, file=args.file))

    if args.cmd == "translate":
        return asyncio.run(_run_translate(settings, args.texts))

    parser.error("unknown command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
