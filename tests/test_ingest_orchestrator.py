import asyncio
import os

import pytest

from app.config import IngestSettings
from app.services import ingest_service
from app.services.crawl import orchestrator
from app.services.crawl.fetcher import FetchError, FetchErrorKind
from app.services.crawl.gateway import InMemoryCatalogGateway
from app.services.crawl.orchestrator import CatalogIngestor
from app.services.crawl.status import IngestionStatusTracker, RunState
from app.services.crawl.translation_memo import TranslationMemo

BASE = "https://shop.test"
FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")


def _fixture(name: str) -> str:
    with open(os.path.join(FIXTURES, name), "r", encoding="utf-8") as f:
        return f.read()


class _FakeFetcher:
    def __init__(self, pages, delay=0.0):
        self.pages = pages
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url):
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            page = self.pages.get(url)
            if page is None:
                raise FetchError(FetchErrorKind.HTTP_ERROR, url, status_code=404)
            if isinstance(page, Exception):
                raise page
            return page
        finally:
            self.in_flight -= 1

    async def aclose(self):
        pass


class _FakeTranslator:
    def __init__(self):
        self.batches = []

    async def translate_batch(self, texts):
        self.batches.append(list(texts))
        return [f"KO:{t}" for t in texts]


def _long_description(i):
    return f"商品{i}の詳しい説明文です。素材と仕上げにこだわりました。"


def _list_page(n):
    cards = "".join(f'<a href="/products/p{i}"><h3>アイテム {i}</h3></a>' for i in range(n))
    return f"<html><body>{cards}</body></html>"


def _detail_page(i):
    return f"<html><body><h1>アイテム {i}</h1><p>{_long_description(i)}</p></body></html>"


def _catalog_pages(n, category="chairs"):
    pages = {
        BASE: f'<html><body><a href="/collections/{category}">チェア</a></body></html>',
        f"{BASE}/collections/{category}": _list_page(n),
    }
    for i in range(n):
        pages[f"{BASE}/products/p{i}"] = _detail_page(i)
    return pages


def _ingestor(fetcher, *, gateway=None, translator=None, batch_size=5, tracker=None):
    return CatalogIngestor(
        fetcher=fetcher,
        gateway=gateway or InMemoryCatalogGateway(),
        memo=TranslationMemo(translator or _FakeTranslator()),
        base_url=BASE,
        batch_size=batch_size,
        tracker=tracker or IngestionStatusTracker(),
    )


def _started_tracker():
    tracker = IngestionStatusTracker()
    tracker.try_start()
    return tracker


def test_end_to_end_gallery_and_description_translation():
    list_html = (
        '<html><body>'
        '<a href="/products/one"><h3>ワン</h3></a>'
        '<a href="/products/two"><img src="/two.jpg"><h3>ツー TW200</h3>'
        '<p class="card-description">ツーの説明</p></a>'
        '</body></html>'
    )
    detail_html = (
        '<html><head><script type="application/ld+json">{"@type": "Product", "description": "A"}</script></head>'
        '<body><div class="product-gallery"><img src="x_50x50.jpg"><img src="x_500x500.jpg"></div></body></html>'
    )
    fetcher = _FakeFetcher({
        BASE: '<html><body><a href="/collections/chairs">チェア</a></body></html>',
        f"{BASE}/collections/chairs": list_html,
        f"{BASE}/products/one": detail_html,
    })
    translator = _FakeTranslator()
    gateway = InMemoryCatalogGateway()
    tracker = _started_tracker()

    run = asyncio.run(_ingestor(fetcher, gateway=gateway, translator=translator, tracker=tracker).run())

    assert run.state is RunState.COMPLETED
    assert run.progress == 100
    stored = gateway.products[f"{BASE}/products/one"]
    assert stored["image_gallery"] == [f"{BASE}/x_500x500.jpg"]
    assert stored["image_url"] == f"{BASE}/x_500x500.jpg"
    assert stored["description_source"] == "A"
    assert stored["description_target"] == "KO:A"
    assert stored["category_id"] == 1
    assert ["A"] in translator.batches

    result = run.result
    assert result["categories"] == {"crawled": 1, "saved": 1}
    assert result["products"] == {"crawled": 2, "saved": 2}
    assert result["errors"] == []
    assert result["stats"]["detail_crawl_success"] == 1
    assert result["stats"]["detail_skipped"] == 1
    assert result["stats"]["products_with_images"] == 2


def test_fixture_catalog_end_to_end():
    fetcher = _FakeFetcher({
        BASE: _fixture("catalog_home.html"),
        f"{BASE}/collections/chairs": _fixture("catalog_list.html"),
        f"{BASE}/collections/tables": "<html><body><p>準備中</p></body></html>",
        f"{BASE}/products/stool": _fixture("catalog_detail.html"),
    })
    gateway = InMemoryCatalogGateway()
    run = asyncio.run(_ingestor(fetcher, gateway=gateway, tracker=_started_tracker()).run())

    assert run.state is RunState.COMPLETED
    assert set(gateway.categories) == {"chairs", "tables"}
    assert gateway.categories["chairs"]["name_target"] == "KO:チェア"
    # the chair card is complete on the list page, so its detail page is never fetched
    assert f"{BASE}/products/haller-chair" not in fetcher.calls

    stool = gateway.products[f"{BASE}/products/stool"]
    assert stool["name_target"] == "KO:スツール"
    assert stool["product_code"] == "ST200"
    assert stool["price"] == 3500
    assert stool["regular_price"] == 4000
    assert stool["sale_price"] == 3200
    assert stool["material_target"] == "KO:スチール"
    assert [c["name_target"] for c in stool["color_options"]] == ["KO:ホワイト", "KO:ブラック"]

    chair = gateway.products[f"{BASE}/products/haller-chair"]
    assert chair["sale_price"] == 12000
    assert chair["description_target"] == "KO:スチールフレームの軽量チェア"


def test_reingesting_unchanged_catalog_translates_nothing():
    pages = {
        BASE: _fixture("catalog_home.html"),
        f"{BASE}/collections/chairs": _fixture("catalog_list.html"),
        f"{BASE}/collections/tables": "<html><body></body></html>",
        f"{BASE}/products/stool": _fixture("catalog_detail.html"),
    }
    gateway = InMemoryCatalogGateway()
    asyncio.run(_ingestor(_FakeFetcher(pages), gateway=gateway, tracker=_started_tracker()).run())
    before = {url: row["id"] for url, row in gateway.products.items()}

    translator = _FakeTranslator()
    run = asyncio.run(_ingestor(_FakeFetcher(pages), gateway=gateway, translator=translator, tracker=_started_tracker()).run())

    assert run.state is RunState.COMPLETED
    assert translator.batches == []
    assert {url: row["id"] for url, row in gateway.products.items()} == before
    assert gateway.products[f"{BASE}/products/stool"]["description_target"].startswith("KO:")


def test_batch_bound_limits_concurrent_detail_fetches():
    fetcher = _FakeFetcher(_catalog_pages(20), delay=0.01)
    run = asyncio.run(_ingestor(fetcher, batch_size=5, tracker=_started_tracker()).run())

    assert run.state is RunState.COMPLETED
    assert run.result["stats"]["detail_crawl_success"] == 20
    assert 1 < fetcher.max_in_flight <= 5


def test_one_failing_product_falls_back_to_summary(monkeypatch):
    real_extract = orchestrator.extract_product_detail

    def flaky_extract(html, url, base_url):
        if url.endswith("/p3"):
            raise ValueError("unexpected markup")
        return real_extract(html, url, base_url)

    monkeypatch.setattr(orchestrator, "extract_product_detail", flaky_extract)
    gateway = InMemoryCatalogGateway()
    run = asyncio.run(_ingestor(_FakeFetcher(_catalog_pages(10)), gateway=gateway, tracker=_started_tracker()).run())

    assert run.state is RunState.COMPLETED
    assert run.result["products"]["crawled"] == 10
    assert run.result["stats"]["detail_crawl_success"] == 9
    assert run.result["stats"]["detail_crawl_failed"] == 1
    product_errors = [e for e in run.result["errors"] if e["type"] == "product"]
    assert product_errors == [{"type": "product", "url": f"{BASE}/products/p3", "error": "unexpected markup"}]
    fallback = gateway.products[f"{BASE}/products/p3"]
    assert fallback["name_source"] == "アイテム 3"
    assert fallback["description_source"] is None
    assert gateway.products[f"{BASE}/products/p4"]["description_source"] == _long_description(4)


def test_failing_category_is_recorded_and_skipped():
    pages = _catalog_pages(2)
    pages[BASE] = (
        '<html><body><a href="/collections/broken">壊れた</a><a href="/collections/chairs">チェア</a></body></html>'
    )
    pages[f"{BASE}/collections/broken"] = FetchError(FetchErrorKind.TIMEOUT, f"{BASE}/collections/broken")
    run = asyncio.run(_ingestor(_FakeFetcher(pages), tracker=_started_tracker()).run())

    assert run.state is RunState.COMPLETED
    errors = run.result["errors"]
    assert len(errors) == 1
    assert errors[0]["type"] == "category"
    assert errors[0]["slug"] == "broken"
    assert "timeout" in errors[0]["error"]
    assert run.result["products"]["saved"] == 2


def test_unreachable_home_page_ends_run_in_error():
    fetcher = _FakeFetcher({})
    run = asyncio.run(_ingestor(fetcher, tracker=_started_tracker()).run())
    assert run.state is RunState.ERROR
    assert "404" in run.result["error"]


def test_persist_failure_is_isolated_per_record():
    class _FlakyGateway(InMemoryCatalogGateway):
        async def upsert_product(self, product, category_id):
            if product.detail_url.endswith("/p1"):
                raise RuntimeError("constraint violation")
            return await super().upsert_product(product, category_id)

    gateway = _FlakyGateway()
    run = asyncio.run(_ingestor(_FakeFetcher(_catalog_pages(3)), gateway=gateway, tracker=_started_tracker()).run())
    assert run.result["products"] == {"crawled": 3, "saved": 2}
    assert [e["type"] for e in run.result["errors"]] == ["persist"]
    assert f"{BASE}/products/p1" not in gateway.products


def test_single_flight_trigger_runs_once():
    fetcher = _FakeFetcher(_catalog_pages(3), delay=0.02)
    tracker = IngestionStatusTracker()
    settings = IngestSettings(base_url=BASE, translator_provider="none", store="memory")

    async def scenario():
        deps = dict(fetcher=fetcher, gateway=InMemoryCatalogGateway(), translator=_FakeTranslator())
        first = ingest_service.trigger_ingest(settings, tracker=tracker, **deps)
        second = ingest_service.trigger_ingest(settings, tracker=tracker, **deps)
        await ingest_service.wait_idle()
        return first, second

    (started1, _), (started2, snap2) = asyncio.run(scenario())
    assert started1 is True
    assert started2 is False
    assert snap2.to_dict()["status"] == "running"
    assert fetcher.calls.count(BASE) == 1
    assert tracker.snapshot().state is RunState.COMPLETED

    # a finished run does not block the next trigger
    async def again():
        started, _ = ingest_service.trigger_ingest(
            settings, tracker=tracker, fetcher=fetcher, gateway=InMemoryCatalogGateway(), translator=_FakeTranslator()
        )
        await ingest_service.wait_idle()
        return started

    assert asyncio.run(again()) is True
    assert fetcher.calls.count(BASE) == 2


def test_setup_failure_marks_run_as_error():
    tracker = IngestionStatusTracker()
    tracker.try_start()
    settings = IngestSettings(base_url=BASE, translator_provider="deepl", deepl_api_key=None, store="memory")
    run = asyncio.run(ingest_service.run_ingest(settings, tracker=tracker, fetcher=_FakeFetcher({})))
    assert run.state is RunState.ERROR
    assert "DEEPL_API_KEY" in run.result["error"]


def test_trigger_outside_event_loop_leaves_slot_free():
    tracker = IngestionStatusTracker()
    with pytest.raises(RuntimeError):
        ingest_service.trigger_ingest(IngestSettings(base_url=BASE), tracker=tracker)
    assert tracker.snapshot().state is RunState.IDLE
    assert tracker.try_start()[0] is True


def test_failed_recrawl_keeps_stored_detail_fields():
    pages = _catalog_pages(2)
    gateway = InMemoryCatalogGateway()
    asyncio.run(_ingestor(_FakeFetcher(pages), gateway=gateway, tracker=_started_tracker()).run())
    url = f"{BASE}/products/p1"
    assert gateway.products[url]["description_target"] == f"KO:{_long_description(1)}"

    pages[url] = FetchError(FetchErrorKind.TIMEOUT, url)
    translator = _FakeTranslator()
    run = asyncio.run(
        _ingestor(_FakeFetcher(pages), gateway=gateway, translator=translator, tracker=_started_tracker()).run()
    )

    assert run.result["stats"]["detail_crawl_failed"] == 1
    stored = gateway.products[url]
    assert stored["description_source"] == _long_description(1)
    assert stored["description_target"] == f"KO:{_long_description(1)}"
    assert translator.batches == []


def test_carry_forward_drops_translation_of_changed_text():
    from app.services.crawl.base import ProductRecord

    record = ProductRecord(
        name_source="アイテム", detail_url=f"{BASE}/products/p9", category_slug="chairs", description_source="新しい説明"
    )
    prior = {
        "description_source": "古い説明",
        "description_target": "KO:古い説明",
        "material_source": "木",
        "material_target": "나무",
        "color_options": [{"name_source": "ホワイト", "name_target": "화이트"}],
        "scene_images": [{"name": "オフィス", "image_url": None, "scene_url": f"{BASE}/collections/scene_office"}],
    }
    out = orchestrator.carry_forward(record, prior)
    assert out.description_source == "新しい説明"
    assert out.description_target is None
    assert out.material_source == "木"
    assert out.material_target == "나무"
    assert out.color_options[0].name_target == "화이트"
    assert out.scene_images[0].name == "オフィス"
    assert orchestrator.carry_forward(record, None) is record
