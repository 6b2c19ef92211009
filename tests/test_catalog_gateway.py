import asyncio
import json

from app.services.crawl.base import ColorOption, ProductRecord, RawCategory
from app.services.crawl.gateway import InMemoryCatalogGateway
from app.services.graph import catalog


def _product(**kwargs):
    rec = ProductRecord(name_source="スツール", detail_url="https://shop.test/products/stool", category_slug="chairs")
    for key, value in kwargs.items():
        setattr(rec, key, value)
    return rec


def test_in_memory_upserts_are_idempotent_by_natural_key():
    gw = InMemoryCatalogGateway()

    async def scenario():
        cid = await gw.upsert_category(RawCategory(name_source="チェア", slug="chairs", url="https://shop.test/collections/chairs"))
        cid2 = await gw.upsert_category(RawCategory(name_source="チェア", slug="chairs", url="https://shop.test/collections/chairs"))
        pid = await gw.upsert_product(_product(price=100), cid)
        pid2 = await gw.upsert_product(_product(price=120), cid)
        return cid, cid2, pid, pid2

    cid, cid2, pid, pid2 = asyncio.run(scenario())
    assert cid == cid2
    assert pid == pid2
    assert len(gw.categories) == 1
    assert len(gw.products) == 1
    assert gw.products["https://shop.test/products/stool"]["price"] == 120


def test_in_memory_lookups_return_copies():
    gw = InMemoryCatalogGateway()
    asyncio.run(gw.upsert_product(_product(specs_source={"サイズ": "W400"}), 1))
    row = asyncio.run(gw.get_product_by_detail_url("https://shop.test/products/stool"))
    row["specs_source"]["サイズ"] = "changed"
    again = asyncio.run(gw.get_product_by_detail_url("https://shop.test/products/stool"))
    assert again["specs_source"] == {"サイズ": "W400"}
    assert asyncio.run(gw.get_category_by_slug("missing")) is None


def test_graph_upsert_product_encodes_nested_fields(monkeypatch):
    calls = []

    def fake_run_cypher(query, params=None):
        calls.append((query, params))
        return [{"id": params["detail_url"]}]

    monkeypatch.setattr(catalog, "run_cypher", fake_run_cypher)
    product = _product(
        specs_source={"素材": "スチール"},
        color_options=[ColorOption("ホワイト", "화이트")],
    )
    assert catalog.upsert_product(product, "chairs") == "https://shop.test/products/stool"

    query, params = calls[0]
    assert "MERGE (p:Product {detail_url: $detail_url})" in query
    assert "MERGE (p)-[:IN_CATEGORY]->(c)" in query
    assert params["category_slug"] == "chairs"
    assert json.loads(params["specs_source"]) == {"素材": "スチール"}
    assert json.loads(params["color_options"]) == [{"name_source": "ホワイト", "name_target": "화이트"}]
    assert params["specs_target"] is None


def test_graph_lookup_decodes_nested_fields(monkeypatch):
    row = {
        "detail_url": "https://shop.test/products/stool",
        "name_source": "スツール",
        "name_target": "스툴",
        "specs_source": '{"素材": "スチール"}',
        "specs_target": "not json",
        "color_options": None,
    }
    monkeypatch.setattr(catalog, "run_cypher", lambda q, p=None: [row])
    out = catalog.get_product_by_detail_url("https://shop.test/products/stool")
    assert out["specs_source"] == {"素材": "スチール"}
    assert out["specs_target"] is None
    assert out["name_target"] == "스툴"
    assert catalog.get_product_by_detail_url("") is None


def test_graph_gateway_runs_catalog_functions(monkeypatch):
    calls = []

    def fake_run_cypher(query, params=None):
        calls.append(query)
        if query.startswith("MERGE (c:Category"):
            return [{"id": params["slug"]}]
        return []

    monkeypatch.setattr(catalog, "run_cypher", fake_run_cypher)
    gw = catalog.GraphCatalogGateway()

    async def scenario():
        cid = await gw.upsert_category(RawCategory(name_source="チェア", slug="chairs", url="https://shop.test/collections/chairs"))
        prior = await gw.get_category_by_slug("chairs")
        return cid, prior

    cid, prior = asyncio.run(scenario())
    assert cid == "chairs"
    assert prior is None
    assert len(calls) == 2
