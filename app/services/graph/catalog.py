import asyncio
import json
from typing import Any, Dict, Optional

from app.db.neo4j_connector import run_cypher
from app.services.crawl.base import ProductRecord, RawCategory
from app.services.crawl.gateway import CatalogGateway

# Neo4j properties cannot hold maps or lists of maps; these go in as JSON text.
_JSON_FIELDS = ("specs_source", "specs_target", "color_options", "scene_images")


def _decode_json_fields(row: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(row)
    for key in _JSON_FIELDS:
        raw = out.get(key)
        if isinstance(raw, str):
            try:
                out[key] = json.loads(raw)
            except ValueError:
                out[key] = None
    return out


def get_category_by_slug(slug: str) -> Optional[Dict[str, Any]]:
    if not slug:
        return None
    q = (
        "MATCH (c:Category {slug: $slug}) "
        "RETURN c.slug AS slug, c.name_source AS name_source, c.name_target AS name_target"
    )
    res = run_cypher(q, {"slug": slug})
    return res[0] if res else None


def upsert_category(category: RawCategory) -> Optional[str]:
    """MERGE a Category on its slug; re-ingesting unchanged data only moves updated_at."""
    query = (
        "MERGE (c:Category {slug: $slug}) "
        "SET c.name_source = $name_source, "
        "    c.name_target = $name_target, "
        "    c.url = $url, "
        "    c.image_url = $image_url, "
        "    c.updated_at = datetime() "
        "RETURN c.slug AS id"
    )
    res = run_cypher(query, category.to_dict())
    return res[0]["id"] if res else None


def get_product_by_detail_url(detail_url: str) -> Optional[Dict[str, Any]]:
    if not detail_url:
        return None
    q = (
        "MATCH (p:Product {detail_url: $url}) "
        "RETURN p.detail_url AS detail_url, p.name_source AS name_source, p.name_target AS name_target, "
        "       p.description_source AS description_source, p.description_target AS description_target, "
        "       p.material_source AS material_source, p.material_target AS material_target, "
        "       p.specs_source AS specs_source, p.specs_target AS specs_target, "
        "       p.color_options AS color_options, p.scene_images AS scene_images, "
        "       p.image_url AS image_url, p.image_gallery AS image_gallery, "
        "       p.model_number AS model_number, p.weight AS weight, "
        "       p.regular_price AS regular_price, p.special_notes AS special_notes"
    )
    res = run_cypher(q, {"url": detail_url})
    return _decode_json_fields(res[0]) if res else None


def upsert_product(product: ProductRecord, category_id: Optional[str]) -> Optional[str]:
    """MERGE a Product on detail_url and (re)link it to its category."""
    params = product.to_dict()
    for key in _JSON_FIELDS:
        params[key] = json.dumps(params[key], ensure_ascii=False) if params.get(key) else None
    params["category_slug"] = category_id or product.category_slug
    query = (
        "MERGE (p:Product {detail_url: $detail_url}) "
        "SET p.name_source = $name_source, p.name_target = $name_target, "
        "    p.product_code = $product_code, p.model_number = $model_number, "
        "    p.image_url = $image_url, p.image_gallery = $image_gallery, "
        "    p.price = $price, p.regular_price = $regular_price, p.sale_price = $sale_price, "
        "    p.dimensions = $dimensions, p.weight = $weight, "
        "    p.description_source = $description_source, p.description_target = $description_target, "
        "    p.material_source = $material_source, p.material_target = $material_target, "
        "    p.specs_source = $specs_source, p.specs_target = $specs_target, "
        "    p.color_options = $color_options, p.scene_images = $scene_images, "
        "    p.special_notes = $special_notes, p.updated_at = datetime() "
        "WITH p "
        "OPTIONAL MATCH (p)-[old:IN_CATEGORY]->(:Category) DELETE old "
        "WITH DISTINCT p "
        "MATCH (c:Category {slug: $category_slug}) "
        "MERGE (p)-[:IN_CATEGORY]->(c) "
        "RETURN p.detail_url AS id"
    )
    res = run_cypher(query, params)
    return res[0]["id"] if res else product.detail_url


class GraphCatalogGateway(CatalogGateway):
    """Neo4j-backed gateway; the sync driver calls run off the event loop."""

    async def get_category_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(get_category_by_slug, slug)

    async def upsert_category(self, category: RawCategory) -> Any:
        return await asyncio.to_thread(upsert_category, category)

    async def get_product_by_detail_url(self, detail_url: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(get_product_by_detail_url, detail_url)

    async def upsert_product(self, product: ProductRecord, category_id: Any) -> Any:
        return await asyncio.to_thread(upsert_product, product, category_id)
