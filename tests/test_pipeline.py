import json
import os
import tempfile

from app.services.crawl import runner
from app.services.crawl.pipeline import write_jsonl


def _read(path):
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def test_write_jsonl_dedupes_by_natural_key():
    records = [
        {"detail_url": "https://shop.test/products/a", "name_source": "A"},
        {"detail_url": "https://shop.test/products/a", "name_source": "A (dup)"},
        {"slug": "chairs", "name_source": "チェア"},
        {"slug": "chairs", "name_source": "チェア"},
        {"note": "x"},
        {"note": "x"},
        {"note": "y"},
    ]
    with tempfile.TemporaryDirectory() as tmpdir:
        out = write_jsonl(records, out_dir=os.path.join(tmpdir, "catalog"), filename_prefix="products")
        assert os.path.isfile(out)
        assert os.path.basename(out).startswith("products-")
        lines = _read(out)
    assert [l.get("name_source") or l.get("note") for l in lines] == ["A", "チェア", "x", "y"]


def test_runner_detail_from_file(capsys):
    path = os.path.join(os.path.dirname(__file__), "fixtures", "catalog_detail.html")
    assert runner.main(["detail", "--file", path]) == 0
    detail = json.loads(capsys.readouterr().out)
    assert detail["product_code"] == "ST200"
    assert detail["sale_price"] == 3200


def test_runner_dry_run_writes_staging_files(monkeypatch, tmp_path):
    from app.services.crawl.base import RawCategory
    from app.services.crawl.status import IngestionStatusTracker

    async def fake_run_ingest(settings, *, tracker=None, gateway=None, **kwargs):
        await gateway.upsert_category(
            RawCategory(name_source="チェア", slug="chairs", url="https://shop.test/collections/chairs")
        )
        return tracker.complete({})

    monkeypatch.setattr(runner, "run_ingest", fake_run_ingest)
    monkeypatch.setattr(runner, "get_tracker", IngestionStatusTracker)
    assert runner.main(["ingest", "--dry-run", "--out-dir", str(tmp_path)]) == 0
    files = sorted(os.listdir(tmp_path))
    assert any(name.startswith("categories-") for name in files)
    assert any(name.startswith("products-") for name in files)
    categories_file = [name for name in files if name.startswith("categories-")][0]
    assert _read(os.path.join(tmp_path, categories_file))[0]["slug"] == "chairs"
