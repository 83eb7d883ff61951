import json

import pytest

from posmigrate.cli import load_mappings, load_records, main
from posmigrate.models.record import ResourceKind

PRODUCTS = [
    {"id": "p1", "item_name": "Widget", "item_sku": "W-1", "item_price": "9.50"},
    {"id": "p2", "item_name": "Gadget", "item_sku": "G-1", "item_price": "12"},
]
CUSTOMERS = [{"id": "c1", "email": "ann@example.com"}]
MAPPINGS = {"mappings": [
    {"source_field": "item_name", "target_field": "title", "confidence": 90},
    {"source_field": "item_sku", "target_field": "sku", "confidence": 95},
    {"source_field": "item_price", "target_field": "price", "confidence": 90},
    {"source_field": "email", "target_field": "email", "confidence": 95},
    {"source_field": "id", "target_field": "", "confidence": 0},
]}


def write_json(path, data) -> str:
    path.write_text(json.dumps(data))
    return str(path)


@pytest.fixture
def files(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return {
        "products": write_json(tmp_path / "products.json", PRODUCTS),
        "customers": write_json(tmp_path / "customers.json", CUSTOMERS),
        "mapping": write_json(tmp_path / "mapping.json", MAPPINGS),
        "config": write_json(tmp_path / "config.json", {
            "commerce": {"shop_domain": "test-shop"},
            "output_dir": str(tmp_path / "out"),
            "retry_base_delay": 0,
        }),
    }


@pytest.mark.unit
class TestLoaders:
    def test_load_records_tags_kinds(self, files) -> None:
        records = load_records([files["products"], f"customers={files['customers']}"])

        assert [r.resource_kind for r in records] == [
            ResourceKind.PRODUCT, ResourceKind.PRODUCT, ResourceKind.CUSTOMER
        ]
        assert [r.id for r in records] == ["product:p1", "product:p2", "customer:c1"]

    def test_load_mappings_accepts_wrapped_list(self, files) -> None:
        mappings = load_mappings(files["mapping"])

        assert len(mappings) == 5
        assert not mappings[-1].is_mapped


@pytest.mark.unit
class TestCommands:
    """End-to-end command runs with dry-run commerce settings."""

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_plan(self, files, capsys) -> None:
        code = main([
            "plan", "--input", files["products"], "--input", f"customer={files['customers']}",
            "--mapping", files["mapping"], "--config", files["config"],
        ])

        out = capsys.readouterr().out
        assert code == 0
        assert "Strategy: batch" in out
        assert "Records: 3" in out

    def test_dry_run(self, files, capsys) -> None:
        code = main([
            "run", "--input", files["products"], "--input", f"customer={files['customers']}",
            "--mapping", files["mapping"], "--config", files["config"], "--dry-run",
        ])

        out = capsys.readouterr().out
        assert code == 0
        assert "Status: completed" in out
        assert "Succeeded: 3" in out
        assert "Integrity: 100.0%" in out

    def test_suggest_writes_mappings(self, files, tmp_path) -> None:
        output = tmp_path / "suggested.json"

        assert main(["suggest", "--input", files["products"], "--output", str(output)]) == 0

        suggested = {m["source_field"]: m["target_field"] for m in json.loads(output.read_text())}
        assert suggested["item_name"] == "title"
        assert suggested["item_price"] == "price"

    def test_verify(self, tmp_path, capsys) -> None:
        original = write_json(tmp_path / "original.json", [{"sku": "A", "price": 10}, {"sku": "B"}])
        migrated = write_json(tmp_path / "migrated.json", [{"sku": "A", "price": "10.00"}])

        code = main(["verify", "--original", original, "--migrated", migrated])

        report = json.loads(capsys.readouterr().out)
        assert code == 1
        assert report["integrity_percent"] == 50
        assert report["missing_records"] == [{"sku": "B"}]
