import time
from unittest.mock import patch

import pytest

from posmigrate.models.mapping import FieldMapping
from posmigrate.models.record import ValidationErrorType
from posmigrate.services.llm_inference import MappingAssistant

SQUARE_ROWS = [
    {"Token": "T1", "Item Name": "Widget", "Variation Name": "Regular", "SKU": "W-1", "Price": "9.50"},
    {"Token": "T2", "Item Name": "Gadget", "Variation Name": "Large", "SKU": "G-1", "Price": "12.00"},
]


@pytest.fixture
def offline_assistant(monkeypatch) -> MappingAssistant:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return MappingAssistant()


@pytest.fixture
def assistant() -> MappingAssistant:
    return MappingAssistant(api_key="test-key", suggestion_timeout=0.05)


@pytest.mark.unit
class TestFallbackRules:
    """Keyword and pattern rules used without an LLM."""

    def test_mapping_keywords(self, offline_assistant) -> None:
        suggestions = offline_assistant.fallback_mapping_suggestions(
            ["Item Name", "qty", "Email Address", "price", "Item Code", "zzz"]
        )

        assert [(s.suggested_mapping, s.confidence) for s in suggestions] == [
            ("title", 90),
            ("inventory_quantity", 85),
            ("email", 95),
            ("price", 100),
            ("sku", 95),
            ("", 0),
        ]
        assert suggestions[0].reasoning == 'Pattern match: Item Name contains "name"'
        assert suggestions[-1].reasoning == "No clear pattern match found"

    def test_detect_source_from_headers(self, offline_assistant) -> None:
        assert offline_assistant.detect_source(list(SQUARE_ROWS[0].keys())) == ("square", 90)
        assert offline_assistant.detect_source(["name", "price"]) == ("unknown", 50)

    def test_infer_type(self, offline_assistant) -> None:
        assert offline_assistant.infer_type(["a@example.com"]) == "email"
        assert offline_assistant.infer_type(["12.5", "3"]) == "number"
        assert offline_assistant.infer_type(["2024-01-05"]) == "date"
        assert offline_assistant.infer_type(["hello"]) == "string"
        assert offline_assistant.infer_type([]) == "string"

    def test_required_and_duplicate_checks(self, offline_assistant) -> None:
        rows = [{"sku": "A"}, {"sku": "A"}, {"sku": "B"}]

        result = offline_assistant.fallback_validation(rows, [FieldMapping("sku", "sku")])

        assert not result.is_valid
        types = [e.error_type for e in result.errors]
        assert types.count(ValidationErrorType.REQUIRED) == 1
        assert types.count(ValidationErrorType.DUPLICATE) == 1
        assert result.errors[0].field == "title"


@pytest.mark.unit
class TestMappingAssistant:
    """LLM calls with timeouts and fallbacks."""

    @pytest.mark.asyncio
    async def test_missing_credentials_use_fallback(self, offline_assistant) -> None:
        schema = await offline_assistant.detect_schema(SQUARE_ROWS)

        assert schema.detected_source == "square"
        assert schema.field_names == list(SQUARE_ROWS[0].keys())
        assert schema.fields[4].type == "number"

    @pytest.mark.asyncio
    async def test_empty_sample(self, offline_assistant) -> None:
        schema = await offline_assistant.detect_schema([])
        assert schema.fields == []

    @pytest.mark.asyncio
    async def test_slow_llm_times_out(self, assistant) -> None:
        with patch.object(assistant, "_call_llm", side_effect=lambda *args: time.sleep(0.5)):
            suggestions = await assistant.suggest_mappings(["Item Name"], SQUARE_ROWS)

        assert suggestions[0].suggested_mapping == "title"
        assert suggestions[0].reasoning.startswith("Pattern match")

    @pytest.mark.asyncio
    async def test_provider_error_uses_fallback(self, assistant) -> None:
        with patch.object(assistant, "_call_llm", side_effect=ValueError("LLM response contained no JSON")):
            suggestions = await assistant.suggest_mappings(["qty"], [])

        assert suggestions[0].suggested_mapping == "inventory_quantity"

    @pytest.mark.asyncio
    async def test_llm_suggestions_are_filtered(self, assistant) -> None:
        reply = [
            {"source_field": "Item Name", "suggested_mapping": "title", "confidence": 92, "reasoning": "Name column"},
            {"source_field": "Unknown", "suggested_mapping": "title", "confidence": 90},
            {"source_field": "qty", "suggested_mapping": "bogus", "confidence": 80},
        ]
        with patch.object(assistant, "_call_llm", return_value=reply):
            suggestions = await assistant.suggest_mappings(["Item Name", "qty"], SQUARE_ROWS)

        assert [s.to_dict() for s in suggestions] == [
            {"source_field": "Item Name", "suggested_mapping": "title", "confidence": 92, "reasoning": "Name column"},
            {"source_field": "qty", "suggested_mapping": "", "confidence": 0, "reasoning": "AI-based mapping"},
        ]

    @pytest.mark.asyncio
    async def test_llm_schema_is_parsed(self, assistant) -> None:
        reply = {
            "fields": [{"name": "SKU", "type": "string", "confidence": 88, "sample_values": ["W-1"]}],
            "detected_source": "square",
            "confidence": 80,
        }
        with patch.object(assistant, "_call_llm", return_value=reply):
            schema = await assistant.detect_schema(SQUARE_ROWS)

        assert schema.detected_source == "square"
        assert schema.fields[0].confidence == 88

    @pytest.mark.asyncio
    async def test_llm_findings_extend_local_checks(self, assistant) -> None:
        reply = {
            "errors": [{"field": "price", "type": "weird", "message": "Prices look like cents"}],
            "warnings": [{"field": "title", "message": "Titles are upper case"}],
        }
        mappings = [FieldMapping("Item Name", "title"), FieldMapping("SKU", "sku")]
        with patch.object(assistant, "_call_llm", return_value=reply):
            result = await assistant.validate_data(SQUARE_ROWS, mappings)

        assert [e.field for e in result.errors] == ["price"]
        assert result.errors[0].error_type == ValidationErrorType.INVALID
        assert result.warnings[0].severity == "warning"

    def test_extract_json(self, assistant) -> None:
        assert assistant._extract_json('Sure! ```json\n{"a": 1}\n```') == {"a": 1}
        with pytest.raises(ValueError):
            assistant._extract_json("no json here")
