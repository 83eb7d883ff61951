"""LLM-assisted schema detection and mapping suggestions."""

import asyncio
import json
import logging
import os
import re
from collections import Counter
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from ..models.mapping import (
    TARGET_FIELDS,
    DataValidationResult,
    DetectedField,
    FieldMapping,
    MappingSuggestion,
    SchemaDetectionResult,
    find_target_field,
)
from ..models.record import ValidationError, ValidationErrorType
from .transformer import validate_mappings

logger = logging.getLogger(__name__)

SCHEMA_TIMEOUT_SECONDS = 30.0
SUGGESTION_TIMEOUT_SECONDS = 10.0
VALIDATION_TIMEOUT_SECONDS = 10.0

REQUIRED_TARGET_FIELDS = ("title", "sku")

# Keyword patterns for rule-based mapping: target -> (keywords, confidence)
MAPPING_PATTERNS: Dict[str, tuple] = {
    "title": (["name", "title", "product_name", "item_name"], 90),
    "description": (["description", "desc", "details"], 95),
    "sku": (["sku", "code", "item_code", "product_code"], 95),
    "price": (["price", "cost", "amount"], 90),
    "vendor": (["vendor", "brand", "manufacturer"], 85),
    "inventory_quantity": (["quantity", "qty", "stock", "inventory"], 85),
    "tags": (["tags", "category", "categories"], 80),
    "barcode": (["barcode", "upc", "ean", "gtin"], 90),
    "first_name": (["first_name", "fname", "first"], 95),
    "last_name": (["last_name", "lname", "last", "surname"], 95),
    "email": (["email", "mail", "email_address"], 95),
    "phone": (["phone", "telephone", "mobile", "cell"], 90),
    "order_number": (["order_number", "order_id", "receipt"], 85),
    "total_price": (["total", "grand_total", "order_total"], 85),
}

# Header columns characteristic of each POS vendor's export
SOURCE_SIGNATURES: Dict[str, List[str]] = {
    "square": ["token", "item name", "variation name", "sku", "price"],
    "lightspeed": ["system id", "custom sku", "manufact. sku", "default cost"],
    "clover": ["clover id", "name", "price type", "alternate name"],
    "heartland": ["item #", "item description", "primary vendor", "on hand"],
}

_NUMBER_PATTERN = re.compile(r"^-?\d+\.?\d*$")
_JSON_PATTERN = re.compile(r"[\[{][\s\S]*[\]}]")


class MappingAssistant:
    """
    Schema detection, mapping suggestions and data checks backed by an LLM.

    Every call is bounded by a timeout. On timeout, provider error, missing
    credentials or an unparseable reply, the assistant answers from local
    keyword and pattern rules instead.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        provider: str = "openai",
        schema_timeout: float = SCHEMA_TIMEOUT_SECONDS,
        suggestion_timeout: float = SUGGESTION_TIMEOUT_SECONDS,
        validation_timeout: float = VALIDATION_TIMEOUT_SECONDS
    ):
        """
        Initialize the mapping assistant.

        Args:
            api_key: API key for the LLM provider
            model: Model to use
            provider: LLM provider (openai, anthropic, google)
            schema_timeout: Seconds allowed for schema detection
            suggestion_timeout: Seconds allowed for mapping suggestions
            validation_timeout: Seconds allowed for data validation
        """
        env_keys = {
            "openai": "OPENAI_API_KEY",
            "anthropic": "ANTHROPIC_API_KEY",
            "google": "GOOGLE_API_KEY",
        }
        self.api_key = api_key or os.environ.get(env_keys.get(provider, "OPENAI_API_KEY"))
        self.model = model
        self.provider = provider
        self.schema_timeout = schema_timeout
        self.suggestion_timeout = suggestion_timeout
        self.validation_timeout = validation_timeout

    async def _ask(self, prompt: str, timeout: float) -> Any:
        """Run a blocking LLM call off the event loop, bounded by timeout."""
        if not self.api_key:
            raise RuntimeError(f"No API key configured for {self.provider}")
        return await asyncio.wait_for(
            asyncio.to_thread(self._call_llm, prompt, True),
            timeout=timeout,
        )

    async def detect_schema(self, rows: List[Dict[str, Any]]) -> SchemaDetectionResult:
        """
        Detect column types and the POS vendor of an export.

        Args:
            rows: Sample rows of the export

        Returns:
            SchemaDetectionResult
        """
        if not rows:
            return SchemaDetectionResult()

        sample = rows[:3]
        prompt = self._build_schema_prompt(sample, list(rows[0].keys()))

        try:
            response = await self._ask(prompt, self.schema_timeout)
            return self._parse_schema_response(response)
        except asyncio.TimeoutError:
            logger.warning(f"Schema detection timed out after {self.schema_timeout}s, using fallback")
        except Exception as e:
            logger.warning(f"Schema detection failed: {e}")

        return self.fallback_schema_detection(rows)

    async def suggest_mappings(
        self,
        source_fields: List[str],
        rows: List[Dict[str, Any]],
        detected_source: str = "unknown"
    ) -> List[MappingSuggestion]:
        """
        Suggest a target field for each source column.

        Args:
            source_fields: Column names of the export
            rows: Sample rows for context
            detected_source: POS vendor from schema detection

        Returns:
            One suggestion per source field; unmatched fields get an empty target
        """
        prompt = self._build_mapping_prompt(source_fields[:20], rows[:2], detected_source)

        try:
            response = await self._ask(prompt, self.suggestion_timeout)
            suggestions = self._parse_mapping_response(response, source_fields)
            if suggestions:
                return suggestions
            logger.warning("LLM returned no usable mapping suggestions, using fallback")
        except asyncio.TimeoutError:
            logger.warning(f"Mapping suggestion timed out after {self.suggestion_timeout}s, using fallback")
        except Exception as e:
            logger.warning(f"Mapping suggestion failed: {e}")

        return self.fallback_mapping_suggestions(source_fields)

    async def validate_data(
        self,
        rows: List[Dict[str, Any]],
        mappings: List[FieldMapping]
    ) -> DataValidationResult:
        """
        Review a mapped sample for problems before migration.

        Local checks (mapping invariants, required fields, duplicate SKUs)
        always run; LLM findings are added to them when available.
        """
        result = self.fallback_validation(rows, mappings)

        mapped_sample = []
        for row in rows[:10]:
            mapped_sample.append({
                m.target_field: row.get(m.source_field) for m in mappings if m.is_mapped
            })
        prompt = self._build_validation_prompt(mapped_sample, mappings)

        try:
            response = await self._ask(prompt, self.validation_timeout)
            extra = self._parse_validation_response(response)
            result.errors.extend(extra.errors)
            result.warnings.extend(extra.warnings)
        except asyncio.TimeoutError:
            logger.warning(f"Data validation timed out after {self.validation_timeout}s, using local checks")
        except Exception as e:
            logger.warning(f"Data validation failed: {e}")

        return result

    def _build_schema_prompt(self, sample: List[Dict[str, Any]], fields: List[str]) -> str:
        """Build prompt for schema detection."""
        return f"""
Analyze this point-of-sale export and detect its schema.

Sample data:
{json.dumps(sample, indent=2, default=str)}

Fields: {', '.join(fields)}

Respond in JSON format:
{{
    "fields": [
        {{
            "name": "field_name",
            "type": "string|number|date|email|phone|currency|boolean",
            "confidence": 0-100,
            "sample_values": ["val1", "val2", "val3"]
        }}
    ],
    "detected_source": "square|lightspeed|clover|heartland|unknown",
    "confidence": 0-100
}}
"""

    def _build_mapping_prompt(
        self,
        source_fields: List[str],
        sample: List[Dict[str, Any]],
        detected_source: str
    ) -> str:
        """Build prompt for mapping suggestions."""
        targets = "\n".join(f"- {t.id}: {t.label} ({t.type})" for t in TARGET_FIELDS)
        return f"""
Map columns of a {detected_source} POS export to commerce fields.

Source fields: {', '.join(source_fields)}

Sample data:
{json.dumps(sample, indent=2, default=str)}

Target fields:
{targets}

Return a JSON array, one entry per source field:
[
    {{
        "source_field": "source column",
        "suggested_mapping": "target field id or empty string",
        "confidence": 0-100,
        "reasoning": "Why this mapping makes sense"
    }}
]
"""

    def _build_validation_prompt(
        self,
        mapped_sample: List[Dict[str, Any]],
        mappings: List[FieldMapping]
    ) -> str:
        """Build prompt for data validation."""
        return f"""
Review this mapped commerce data for import problems.

Mappings:
{json.dumps([m.to_dict() for m in mappings], indent=2)}

Mapped sample:
{json.dumps(mapped_sample, indent=2, default=str)}

Respond in JSON format:
{{
    "errors": [{{"field": "...", "type": "required|format|duplicate|invalid", "message": "..."}}],
    "warnings": [{{"field": "...", "message": "..."}}]
}}
"""

    def _call_llm(self, prompt: str, expect_json: bool = False) -> Any:
        """Call the LLM API."""
        if self.provider == "openai":
            return self._call_openai(prompt, expect_json)
        elif self.provider == "anthropic":
            return self._call_anthropic(prompt, expect_json)
        elif self.provider == "google":
            return self._call_google(prompt, expect_json)
        else:
            raise ValueError(f"Unsupported provider: {self.provider}")

    def _call_openai(self, prompt: str, expect_json: bool = False) -> Any:
        """Call OpenAI API."""
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required for OpenAI inference")

        client = openai.OpenAI(api_key=self.api_key)

        kwargs = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.1,
            "max_tokens": 4096,
        }

        response = client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content

        return self._extract_json(content) if expect_json else content

    def _call_anthropic(self, prompt: str, expect_json: bool = False) -> Any:
        """Call Anthropic API."""
        try:
            import anthropic
        except ImportError:
            raise ImportError("anthropic package required for Anthropic inference")

        client = anthropic.Anthropic(api_key=self.api_key)

        response = client.messages.create(
            model=self.model,
            max_tokens=4096,
            messages=[{"role": "user", "content": prompt}]
        )
        content = response.content[0].text

        return self._extract_json(content) if expect_json else content

    def _call_google(self, prompt: str, expect_json: bool = False) -> Any:
        """Call Google Gemini API."""
        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError("google-generativeai package required for Google inference")

        genai.configure(api_key=self.api_key)
        model = genai.GenerativeModel(self.model)

        response = model.generate_content(prompt)
        content = response.text

        return self._extract_json(content) if expect_json else content

    def _extract_json(self, content: str) -> Any:
        json_match = _JSON_PATTERN.search(content or "")
        if not json_match:
            raise ValueError("LLM response contained no JSON")
        return json.loads(json_match.group())

    def _parse_schema_response(self, response: Any) -> SchemaDetectionResult:
        """Parse LLM response into SchemaDetectionResult."""
        if not isinstance(response, dict):
            raise ValueError("Schema response is not an object")

        fields = []
        for item in response.get("fields", []):
            fields.append(DetectedField(
                name=item.get("name", ""),
                type=item.get("type", "string"),
                confidence=int(item.get("confidence", 70)),
                sample_values=[str(v) for v in item.get("sample_values", item.get("sampleValues", []))],
            ))

        return SchemaDetectionResult(
            fields=fields,
            detected_source=response.get("detected_source", response.get("detectedSource", "unknown")),
            confidence=int(response.get("confidence", 50)),
        )

    def _parse_mapping_response(
        self,
        response: Any,
        source_fields: List[str]
    ) -> List[MappingSuggestion]:
        """Parse LLM response into suggestions, dropping unknown fields."""
        if isinstance(response, dict):
            response = response.get("mappings", response.get("suggestions", []))

        if not isinstance(response, list):
            return []

        known_sources = set(source_fields)
        suggestions = []
        seen = set()

        for item in response:
            mapping = FieldMapping.from_dict(item)
            if mapping.source_field not in known_sources or mapping.source_field in seen:
                continue
            target = mapping.target_field if find_target_field(mapping.target_field) else ""
            seen.add(mapping.source_field)
            suggestions.append(MappingSuggestion(
                source_field=mapping.source_field,
                suggested_mapping=target,
                confidence=mapping.confidence if target else 0,
                reasoning=mapping.reasoning or "AI-based mapping",
            ))

        return suggestions

    def _parse_validation_response(self, response: Any) -> DataValidationResult:
        """Parse LLM response into a validation result."""
        result = DataValidationResult()
        if not isinstance(response, dict):
            return result

        for item in response.get("errors", []):
            try:
                error_type = ValidationErrorType(item.get("type", "invalid"))
            except ValueError:
                error_type = ValidationErrorType.INVALID
            result.errors.append(ValidationError(
                field=item.get("field", ""),
                message=item.get("message", ""),
                error_type=error_type,
            ))

        for item in response.get("warnings", []):
            result.warnings.append(ValidationError(
                field=item.get("field", ""),
                message=item.get("message", ""),
                severity="warning",
            ))

        return result

    def fallback_schema_detection(self, rows: List[Dict[str, Any]]) -> SchemaDetectionResult:
        """Rule-based schema detection without LLM."""
        if not rows:
            return SchemaDetectionResult()

        fields = []
        for name in rows[0].keys():
            values = [str(row.get(name)) for row in rows[:5] if row.get(name) not in (None, "")]
            fields.append(DetectedField(
                name=name,
                type=self.infer_type(values),
                confidence=70,
                sample_values=values[:3],
            ))

        source, confidence = self.detect_source(list(rows[0].keys()))

        return SchemaDetectionResult(
            fields=fields,
            detected_source=source,
            confidence=confidence,
        )

    def fallback_mapping_suggestions(self, source_fields: List[str]) -> List[MappingSuggestion]:
        """Keyword-based mapping suggestions without LLM."""
        suggestions = []

        for source_field in source_fields:
            lower = source_field.lower().strip().replace(" ", "_")
            best_target = ""
            best_confidence = 0
            best_keyword = ""

            if find_target_field(lower):
                best_target, best_confidence, best_keyword = lower, 100, lower

            for target, (keywords, confidence) in MAPPING_PATTERNS.items():
                for keyword in keywords:
                    if keyword in lower and confidence > best_confidence:
                        best_target, best_confidence, best_keyword = target, confidence, keyword

            if best_target:
                suggestions.append(MappingSuggestion(
                    source_field=source_field,
                    suggested_mapping=best_target,
                    confidence=best_confidence,
                    reasoning=f'Pattern match: {source_field} contains "{best_keyword}"',
                ))
            else:
                suggestions.append(MappingSuggestion(
                    source_field=source_field,
                    suggested_mapping="",
                    confidence=0,
                    reasoning="No clear pattern match found",
                ))

        return suggestions

    def fallback_validation(
        self,
        rows: List[Dict[str, Any]],
        mappings: List[FieldMapping]
    ) -> DataValidationResult:
        """Required-field, mapping and duplicate-SKU checks without LLM."""
        result = validate_mappings(mappings)
        targets = {m.target_field for m in mappings if m.is_mapped}

        for required in REQUIRED_TARGET_FIELDS:
            if required not in targets:
                result.errors.append(ValidationError(
                    field=required,
                    message=f"Required field '{required}' is not mapped",
                    error_type=ValidationErrorType.REQUIRED,
                    suggested_fix=f"Map a source field to {required}",
                ))

        sku_sources = [m.source_field for m in mappings if m.target_field == "sku"]
        if sku_sources:
            skus = [
                str(row.get(sku_sources[0])).strip()
                for row in rows
                if row.get(sku_sources[0]) not in (None, "")
            ]
            for sku, count in Counter(skus).items():
                if count > 1:
                    result.errors.append(ValidationError(
                        field="sku",
                        message=f"SKU '{sku}' appears {count} times",
                        error_type=ValidationErrorType.DUPLICATE,
                        value=sku,
                    ))

        return result

    def infer_type(self, values: List[str]) -> str:
        """Infer a column type from sample values."""
        if not values:
            return "string"
        if any("@" in v for v in values):
            return "email"
        if any(_NUMBER_PATTERN.match(v) for v in values):
            return "number"
        if any(self._is_date(v) for v in values):
            return "date"
        return "string"

    def _is_date(self, value: str) -> bool:
        try:
            date_parser.parse(value)
            return True
        except (ValueError, OverflowError):
            return False

    def detect_source(self, headers: List[str]) -> tuple:
        """Guess the POS vendor from export headers."""
        lowered = {h.lower().strip() for h in headers}
        best_source, best_hits = "unknown", 0

        for source, signature in SOURCE_SIGNATURES.items():
            hits = sum(1 for column in signature if column in lowered)
            if hits > best_hits:
                best_source, best_hits = source, hits

        if best_hits < 2:
            return "unknown", 50
        return best_source, min(90, 50 + best_hits * 10)
