"""Schema detection, mapping suggestion and validation endpoints."""

import os

from fastapi import APIRouter, Depends

from ...models.record import tag_records
from ...services.llm_inference import MappingAssistant
from ...services.transformer import RecordTransformer
from ..models import (
    DataValidationResponse,
    DetectedFieldModel,
    MappingSuggestionModel,
    SampleRowsRequest,
    SchemaDetectionResponse,
    SuggestMappingsRequest,
    SuggestMappingsResponse,
    TransformPreviewRequest,
    TransformPreviewResponse,
    ValidateDataRequest,
    ValidationIssueModel,
)

router = APIRouter()


def get_mapping_assistant() -> MappingAssistant:
    """Mapping assistant configured from LLM_* environment variables."""
    return MappingAssistant(
        provider=os.environ.get("LLM_PROVIDER", "openai"),
        model=os.environ.get("LLM_MODEL", "gpt-4o"),
    )


@router.post("/detect-schema", response_model=SchemaDetectionResponse)
async def detect_schema(
    request: SampleRowsRequest,
    assistant: MappingAssistant = Depends(get_mapping_assistant)
):
    """Detect column types and the POS vendor of an uploaded export."""
    result = await assistant.detect_schema(request.rows)
    return SchemaDetectionResponse(
        fields=[DetectedFieldModel(**f.to_dict()) for f in result.fields],
        detected_source=result.detected_source,
        confidence=result.confidence,
    )


@router.post("/suggest", response_model=SuggestMappingsResponse)
async def suggest_mappings(
    request: SuggestMappingsRequest,
    assistant: MappingAssistant = Depends(get_mapping_assistant)
):
    """Suggest a target field for each source column."""
    suggestions = await assistant.suggest_mappings(
        request.source_fields,
        request.rows,
        request.detected_source,
    )
    return SuggestMappingsResponse(
        suggestions=[MappingSuggestionModel(**s.to_dict()) for s in suggestions],
    )


@router.post("/validate", response_model=DataValidationResponse)
async def validate_data(
    request: ValidateDataRequest,
    assistant: MappingAssistant = Depends(get_mapping_assistant)
):
    """Check a mapped sample before migration."""
    mappings = [m.to_field_mapping() for m in request.mappings]
    result = await assistant.validate_data(request.rows, mappings)
    return DataValidationResponse(
        is_valid=result.is_valid,
        errors=[ValidationIssueModel(**e.to_dict()) for e in result.errors],
        warnings=[ValidationIssueModel(**w.to_dict()) for w in result.warnings],
    )


@router.post("/transform", response_model=TransformPreviewResponse)
async def preview_transform(request: TransformPreviewRequest):
    """Transform and validate rows without touching the store."""
    mappings = [m.to_field_mapping() for m in request.mappings]
    records = tag_records(request.rows, request.resource_kind)
    outcome = RecordTransformer().validate_and_transform(mappings, records)
    return TransformPreviewResponse(
        valid_count=len(outcome.valid_data),
        invalid_count=len(outcome.invalid_data),
        valid_data=[r.data for r in outcome.valid_data],
        invalid_data=[r.to_dict() for r in outcome.invalid_data],
        log=outcome.log,
    )
