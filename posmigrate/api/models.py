"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..models.mapping import FieldMapping
from ..models.migration import MigrationPriority
from ..models.record import ResourceKind


# Mapping models
class FieldMappingModel(BaseModel):
    source_field: str
    target_field: str = ""
    confidence: int = 0
    reasoning: str = ""

    def to_field_mapping(self) -> FieldMapping:
        return FieldMapping.from_dict(self.model_dump())


class SampleRowsRequest(BaseModel):
    rows: List[Dict[str, Any]]


class DetectedFieldModel(BaseModel):
    name: str
    type: str
    confidence: int
    sample_values: List[str] = Field(default_factory=list)


class SchemaDetectionResponse(BaseModel):
    fields: List[DetectedFieldModel]
    detected_source: str
    confidence: int


class SuggestMappingsRequest(BaseModel):
    source_fields: List[str]
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    detected_source: str = "unknown"


class MappingSuggestionModel(BaseModel):
    source_field: str
    suggested_mapping: str
    confidence: int
    reasoning: str


class SuggestMappingsResponse(BaseModel):
    suggestions: List[MappingSuggestionModel]


class ValidateDataRequest(BaseModel):
    rows: List[Dict[str, Any]]
    mappings: List[FieldMappingModel]


class ValidationIssueModel(BaseModel):
    field: str
    message: str
    error_type: str
    severity: str = "error"
    value: Any = None
    suggested_fix: Optional[str] = None


class DataValidationResponse(BaseModel):
    is_valid: bool
    errors: List[ValidationIssueModel]
    warnings: List[ValidationIssueModel]


class TransformPreviewRequest(BaseModel):
    rows: List[Dict[str, Any]]
    mappings: List[FieldMappingModel]
    resource_kind: ResourceKind = ResourceKind.PRODUCT


class TransformPreviewResponse(BaseModel):
    valid_count: int
    invalid_count: int
    valid_data: List[Dict[str, Any]]
    invalid_data: List[Dict[str, Any]]
    log: List[str]


# Migration models
class RecordModel(BaseModel):
    data: Dict[str, Any]
    resource_kind: ResourceKind = ResourceKind.PRODUCT
    id: Optional[str] = None


class MigrationCreate(BaseModel):
    records: List[RecordModel]
    mappings: List[FieldMappingModel]
    priority: MigrationPriority = MigrationPriority.BALANCED
    resource_kinds: List[ResourceKind] = Field(
        default_factory=lambda: [ResourceKind.PRODUCT, ResourceKind.CUSTOMER, ResourceKind.ORDER]
    )
    test_mode: bool = False
    dry_run: bool = True
    shop_domain: Optional[str] = None
    access_token: Optional[str] = None
    webhook_base_url: Optional[str] = None


class MigrationStepModel(BaseModel):
    id: str
    name: str
    description: str
    status: str
    progress: float
    estimated_time_seconds: int
    errors: List[str]
    resource_kind: Optional[str] = None
    strategy: Optional[str] = None


class MigrationResponse(BaseModel):
    id: str
    status: str
    strategy: str
    total_records: int
    estimated_duration_seconds: int
    overall_progress: float
    steps: List[MigrationStepModel]
    progress: Optional[Dict[str, Any]] = None


class MigrationListResponse(BaseModel):
    migrations: List[MigrationResponse]
    total: int


class MigrationReportResponse(BaseModel):
    id: str
    status: str
    analytics: Optional[Dict[str, Any]] = None
    integrity: Optional[Dict[str, Any]] = None
    validation: Optional[Dict[str, Any]] = None
