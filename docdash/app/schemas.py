"""
Pydantic domain and request/response models.

Rationale:
- The model answers in camelCase JSON and the frontend expects camelCase back,
  so every model carries camelCase aliases while Python code uses snake_case.
- Model output is untrusted: fields are lenient where the calculator checks
  each definition again, strict where a stage depends on them.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DataRecord = Dict[str, Any]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileType(str, Enum):
    PDF = "pdf"
    PNG = "png"
    JPG = "jpg"
    JPEG = "jpeg"


class ReductionStrategy(str, Enum):
    AS_IS = "asIs"
    NUMERIC_FILTER = "numericFilter"
    AI_SUMMARIZE = "aiSummarize"
    BEST_CHUNKS = "bestChunks"


class PipelineState(str, Enum):
    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    CLASSIFIED = "classified"
    EXTRACTED = "extracted"
    CONFIG_SYNTHESIZED = "config_synthesized"
    NO_DATA = "no_data"
    FAILED = "failed"


class ExtractedDocument(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    text: str
    file_name: str
    file_type: FileType
    length: int


class ReducedText(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    content: str
    was_reduced: bool = False
    strategy: ReductionStrategy = ReductionStrategy.AS_IS


class Chunk(BaseModel):
    content: str
    score: float = Field(default=0.0, ge=0)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class AvailabilityVerdict(CamelModel):
    has_data: bool
    confidence: float = 0
    reason: str = ""
    insights: List[str] = []
    data_types: List[str] = []

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(100.0, value))

    @field_validator("reason", mode="before")
    @classmethod
    def reason_to_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("insights", "data_types", mode="before")
    @classmethod
    def strings_only(cls, v: Any) -> List[str]:
        return [str(item) for item in _as_list(v) if item is not None]


class SchemaField(CamelModel):
    name: str
    type: str = "string"


class DataSchema(CamelModel):
    measures: List[SchemaField] = []
    dimensions: List[SchemaField] = []

    @field_validator("measures", "dimensions", mode="before")
    @classmethod
    def named_fields_only(cls, v: Any) -> List[Any]:
        return [item for item in _as_list(v) if isinstance(item, dict) and item.get("name")]


class ExtractionMetadata(CamelModel):
    total_records: int = 0
    data_source: str = "extracted from document"
    extraction_confidence: Optional[float] = None
    processing_method: Optional[str] = None

    @field_validator("data_source", mode="before")
    @classmethod
    def source_to_text(cls, v: Any) -> str:
        return "extracted from document" if v in (None, "") else str(v)

    @field_validator("extraction_confidence", mode="before")
    @classmethod
    def confidence_or_none(cls, v: Any) -> Optional[float]:
        if isinstance(v, str):
            v = v.strip().rstrip("%")
        try:
            return float(v)
        except (TypeError, ValueError):
            return None


class ExtractionResult(CamelModel):
    data: List[DataRecord]
    data_schema: DataSchema = Field(default_factory=DataSchema, alias="schema")
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)


class KPIDefinition(CamelModel):
    name: str
    calculation: str
    column: Optional[str] = None
    format: Optional[str] = None


class ChartDefinition(CamelModel):
    title: Optional[str] = None
    type: Optional[str] = None
    measures: List[str] = []
    dimensions: List[str] = []

    @field_validator("measures", "dimensions", mode="before")
    @classmethod
    def names_only(cls, v: Any) -> List[str]:
        return [str(item) for item in _as_list(v) if item is not None and item != ""]


class DashboardConfig(CamelModel):
    kpis: List[Any] = []
    charts: List[Any] = []
    insights: List[str] = []
    summary: Optional[str] = None

    @field_validator("kpis", "charts", mode="before")
    @classmethod
    def lists_only(cls, v: Any) -> List[Any]:
        return v if isinstance(v, list) else []

    @field_validator("insights", mode="before")
    @classmethod
    def insight_strings(cls, v: Any) -> List[str]:
        return [str(item) for item in _as_list(v) if item is not None]

    @field_validator("summary", mode="before")
    @classmethod
    def summary_to_text(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class ComputedKPI(CamelModel):
    name: str
    value: float
    formatted_value: str
    calculation: str
    column: Optional[str] = None
    format: Optional[str] = None


class ComputedChart(CamelModel):
    id: str
    title: Optional[str] = None
    type: Optional[str] = None
    data: List[Dict[str, Any]]
    measures: List[str] = []
    dimensions: List[str] = []
    render_config: Dict[str, Any] = {}


class ProcessingInfo(CamelModel):
    original_length: int
    reduced_length: int
    was_reduced: bool
    strategy: ReductionStrategy
    estimated_tokens: int


class AnalysisResult(CamelModel):
    has_data: bool
    data: Optional[ExtractionResult] = None
    dashboard: Optional[DashboardConfig] = None
    insights: List[str] = []
    processing_info: Optional[ProcessingInfo] = None
    reason: Optional[str] = None


# ---------- HTTP request/response models ----------

class UploadPreview(CamelModel):
    file_name: str
    file_type: str
    data_records: int
    confidence: Optional[float] = None
    summary: Optional[str] = None


class UploadResponse(CamelModel):
    success: bool = True
    session_id: str
    has_data: bool
    message: str
    preview: Optional[UploadPreview] = None
    reason: Optional[str] = None


class GenerateDashboardRequest(CamelModel):
    session_id: str


class DataInfo(CamelModel):
    total_records: int
    data_source: str
    confidence: Any = "unknown"


class DashboardView(CamelModel):
    kpis: List[ComputedKPI]
    charts: List[ComputedChart]
    insights: List[str] = []
    summary: Optional[str] = None
    data_info: DataInfo


class DashboardResponse(CamelModel):
    success: bool = True
    dashboard: DashboardView
