"""
Core orchestration / pipeline.

Flow:
1. Reduce the extracted text to the token budget (reducer.TextBudgetReducer)
2. Ask the model whether the text holds dashboard-worthy data
   - hasData=false stops here; that is a result, not an error
3. Ask the model to turn the text into uniform records + schema
4. Ask the model for KPI and chart definitions over a sample of those records
5. Return everything; KPI values and chart series are computed later,
   deterministically, by calculator.py (no LLM needed)

Every model response goes through decoder.decode_json_response, and every
failure is re-raised wrapped in the stage it happened in.
"""

import json
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from .config import PipelineSettings, ServiceConfig
from .decoder import decode_json_response
from .errors import (
    ClassificationFailed,
    ConfigSynthesisFailed,
    ConfigurationError,
    ExtractionFailed,
    GatewayError,
    InsufficientData,
    InvalidPayload,
)
from .llm_client import ModelGateway
from .reducer import TextBudgetReducer
from .schemas import (
    AnalysisResult,
    AvailabilityVerdict,
    DashboardConfig,
    ExtractionResult,
    PipelineState,
    ProcessingInfo,
    ReducedText,
)
from .utils import estimate_tokens, render_prompt, safe_json, truncate_with_marker

logger = logging.getLogger(__name__)

# Preview windows per prompt, in characters
CLASSIFY_PREVIEW_CHARS = 4000
EXTRACT_BODY_CHARS = 6000
CONFIG_SAMPLE_RECORDS = 5

# Output caps per prompt, in tokens
CLASSIFY_MAX_TOKENS = 500
EXTRACT_MAX_TOKENS = 2000
CONFIG_MAX_TOKENS = 1500

TEMPERATURE = 0.1


def classify_data_availability(reduced: ReducedText, gateway: ModelGateway) -> AvailabilityVerdict:
    """
    Decide whether the text contains numerical/tabular data.

    Raises ClassificationFailed on any gateway, decode or shape failure:
    "could not tell" must never read as "no data".
    """
    prompt = render_prompt(
        "availability.txt",
        document_text=truncate_with_marker(reduced.content, CLASSIFY_PREVIEW_CHARS),
    )
    try:
        response = gateway.complete(prompt, max_output_tokens=CLASSIFY_MAX_TOKENS, temperature=TEMPERATURE)
        payload = decode_json_response(response)
        verdict = AvailabilityVerdict.model_validate(payload)
    except (GatewayError, InvalidPayload, ValidationError) as e:
        logger.error(f"Data availability check failed: {e}")
        raise ClassificationFailed(f"Failed to analyze data availability: {e}", cause=e) from e

    logger.info(
        f"Data availability: hasData={verdict.has_data} confidence={verdict.confidence} reason={verdict.reason!r}"
    )
    return verdict


def extract_structured_data(
    text: str,
    verdict: AvailabilityVerdict,
    gateway: ModelGateway,
    min_records: int = 3,
    processing_method: Optional[str] = None,
) -> ExtractionResult:
    """
    Turn document text into uniform records plus a schema.

    Raises InsufficientData when the model answers but gives fewer than
    `min_records` records, ExtractionFailed when the call or decode fails.
    """
    hints = ", ".join(verdict.insights) if verdict.insights else "numerical data"
    prompt = render_prompt(
        "extraction.txt",
        insights=hints,
        document_text=truncate_with_marker(text, EXTRACT_BODY_CHARS),
        min_records=min_records,
    )
    try:
        response = gateway.complete(prompt, max_output_tokens=EXTRACT_MAX_TOKENS, temperature=TEMPERATURE)
        payload = decode_json_response(response)
    except (GatewayError, InvalidPayload) as e:
        logger.error(f"Structured extraction failed: {e}")
        raise ExtractionFailed(f"Failed to extract structured data: {e}", cause=e) from e

    data = payload.get("data")
    if not isinstance(data, list):
        logger.warning(f"Extraction payload has no data array (got {type(data).__name__})")
        raise InsufficientData(0, min_records)

    records = [record for record in data if isinstance(record, dict)]
    if len(records) < min_records:
        logger.warning(f"Extraction produced {len(records)} usable record(s), need {min_records}")
        raise InsufficientData(len(records), min_records)

    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    metadata = {**metadata, "totalRecords": len(records)}
    if processing_method:
        metadata["processingMethod"] = processing_method

    schema = payload.get("schema") if isinstance(payload.get("schema"), dict) else {}
    try:
        result = ExtractionResult.model_validate({"data": records, "schema": schema, "metadata": metadata})
    except ValidationError as e:
        logger.error(f"Extraction payload has an invalid shape: {e}")
        raise ExtractionFailed(f"Failed to extract structured data: {e}", cause=e) from e

    logger.info(
        f"Extracted {len(result.data)} records with "
        f"{len(result.data_schema.measures)} measure(s) and {len(result.data_schema.dimensions)} dimension(s)"
    )
    return result


def synthesize_dashboard_config(extraction: ExtractionResult, gateway: ModelGateway) -> DashboardConfig:
    """
    Ask for KPI definitions, chart definitions, insights and a summary.
    Definitions are not checked here; the calculator skips the ones it cannot use.
    """
    sample = extraction.data[:CONFIG_SAMPLE_RECORDS]
    prompt = render_prompt(
        "dashboard.txt",
        data_sample=json.dumps(safe_json(sample), ensure_ascii=False),
        schema=json.dumps(extraction.data_schema.model_dump(by_alias=True), ensure_ascii=False),
        total_records=len(extraction.data),
    )
    try:
        response = gateway.complete(prompt, max_output_tokens=CONFIG_MAX_TOKENS, temperature=TEMPERATURE)
        payload = decode_json_response(response)
        config = DashboardConfig.model_validate(payload)
    except (GatewayError, InvalidPayload, ValidationError) as e:
        logger.error(f"Dashboard config generation failed: {e}")
        raise ConfigSynthesisFailed(f"Failed to generate dashboard config: {e}", cause=e) from e

    logger.info(f"Dashboard config: {len(config.kpis)} KPI(s), {len(config.charts)} chart(s)")
    return config


def analyze(
    extracted_text: str,
    file_name: str,
    gateway: ModelGateway,
    config: Optional[ServiceConfig] = None,
    on_state: Optional[Callable[[PipelineState], None]] = None,
) -> AnalysisResult:
    """
    Main analysis pipeline.

    Args:
        extracted_text: Text produced by the PDF/OCR backend
        file_name: Original upload name (for logs only)
        gateway: Configured ModelGateway
        config: Service configuration (budget, minimum record count)
        on_state: Called with each state the pipeline reaches (session tracking)

    Returns:
        AnalysisResult with has_data=True and the extraction/dashboard, or
        has_data=False and the model's reason.
    """
    config = config or ServiceConfig(budget=gateway.budget)
    pipeline: PipelineSettings = config.pipeline
    report = on_state or (lambda state: None)

    if not gateway.is_configured:
        raise ConfigurationError("LLM API key not configured")

    logger.info(f"Analyzing document with AI: {file_name} ({len(extracted_text)} characters)")

    reduced = TextBudgetReducer(config.budget, gateway).reduce(extracted_text)
    processing_info = ProcessingInfo(
        original_length=len(extracted_text),
        reduced_length=len(reduced.content),
        was_reduced=reduced.was_reduced,
        strategy=reduced.strategy,
        estimated_tokens=estimate_tokens(reduced.content),
    )
    logger.info(
        f"Text reduction: strategy={reduced.strategy.value} "
        f"{processing_info.original_length} -> {processing_info.reduced_length} characters"
    )

    verdict = classify_data_availability(reduced, gateway)
    report(PipelineState.CLASSIFIED)
    if not verdict.has_data:
        report(PipelineState.NO_DATA)
        return AnalysisResult(
            has_data=False,
            reason=verdict.reason or "No numerical or tabular data found suitable for dashboard creation",
            insights=verdict.insights,
            processing_info=processing_info,
        )

    extraction = extract_structured_data(
        reduced.content,
        verdict,
        gateway,
        min_records=pipeline.min_records,
        processing_method=reduced.strategy.value,
    )
    report(PipelineState.EXTRACTED)
    dashboard = synthesize_dashboard_config(extraction, gateway)
    report(PipelineState.CONFIG_SYNTHESIZED)

    return AnalysisResult(
        has_data=True,
        data=extraction,
        dashboard=dashboard,
        insights=verdict.insights,
        processing_info=processing_info,
    )
