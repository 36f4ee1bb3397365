"""
FastAPI entrypoint.

Routes mirror the upload -> analyze -> dashboard flow:
- POST /api/upload runs text extraction and the AI pipeline, then stores a session
- POST /api/generate-dashboard computes KPIs/charts from a stored session (no LLM)
- session inspection routes for debugging
Blocking work (extraction, model calls) runs in the threadpool so concurrent
uploads don't stall the event loop.
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from .analyzer import analyze
from .calculator import compute_charts, compute_kpis
from .config import ServiceConfig
from .errors import ConfigurationError, DocDashError, DocumentExtractionError, StageError, UnsupportedFormat
from .extract import extract_text
from .llm_client import ModelGateway
from .schemas import (
    DashboardResponse,
    DashboardView,
    DataInfo,
    GenerateDashboardRequest,
    PipelineState,
    UploadPreview,
    UploadResponse,
)
from .sessions import SessionStore, StageFailure, sweep_periodically
from .utils import safe_json

TEXT_PREVIEW_CHARS = 500
STARTED_AT = time.monotonic()


@lru_cache
def get_config() -> ServiceConfig:
    return ServiceConfig.load()


@lru_cache
def get_session_store() -> SessionStore:
    return SessionStore(ttl_seconds=get_config().sessions.ttl_seconds)


def get_gateway(config: ServiceConfig = Depends(get_config)) -> ModelGateway:
    return ModelGateway(config.llm, config.budget)


def get_text_extractor():
    return extract_text


@asynccontextmanager
async def lifespan(app: FastAPI):
    # honour dependency overrides so tests sweep the store they inject
    config = app.dependency_overrides.get(get_config, get_config)()
    store = app.dependency_overrides.get(get_session_store, get_session_store)()
    sweeper = asyncio.create_task(sweep_periodically(store, config.sessions.sweep_interval_seconds))
    logger.info("Document Dashboard API ready")
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


app = FastAPI(title="AI Document Dashboard", lifespan=lifespan)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _track(session):
    """Record each pipeline state on the session as it is reached."""
    def update(state: PipelineState) -> None:
        session.state = state
    return update


def _require_session(store: SessionStore, session_id: str):
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@app.get("/health")
async def health():
    return {
        "status": "OK",
        "message": "AI Document Dashboard Server is running!",
        "timestamp": _now_iso(),
        "uptime": time.monotonic() - STARTED_AT,
    }


@app.get("/api/test")
async def api_test():
    return {
        "success": True,
        "message": "Document Dashboard API is working",
        "timestamp": _now_iso(),
        "availableEndpoints": [
            "GET /api/test",
            "POST /api/upload",
            "GET /api/session/{sessionId}",
            "POST /api/generate-dashboard",
        ],
    }


@app.post("/api/upload", response_model=UploadResponse, response_model_by_alias=True)
async def upload(
    file: UploadFile = File(...),
    config: ServiceConfig = Depends(get_config),
    store: SessionStore = Depends(get_session_store),
    gateway: ModelGateway = Depends(get_gateway),
    extractor=Depends(get_text_extractor),
):
    file_name = file.filename or "upload"
    extension = os.path.splitext(file_name)[1].lower()
    if extension not in config.upload.allowed_extensions:
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload PDF or image files only.",
        )

    content = await file.read()
    if len(content) > config.upload.max_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {config.upload.max_bytes // (1024 * 1024)}MB.",
        )

    logger.info(f"Processing uploaded file: {file_name}")
    session = store.create(file_name=file_name, file_type=extension.lstrip("."))

    # 1) Text extraction (PDF text layer / OCR)
    session.state = PipelineState.EXTRACTING
    try:
        document = await run_in_threadpool(extractor, file_name, content)
    except DocumentExtractionError as e:
        logger.error(f"Text extraction failed for {session.session_id}: {e}")
        session.state = PipelineState.FAILED
        session.failure = StageFailure(stage="text_extraction", reason=str(e))
        if isinstance(e, UnsupportedFormat):
            raise HTTPException(status_code=400, detail=str(e))
        raise HTTPException(status_code=422, detail=f"Error processing document: {e}")

    session.file_type = document.file_type.value
    session.extracted_text = document.text
    session.content_length = document.length

    # 2) AI pipeline
    try:
        result = await run_in_threadpool(
            analyze, document.text, document.file_name, gateway, config, _track(session)
        )
    except ConfigurationError as e:
        logger.error(f"Pipeline misconfigured: {e}")
        session.state = PipelineState.FAILED
        session.failure = StageFailure(stage="configuration", reason=str(e))
        raise HTTPException(status_code=500, detail=f"Error processing document: {e}")
    except StageError as e:
        logger.error(f"Pipeline stage {e.stage} failed for {session.session_id}: {e}")
        session.state = PipelineState.FAILED
        session.failure = StageFailure(stage=e.stage, reason=str(e))
        raise HTTPException(
            status_code=502,
            detail={"message": f"Error processing document: {e}", "stage": e.stage, "sessionId": session.session_id},
        )
    except DocDashError as e:
        logger.error(f"Pipeline failed for {session.session_id}: {type(e).__name__}: {e}")
        session.state = PipelineState.FAILED
        session.failure = StageFailure(stage="pipeline", reason=str(e))
        raise HTTPException(
            status_code=500,
            detail={"message": f"Error processing document: {e}", "stage": "pipeline", "sessionId": session.session_id},
        )

    if not result.has_data:
        session.reason = result.reason
        logger.info(f"No dashboard data found. Session ID: {session.session_id}")
        return UploadResponse(
            session_id=session.session_id,
            has_data=False,
            message="Document processed but no dashboard data found",
            reason=result.reason,
        )

    session.extraction = result.data
    session.dashboard_config = result.dashboard
    session.has_data = True
    logger.info(f"Document processed successfully. Session ID: {session.session_id}")

    return UploadResponse(
        session_id=session.session_id,
        has_data=True,
        message="Document processed successfully",
        preview=UploadPreview(
            file_name=document.file_name,
            file_type=document.file_type.value,
            data_records=len(result.data.data),
            confidence=result.data.metadata.extraction_confidence,
            summary=result.dashboard.summary,
        ),
    )


@app.get("/api/session/{session_id}")
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = _require_session(store, session_id)
    return {"success": True, "data": safe_json(session.to_dict())}


@app.post("/api/generate-dashboard", response_model=DashboardResponse, response_model_by_alias=True)
async def generate_dashboard(
    request: GenerateDashboardRequest,
    store: SessionStore = Depends(get_session_store),
):
    session = _require_session(store, request.session_id)
    if not session.has_data or session.extraction is None or session.dashboard_config is None:
        raise HTTPException(
            status_code=400,
            detail={"message": "No dashboard data available for this session", "reason": session.reason},
        )

    logger.info(f"Generating dashboard for session: {session.session_id}")
    records = session.extraction.data
    config = session.dashboard_config

    kpis = compute_kpis(records, config.kpis)
    charts = compute_charts(records, config.charts)
    logger.info(f"Dashboard generated with {len(kpis)} KPIs and {len(charts)} charts")

    metadata = session.extraction.metadata
    return DashboardResponse(
        dashboard=DashboardView(
            kpis=kpis,
            charts=charts,
            insights=config.insights,
            summary=config.summary,
            data_info=DataInfo(
                total_records=len(records),
                data_source=metadata.data_source or "document extraction",
                confidence=metadata.extraction_confidence if metadata.extraction_confidence is not None else "unknown",
            ),
        )
    )


@app.get("/api/sessions")
async def list_sessions(store: SessionStore = Depends(get_session_store)):
    sessions = [
        {
            "sessionId": s.session_id,
            "fileName": s.file_name,
            "fileType": s.file_type,
            "uploadTime": s.upload_time,
            "state": s.state.value,
            "hasData": s.has_data,
            "dataRecords": len(s.extraction.data) if s.extraction else 0,
        }
        for s in store.list()
    ]
    return {"success": True, "sessions": sessions, "totalSessions": len(sessions)}


@app.delete("/api/sessions")
async def clear_sessions(store: SessionStore = Depends(get_session_store)):
    count = store.clear()
    return {"success": True, "message": f"Cleared {count} sessions"}


@app.get("/api/raw-data/{session_id}")
async def raw_data(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = _require_session(store, session_id)
    details = session.to_dict()
    text = session.extracted_text or ""
    preview = text[:TEXT_PREVIEW_CHARS] + ("..." if len(text) > TEXT_PREVIEW_CHARS else "") if text else None
    raw = {
        "sessionId": session.session_id,
        "fileName": session.file_name,
        "fileType": session.file_type,
        "uploadTime": session.upload_time,
        "state": details["state"],
        "hasData": session.has_data,
        "extractedText": text,
        "extractedTextLength": len(text),
        "structuredData": details["data"],
        "dataRecords": len(details["data"] or []),
        "schema": details["schema"],
        "metadata": details["metadata"],
        "dashboardConfig": details["dashboardConfig"],
        "reason": session.reason,
        "failure": details["failure"],
        "textPreview": preview,
    }
    return {"success": True, "rawData": safe_json(raw)}


@app.get("/api/extracted-text/{session_id}")
async def extracted_text(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = _require_session(store, session_id)
    return {
        "success": True,
        "extractedText": session.extracted_text,
        "fileName": session.file_name,
        "fileType": session.file_type,
        "textLength": len(session.extracted_text or ""),
        "uploadTime": session.upload_time,
    }
