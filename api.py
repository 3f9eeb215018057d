"""
Product Reconciliation System — FastAPI Application Layer

Endpoints:
  1. GET  /api/health         — Health check
  2. POST /api/process-excel  — Upload workbook, download reconciled workbook
  3. POST /api/fetch          — Extract field sets for identifiers (JSON)
"""
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import Response

from config import Settings, configure_logging, get_settings
from models import FetchRequest, FetchResponse, HealthResponse
from fetch_orchestrator import FetchOrchestrator
from transport import DocumentTransport, HttpxTransport
from workbook_driver import WorkbookError, WorkbookReconciler

logger = logging.getLogger(__name__)

SERVICE_NAME = "DB Produktvergleich API"
VERSION = "1.0.0"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# ============================================================
# Application State (shared singletons)
# ============================================================

class AppState:
    """Holds the shared transport and settings."""
    settings: Settings
    transport: Optional[DocumentTransport]
    start_time: float
    request_count: int = 0

    def __init__(self):
        self.transport = None
        self.start_time = time.monotonic()
        self.request_count = 0


_state = AppState()


def install_transport(transport: Optional[DocumentTransport]) -> None:
    """Use a preconfigured transport instead of opening an HTTP session."""
    _state.transport = transport

# ============================================================
# Lifespan: Startup / Shutdown
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared transport on startup, release it on shutdown."""
    settings = get_settings()
    _state.settings = settings
    _state.start_time = time.monotonic()

    owns_transport = _state.transport is None
    if owns_transport:
        _state.transport = HttpxTransport.from_settings(settings)
    await _state.transport.open()
    logger.info("%s ready (source=%s)", SERVICE_NAME, settings.base_url)

    try:
        yield
    finally:
        logger.info("Shutting down %s...", SERVICE_NAME)
        await _state.transport.close()
        if owns_transport:
            _state.transport = None


def _new_orchestrator(concurrency: Optional[int] = None) -> FetchOrchestrator:
    settings = _state.settings
    return FetchOrchestrator(
        _state.transport,
        base_url=settings.base_url,
        concurrency=concurrency or settings.fetch_concurrency,
    )

# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="Product Reconciliation API",
    description="Reconciles inventory workbooks against vendor product pages.",
    version=VERSION,
    lifespan=lifespan,
)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.monotonic()
    _state.request_count += 1
    response = await call_next(request)
    elapsed = int((time.monotonic() - start) * 1000)
    response.headers["X-Response-Time-Ms"] = str(elapsed)
    return response

# ============================================================
# 1. GET /api/health
# ============================================================

@app.get("/api/health", response_model=HealthResponse, tags=["System"])
async def health():
    transport = _state.transport
    return HealthResponse(
        service=SERVICE_NAME,
        version=VERSION,
        transport="ready" if transport is not None and transport.is_open else "not initialized",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=int(time.monotonic() - _state.start_time),
    )

# ============================================================
# 2. POST /api/process-excel
# ============================================================

@app.post("/api/process-excel", tags=["Reconciliation"])
async def process_excel(file: Optional[UploadFile] = File(None)):
    """
    Reconcile an uploaded workbook. Each record gets a web row and a
    coloured comparison row; the processed workbook is returned as download.
    """
    settings = _state.settings
    if file is None:
        raise HTTPException(400, "Keine Datei hochgeladen")

    data = await file.read()
    if not data:
        raise HTTPException(400, "Leere Datei")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(413, f"Datei größer als {settings.max_upload_size_mb} MB")

    async with _new_orchestrator() as orchestrator:
        driver = WorkbookReconciler.from_settings(orchestrator, settings)
        try:
            processed, report = await driver.process_workbook(data)
        except WorkbookError as e:
            raise HTTPException(400, str(e))

    logger.info("[process-excel] file=%s report=%s", file.filename, report.as_dict())
    headers = {
        "Content-Disposition": f'attachment; filename="{settings.output_filename}"',
        "X-Batch-Records": str(report.records),
        "X-Batch-Succeeded": str(report.succeeded),
        "X-Batch-Partial": str(report.partial),
        "X-Batch-Failed": str(report.failed),
        "X-Batch-Not-Attempted": str(report.not_attempted),
    }
    return Response(content=processed, media_type=XLSX_MEDIA_TYPE, headers=headers)

# ============================================================
# 3. POST /api/fetch
# ============================================================

@app.post("/api/fetch", response_model=FetchResponse, tags=["Reconciliation"])
async def fetch_identifiers(request: FetchRequest):
    """Extracted field sets for the given identifiers, without a workbook."""
    async with _new_orchestrator(request.concurrency) as orchestrator:
        results = await orchestrator.fetch_many(request.identifiers)
        counts = orchestrator.stats().as_dict()
    return FetchResponse(results=results, counts=counts)


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
