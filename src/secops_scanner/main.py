"""FastAPI application for the SecOps repository scanner."""

import logging

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .ai_analyzer import AIEnrichmentClient
from .config import Settings, build_provider
from .demo import MAX_DEMO_CODE_CHARS, analyze_demo_snippet
from .git_utils import GitSourceProvider
from .models import (
    DemoAnalysisRequest,
    DemoAnalysisResult,
    ScanReport,
    ScanRequest,
    ScanStatus,
    ScanSubmitResponse,
)
from .orchestrator import InvalidTransitionError, ScanExecution
from .store import InMemoryScanStore

settings = Settings.from_env()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="SecOps Scanner",
    description="Repository vulnerability scanning with rule matching, AI enrichment and OWASP scoring",
    version="0.1.0",
)

# CORS - allow common development origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://localhost:8000",
    ],
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)

llm_provider = build_provider(settings)
store = InMemoryScanStore()
# Local directories are only scanned through sandbox_main.py
source_provider = GitSourceProvider()

# Executions that have not finished yet, by scan id
_executions: dict[str, ScanExecution] = {}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


async def _run_scan(execution: ScanExecution) -> None:
    try:
        if execution.status != ScanStatus.QUEUED:
            logger.info(f"Scan {execution.scan_id} is {execution.status.value}, not starting")
            return
        await execution.run()
    finally:
        _executions.pop(execution.scan_id, None)


@app.post("/scan", response_model=ScanSubmitResponse, status_code=202)
async def submit_scan(request: ScanRequest, background_tasks: BackgroundTasks) -> ScanSubmitResponse:
    """
    Queue a scan of a git repository.

    - **repo_url**: Git repository URL
    - **branch**: Branch to scan (default "main")
    """
    target = request.to_target()
    enrichment = AIEnrichmentClient(
        llm_provider,
        max_snippet_chars=settings.max_snippet_tokens,
        max_tokens=settings.llm_max_tokens,
    )
    execution = ScanExecution(
        target,
        enrichment=enrichment,
        store=store,
        source=source_provider,
        max_files=settings.max_files_per_scan,
        max_file_size=settings.max_file_size_bytes,
    )
    _executions[execution.scan_id] = execution
    await store.save(execution.queued_report())

    background_tasks.add_task(_run_scan, execution)
    logger.info(f"Scan {execution.scan_id} queued for {target.display_name}")
    return ScanSubmitResponse(scan_id=execution.scan_id, status=execution.status)


@app.get("/scan/{scan_id}", response_model=ScanReport)
async def get_scan(scan_id: str) -> ScanReport:
    """Return the latest report for a scan."""
    report = await store.get(scan_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Scan not found")
    return report


@app.post("/scan/{scan_id}/cancel", response_model=ScanSubmitResponse)
async def cancel_scan(scan_id: str) -> ScanSubmitResponse:
    """Cancel a scan that is still queued."""
    execution = _executions.get(scan_id)
    if execution is None:
        if await store.get(scan_id) is None:
            raise HTTPException(status_code=404, detail="Scan not found")
        raise HTTPException(status_code=409, detail="Scan has already finished")

    try:
        execution.cancel()
    except InvalidTransitionError:
        raise HTTPException(status_code=409, detail=f"Scan is {execution.status.value}, only queued scans can be cancelled")

    _executions.pop(scan_id, None)
    await store.save(execution.queued_report())
    return ScanSubmitResponse(scan_id=scan_id, status=execution.status)


@app.post("/demo/analyze", response_model=DemoAnalysisResult)
async def demo_analyze(request: DemoAnalysisRequest) -> DemoAnalysisResult:
    """
    Classify a single code snippet.

    - **code**: Snippet to analyze (at most 5000 characters)
    """
    if not request.code.strip():
        raise HTTPException(status_code=400, detail="Code snippet is required")
    if len(request.code) > MAX_DEMO_CODE_CHARS:
        raise HTTPException(status_code=400, detail=f"Code snippet must be at most {MAX_DEMO_CODE_CHARS} characters")

    return await analyze_demo_snippet(request.code, llm_provider)
