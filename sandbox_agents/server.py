"""
Sandbox Analysis HTTP Server

FastAPI surface for the rest of the platform:
- /health - health check
- /api/v1/repositories/{repository_id}/analysis - analyze a repository
- /api/v1/sessions/{session_id}/status - sandbox session status
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .analysis import (
    AnalysisReport,
    DirectAnalysisService,
    Repository,
    RepositoryAnalysisService,
)
from .config import get_settings
from .errors import (
    AnalysisNotConfigured,
    GatewayUnavailable,
    RepositoryAnalysisFailed,
    SessionNotFound,
)
from .orchestrator import RemoteAnalysisOrchestrator
from .sessions import SessionManager

# Logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

settings = get_settings()
session_manager: SessionManager | None = None
analysis_service: RepositoryAnalysisService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: one control-plane connection pool per process."""
    global session_manager, analysis_service

    logger.info("server.starting", port=settings.server_port, vps_enabled=settings.vps_enabled)

    session_manager = SessionManager(settings=settings)
    orchestrator = RemoteAnalysisOrchestrator(session_manager, settings=settings)
    analysis_service = RepositoryAnalysisService(
        direct=DirectAnalysisService(settings=settings),
        orchestrator=orchestrator,
        settings=settings,
    )

    logger.info("server.started")

    yield

    logger.info("server.stopping")
    if session_manager:
        await session_manager.close()


app = FastAPI(
    title="Sandbox Analysis Service",
    description="Repository analysis in isolated remote sandboxes with direct LLM fallback",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# Request/response models
# ========================================

class AnalyzeRepositoryRequest(BaseModel):
    """Repository analysis request"""
    full_name: str = Field(..., min_length=1, description="owner/name")
    clone_url: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    description: str | None = None
    provider: str = "GitHub"
    organization_name: str | None = None
    default_branch: str | None = None
    is_private: bool = False
    repository_content: str | None = Field(
        None, description="Content summary for direct analysis (optional)"
    )


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    uptime_seconds: float
    vps_enabled: bool


class SessionStatusResponse(BaseModel):
    session_id: str
    state: str
    created_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None


_start_time = datetime.now(UTC)


# ========================================
# API endpoints
# ========================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(UTC).isoformat(),
        version=__version__,
        uptime_seconds=(datetime.now(UTC) - _start_time).total_seconds(),
        vps_enabled=settings.vps_enabled,
    )


@app.get("/")
async def root():
    return {
        "name": "Sandbox Analysis Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


@app.post("/api/v1/repositories/{repository_id}/analysis")
async def analyze_repository(repository_id: str, request: AnalyzeRepositoryRequest):
    """
    Analyze a repository.

    Runs in a remote sandbox when enabled, falling back to direct analysis
    when the sandbox infrastructure is unavailable.
    """
    if not analysis_service:
        raise HTTPException(status_code=503, detail="Server not ready")

    repository = Repository(
        id=repository_id,
        **request.model_dump(exclude={"repository_content"}),
    )
    logger.info("analysis.request", repository_id=repository_id, repository=repository.full_name)

    try:
        report: AnalysisReport = await analysis_service.analyze(repository, request.repository_content)
    except RepositoryAnalysisFailed as e:
        raise HTTPException(status_code=422, detail=e.reason)
    except AnalysisNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "repository_id": repository_id,
        "source": report.source,
        "session_id": report.session_id,
        "fallback_reason": report.fallback_reason,
        "result": report.result.to_wire(),
    }


@app.get("/api/v1/sessions/{session_id}/status", response_model=SessionStatusResponse)
async def get_session_status(session_id: str):
    if not session_manager:
        raise HTTPException(status_code=503, detail="Server not ready")

    try:
        status = await session_manager.get_status(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except GatewayUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return SessionStatusResponse(
        session_id=status.session_id,
        state=status.state,
        created_at=status.created_at.isoformat() if status.created_at else None,
        completed_at=status.completed_at.isoformat() if status.completed_at else None,
        error_message=status.error_message,
    )


def main():
    """Start the server"""
    logger.info("server.main", host="0.0.0.0", port=settings.server_port)

    uvicorn.run(
        "sandbox_agents.server:app",
        host="0.0.0.0",
        port=settings.server_port,
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
