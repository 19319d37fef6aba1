"""
Server entry point: FastAPI app setup and route configuration.

One browser process is shared by all requests through the
``SessionPool`` created in the lifespan handler; every analysis runs
in its own isolated sessions.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncGenerator

import dotenv
import fastapi
import pydantic
from fastapi.middleware import cors
from starlette import responses

from consent_audit import config
from consent_audit.browser import pool
from consent_audit.models import report
from consent_audit.pipeline import orchestrator, stream
from consent_audit.utils import errors, logger, serialization

dotenv.load_dotenv()

log = logger.create_logger("Server")


class AnalyzeRequest(pydantic.BaseModel):
    """Body of ``POST /api/analyze``."""

    model_config = serialization.CAMEL_CONFIG

    url: str
    quick: bool = False


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncGenerator[None]:
    """Create the shared session pool on startup and close it on shutdown."""
    settings = config.load_settings()
    config_error = settings.validate_config()
    if config_error:
        log.error("Configuration error", {"error": config_error})
        raise RuntimeError(config_error)

    session_pool = pool.SessionPool(settings.browser)
    app.state.settings = settings
    app.state.pool = session_pool
    app.state.orchestrator = orchestrator.Orchestrator(session_pool, settings)

    log.section("Consent Audit Server Started")
    log.info("Environment", {"env": settings.server.environment})
    try:
        yield
    finally:
        await session_pool.shutdown()
        log.info("Session pool shut down")


app = fastapi.FastAPI(title="Consent Audit Server", lifespan=lifespan)

# ============================================================================
# Middleware
# ============================================================================

app.add_middleware(
    cors.CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# API Routes
# ============================================================================


def _orchestrator(request: fastapi.Request) -> orchestrator.Orchestrator:
    return request.app.state.orchestrator


@app.get("/api/health")
async def health(request: fastapi.Request) -> dict[str, object]:
    """Liveness check with the browser state."""
    session_pool: pool.SessionPool = request.app.state.pool
    return {
        "status": "ok",
        "browserRunning": session_pool.is_running,
        "openSessions": len(session_pool.open_sessions),
    }


@app.post("/api/analyze")
async def analyze_endpoint(body: AnalyzeRequest, request: fastapi.Request) -> responses.JSONResponse:
    """Run one audit and return the camelCase ``AnalysisResult``."""
    log.info("Incoming analysis request", {"url": body.url, "quick": body.quick})
    audit = _orchestrator(request)
    try:
        if body.quick:
            result: report.AnalysisResult = await audit.analyze_quick(body.url)
        else:
            result = await audit.analyze(body.url)
    except errors.InvalidUrl as err:
        raise fastapi.HTTPException(status_code=400, detail=str(err)) from err
    except errors.NavigationTimeout as err:
        raise fastapi.HTTPException(status_code=504, detail=str(err)) from err
    except errors.AuditError as err:
        raise fastapi.HTTPException(status_code=502, detail=errors.get_error_message(err)) from err
    return responses.JSONResponse(serialization.to_camel_dict(result))


@app.get("/api/analyze-stream")
async def analyze_stream_endpoint(
    request: fastapi.Request,
    url: str = fastapi.Query(..., description="The URL to analyze"),
    quick: bool = fastapi.Query(False, description="Skip the consent experiment"),
) -> responses.StreamingResponse:
    """
    Analyze a URL with streaming progress via SSE.
    """
    log.info("Incoming streaming request", {"url": url, "quick": quick})

    return responses.StreamingResponse(
        stream.analyze_url_stream(_orchestrator(request), url, quick=quick),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "Access-Control-Allow-Origin": "*",
        },
    )
