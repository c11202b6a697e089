"""Texpreview API.

FastAPI service that turns untrusted LaTeX papers into safe HTML previews.

Endpoints:
- GET /health, GET /ready: liveness and readiness probes
- GET /metrics, GET /metrics/json: in-process metrics
- POST /preview: render one document
"""

import time
from collections import deque
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from latex2mathml.converter import convert
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from texpreview import __version__
from texpreview.config import get_settings
from texpreview.preview.pipeline import PreviewPipeline
from texpreview.preview.templating import TEMPLATES_DIR
from texpreview.utils.errors import RateLimitError, TexPreviewError
from texpreview.utils.logging import bind_context, clear_context, get_logger, setup_logging
from texpreview.utils.metrics import MetricsMiddleware, get_metrics

# Probe endpoints bypass the rate limiter
PROBE_PATHS = frozenset({"/health", "/ready"})


# =============================================================================
# Rate Limiting
# =============================================================================


class SlidingWindowLimiter:
    """Per-client request timestamps over a sliding window."""

    def __init__(self) -> None:
        self._hits: dict[str, deque[float]] = {}

    def allow(self, client: str, limit: int, window_seconds: float) -> bool:
        """Record a hit for ``client`` unless it already has ``limit`` in the window."""
        now = time.monotonic()
        hits = self._hits.setdefault(client, deque())
        while hits and hits[0] <= now - window_seconds:
            hits.popleft()
        if len(hits) >= limit:
            return False
        hits.append(now)
        return True

    def reset(self) -> None:
        self._hits.clear()


rate_limiter = SlidingWindowLimiter()


# =============================================================================
# Application
# =============================================================================


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging before the first request is served."""
    settings = get_settings()
    setup_logging(
        level=settings.log_level,
        json_logs=settings.log_json,
        service_name="texpreview",
    )
    logger = get_logger()
    logger.info("Texpreview API starting", version=__version__, environment=settings.environment)
    yield
    logger.info("Texpreview API stopped")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id, enforce the rate limit and log request timing."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        settings = get_settings()
        logger = get_logger()

        request_id = uuid4().hex[:8]
        bind_context(request_id=request_id)
        client = request.client.host if request.client else "unknown"

        try:
            if request.url.path not in PROBE_PATHS and not rate_limiter.allow(
                client,
                settings.rate_limit_requests,
                settings.rate_limit_window_seconds,
            ):
                logger.warning("Rate limit exceeded", client_ip=client, path=request.url.path)
                # Exception handlers do not see errors raised from middleware
                error = RateLimitError(
                    "Too many preview requests. Please wait and try again.",
                    details={"retry_after_seconds": settings.rate_limit_window_seconds},
                )
                return JSONResponse(
                    status_code=error.status_code,
                    content=error.to_dict(),
                    headers={"X-Request-ID": request_id},
                )

            started = time.perf_counter()
            response = await call_next(request)
            logger.info(
                "Request handled",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()


async def texpreview_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Serialize a TexPreviewError with its own status code."""
    err = exc if isinstance(exc, TexPreviewError) else TexPreviewError(str(exc))
    get_logger().warning(
        "Preview request failed",
        error_code=err.error_code,
        message=err.message,
    )
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def generic_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for anything the preview errors do not cover."""
    get_logger().exception("Unhandled error", error=str(exc))
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred", "details": {}},
    )


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware and error handlers."""
    settings = get_settings()
    app = FastAPI(
        title="Texpreview API",
        description="Safe browser previews for generated LaTeX papers",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TexPreviewError, texpreview_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(MetricsMiddleware)
    return app


app = create_app()


# =============================================================================
# Probes and Metrics
# =============================================================================


class HealthResponse(BaseModel):
    """Liveness probe payload."""

    status: str
    version: str
    environment: str


class ReadyResponse(BaseModel):
    """Readiness probe payload with one flag per dependency."""

    status: str
    checks: dict[str, bool]


class MetricsResponse(BaseModel):
    """JSON export of the metrics registry."""

    counters: list[dict[str, Any]]
    histograms: list[dict[str, Any]]
    gauges: list[dict[str, Any]]


@app.get("/health", response_model=HealthResponse, tags=["Probes"])
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=get_settings().environment,
    )


@app.get("/ready", response_model=ReadyResponse, tags=["Probes"])
async def ready() -> ReadyResponse:
    """Ready once the templates are installed and the math engine converts."""
    try:
        math_engine = bool(convert("x^2"))
    except Exception as e:
        get_logger().warning("Math engine probe failed", error=str(e))
        math_engine = False

    checks = {
        "api": True,
        "templates": TEMPLATES_DIR.is_dir(),
        "math_engine": math_engine,
    }
    return ReadyResponse(status="ready" if all(checks.values()) else "not_ready", checks=checks)


@app.get("/metrics", tags=["Monitoring"])
async def metrics_text() -> Response:
    """Prometheus text exposition."""
    return Response(
        content=get_metrics().to_prometheus_format(),
        media_type="text/plain; version=0.0.4",
    )


@app.get("/metrics/json", response_model=MetricsResponse, tags=["Monitoring"])
async def metrics_json() -> MetricsResponse:
    return MetricsResponse(**get_metrics().to_dict())


# =============================================================================
# Preview
# =============================================================================


class PreviewRequest(BaseModel):
    """Document to preview."""

    latex: str = Field(..., description="Untrusted LaTeX markup")


class PreviewResponse(BaseModel):
    """Rendered preview plus extraction statistics."""

    html: str
    blocks: int
    has_bibliography: bool
    warnings: list[str] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)


@app.post("/preview", response_model=PreviewResponse, tags=["Preview"])
async def preview(request: PreviewRequest) -> PreviewResponse:
    """Render a document into a safe HTML preview.

    Truncated documents answer 422 (``CONTENT_INTEGRITY``) and renderer
    failures 502 (``RENDER_ERROR``); both carry the reassurance hint.
    """
    # The pipeline is CPU-bound and synchronous
    rendered = await run_in_threadpool(PreviewPipeline().render, request.latex)
    return PreviewResponse(
        html=rendered.html,
        blocks=len(rendered.extraction.blocks),
        has_bibliography=rendered.has_bibliography,
        warnings=list(rendered.extraction.warnings),
        stats=rendered.stats(),
    )


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "texpreview.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
