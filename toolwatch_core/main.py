"""Main FastAPI application for ToolWatch Core"""

import asyncio
import threading
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from . import metrics as prom_metrics
from .cache import cache
from .combinations import export_combination_csv
from .config import settings
from .engine import AnalyticsEngine, Evaluation
from .exceptions import (
    AnalysisCancelledException,
    ToolWatchException,
    toolwatch_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .middleware import (
    SECURITY_HEADERS,
    RequestLoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from .models import AnalyticsRequest, HealthResponse
from .structured_logger import configure_logging, get_logger
from .summary import build_overview

configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_FORMAT == "json")
logger = get_logger("toolwatch.api")

engine = AnalyticsEngine.from_settings(settings, cache=cache)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    logger.info(f"ToolWatch Core v{__version__} starting...")
    logger.info(
        f"Monitoring {', '.join(settings.MONITORED_TOOLS)}; "
        f"gap analysis target: {settings.GAP_TARGET_TOOL}"
    )
    logger.info(f"Evaluation cache: {cache.health_check()['backend']}")

    yield

    logger.info("ToolWatch Core shutting down...")


app = FastAPI(
    title="ToolWatch Core",
    description="Security tooling coverage and stability analytics",
    version=__version__,
    lifespan=lifespan,
)

# Register exception handlers
app.add_exception_handler(ToolWatchException, toolwatch_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Add security and logging middleware (order matters - last added = first executed)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.RATE_LIMIT_PER_MINUTE)
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def run_evaluation(body: AnalyticsRequest) -> Evaluation:
    """
    Evaluate a request on a worker thread under the configured timeout.

    On timeout the cancellation token is set so the worker stops at the
    next host boundary, and the request fails without partial results.
    """
    cancel_event = threading.Event()
    histories = body.to_histories()
    start_time = time.time()

    try:
        evaluation = await asyncio.wait_for(
            asyncio.to_thread(
                engine.evaluate,
                histories,
                body.window_days,
                body.environment,
                body.as_of,
                cancel_event,
                body.model_dump(mode="json"),
            ),
            timeout=settings.ANALYSIS_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        cancel_event.set()
        logger.warning(
            f"Evaluation timed out after {settings.ANALYSIS_TIMEOUT_SECONDS}s",
            hosts=len(histories),
        )
        raise AnalysisCancelledException(0, len(histories))

    logger.log_evaluation(
        window_days=evaluation.window_days,
        hosts=len(evaluation.evaluations),
        excluded=len(evaluation.excluded),
        duration_ms=(time.time() - start_time) * 1000,
    )
    return evaluation


@app.get("/", tags=["root"])
async def root():
    """Root endpoint"""
    return {
        "name": "ToolWatch Core",
        "version": __version__,
        "status": "running",
        "endpoints": [
            "/health",
            "/metrics",
            "/v1/analytics/summary",
            "/v1/analytics/stability-overview",
            "/v1/analytics/system-classification",
            "/v1/analytics/gap-analysis",
            "/v1/analytics/recovery-status",
            "/v1/analytics/tooling-combinations",
            "/v1/analytics/tooling-combinations/export",
            "/v1/analytics/trailing-window",
            "/v1/analytics/health-trend",
            "/v1/analytics/missing-systems",
            "/v1/analytics/system-insights/{shortname}",
        ],
    }


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(request: Request):
    """Health check endpoint"""
    limiter = getattr(request.app.state, "rate_limiter", None)
    return HealthResponse(
        status="healthy",
        version=__version__,
        services={
            "cache": cache.health_check(),
            "prometheus_metrics": True,
            "rate_limiter": limiter.get_stats() if limiter else None,
            "security_headers": sorted(SECURITY_HEADERS),
        },
        config=settings.get_config_report(),
    )


@app.get("/metrics", tags=["monitoring"])
async def metrics_endpoint():
    """
    Prometheus metrics endpoint.

    Includes HTTP request metrics, evaluation counts and durations,
    classification and exclusion counts, and cache hit rates.
    """
    return prom_metrics.get_metrics_response()


@app.post("/v1/analytics/summary", tags=["analytics"])
async def analytics_summary(body: AnalyticsRequest):
    """
    Dashboard summary: classification overview, critical insights, gap and
    recovery summaries, top tooling combinations, trailing window and
    prioritised action items.
    """
    evaluation = await run_evaluation(body)
    return engine.summary(evaluation).to_dict()


@app.post("/v1/analytics/stability-overview", tags=["analytics"])
async def stability_overview(body: AnalyticsRequest):
    """Counts per classification and the average stability score"""
    evaluation = await run_evaluation(body)
    return {
        **build_overview(evaluation.results).to_dict(),
        "excluded": dict(evaluation.excluded),
    }


@app.post("/v1/analytics/system-classification", tags=["analytics"])
async def system_classification(body: AnalyticsRequest):
    """Per-host classification, split into actionable and expected behaviour"""
    evaluation = await run_evaluation(body)
    return engine.system_classifications(evaluation)


@app.post("/v1/analytics/gap-analysis", tags=["analytics"])
async def gap_analysis(
    body: AnalyticsRequest,
    tool: Optional[str] = Query(None, description="Tool to analyse; defaults to GAP_TARGET_TOOL"),
):
    """Separate expected gaps from gaps that need investigation for one tool"""
    if tool is not None:
        engine.check_tool(tool)
    evaluation = await run_evaluation(body)
    return engine.gap_summary(evaluation, tool).to_dict()


@app.post("/v1/analytics/recovery-status", tags=["analytics"])
async def recovery_status(body: AnalyticsRequest):
    """Recovery summary plus ongoing and completed episodes"""
    evaluation = await run_evaluation(body)
    episodes = evaluation.episodes
    normal_days = settings.NORMAL_RECOVERY_DAYS
    return {
        **engine.recovery_summary(evaluation).to_dict(),
        "recovering_systems": [
            {**e.to_dict(), "explanation": e.explanation(normal_days)}
            for e in episodes if e.is_ongoing
        ],
        "recovered_systems": [
            {**e.to_dict(), "explanation": e.explanation(normal_days)}
            for e in episodes if not e.is_ongoing
        ],
    }


@app.post("/v1/analytics/tooling-combinations", tags=["analytics"])
async def tooling_combinations(body: AnalyticsRequest):
    """Unhealthy hosts grouped by their exact missing-tool set"""
    evaluation = await run_evaluation(body)
    return engine.tooling_combinations(evaluation).to_dict(top_n=settings.TOP_COMBINATIONS)


@app.post("/v1/analytics/tooling-combinations/export", tags=["analytics"])
async def export_tooling_combination(
    body: AnalyticsRequest,
    missing: str = Query(..., description="Comma-separated missing tools, e.g. rapid7,defender"),
):
    """Download the hosts in one missing-tool combination as CSV"""
    tools = [t.strip() for t in missing.split(",") if t.strip()]
    if not tools:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="missing must name at least one tool",
        )
    for tool in tools:
        engine.check_tool(tool)

    evaluation = await run_evaluation(body)
    combination = engine.tooling_combinations(evaluation).find(tools)
    if combination is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No hosts missing exactly: {', '.join(sorted(tools))}",
        )

    filename = "missing-" + "-".join(combination.missing_tools) + ".csv"
    return Response(
        content=export_combination_csv(combination, evaluation.hosts),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/v1/analytics/trailing-window", tags=["analytics"])
async def trailing_window(
    body: AnalyticsRequest,
    window_size: Optional[int] = Query(None, gt=0, description="Trailing window length in days"),
):
    """Hosts active on every day of the trailing window, with drill-down rows"""
    evaluation = await run_evaluation(body)
    return engine.trailing_window(evaluation, window_size).to_dict()


@app.post("/v1/analytics/system-insights/{shortname}", tags=["analytics"])
async def system_insights(shortname: str, body: AnalyticsRequest):
    """Classification, recovery, gap and recommendations for one host"""
    evaluation = await run_evaluation(body)
    return engine.system_insights(evaluation, shortname)


@app.post("/v1/analytics/health-trend", tags=["analytics"])
async def health_trend(body: AnalyticsRequest):
    """Daily fleet health rate across the window and its first-to-last change"""
    evaluation = await run_evaluation(body)
    return engine.health_trend(evaluation).to_dict()


@app.post("/v1/analytics/missing-systems", tags=["analytics"])
async def missing_systems(body: AnalyticsRequest):
    """Hosts with no record in the latest snapshot, with when they were last seen"""
    evaluation = await run_evaluation(body)
    return engine.missing_systems(evaluation).to_dict()
