"""Batch scoring service main application."""

import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
import structlog

from .api.routes import router as api_router
from .runtime.service_registry import ServiceRegistry
from libs.common.config import BatchScoringConfig
from libs.common.logging import configure_logging
from libs.common.metrics import get_metrics_collector
from libs.scoring.adapter import ScoringAdapter

logger = structlog.get_logger("batch_scoring")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    config = BatchScoringConfig()
    configure_logging("batch-scoring", config.ml_log_level, config.ml_log_format)

    logger.info("Starting batch scoring service", artifact_dir=config.ml_batch_artifact_dir)

    app.state.config = config
    app.state.metrics_collector = get_metrics_collector("batch-scoring")
    app.state.adapter = ScoringAdapter.from_config(config)
    app.state.service_registry = ServiceRegistry(app.state.adapter, config.ml_batch_artifact_dir)
    app.state.service_registry.load_all()

    logger.info("Batch scoring service started successfully")

    yield

    cleared = app.state.adapter.clear_jobs()
    logger.info("Batch scoring service shutdown complete", cleared_jobs=cleared)


app = FastAPI(
    title="Batch Scoring Service",
    description="Runs published batch scoring functions as jobs",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(api_router, prefix="/api/v1")


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Collect metrics for HTTP requests."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    if hasattr(app.state, 'metrics_collector'):
        route = request.scope.get("route")
        app.state.metrics_collector.record_http_request(
            method=request.method,
            endpoint=getattr(route, "path", request.url.path),
            status=response.status_code,
            duration=duration
        )

    response.headers["X-Process-Time"] = str(duration)
    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    registry = getattr(app.state, "service_registry", None)
    if registry is not None and registry.health_check():
        return {
            "status": "healthy",
            "service": "batch-scoring",
            "published_services": len(registry.services),
        }
    return JSONResponse(
        status_code=503,
        content={"status": "unhealthy", "service": "batch-scoring"}
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    if hasattr(app.state, 'metrics_collector'):
        metrics_data = app.state.metrics_collector.get_metrics()
        return Response(content=metrics_data, media_type="text/plain")
    return Response(content="# No metrics available\n", media_type="text/plain")


@app.post("/reload")
async def reload_services():
    """Reload published services from the artifact directory."""
    registry = getattr(app.state, "service_registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Service registry not available")
    loaded = registry.load_all()
    return {"status": "success", "loaded": loaded, "load_errors": registry.load_errors}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "batch-scoring",
        "version": "0.1.0",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics",
            "services": "/api/v1/services",
            "jobs": "/api/v1/services/{service_name}/jobs",
            "job": "/api/v1/jobs/{job_id}",
            "reload": "/reload"
        }
    }


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=BatchScoringConfig().ml_batch_scoring_port,
        log_level="info"
    )
