"""API routes for the batch scoring service."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
import structlog

from libs.scoring.adapter import ScoringAdapter
from libs.scoring.errors import (
    DataAccessError,
    ExecutionError,
    RegistrationStateError,
    SchemaMismatchError,
    ScoringError,
)
from ..runtime.service_registry import ServiceRegistry

logger = structlog.get_logger("batch_scoring.api")

router = APIRouter()

ERROR_STATUS = {
    SchemaMismatchError: 422,
    DataAccessError: 424,
    ExecutionError: 500,
    RegistrationStateError: 409,
}


class JobRequest(BaseModel):
    """Request model for running a batch job."""
    values: Dict[str, Any] = Field(..., description="Inputs, parameters and optional output destinations")


class JobResponse(BaseModel):
    """Response model for job status."""
    job_id: str = Field(..., description="Job identifier")
    service_name: str = Field(..., description="Service the job ran against")
    status: str = Field(..., description="submitted, succeeded or failed")
    outputs: Dict[str, str] = Field(default_factory=dict, description="Output destinations written")
    error_category: Optional[str] = Field(None, description="Error category when failed")
    error_message: Optional[str] = Field(None, description="Error message when failed")
    submitted_at: float = Field(..., description="Submission time (epoch seconds)")
    finished_at: Optional[float] = Field(None, description="Completion time (epoch seconds)")
    duration_seconds: float = Field(..., description="Elapsed seconds")


def get_service_registry(request: Request) -> ServiceRegistry:
    """Get service registry from application state."""
    return request.app.state.service_registry


def get_adapter(request: Request) -> ScoringAdapter:
    """Get scoring adapter from application state."""
    return request.app.state.adapter


def _error_status(error: ScoringError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


@router.get("/services")
async def list_services(registry: ServiceRegistry = Depends(get_service_registry)) -> Dict[str, Any]:
    """List published services and any that failed to load."""
    return {"services": registry.describe(), "load_errors": registry.load_errors}


@router.get("/services/{service_name}/schema")
async def get_service_schema(
    service_name: str,
    registry: ServiceRegistry = Depends(get_service_registry),
) -> Dict[str, Any]:
    """Schema manifest of a published service."""
    result = registry.get(service_name)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Service '{service_name}' not found")
    return result.manifest.model_dump(mode="json")


@router.post("/services/{service_name}/jobs", response_model=JobResponse)
async def run_job(
    service_name: str,
    job_request: JobRequest,
    registry: ServiceRegistry = Depends(get_service_registry),
):
    """Run a batch scoring job and wait for its terminal state."""
    if registry.get(service_name) is None:
        raise HTTPException(status_code=404, detail=f"Service '{service_name}' not found")

    try:
        result = await run_in_threadpool(registry.run_job, service_name, job_request.values)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Service '{service_name}' not found")
    except ScoringError as e:
        status = _error_status(e)
        detail: Dict[str, Any] = {"error_category": e.category, "error_message": e.message}
        if e.result is not None:
            detail = e.result.to_dict()
        logger.warning(
            "Batch job rejected or failed",
            service_name=service_name,
            status_code=status,
            error_category=e.category,
        )
        raise HTTPException(status_code=status, detail=detail) from e

    return JobResponse(**result.to_dict())


@router.get("/services/{service_name}/jobs", response_model=List[JobResponse])
async def list_service_jobs(
    service_name: str,
    registry: ServiceRegistry = Depends(get_service_registry),
    adapter: ScoringAdapter = Depends(get_adapter),
):
    """List jobs run against one service."""
    if registry.get(service_name) is None:
        raise HTTPException(status_code=404, detail=f"Service '{service_name}' not found")
    return [JobResponse(**job.to_dict()) for job in adapter.list_jobs(service_name)]


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, adapter: ScoringAdapter = Depends(get_adapter)):
    """Status of a single job."""
    job = adapter.get_job_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")
    return JobResponse(**job.to_dict())
