"""
Operator endpoints: backend listing, metrics, activation, breaker reset and
manual poll triggering. Protected by the X-Admin-Token header when
ADMIN_API_TOKEN is set.
"""

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from stockwatch.api import deps
from stockwatch.core.exceptions import BackendNotFoundError
from stockwatch.schemas import (
    BackendActionOut,
    BackendActiveUpdate,
    BackendMetricsOut,
    BackendOut,
    HealthStatus,
    PollCycleOut,
)
from stockwatch.services.runtime import MonitorRuntime

router = APIRouter(dependencies=[Depends(deps.require_admin)])


@router.get("/backends", response_model=List[BackendOut])
async def list_backends(
    include_health: bool = Query(False, description="Probe active backends and attach their health"),
    runtime: MonitorRuntime = Depends(deps.get_runtime),
):
    """List every registered backend with its breaker state."""
    return await runtime.orchestrator.list_backends(include_health=include_health)


@router.get("/backends/metrics", response_model=List[BackendMetricsOut])
def get_backend_metrics(runtime: MonitorRuntime = Depends(deps.get_runtime)):
    """Per-backend call metrics and circuit breaker counters."""
    return runtime.orchestrator.get_metrics()


@router.get("/backends/health", response_model=List[HealthStatus])
async def get_backend_health(runtime: MonitorRuntime = Depends(deps.get_runtime)):
    return await runtime.orchestrator.get_health_status()


@router.put("/backends/{backend_id}/active", response_model=BackendActionOut)
def set_backend_active(
    backend_id: str,
    update: BackendActiveUpdate,
    runtime: MonitorRuntime = Depends(deps.get_runtime),
):
    """Enable or disable a backend for polling and fan-out."""
    try:
        entry = runtime.orchestrator.set_backend_active(backend_id, update.is_active)
    except BackendNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    state = "enabled" if update.is_active else "disabled"
    return BackendActionOut(
        backend_id=backend_id,
        status=state,
        message=f"Backend {backend_id} {state}, circuit breaker {entry.breaker.state.value}",
    )


@router.post("/backends/{backend_id}/reset-breaker", response_model=BackendActionOut)
def reset_backend_breaker(backend_id: str, runtime: MonitorRuntime = Depends(deps.get_runtime)):
    try:
        runtime.orchestrator.reset_backend_breaker(backend_id)
    except BackendNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return BackendActionOut(backend_id=backend_id, status="reset", message="Circuit breaker closed")


@router.post("/poller/trigger")
async def trigger_poll_cycle(
    background_tasks: BackgroundTasks,
    runtime: MonitorRuntime = Depends(deps.get_runtime),
):
    """Manually trigger one availability poll cycle."""
    from stockwatch.core.scheduler import job_poll_availability

    if runtime.poller.is_running:
        raise HTTPException(status_code=409, detail="A poll cycle is already running")

    background_tasks.add_task(job_poll_availability, runtime)
    return {"status": "triggered", "message": "Availability poll cycle triggered"}


@router.get("/poller/status")
def get_poller_status(runtime: MonitorRuntime = Depends(deps.get_runtime)):
    last: Optional[PollCycleOut] = None
    if runtime.poller.last_result is not None:
        last = PollCycleOut(**runtime.poller.last_result.to_dict())
    return {"running": runtime.poller.is_running, "last_cycle": last}
