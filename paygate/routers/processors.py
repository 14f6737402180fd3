from fastapi import APIRouter, HTTPException, Request

from paygate.models.exceptions import ProcessorNotFoundError
from paygate.models.processor import OperatingStateUpdate, Processor, ProcessorStatusResponse

router = APIRouter()


def _status(p: Processor) -> ProcessorStatusResponse:
    return ProcessorStatusResponse(
        code=p.code,
        name=p.name,
        kind=p.kind,
        operating_state=p.operating_state,
        health_state=p.health_state,
        priority=p.priority,
        success_rate=round(p.success_rate, 2),
        avg_latency_ms=round(p.avg_latency_ms, 2),
        transaction_count=p.transaction_count,
        volume_today=p.volume_today,
        daily_ceiling=p.daily_ceiling,
        percent_of_ceiling_used=round(p.percent_of_ceiling_used, 2),
        last_health_check=p.last_health_check,
        last_health_error=p.last_health_error,
    )


@router.get("/processors/status", response_model=list[ProcessorStatusResponse])
async def get_processor_status(request: Request) -> list[ProcessorStatusResponse]:
    """
    Returns the current view of every configured processor:
    - Operating state (enabled / disabled / maintenance) and health state
    - Rolling success rate and average latency
    - Daily volume against the daily ceiling
    """
    return [_status(p) for p in request.app.state.ctx.registry.all()]


@router.post("/processors/{code}/state", response_model=ProcessorStatusResponse)
async def set_operating_state(
    code: str,
    body: OperatingStateUpdate,
    request: Request,
) -> ProcessorStatusResponse:
    try:
        processor = request.app.state.ctx.registry.set_operating_state(code, body.state)
    except ProcessorNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _status(processor)


@router.post(
    "/processors/health-check",
    tags=["Operations"],
    summary="Run the health monitor now instead of waiting for its next cycle",
)
async def run_health_check(request: Request) -> dict:
    results = await request.app.state.ctx.health_monitor.check_all()
    return {code: state.value for code, state in results.items()}


@router.post(
    "/processors/rebalance",
    tags=["Operations"],
    summary="Run the priority rebalancer now",
)
async def run_rebalance(request: Request) -> dict:
    """Returns the new priority of every processor whose priority changed."""
    return request.app.state.ctx.rebalancer.rebalance()
