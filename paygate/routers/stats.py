from fastapi import APIRouter, Request
from paygate.models.stats import StatsResponse

router = APIRouter()


@router.get("/stats", response_model=StatsResponse)
async def get_stats(request: Request) -> StatsResponse:
    """
    Returns aggregated statistics since service startup:
    - Authorizations, declines and failures, authorization rate
    - Fallbacks used and requests with no eligible processor
    - Per-processor breakdown and the most recent routing decisions
    - Webhook delivery counters
    """
    return request.app.state.ctx.stats_service.snapshot()
