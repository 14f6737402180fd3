import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from paygate.config import settings
from paygate.context import build_context
from paygate.routers import merchants, processors, stats, transactions, webhooks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logger.info("PayGate routing core starting up...")

    ctx = build_context(settings)
    app.state.ctx = ctx

    if settings.SCHEDULER_ENABLED:
        ctx.scheduler.start()
    else:
        logger.info("Scheduler disabled: periodic jobs will not run")

    logger.info(
        f"Routing: max_fallbacks={settings.ROUTING_MAX_FALLBACKS} "
        f"fallback_min_success_rate={settings.FALLBACK_MIN_SUCCESS_RATE}% | "
        f"Health: min_success_rate={settings.HEALTH_MIN_SUCCESS_RATE}% "
        f"max_latency={settings.HEALTH_MAX_LATENCY_MS}ms | "
        f"Webhooks: max_attempts={settings.WEBHOOK_MAX_ATTEMPTS}"
    )

    yield

    # --- Shutdown ---
    logger.info("PayGate routing core shutting down.")
    await ctx.close()
    snap = ctx.stats_service.snapshot()
    logger.info(
        f"Final stats: {snap.total_transactions} transactions | "
        f"{snap.total_authorized} authorized | "
        f"{snap.authorization_rate:.1%} authorization rate | "
        f"{snap.webhooks.delivered} webhooks delivered"
    )


app = FastAPI(
    title="PayGate Routing & Webhook Core",
    description=(
        "Payment gateway core: score-based processor routing with fallback, "
        "health monitoring, capacity ceilings and signed merchant webhooks "
        "with scheduled retries."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(transactions.router, tags=["Transactions"])
app.include_router(processors.router, tags=["Processors"])
app.include_router(merchants.router, tags=["Merchants"])
app.include_router(webhooks.router, tags=["Webhooks"])
app.include_router(stats.router, tags=["Statistics"])


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again later."},
    )


@app.get("/", tags=["Health"])
async def root():
    return {
        "service": "PayGate Routing & Webhook Core",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
