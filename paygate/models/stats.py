from pydantic import BaseModel
from typing import Dict

from paygate.models.processor import RoutingDecision


class ProcessorStats(BaseModel):
    processor_code: str
    attempt_count: int
    approved_count: int
    denied_count: int
    failed_count: int
    timeout_count: int
    approved_volume: int
    times_selected: int
    avg_latency_ms: float


class WebhookStats(BaseModel):
    composed: int
    delivered: int
    failed_attempts: int
    terminal_failures: int
    skipped_no_callback: int


class StatsResponse(BaseModel):
    total_transactions: int
    total_authorized: int
    total_denied: int
    total_failed: int
    authorization_rate: float
    fallbacks_used: int
    no_processor_available: int
    per_processor: Dict[str, ProcessorStats]
    webhooks: WebhookStats
    recent_decisions: list[RoutingDecision]
    uptime_seconds: float
