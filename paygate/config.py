from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Routing
    ROUTING_MAX_FALLBACKS: int = 1
    FALLBACK_MIN_SUCCESS_RATE: float = 95.0  # fallback prefers processors above this

    # Health Monitor
    HEALTH_CHECK_INTERVAL_SECONDS: float = 60.0
    HEALTH_MIN_SUCCESS_RATE: float = 90.0
    HEALTH_MAX_LATENCY_MS: float = 5000.0
    HEALTH_STALE_AFTER_SECONDS: float = 300.0  # 5 minutes
    HEALTH_LIVE_PROBE: bool = False

    # Rebalancer
    REBALANCE_INTERVAL_SECONDS: float = 3600.0

    # Capacity resets (local scheduler clock)
    CAPACITY_RESET_HOUR: int = 0
    MERCHANT_RESET_DAY: int = 1

    # Webhook delivery
    WEBHOOK_MAX_ATTEMPTS: int = 5
    WEBHOOK_DEFAULT_TIMEOUT_SECONDS: float = 30.0
    WEBHOOK_BACKOFF_BASE_MINUTES: float = 1.0
    WEBHOOK_PENDING_SWEEP_SECONDS: float = 30.0
    WEBHOOK_FAILED_SWEEP_SECONDS: float = 60.0
    WEBHOOK_FAILED_RETRY_WINDOW_SECONDS: float = 60.0
    WEBHOOK_STALE_SENDING_SECONDS: float = 300.0
    WEBHOOK_RETENTION_DAYS: int = 30
    WEBHOOK_PURGE_HOUR: int = 2
    WEBHOOK_REPORT_INTERVAL_SECONDS: float = 3600.0
    WEBHOOK_RESPONSE_BODY_LIMIT: int = 2048

    # Periodic jobs are skipped entirely when False (API tests, one-off scripts)
    SCHEDULER_ENABLED: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
