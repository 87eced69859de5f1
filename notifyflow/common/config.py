"""Central environment-driven settings shared by the engine services.

Each service process loads this once at startup. Behavior is controlled by
environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    postgres_dsn: str
    api_key: str
    kafka_bootstrap_servers: str = "kafka:9092"
    events_topic: str = "commerce.events"
    events_consumer_group: str = "notifyflow-dispatcher"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    notification_max_attempts: int = 3
    backfill_batch_size: int = 20
    backfill_poll_interval_seconds: int = 60
    backfill_retry_delay_seconds: int = 300
    # Empty disables the post-dispatch wake-up call to the delivery worker.
    delivery_worker_url: str = ""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
