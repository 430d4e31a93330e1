from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str | None = None
    supabase_url: str
    supabase_service_role_key: str
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60
    internal_scheduler_secret: str | None = None
    observability_export_url: str | None = None
    observability_export_bearer_token: str | None = None
    observability_export_timeout_seconds: float = 3.0

    nymcard_webhook_secret: str | None = None
    nymcard_enabled: bool = True
    ramp_webhook_secret: str | None = None
    ramp_enabled: bool = True
    wio_webhook_secret: str | None = None
    wio_enabled: bool = True
    guardarian_webhook_secret: str | None = None
    guardarian_enabled: bool = True
    circle_webhook_secret: str | None = None
    circle_enabled: bool = True

    webhook_signature_tolerance_seconds: int = 300
    webhook_max_retries: int = 5
    webhook_retry_base_delay_ms: int = 1000
    webhook_retry_max_delay_ms: int = 300000
    webhook_retry_exponential_base: float = 2.0
    webhook_retry_max_total_delay_ms: int | None = 60000
    webhook_inline_attempts: int = 1
    webhook_sweeper_batch_size: int = 10
    webhook_sweeper_cooldown_seconds: int = 60
    webhook_sweeper_attempts_per_event: int | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
