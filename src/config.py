from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str
    supabase_url: str
    supabase_service_role_key: str
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    app_env: str = "production"  # production | development | test
    integration_webhook_shared_secret: str | None = None
    weather_station_webhook_secret: str | None = None
    weather_station_api_base: str | None = None
    disabled_integration_providers: str = ""
    removed_integration_providers: str = "govee"
    integration_provider_timeout_seconds: float = 10.0
    integration_retry_worker_enabled: bool = False
    integration_retry_tick_seconds: int = 60
    integration_retry_batch_size: int = 50
    integration_retry_max_attempts: int = 5
    integration_retry_claim_timeout_seconds: int = 600
    internal_scheduler_secret: str | None = None
    observability_export_url: str | None = None
    observability_export_bearer_token: str | None = None
    observability_export_timeout_seconds: float = 3.0

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @property
    def is_test_mode(self) -> bool:
        return self.app_env.strip().lower() == "test"


def parse_provider_list(value: str | None) -> set[str]:
    return {item.strip().lower() for item in str(value or "").split(",") if item.strip()}


settings = Settings()
