from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "LineLight API"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 4000
    # CORS: "*" for dev; in production set to comma-separated origins, e.g. "https://app.example.com,https://admin.example.com"
    cors_origins: str = "*"
    log_level: str = "INFO"  # DEBUG, INFO, WARNING or ERROR

    # MBTA v3 API (key is optional but raises the upstream quota; get one at api-v3.mbta.com)
    mbta_api_base_url: str = "https://api-v3.mbta.com"
    mbta_api_key: str = ""
    mbta_rate_limit_window_seconds: float = 10.0
    mbta_rate_limit_max_requests: int = 6
    mbta_max_retries: int = 4
    mbta_retry_base_delay_seconds: float = 0.5
    mbta_retry_max_delay_seconds: float = 7.5

    # Optional Redis mirror of the resource cache. Empty = memory only. Example: REDIS_URL=redis://localhost:6379/0
    redis_url: str = ""

    enable_polling: bool = True  # Disable to run the API against an empty cache (tests, local debugging)
    enable_diagnostics: bool = True  # Exposes /api/dev/reports/*; turn off in production

    # Inbound rate limit for the endpoints that fan out to the upstream API (slowapi limit string)
    api_rate_limit: str = "60/minute"


def get_settings() -> Settings:
    return Settings()
