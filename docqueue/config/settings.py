from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    max_concurrent_items: int = 3
    max_item_attempts: int = 3
    retry_base_delay_seconds: float = 5.0
    safety_tick_interval_seconds: int = 10
    completed_batch_retention_hours: int = 24
    cleanup_interval_seconds: int = 3600
    estimated_seconds_per_file: int = 45

    store_backend: str = "file"
    store_path: str = ".docqueue"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "docqueue"
    db_username: str = "docqueue"
    db_password: str = "secret"

    task_executor: str = ""
    result_sink: str = ""
