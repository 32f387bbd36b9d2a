"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./statement_ledger.db"

    # Service
    service_name: str = "statement-ledger"
    log_level: str = "INFO"
    upload_dir: str = "uploads"

    # Parsing
    local_currency: str = "ILS"
    validation_tolerance: float = 10.0
    header_scan_rows: int = 10

    # Reconciliation
    projection_discrepancy_ratio: float = 0.05

    # External Services
    exchange_rate_api_base: str = "https://edge.boi.gov.il/FusionEdgeServer/sdmx/v2/data/dataflow/BOI.STATISTICS/ER"
    job_webhook_url: str = "http://localhost:8002/jobs"
    categorize_job_name: str = "categorize-businesses"

    # HTTP Client
    http_timeout_seconds: float = 5.0
    job_max_retries: int = 5
    job_backoff_base: float = 1.0  # Exponential backoff base in seconds


settings = Settings()
