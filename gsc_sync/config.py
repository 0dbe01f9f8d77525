"""
Configuration management for the Search Console sync engine
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "GSC Keyword Sync"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./gsc_sync.db"

    # Google Search Console
    gsc_client_id: Optional[str] = None
    gsc_client_secret: Optional[str] = None
    gsc_token_uri: str = "https://oauth2.googleapis.com/token"
    gsc_credentials_path: Optional[str] = None  # Service account fallback
    # Reporting windows
    gsc_reporting_lag_days: int = 3  # Days before a date's data is stable
    gsc_initial_position_days: int = 7  # Pre-campaign baseline window
    gsc_traffic_months: int = 12  # Fully-elapsed months of site traffic
    gsc_reporting_timezone: str = "America/Los_Angeles"
    # Fetch limits
    gsc_row_limit: int = 25000  # API maximum per page
    gsc_page_delay_seconds: float = 2.0  # Delay between pages
    gsc_request_timeout_seconds: float = 120.0
    gsc_fetch_max_retries: int = 3
    gsc_quota_wait_seconds: float = 900.0  # 15 min wait on quota errors
    gsc_wait_for_all_data: bool = False

    # Sync
    sync_max_concurrent_campaigns: int = 4
    sync_daily_schedule: str = "0 2 * * *"
    sync_timezone: str = "UTC"
    enable_scheduler: bool = True

    # Export
    export_enabled: bool = False
    export_dir: str = "exports"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
