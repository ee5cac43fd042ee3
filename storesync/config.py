"""
Configuration management for the StoreSync engine
"""
from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache

from storesync.exceptions import ValidationError


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "StoreSync Catalog Sync Engine"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./storesync.db"

    # Remote catalog (WooCommerce REST API)
    catalog_api_path: str = "/wp-json/wc/v3"
    catalog_user_agent: str = "StoreSync-Sync-Manager/1.0"
    catalog_request_timeout: float = 30.0  # scans and writes
    catalog_fetch_timeout: float = 15.0  # single record fetches
    catalog_metadata_page_size: int = 100
    catalog_record_page_size: int = 25
    catalog_max_pages: int = 500  # hard stop for misbehaving paginators
    catalog_page_delay_seconds: float = 0.1

    # Pull (remote -> local)
    pull_batch_size: int = 25
    pull_batch_delay_seconds: float = 0.2

    # Mutation queue (local -> remote)
    queue_batch_size: int = 10
    queue_max_retries: int = 3
    queue_item_delay_seconds: float = 0.1
    queue_stale_after_seconds: int = 900  # processing items older than this were orphaned by a crash

    # Scheduler
    enable_queue_scheduler: bool = False
    queue_schedule_minutes: int = 5
    # JSON mapping of tenant id -> connection, e.g.
    # {"org-1": {"base_url": "shop.example.com", "api_key": "ck_...", "api_secret": "cs_..."}}
    scheduled_tenants: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = False


class CatalogConfig(BaseModel):
    """
    Per-tenant connection to the remote catalog.

    Passed explicitly into every orchestrator call; never stored globally.
    """
    model_config = ConfigDict(frozen=True)

    base_url: str
    api_key: str
    api_secret: str

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("base_url is required")
        if not value.startswith(("http://", "https://")):
            value = "https://" + value
        return value.rstrip("/")

    @field_validator("api_key", "api_secret")
    @classmethod
    def require_credential(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("credential must not be empty")
        return value

    @classmethod
    def from_values(cls, base_url: str, api_key: str, api_secret: str) -> "CatalogConfig":
        """Build a config, raising the engine's ValidationError on bad input"""
        try:
            return cls(base_url=base_url, api_key=api_key, api_secret=api_secret)
        except PydanticValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            raise ValidationError(f"Invalid catalog configuration ({fields}): {e.error_count()} error(s)")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
