from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List, Optional

class Settings(BaseSettings):
    """
    Settings for the Tutoring Marketplace.

    Please do not modify this file directly.
    Instead, create a .env file in the root directory of the project
    and specify the settings you would like to change there.
    For example, if you would like to use a redis server, add the following
    line to the .env file:
    - USE_REDIS=True.

    SECRET_KEY must be set in production. The default only exists so the
    service and its tests start on a developer machine.

    SUMMARY:
    - Override settings (if needed) using a .env file
    - Never push the .env file to GitHub (it should be in .gitignore)
    """

    # Application settings
    app_name: str = "Tutoring Marketplace"
    app_version: str = "0.1.0"
    app_host: str = "127.0.0.1"
    app_port: int = 8000

    # Local vs production settings
    local: bool = True # Default to local development

    # Token settings
    access_token_expire_minutes: int = 60
    secret_key: str = "change-me-in-production"
    hash_algorithm: str = "HS256"

    # Logs settings
    logs_dir: str = "logs"
    log_level: str = "INFO"

    # Database settings
    db_url: str = "sqlite:///tutormarket.db" # Default, for local development

    # Redis settings
    use_redis: bool = False # Default to not using Redis, change this to True if you have a Redis server set up
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    cache_expire_seconds: int = 600

    # Object storage settings (certificates, resources). Any S3 compatible service: AWS S3, MinIO, Cloudflare R2
    storage_endpoint_url: Optional[str] = None # None means AWS S3 itself
    storage_bucket: str = "tutormarket"
    storage_region: str = "us-east-1"
    storage_access_key_id: Optional[str] = None # None falls back to the standard AWS credential chain
    storage_secret_access_key: Optional[str] = None
    storage_url_expire_seconds: int = 3600
    max_upload_bytes: int = 10 * 1024 * 1024

    # Scheduling settings
    slot_length_minutes: int = 60
    cancellation_notice_hours: int = 24
    enforce_cancellation_deadline: bool = False # Deadline is recorded, but not enforced unless enabled
    require_email_verification: bool = True

    # Payment settings (payments are mocked)
    platform_fee_rate: float = 0.10

    # Rate limiting (slowapi)
    rate_limit_enabled: bool = True

    # CORS settings
    cors_origins: List[str] = ["*"]

    # Load settings from .env file
    model_config = SettingsConfigDict(env_file=".env")

@lru_cache() # Cache settings to avoid reading .env file multiple times
def get_settings():
    """
    Use this function as a dependency to get the settings object.
    Dependency injection will make it easier to test endpoints with different settings, simply inject a different settings object.
    """
    return Settings()
