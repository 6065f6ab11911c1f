"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Remote object store
    remote_api_url: str = "http://localhost:8080/api/1.1/obj"
    remote_api_token: str = ""
    supplier_collection: str = "supplier"
    product_collection: str = "product"
    quote_collection: str = "supplier_quote"

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    app_host: str = "0.0.0.0"
    app_port: int = 8001
    admin_api_key: str = ""  # Empty disables the write-endpoint guard

    # ==========================================================================
    # Remote Client Settings
    # ==========================================================================
    remote_page_size: int = 100  # Records requested per page
    remote_max_pages: int = 1000  # Hard ceiling on pages per fetch
    remote_max_attempts: int = 3  # Attempts per call before giving up
    remote_retry_base_delay: float = 1.0  # Delay grows as attempt * base
    remote_request_timeout: float = 30.0  # Per-attempt timeout in seconds

    # ==========================================================================
    # Batch Settings
    # ==========================================================================
    sync_batch_size: int = 50  # Items per sequential chunk
    sync_max_concurrency: int = 5  # In-flight operations per chunk
    sync_batch_pause_seconds: float = 0.5  # Pause between chunks

    # ==========================================================================
    # Pricing Settings
    # ==========================================================================
    default_markup: float = 0.0
    invalid_sort_price: float = 999999.0  # Sort key for quotes without a price
    no_code_sentinel: str = "NO CODE"

    # ==========================================================================
    # Extract Layout Settings
    # ==========================================================================
    extract_group_width: int = 3  # code, model, price
    extract_header_rows: int = 2  # store names + column captions
    max_upload_bytes: int = 10 * 1024 * 1024

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
