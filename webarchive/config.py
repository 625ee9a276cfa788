from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Web Archive"
    base_storage_dir: str = "./archives"

    # Same-origin links and asset references are rewritten under this prefix
    viewer_prefix: str = "/api/view"

    request_timeout: int = 30
    asset_timeout: int = 15
    playwright_timeout_ms: int = 30000
    render_wait_ms: int = 2000

    # Seconds between two request strategies for the same URL
    strategy_delay: float = 0.5
    max_content_bytes: int = 10 * 1024 * 1024
    max_asset_bytes: int = 50 * 1024 * 1024
    asset_concurrency: int = 8

    # Hard bound on a whole archive run, browser rendering included
    session_timeout: float = 600

    log_level: str = "INFO"

    # Crawl defaults, overridable per request
    default_max_pages: int = 50
    default_max_depth: int = 3
    default_same_origin_only: bool = True
    default_concurrency: int = 5
    default_request_delay_ms: int = 100
    include_assets_default: bool = False
    render_js_default: bool = False


settings = Settings()
