from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "opengrains"
    db_username: str = "opengrains"
    db_password: str = "secret"
    db_pool_max_size: int = 10

    job_poll_interval_seconds: int = 5
    ocr_max_concurrency: int = 4
    ocr_stale_job_seconds: int = 600

    max_upload_size_bytes: int = 10 * 1024 * 1024
    upload_stale_seconds: int = 900

    storage_backend: str = "local"
    files_root: str = "/app/files"
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_bucket: str = "documents"
    storage_timeout_seconds: int = 30

    ocr_provider: str = "openai"
    ocr_api_key: str = ""
    ocr_model_name: str = "gpt-4o-mini"
    ocr_base_url: str = ""
    ocr_timeout_seconds: int = 60
    ocr_temperature: float = 0.0
    ocr_render_dpi: int = 150
    ocr_max_pages: int = 3

    pdf_engine: str = "pdfplumber"
