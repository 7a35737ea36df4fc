from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "unraveldocs"
    db_username: str = "unraveldocs"
    db_password: str = "secret"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    max_job_attempts: int = 3
    job_poll_interval_seconds: int = 5

    ocr_default_provider: str = "tesseract"
    ocr_fallback_enabled: bool = True
    ocr_fallback_provider: str = "tesseract"
    ocr_enabled_providers: str = "tesseract"
    ocr_max_file_size_bytes: int = 10 * 1024 * 1024
    ocr_timeout_seconds: int = 60
    ocr_tier_policy: str = "free:tesseract,trial:tesseract,*:openai-vision"

    ocr_quota_enabled: bool = True
    ocr_quota_track_usage: bool = True
    ocr_quota_free_daily_limit: int = 50
    ocr_quota_trial_daily_limit: int = 50
    ocr_quota_basic_daily_limit: int = 200
    ocr_quota_premium_daily_limit: int = 1000
    ocr_quota_enterprise_daily_limit: int = -1

    tesseract_cmd: str = ""
    tesseract_language: str = "eng"
    tesseract_page_seg_mode: int = 3
    tesseract_ocr_engine_mode: int = 3
    tesseract_pdf_dpi: int = 200
    tesseract_max_pdf_pages: int = 10

    openai_api_key: str = ""
    openai_model_name: str = ""
    openai_base_url: str = ""
    openai_timeout_seconds: int = 30
    vision_max_file_size_bytes: int = 20 * 1024 * 1024
    vision_max_pdf_pages: int = 10
    vision_unavailable_cooldown_seconds: int = 60

    image_fetch_timeout_seconds: int = 30

    indexing_webhook_url: str = ""
    indexing_timeout_seconds: int = 5

    def enabled_provider_codes(self) -> list[str]:
        """Return enabled provider codes, lowercased, in configured order."""
        return [
            code.strip().lower()
            for code in self.ocr_enabled_providers.split(",")
            if code.strip()
        ]
