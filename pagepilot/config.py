from pydantic_settings import BaseSettings, SettingsConfigDict

import os

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./pagepilot.db"

    # Used for data-deletion status links and OAuth redirects
    public_base_url: str = os.getenv("BASE_URL", "http://localhost:8000")
    cors_origins: str = "*"

    secret_key: str = "change-me-in-production-for-jwt"
    admin_api_key: str | None = None
    superadmin_email: str | None = None
    superadmin_password: str | None = None

    # AI providers
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    anthropic_api_key: str | None = None
    claude_model: str = "claude-sonnet-4-20250514"

    # Facebook / Meta
    facebook_app_id: str | None = None
    facebook_app_secret: str | None = None
    facebook_access_token: str | None = None
    facebook_app_token: str | None = None
    facebook_page_id: str | None = None
    fb_page_access_token: str | None = None
    facebook_ad_account_id: str | None = None
    facebook_pixel_id: str | None = None
    facebook_test_event_code: str | None = None
    fb_verify_token: str | None = None
    graph_api_version: str = "v21.0"

    # Automation
    auto_post_enabled: bool = False
    min_score_threshold: float = 50
    auto_post_cron: str = "0 */6 * * *"
    auto_content_cron: str = "0 8 * * *"
    auto_boost_hour: int = 9
    queue_check_minutes: int = 5
    publish_max_retries: int = 3
    publish_retry_delay_minutes: int = 30
    ai_fallback_reply_seconds: int = 120
    post_score_refresh_hours: int = 6
    page_health_minutes: int = 10
    page_health_failure_threshold: int = 3
    scheduler_enabled: bool = True
    scheduler_timezone: str = "America/New_York"

    # Log shipping
    axiom_token: str | None = None
    axiom_dataset: str | None = None
    axiom_url: str = "https://api.axiom.co"
    axiom_org_id: str | None = None

    @property
    def page_token(self) -> str | None:
        return self.fb_page_access_token or self.facebook_access_token

settings = Settings()
