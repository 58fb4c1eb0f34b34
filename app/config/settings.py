from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Only used by the seed script

    # Session lifetime
    session_max_age_hours: float = 8
    session_check_interval_sec: int = 60
    token_refresh_check_interval_sec: int = 60
    token_refresh_margin_sec: int = 300
    heartbeat_interval_sec: int = 120
    heartbeat_active_window_sec: int = 300

    # Permission resolution
    permission_read_timeout_sec: float = 10
    permission_reconcile_interval_sec: int = 300  # 0 disables periodic reconciliation

    # App
    app_name: str = "shipdash-access"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"
    login_rate_limit: str = "5/15minutes"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def session_max_age_sec(self) -> float:
        return self.session_max_age_hours * 3600

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
