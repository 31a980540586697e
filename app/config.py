from enum import Enum

from pydantic_settings import BaseSettings


class PortalEngine(str, Enum):
    HTTP = "http"
    BROWSER = "browser"


class WaitMode(str, Enum):
    FIXED = "fixed"
    EVENT_DRIVEN = "event_driven"
    HYBRID = "hybrid"


class Settings(BaseSettings):
    portal_base_url: str = ""
    portal_username: str = ""
    portal_password: str = ""
    portal_engine: PortalEngine = PortalEngine.HTTP

    database_url: str = "sqlite+aiosqlite:///./truenorth.db"
    cookie_ttl_hours: int = 24

    request_timeout_seconds: float = 15.0
    session_verify_window_seconds: int = 300

    wait_mode: WaitMode = WaitMode.EVENT_DRIVEN
    ajax_settle_timeout_seconds: float = 15.0
    ajax_settle_delay_seconds: float = 2.0
    ajax_poll_interval_seconds: float = 0.25
    browser_headless: bool = True

    default_activity: str = "squash"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
