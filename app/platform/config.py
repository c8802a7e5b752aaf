from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings

from app.platform.exceptions import BrowserstackError, ErrorKind


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Browser Compare"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = True

    # ── Database ────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./browser_compare.db"

    # ── BrowserStack Screenshots API ────────────
    BROWSERSTACK_USERNAME: Optional[str] = None
    BROWSERSTACK_ACCESS_KEY: Optional[str] = None
    BROWSERSTACK_API_BASE: str = "https://www.browserstack.com"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Token bucket shared by every outbound call
    RATE_LIMIT_CAPACITY: int = 5
    RATE_LIMIT_REFILL_INTERVAL_MS: int = 1000
    RATE_LIMIT_MAX_RETRIES: int = 3
    RATE_LIMIT_INITIAL_DELAY_MS: int = 1000
    RATE_LIMIT_BACKOFF_FACTOR: float = 2.0

    # Job polling
    POLL_INTERVAL_SECONDS: float = 2.0
    MAX_POLL_ATTEMPTS: int = 30

    # ── Logging ─────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    def require_browserstack_credentials(self) -> tuple[str, str]:
        """
        Return (username, access_key) or fail with a fatal configuration error.
        """
        missing = [
            name
            for name, value in (
                ("BROWSERSTACK_USERNAME", self.BROWSERSTACK_USERNAME),
                ("BROWSERSTACK_ACCESS_KEY", self.BROWSERSTACK_ACCESS_KEY),
            )
            if not value
        ]
        if missing:
            raise BrowserstackError(
                ErrorKind.CONFIGURATION,
                "BrowserStack credentials not configured",
                context={"missing": missing},
            )
        return self.BROWSERSTACK_USERNAME, self.BROWSERSTACK_ACCESS_KEY

    def require_database_url(self) -> str:
        if not self.DATABASE_URL:
            raise BrowserstackError(
                ErrorKind.CONFIGURATION,
                "Data store not configured",
                context={"missing": ["DATABASE_URL"]},
            )
        return self.DATABASE_URL


settings = Settings()
