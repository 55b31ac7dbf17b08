"""Process configuration loaded once from the environment.

Values come from environment variables (optionally a local ``.env`` file).
The resulting ``AppConfig`` is immutable and handed to components as an
explicit dependency instead of being read ad hoc from ``os.environ``.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./mailbench.db"

# Localhost development origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AppConfig:
    """Immutable application configuration."""

    environment: str = "development"
    database_url: str = DEFAULT_DATABASE_URL
    encryption_secret: Optional[str] = None
    jwt_secret_key: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"
    debug: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def secure_cookies(self) -> bool:
        """Cookies carry the Secure flag in production (HTTPS only)."""
        return self.is_production

    @classmethod
    def from_env(cls) -> "AppConfig":
        cors_env = os.getenv("CORS_ORIGINS")
        if cors_env:
            cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
        else:
            cors_origins = list(DEFAULT_CORS_ORIGINS)

        return cls(
            environment=os.getenv("MAILBENCH_ENV", "development"),
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            encryption_secret=os.getenv("API_KEY_ENCRYPTION_SECRET") or None,
            jwt_secret_key=os.getenv("JWT_SECRET_KEY") or None,
            google_client_id=os.getenv("GOOGLE_CLIENT_ID") or None,
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
            google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI") or None,
            cors_origins=cors_origins,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            debug=_env_bool("MAILBENCH_DEBUG"),
        )


# Global config instance (lazy initialization)
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get or create the process-wide configuration.

    Also usable as a FastAPI dependency so tests can override it.
    """
    global _config

    if _config is None:
        _config = AppConfig.from_env()
        logger.debug("Configuration loaded (environment=%s)", _config.environment)

    return _config
