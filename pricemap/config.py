"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
SPOOL_DIR = DATA_DIR / "spool"
PROPERTIES_DB = DATA_DIR / "properties.db"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Application configuration."""

    # Storage
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "sqlite")
    DB_PATH: str = os.getenv("DB_PATH", str(PROPERTIES_DB))
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str | None = os.getenv("SUPABASE_SERVICE_ROLE")
    SUPABASE_TABLE: str = os.getenv("SUPABASE_TABLE", "properties")

    # Runner
    RUN_MODE: str = os.getenv("RUN_MODE", "concurrent")
    WORKERS: int = int(os.getenv("WORKERS", "4"))
    RUN_TIMEOUT: float = float(os.getenv("RUN_TIMEOUT", "0"))
    BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "100"))
    SOURCES: list[str] = _env_list("SOURCES")

    # Fetcher
    RATE_LIMIT_DELAY: float = float(os.getenv("RATE_LIMIT_DELAY", "2.0"))
    RATE_LIMIT_JITTER: float = float(os.getenv("RATE_LIMIT_JITTER", "2.0"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "2.0"))
    TIMEOUT: int = int(os.getenv("TIMEOUT", "30"))
    USER_AGENT: str | None = os.getenv("USER_AGENT")

    # Tor
    USE_TOR: bool = _env_bool("USE_TOR")
    TOR_PROXY_HOST: str = os.getenv("TOR_PROXY_HOST", "127.0.0.1")
    TOR_PROXY_PORT: int = int(os.getenv("TOR_PROXY_PORT", "9050"))
    TOR_CONTROL_PORT: int = int(os.getenv("TOR_CONTROL_PORT", "9051"))
    TOR_CONTROL_PASSWORD: str | None = os.getenv("TOR_CONTROL_PASSWORD")

    # Proxy pool
    PROXY_LIST: list[str] = _env_list("PROXY_LIST")
    PROXY_MAX_FAILURES: int = int(os.getenv("PROXY_MAX_FAILURES", "3"))

    # Geocoding / cache
    OPENCAGE_API_KEY: str | None = os.getenv("OPENCAGE_API_KEY")
    GEOCODE_CACHE_TTL: float = float(os.getenv("GEOCODE_CACHE_TTL", "3600"))
    CACHE_SWEEP_INTERVAL: float = float(os.getenv("CACHE_SWEEP_INTERVAL", "300"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        errors = []
        if cls.STORE_BACKEND not in ("sqlite", "supabase"):
            errors.append(f"STORE_BACKEND must be 'sqlite' or 'supabase', got {cls.STORE_BACKEND!r}")
        if cls.STORE_BACKEND == "supabase":
            if not cls.SUPABASE_URL:
                errors.append("SUPABASE_URL is required")
            if not cls.SUPABASE_SERVICE_ROLE:
                errors.append("SUPABASE_SERVICE_ROLE is required")
        if cls.RUN_MODE not in ("sequential", "concurrent"):
            errors.append(f"RUN_MODE must be 'sequential' or 'concurrent', got {cls.RUN_MODE!r}")
        if cls.WORKERS < 1:
            errors.append("WORKERS must be at least 1")
        if cls.BATCH_SIZE < 1:
            errors.append("BATCH_SIZE must be at least 1")
        if cls.MAX_RETRIES < 0:
            errors.append("MAX_RETRIES must not be negative")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()
