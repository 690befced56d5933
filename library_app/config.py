import logging
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "5.0"))

    # Security settings
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", "dev_secret_key")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "120"))  # 2 hours
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "10"))
    password_min_length: int = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))

    # Circulation policy
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "7"))
    max_active_borrows: int = int(os.getenv("MAX_ACTIVE_BORROWS", "3"))
    fine_per_day: int = int(os.getenv("FINE_PER_DAY", "50000"))

    # Search settings
    search_min_length: int = int(os.getenv("SEARCH_MIN_LENGTH", "2"))
    search_limit: int = int(os.getenv("SEARCH_LIMIT", "8"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Management System")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_bool("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once; later calls are no-ops."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
