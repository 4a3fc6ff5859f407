"""Application configuration management"""

from functools import lru_cache
from pathlib import Path
from urllib.parse import quote_plus

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Account Session Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "authcore_db"
    POSTGRES_USER: str = "authcore"
    POSTGRES_PASSWORD: str = "authcore"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Access tokens
    SECRET_KEY: str = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # Refresh tokens
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    # Inactive tokens older than this are pruned from an account's history
    REFRESH_TOKEN_TTL_DAYS: int = 7
    REVOKE_DESCENDANTS_ON_REUSE: bool = False

    # Single-use tokens
    RESET_TOKEN_EXPIRE_DAYS: int = 1
    TOKEN_BYTES: int = 48

    # Passwords
    PASSWORD_HASH_ROUNDS: int = 12
    REVOKE_SESSIONS_ON_PASSWORD_RESET: bool = True

    # Registration
    NOTIFY_DUPLICATE_REGISTRATION: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("PASSWORD_HASH_ROUNDS")
    @classmethod
    def _check_hash_rounds(cls, value: int) -> int:
        """bcrypt accepts cost factors between 4 and 31."""
        if not 4 <= value <= 31:
            raise ValueError("PASSWORD_HASH_ROUNDS must be between 4 and 31")
        return value

    @field_validator("TOKEN_BYTES")
    @classmethod
    def _check_token_bytes(cls, value: int) -> int:
        if value < 32:
            raise ValueError("TOKEN_BYTES must be at least 32 (256 bits)")
        return value

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "authcore.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
          3) Local SQLite file for development
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.POSTGRES_HOST:
            user = quote_plus(self.POSTGRES_USER)
            password = quote_plus(self.POSTGRES_PASSWORD)
            return (
                f"postgresql://{user}:{password}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )

        return f"sqlite:///{_BASE_DIR.parent / 'authcore.db'}"

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if self.ENVIRONMENT.lower() != "production":
            return

        insecure_secret_markers = {
            "",
            "dev-secret-key-change-in-production-use-openssl-rand-hex-32",
            "change-me",
        }

        if self.SECRET_KEY in insecure_secret_markers or len(self.SECRET_KEY) < 32:
            raise ValueError(
                "Insecure SECRET_KEY for production. Use a strong key (e.g. `openssl rand -hex 32`)."
            )

        if self.PASSWORD_HASH_ROUNDS < 10:
            raise ValueError("PASSWORD_HASH_ROUNDS below 10 is not allowed in production.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
