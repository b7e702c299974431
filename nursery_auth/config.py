"""
Application Configuration
Uses Pydantic Settings for environment-based configuration
"""

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    PROJECT_NAME: str = "Nursery Auth API"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development", pattern="^(development|staging|production)$")
    DEBUG: bool = Field(default=False)
    API_V1_STR: str = "/api/v1"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "nursery-auth-api"
    JWT_AUDIENCE: str = "nursery-app"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # CORS
    # Allow str because it can be a comma-separated string in .env
    CORS_ORIGINS: str | list[str] = Field(
        default=["http://localhost:5173", "http://localhost:8000"]
    )

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_ECHO: bool = False

    # Redis (identity lookup cache; empty REDIS_URL disables it)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 0.5
    IDENTITY_CACHE_TTL: int = 300  # 5 minutes

    # One-time passcodes
    OTP_LENGTH: int = 6
    OTP_TTL_SECONDS: int = 300
    OTP_DAILY_SEND_LIMIT: int = 3  # sends per phone in a trailing 24h window
    OTP_RESEND_COOLDOWN_SECONDS: int = 60
    OTP_VERIFY_WINDOW_SECONDS: int = 300
    OTP_MAX_VERIFY_ATTEMPTS: int = 3

    # Dual-role login
    ROLE_SELECTION_TTL_SECONDS: int = 300

    # Kiosk (entry/exit terminal) sessions
    KIOSK_MAX_LOGIN_ATTEMPTS: int = 5
    KIOSK_LOCKOUT_MINUTES: int = 30
    KIOSK_TOKEN_EXPIRE_MINUTES: int = 60
    KIOSK_MAX_SESSION_HOURS: int = 24

    # SMS gateway
    SMS_ENABLED: bool = False
    SMS_API_URL: str = "https://www.sms-ope.com/sms/api/"
    SMS_USERNAME: str | None = None
    SMS_PASSWORD: str | None = None
    SMS_TIMEOUT_SECONDS: float = 10.0
    SMS_MESSAGE_TEMPLATE: str = "Your verification code is {code}. It expires in {minutes} minutes."

    # Logging
    LOG_LEVEL: str = "INFO"

    # Frontend routes returned after login
    GUARDIAN_REDIRECT_URL: str = "/dashboard/parent"
    STAFF_REDIRECT_URL: str = "/dashboard/staff"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from comma-separated string"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v


# Create global settings instance

load_dotenv()
settings = Settings()  # type: ignore[call-arg]


class UserRole:
    """Role names carried in the ``role`` claim"""

    GUARDIAN = "Parent"
    STAFF = "Staff"
    KIOSK = "Kiosk"


class TokenType:
    """Values of the ``type`` claim distinguishing JWT purposes"""

    ACCESS = "access"
    ROLE_SELECTION = "role_selection"
    KIOSK = "kiosk"
