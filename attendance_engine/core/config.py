"""
Configuration management for the attendance sync & payroll engine
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeviceConfig(BaseModel):
    """One biometric terminal the sync jobs can pull punches from"""
    id: str = Field(..., min_length=1, description="Stable device identifier (also the circuit breaker scope)")
    name: str = Field(default="", description="Human readable location, e.g. 'Main Office - Entry'")
    ip: str = Field(..., min_length=1)
    port: int = Field(default_factory=lambda: settings.DEVICE_DEFAULT_PORT, description="Defaults to DEVICE_DEFAULT_PORT")
    enabled: bool = True
    priority: int = Field(default=1, description="Lower values are processed first")
    timeout_ms: int = Field(default_factory=lambda: settings.DEVICE_TIMEOUT_MS, gt=0, description="Defaults to DEVICE_TIMEOUT_MS")


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=True)

    DATABASE_URL: str = Field(default="sqlite:///./attendance_engine.db", description="SQLAlchemy database URL")
    JWT_SECRET_KEY: str = Field(default="change-me-in-production", description="Secret used to verify requester tokens")
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    JWT_EXPIRE_MINUTES: int = Field(default=60, description="Lifetime of tokens minted by create_access_token")

    APP_ENV: str = Field(default="local", description="Application environment: local, staging, prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")
    VERSION: Optional[str] = Field(default=None, description="Application version (git SHA or semver)")

    # Terminals (defaults declared before SYNC_DEVICES, which reads them)
    DEVICE_DEFAULT_PORT: int = Field(default=4370, ge=1, le=65535, description="ZKTeco default UDP/TCP port")
    DEVICE_TIMEOUT_MS: int = Field(default=5000, gt=0)
    SYNC_DEVICES: List[DeviceConfig] = Field(default_factory=list, description="JSON list of terminals used by scheduled syncs")

    # Retry / backoff
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RETRY_BASE_DELAY_MS: int = Field(default=1000, ge=0)
    RETRY_MAX_DELAY_MS: int = Field(default=10000, ge=0)
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1.0)

    # Circuit breaker
    CIRCUIT_FAILURE_THRESHOLD: int = Field(default=5, ge=1)
    CIRCUIT_RECOVERY_TIMEOUT_S: float = Field(default=30.0, ge=0)

    # Notifications
    NOTIFICATIONS_ENABLED: bool = Field(default=True)
    NOTIFICATION_COOLDOWN_S: float = Field(default=300.0, ge=0, description="Minimum gap between two critical alerts")

    # Sync scheduling
    SYNC_SCHEDULER_ENABLED: bool = Field(default=False)
    SYNC_SCHEDULER_INTERVAL_S: float = Field(default=60.0, gt=0)
    SYNC_DAILY_HOUR: int = Field(default=6, ge=0, le=23, description="Hour of day (UTC) for the scheduled daily sync")
    SYNC_MAX_RANGE_DAYS: int = Field(default=31, ge=1)
    SYNC_JOB_RETENTION_DAYS: int = Field(default=30, ge=1)
    HEALTH_FAILURE_THRESHOLD: int = Field(default=3, ge=1, description="Consecutive failed jobs before the sync is DOWN")

    # Payroll rules
    PAYROLL_DAILY_THRESHOLD_HOURS: Decimal = Field(default=Decimal("8"))
    PAYROLL_WEEKLY_THRESHOLD_HOURS: Decimal = Field(default=Decimal("40"))
    PAYROLL_OVERTIME_MULTIPLIER: Decimal = Field(default=Decimal("1.5"))
    PAYROLL_DEFAULT_STANDARD_RATE: Decimal = Field(default=Decimal("10.00"))

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate APP_ENV"""
        allowed = ["local", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v.upper()

    @field_validator("SYNC_DEVICES", mode="before")
    @classmethod
    def apply_device_defaults(cls, v, info: ValidationInfo):
        """Fill port and timeout of configured terminals from DEVICE_DEFAULT_PORT / DEVICE_TIMEOUT_MS"""
        if not isinstance(v, list):
            return v
        port = info.data.get("DEVICE_DEFAULT_PORT", 4370)
        timeout_ms = info.data.get("DEVICE_TIMEOUT_MS", 5000)
        devices = []
        for device in v:
            if isinstance(device, dict):
                device = {"port": port, "timeout_ms": timeout_ms, **device}
            devices.append(device)
        return devices

    def validate_production(self) -> None:
        """
        Validate settings for production environment

        Raises:
            ValueError: If production settings are invalid
        """
        if self.APP_ENV == "prod":
            if len(self.JWT_SECRET_KEY) < 32:
                raise ValueError(
                    "JWT_SECRET_KEY must be at least 32 characters in production environment"
                )
            if self.DATABASE_URL.startswith("sqlite"):
                raise ValueError(
                    "DATABASE_URL must point to a server database in production environment"
                )

    def retry_policy(self):
        from attendance_engine.services.retry_executor import RetryPolicy
        return RetryPolicy(max_attempts=self.RETRY_MAX_ATTEMPTS)

    def backoff_policy(self):
        from attendance_engine.services.backoff import BackoffPolicy
        return BackoffPolicy(
            base_delay_ms=self.RETRY_BASE_DELAY_MS,
            multiplier=self.RETRY_BACKOFF_MULTIPLIER,
            max_delay_ms=self.RETRY_MAX_DELAY_MS,
        )

    def circuit_breaker_config(self):
        from attendance_engine.services.circuit_breaker import CircuitBreakerConfig
        return CircuitBreakerConfig(
            failure_threshold=self.CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout_s=self.CIRCUIT_RECOVERY_TIMEOUT_S,
        )

    def overtime_rules(self):
        from attendance_engine.services.overtime_calculator import OvertimeRules
        return OvertimeRules(
            daily_threshold=self.PAYROLL_DAILY_THRESHOLD_HOURS,
            weekly_threshold=self.PAYROLL_WEEKLY_THRESHOLD_HOURS,
            overtime_multiplier=self.PAYROLL_OVERTIME_MULTIPLIER,
            default_standard_rate=self.PAYROLL_DEFAULT_STANDARD_RATE,
        )


# Create settings instance
settings = Settings()

# Validate production settings if in prod
if settings.APP_ENV == "prod":
    settings.validate_production()
