"""Configuration management for ToolWatch Core"""

import os
import warnings
from dataclasses import dataclass
from typing import Any, Tuple
from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator, ValidationInfo


class Settings(BaseSettings):
    """Application settings with validation"""

    # API Configuration
    PORT: int = 8000
    HOST: str = "0.0.0.0"
    LOG_LEVEL: str = "info"
    LOG_FORMAT: str = "console"  # console, json

    # Security Configuration
    RATE_LIMIT_PER_MINUTE: int = 60
    CORS_ORIGINS: list[str] = ["*"]  # Configure for production

    # Tooling Configuration
    MONITORED_TOOLS: list[str] = ["rapid7", "automox", "defender"]
    GAP_TARGET_TOOL: str = "rapid7"

    # Health Classification
    INACTIVE_THRESHOLD_DAYS: int = 15
    HEALTH_GRACE_PERIOD_DAYS: int = 3

    # Stability Classification
    LOW_CHANGE_THRESHOLD: int = 1
    STABLE_DAYS_THRESHOLD: int = 7
    FLAPPING_THRESHOLD: int = 5  # changes in the window
    STABILITY_DAMPING: float = 200.0

    # Recovery Tracking
    NORMAL_RECOVERY_DAYS: int = 2
    STUCK_RECOVERY_DAYS: int = 3

    # Request Windows
    DEFAULT_WINDOW_DAYS: int = 30
    MAX_WINDOW_DAYS: int = 365
    TRAILING_WINDOW_DAYS: int = 5
    TOP_COMBINATIONS: int = 10
    ANALYSIS_TIMEOUT_SECONDS: float = 30.0

    # Cache Configuration
    CACHE_ENABLED: bool = True
    CACHE_TTL: int = 300  # 5 minutes
    CACHE_MAX_ENTRIES: int = 256  # memory backend only
    REDIS_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "toolwatch"

    @field_validator("PORT")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range"""
        if not 1 <= v <= 65535:
            raise ValueError(f"PORT must be between 1 and 65535, got {v}")
        return v

    @field_validator("RATE_LIMIT_PER_MINUTE")
    @classmethod
    def validate_rate_limit(cls, v: int) -> int:
        """Validate rate limit is reasonable"""
        if v < 1:
            raise ValueError(f"RATE_LIMIT_PER_MINUTE must be at least 1, got {v}")
        if v > 10000:
            raise ValueError(f"RATE_LIMIT_PER_MINUTE seems excessively high: {v}")
        return v

    @field_validator("CORS_ORIGINS")
    @classmethod
    def validate_cors_origins(cls, v: list[str], info: ValidationInfo) -> list[str]:
        """Warn about insecure CORS configuration in production"""
        env = os.getenv("ENV", "development").lower()
        is_production = env in ("production", "prod")

        if is_production and "*" in v:
            warnings.warn(
                "SECURITY WARNING: CORS_ORIGINS contains '*' in production environment. "
                "Consider setting specific origins like ['https://dashboard.example.com']",
                RuntimeWarning,
                stacklevel=2
            )

        for origin in v:
            if origin == "*":
                continue
            if not origin.startswith(("http://", "https://")):
                raise ValueError(
                    f"CORS origin '{origin}' must start with http:// or https://"
                )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels"""
        valid_levels = ("debug", "info", "warning", "error", "critical")
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {valid_levels}, got '{v}'"
            )
        return v_lower

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is supported"""
        valid_formats = ("console", "json")
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(
                f"LOG_FORMAT must be one of {valid_formats}, got '{v}'"
            )
        return v_lower

    @field_validator("MONITORED_TOOLS")
    @classmethod
    def validate_monitored_tools(cls, v: list[str]) -> list[str]:
        """Tool ids must be unique, non-empty and lowercase"""
        cleaned = [tool.strip().lower() for tool in v]
        if not cleaned:
            raise ValueError("MONITORED_TOOLS must name at least one tool")
        if any(not tool for tool in cleaned):
            raise ValueError("MONITORED_TOOLS entries must be non-empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError(f"MONITORED_TOOLS contains duplicates: {v}")
        return cleaned

    @field_validator("GAP_TARGET_TOOL")
    @classmethod
    def normalize_gap_target(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator(
        "INACTIVE_THRESHOLD_DAYS",
        "HEALTH_GRACE_PERIOD_DAYS",
        "LOW_CHANGE_THRESHOLD",
    )
    @classmethod
    def validate_non_negative(cls, v: int, info: ValidationInfo) -> int:
        """Day and change thresholds cannot be negative"""
        if v < 0:
            raise ValueError(f"{info.field_name} must be non-negative, got {v}")
        return v

    @field_validator(
        "STABLE_DAYS_THRESHOLD",
        "FLAPPING_THRESHOLD",
        "NORMAL_RECOVERY_DAYS",
        "STUCK_RECOVERY_DAYS",
        "DEFAULT_WINDOW_DAYS",
        "MAX_WINDOW_DAYS",
        "TRAILING_WINDOW_DAYS",
        "TOP_COMBINATIONS",
        "CACHE_MAX_ENTRIES",
    )
    @classmethod
    def validate_positive(cls, v: int, info: ValidationInfo) -> int:
        """Windows and counts must be at least 1"""
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1, got {v}")
        return v

    @field_validator("STABILITY_DAMPING", "ANALYSIS_TIMEOUT_SECONDS")
    @classmethod
    def validate_positive_float(cls, v: float, info: ValidationInfo) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be greater than 0, got {v}")
        return v

    @field_validator("CACHE_TTL")
    @classmethod
    def validate_cache_ttl(cls, v: int) -> int:
        """Validate cache TTL is reasonable"""
        if v < 1:
            raise ValueError(f"CACHE_TTL must be at least 1 second, got {v}")
        if v > 86400:
            raise ValueError(f"CACHE_TTL seems excessively high: {v} seconds (>1 day)")
        return v

    @model_validator(mode="after")
    def validate_cross_field(self) -> "Settings":
        """Validate settings that depend on each other"""
        if self.GAP_TARGET_TOOL not in self.MONITORED_TOOLS:
            raise ValueError(
                f"GAP_TARGET_TOOL '{self.GAP_TARGET_TOOL}' must be one of "
                f"MONITORED_TOOLS {self.MONITORED_TOOLS}"
            )
        if self.STUCK_RECOVERY_DAYS < self.NORMAL_RECOVERY_DAYS:
            raise ValueError(
                "STUCK_RECOVERY_DAYS must be greater than or equal to NORMAL_RECOVERY_DAYS"
            )
        if self.DEFAULT_WINDOW_DAYS > self.MAX_WINDOW_DAYS:
            raise ValueError("DEFAULT_WINDOW_DAYS cannot exceed MAX_WINDOW_DAYS")
        if self.FLAPPING_THRESHOLD <= self.LOW_CHANGE_THRESHOLD:
            raise ValueError("FLAPPING_THRESHOLD must be greater than LOW_CHANGE_THRESHOLD")
        return self

    def thresholds(self) -> "AnalyticsThresholds":
        """Snapshot the analytics tuning knobs for the pure analyzers"""
        return AnalyticsThresholds(
            monitored_tools=tuple(self.MONITORED_TOOLS),
            inactive_threshold_days=self.INACTIVE_THRESHOLD_DAYS,
            health_grace_period_days=self.HEALTH_GRACE_PERIOD_DAYS,
            low_change_threshold=self.LOW_CHANGE_THRESHOLD,
            stable_days_threshold=self.STABLE_DAYS_THRESHOLD,
            flapping_threshold=self.FLAPPING_THRESHOLD,
            stability_damping=self.STABILITY_DAMPING,
            normal_recovery_days=self.NORMAL_RECOVERY_DAYS,
            stuck_recovery_days=self.STUCK_RECOVERY_DAYS,
        )

    def get_config_report(self) -> dict[str, Any]:
        """
        Generate a configuration report for the /health endpoint.

        Returns:
            Dict containing the environment, the analytics thresholds in
            effect, and any configuration issues worth surfacing.
        """
        env = os.getenv("ENV", "development").lower()
        is_production = env in ("production", "prod")

        issues = []
        recommendations = []

        if "*" in self.CORS_ORIGINS:
            if is_production:
                issues.append("CORS_ORIGINS allows all origins (*) in production")
            recommendations.append("Set specific CORS origins instead of '*'")

        if self.REDIS_ENABLED and not self.CACHE_ENABLED:
            recommendations.append("REDIS_ENABLED has no effect while CACHE_ENABLED is false")

        if self.FLAPPING_THRESHOLD >= self.DEFAULT_WINDOW_DAYS:
            recommendations.append(
                "FLAPPING_THRESHOLD >= DEFAULT_WINDOW_DAYS means default windows can never flap"
            )

        return {
            "environment": env,
            "is_production": is_production,
            "issues": issues,
            "recommendations": recommendations,
            "monitored_tools": list(self.MONITORED_TOOLS),
            "gap_target_tool": self.GAP_TARGET_TOOL,
            "cache_enabled": self.CACHE_ENABLED,
            "redis_enabled": self.REDIS_ENABLED,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@dataclass(frozen=True)
class AnalyticsThresholds:
    """Tuning knobs shared by the analyzers.

    Analyzers take this instead of reading the global settings so that
    they stay pure and can be exercised with arbitrary thresholds in tests.
    """
    monitored_tools: Tuple[str, ...] = ("rapid7", "automox", "defender")
    inactive_threshold_days: int = 15
    health_grace_period_days: int = 3
    low_change_threshold: int = 1
    stable_days_threshold: int = 7
    flapping_threshold: int = 5
    stability_damping: float = 200.0
    normal_recovery_days: int = 2
    stuck_recovery_days: int = 3


# Global settings instance
settings = Settings()
