"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Gating constants and gateway credentials must be identical everywhere
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Bazaar Negotiation Desk"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Reference store database
    DATABASE_URL: str = "sqlite:///./data/bazaar.db"

    # Gates (B2B bulk platform)
    MIN_BULK_QTY: int = 100  # kg, one quintal
    MIN_CART_VALUE: float = 199.0

    # Hosted checkout gateway
    PAYMENT_API_KEY: str = ""
    PAYMENT_API_BASE: str = "https://api.dodopayments.com"
    PAYMENT_MODE: Literal["test", "live"] = "test"
    PAYMENT_CURRENCY: str = "INR"
    PAYMENT_METHODS: str = "credit,debit,upi_collect,upi_intent,google_pay,netbanking"
    PAYMENT_RETURN_URL: str = "http://localhost:3000"
    PAYMENT_TIMEOUT: float = 15.0  # seconds
    PAYMENT_POLL_MAX_ATTEMPTS: int = 60
    PAYMENT_POLL_INTERVAL: float = 5.0  # seconds

    @field_validator("PAYMENT_METHODS", mode="before")
    @classmethod
    def parse_payment_methods(cls, v):
        """Accept PAYMENT_METHODS as comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_payment_methods_list(self) -> list[str]:
        """Get allowed payment method types as a list."""
        return [m.strip() for m in self.PAYMENT_METHODS.split(",") if m.strip()]

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/bazaar.log"

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
