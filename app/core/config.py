"""
Configuration settings for the application
"""

import os
from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./entry_pass.db")
    USE_FIREBASE: bool = os.getenv("USE_FIREBASE", "false").lower() in ("1", "true", "yes")
    FIREBASE_CREDENTIALS_JSON: str | None = os.getenv("FIREBASE_CREDENTIALS_JSON")
    FIREBASE_CREDENTIALS_FILE: str | None = os.getenv("FIREBASE_CREDENTIALS_FILE")
    FIREBASE_CREDENTIALS_B64: str | None = os.getenv("FIREBASE_CREDENTIALS_B64")

    # Application
    BASE_URL: str = os.getenv("BASE_URL", "http://localhost:8000")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS
    ALLOW_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # Payments
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "INR")
    PAYMENT_PROVIDER: str = os.getenv("PAYMENT_PROVIDER", "sandbox")
    SANDBOX_DECLINED_SOURCES: List[str] = ["tok_declined"]

    # Ticket QR rendering
    QR_BOX_SIZE: int = 10
    QR_BORDER: int = 4

    # Rate limiting
    RATE_LIMIT_PER_MINUTE: int = 30
    SCAN_RATE_LIMIT_PER_MINUTE: int = 120

    class Config:
        env_file = ".env"

settings = Settings()
