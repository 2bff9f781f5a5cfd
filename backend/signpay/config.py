"""
SignPay Configuration Module

Loads environment variables for the merchant order API.
"""
from pydantic_settings import BaseSettings
from typing import Literal, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Security Notes:
    - Merchant public keys live in the database, never in settings
    - The system private key is only needed for outbound signed calls
    - The signature window bounds how old a signed request may be
    """

    # Request Signing
    signature_max_age_seconds: int = 60
    system_private_key_path: Optional[str] = None

    # Logging / Debug
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Database
    database_path: str = "./signpay.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
