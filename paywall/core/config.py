"""
Application configuration settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Masumi Paywall"
    APP_VERSION: str = "0.3.2"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Masumi Payment Service Configuration
    PAYMENT_SERVICE_URL: Optional[str] = None
    PAYMENT_API_KEY: Optional[str] = None
    SELLER_VKEY: Optional[str] = None
    NETWORK: str = "Preprod"  # "Preprod" or "Mainnet"
    AGENT_IDENTIFIER: Optional[str] = None  # Obtained after agent registration
    PAYMENT_AMOUNT: Optional[int] = None  # e.g. 10000000 for 10 ADA in lovelace
    PAYMENT_UNIT: str = "lovelace"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Invoice windows
    PAY_BY_MINUTES: int = 5
    SUBMIT_RESULT_MINUTES: int = 20

    # Confirmation polling
    POLL_TIMEOUT_MINUTES: float = 10
    POLL_INTERVAL_SECONDS: float = 10
    POLL_INITIAL_DELAY_SECONDS: float = 2  # ledger indexing lag

    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # Job store: in-memory when unset
    DATABASE_URL: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
