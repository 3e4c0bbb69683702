"""
Service settings, read from ORDERMATCH_* environment variables or a .env file.
"""

from decimal import Decimal
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Runtime configuration of the order matching service.

    Each field maps to an upper-cased ORDERMATCH_ variable, so
    ORDERMATCH_STORE_BACKEND=rest selects the REST record store.
    """

    # HTTP server
    backend_host: str = Field(default="localhost", description="API server host")
    backend_port: int = Field(default=8000, description="API server port")
    allowed_origins: List[str] = Field(
        default=["*"],
        description="CORS allowed origins"
    )

    # Record store
    store_backend: str = Field(
        default="memory",
        description="Record store implementation: memory or rest"
    )
    store_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the REST record store"
    )
    store_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout applied to every store call"
    )
    store_read_retries: int = Field(
        default=3,
        description="Transport retries for idempotent store reads"
    )

    # Matching
    book_lock_timeout_seconds: float = Field(
        default=5.0,
        description="Maximum wait for an instrument's order book lock"
    )

    # Order parameters
    price_precision: int = Field(
        default=2,
        description="Maximum number of decimal places for prices"
    )
    max_price: Decimal = Field(
        default=Decimal("10000000"),
        description="Maximum acceptable price"
    )
    max_order_quantity: Decimal = Field(
        default=Decimal("1000000"),
        description="Maximum order quantity"
    )
    supported_instruments: List[str] = Field(
        default=[
            "PETR4", "VALE3", "ITUB4", "BBDC4", "ABEV3",
            "MGLU3", "WEGE3", "RENT3", "GGBR4", "USIM5",
        ],
        description="Tradable instruments (empty list accepts any symbol)"
    )

    # Order queries
    default_page_size: int = Field(default=10, description="Default orders per page")
    max_page_size: int = Field(default=100, description="Maximum orders per page")

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_dir: str = Field(
        default="",
        description="Directory for log files (empty for console only)"
    )
    use_json_logs: bool = Field(
        default=False,
        description="Emit structured JSON log lines"
    )

    class Config:
        env_prefix = "ORDERMATCH_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Settings loaded at import time."""
    return settings
