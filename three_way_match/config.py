"""
Configuration for the three-way match engine.
"""

# Load environment variables FIRST
from dotenv import load_dotenv
load_dotenv()

import os
from typing import Optional

from three_way_match.errors import ConfigurationError


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


class Config:
    """Base configuration."""

    # Storage
    DATABASE_PATH: str = os.getenv(
        "DATABASE_PATH",
        os.path.join(os.path.dirname(__file__), "data", "three_way_match.db"),
    )
    SQLITE_BUSY_TIMEOUT_MS: int = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000"))

    # Tolerance defaults (percentages, applied when a tenant has no config row)
    DEFAULT_QUANTITY_TOLERANCE_PCT: float = _env_float("DEFAULT_QUANTITY_TOLERANCE_PCT", "5")
    DEFAULT_PRICE_TOLERANCE_PCT: float = _env_float("DEFAULT_PRICE_TOLERANCE_PCT", "2")
    DEFAULT_ALLOW_PAYMENT_WITHOUT_MATCH: bool = (
        os.getenv("DEFAULT_ALLOW_PAYMENT_WITHOUT_MATCH", "false").lower() == "true"
    )

    # Matching
    ORDER_RECEIPT_MIN_RATIO: float = _env_float("ORDER_RECEIPT_MIN_RATIO", "0.95")
    DESCRIPTION_FUZZY_THRESHOLD: Optional[float] = _env_optional_float("DESCRIPTION_FUZZY_THRESHOLD")
    PERCENT_PRECISION: int = 4  # decimals kept on percent differences

    # Listing
    LIST_PAGE_SIZE: int = int(os.getenv("LIST_PAGE_SIZE", "20"))
    LIST_MAX_PAGE_SIZE: int = int(os.getenv("LIST_MAX_PAGE_SIZE", "100"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: str = os.getenv("LOG_FILE", "")

    # API Configuration
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_DEBUG: bool = os.getenv("API_DEBUG", "false").lower() == "true"

    # Workflow Configuration
    GRAPH_RECURSION_LIMIT: int = 25

    @classmethod
    def validate(cls) -> None:
        """Validate configuration."""
        for name in ("DEFAULT_QUANTITY_TOLERANCE_PCT", "DEFAULT_PRICE_TOLERANCE_PCT"):
            value = getattr(cls, name)
            if not 0 <= value < 100:
                raise ConfigurationError(f"{name} must be in [0, 100), got {value}")

        if not 0 < cls.ORDER_RECEIPT_MIN_RATIO <= 1:
            raise ConfigurationError(
                f"ORDER_RECEIPT_MIN_RATIO must be in (0, 1], got {cls.ORDER_RECEIPT_MIN_RATIO}"
            )

        if cls.DESCRIPTION_FUZZY_THRESHOLD is not None and not 0 < cls.DESCRIPTION_FUZZY_THRESHOLD <= 100:
            raise ConfigurationError(
                f"DESCRIPTION_FUZZY_THRESHOLD must be in (0, 100], got {cls.DESCRIPTION_FUZZY_THRESHOLD}"
            )

        if cls.LIST_PAGE_SIZE < 1 or cls.LIST_MAX_PAGE_SIZE < cls.LIST_PAGE_SIZE:
            raise ConfigurationError("LIST_PAGE_SIZE must be >= 1 and <= LIST_MAX_PAGE_SIZE")


class DevelopmentConfig(Config):
    """Development configuration."""
    LOG_LEVEL = "DEBUG"
    API_DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    LOG_LEVEL = "INFO"
    API_DEBUG = False


class TestConfig(Config):
    """Test configuration."""
    LOG_LEVEL = "DEBUG"
    LOG_FILE = ""


def get_config(env: str = None) -> Config:
    """Get configuration based on environment."""
    if env is None:
        env = os.getenv("ENV", "development").lower()

    if env == "production":
        config = ProductionConfig()
    elif env == "test":
        config = TestConfig()
    else:
        config = DevelopmentConfig()

    # Validate configuration on creation
    config.validate()
    return config
