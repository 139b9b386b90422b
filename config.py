"""
Libra Explorer Configuration
Connection, freshness and polling settings for the explorer sync core
"""

import os
from typing import Dict, Any


class Config:
    """Base configuration"""

    # Ledger connection
    LIBRA_RPC_URL = os.getenv("LIBRA_RPC_URL", "https://rpc.openlibra.space:8080/v1")
    NETWORK = os.getenv("NETWORK", "mainnet")
    OL_FRAMEWORK = os.getenv("OL_FRAMEWORK", "0x1")
    REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "10"))  # seconds
    HTTP_RETRY_COUNT = int(os.getenv("HTTP_RETRY_COUNT", "3"))

    # Freshness windows (ms)
    FRESHNESS_DEFAULT = int(os.getenv("FRESHNESS_DEFAULT", "30000"))
    FRESHNESS_BLOCK_INFO = int(os.getenv("FRESHNESS_BLOCK_INFO", "15000"))
    FRESHNESS_TRANSACTIONS = int(os.getenv("FRESHNESS_TRANSACTIONS", "20000"))
    FRESHNESS_ACCOUNT = int(os.getenv("FRESHNESS_ACCOUNT", "60000"))
    FRESHNESS_AGGREGATES = int(os.getenv("FRESHNESS_AGGREGATES", "30000"))
    FRESHNESS_TRANSACTION_DETAIL = int(
        os.getenv("FRESHNESS_TRANSACTION_DETAIL", "300000")
    )

    # Polling intervals (ms)
    POLL_CHAIN_STATS = int(os.getenv("POLL_CHAIN_STATS", "30000"))
    POLL_TRANSACTIONS = int(os.getenv("POLL_TRANSACTIONS", "30000"))
    POLL_ACCOUNT = int(os.getenv("POLL_ACCOUNT", "30000"))
    POLL_AGGREGATES = int(os.getenv("POLL_AGGREGATES", "60000"))

    # SDK session
    RETRY_ON_FAILURE = os.getenv("RETRY_ON_FAILURE", "true").lower() == "true"
    MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_DELAY_MS = int(os.getenv("RETRY_DELAY_MS", "1000"))
    READY_PLACEHOLDER_MS = int(os.getenv("READY_PLACEHOLDER_MS", "3000"))

    # Vouching
    VOUCH_EXPIRY_WINDOW = int(os.getenv("VOUCH_EXPIRY_WINDOW", "45"))  # epochs
    VOUCH_WARNING_THRESHOLD = int(os.getenv("VOUCH_WARNING_THRESHOLD", "10"))

    # Transaction list paging
    TRANSACTIONS_DEFAULT_LIMIT = int(os.getenv("TRANSACTIONS_DEFAULT_LIMIT", "25"))
    TRANSACTIONS_INCREMENT = int(os.getenv("TRANSACTIONS_INCREMENT", "25"))
    TRANSACTIONS_MAX_LIMIT = int(os.getenv("TRANSACTIONS_MAX_LIMIT", "100"))

    # Community wallet display names
    COMMUNITY_WALLET_NAMES_URL = os.getenv(
        "COMMUNITY_WALLET_NAMES_URL",
        "https://raw.githubusercontent.com/0LNetworkCommunity/v7-addresses/"
        "refs/heads/main/community-wallets.json",
    )

    # Explorer Configuration
    EXPLORER_PORT = int(os.getenv("EXPLORER_PORT", "8082"))
    EXPLORER_HOST = os.getenv("EXPLORER_HOST", "0.0.0.0")
    DEBUG = os.getenv("DEBUG", "false").lower() == "true"

    # CORS Configuration
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper() and not callable(getattr(cls, key))
        }

    @classmethod
    def validate(cls) -> None:
        """Validate configuration"""
        errors = []

        if not cls.LIBRA_RPC_URL:
            errors.append("LIBRA_RPC_URL is required")

        windows = {
            "FRESHNESS_DEFAULT": cls.FRESHNESS_DEFAULT,
            "FRESHNESS_BLOCK_INFO": cls.FRESHNESS_BLOCK_INFO,
            "FRESHNESS_TRANSACTIONS": cls.FRESHNESS_TRANSACTIONS,
            "FRESHNESS_ACCOUNT": cls.FRESHNESS_ACCOUNT,
            "FRESHNESS_AGGREGATES": cls.FRESHNESS_AGGREGATES,
            "FRESHNESS_TRANSACTION_DETAIL": cls.FRESHNESS_TRANSACTION_DETAIL,
        }
        for name, value in windows.items():
            if value <= 0:
                errors.append(f"{name} must be positive")

        if cls.MAX_RETRIES < 0:
            errors.append("MAX_RETRIES must not be negative")

        if cls.VOUCH_WARNING_THRESHOLD >= cls.VOUCH_EXPIRY_WINDOW:
            errors.append("VOUCH_WARNING_THRESHOLD must be below VOUCH_EXPIRY_WINDOW")

        if cls.TRANSACTIONS_DEFAULT_LIMIT > cls.TRANSACTIONS_MAX_LIMIT:
            errors.append("TRANSACTIONS_DEFAULT_LIMIT exceeds TRANSACTIONS_MAX_LIMIT")

        if cls.EXPLORER_PORT < 1 or cls.EXPLORER_PORT > 65535:
            errors.append("EXPLORER_PORT must be between 1 and 65535")

        if errors:
            raise ValueError(f"Configuration validation failed: {', '.join(errors)}")


class DevelopmentConfig(Config):
    """Development configuration"""

    DEBUG = True
    LOG_LEVEL = "DEBUG"


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    LOG_LEVEL = "WARNING"


class TestConfig(Config):
    """Test configuration"""

    LIBRA_RPC_URL = "http://localhost:8080/v1"
    NETWORK = "testnet"
    HTTP_RETRY_COUNT = 0
    POLL_CHAIN_STATS = 20
    POLL_TRANSACTIONS = 20
    POLL_ACCOUNT = 20
    POLL_AGGREGATES = 20
    RETRY_DELAY_MS = 1
    READY_PLACEHOLDER_MS = 50


# Environment-based configuration selection
ENV_CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "test": TestConfig,
}


def get_config() -> Config:
    """Get configuration based on environment"""
    env = os.getenv("EXPLORER_ENV", "development")
    config_class = ENV_CONFIGS.get(env, DevelopmentConfig)
    config_class.validate()
    return config_class


# Export current configuration
config = get_config()
