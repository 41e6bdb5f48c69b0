"""
Connector configuration using Pydantic Settings
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Connector settings with environment variable support"""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Partitioning
    ODATA_DEFAULT_PAGE_SIZE: int = 1000
    ODATA_MAX_PAGE_SIZE: int = 5000
    TABLE_DEFAULT_PAGE_SIZE: int = 1000
    TABLE_MAX_PAGE_SIZE: int = 5000
    ODP_DEFAULT_PACKAGE_SIZE_BYTES: int = 52428800  # SAP default of 50 MB
    MAX_SPLIT_COUNT: int = 50
    WORK_PROCESS_USAGE_FACTOR: float = 0.5
    MEMORY_USAGE_FACTOR: float = 0.7

    # OData transport
    ODATA_TIMEOUT_SECONDS: float = 10.0
    ODATA_MAX_RETRIES: int = 3
    ODATA_RETRY_DELAY_SECONDS: float = 0.1

    # Error reporting
    ERROR_MESSAGE_MAX_LENGTH: int = 500

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
