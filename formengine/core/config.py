"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./formengine.db"

    # Object storage for uploaded import files
    STORAGE_BACKEND: str = "local"  # "local" or "s3"
    LOCAL_STORAGE_PATH: str = "/tmp/formengine-files"
    S3_BUCKET: str = "formengine-files"
    S3_REGION: str = ""
    S3_ENDPOINT_URL: str = ""
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""

    # Import policy
    IMPORT_MAX_FILE_SIZE_BYTES: int = 10 * 1024 * 1024
    IMPORT_SAMPLE_SIZE: int = 1000
    IMPORT_PREVIEW_ROWS: int = 5
    IMPORT_BATCH_SIZE: int = 25
    IMPORT_LOW_CONFIDENCE_THRESHOLD: float = 0.7
    IMPORT_MIN_TYPE_RATIO: float = 0.5
    IMPORT_MAX_DROPDOWN_OPTIONS: int = 20
    IMPORT_DROPDOWN_DISTINCT_RATIO: float = 0.5
    IMPORT_LONG_TEXT_AVG_LENGTH: int = 100
    IMPORT_PREVIEW_ERROR_LIMIT: int = 100
    IMPORT_ROWS_PER_SECOND: int = 100

    # User-visible error summaries
    ERROR_SUMMARY_LIMIT: int = 5

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"

    @property
    def import_max_file_size_mb(self) -> float:
        """Size ceiling in megabytes, for user-facing messages."""
        return self.IMPORT_MAX_FILE_SIZE_BYTES / (1024 * 1024)


settings = Settings()
