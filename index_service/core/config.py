# File: index_service/core/config.py
import sys
import logging
from typing import Dict, List, Optional
from pydantic import Field, SecretStr, field_validator, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env', env_prefix='INDEX_', env_file_encoding='utf-8',
        case_sensitive=False, extra='ignore'
    )

    PROJECT_NAME: str = "Tender Index Service"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # --- Redis / Celery ---
    REDIS_URL: str = Field(default="redis://localhost:6379/0", description="Redis used for build locks, progress and job dedup markers.")
    CELERY_BROKER_URL: str = Field(default="redis://localhost:6379/1")
    CELERY_RESULT_BACKEND: Optional[str] = None
    JOB_DEDUP_TTL_SECONDS: int = 3600

    # --- PostgreSQL ---
    DATABASE_URL: Optional[str] = Field(default=None, description="Full SQLAlchemy DSN. Overrides the POSTGRES_* fields when set.")
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: SecretStr = SecretStr("postgres")
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "tenders"

    # --- AWS S3 ---
    AWS_REGION: str = Field(default="us-east-1", description="AWS region for S3 client.")
    AWS_S3_ENDPOINT_URL: Optional[str] = None
    INDEX_BUCKET_NAME: str = Field(default="tender-indexes", description="Bucket holding packaged index artifacts.")

    # --- Artifact layout ---
    INDEX_ARTIFACT_VERSION: int = 1
    MAX_ZIP_ENTRIES: int = 2000
    NON_INDEXABLE_MIME_PREFIXES: List[str] = ["image/"]
    NON_INDEXABLE_EXTENSIONS: List[str] = [".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tif", ".tiff", ".heic"]

    # --- Chunking ---
    CHUNK_SIZE: int = 1024
    CHUNK_OVERLAP: int = 160

    # --- Embeddings ---
    EMBEDDING_MODEL_NAME: str = "text-embedding-3-small"
    EMBEDDING_DIMENSION: int = 1536
    OPENAI_API_KEY: SecretStr = SecretStr("")
    OPENAI_API_BASE: Optional[str] = None
    OPENAI_TIMEOUT_SECONDS: float = 30.0
    OPENAI_MAX_RETRIES: int = 3
    EMBEDDING_FALLBACK_ENABLED: bool = True
    EMBED_BATCH_SIZE: int = Field(default=80, ge=1, le=512)

    # --- Vector search ---
    HNSW_MIN_CHUNKS: int = 256
    HNSW_M: int = 32
    HNSW_EF_CONSTRUCTION: int = 200
    HNSW_EF_SEARCH: int = 64

    # --- Pipeline ---
    LOCK_TTL_SECONDS: int = 1800
    PROGRESS_TTL_SECONDS: int = 12 * 60 * 60
    STAGE_MAX_ATTEMPTS: int = 3
    STAGE_BACKOFF_SECONDS: int = 5
    STAGE_CONCURRENCY: Dict[str, int] = {
        "manifest": 1,
        "extract": 4,
        "chunk": 8,
        "embed": 8,
        "summary": 4,
    }
    WORKER_METRICS_PORT: int = 9102

    # --- Artifact cache ---
    ARTIFACT_CACHE_ENABLED: bool = True
    ARTIFACT_CACHE_MAX_ENTRIES: int = 5
    ARTIFACT_CACHE_MAX_BYTES: int = 512 * 1024 * 1024

    @field_validator("LOG_LEVEL")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        normalized_v = v.upper()
        if normalized_v not in valid_levels:
            raise ValueError(f"Invalid LOG_LEVEL '{v}'. Must be one of {valid_levels}")
        return normalized_v

    @field_validator("STAGE_MAX_ATTEMPTS")
    @classmethod
    def check_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("STAGE_MAX_ATTEMPTS must be at least 1")
        return v

    @property
    def database_dsn(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD.get_secret_value()}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

# Basic logging while settings load, before structlog is configured
temp_log_config = logging.getLogger("index_service.config.loader")
if not temp_log_config.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(levelname)-8s [%(name)s] %(message)s')
    handler.setFormatter(formatter)
    temp_log_config.addHandler(handler)
    temp_log_config.setLevel(logging.INFO)

try:
    temp_log_config.info("Loading Index Service settings...")
    settings = Settings()
    temp_log_config.info("--- Index Service Settings Loaded ---")
    temp_log_config.info(f"  PROJECT_NAME: {settings.PROJECT_NAME}")
    temp_log_config.info(f"  LOG_LEVEL: {settings.LOG_LEVEL}")
    temp_log_config.info(f"  REDIS_URL: {settings.REDIS_URL}")
    temp_log_config.info(f"  CELERY_BROKER_URL: {settings.CELERY_BROKER_URL}")
    temp_log_config.info(f"  INDEX_BUCKET_NAME: {settings.INDEX_BUCKET_NAME}")
    temp_log_config.info(f"  CHUNK_SIZE/OVERLAP: {settings.CHUNK_SIZE}/{settings.CHUNK_OVERLAP}")
    temp_log_config.info(f"  EMBEDDING_MODEL_NAME: {settings.EMBEDDING_MODEL_NAME} ({settings.EMBEDDING_DIMENSION} dims)")
    temp_log_config.info(f"  OPENAI_API_KEY: {'*** SET ***' if settings.OPENAI_API_KEY.get_secret_value() else '!!! NOT SET !!!'}")
    temp_log_config.info(f"  ARTIFACT_CACHE: enabled={settings.ARTIFACT_CACHE_ENABLED} max_entries={settings.ARTIFACT_CACHE_MAX_ENTRIES} max_bytes={settings.ARTIFACT_CACHE_MAX_BYTES}")
    temp_log_config.info("---------------------------------------------")

except ValidationError as e:
    temp_log_config.critical(f"FATAL: Index Service configuration validation failed:\n{e}")
    sys.exit(1)
