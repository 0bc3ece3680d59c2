from pydantic_settings import BaseSettings
from typing import List, Any, Optional
import json
from pathlib import Path


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "HACCP Audit Service"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./haccp_audit.db"
    DB_ECHO: bool = False

    # ==========================================
    # Blob Storage
    # ==========================================
    STORAGE_MODE: str = "local"  # "local", "s3", or "minio"
    LOCAL_STORAGE_PATH: str = "./storage"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    MEDIA_URL_PATH: str = "/media"

    # AWS S3 / MinIO
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    S3_BUCKET_NAME: str = ""
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_SECURE: bool = False
    CDN_DOMAIN: str = ""  # e.g. d1234.cloudfront.net, used for public artifact URLs

    @property
    def effective_bucket_name(self) -> str:
        return self.S3_BUCKET_NAME or "haccp-audit-reports"

    # ==========================================
    # Audit Pipeline
    # ==========================================
    # Template used by POST /audit-form when neither the path nor the body names one
    DEFAULT_TEMPLATE_ID: Optional[str] = None
    RENDER_TIMEOUT_SECONDS: float = 60.0
    UPLOAD_TIMEOUT_SECONDS: float = 30.0
    UPLOAD_MAX_RETRIES: int = 3
    UPLOAD_RETRY_BASE_DELAY: float = 1.0
    RECONCILE_MIN_AGE_SECONDS: int = 300
    RECONCILE_BATCH_SIZE: int = 50

    # ==========================================
    # PDF Rendering
    # ==========================================
    PDF_PAGE_SIZE: str = "A4"  # "A4" or "LETTER"
    PDF_COMPLIANCE_PALETTE: str = "classic"  # "classic" or "alternate"
    PDF_LOGO_PATH: str = ""
    PDF_REPORT_TITLE: str = "Food Safety Audit Report"

    # Evidence images
    IMAGE_FETCH_TIMEOUT_SECONDS: float = 10.0
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024  # 10MB

    # ==========================================
    # Auth (tokens are issued by the external auth service)
    # ==========================================
    AUTH_REQUIRED: bool = False
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # ==========================================
    # HTTP
    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://127.0.0.1:3000"
    MAX_REQUEST_SIZE: int = 50 * 1024 * 1024  # 50MB, inline evidence images are large

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Create directories if they don't exist
        Path(self.LOG_FILE).parent.mkdir(exist_ok=True, parents=True)
        if self.STORAGE_MODE == "local":
            Path(self.LOCAL_STORAGE_PATH).mkdir(exist_ok=True, parents=True)

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Create settings instance
settings = Settings()
