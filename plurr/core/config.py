from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional
import os

class Settings(BaseSettings):
    APP_NAME: str = "Plurr API"
    DEBUG: bool = False
    # When enabled, avoid any external calls and heavy startup work (for tests)
    FAST_TEST_MODE: bool = False
    SKIP_HEADER_CHECK: bool = False
    MOCK_USER_ID: str = "mock-user"
    # Trusted proxy headers carrying the authenticated user
    X_USER_ID_HEADER: str = "X-User-Id"
    X_PROXY_SECRET_HEADER: str = "X-Proxy-Secret"
    PROXY_SHARED_SECRET: Optional[str] = None
    CORS_ORIGINS: str = "http://localhost:8081"

    DATABASE_URL: str = "sqlite+aiosqlite:///./plurr.db"

    # Blob storage: "s3" for S3/MinIO/R2, "memory" for local development
    BLOB_STORE_BACKEND: str = "s3"
    S3_ENDPOINT: str = "localhost:9000"
    S3_ACCESS_KEY: str = "minioadmin"
    S3_SECRET_KEY: str = "minioadminpassword"
    S3_BUCKET: str = "plurr-images"
    S3_REGION: str = "us-east-1"
    S3_USE_SSL: bool = False

    # Upload validation
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    ALLOWED_UPLOAD_CONTENT_TYPES: List[str] = ["image/jpeg"]

    # Image delivery transform
    IMAGE_TRANSFORM_QUALITY: int = 50
    IMAGE_TRANSFORM_FORMAT: str = "JPEG"
    IMAGE_TRANSFORM_MAX_DIMENSION: Optional[int] = None

    # Identifiers
    LOBBY_ID_LENGTH: int = 16
    IMAGE_ID_LENGTH: int = 10
    RECORD_ID_LENGTH: int = 12
    JOIN_CODE_LENGTH: int = 6
    ID_MAX_ATTEMPTS: int = 5

    REACTION_MAX_LENGTH: int = 32
    DEFAULT_BACKGROUND_COLOR: str = "#e69c09"

    @field_validator('DEBUG', 'FAST_TEST_MODE', 'SKIP_HEADER_CHECK', 'S3_USE_SSL', mode='before')
    @classmethod
    def parse_bool_with_strip(cls, v):
        if isinstance(v, str):
            v = v.strip()
        return v

    class Config:
        # Check for .env in current directory first, then parent directory
        env_file = [".env", "../.env"]
        env_file_encoding = 'utf-8'
        extra = "allow"

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def s3_endpoint_url(self) -> str:
        endpoint_url = self.S3_ENDPOINT
        if not endpoint_url.startswith("http://") and not endpoint_url.startswith("https://"):
            scheme = "https" if self.S3_USE_SSL else "http"
            endpoint_url = f"{scheme}://{endpoint_url}"
        return endpoint_url


settings = Settings()

# Auto-enable FAST_TEST_MODE when running under pytest if not explicitly set
if not settings.FAST_TEST_MODE and os.getenv('PYTEST_CURRENT_TEST'):
    settings.FAST_TEST_MODE = True  # type: ignore[attr-defined]
