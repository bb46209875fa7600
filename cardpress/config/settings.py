# config/settings.py
from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # API
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Card Press"

    # CORS
    ALLOWED_HOSTS: List[str] = ["*"]

    # Remote assets (relative paths are resolved against this origin)
    ASSET_BASE_URL: str = "http://localhost:5000"
    REQUEST_TIMEOUT: int = 30

    # Render pipeline
    PREFETCH_WINDOW: int = 4
    DECODE_WORKERS: int = 4
    ASSET_CACHE_ENABLED: bool = False
    JPEG_QUALITY: int = 75
    MAX_IMAGE_SIDE: int = 1200

    # Blob store: "local" or "cloudinary"
    BLOB_STORE_BACKEND: str = "local"
    BLOB_STORE_DIR: str = "uploads"

    # Cloudinary (either use CLOUDINARY_URL or the 3 fields below)
    CLOUDINARY_URL: Optional[str] = None
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_FOLDER: str = "uploads"

    # Env
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
