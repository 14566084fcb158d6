# lodging_images/core/config.py
import os
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict
from typing import Dict, List, Tuple
from functools import lru_cache

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra='ignore')

    # Application Settings
    APP_NAME: str = "Lodging Images API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = int(os.environ.get("PORT", 8000))

    # CORS Settings (accept comma-separated strings to avoid JSON parsing in env)
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")

    # Database Settings
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./lodging_images.db")

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Upload validation
    MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    MAX_FILES_PER_REQUEST: int = 10
    ALLOWED_IMAGE_FORMATS: str = "jpeg,png,gif,webp"
    ENABLE_SECURITY_SCAN: bool = True

    # Encoding
    PRIMARY_QUALITY: int = 85
    PRIMARY_EFFORT: int = 4  # WebP method, 0 (fast) .. 6 (small)
    FALLBACK_QUALITY: int = 85

    # File storage
    IMAGE_BASE_DIR: str = "uploads/images"
    PRESERVE_ORIGINALS: bool = False
    DIR_MODE: int = 0o755
    FILE_MODE: int = 0o644
    PLACEHOLDER_IMAGE_PATH: str = "public/placeholder-image.jpg"

    # Disk space protection
    MIN_FREE_DISK_MB: int = 500
    DISK_WARNING_PERCENT: float = 90.0

    # Legacy inline image migration
    MIGRATION_BATCH_SIZE: int = 10
    MIGRATION_USER_ID: str = "system-migration"

    # Accept comma-separated strings for list envs in addition to JSON arrays
    def _split_csv(self, value: str) -> List[str]:
        if value is None:
            return []
        value = value.strip()
        if value == "":
            return []
        return [item.strip() for item in value.split(",")]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)

    @property
    def allowed_image_formats_list(self) -> List[str]:
        return [f.lower() for f in self._split_csv(self.ALLOWED_IMAGE_FORMATS)]

    @property
    def min_free_disk_bytes(self) -> int:
        return self.MIN_FREE_DISK_MB * 1024 * 1024

    @property
    def max_request_size(self) -> int:
        # multipart overhead on top of the raw file bytes
        return self.MAX_FILE_SIZE * self.MAX_FILES_PER_REQUEST + 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings: Settings = get_settings()

# Nominal thumbnail boxes (width, height), in generation order
THUMBNAIL_SIZES: Dict[str, Tuple[int, int]] = {
    "small": (150, 150),
    "medium": (300, 300),
    "large": (600, 400),
    "xlarge": (1200, 800),
}

PRIMARY_FORMAT = "webp"
FALLBACK_FORMAT = "jpeg"

FORMAT_EXTENSIONS: Dict[str, str] = {
    "webp": "webp",
    "jpeg": "jpg",
    "png": "png",
    "gif": "gif",
}

FORMAT_MIME_TYPES: Dict[str, str] = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}
