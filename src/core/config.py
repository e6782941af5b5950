"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "DeJPEG Restoration Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 5567

    # ==========================================================================
    # Folders
    # ==========================================================================
    MODELS_DIR: Path = Path.home() / ".dejpeg" / "models"
    TEMP_DIR: Path = Path.home() / ".dejpeg" / "temp"

    # ==========================================================================
    # Upload Limits
    # ==========================================================================
    MAX_MODEL_SIZE_BYTES: int = 2 * 1024 * 1024 * 1024  # 2GB
    MAX_IMAGE_SIZE_BYTES: int = 500 * 1024 * 1024  # 500MB
    ALLOWED_MODEL_EXTENSIONS: str = ".onnx"

    # ==========================================================================
    # Tiling
    # ==========================================================================
    DEFAULT_TILE_SIZE: int = 1200
    DEFAULT_TILE_OVERLAP: int = 32

    # SCUNet family models get smaller tiles with a wider overlap
    SCUNET_MODEL_PREFIX: str = "scunet_"
    SCUNET_TILE_SIZE: int = 640
    SCUNET_TILE_OVERLAP: int = 128

    # ==========================================================================
    # Processing
    # ==========================================================================
    DEFAULT_STRENGTH: float = 0.5
    PROBE_TENSOR_SIZE: int = 64
    INPUT_PROBE: str = "trial"  # trial, declared, declared_then_trial

    # Images with at least this many pixels stage their tiles on disk
    DISK_STAGING_MIN_PIXELS: int = 16_000_000

    # 1 = strictly sequential tile inference
    TILE_WORKERS: int = 1

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "*"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def allowed_model_extensions(self) -> set:
        return {ext.strip().lower() for ext in self.ALLOWED_MODEL_EXTENSIONS.split(",") if ext.strip()}


# Global settings instance
settings = Settings()


def ensure_directories():
    """Create the model library and temp staging folders."""
    settings.MODELS_DIR.mkdir(parents=True, exist_ok=True)
    settings.TEMP_DIR.mkdir(parents=True, exist_ok=True)
