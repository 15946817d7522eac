"""
Configuration management for Mockforge
"""

import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _int_env(name: str, default: int) -> int:
    """Read an integer env var, falling back to default on bad input."""
    raw = os.getenv(name, '')
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


class Config:
    """Application configuration"""

    # Gemini
    GEMINI_API_KEY: str = os.getenv('GEMINI_API_KEY', '') or os.getenv('GOOGLE_GEMINI_API_KEY', '')
    GEMINI_IMAGE_MODEL: str = os.getenv('GEMINI_IMAGE_MODEL', 'models/gemini-2.5-flash-image')
    GEMINI_TEXT_MODEL: str = os.getenv('GEMINI_TEXT_MODEL', 'models/gemini-2.5-flash')
    GEMINI_FALLBACK_TEXT_MODEL: str = os.getenv('GEMINI_FALLBACK_TEXT_MODEL', 'models/gemini-2.0-flash')

    # 0 disables pacing between Gemini calls
    GEMINI_REQUESTS_PER_MINUTE: int = _int_env('GEMINI_REQUESTS_PER_MINUTE', 0)

    # Image synthesis
    IMAGE_CACHE_PATH: str = os.getenv('IMAGE_CACHE_PATH', os.path.join('data', 'generated-image-cache.json'))
    IMAGE_MAX_IMAGES: int = _int_env('IMAGE_MAX_IMAGES', 12)
    IMAGE_CONCURRENCY: int = _int_env('IMAGE_CONCURRENCY', 2)

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        required = {
            'GEMINI_API_KEY': cls.GEMINI_API_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

    @classmethod
    def get(cls, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get configuration value"""
        return getattr(cls, key, default)

    @classmethod
    def get_model(cls, key: str) -> str:
        """
        Get the configured model for a specific component.

        Resolution Order:
        1. Environment Variable: {KEY}_MODEL (e.g. IMAGE_PLANNER_MODEL)
        2. Default mapping in this method
        3. Config.GEMINI_TEXT_MODEL

        Args:
            key: component name (e.g., 'image', 'image_planner'), case-insensitive

        Returns:
            Model string identifier (e.g., 'models/gemini-2.5-flash')
        """
        key_upper = key.upper()

        env_model = os.getenv(f"{key_upper}_MODEL")
        if env_model:
            return env_model

        mappings = {
            "IMAGE": cls.GEMINI_IMAGE_MODEL,
            "IMAGE_PLANNER": cls.GEMINI_TEXT_MODEL,
            "IMAGE_PLANNER_FALLBACK": cls.GEMINI_FALLBACK_TEXT_MODEL,
            "TEXT": cls.GEMINI_TEXT_MODEL,
        }

        if key_upper in mappings:
            return mappings[key_upper]

        return cls.GEMINI_TEXT_MODEL
