"""
Configuration Module

Loads the .env file and exposes the runtime settings of the editor backend.
The .env file is searched in the same locations the server has always used.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_BACKEND_DIR = os.path.dirname(_PACKAGE_DIR)

ENV_LOCATIONS = [
    os.path.join(_PACKAGE_DIR, '.env'),   # /backend/grid_engine/.env
    os.path.join(_BACKEND_DIR, '.env'),   # /backend/.env
    '.env'                                # Current directory
]

DEFAULT_MODEL = "gemini-2.0-flash"


def load_environment(locations: Optional[List[str]] = None) -> Optional[str]:
    """Load the first .env file found

    Args:
        locations: Candidate paths, defaults to ENV_LOCATIONS

    Returns:
        Path of the loaded file, or None if no file was found
    """
    locations = locations or ENV_LOCATIONS
    for env_path in locations:
        if os.path.exists(env_path):
            load_dotenv(env_path)
            logger.info(f"✅ Loaded .env file from: {env_path}")
            return env_path

    logger.warning("⚠️ .env file not found in any expected location")
    logger.warning(f"Searched locations: {locations}")
    return None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ {name}={raw!r} is not a number, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ {name}={raw!r} is not an integer, using {default}")
        return default


@dataclass
class Settings:
    """Runtime settings read from the environment"""
    gemini_api_key: Optional[str] = None
    default_model: str = DEFAULT_MODEL
    model_request_timeout: float = 120.0
    max_history: int = 10
    max_content_length_mb: int = 50
    allowed_extensions: List[str] = field(default_factory=lambda: ['xlsx', 'xlsm', 'csv'])

    @property
    def ai_enabled(self) -> bool:
        return bool(self.gemini_api_key and self.gemini_api_key.strip())

    @classmethod
    def from_env(cls) -> 'Settings':
        settings = cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            default_model=os.getenv("DEFAULT_MODEL") or DEFAULT_MODEL,
            model_request_timeout=_env_float("MODEL_REQUEST_TIMEOUT", 120.0),
            max_history=_env_int("MAX_HISTORY", 10),
            max_content_length_mb=_env_int("MAX_CONTENT_LENGTH_MB", 50),
        )
        settings.log_api_key_status()
        return settings

    def log_api_key_status(self):
        if self.ai_enabled:
            logger.info(f"✅ Gemini API key loaded successfully (length: {len(self.gemini_api_key)} chars)")
            if self.gemini_api_key.startswith("AIzaSy"):
                logger.info("✅ API key format looks correct")
            else:
                logger.warning("⚠️ API key doesn't start with 'AIzaSy' - please verify it's correct")
        else:
            logger.error("❌ GEMINI_API_KEY not found in environment variables!")
            logger.error("Please check that your .env file contains: GEMINI_API_KEY=your_actual_key")
