"""
config.py
---------
Central configuration for the LocalMate API.
All secrets are read from environment variables (a local .env is honoured).
"""

import logging
import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), ".env"))

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _int_env(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return int(default)


def _float_env(name, default):
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return float(default)


@dataclass
class Settings:
    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "localmate"

    # Foursquare Places
    foursquare_api_key: str = ""
    foursquare_base_url: str = "https://api.foursquare.com/v3"
    places_timeout_seconds: float = 10.0
    place_cache_ttl_hours: int = 24
    default_radius_m: int = 5000

    # LLM
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 1000
    llm_temperature: float = 0.7
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash-exp"

    # Sessions / server
    session_ttl_minutes: int = 60 * 24 * 7
    log_level: str = "INFO"
    port: int = 5050
    cors_origin: str = "http://localhost:3000"

    @classmethod
    def from_env(cls):
        settings = cls(
            mongo_uri=os.getenv("MONGODB_URI", cls.mongo_uri),
            mongo_db_name=os.getenv("MONGODB_DB", cls.mongo_db_name),
            foursquare_api_key=os.getenv("FOURSQUARE_API_KEY", ""),
            foursquare_base_url=os.getenv("FOURSQUARE_BASE_URL", cls.foursquare_base_url),
            places_timeout_seconds=_float_env("PLACES_TIMEOUT_SECONDS", cls.places_timeout_seconds),
            place_cache_ttl_hours=_int_env("PLACE_CACHE_TTL_HOURS", cls.place_cache_ttl_hours),
            default_radius_m=_int_env("DEFAULT_RADIUS_M", cls.default_radius_m),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            llm_max_tokens=_int_env("LLM_MAX_TOKENS", cls.llm_max_tokens),
            llm_temperature=_float_env("LLM_TEMPERATURE", cls.llm_temperature),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL", cls.gemini_model),
            session_ttl_minutes=_int_env("SESSION_TTL_MINUTES", cls.session_ttl_minutes),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            port=_int_env("PORT", cls.port),
            cors_origin=os.getenv("CORS_ORIGIN", cls.cors_origin),
        )
        settings.warn_missing()
        return settings

    def warn_missing(self):
        """Log (but tolerate) missing provider credentials."""
        missing = [name for name, value in (
            ("FOURSQUARE_API_KEY", self.foursquare_api_key),
            ("OPENAI_API_KEY", self.openai_api_key),
        ) if not value]
        if missing:
            logger.warning("Missing environment variables: %s", ", ".join(missing))
        return missing


def configure_logging(level="INFO"):
    root = logging.getLogger()
    if not any(getattr(h, "_localmate", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._localmate = True
        root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
