"""
Tutor Settings

Environment-driven configuration, loaded from .env with python-dotenv.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class TutorSettings:
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 800
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    sessions_table: str = "sessions"
    log_level: str = "INFO"
    request_timeout: float = 60.0

    @classmethod
    def from_env(cls) -> "TutorSettings":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_temperature=_float("OPENAI_TEMPERATURE", 0.7),
            openai_max_tokens=_int("OPENAI_MAX_TOKENS", 800),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY") or None,
            sessions_table=os.getenv("TUTOR_SESSIONS_TABLE", "sessions"),
            log_level=os.getenv("TUTOR_LOG_LEVEL", "INFO").upper(),
            request_timeout=_float("TUTOR_REQUEST_TIMEOUT", 60.0),
        )

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)
