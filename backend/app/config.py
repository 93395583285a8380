"""
Runtime configuration read from the environment (and a local .env file).

Values are read on every call so tests can tweak them with monkeypatch.
Invalid values fall back to the documented defaults.
"""

import os
from typing import Literal, Optional

from dotenv import load_dotenv

load_dotenv()


OrderingPolicy = Literal["position", "topological"]
StoreBackend = Literal["memory", "supabase"]

DEFAULT_MODEL = "gpt-4o-mini"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = float(raw)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


class Settings:
    """Accessors for engine settings."""

    @classmethod
    def store_backend(cls) -> StoreBackend:
        raw = (os.getenv("STORE_BACKEND") or "memory").strip().lower()
        return "supabase" if raw == "supabase" else "memory"

    @classmethod
    def ordering_policy(cls) -> OrderingPolicy:
        raw = (os.getenv("WORKFLOW_ORDERING") or "position").strip().lower()
        return "topological" if raw == "topological" else "position"

    @classmethod
    def step_timeout_seconds(cls) -> float:
        return _env_float("WORKFLOW_STEP_TIMEOUT_SECONDS", 120.0)

    @classmethod
    def autosave_debounce_seconds(cls) -> float:
        return _env_float("AUTOSAVE_DEBOUNCE_SECONDS", 0.8)

    @classmethod
    def default_model(cls) -> str:
        return (os.getenv("DEFAULT_MODEL") or DEFAULT_MODEL).strip()

    @classmethod
    def openai_api_key(cls) -> Optional[str]:
        return os.getenv("OPENAI_API_KEY")

    @classmethod
    def gemini_api_key(cls) -> Optional[str]:
        return os.getenv("GEMINI_API_KEY")

    @classmethod
    def log_level(cls) -> str:
        return (os.getenv("LOG_LEVEL") or "INFO").strip().upper()

    @classmethod
    def cors_origin_regex(cls) -> str:
        return os.getenv(
            "CORS_ORIGIN_REGEX",
            r"^https:\/\/.*\.vercel\.app$|^http:\/\/localhost:\d+$|^http:\/\/127\.0\.0\.1:\d+$",
        )

    @classmethod
    def supabase_url(cls) -> str:
        return (os.getenv("SUPABASE_URL") or "").rstrip("/")

    @classmethod
    def supabase_service_role_key(cls) -> Optional[str]:
        return os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    @classmethod
    def jwt_issuer(cls) -> Optional[str]:
        issuer = os.getenv("SUPABASE_JWT_ISSUER")
        if issuer:
            return issuer
        # Inferred from SUPABASE_URL if not explicitly set
        supabase_url = cls.supabase_url()
        return f"{supabase_url}/auth/v1" if supabase_url else None

    @classmethod
    def jwt_audience(cls) -> str:
        return os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
