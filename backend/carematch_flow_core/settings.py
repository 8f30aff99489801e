from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "carematch.sqlite"


def _env(key: str, default: str = "") -> str:
    return (os.getenv(key) or default).strip()


def _env_float(key: str, default: float) -> float:
    try:
        return float(_env(key, str(default)))
    except ValueError:
        return default


def _env_flag(key: str, default: bool = False) -> bool:
    return _env(key, "true" if default else "false").lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class FlowSettings:
    gemini_api_key: str = ""
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    primary_model: str = "gemini-1.5-flash"
    openrouter_api_key: str = ""
    openrouter_api_base: str = "https://openrouter.ai/api/v1"
    fallback_model: str = "deepseek/deepseek-r1-0528-qwen3-8b:free"
    openrouter_site_url: str = "http://localhost:4000"
    openrouter_app_name: str = "CareMatch AI"
    generation_timeout_seconds: float = 60.0
    db_path: str = str(_DEFAULT_DB_PATH)
    disable_external_web: bool = False
    web_timeout_seconds: float = 10.0
    booking_failure_rate: float = 0.2
    default_provider: str = "primary"
    disabled_tools: frozenset[str] = frozenset()
    worker_token: str = ""

    @classmethod
    def from_env(cls) -> "FlowSettings":
        provider = _env("CAREMATCH_DEFAULT_PROVIDER", "primary").lower()
        return cls(
            gemini_api_key=_env("GEMINI_API_KEY"),
            gemini_api_base=_env("GEMINI_API_BASE", cls.gemini_api_base).rstrip("/"),
            primary_model=_env("CAREMATCH_PRIMARY_MODEL", cls.primary_model),
            openrouter_api_key=_env("OPENROUTER_API_KEY"),
            openrouter_api_base=_env("OPENROUTER_API_BASE", cls.openrouter_api_base).rstrip("/"),
            fallback_model=_env("CAREMATCH_FALLBACK_MODEL", cls.fallback_model),
            openrouter_site_url=_env("OPENROUTER_SITE_URL", cls.openrouter_site_url),
            openrouter_app_name=_env("OPENROUTER_APP_NAME", cls.openrouter_app_name),
            generation_timeout_seconds=_env_float("CAREMATCH_GENERATION_TIMEOUT_SECONDS", 60.0),
            db_path=_env("CAREMATCH_DB_PATH", cls.db_path),
            disable_external_web=_env_flag("CAREMATCH_DISABLE_EXTERNAL_WEB"),
            web_timeout_seconds=_env_float("CAREMATCH_WEB_TIMEOUT_SECONDS", 10.0),
            booking_failure_rate=min(1.0, max(0.0, _env_float("CAREMATCH_BOOKING_FAILURE_RATE", 0.2))),
            default_provider=provider if provider in {"primary", "fallback"} else "primary",
            disabled_tools=frozenset(
                name.strip() for name in _env("CAREMATCH_DISABLED_TOOLS").split(",") if name.strip()
            ),
            worker_token=_env("CAREMATCH_WORKER_TOKEN"),
        )
