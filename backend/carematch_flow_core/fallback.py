from __future__ import annotations

import re
from typing import Any

import httpx

from .composer import Instruction
from .contracts import OutputContract
from .errors import BackendUnavailable
from .generation import _provider_error_message
from .settings import FlowSettings

EMPTY_COMPLETION_TEXT = "Sorry, I could not generate a response."

_EMPHASIS_RE = re.compile(r"\*\*|##+|\*")


def strip_emphasis(text: str) -> str:
    return _EMPHASIS_RE.sub("", text or "")


def _coerce_completion_text(response_json: dict[str, Any]) -> str:
    choices = response_json.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    message = choices[0].get("message", {})
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text_value = item.get("text")
                if isinstance(text_value, str):
                    parts.append(text_value)
        return "\n".join(parts)
    return ""


def normalize_freeform(contract: OutputContract, raw_text: str) -> dict[str, Any]:
    """Only the primary text field is populated; lists, flags and nested objects stay empty."""
    values = contract.blank()
    values[contract.primary_field] = strip_emphasis(raw_text).strip()
    return values


class FallbackGenerationClient:
    """Freeform OpenAI-compatible chat backend (OpenRouter). No tools and no schema."""

    provider = "openrouter"

    def __init__(self, settings: FlowSettings, *, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings
        self.transport = transport

    def generate_freeform(self, instruction: Instruction) -> str:
        if not self.settings.openrouter_api_key:
            raise BackendUnavailable(self.provider, "OPENROUTER_API_KEY is not configured.")
        payload = {
            "model": self.settings.fallback_model,
            "temperature": 0.5,
            "max_tokens": 1024,
            "messages": [
                {"role": "system", "content": instruction.context},
                {"role": "user", "content": instruction.query},
            ],
        }
        headers: dict[str, str] = {
            "Authorization": f"Bearer {self.settings.openrouter_api_key}",
            "Content-Type": "application/json",
        }
        if self.settings.openrouter_site_url:
            headers["HTTP-Referer"] = self.settings.openrouter_site_url
        if self.settings.openrouter_app_name:
            headers["X-Title"] = self.settings.openrouter_app_name
        timeout = httpx.Timeout(self.settings.generation_timeout_seconds, connect=8.0)
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(f"{self.settings.openrouter_api_base}/chat/completions", headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise BackendUnavailable(self.provider, str(exc) or exc.__class__.__name__) from exc
        if response.status_code >= 400:
            raise BackendUnavailable(self.provider, _provider_error_message(response))
        try:
            completion_payload = response.json()
        except ValueError as exc:
            raise BackendUnavailable(self.provider, "Response body was not JSON.") from exc
        text = _coerce_completion_text(completion_payload if isinstance(completion_payload, dict) else {}).strip()
        return text or EMPTY_COMPLETION_TEXT
