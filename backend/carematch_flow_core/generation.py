from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

import httpx

from .composer import Instruction
from .contracts import OutputContract
from .errors import BackendUnavailable
from .models import ToolInvocation, ToolResult
from .registry import ToolSpec
from .settings import FlowSettings

logger = logging.getLogger(__name__)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
)
_REFUSAL_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "RECITATION"}


@dataclass(frozen=True)
class SafetyConfig:
    thresholds: tuple[tuple[str, str], ...]

    @classmethod
    def uniform(cls, threshold: str) -> "SafetyConfig":
        return cls(tuple((category, threshold) for category in SAFETY_CATEGORIES))

    def as_settings(self) -> list[dict[str, str]]:
        return [{"category": category, "threshold": threshold} for category, threshold in self.thresholds]


DEFAULT_SAFETY = SafetyConfig.uniform("BLOCK_MEDIUM_AND_ABOVE")
RELAXED_SAFETY = SafetyConfig(
    (
        ("HARM_CATEGORY_DANGEROUS_CONTENT", "BLOCK_ONLY_HIGH"),
        ("HARM_CATEGORY_HARASSMENT", "BLOCK_NONE"),
        ("HARM_CATEGORY_HATE_SPEECH", "BLOCK_NONE"),
        ("HARM_CATEGORY_SEXUALLY_EXPLICIT", "BLOCK_NONE"),
    )
)


@dataclass
class GenerationResult:
    kind: Literal["final", "tool_calls", "refusal", "malformed"]
    data: dict[str, Any] | None = None
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    model_turn: dict[str, Any] | None = None
    detail: str = ""

    @property
    def missing_output(self) -> bool:
        return self.kind in {"refusal", "malformed"}


@dataclass
class ToolRound:
    """The model's tool-call turn plus the dispatcher's results, replayed on the second pass."""

    model_turn: dict[str, Any]
    calls: list[ToolInvocation]
    results: list[ToolResult]

    def response_turn(self) -> dict[str, Any]:
        parts = []
        for call, result in zip(self.calls, self.results):
            response: dict[str, Any] = {"name": call.name, "response": result.as_function_response()}
            if call.call_id:
                response["id"] = call.call_id
            parts.append({"functionResponse": response})
        return {"role": "user", "parts": parts}


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def _extract_json_object(raw_text: str) -> dict[str, Any] | None:
    text = (raw_text or "").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
        if isinstance(payload, dict):
            return payload
    except json.JSONDecodeError:
        pass

    for start_idx in [idx for idx, char in enumerate(text) if char == "{"]:
        depth = 0
        for end_idx in range(start_idx, len(text)):
            char = text[end_idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
            if depth == 0:
                candidate = text[start_idx : end_idx + 1]
                try:
                    payload = json.loads(candidate)
                    if isinstance(payload, dict):
                        return payload
                except json.JSONDecodeError:
                    break
    return None


def _instruction_parts(instruction: Instruction, schema_hint: str | None) -> list[dict[str, Any]]:
    text = instruction.text
    if schema_hint:
        text = f"{text}\n\n{schema_hint}"
    parts: list[dict[str, Any]] = [{"text": text}]
    for media in instruction.media:
        parts.append({"inlineData": {"mimeType": media.mime_type, "data": media.base64_data}})
    return parts


class PrimaryGenerationClient:
    """Schema-constrained, tool-capable backend (Gemini ``generateContent`` over REST).

    Gemini cannot combine function calling with ``responseSchema``, so when tools are
    declared the contract is carried in the instruction text and parsed from the reply.
    """

    provider = "gemini"

    def __init__(self, settings: FlowSettings, *, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings
        self.transport = transport

    def _payload(
        self,
        instruction: Instruction,
        contract: OutputContract,
        tools: Sequence[ToolSpec],
        safety: SafetyConfig,
        tool_round: ToolRound | None,
    ) -> dict[str, Any]:
        schema_hint = contract.schema_instruction() if tools else None
        contents: list[dict[str, Any]] = [{"role": "user", "parts": _instruction_parts(instruction, schema_hint)}]
        generation_config: dict[str, Any] = {"temperature": 0.4}
        payload: dict[str, Any] = {"contents": contents, "safetySettings": safety.as_settings()}
        if tools:
            payload["tools"] = [{"functionDeclarations": [tool.declaration() for tool in tools]}]
            if tool_round is not None:
                contents.append(tool_round.model_turn)
                contents.append(tool_round.response_turn())
                payload["toolConfig"] = {"functionCallingConfig": {"mode": "NONE"}}
        else:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = contract.response_schema()
        payload["generationConfig"] = generation_config
        return payload

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.settings.gemini_api_key:
            raise BackendUnavailable(self.provider, "GEMINI_API_KEY is not configured.")
        url = f"{self.settings.gemini_api_base}/models/{self.settings.primary_model}:generateContent"
        timeout = httpx.Timeout(self.settings.generation_timeout_seconds, connect=8.0)
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(
                    url,
                    headers={"x-goog-api-key": self.settings.gemini_api_key, "Content-Type": "application/json"},
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise BackendUnavailable(self.provider, str(exc) or exc.__class__.__name__) from exc
        if response.status_code >= 400:
            raise BackendUnavailable(self.provider, _provider_error_message(response))
        try:
            body = response.json()
        except ValueError as exc:
            raise BackendUnavailable(self.provider, "Response body was not JSON.") from exc
        return body if isinstance(body, dict) else {}

    def generate(
        self,
        instruction: Instruction,
        contract: OutputContract,
        tools: Sequence[ToolSpec] = (),
        safety: SafetyConfig = DEFAULT_SAFETY,
        *,
        tool_round: ToolRound | None = None,
    ) -> GenerationResult:
        body = self._post(self._payload(instruction, contract, tools, safety, tool_round))
        return self._interpret(body)

    @staticmethod
    def _interpret(body: dict[str, Any]) -> GenerationResult:
        feedback = body.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            return GenerationResult(kind="refusal", detail=f"prompt blocked: {feedback['blockReason']}")

        candidates = body.get("candidates") or []
        if not candidates:
            return GenerationResult(kind="malformed", detail="no candidates")
        candidate = candidates[0]
        finish_reason = str(candidate.get("finishReason") or "")
        if finish_reason in _REFUSAL_FINISH_REASONS:
            return GenerationResult(kind="refusal", detail=f"finish reason {finish_reason}")

        content = candidate.get("content") or {}
        parts = content.get("parts") or []
        calls = [
            ToolInvocation(
                name=str(part["functionCall"].get("name") or ""),
                args=dict(part["functionCall"].get("args") or {}),
                call_id=part["functionCall"].get("id"),
            )
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("functionCall"), dict)
        ]
        if calls:
            return GenerationResult(kind="tool_calls", tool_calls=calls, model_turn={"role": "model", "parts": parts})

        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        data = _extract_json_object(text)
        if data is None:
            return GenerationResult(kind="malformed", detail="reply did not contain a JSON object")
        return GenerationResult(kind="final", data=data)
