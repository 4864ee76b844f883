"""
Model Layer — LLM Abstraction & Policy Enforcement.

Responsibility:
- Abstract specific LLM client details (Gemini, OpenAI-compatible, Anthropic, Ollama)
- Enforce timeouts and retries
- Map transport outcomes onto the model error taxonomy (429 → rate limit)
- JSON extraction from free-text model output

This is the ONLY place where LLMs are called.
"""

import json
import logging
import os
import re
from typing import Any

import httpx

from models.errors import ModelRateLimitError, ModelResponseError, ModelUnavailableError
from observability.logger import Observability
from shared.models import ModelPolicy

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = {"gemini", "openai_compatible", "anthropic", "ollama"}

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_DANGLING_COMMA = re.compile(r",\s*([}\]])")


def parse_json_object(text: str) -> dict[str, Any]:
    """Extract the outermost JSON object from model output.

    Handles markdown code fences, prose around the object and trailing commas.
    Raises ModelResponseError when nothing parseable remains.
    """
    clean_text = (text or "").strip()
    clean_text = _FENCE_OPEN.sub("", clean_text)
    clean_text = _FENCE_CLOSE.sub("", clean_text)

    start = clean_text.find("{")
    end = clean_text.rfind("}")
    if start == -1 or end <= start:
        raise ModelResponseError("No JSON object found in model output")

    candidate = _DANGLING_COMMA.sub(r"\1", clean_text[start : end + 1])
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ModelResponseError(f"Invalid JSON from model: {e}") from e
    if not isinstance(parsed, dict):
        raise ModelResponseError("Model returned non-object JSON")
    return parsed


class ModelSelector:
    """Calls one model service with reliability policies.

    Several selectors are chained by callers (primary → secondary); a selector
    itself never switches provider.
    """

    def __init__(
        self,
        provider: str = "gemini",
        base_url: str = "https://generativelanguage.googleapis.com",
        model_name: str = "gemini-2.5-flash",
        api_key: str = "",
        client: httpx.AsyncClient | None = None,
    ):
        provider = (provider or "").strip().lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported model provider '{provider}'")
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.api_key = (api_key or "").strip()

        base_headers: dict[str, str] = {}
        if self.provider == "openai_compatible" and self.api_key:
            base_headers["Authorization"] = f"Bearer {self.api_key}"

        # Persistent client with connection pooling
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=60.0,  # default, overridden by policy
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers=base_headers,
        )

    @classmethod
    def from_env(
        cls,
        prefix: str,
        *,
        provider: str,
        base_url: str,
        model_name: str,
        api_key_fallback_env: str = "",
    ) -> "ModelSelector":
        """Build a selector from ``<PREFIX>_MODEL_*`` environment variables."""
        api_key = os.getenv(f"{prefix}_MODEL_API_KEY", "").strip()
        if not api_key and api_key_fallback_env:
            api_key = os.getenv(api_key_fallback_env, "").strip()
        return cls(
            provider=os.getenv(f"{prefix}_MODEL_PROVIDER", provider).strip().lower() or provider,
            base_url=os.getenv(f"{prefix}_MODEL_BASE_URL", base_url).strip() or base_url,
            model_name=os.getenv(f"{prefix}_MODEL_NAME", model_name).strip() or model_name,
            api_key=api_key,
        )

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.model_name}"

    async def generate(
        self,
        messages: list[dict],
        policy: ModelPolicy,
        request_id: str | None = None,
    ) -> dict[str, Any] | str:
        """
        Execute LLM generation with retry/timeout policy.
        Returns a parsed dict if json_mode=True, else the raw text.

        Only ModelUnavailableError is retried here. Rate limits and
        unparseable output are raised immediately for the caller to route.
        """
        obs = Observability(request_id)
        model_name = policy.model_name or self.model_name
        attempts = max(1, policy.max_retries)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                with obs.measure(
                    "model_call",
                    {
                        "model": model_name,
                        "attempt": attempt,
                        "provider": self.provider,
                        "max_output_tokens": policy.max_output_tokens,
                    },
                ):
                    response_text = await self._call_model(messages, policy, model_name)
            except ModelUnavailableError as e:
                last_error = e
                logger.warning(
                    "Model call to %s failed (attempt %d/%d): %s",
                    model_name,
                    attempt,
                    attempts,
                    e,
                )
                continue

            if policy.json_mode:
                return parse_json_object(response_text)
            return response_text

        obs.log_event(
            "model_failure",
            {"error": str(last_error), "model": model_name, "provider": self.provider},
            level="ERROR",
        )
        raise last_error or ModelUnavailableError("Unknown model failure", model=model_name)

    async def _call_model(self, messages: list[dict], policy: ModelPolicy, model_name: str) -> str:
        """Dispatch by provider and translate transport outcomes into model errors."""
        try:
            if self.provider == "gemini":
                return await self._call_gemini(messages, policy, model_name)
            if self.provider == "anthropic":
                return await self._call_anthropic_messages(messages, policy, model_name)
            if self.provider == "openai_compatible":
                return await self._call_openai_chat(messages, policy, model_name)
            return await self._call_ollama(messages, policy, model_name)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 429:
                raise ModelRateLimitError(
                    f"{self.provider} rate-limited (429)", model=model_name, status_code=status
                ) from e
            raise ModelUnavailableError(
                f"{self.provider} API error: {status}", model=model_name, status_code=status
            ) from e
        except httpx.HTTPError as e:
            raise ModelUnavailableError(
                f"{self.provider} transport error: {type(e).__name__}: {e}", model=model_name
            ) from e

    def _require_api_key(self, model_name: str) -> None:
        if not self.api_key:
            raise ModelUnavailableError(
                f"API key not configured for provider '{self.provider}'", model=model_name
            )

    def _split_system(self, messages: list[dict]) -> tuple[str, list[dict[str, str]]]:
        system_parts: list[str] = []
        turns: list[dict[str, str]] = []
        for message in messages:
            role = str(message.get("role", "user")).strip().lower()
            text = str(message.get("content", "")).strip()
            if not text:
                continue
            if role == "system":
                system_parts.append(text)
                continue
            if role not in {"user", "assistant"}:
                role = "user"
            turns.append({"role": role, "content": text})
        return "\n\n".join(system_parts).strip(), turns

    async def _call_gemini(self, messages: list[dict], policy: ModelPolicy, model_name: str) -> str:
        """Low-level Gemini generateContent call."""
        self._require_api_key(model_name)
        system_prompt, turns = self._split_system(messages)

        contents = [
            {
                "role": "model" if turn["role"] == "assistant" else "user",
                "parts": [{"text": turn["content"]}],
            }
            for turn in turns
        ] or [{"role": "user", "parts": [{"text": "Hello"}]}]

        generation_config: dict[str, Any] = {
            "temperature": policy.temperature,
            "topP": 0.8,
            "maxOutputTokens": policy.max_output_tokens,
        }
        if policy.json_mode:
            generation_config["responseMimeType"] = "application/json"

        payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        response = await self._client.post(
            f"/v1beta/models/{model_name}:generateContent",
            params={"key": self.api_key},
            json=payload,
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise ModelResponseError("No response from Gemini", model=model_name)
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
        if not text.strip():
            raise ModelResponseError("Gemini response missing text content", model=model_name)
        return text

    async def _call_anthropic_messages(self, messages: list[dict], policy: ModelPolicy, model_name: str) -> str:
        """Low-level Anthropic /v1/messages call."""
        self._require_api_key(model_name)
        system_prompt, payload_messages = self._split_system(messages)
        if not payload_messages:
            payload_messages = [{"role": "user", "content": "Hello"}]

        if policy.json_mode:
            json_guard = "Return ONLY a valid JSON object."
            system_prompt = f"{system_prompt}\n\n{json_guard}".strip() if system_prompt else json_guard

        payload: dict[str, Any] = {
            "model": model_name,
            "messages": payload_messages,
            "temperature": policy.temperature,
            "max_tokens": policy.max_output_tokens,
        }
        if system_prompt:
            payload["system"] = system_prompt

        response = await self._client.post(
            "/v1/messages",
            json=payload,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": os.getenv("ANTHROPIC_VERSION", "2023-06-01"),
            },
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        text_parts: list[str] = []
        for block in data.get("content") or []:
            if not isinstance(block, dict) or str(block.get("type", "")).strip() != "text":
                continue
            text_value = str(block.get("text", "")).strip()
            if text_value:
                text_parts.append(text_value)
        if not text_parts:
            raise ModelResponseError("Anthropic response missing text content", model=model_name)
        return "\n".join(text_parts)

    async def _call_openai_chat(self, messages: list[dict], policy: ModelPolicy, model_name: str) -> str:
        """OpenAI-compatible /v1/chat/completions call (Groq, OpenAI, local gateways)."""
        payload: dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "temperature": policy.temperature,
            "max_tokens": policy.max_output_tokens,
            "stream": False,
        }
        if policy.json_mode:
            payload["response_format"] = {"type": "json_object"}

        response = await self._client.post(
            "/v1/chat/completions",
            json=payload,
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise ModelResponseError("OpenAI-compatible response missing choices", model=model_name)
        message = choices[0].get("message") or {}
        return str(message.get("content", ""))

    async def _call_ollama(self, messages: list[dict], policy: ModelPolicy, model_name: str) -> str:
        """Ollama /api/chat call with OpenAI-compatible fallback on 404."""
        payload: dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "stream": False,
            "keep_alive": "10m",
            "options": {
                "temperature": policy.temperature,
                "num_ctx": 4096,
                "num_predict": policy.max_output_tokens,
            },
        }
        if policy.json_mode:
            payload["format"] = "json"

        try:
            response = await self._client.post("/api/chat", json=payload, timeout=policy.timeout_seconds)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            # Some local providers expose only OpenAI-compatible APIs (/v1/chat/completions).
            if e.response is not None and e.response.status_code == 404:
                logger.info("Ollama endpoint not found; trying OpenAI-compatible chat endpoint.")
                return await self._call_openai_chat(messages, policy, model_name)
            raise
        return str(response.json().get("message", {}).get("content", ""))

    async def close(self) -> None:
        """Close persistent connections."""
        await self._client.aclose()
