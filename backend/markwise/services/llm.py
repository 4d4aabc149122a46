"""LLM service — Ollama with optional OpenAI-compatible fallback.

A caller may also pass an :class:`LLMEndpoint` (a user's own OpenAI-compatible
model); the request then goes straight to it and the server-wide backends are
not consulted.

The website analyzer is the only caller; it asks for JSON answers, so every
request can be sent in JSON mode (Ollama ``format: json`` / OpenAI
``response_format``). When a fallback is configured and Ollama fails, the
request is retried against the fallback and Ollama is rested for a cooldown.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when completion fails on every configured backend."""


@dataclass(frozen=True, slots=True)
class LLMResponse:
    text: str
    model: str
    backend: str  # "ollama", "fallback" or "user"


@dataclass(frozen=True, slots=True)
class LLMEndpoint:
    """An OpenAI-compatible endpoint chosen per request."""

    base_url: str
    api_key: str
    model: str


class LLMService:
    # Seconds to skip Ollama after it fails
    _HEALTH_RECHECK_INTERVAL = 60

    __slots__ = (
        "ollama_url",
        "model",
        "_timeout",
        "_fallback_url",
        "_fallback_api_key",
        "_fallback_model",
        "_ollama_down_since",
    )

    def __init__(
        self,
        ollama_url: str,
        model: str = "llama3.2",
        timeout: float = 120.0,
        fallback_url: str = "",
        fallback_api_key: str = "",
        fallback_model: str = "",
    ) -> None:
        self.ollama_url = ollama_url.rstrip("/")
        self.model = model
        self._timeout = timeout
        self._fallback_url = fallback_url.rstrip("/") if fallback_url else ""
        self._fallback_api_key = fallback_api_key
        self._fallback_model = fallback_model or model
        self._ollama_down_since: float | None = None

    @property
    def has_fallback(self) -> bool:
        return bool(self._fallback_url)

    def _ollama_available(self) -> bool:
        if self._ollama_down_since is None:
            return True
        return time.monotonic() - self._ollama_down_since >= self._HEALTH_RECHECK_INTERVAL

    async def complete(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float = 0.2,
        json_mode: bool = False,
        endpoint: LLMEndpoint | None = None,
    ) -> LLMResponse:
        """Return a single completion, falling back when Ollama is unavailable.

        With ``endpoint`` set, only that endpoint is tried.
        """
        if endpoint is not None:
            return await self._complete_openai(
                prompt, system, temperature, json_mode, endpoint, backend="user"
            )

        if self._ollama_available():
            try:
                result = await self._complete_ollama(prompt, system, temperature, json_mode)
            except LLMError:
                self._ollama_down_since = time.monotonic()
                logger.warning(
                    "Ollama request failed, resting it for %ds",
                    self._HEALTH_RECHECK_INTERVAL,
                )
                if not self.has_fallback:
                    raise
            else:
                if self._ollama_down_since is not None:
                    logger.info("Ollama is reachable again")
                self._ollama_down_since = None
                return result

        if not self.has_fallback:
            raise LLMError("Ollama is unavailable and no fallback is configured")
        logger.info("Using fallback LLM at %s", self._fallback_url)
        fallback = LLMEndpoint(
            base_url=self._fallback_url,
            api_key=self._fallback_api_key,
            model=self._fallback_model,
        )
        return await self._complete_openai(
            prompt, system, temperature, json_mode, fallback, backend="fallback"
        )

    async def _post(self, url: str, payload: dict, headers: dict | None, label: str) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.ConnectError as exc:
            raise LLMError(f"Cannot connect to {label} at {url}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise LLMError(f"{label} returned HTTP {exc.response.status_code}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise LLMError(f"{label} request timed out after {self._timeout}s: {exc}") from exc
        except ValueError as exc:
            raise LLMError(f"{label} returned a non-JSON body: {exc}") from exc

    async def _complete_ollama(
        self, prompt: str, system: str | None, temperature: float, json_mode: bool
    ) -> LLMResponse:
        payload: dict = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if system is not None:
            payload["system"] = system
        if json_mode:
            payload["format"] = "json"

        data = await self._post(f"{self.ollama_url}/api/generate", payload, None, "Ollama")
        try:
            return LLMResponse(
                text=data["response"],
                model=data.get("model", self.model),
                backend="ollama",
            )
        except KeyError as exc:
            raise LLMError(f"Unexpected response from Ollama: missing {exc}") from exc

    async def _complete_openai(
        self,
        prompt: str,
        system: str | None,
        temperature: float,
        json_mode: bool,
        endpoint: LLMEndpoint,
        backend: str,
    ) -> LLMResponse:
        label = f"{backend} LLM"
        messages: list[dict] = []
        if system is not None:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload: dict = {
            "model": endpoint.model,
            "messages": messages,
            "temperature": temperature,
            "stream": False,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        headers = {"Authorization": f"Bearer {endpoint.api_key}"}

        data = await self._post(
            f"{endpoint.base_url.rstrip('/')}/chat/completions", payload, headers, label
        )
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError(f"Unexpected response from {label}: {exc}") from exc
        return LLMResponse(
            text=text,
            model=data.get("model", endpoint.model),
            backend=backend,
        )

