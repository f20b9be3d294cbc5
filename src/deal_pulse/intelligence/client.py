"""Chat-completion transport used by enrichment capabilities."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
import openai

from deal_pulse.config import AiSettings

logger = logging.getLogger(__name__)


class CompletionClient(Protocol):
    """Single-turn text completion; ``json_response`` asks the backend for a bare JSON object."""

    def complete(
        self,
        *,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        json_response: bool = False,
    ) -> str: ...


class OpenAICompletionClient:
    """OpenAI-compatible chat completions backend."""

    def __init__(self, settings: AiSettings) -> None:
        if not settings.api_key:
            raise ValueError("DEAL_PULSE_AI_API_KEY (or OPENAI_API_KEY) is not configured.")
        self.model = settings.model
        self._client = openai.OpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=httpx.Timeout(settings.request_timeout_seconds),
            max_retries=0,
        )

    def complete(
        self,
        *,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        json_response: bool = False,
    ) -> str:
        options: dict[str, Any] = {}
        if json_response:
            options["response_format"] = {"type": "json_object"}
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
            **options,
        )
        if not response.choices:
            logger.warning("Completion for model %s returned no choices", self.model)
            return ""
        return response.choices[0].message.content or ""

    def close(self) -> None:
        self._client.close()
