# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Text-generation backend for SMB Pulse.

The explanation gateway and the question answering service never talk to
an HTTP API directly. They build a ``TextGenerationRequest`` (system
directive, prompt, output token budget, temperature) and hand it to any
object implementing the ``TextGenerator`` protocol:

    class TextGenerator(Protocol):
        def generate(self, request: TextGenerationRequest) -> str: ...

A backend returns plain text or raises ``TextGenerationError``. Callers
treat every failure (timeout, quota, HTTP error, malformed body) the same
way: as a recoverable miss that triggers their deterministic fallback.

``AnthropicTextGenerator`` is the production backend; it posts to the
Anthropic Messages API with ``requests`` and retries a bounded number of
times. Tests use small fake generators instead.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-3-5-haiku-latest"
ANTHROPIC_VERSION = "2023-06-01"


class TextGenerationError(RuntimeError):
    """Raised when a text-generation backend cannot produce an answer."""


@dataclass(frozen=True)
class TextGenerationRequest:
    """One bounded text-generation call."""

    system_directive: str
    prompt: str
    max_output_tokens: int
    temperature: float


class TextGenerator(Protocol):
    def generate(self, request: TextGenerationRequest) -> str:
        ...


class AnthropicTextGenerator:
    """
    Text generator backed by the Anthropic Messages API.

    Args:
        api_key: API key. When omitted, read from the environment variable
            named by ``api_key_env``.
        model: Model identifier.
        endpoint: Messages API URL.
        timeout_seconds: Per-request timeout; a timeout is a failure.
        max_retries: Number of attempts before giving up.
        retry_delay_seconds: Base delay between attempts (linear backoff).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        retry_delay_seconds: float = 1.0,
        api_key_env: str = "ANTHROPIC_API_KEY",
    ) -> None:
        self.api_key = api_key or os.environ.get(api_key_env, "")
        self.model = model
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds

    def _payload(self, request: TextGenerationRequest) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
            "system": request.system_directive,
            "messages": [{"role": "user", "content": request.prompt}],
        }

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    @staticmethod
    def _extract_text(body: Any) -> str:
        """Concatenate the text blocks of a Messages API response."""
        if not isinstance(body, dict):
            raise TextGenerationError("Unexpected response body from text generator.")

        blocks = body.get("content")
        if not isinstance(blocks, list):
            raise TextGenerationError("Response body has no 'content' list.")

        text = "".join(
            str(block.get("text", ""))
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        ).strip()
        if not text:
            raise TextGenerationError("Text generator returned an empty answer.")
        return text

    def generate(self, request: TextGenerationRequest) -> str:
        if not self.api_key:
            raise TextGenerationError("No API key configured for the text generator.")

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            logger.debug("Text generation attempt %d/%d", attempt, self.max_retries)
            try:
                response = requests.post(
                    self.endpoint,
                    headers=self._headers(),
                    json=self._payload(request),
                    timeout=self.timeout_seconds,
                )
            except requests.RequestException as exc:
                last_error = exc
                logger.info("Text generation request failed: %s", exc)
            else:
                if response.status_code == 200:
                    try:
                        body = response.json()
                    except ValueError as exc:
                        raise TextGenerationError(
                            "Text generator returned invalid JSON."
                        ) from exc
                    return self._extract_text(body)

                last_error = TextGenerationError(
                    f"Text generator returned HTTP {response.status_code}."
                )
                logger.info("Text generation returned HTTP %s", response.status_code)
                # Client errors other than rate limiting will not improve on retry.
                if 400 <= response.status_code < 500 and response.status_code != 429:
                    break

            if attempt < self.max_retries:
                time.sleep(self.retry_delay_seconds * attempt)

        raise TextGenerationError(f"Text generation failed: {last_error}") from last_error
