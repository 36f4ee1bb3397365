"""
Minimal client for an OpenAI-compatible chat-completions endpoint.

Rationale:
- Keep interface tiny: complete(prompt, max_output_tokens, temperature) -> str.
- Refuse oversized prompts before any network round trip.
- Exactly one request per call: no retries / no fallback. Stages decide what to do on failure.
- Translate every failure into a typed GatewayError.
"""

import logging
import re
import time
from typing import Any, Optional

import httpx

from .config import LLMSettings, TokenBudget
from .errors import (
    AuthenticationMissing,
    MalformedResponse,
    NetworkUnavailable,
    PromptTooLarge,
    RemoteRejected,
)
from .utils import estimate_tokens

logger = logging.getLogger(__name__)

# Rejections about prompt size, so callers can shrink input instead of giving up.
# Only statuses a provider uses for oversized requests are checked for the wording.
_LENGTH_REJECTION_STATUSES = (400, 413, 422)
_TOKEN_LIMIT_HINT = re.compile(
    r"tokens?\b.{0,40}?\b(?:limit|exceed)|context[_ ]length|context window|too long|too large|maximum context",
    re.IGNORECASE,
)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or "Unknown error"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return "Unknown error"


def _message_content(body: Any) -> str:
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        raise MalformedResponse("AI response missing choices[0].message.content")
    if not isinstance(content, str) or not content.strip():
        raise MalformedResponse("AI response content is empty")
    return content


class ModelGateway:
    """One prompt in, one completion out."""

    def __init__(
        self,
        settings: LLMSettings,
        budget: TokenBudget,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self.budget = budget
        # Injected in tests (httpx.MockTransport); None means real network
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.api_key)

    def complete(self, prompt: str, max_output_tokens: int = 1000, temperature: float = 0.1) -> str:
        """
        Send `prompt` as a single user message and return the raw content string.
        """
        if not self.is_configured:
            raise AuthenticationMissing()

        prompt_tokens = estimate_tokens(prompt)
        if prompt_tokens > self.budget.max_input_tokens:
            logger.warning(
                f"Refusing prompt of ~{prompt_tokens} tokens (limit {self.budget.max_input_tokens})"
            )
            raise PromptTooLarge(prompt_tokens, self.budget.max_input_tokens)

        payload = {
            "model": self.settings.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_output_tokens,
            "temperature": temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }

        logger.info(f"Calling {self.settings.model}: ~{prompt_tokens} prompt tokens, max_tokens={max_output_tokens}")
        started = time.monotonic()
        try:
            with httpx.Client(timeout=self.settings.timeout_seconds, transport=self._transport) as client:
                response = client.post(self.settings.api_url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"AI request timed out after {self.settings.timeout_seconds}s: {e}")
            raise NetworkUnavailable(f"Network error: AI service timed out after {self.settings.timeout_seconds}s") from e
        except httpx.TransportError as e:
            logger.error(f"AI request failed to connect: {type(e).__name__}: {e}")
            raise NetworkUnavailable() from e

        elapsed = time.monotonic() - started
        logger.debug(f"AI responded with {response.status_code} in {elapsed:.2f}s")

        if not response.is_success:
            message = _error_message(response)
            token_limit = response.status_code == 413 or (
                response.status_code in _LENGTH_REJECTION_STATUSES and bool(_TOKEN_LIMIT_HINT.search(message))
            )
            logger.error(f"AI API rejected request: {response.status_code} - {message}")
            raise RemoteRejected(response.status_code, message, token_limit=token_limit)

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponse(f"AI response is not JSON: {response.text[:200]!r}") from e

        content = _message_content(body)
        logger.debug(f"AI raw response: {content[:1000]}")
        return content
