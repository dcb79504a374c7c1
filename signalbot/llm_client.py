"""
Client for the Anthropic Messages API.

Every classification call in the pipeline (enrichment, clustering, market
mapping, arbitration) goes through ClaudeClient.complete(). Transient HTTP
failures are retried with backoff; anything else propagates to the caller,
which decides how to degrade.
"""

import json
import logging
from typing import Optional

from signalbot.config import Config
from signalbot.utils import ClassificationError, request_json, retry_with_backoff

# Configure module logger
logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class ClaudeClient:
    """Thin wrapper around the Messages endpoint returning plain text."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[int] = None,
    ):
        self.api_key = api_key or Config.ANTHROPIC_API_KEY
        self.model = model or Config.CLAUDE_MODEL
        self.temperature = Config.CLAUDE_TEMPERATURE if temperature is None else temperature
        self.timeout = timeout or Config.API_TIMEOUT

        if not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY not configured")

    def complete(self, system: str, prompt: str, max_tokens: Optional[int] = None) -> str:
        """
        Send one user message with a system prompt and return the text reply.

        Args:
            system: System prompt describing the task and output schema
            prompt: User message content
            max_tokens: Completion budget (defaults to Config.CLAUDE_MAX_TOKENS)

        Returns:
            Text of the first content block

        Raises:
            ClassificationError: If the response carries no text block
            requests.RequestException: If the request fails after retries
        """
        payload = {
            "model": self.model,
            "max_tokens": max_tokens or Config.CLAUDE_MAX_TOKENS,
            "temperature": self.temperature,
            "system": system,
            "messages": [
                {
                    "role": "user",
                    "content": prompt
                }
            ],
        }

        logger.debug(f"Calling Claude API with model {self.model}")
        data = self._post(payload)

        if isinstance(data, dict) and data.get("content"):
            content_block = data["content"][0]
            if content_block.get("type", "text") == "text" and "text" in content_block:
                text = content_block["text"]
                logger.debug(f"Received response of length {len(text)}")
                return text

        logger.warning("Unexpected Claude API response structure")
        logger.debug(f"Response data: {json.dumps(data, indent=2)[:500] if data else data}")
        raise ClassificationError("Claude response contained no text content")

    @retry_with_backoff(max_retries=3, initial_delay=1.0)
    def _post(self, payload: dict) -> dict:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        return request_json(
            "POST",
            ANTHROPIC_MESSAGES_URL,
            timeout=self.timeout,
            json=payload,
            headers=headers,
        )
