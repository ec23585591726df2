"""
extractor.py -- Claude invocation and response parsing.

The model is an untrusted, possibly failing remote. Two boundaries:
- ModelInvoker: one outbound call; every failure becomes ExtractionFailed.
- parse_response: code-fence stripping + strict JSON; returns Parsed or
  Malformed and never raises.
No retries here. Callers that want them own the policy.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional

import anthropic

from insights import config
from insights.models import Malformed, Parsed, ParseResult

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```[ \t]*[\w-]*[ \t]*\n?(.*?)```", re.DOTALL)
_LEADING_FENCE = re.compile(r"^```[ \t]*[\w-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?```\s*$")


class ExtractionFailed(Exception):
    """The remote model call did not produce text (network, HTTP or provider error)."""


# ---------------------------------------------------------------------------
# Model invocation
# ---------------------------------------------------------------------------

class ModelInvoker:
    """Sends an assembled prompt to Claude and returns the raw response text."""

    def __init__(
        self,
        client: Optional[anthropic.AsyncAnthropic],
        model: str = config.INSIGHTS_MODEL,
        max_tokens: int = config.INSIGHTS_MAX_TOKENS,
    ) -> None:
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: Optional[int] = None,
    ) -> str:
        """Call Claude once. Separates the system message from the user turns."""
        if self.client is None:
            raise ExtractionFailed("Claude client not initialized -- check ANTHROPIC_API_KEY")

        system_content = ""
        user_messages: list[dict[str, str]] = []
        for msg in messages:
            if msg["role"] == "system":
                system_content = msg["content"]
            else:
                user_messages.append(msg)

        logger.info("Calling Claude (model=%s, system_len=%d)", self.model, len(system_content))
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens or self.max_tokens,
                system=system_content,
                messages=user_messages,
            )
        except anthropic.APIStatusError as exc:
            logger.warning("Claude returned %d: %s", exc.status_code, exc.message)
            raise ExtractionFailed(f"Claude returned {exc.status_code}") from exc
        except anthropic.APIError as exc:
            logger.warning("Claude call failed: %s", exc)
            raise ExtractionFailed(str(exc)) from exc

        return "".join(block.text for block in response.content if block.type == "text")


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def strip_code_fences(raw: str) -> str:
    """
    Remove markdown code-fence markup around a JSON payload.

    A complete fenced block anywhere in the text wins (models like to say
    "Sure!" first). Otherwise a dangling opening or closing fence is trimmed.
    """
    text = raw.strip()
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    text = _LEADING_FENCE.sub("", text)
    text = _TRAILING_FENCE.sub("", text)
    return text.strip()


def parse_response(raw: Optional[str]) -> ParseResult:
    """Parse model text into a JSON object. Malformed on any failure."""
    if not raw or not raw.strip():
        return Malformed("empty response")
    text = strip_code_fences(raw)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse Claude response: %s", exc)
        return Malformed(f"invalid JSON: {exc.msg}")
    if not isinstance(parsed, dict):
        logger.warning("Expected JSON object, got %s", type(parsed).__name__)
        return Malformed(f"expected object, got {type(parsed).__name__}")
    return Parsed(parsed)
