"""
prompts.py -- Prompt assembly for insight and signal extraction.

Two layers per prompt:
Layer 1 (System): fixed extraction rules and the exact JSON shape to return.
Layer 2 (User): the conversation as "[speaker]: content" lines, followed by
the user's existing memory when one is on record.

Only message text is sent to Claude; session and user identifiers never are.
"""

import json
import logging
from typing import Optional

from insights.models import ConversationTurn, MemoryRecord, Sender

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Extraction preambles
# ---------------------------------------------------------------------------

INSIGHT_EXTRACTION_PROMPT = """You are an insight extraction system. Given a conversation mediated by Parallax (an AI companion), extract structured insights about the person.

Return a JSON object with this exact shape:
{
  "identity": {
    "name": "string or null",
    "bio": "1-2 sentence summary of who they are, or null",
    "importantPeople": [{ "name": "string", "relationship": "string" }]
  },
  "themes": ["recurring life themes, max 8"],
  "patterns": ["behavioral patterns you notice, max 6"],
  "values": ["core values expressed or implied"],
  "strengths": ["things they do well or positive traits"],
  "currentSituation": "what they're currently dealing with, or null",
  "emotionalState": "their current emotional state in 1-3 words, or null",
  "actionItems": [
    {
      "id": "stable-kebab-case-id",
      "text": "actionable suggestion",
      "status": "suggested"
    }
  ]
}

RULES:
- Extract ONLY what's clearly evidenced in the conversation. Don't infer wildly.
- For themes and patterns, look for RECURRING evidence, not one-off mentions.
- Action items should be specific and actionable, not vague advice.
- Use stable IDs for action items (kebab-case derived from the text).
- If existing memory is provided, PRESERVE long-term data unless directly contradicted.
- Update currentSituation and emotionalState to reflect the CURRENT conversation.
- Return ONLY valid JSON. No markdown, no explanation."""

SIGNAL_EXTRACTION_PROMPT = """You are analyzing a person's messages from a 1:1 conversation with an AI companion. Extract behavioral signals that reveal their communication patterns, emotional tendencies, and conflict style.

Analyze the messages for these signal types (only include those with clear evidence):
- attachment_style: { primary: "secure"|"anxious"|"avoidant"|"disorganized", confidence: 0-1 }
- conflict_mode: { primary: "competing"|"collaborating"|"compromising"|"avoiding"|"accommodating", assertiveness: 0-1, cooperativeness: 0-1 }
- regulation_pattern: { style: "regulated"|"dysregulated"|"over_regulated", triggerSensitivity: 0-1 }
- values: { core: string[], communication: string[], unmetNeeds: string[] }
- narrative_themes: { totalizingNarratives: string[], identityClaims: string[], recurringEmotions: string[] }
- drama_triangle: { defaultRole: "persecutor"|"victim"|"rescuer"|null, rescuerTrapRisk: 0-1 }

RULES:
- Only extract signals you have genuine evidence for. Quality over quantity.
- Confidence should reflect evidence strength: 0.3 = hint, 0.5 = moderate, 0.8+ = strong pattern.
- Return valid JSON only. No explanation text.

Return format:
{ "signals": [ { "signal_type": "...", "signal_value": {...}, "confidence": 0.X }, ... ] }"""

DEFAULT_NAMES: dict[str, str] = {
    "person_a": "Person A",
    "person_b": "Person B",
    "mediator": "Parallax",
}


def build_name_map(
    person_a_name: Optional[str] = None,
    person_b_name: Optional[str] = None,
) -> dict[Sender, str]:
    """Map each sender to the label shown to the model."""
    return {
        "person_a": person_a_name or DEFAULT_NAMES["person_a"],
        "person_b": person_b_name or DEFAULT_NAMES["person_b"],
        "mediator": DEFAULT_NAMES["mediator"],
    }


def build_conversation_layer(
    turns: list[ConversationTurn],
    names: Optional[dict[Sender, str]] = None,
) -> str:
    """Serialize turns in order as "[speaker]: content" lines."""
    names = names or build_name_map()
    return "\n".join(f"[{names[turn.sender]}]: {turn.content}" for turn in turns)


def build_memory_layer(existing: Optional[MemoryRecord]) -> str:
    """Prior memory as JSON, labeled as data to preserve. Empty when absent or blank."""
    if existing is None or existing.is_empty():
        return ""
    return (
        "\n\nEXISTING MEMORY (preserve and build on this):\n"
        + json.dumps(existing.to_json(), indent=2, ensure_ascii=False)
    )


def assemble_extraction_prompt(
    turns: list[ConversationTurn],
    existing: Optional[MemoryRecord] = None,
    names: Optional[dict[Sender, str]] = None,
) -> list[dict[str, str]]:
    """
    Assemble the insight extraction prompt as Messages API input.

    Returns a system message (the extraction rules) followed by one user
    message carrying the conversation and, when present, the prior memory.
    """
    user_content = (
        "CONVERSATION:\n"
        + build_conversation_layer(turns, names)
        + build_memory_layer(existing)
        + "\n\nExtract insights as JSON."
    )
    logger.debug(
        "Assembled extraction prompt: %d turns, existing_memory=%s",
        len(turns),
        existing is not None,
    )
    return [
        {"role": "system", "content": INSIGHT_EXTRACTION_PROMPT},
        {"role": "user", "content": user_content},
    ]


def assemble_signal_prompt(user_messages: list[str]) -> list[dict[str, str]]:
    """Assemble the behavioral signal prompt from one person's messages."""
    message_block = "\n".join(
        f"[Message {i}]: {message}" for i, message in enumerate(user_messages, 1)
    )
    return [
        {"role": "system", "content": SIGNAL_EXTRACTION_PROMPT},
        {"role": "user", "content": f"MESSAGES:\n{message_block}"},
    ]
