"""
pipeline.py -- Insight extraction & merge, end to end.

Runs the flow for one conversation:
1. Skip conversations with fewer than 2 turns (not enough context)
2. Read the user's stored memory (when a user id and a store are given)
3. Build the prompt and call Claude
4. Parse the reply; malformed output means "no insights this round"
5. Merge with the prior memory
6. Upsert the merged memory; a failed write is logged, insights still returned

Usage:
    python -m insights.pipeline --transcript conversation.json [--memory memory.json] [--user-id ID]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import anthropic
from pydantic import ValidationError

from insights import config
from insights.extractor import ExtractionFailed, ModelInvoker, parse_response
from insights.merger import file_session_summary, merge_memory, set_action_item_status
from insights.models import (
    ActionStatus,
    BehavioralSignal,
    ConversationTurn,
    ExtractedFields,
    Malformed,
    MemoryRecord,
    Sender,
)
from insights.prompts import assemble_extraction_prompt, assemble_signal_prompt
from insights.signals import parse_signals
from insights.store import ProfileStore, StoreError

logger = logging.getLogger(__name__)

MIN_TURNS: int = 2


class InsightPipeline:
    """Coordinates prompt, model call, parse, merge and persistence for one request."""

    def __init__(
        self,
        invoker: ModelInvoker,
        store: Optional[ProfileStore] = None,
        signal_invoker: Optional[ModelInvoker] = None,
    ) -> None:
        self.invoker = invoker
        self.store = store
        self.signal_invoker = signal_invoker or invoker

    async def extract(
        self,
        turns: list[ConversationTurn],
        existing: Optional[MemoryRecord] = None,
        user_id: Optional[str] = None,
        names: Optional[dict[Sender, str]] = None,
    ) -> Optional[MemoryRecord]:
        """Extract insights from a conversation. None when nothing new was produced."""
        if len(turns) < MIN_TURNS:
            logger.info("Skipping extraction: %d turn(s) is not enough context", len(turns))
            return None

        persist = bool(user_id) and self.store is not None
        prior = existing
        if prior is None and persist:
            try:
                prior = await self.store.get_memory(user_id)
            except StoreError as exc:
                # Merging against nothing and writing back would erase the stored memory.
                logger.warning("Could not read memory for %s, not persisting this round: %s", user_id, exc)
                persist = False

        prompt = assemble_extraction_prompt(turns, prior, names)
        try:
            raw = await self.invoker.complete(prompt)
        except ExtractionFailed as exc:
            logger.error("Insight extraction failed: %s", exc)
            return None

        result = parse_response(raw)
        if isinstance(result, Malformed):
            logger.warning("Model returned malformed insights: %s", result.reason)
            return None
        try:
            extracted = ExtractedFields.model_validate(result.value)
        except ValidationError as exc:
            logger.warning("Model insights violate the schema: %d error(s)", exc.error_count())
            return None

        merged = merge_memory(extracted, prior)
        logger.info(
            "Extracted insights: %d themes, %d patterns, %d action items",
            len(merged.themes), len(merged.patterns), len(merged.action_items),
        )

        if persist and not await self.store.upsert_memory(user_id, merged):
            logger.error("Failed to persist insights for user %s; returning them anyway", user_id)
        return merged

    async def backfill(self, session_id: str, user_id: str) -> Optional[MemoryRecord]:
        """
        Re-run extraction over a stored session to populate a user's memory.

        Raises:
            StoreError: messages or the existing memory could not be read.
            LookupError: the session has no messages.
        """
        if self.store is None:
            raise StoreError("no profile store configured")
        turns = await self.store.fetch_messages(session_id)
        if not turns:
            raise LookupError(f"No messages found for session {session_id}")
        existing = await self.store.get_memory(user_id)
        logger.info("Backfilling user %s from session %s (%d turns)", user_id, session_id, len(turns))
        return await self.extract(turns, existing, user_id)

    async def extract_signals(self, user_id: str, user_messages: list[str]) -> list[BehavioralSignal]:
        """Extract behavioral signals from one person's messages and upsert them per type."""
        if not user_messages:
            return []
        try:
            raw = await self.signal_invoker.complete(assemble_signal_prompt(user_messages))
        except ExtractionFailed as exc:
            logger.error("Signal extraction failed for %s: %s", user_id, exc)
            return []

        result = parse_response(raw)
        if isinstance(result, Malformed):
            logger.warning("Model returned malformed signals: %s", result.reason)
            return []
        signals = parse_signals(result.value)

        if self.store is not None:
            for signal in signals:
                if not await self.store.upsert_signal(user_id, signal):
                    logger.error("Failed to store %s signal for %s", signal.signal_type, user_id)
        logger.info("Extracted %d signal(s) for %s", len(signals), user_id)
        return signals

    async def record_session(
        self,
        user_id: str,
        summary: str,
        topics: Optional[list[str]] = None,
        emotional_arc: Optional[list[float]] = None,
    ) -> MemoryRecord:
        """
        File a finished session summary into the user's memory.

        Raises:
            StoreError: no store, the memory could not be read, or the write failed.
        """
        if self.store is None:
            raise StoreError("no profile store configured")
        existing = await self.store.get_memory(user_id)
        updated = file_session_summary(existing, summary, topics, emotional_arc)
        if not await self.store.upsert_memory(user_id, updated):
            raise StoreError(f"failed to store session summary for {user_id}")
        return updated

    async def update_action_item(self, user_id: str, item_id: str, status: ActionStatus) -> MemoryRecord:
        """
        Explicit status transition for one of the user's action items.

        Raises:
            KeyError: unknown user memory or action item id.
            StoreError: no store, the read failed, or the write failed.
        """
        if self.store is None:
            raise StoreError("no profile store configured")
        memory = await self.store.get_memory(user_id)
        if memory is None:
            raise KeyError(user_id)
        updated = set_action_item_status(memory, item_id, status)
        if not await self.store.upsert_memory(user_id, updated):
            raise StoreError(f"failed to store action item {item_id} for {user_id}")
        logger.info("Action item %s for %s set to %s", item_id, user_id, status)
        return updated


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _load_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_transcript(path: str) -> list[ConversationTurn]:
    """Read turns from a JSON list, or an object with a "messages" list."""
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("messages", [])
    return [ConversationTurn.model_validate(item) for item in data]


async def run_cli(transcript: str, memory: Optional[str], user_id: Optional[str]) -> Optional[MemoryRecord]:
    turns = load_transcript(transcript)
    existing = MemoryRecord.model_validate(_load_json(memory)) if memory else None

    client = anthropic.AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
    store = ProfileStore() if user_id and config.SUPABASE_URL else None
    pipeline = InsightPipeline(ModelInvoker(client), store)
    try:
        return await pipeline.extract(turns, existing, user_id)
    finally:
        if store is not None:
            await store.aclose()
        await client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Parallax -- extract insights from a conversation")
    parser.add_argument("--transcript", type=str, required=True, help="JSON file of {sender, content} turns")
    parser.add_argument("--memory", type=str, default=None, help="JSON file holding the existing memory")
    parser.add_argument("--user-id", type=str, default=None, help="Persist the merged memory for this user")
    args = parser.parse_args()

    config.configure_logging()
    if not config.ANTHROPIC_API_KEY:
        logger.error("ANTHROPIC_API_KEY not set. Set it in .env or environment.")
        sys.exit(1)
    if not Path(args.transcript).exists():
        logger.error("Transcript not found: %s", args.transcript)
        sys.exit(1)

    insights = asyncio.run(run_cli(args.transcript, args.memory, args.user_id))
    if insights is None:
        logger.error("No insights produced.")
        sys.exit(1)
    print(json.dumps(insights.to_json(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
