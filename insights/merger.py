"""
merger.py -- Merge freshly extracted fields into a user's memory.

Per-field rules:
- identity: new value if present, else the existing one (never downgraded to null)
- themes/patterns/values/strengths: existing + new, case-insensitive de-dup, capped
- important people: de-duplicated by name
- action items: merged by id; existing items (and their status) are never overwritten
- currentSituation/emotionalState: always the new value (they describe "now")
- lastSeenAt: the merge time

Every function here is pure: inputs are never mutated.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from insights.models import (
    PATTERNS_CAP,
    RECENT_SESSIONS_CAP,
    THEMES_CAP,
    ActionItem,
    ActionStatus,
    ExtractedFields,
    Identity,
    ImportantPerson,
    MemoryRecord,
    RecentSession,
)

logger = logging.getLogger(__name__)


def _timestamp(now: Optional[datetime]) -> str:
    now = now or datetime.now(timezone.utc)
    return now.isoformat().replace("+00:00", "Z")


def dedup_strings(items: Iterable[str], cap: Optional[int] = None) -> list[str]:
    """Case-insensitive de-duplication keeping the first occurrence's casing."""
    seen: set[str] = set()
    unique: list[str] = []
    for item in items:
        key = item.strip().casefold()
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique[:cap] if cap is not None else unique


def dedup_people(people: Iterable[ImportantPerson]) -> list[ImportantPerson]:
    """De-duplicate important people by name; the first mention wins."""
    seen: set[str] = set()
    unique: list[ImportantPerson] = []
    for person in people:
        key = person.name.strip().casefold()
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(person)
    return unique


def action_item_id(text: str) -> str:
    """Stable kebab-case id derived from an action item's text."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.casefold()).strip("-")
    return slug[:64].rstrip("-")


def merge_action_items(
    existing: list[ActionItem],
    incoming: list[ActionItem],
) -> list[ActionItem]:
    """
    Merge action items by id.

    Every existing item is kept as stored, including ones without an id or
    with a repeated id; status changes are an explicit operation
    (set_action_item_status), never a side effect of re-extraction. An item
    without an id is known by the slug of its text. Incoming items whose key
    is new are appended in order.
    """
    merged: list[ActionItem] = list(existing)
    known: set[str] = {item.id or action_item_id(item.text) for item in existing}
    for item in incoming:
        item_id = item.id or action_item_id(item.text)
        if not item_id or item_id in known:
            continue
        known.add(item_id)
        merged.append(item if item.id else item.model_copy(update={"id": item_id}))
    return merged


def merge_memory(
    extracted: ExtractedFields,
    existing: Optional[MemoryRecord] = None,
    now: Optional[datetime] = None,
) -> MemoryRecord:
    """Combine one extraction with the stored memory into a new MemoryRecord."""
    prior = existing or MemoryRecord()
    new_identity = extracted.identity

    identity = Identity(
        name=new_identity.name or prior.identity.name or None,
        bio=new_identity.bio or prior.identity.bio or None,
        important_people=dedup_people(
            [*prior.identity.important_people, *new_identity.important_people]
        ),
    )

    merged = MemoryRecord(
        identity=identity,
        themes=dedup_strings([*prior.themes, *extracted.themes], THEMES_CAP),
        patterns=dedup_strings([*prior.patterns, *extracted.patterns], PATTERNS_CAP),
        values=dedup_strings([*prior.values, *extracted.values]),
        strengths=dedup_strings([*prior.strengths, *extracted.strengths]),
        recent_sessions=list(prior.recent_sessions),
        current_situation=extracted.current_situation,
        emotional_state=extracted.emotional_state,
        action_items=merge_action_items(prior.action_items, extracted.action_items),
        session_count=prior.session_count or 1,
        last_seen_at=_timestamp(now),
    )

    logger.debug(
        "Merged memory: themes=%d patterns=%d action_items=%d (was %d)",
        len(merged.themes),
        len(merged.patterns),
        len(merged.action_items),
        len(prior.action_items),
    )
    return merged


def set_action_item_status(
    memory: MemoryRecord,
    item_id: str,
    status: ActionStatus,
) -> MemoryRecord:
    """Explicit status transition for one action item. KeyError for an unknown id."""
    if not any(item.id == item_id for item in memory.action_items):
        raise KeyError(item_id)
    items = [
        item.model_copy(update={"status": status}) if item.id == item_id else item
        for item in memory.action_items
    ]
    return memory.model_copy(update={"action_items": items})


def file_session_summary(
    memory: Optional[MemoryRecord],
    summary: str,
    topics: Optional[list[str]] = None,
    emotional_arc: Optional[list[float]] = None,
    now: Optional[datetime] = None,
) -> MemoryRecord:
    """Append a finished session to the memory, keeping the most recent five."""
    prior = memory or MemoryRecord()
    timestamp = _timestamp(now)
    session = RecentSession(
        date=timestamp,
        summary=summary,
        topics=list(topics or [])[:3],
        emotional_arc=list(emotional_arc or []),
    )
    recent = [*prior.recent_sessions, session][-RECENT_SESSIONS_CAP:]
    return prior.model_copy(
        update={
            "recent_sessions": recent,
            "session_count": prior.session_count + 1,
            "last_seen_at": timestamp,
        }
    )
