"""
store.py -- Profile persistence through the Supabase REST (PostgREST) API.

Responsibility:
- Read a user's stored memory (user_profiles.solo_memory)
- Upsert merged memory keyed by user_id
- Upsert behavioral signals keyed by (user_id, signal_type)
- Read a session's messages for backfill

Writes report success as a bool and log failures; they never raise.
Reads raise StoreError on transport/HTTP failure so callers can tell
"nothing stored" (None / []) apart from "could not read".
No version check on upsert: concurrent writers for one user, last write wins.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from insights import config
from insights.models import BehavioralSignal, ConversationTurn, MemoryRecord

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS: float = 30.0


class StoreError(Exception):
    """A read from the profile database failed."""


class ProfileStore:
    """Async PostgREST client for user_profiles, behavioral_signals and messages."""

    def __init__(
        self,
        base_url: str = config.SUPABASE_URL,
        service_key: str = config.SUPABASE_SERVICE_ROLE_KEY,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- low-level -----------------------------------------------------------

    async def _select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        url = f"{self.rest_url}/{table}"
        try:
            resp = await self._client.get(url, params=params, headers=self._headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Database returned %d for %s select: %s",
                         exc.response.status_code, table, exc.response.text[:500])
            raise StoreError(f"{table} select failed ({exc.response.status_code})") from exc
        except httpx.RequestError as exc:
            logger.error("Failed to reach database at %s: %s", url, exc)
            raise StoreError(f"{table} select failed") from exc
        rows = resp.json()
        return rows if isinstance(rows, list) else []

    async def _upsert(self, table: str, row: dict[str, Any], on_conflict: str) -> bool:
        url = f"{self.rest_url}/{table}"
        headers = {**self._headers, "Prefer": "resolution=merge-duplicates,return=minimal"}
        try:
            resp = await self._client.post(
                url, params={"on_conflict": on_conflict}, json=row, headers=headers,
            )
            resp.raise_for_status()
            return True
        except httpx.HTTPStatusError as exc:
            logger.error("Database returned %d for %s upsert: %s",
                         exc.response.status_code, table, exc.response.text[:500])
            return False
        except httpx.RequestError as exc:
            logger.error("Failed to reach database at %s: %s", url, exc)
            return False

    # -- memory --------------------------------------------------------------

    async def get_memory(self, user_id: str) -> Optional[MemoryRecord]:
        """Stored memory for a user, or None when there is none (or it is empty)."""
        rows = await self._select(
            "user_profiles", {"user_id": f"eq.{user_id}", "select": "solo_memory"},
        )
        if not rows:
            return None
        raw = rows[0].get("solo_memory")
        if not isinstance(raw, dict) or not raw:
            return None
        try:
            return MemoryRecord.model_validate(raw)
        except ValidationError as exc:
            logger.error("Stored memory for %s failed validation: %s", user_id, exc)
            raise StoreError("stored memory is not a valid MemoryRecord") from exc

    async def upsert_memory(self, user_id: str, record: MemoryRecord) -> bool:
        ok = await self._upsert(
            "user_profiles",
            {"user_id": user_id, "solo_memory": record.to_json()},
            on_conflict="user_id",
        )
        if ok:
            logger.info("Stored memory for user %s", user_id)
        return ok

    # -- signals -------------------------------------------------------------

    async def upsert_signal(self, user_id: str, signal: BehavioralSignal) -> bool:
        """Insert or replace the value and confidence of one signal type."""
        return await self._upsert(
            "behavioral_signals", signal.to_row(user_id), on_conflict="user_id,signal_type",
        )

    async def list_signals(self, user_id: str) -> list[BehavioralSignal]:
        rows = await self._select(
            "behavioral_signals",
            {"user_id": f"eq.{user_id}", "select": "*", "order": "signal_type"},
        )
        signals: list[BehavioralSignal] = []
        for row in rows:
            try:
                signals.append(BehavioralSignal.from_row(row))
            except ValidationError as exc:
                logger.warning("Skipping unreadable %s signal for %s: %d error(s)",
                               row.get("signal_type"), user_id, exc.error_count())
        return signals

    # -- messages ------------------------------------------------------------

    async def fetch_messages(self, session_id: str) -> list[ConversationTurn]:
        rows = await self._select(
            "messages",
            {"session_id": f"eq.{session_id}", "select": "sender,content", "order": "created_at.asc"},
        )
        turns: list[ConversationTurn] = []
        for row in rows:
            try:
                turns.append(ConversationTurn.model_validate(row))
            except ValidationError:
                logger.warning("Skipping message with unknown sender in session %s", session_id)
        return turns
