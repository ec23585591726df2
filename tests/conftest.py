"""Shared fakes and fixtures for the Parallax insight tests (no network calls)."""

from typing import Optional

import pytest

from insights.models import BehavioralSignal, ConversationTurn, MemoryRecord
from insights.store import StoreError

INSIGHTS_JSON = """{
  "identity": {"name": "Maya", "bio": "A nurse balancing shifts and family.",
               "importantPeople": [{"name": "Sam", "relationship": "partner"}]},
  "themes": ["work stress", "family"],
  "patterns": ["withdraws when criticized"],
  "values": ["fairness"],
  "strengths": ["empathy"],
  "currentSituation": "Arguing with Sam about chores",
  "emotionalState": "frustrated",
  "actionItems": [{"id": "talk-to-sam", "text": "Ask Sam for a chores check-in", "status": "suggested"}]
}"""


class FakeInvoker:
    """Stands in for ModelInvoker; records every prompt it receives."""

    def __init__(self, response: str = INSIGHTS_JSON, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, messages, max_tokens=None) -> str:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.response


class FakeStore:
    """In-memory ProfileStore with switchable read/write failures."""

    def __init__(self):
        self.memories: dict[str, MemoryRecord] = {}
        self.signals: dict[tuple[str, str], BehavioralSignal] = {}
        self.messages: dict[str, list[ConversationTurn]] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.memory_writes = 0

    async def get_memory(self, user_id: str) -> Optional[MemoryRecord]:
        if self.fail_reads:
            raise StoreError("read failed")
        return self.memories.get(user_id)

    async def upsert_memory(self, user_id: str, record: MemoryRecord) -> bool:
        if self.fail_writes:
            return False
        self.memory_writes += 1
        self.memories[user_id] = record
        return True

    async def upsert_signal(self, user_id: str, signal: BehavioralSignal) -> bool:
        if self.fail_writes:
            return False
        self.signals[(user_id, signal.signal_type)] = signal
        return True

    async def list_signals(self, user_id: str) -> list[BehavioralSignal]:
        if self.fail_reads:
            raise StoreError("read failed")
        return [s for (uid, _), s in sorted(self.signals.items()) if uid == user_id]

    async def fetch_messages(self, session_id: str) -> list[ConversationTurn]:
        if self.fail_reads:
            raise StoreError("read failed")
        return self.messages.get(session_id, [])

    async def aclose(self) -> None:
        return None


@pytest.fixture
def turns() -> list[ConversationTurn]:
    return [
        ConversationTurn(sender="person_a", content="Sam never helps with the chores."),
        ConversationTurn(sender="mediator", content="It sounds like you want more shared effort."),
        ConversationTurn(sender="person_b", content="I do help, just not the way you want."),
    ]


@pytest.fixture
def invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def make_invoker():
    return FakeInvoker
