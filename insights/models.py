"""
models.py -- Pydantic models for the Parallax insight pipeline.

Defines: ConversationTurn, ExtractedFields, MemoryRecord, the behavioral
signal variants, and the Parsed/Malformed parse result.
All data crossing component boundaries uses these models.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enumerations and caps
# ---------------------------------------------------------------------------

Sender = Literal["person_a", "person_b", "mediator"]
ActionStatus = Literal["suggested", "accepted", "done", "dismissed"]
ACTION_STATUSES: tuple[str, ...] = get_args(ActionStatus)

THEMES_CAP: int = 8
PATTERNS_CAP: int = 6
RECENT_SESSIONS_CAP: int = 5


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class _CamelModel(BaseModel):
    """Stored JSON uses camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Conversation input
# ---------------------------------------------------------------------------

class ConversationTurn(BaseModel):
    """One message attributed to a sender within a conversation."""

    model_config = ConfigDict(frozen=True)

    sender: Sender
    content: str


# ---------------------------------------------------------------------------
# Memory building blocks
# ---------------------------------------------------------------------------

class ImportantPerson(_CamelModel):
    name: str
    relationship: str = ""

    @field_validator("relationship", mode="before")
    @classmethod
    def _missing_relationship(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


class Identity(_CamelModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    important_people: list[ImportantPerson] = Field(default_factory=list)


class ActionItem(_CamelModel):
    """A suggested next step. Stored statuses are kept verbatim."""

    id: str = ""
    text: str = ""
    status: str = "suggested"

    @field_validator("id", "text", mode="before")
    @classmethod
    def _text_or_empty(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("status", mode="before")
    @classmethod
    def _missing_status(cls, value: Any) -> Any:
        return "suggested" if value is None else value


class RecentSession(_CamelModel):
    """A filed session summary kept in the user's memory."""

    date: str = Field(default_factory=utc_now_iso)
    summary: str = ""
    topics: list[str] = Field(default_factory=list)
    emotional_arc: list[float] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Intermediate model -- fields parsed from model output
# ---------------------------------------------------------------------------

def _as_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def _as_optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class ExtractedIdentity(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    bio: Optional[str] = None
    important_people: list[ImportantPerson] = Field(default_factory=list)

    @field_validator("name", "bio", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Optional[str]:
        return _as_optional_text(value)

    @field_validator("important_people", mode="before")
    @classmethod
    def _people_with_names(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [p for p in value if isinstance(p, dict) and isinstance(p.get("name"), str) and p["name"].strip()]


class ExtractedFields(_CamelModel):
    """Loosely typed record parsed from one extraction call. Never mutated."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    identity: ExtractedIdentity = Field(default_factory=ExtractedIdentity)
    themes: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    values: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    current_situation: Optional[str] = None
    emotional_state: Optional[str] = None
    action_items: list[ActionItem] = Field(default_factory=list)

    @field_validator("identity", mode="before")
    @classmethod
    def _missing_identity(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("themes", "patterns", "values", "strengths", mode="before")
    @classmethod
    def _string_lists(cls, value: Any) -> list[str]:
        return _as_string_list(value)

    @field_validator("current_situation", "emotional_state", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Optional[str]:
        return _as_optional_text(value)

    @field_validator("action_items", mode="before")
    @classmethod
    def _object_items(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        # Model output may invent statuses; new items start as "suggested".
        return [
            {**item, "status": item.get("status") if item.get("status") in ACTION_STATUSES else "suggested"}
            for item in value
            if isinstance(item, dict)
        ]


# ---------------------------------------------------------------------------
# Output model -- the durable per-user memory
# ---------------------------------------------------------------------------

class MemoryRecord(_CamelModel):
    """Accumulated per-user summary of every extraction ("solo memory")."""

    identity: Identity = Field(default_factory=Identity)
    themes: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    values: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    recent_sessions: list[RecentSession] = Field(default_factory=list)
    current_situation: Optional[str] = None
    emotional_state: Optional[str] = None
    action_items: list[ActionItem] = Field(default_factory=list)
    session_count: int = 0
    last_seen_at: str = Field(default_factory=utc_now_iso)

    def is_empty(self) -> bool:
        """True when nothing has been learned yet (counters and timestamps aside)."""
        return not (
            self.identity.name
            or self.identity.bio
            or self.identity.important_people
            or self.themes
            or self.patterns
            or self.values
            or self.strengths
            or self.recent_sessions
            or self.current_situation
            or self.emotional_state
            or self.action_items
        )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Behavioral signals -- one variant per signal_type
# ---------------------------------------------------------------------------

class AttachmentStyle(_CamelModel):
    signal_type: Literal["attachment_style"] = Field("attachment_style", alias="signal_type")
    primary: Literal["secure", "anxious", "avoidant", "disorganized"]
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class ConflictMode(_CamelModel):
    signal_type: Literal["conflict_mode"] = Field("conflict_mode", alias="signal_type")
    primary: Literal["competing", "collaborating", "compromising", "avoiding", "accommodating"]
    secondary: Optional[str] = None
    assertiveness: float = Field(default=0.5, ge=0.0, le=1.0)
    cooperativeness: float = Field(default=0.5, ge=0.0, le=1.0)


class RegulationPattern(_CamelModel):
    signal_type: Literal["regulation_pattern"] = Field("regulation_pattern", alias="signal_type")
    style: Literal["regulated", "dysregulated", "over_regulated"]
    flooding_onset: Optional[str] = None
    trigger_sensitivity: float = Field(default=0.5, ge=0.0, le=1.0)


class GottmanRisk(_CamelModel):
    signal_type: Literal["gottman_risk"] = Field("gottman_risk", alias="signal_type")
    horsemen: list[str] = Field(default_factory=list)
    repair_capacity: float = Field(default=0.5, ge=0.0, le=1.0)


class ScarfSensitivity(_CamelModel):
    signal_type: Literal["scarf_sensitivity"] = Field("scarf_sensitivity", alias="signal_type")
    primary_domain: str
    sensitivities: dict[str, float] = Field(default_factory=dict)


class DramaTriangle(_CamelModel):
    signal_type: Literal["drama_triangle"] = Field("drama_triangle", alias="signal_type")
    default_role: Optional[Literal["persecutor", "victim", "rescuer"]] = None
    rescuer_trap_risk: float = Field(default=0.3, ge=0.0, le=1.0)


class ValuesProfile(_CamelModel):
    signal_type: Literal["values"] = Field("values", alias="signal_type")
    core: list[str] = Field(default_factory=list)
    communication: list[str] = Field(default_factory=list)
    unmet_needs: list[str] = Field(default_factory=list)


class NarrativeThemes(_CamelModel):
    signal_type: Literal["narrative_themes"] = Field("narrative_themes", alias="signal_type")
    themes: list[str] = Field(default_factory=list)
    totalizing_narratives: list[str] = Field(default_factory=list)
    identity_claims: list[str] = Field(default_factory=list)
    recurring_emotions: list[str] = Field(default_factory=list)
    growth_edges: list[str] = Field(default_factory=list)
    self_awareness: Optional[str] = None


SignalValue = Annotated[
    Union[
        AttachmentStyle,
        ConflictMode,
        RegulationPattern,
        GottmanRisk,
        ScarfSensitivity,
        DramaTriangle,
        ValuesProfile,
        NarrativeThemes,
    ],
    Field(discriminator="signal_type"),
]

signal_value_adapter: TypeAdapter[SignalValue] = TypeAdapter(SignalValue)

SIGNAL_TYPES: frozenset[str] = frozenset({
    "attachment_style",
    "conflict_mode",
    "regulation_pattern",
    "gottman_risk",
    "scarf_sensitivity",
    "drama_triangle",
    "values",
    "narrative_themes",
})


class BehavioralSignal(BaseModel):
    """A typed, confidence-scored attribute of a user; one per signal_type."""

    value: SignalValue
    confidence: float = Field(ge=0.0, le=1.0)
    source: str = "session_observation"

    @property
    def signal_type(self) -> str:
        return self.value.signal_type

    def to_row(self, user_id: str) -> dict[str, Any]:
        """Row shape of the behavioral_signals table."""
        signal_value = self.value.model_dump(mode="json", by_alias=True, exclude={"signal_type"})
        return {
            "user_id": user_id,
            "signal_type": self.signal_type,
            "signal_value": signal_value,
            "confidence": self.confidence,
            "source": self.source,
            "updated_at": utc_now_iso(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "BehavioralSignal":
        value = signal_value_adapter.validate_python(
            {**(row.get("signal_value") or {}), "signal_type": row.get("signal_type")}
        )
        return cls(
            value=value,
            confidence=row.get("confidence", 0.5),
            source=row.get("source") or "session_observation",
        )


# ---------------------------------------------------------------------------
# Parse result -- model output is untrusted
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Parsed:
    value: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Malformed:
    reason: str


ParseResult = Union[Parsed, Malformed]
