"""
signals.py -- Behavioral signal conversion.

Two sources produce signals:
- solo extraction: Claude returns {"signals": [{signal_type, signal_value, confidence}]}
- the profile interview: each phase ends with a fenced JSON block
  {"phase": N, "extracted": {...}} whose fields map onto signal variants

Unknown signal types and values that fail validation are skipped, not raised.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from insights.models import SIGNAL_TYPES, BehavioralSignal, signal_value_adapter

logger = logging.getLogger(__name__)

PHASE_COMPLETE_MARKER: str = "[PHASE_COMPLETE]"
INTERVIEW_COMPLETE_MARKER: str = "[INTERVIEW_COMPLETE]"

_JSON_BLOCK = re.compile(r"```json\s*(.*?)```", re.DOTALL)


def _clamp(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


def build_signal(
    signal_type: str,
    signal_value: dict[str, Any],
    confidence: Any,
    source: str = "session_observation",
) -> Optional[BehavioralSignal]:
    """Validate one signal against its variant. None if it does not fit."""
    if signal_type not in SIGNAL_TYPES:
        logger.warning("Skipping unknown signal type: %s", signal_type)
        return None
    try:
        value = signal_value_adapter.validate_python({**signal_value, "signal_type": signal_type})
    except ValidationError as exc:
        logger.warning("Skipping invalid %s signal: %d error(s)", signal_type, exc.error_count())
        return None
    return BehavioralSignal(value=value, confidence=_clamp(confidence, 0.5), source=source)


def parse_signals(payload: dict[str, Any]) -> list[BehavioralSignal]:
    """Convert a solo-extraction payload into validated signals, one per type."""
    raw_signals = payload.get("signals")
    if not isinstance(raw_signals, list):
        return []
    by_type: dict[str, BehavioralSignal] = {}
    for item in raw_signals:
        if not isinstance(item, dict):
            continue
        value = item.get("signal_value")
        signal = build_signal(
            str(item.get("signal_type", "")),
            value if isinstance(value, dict) else {},
            item.get("confidence"),
        )
        if signal is not None:
            by_type[signal.signal_type] = signal
    return list(by_type.values())


# ---------------------------------------------------------------------------
# Interview phases
# ---------------------------------------------------------------------------

def parse_interview_extraction(response: str) -> Optional[dict[str, Any]]:
    """Find the fenced JSON block in an interview reply. None if absent or invalid."""
    match = _JSON_BLOCK.search(response or "")
    if not match:
        return None
    try:
        extraction = json.loads(match.group(1).strip())
    except json.JSONDecodeError:
        return None
    if not isinstance(extraction, dict) or not isinstance(extraction.get("extracted"), dict):
        return None
    return extraction


def signals_from_phase(extraction: dict[str, Any]) -> list[BehavioralSignal]:
    """Map one interview phase's extracted data onto typed signals."""
    phase = extraction.get("phase")
    data: dict[str, Any] = extraction.get("extracted") or {}
    candidates: list[Optional[BehavioralSignal]] = []

    def section(key: str) -> dict[str, Any]:
        value = data.get(key)
        return value if isinstance(value, dict) else {}

    if phase == 2:
        if data.get("attachment_style"):
            att = section("attachment_style")
            confidence = att.get("confidence", 0.5)
            candidates.append(build_signal(
                "attachment_style",
                {"primary": att.get("primary"), "confidence": _clamp(confidence, 0.5)},
                confidence,
                source="interview",
            ))
        if data.get("conflict_mode"):
            cm = section("conflict_mode")
            candidates.append(build_signal(
                "conflict_mode",
                {
                    "primary": cm.get("primary"),
                    "secondary": cm.get("secondary"),
                    "assertiveness": _clamp(cm.get("assertiveness"), 0.5),
                    "cooperativeness": _clamp(cm.get("cooperativeness"), 0.5),
                },
                0.6,
                source="interview",
            ))
        if data.get("regulation_pattern"):
            reg = section("regulation_pattern")
            candidates.append(build_signal(
                "regulation_pattern",
                {
                    "style": reg.get("style"),
                    "flooding_onset": reg.get("flooding_onset"),
                    "trigger_sensitivity": _clamp(reg.get("trigger_sensitivity"), 0.5),
                },
                0.55,
                source="interview",
            ))

    elif phase == 3:
        if data.get("gottman_risk"):
            gr = section("gottman_risk")
            candidates.append(build_signal(
                "gottman_risk",
                {
                    "horsemen": gr.get("horsemen") or [],
                    "repair_capacity": _clamp(gr.get("repair_capacity"), 0.5),
                },
                0.6,
                source="interview",
            ))
        if data.get("scarf_sensitivity"):
            scarf = section("scarf_sensitivity")
            candidates.append(build_signal(
                "scarf_sensitivity",
                {
                    "primary_domain": scarf.get("primary_domain"),
                    "sensitivities": scarf.get("sensitivities") or {},
                },
                0.55,
                source="interview",
            ))
        if data.get("drama_triangle"):
            dt = section("drama_triangle")
            candidates.append(build_signal(
                "drama_triangle",
                {
                    "default_role": dt.get("default_role"),
                    "rescuer_trap_risk": _clamp(dt.get("rescuer_trap_risk"), 0.3),
                },
                0.5,
                source="interview",
            ))

    elif phase == 4:
        if data.get("values"):
            vals = section("values")
            candidates.append(build_signal(
                "values",
                {
                    "core": vals.get("core") or [],
                    "communication": vals.get("communication") or [],
                    "unmet_needs": vals.get("unmet_needs") or [],
                },
                0.65,
                source="interview",
            ))
        if data.get("narrative_themes"):
            themes = data["narrative_themes"]
            candidates.append(build_signal(
                "narrative_themes",
                {
                    "themes": themes if isinstance(themes, list) else [],
                    "growth_edges": data.get("growth_edges") or [],
                    "self_awareness": data.get("self_awareness_level") or "moderate",
                },
                0.6,
                source="interview",
            ))

    return [signal for signal in candidates if signal is not None]


def is_phase_complete(response: str) -> bool:
    return PHASE_COMPLETE_MARKER in response


def is_interview_complete(response: str) -> bool:
    return INTERVIEW_COMPLETE_MARKER in response


def clean_response_for_display(response: str) -> str:
    """Strip phase markers and the JSON data block from an interview reply."""
    cleaned = response.replace(PHASE_COMPLETE_MARKER, "").replace(INTERVIEW_COMPLETE_MARKER, "")
    return _JSON_BLOCK.sub("", cleaned).strip()
