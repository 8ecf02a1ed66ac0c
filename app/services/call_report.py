"""
app/services/call_report.py

Extraction of a voice-AI end-of-call report into a typed CallReport.

The webhook body wraps everything in a top-level "message" object; the
call, analysis, artifact and transcript all hang off it. Extraction never
raises on missing or oddly typed fields; it just yields empty values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

END_OF_CALL_REPORT = "end-of-call-report"

# Checked in order; the first non-empty string wins.
RECORDING_URL_LOCATIONS: tuple[tuple[str, ...], ...] = (
    ("recordingUrl",),
    ("artifact", "recordingUrl"),
    ("call", "recordingUrl"),
)

TRANSCRIPT_LOCATIONS: tuple[tuple[str, ...], ...] = (
    ("artifact", "messages"),
    ("messages",),
    ("transcript",),
)

TRANSCRIPT_ROLES = frozenset({"user", "bot", "assistant"})
_UTTERANCE_KEYS: tuple[str, ...] = ("message", "content", "text")


@dataclass(frozen=True)
class CallAnalysis:
    summary: str | None = None
    intent: str | None = None
    sentiment: str | None = None
    next_action: str | None = None

    def to_dict(self) -> dict[str, str]:
        values = {
            "summary": self.summary,
            "intent": self.intent,
            "sentiment": self.sentiment,
            "next_action": self.next_action,
        }
        return {key: value for key, value in values.items() if value}


@dataclass(frozen=True)
class CallReport:
    message_type: str
    call_id: str | None = None
    customer_number: str | None = None
    direction: str = "inbound"
    duration_seconds: int | None = None
    analysis: CallAnalysis = field(default_factory=CallAnalysis)
    transcript: list[dict[str, str]] = field(default_factory=list)
    recording_url: str | None = None

    @property
    def is_end_of_call(self) -> bool:
        return self.message_type == END_OF_CALL_REPORT


def dig(payload: Any, path: Sequence[str]) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def first_non_empty(payload: Any, locations: Sequence[Sequence[str]]) -> str | None:
    for path in locations:
        value = _text(dig(payload, path))
        if value:
            return value
    return None


def extract_recording_url(message: Mapping[str, Any]) -> str | None:
    return first_non_empty(message, RECORDING_URL_LOCATIONS)


def extract_transcript(message: Mapping[str, Any]) -> list[dict[str, str]]:
    """
    Ordered {speaker, text} turns from the first location holding a list.
    Only user and bot/assistant turns are kept; system and tool turns drop.
    """

    for path in TRANSCRIPT_LOCATIONS:
        turns = dig(message, path)
        if not isinstance(turns, list):
            continue
        transcript: list[dict[str, str]] = []
        for turn in turns:
            if not isinstance(turn, Mapping):
                continue
            role = str(turn.get("role") or "").strip().lower()
            if role not in TRANSCRIPT_ROLES:
                continue
            text = next(
                (value for value in (_text(turn.get(key)) for key in _UTTERANCE_KEYS) if value),
                None,
            )
            if text:
                transcript.append({"speaker": role, "text": text})
        return transcript
    return []


def _analysis_field(analysis: Any, key: str) -> str | None:
    return _text(dig(analysis, (key,))) or _text(dig(analysis, ("structuredData", key)))


def extract_analysis(message: Mapping[str, Any]) -> CallAnalysis:
    analysis = message.get("analysis")
    return CallAnalysis(
        summary=_analysis_field(analysis, "summary"),
        intent=_analysis_field(analysis, "intent"),
        sentiment=_analysis_field(analysis, "sentiment"),
        next_action=_analysis_field(analysis, "nextAction"),
    )


def _duration_seconds(message: Mapping[str, Any]) -> int | None:
    for path in (("durationSeconds",), ("call", "durationSeconds")):
        value = dig(message, path)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return max(0, int(round(value)))
        if isinstance(value, str):
            try:
                return max(0, int(round(float(value))))
            except ValueError:
                continue
    return None


def parse_call_report(payload: Mapping[str, Any]) -> CallReport:
    message = payload.get("message") if isinstance(payload, Mapping) else None
    if not isinstance(message, Mapping):
        return CallReport(message_type="")

    call_type = (_text(dig(message, ("call", "type"))) or "").lower()
    return CallReport(
        message_type=_text(message.get("type")) or "",
        call_id=_text(dig(message, ("call", "id"))),
        customer_number=(
            _text(dig(message, ("call", "customer", "number")))
            or _text(dig(message, ("customer", "number")))
        ),
        direction="outbound" if "outbound" in call_type else "inbound",
        duration_seconds=_duration_seconds(message),
        analysis=extract_analysis(message),
        transcript=extract_transcript(message),
        recording_url=extract_recording_url(message),
    )
