"""Data models for MoodFrame."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


class ProviderTag(str, Enum):
    GEMINI = "gemini"
    ANALYSIS_PROXY = "analysis_proxy"
    RELAY = "relay"
    HEURISTIC = "heuristic"
    NONE = "none"


class CheckInStatus(str, Enum):
    COMPLETED = "Completed"
    IN_PROGRESS = "InProgress"


@dataclass
class AudioCapture:
    data: bytes
    mime_type: str
    duration_ms: int
    sample_rate_hz: int = 16000
    channels: int = 1

    @property
    def extension(self) -> str:
        if "mp4" in self.mime_type:
            return "mp4"
        if "webm" in self.mime_type:
            return "webm"
        return "wav"


@dataclass
class HeuristicAnalysis:
    """Fallback transcript and tone gathered on the capturing side."""

    transcript: str
    emotion_label: Optional[str] = None
    emotion_score: Optional[float] = None


@dataclass
class TranscriptionResult:
    transcript: Optional[str] = None
    emotion_label: Optional[str] = None
    emotion_score: Optional[float] = None
    source: ProviderTag = ProviderTag.NONE
    emotion_source: ProviderTag = ProviderTag.NONE

    @property
    def has_transcript(self) -> bool:
        return bool(self.transcript and self.transcript.strip())


@dataclass
class Habit:
    title: str
    description: str
    label: str = "Quick habit"


@dataclass
class AnalysisContext:
    transcript: Optional[str]
    emotion_label: Optional[str]
    emotion_score: Optional[float]
    sensing: str = ""
    settled: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AnalysisTask:
    name: str
    invoke: Callable[[AnalysisContext], Any]
    required: bool = False
    depends_on: Tuple[str, ...] = ()


@dataclass
class TaskOutcome:
    """Settled result of one task: either a value or a failure reason."""

    name: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, name: str, value: Any) -> "TaskOutcome":
        return cls(name=name, value=value)

    @classmethod
    def failure(cls, name: str, reason: str) -> "TaskOutcome":
        return cls(name=name, error=reason)


def normalize_score(value: Any) -> Optional[float]:
    """Return a finite float score, or None for anything else (bools included)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value


def energy_level_from_score(score: Optional[float]) -> Optional[int]:
    score = normalize_score(score)
    if score is None:
        return None
    clamped = min(max(score, 0.0), 1.0)
    return int(math.floor(clamped * 100 + 0.5))


@dataclass
class AggregatedResult:
    transcript: Optional[str]
    emotion_label: Optional[str]
    emotion_score: Optional[float]
    sensing: str = ""
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    frozen: bool = False

    def record(self, outcome: TaskOutcome) -> None:
        if self.frozen:
            raise ValueError("Aggregated result is frozen once persisted.")
        if outcome.ok and outcome.value is not None:
            self.values[outcome.name] = outcome.value
        elif not outcome.ok:
            self.errors[outcome.name] = outcome.error or "unknown error"

    def freeze(self) -> "AggregatedResult":
        self.frozen = True
        return self

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    @property
    def mood_summary(self) -> str:
        return self.sensing or self.emotion_label or "Unknown"

    @property
    def energy_level(self) -> Optional[int]:
        return energy_level_from_score(self.emotion_score)


@dataclass
class CheckInRecord:
    user_id: str
    mood_summary: str
    status: CheckInStatus = CheckInStatus.COMPLETED
    mood_title: Optional[str] = None
    energy_level: Optional[int] = None
    transcript: Optional[str] = None
    emotion_label: Optional[str] = None
    workout: Optional[List[str]] = None
    habit_title: Optional[str] = None
    habit_description: Optional[str] = None
    insight: Optional[str] = None
    prediction: Optional[str] = None
    plan_help: Optional[str] = None

    @classmethod
    def from_result(cls, user_id: str, result: AggregatedResult) -> "CheckInRecord":
        habit = result.get("habit")
        return cls(
            user_id=user_id,
            mood_summary=result.mood_summary,
            status=CheckInStatus.COMPLETED,
            mood_title=result.get("mood_title"),
            energy_level=result.energy_level,
            transcript=result.transcript,
            emotion_label=result.emotion_label,
            workout=result.get("workout"),
            habit_title=habit.title if habit else None,
            habit_description=habit.description if habit else None,
            insight=result.get("insight"),
            prediction=result.get("prediction"),
            plan_help=result.get("plan_help"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "mood_summary": self.mood_summary,
            "mood_title": self.mood_title,
            "status": self.status.value,
            "energy_level": self.energy_level,
            "transcript": self.transcript,
            "emotion_label": self.emotion_label,
            "workout": self.workout,
            "habit_title": self.habit_title,
            "habit_description": self.habit_description,
            "insight": self.insight,
            "prediction": self.prediction,
            "plan_help": self.plan_help,
        }


@dataclass
class RecordingMetadata:
    user_id: str
    storage_path: str
    duration_ms: Optional[int] = None
    transcript: Optional[str] = None
    emotion_label: Optional[str] = None
    emotion_score: Optional[float] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "storage_path": self.storage_path,
            "duration_ms": self.duration_ms,
            "transcript": self.transcript,
            "emotion_label": self.emotion_label,
            "emotion_score": self.emotion_score,
        }
