"""Speaking-rate tone heuristic for the live caption fallback."""

from __future__ import annotations

from typing import Optional

from .models import HeuristicAnalysis

# Unvalidated product heuristics; later checks override earlier ones.
EXCITED_WPM = 160
ANXIOUS_WPM = 190
CALM_WPM = 90


def words_per_minute(text: str, duration_seconds: float) -> float:
    words = len(text.split())
    seconds = max(1.0, duration_seconds)
    return (words / seconds) * 60


def label_for_wpm(wpm: float) -> str:
    label = "neutral"
    if wpm > EXCITED_WPM:
        label = "excited"
    if wpm > ANXIOUS_WPM:
        label = "anxious"
    if wpm < CALM_WPM:
        label = "calm"
    return label


def estimate_emotion(transcript: Optional[str], duration_seconds: float) -> Optional[HeuristicAnalysis]:
    text = (transcript or "").strip()
    if not text:
        return None
    wpm = words_per_minute(text, duration_seconds)
    return HeuristicAnalysis(transcript=text, emotion_label=label_for_wpm(wpm), emotion_score=None)
