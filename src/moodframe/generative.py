"""Gemini generateContent requests used for transcription and the check-in analysis."""

from __future__ import annotations

import base64
import json
import random
import re
import string
from typing import Any, Dict, List, Optional

import httpx

from .errors import ConfigError, ProviderError
from .models import AudioCapture, Habit, normalize_score
from .provider_client import ProviderClient

NOT_AVAILABLE = "Not available"
MAX_WORKOUT_ITEMS = 5
MAX_PLAN_LINES = 10

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def candidate_text(payload: Any) -> str:
    """Join the text parts of the first candidate of a generateContent response."""
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    if not isinstance(parts, list):
        return ""
    return "\n".join(str(p.get("text") or "") for p in parts if isinstance(p, dict)).strip()


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def parse_string_list(text: str, limit: int = MAX_WORKOUT_ITEMS) -> List[str]:
    """Parse a JSON array of strings, falling back to line/comma splitting."""
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(item) for item in parsed][:limit]

    body = re.sub(r"^\[", "", cleaned)
    body = re.sub(r"\]$", "", body)
    items = []
    for piece in re.split(r"[\n,]", body):
        piece = re.sub(r'^[\s"-]*', "", piece)
        piece = re.sub(r'[\s"-]*$', "", piece).strip()
        if piece:
            items.append(piece)
    return items[:limit]


def parse_habit(text: str) -> Optional[Habit]:
    try:
        parsed = json.loads(strip_code_fences(text))
    except ValueError:
        return None
    if not isinstance(parsed, dict) or not parsed.get("title") or not parsed.get("description"):
        return None
    return Habit(
        title=str(parsed["title"]),
        label=str(parsed.get("label") or "Quick habit"),
        description=str(parsed["description"]),
    )


def _or_na(value: Optional[str]) -> str:
    value = (value or "").strip()
    return value or NOT_AVAILABLE


def _score_suffix(score: Optional[float]) -> str:
    score = normalize_score(score)
    if score is not None:
        return f" (score: {score:.2f})"
    return ""


def _seed() -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=6))


class GenerativeClient:
    def __init__(
        self,
        provider: ProviderClient,
        api_key: Optional[str],
        model: str = "gemini-flash-latest",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ) -> None:
        if not api_key:
            raise ConfigError("Gemini API key missing. Set MOODFRAME_GEMINI_API_KEY.")
        self._provider = provider
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def generate(self, parts: List[Dict[str, Any]], task: str) -> str:
        payload = {"contents": [{"parts": parts}]}

        def _parse(response: httpx.Response) -> str:
            return candidate_text(response.json())

        return self._provider.call(
            self.endpoint,
            provider=f"gemini:{task}",
            json=payload,
            params={"key": self._api_key},
            headers={"Content-Type": "application/json"},
            parse_fn=_parse,
        )

    def prompt(self, text: str, task: str) -> str:
        return self.generate([{"text": text}], task)

    def transcribe(self, capture: AudioCapture) -> str:
        encoded = base64.b64encode(capture.data).decode("ascii")
        text = self.generate(
            [
                {
                    "text": "Transcribe this audio in English. "
                    "Return only the transcript text, no extra commentary."
                },
                {"inlineData": {"mimeType": capture.mime_type or "audio/wav", "data": encoded}},
            ],
            "transcribe",
        )
        if not text:
            raise ProviderError("Gemini returned no transcript", kind="empty", provider="gemini:transcribe")
        return text

    def reflect_state(
        self,
        transcript: Optional[str],
        emotion_label: Optional[str],
        emotion_score: Optional[float] = None,
    ) -> str:
        prompt = f"""
You are an empathetic listener. Based on the transcript and tone label, state what the user seems to feel in up to 5 short lines (fewer is okay). No plans, no advice, just reflect their emotional/energy state.

Transcript: {_or_na(transcript)}
Emotion label: {_or_na(emotion_label)}{_score_suffix(emotion_score)}
"""
        text = self.prompt(prompt, "reflect")
        if not text:
            raise ProviderError("Gemini returned no content", kind="empty", provider="gemini:reflect")
        return text

    def suggest_workout(self, transcript: Optional[str], emotion_label: Optional[str]) -> List[str]:
        prompt = f"""
You are a concise trainer. Suggest a quick mood-boost workout the user can do right now with no equipment.
- Use the transcript and emotion cue for context.
- Return at most 5 short exercise lines (fewer is fine), each a single sentence.
- Keep them simple: stretches, light cardio, yoga poses, bodyweight moves. Do NOT include breathing exercises.
- Output ONLY a JSON array of strings, no extra text, no code fences, no Markdown.

Transcript: {_or_na(transcript)}
Emotion: {_or_na(emotion_label)}
"""
        return parse_string_list(self.prompt(prompt, "workout"))

    def suggest_habit(self, transcript: Optional[str], emotion_label: Optional[str]) -> Optional[Habit]:
        prompt = f"""
You are a concise habit coach. Based on the user's transcript and tone, suggest one simple, immediate habit they can do right now (no equipment). Vary the habit so it does not repeat the same suggestion every time for similar moods. Avoid breathing-focused habits (there is a separate section for that).
- Title: short action line (e.g., "Practice presentation opening 3x with power poses")
- Label: 2-3 words describing the habit type (e.g., "Confidence builder", "Mood lift", "Reset move")
- Description: one short paragraph on how to do it and why it helps. Keep it mood-specific and immediate.

Output ONLY JSON in this shape:
{{
  "title": "...",
  "label": "...",
  "description": "..."
}}

Transcript: {_or_na(transcript)}
Emotion: {_or_na(emotion_label)}
Seed: {_seed()}
"""
        return parse_habit(self.prompt(prompt, "habit"))

    def generate_insight(
        self,
        transcript: Optional[str],
        emotion_label: Optional[str],
        emotion_score: Optional[float] = None,
    ) -> Optional[str]:
        prompt = f"""
You are a brief observer. Give one concise insight about the user's state based on the transcript and tone.
- One short sentence, supportive and actionable.
- No advice beyond the single sentence.

Transcript: {_or_na(transcript)}
Emotion: {_or_na(emotion_label)}{_score_suffix(emotion_score)}
"""
        return self.prompt(prompt, "insight") or None

    def generate_prediction(
        self,
        transcript: Optional[str],
        emotion_label: Optional[str],
        emotion_score: Optional[float] = None,
    ) -> Optional[str]:
        prompt = f"""
You are a brief coach. Predict how the user is likely to feel after completing their plan (workout + habit), based on their current transcript and tone.
- Return one short sentence, encouraging and specific.
- No extra formatting.

Transcript: {_or_na(transcript)}
Emotion: {_or_na(emotion_label)}{_score_suffix(emotion_score)}
"""
        return self.prompt(prompt, "prediction") or None

    def generate_mood_title(
        self,
        transcript: Optional[str],
        emotion_label: Optional[str],
        sensing: Optional[str],
    ) -> Optional[str]:
        prompt = f"""
Give a 1-3 word mood title based on the transcript, tone, and this sensing text. Be concise, no punctuation.
Sensing: {(sensing or "").strip()}
Transcript: {_or_na(transcript)}
Emotion: {_or_na(emotion_label)}
Only return the title text, nothing else.
"""
        text = self.prompt(prompt, "mood_title")
        if not text:
            return None
        return text.split("\n")[0].strip() or None

    def generate_plan_help(
        self,
        transcript: Optional[str],
        emotion_label: Optional[str],
        emotion_score: Optional[float] = None,
        exercises: Optional[List[str]] = None,
        habit: Optional[Habit] = None,
    ) -> Optional[str]:
        exercise_line = " | ".join((exercises or [])[:MAX_WORKOUT_ITEMS]) or NOT_AVAILABLE
        habit_title = habit.title if habit else NOT_AVAILABLE
        habit_description = habit.description if habit else ""
        prompt = f"""
You are a concise coach. Summarize in up to 10 short lines how the recommended steps will help the user, based on their mood.
- Mention workout items and the habit briefly.
- Tone: supportive, clear, practical.
- One short sentence per line. No bullets/markdown code fences.

Transcript: {_or_na(transcript)}
Emotion: {_or_na(emotion_label)}{_score_suffix(emotion_score)}
Exercises: {exercise_line}
Habit: {habit_title} - {habit_description}
"""
        text = self.prompt(prompt, "plan_help")
        if not text:
            return None
        lines = [line.strip() for line in text.split("\n") if line.strip()]
        return "\n".join(lines[:MAX_PLAN_LINES]) or None
