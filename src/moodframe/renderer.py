"""Markdown rendering of check-ins."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .models import CheckInRecord


def _yaml_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f"\"{escaped}\""


def _clean_text(value: str) -> str:
    return " ".join(value.split())


def _section(lines: List[str], heading: str, body: Optional[str]) -> None:
    if not body:
        return
    lines.append(f"## {heading}")
    lines.append("")
    lines.extend(body.strip().splitlines())
    lines.append("")


def render_check_in(record: CheckInRecord, date: Optional[str] = None) -> str:
    title = record.mood_title or "Check-in"
    lines: List[str] = []
    lines.append("---")
    lines.append("schema: 1")
    lines.append(f"title: {_yaml_quote(title)}")
    if date:
        lines.append(f"date: {_yaml_quote(date)}")
    lines.append(f"status: {_yaml_quote(record.status.value)}")
    if record.emotion_label:
        lines.append(f"emotion: {_yaml_quote(record.emotion_label)}")
    if record.energy_level is not None:
        lines.append(f"energy_level: {record.energy_level}")
    lines.append("---")
    lines.append("")
    lines.append(f"# {_clean_text(title)}")
    lines.append("")
    headline = record.mood_summary.splitlines()[0] if record.mood_summary else "Unknown"
    lines.append(f"- Mood: {_clean_text(headline)}")
    if record.energy_level is not None:
        lines.append(f"- Energy: {record.energy_level}/100")
    if record.emotion_label:
        lines.append(f"- Tone: {_clean_text(record.emotion_label)}")
    lines.append("")

    _section(lines, "How You Seem", record.mood_summary)
    if record.workout:
        lines.append("## Workout")
        lines.append("")
        for item in record.workout:
            lines.append(f"- {_clean_text(item)}")
        lines.append("")
    if record.habit_title:
        lines.append("## Habit")
        lines.append("")
        lines.append(f"**{_clean_text(record.habit_title)}**")
        if record.habit_description:
            lines.append("")
            lines.append(_clean_text(record.habit_description))
        lines.append("")
    _section(lines, "Insight", record.insight)
    _section(lines, "Looking Ahead", record.prediction)
    _section(lines, "Plan", record.plan_help)
    if record.transcript:
        lines.append("## Transcript")
        lines.append("")
        lines.append(_clean_text(record.transcript))
        lines.append("")
    return "\n".join(lines)


def render_history(entries: List[Dict[str, Any]]) -> str:
    if not entries:
        return "No check-ins yet."
    lines: List[str] = []
    for entry in entries:
        stamp = str(entry.get("created_at") or "")[:16].replace("T", " ")
        title = _clean_text(str(entry.get("mood_title") or entry.get("mood_summary") or "Check-in"))
        energy = entry.get("energy_level")
        suffix = f" (energy {energy})" if energy is not None else ""
        lines.append(f"{stamp or '????-??-?? ??:??'}  {title}{suffix}")
    return "\n".join(lines)
