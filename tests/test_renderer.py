from moodframe.models import CheckInRecord
from moodframe.renderer import render_check_in, render_history
from moodframe.session_io import load_check_in, save_check_in


def _record():
    return CheckInRecord(
        user_id="u1",
        mood_summary="You seem tired.\nStill steady.",
        mood_title="Low Battery",
        energy_level=20,
        transcript="I feel tired",
        emotion_label="calm",
        workout=["Neck rolls", "Wall push-ups"],
        habit_title="Short walk",
        habit_description="Walk for five minutes.",
        insight="Rest is productive too.",
        plan_help="Stretch first.\nThen walk.",
    )


def test_render_check_in_includes_frontmatter_and_sections():
    note = render_check_in(_record(), date="2026-01-13")
    assert 'title: "Low Battery"' in note
    assert 'date: "2026-01-13"' in note
    assert "energy_level: 20" in note
    assert "- Mood: You seem tired." in note
    assert "## Workout" in note
    assert "- Wall push-ups" in note
    assert "**Short walk**" in note
    assert "## Insight" in note
    assert "## Transcript" in note


def test_render_check_in_skips_empty_sections():
    record = CheckInRecord(user_id="u1", mood_summary="calm")
    note = render_check_in(record)
    assert 'title: "Check-in"' in note
    assert "energy_level" not in note
    assert "## Workout" not in note
    assert "## Plan" not in note


def test_render_history():
    entries = [
        {"created_at": "2026-01-13T08:30:00+00:00", "mood_title": "Calm", "energy_level": 40},
        {"created_at": None, "mood_summary": "Anxious", "energy_level": None},
    ]
    text = render_history(entries)
    assert "2026-01-13 08:30  Calm (energy 40)" in text
    assert "Anxious" in text
    assert render_history([]) == "No check-ins yet."


def test_save_and_load_check_in(tmp_path):
    path = tmp_path / "check.checkin.json"
    save_check_in(str(path), _record())
    loaded = load_check_in(str(path))
    assert loaded == _record()
