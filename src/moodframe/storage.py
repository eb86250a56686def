"""Storage and naming utilities."""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone


def timestamp_slug(dt: datetime | None = None) -> str:
    now = dt or datetime.now()
    return now.strftime("%Y-%m-%d")


def build_export_basename(title: str | None, dt: datetime | None = None) -> str:
    slug = title.strip().replace(" ", "-") if title and title.strip() else "Check-in"
    return f"{timestamp_slug(dt)}--{slug}"


def recording_object_path(
    user_id: str,
    extension: str,
    dt: datetime | None = None,
    unique_id: str | None = None,
) -> str:
    """Bucket path for an uploaded recording, scoped to the owning user."""
    when = dt or datetime.now(timezone.utc)
    epoch_ms = int(when.timestamp() * 1000)
    unique = unique_id or uuid.uuid4().hex
    return f"{user_id}/{epoch_ms}-{unique}.{extension}"


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)
