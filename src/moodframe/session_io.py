"""Check-in export and import as JSON."""

from __future__ import annotations

import json
from dataclasses import asdict

from .models import CheckInRecord, CheckInStatus


def save_check_in(path: str, record: CheckInRecord) -> None:
    payload = asdict(record)
    payload["status"] = record.status.value
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)


def load_check_in(path: str) -> CheckInRecord:
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    payload["status"] = CheckInStatus(payload.get("status", CheckInStatus.COMPLETED.value))
    return CheckInRecord(**payload)
