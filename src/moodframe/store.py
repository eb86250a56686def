"""Check-in persistence over the Supabase REST interface."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, urlparse

import httpx

from .errors import ConfigError, PersistError
from .models import CheckInRecord, RecordingMetadata

logger = logging.getLogger("moodframe")

MISSING_RELATION = "42P01"


def _error_from_response(response: httpx.Response, action: str) -> PersistError:
    code = None
    message = response.text
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("code") or body.get("error")
        message = body.get("message") or body.get("msg") or message
    if code is not None:
        code = str(code)
    return PersistError(f"{action} failed ({response.status_code}): {message}", code=code)


class SupabaseStore:
    """Thin client for the PostgREST and Storage endpoints the pipeline writes to."""

    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str],
        access_token: Optional[str] = None,
        http: Optional[httpx.Client] = None,
        timeout_s: float = 30.0,
    ) -> None:
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(
                "Supabase is not configured. Set MOODFRAME_SUPABASE_URL to the project URL."
            )
        if not api_key:
            raise ConfigError(
                "Supabase is not configured. Set MOODFRAME_SUPABASE_KEY to the anon key."
            )
        self.url = url.rstrip("/")
        self._http = http or httpx.Client(timeout=timeout_s)
        self._owns_http = http is None
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
        }

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def _request(self, method: str, path: str, action: str, **kwargs) -> httpx.Response:
        headers = dict(self._headers)
        headers.update(kwargs.pop("headers", {}) or {})
        try:
            response = self._http.request(method, f"{self.url}{path}", headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise PersistError(f"{action} failed: {exc}") from exc
        if response.status_code >= 400:
            raise _error_from_response(response, action)
        return response

    def insert(self, table: str, row: Dict[str, Any]) -> None:
        self._request(
            "POST",
            f"/rest/v1/{table}",
            f"Insert into {table}",
            json=row,
            headers={"Prefer": "return=minimal"},
        )

    def upsert(self, table: str, row: Dict[str, Any]) -> None:
        self._request(
            "POST",
            f"/rest/v1/{table}",
            f"Upsert into {table}",
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    def select_recent(self, table: str, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        response = self._request(
            "GET",
            f"/rest/v1/{table}",
            f"Select from {table}",
            params={
                "select": "*",
                "user_id": f"eq.{user_id}",
                "order": "created_at.desc",
                "limit": str(limit),
            },
        )
        data = response.json()
        return data if isinstance(data, list) else []

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path)}",
            f"Upload to {bucket}",
            content=data,
            headers={
                "Content-Type": content_type,
                "cache-control": "3600",
                "x-upsert": "false",
            },
        )
        return path


class PersistenceWriter:
    """Append-only writes of check-ins and recording metadata.

    A missing table is logged and treated as success so a fresh project
    without the schema still completes a check-in; every other store error
    is raised to the caller.
    """

    def __init__(
        self,
        store: SupabaseStore,
        check_ins_table: str = "check_ins",
        recordings_table: str = "recordings",
        profiles_table: str = "profiles",
        on_saved: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.store = store
        self.check_ins_table = check_ins_table
        self.recordings_table = recordings_table
        self.profiles_table = profiles_table
        self.on_saved = on_saved

    def close(self) -> None:
        self.store.close()

    def _insert(self, table: str, row: Dict[str, Any]) -> bool:
        try:
            self.store.insert(table, row)
        except PersistError as exc:
            if exc.code == MISSING_RELATION:
                logger.warning("Table %s does not exist; skipping write", table)
                return False
            raise
        return True

    def persist(self, record: CheckInRecord) -> None:
        written = self._insert(self.check_ins_table, record.to_row())
        if written:
            logger.info("Check-in saved for %s", record.user_id)
        if written and self.on_saved is not None:
            try:
                self.on_saved(record.user_id)
            except Exception as exc:
                logger.warning("History refresh failed: %s", exc)

    def persist_recording(self, metadata: RecordingMetadata) -> None:
        self._insert(self.recordings_table, metadata.to_row())

    def save_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        row = {key: value for key, value in fields.items() if value is not None}
        row["id"] = user_id
        self.store.upsert(self.profiles_table, row)
        logger.info("Profile saved for %s", user_id)

    def history(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            return self.store.select_recent(self.check_ins_table, user_id, limit=limit)
        except PersistError as exc:
            if exc.code == MISSING_RELATION:
                logger.warning("Table %s does not exist; no history", self.check_ins_table)
                return []
            raise
