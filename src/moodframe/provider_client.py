"""HTTP wrapper enforcing timeout, retry and cold-start backoff for remote providers."""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any, Callable, Dict, Optional

import httpx

from .errors import ProviderError
from .logging_utils import format_fields

logger = logging.getLogger("moodframe.provider")

DEFAULT_COLD_START_WAIT_S = 15.0
DEFAULT_RETRY_INTERVAL_S = 2.0


def cold_start_wait(body: str, default: float = DEFAULT_COLD_START_WAIT_S) -> float:
    """Return the wait in seconds hinted by a 503 body.

    ``estimated_time`` is used when it is a finite, non-negative number; a
    missing, malformed or non-JSON hint falls back to ``default``.
    """
    try:
        payload = json.loads(body) if body else {}
    except ValueError:
        return default
    if not isinstance(payload, dict):
        return default
    hint = payload.get("estimated_time")
    try:
        seconds = float(hint)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(seconds) or seconds < 0:
        return default
    return seconds


def _json_body(response: httpx.Response) -> Any:
    return response.json()


class ProviderClient:
    def __init__(
        self,
        http: Optional[httpx.Client] = None,
        timeout_s: float = 30.0,
        max_retries: int = 3,
        cold_start_default_s: float = DEFAULT_COLD_START_WAIT_S,
        retry_interval_s: float = DEFAULT_RETRY_INTERVAL_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1.")
        self._http = http or httpx.Client()
        self._owns_http = http is None
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.cold_start_default_s = cold_start_default_s
        self.retry_interval_s = retry_interval_s
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "ProviderClient":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    def call(
        self,
        endpoint: str,
        *,
        provider: str,
        json: Any = None,
        content: Optional[bytes] = None,
        files: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        parse_fn: Optional[Callable[[httpx.Response], Any]] = None,
    ) -> Any:
        attempts = max_retries or self.max_retries
        parse = parse_fn or _json_body
        request_timeout = timeout if timeout is not None else self.timeout_s
        last_status: Optional[int] = None
        last_body: Optional[str] = None
        last_kind = "http"

        for attempt in range(1, attempts + 1):
            final = attempt == attempts
            try:
                response = self._http.post(
                    endpoint,
                    json=json,
                    content=content,
                    files=files,
                    headers=headers,
                    params=params,
                    timeout=request_timeout,
                )
            except httpx.TransportError as exc:
                last_status, last_body, last_kind = None, str(exc), "transport"
                self._log(provider, attempt, attempts, "transport_error", error=type(exc).__name__)
                if not final:
                    self._sleep(self.retry_interval_s)
                continue

            if 200 <= response.status_code < 300:
                try:
                    value = parse(response)
                except Exception as exc:
                    self._log(provider, attempt, attempts, "parse_error")
                    raise ProviderError(
                        f"{provider} returned an unparseable response: {exc}",
                        status=response.status_code,
                        body=response.text,
                        kind="parse",
                        provider=provider,
                    ) from exc
                self._log(provider, attempt, attempts, "ok", status=response.status_code)
                return value

            last_status, last_body, last_kind = response.status_code, response.text, "http"
            if response.status_code == 503:
                wait = cold_start_wait(response.text, self.cold_start_default_s)
                self._log(provider, attempt, attempts, "cold_start", wait_s=wait)
                if not final:
                    self._sleep(wait)
                continue

            self._log(provider, attempt, attempts, f"http_{response.status_code}")
            if not final:
                self._sleep(self.retry_interval_s)

        raise ProviderError(
            f"{provider} failed after {attempts} attempts"
            + (f" (status {last_status})" if last_status is not None else ""),
            status=last_status,
            body=last_body,
            kind=last_kind,
            provider=provider,
        )

    @staticmethod
    def _log(provider: str, attempt: int, attempts: int, outcome: str, **extra) -> None:
        level = logging.INFO if outcome == "ok" else logging.WARNING
        logger.log(
            level,
            format_fields(
                provider=provider,
                attempt=f"{attempt}/{attempts}",
                outcome=outcome,
                **extra,
            ),
        )
