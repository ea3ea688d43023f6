"""
Retry/backoff and rate-limit-aware HTTP GET helper shared by the ingest clients.
"""

import os
import time
import random
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import requests

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("RELEASE_KIT_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("RELEASE_KIT_BACKOFF_BASE", "0.5"))
DEFAULT_MAX_BACKOFF = float(os.getenv("RELEASE_KIT_MAX_BACKOFF", "60.0"))
DEFAULT_TIMEOUT = float(os.getenv("RELEASE_KIT_HTTP_TIMEOUT", "30"))

# runtime-overrides
_runtime_max_retries: Optional[int] = None
_runtime_backoff_base: Optional[float] = None
_runtime_max_backoff: Optional[float] = None


def configure_retry(max_retries: Optional[int] = None, backoff_base: Optional[float] = None, max_backoff: Optional[float] = None):
    """Configure retry/backoff defaults at runtime (e.g. from CLI)."""
    global _runtime_max_retries, _runtime_backoff_base, _runtime_max_backoff
    if max_retries is not None:
        _runtime_max_retries = int(max_retries)
    if backoff_base is not None:
        _runtime_backoff_base = float(backoff_base)
    if max_backoff is not None:
        _runtime_max_backoff = float(max_backoff)


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra:
        return None
    try:
        return max(0.0, float(raw_ra))
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw_ra)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _should_retry(status_code: int) -> bool:
    return status_code in (429, 502, 503, 504)


def _parse_body(resp):
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def _wait_seconds(retry_after: Optional[float], backoff: float, max_backoff: float) -> float:
    if retry_after is not None:
        return min(retry_after, max_backoff)
    return min(backoff + random.uniform(0, backoff), max_backoff)


def request_with_retries(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    auth=None,
    session=None,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
) -> Dict[str, Any]:
    """GET a URL, retrying throttled or unavailable responses and connection errors.

    Returns a dict with 'response' (parsed JSON or text), 'status' and, when the
    last attempt raised, 'error'. Non-retryable statuses are returned at once.
    """
    if max_retries is not None:
        attempts = int(max_retries)
    elif _runtime_max_retries is not None:
        attempts = _runtime_max_retries
    else:
        attempts = DEFAULT_MAX_RETRIES
    attempts = max(1, attempts)
    backoff = float(backoff_base if backoff_base is not None else (_runtime_backoff_base if _runtime_backoff_base is not None else DEFAULT_BACKOFF_BASE))
    max_backoff = _runtime_max_backoff if _runtime_max_backoff is not None else DEFAULT_MAX_BACKOFF
    getter = session.get if session is not None else requests.get

    result: Dict[str, Any] = {'response': None, 'status': 0}
    for attempt in range(attempts):
        retry_after = None
        try:
            resp = getter(url, headers=headers or {}, params=params or {}, auth=auth, timeout=DEFAULT_TIMEOUT)
        except requests.RequestException as ex:
            result = {'response': None, 'status': 0, 'error': str(ex)}
        else:
            status = getattr(resp, 'status_code', 0)
            result = {'response': _parse_body(resp), 'status': status}
            if not _should_retry(status):
                return result
            retry_after = _parse_retry_after((getattr(resp, 'headers', None) or {}).get('Retry-After'))

        if attempt + 1 < attempts:
            time.sleep(_wait_seconds(retry_after, backoff, max_backoff))
            backoff = min(backoff * 2, max_backoff)
    return result


__all__ = ["configure_retry", "request_with_retries"]
