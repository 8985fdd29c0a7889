"""
Retry policy for GitHub GETs.

Rate-limit answers (429, anything carrying Retry-After, or X-RateLimit-Remaining: 0) and
502/503/504 are retried after Retry-After, the X-RateLimit-Reset time or an exponential
backoff with jitter. Network errors and timeouts are retried with the same backoff.
"""

import os
import time
import random
import sqlite3
import logging
import email.utils
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})
# upper bound for a single wait, whatever the server asks for
MAX_RATE_LIMIT_WAIT = 300.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, '') else default


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_jitter: Optional[float] = None  # None: jitter up to backoff_base
    max_backoff: float = 120.0
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> 'RetryPolicy':
        jitter = os.getenv('ELIGIBILITY_BACKOFF_JITTER')
        return cls(
            max_retries=int(os.getenv('ELIGIBILITY_MAX_RETRIES', '3')),
            backoff_base=_env_float('ELIGIBILITY_BACKOFF_BASE', 0.5),
            backoff_jitter=float(jitter) if jitter else None,
            max_backoff=_env_float('ELIGIBILITY_MAX_BACKOFF', 120.0),
            timeout=_env_float('ELIGIBILITY_HTTP_TIMEOUT', 30.0),
        )

    @property
    def jitter(self) -> float:
        return self.backoff_base if self.backoff_jitter is None else self.backoff_jitter

    def backoff(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** attempt), self.max_backoff)


DEFAULT_POLICY = RetryPolicy.from_env()
DEFAULT_TIMEOUT = DEFAULT_POLICY.timeout
_policy = DEFAULT_POLICY


def configure_retry(
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    timeout: Optional[float] = None,
) -> RetryPolicy:
    """Override the process-wide policy (e.g. from CLI flags). Arguments left as None keep their current value."""
    global _policy
    _policy = _with_overrides(_policy, max_retries, backoff_base, backoff_jitter, max_backoff, timeout)
    return _policy


def reset_retry() -> RetryPolicy:
    """Return to the environment-derived policy."""
    global _policy
    _policy = DEFAULT_POLICY
    return _policy


def current_policy() -> RetryPolicy:
    return _policy


def _with_overrides(policy: RetryPolicy, max_retries, backoff_base, backoff_jitter, max_backoff, timeout) -> RetryPolicy:
    overrides = {
        'max_retries': int(max_retries) if max_retries is not None else None,
        'backoff_base': float(backoff_base) if backoff_base is not None else None,
        'backoff_jitter': float(backoff_jitter) if backoff_jitter is not None else None,
        'max_backoff': float(max_backoff) if max_backoff is not None else None,
        'timeout': float(timeout) if timeout is not None else None,
    }
    return replace(policy, **{k: v for k, v in overrides.items() if v is not None})


def retry_after_seconds(value: Any) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or as an HTTP date."""
    if value in (None, ''):
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _header_number(headers: Mapping, name: str, cast):
    try:
        raw = headers.get(name)
        return cast(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _retry_wait(resp, policy: RetryPolicy, attempt: int) -> Optional[float]:
    """Seconds to wait before retrying resp, or None when resp is a final answer."""
    headers = getattr(resp, 'headers', None)
    if not isinstance(headers, Mapping):
        headers = {}
    retry_after = retry_after_seconds(headers.get('Retry-After'))
    remaining = _header_number(headers, 'X-RateLimit-Remaining', int)
    exhausted = remaining is not None and remaining <= 0
    if resp.status_code not in RETRYABLE_STATUSES and retry_after is None and not exhausted:
        return None

    reset_at = _header_number(headers, 'X-RateLimit-Reset', float)
    if retry_after is not None:
        wait = retry_after
    elif exhausted and reset_at:
        wait = max(0.0, reset_at - time.time())
    else:
        wait = policy.backoff(attempt)
    return min(wait + random.uniform(0, policy.jitter), MAX_RATE_LIMIT_WAIT)


def _body(resp) -> Any:
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def _result(response: Any, status: int, **extra) -> Dict[str, Any]:
    return dict({'response': response, 'status': status, 'timestamp': time.time()}, **extra)


def _store(cache, cache_key: Optional[str], body: Any):
    if cache is None or not cache_key:
        return
    try:
        cache.set(cache_key, body, 200)
    except sqlite3.Error as exc:
        logger.warning("Failed to cache response for %s: %s", cache_key, exc)


def perform_request_with_retries(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    cache=None,
    cache_key: Optional[str] = None,
    min_wait: Optional[float] = None,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    GET url under the current retry policy, with per-call overrides.

    Returns {'response', 'status', 'timestamp'}. Status 0 means no HTTP answer was obtained;
    a result that gave up on a retryable answer also carries 'exhausted_retries': True. Only 200
    answers are written to the cache. min_wait, when non-zero, is the backoff base.
    """
    if backoff_base is None and min_wait:
        backoff_base = min_wait
    policy = _with_overrides(_policy, max_retries, backoff_base, backoff_jitter, max_backoff, timeout)
    attempts = max(1, policy.max_retries)
    last = _result(None, 0)

    for attempt in range(attempts):
        more = attempt + 1 < attempts
        try:
            resp = requests.get(url, headers=headers or {}, params=params or {}, timeout=policy.timeout)
        except requests.RequestException as exc:
            logger.debug("GET %s attempt %d raised %s", url, attempt + 1, exc)
            last = _result(str(exc), 0)
            if more:
                time.sleep(min(policy.backoff(attempt) + random.uniform(0, policy.jitter), MAX_RATE_LIMIT_WAIT))
            continue

        status = getattr(resp, 'status_code', 0)
        if status == 200:
            body = _body(resp)
            _store(cache, cache_key, body)
            return _result(body, status)

        wait = _retry_wait(resp, policy, attempt)
        if wait is None:
            return _result(_body(resp), status)
        last = _result(getattr(resp, 'text', None), status, exhausted_retries=True)
        if more:
            logger.info("GET %s answered HTTP %s; retrying in %.1fs", url, status, wait)
            time.sleep(wait)

    logger.warning("GET %s gave up after %d attempt(s) (last status %s)", url, attempts, last['status'])
    return last


__all__ = ["RetryPolicy", "configure_retry", "reset_retry", "current_policy", "perform_request_with_retries", "DEFAULT_TIMEOUT"]
