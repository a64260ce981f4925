"""Async JSON-over-HTTP client shared by the price feed and the swap aggregator."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any

import aiohttp

import config

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


@dataclass
class HttpResult:
    ok: bool
    status: int
    data: Any | None
    error: str = ""


@dataclass
class RetryPolicy:
    attempts: int
    base_delay: float
    max_delay: float
    jitter: float
    rate_limit_delay: float

    @classmethod
    def from_config(cls, attempts: int | None = None) -> "RetryPolicy":
        base = float(config.HTTP_BACKOFF_BASE_SECONDS)
        return cls(
            attempts=max(1, int(attempts or config.HTTP_RETRY_ATTEMPTS)),
            base_delay=base,
            max_delay=max(base, float(config.HTTP_BACKOFF_MAX_SECONDS)),
            jitter=float(config.HTTP_JITTER_SECONDS),
            rate_limit_delay=float(config.HTTP_RATE_LIMIT_DELAY_SECONDS),
        )

    def delay(self, attempt: int, status: int, retry_after: float | None = None) -> float:
        """Seconds to wait before attempt `attempt + 1`.

        A server-supplied Retry-After wins, capped at `max_delay`.
        """
        if retry_after is not None and retry_after >= 0:
            return min(self.max_delay, retry_after)
        wait = self.base_delay * (2 ** max(0, attempt - 1))
        if status == 429:
            wait += self.rate_limit_delay
        return max(0.01, min(self.max_delay, wait) + random.uniform(0.0, self.jitter))


@dataclass
class SourceStats:
    ok: int = 0
    failed: int = 0
    rate_limited: int = 0
    retries: int = 0
    latencies_ms: list[float] = field(default_factory=list)

    def as_dict(self) -> dict[str, int | float]:
        total = self.ok + self.failed
        return {
            "ok": self.ok,
            "fail": self.failed,
            "total": total,
            "rate_limited": self.rate_limited,
            "retries": self.retries,
            "error_percent": round(self.failed / total * 100.0, 2) if total else 0.0,
            "latency_avg_ms": round(sum(self.latencies_ms) / len(self.latencies_ms), 2) if self.latencies_ms else 0.0,
        }


def _retry_after_seconds(response: aiohttp.ClientResponse) -> float | None:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


class ResilientHttpClient:
    """One lazily created aiohttp session, a concurrency cap per named source,
    and bounded retries for rate limits, 5xx answers and transport errors.

    HTTP problems never raise out of `get_json`; callers inspect `HttpResult`.
    """

    # Keep the last N latencies per source for the average.
    LATENCY_WINDOW = 200

    def __init__(
        self,
        timeout_seconds: float,
        headers: dict[str, str] | None = None,
        source_limits: dict[str, int] | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self._headers = dict(headers or {})
        self._source_limits = {k.lower(): max(1, int(v)) for k, v in (source_limits or {}).items()}
        self._session: aiohttp.ClientSession | None = None
        self._gates: dict[str, asyncio.Semaphore] = {}
        self._stats: dict[str, SourceStats] = {}

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()

    def _session_or_new(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)
        return self._session

    def _gate(self, source: str) -> asyncio.Semaphore:
        if source not in self._gates:
            self._gates[source] = asyncio.Semaphore(self._source_limits.get(source, 4))
        return self._gates[source]

    def snapshot_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        out = {source: row.as_dict() for source, row in self._stats.items()}
        if reset:
            self._stats = {}
        return out

    async def get_json(
        self,
        url: str,
        *,
        source: str = "default",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> HttpResult:
        source = (source or "default").strip().lower() or "default"
        policy = RetryPolicy.from_config(max_attempts)
        stats = self._stats.setdefault(source, SourceStats())

        result = HttpResult(ok=False, status=0, data=None, error="http_exhausted")
        for attempt in range(1, policy.attempts + 1):
            retry_after: float | None = None
            async with self._gate(source):
                started = time.perf_counter()
                try:
                    async with self._session_or_new().get(url, params=params, headers=headers) as response:
                        stats.latencies_ms.append((time.perf_counter() - started) * 1000.0)
                        del stats.latencies_ms[: -self.LATENCY_WINDOW]
                        status = int(response.status or 0)
                        if status == 200:
                            stats.ok += 1
                            return HttpResult(ok=True, status=status, data=await response.json(content_type=None))
                        if status == 429:
                            stats.rate_limited += 1
                            retry_after = _retry_after_seconds(response)
                        body = (await response.text())[:300]
                        result = HttpResult(ok=False, status=status, data=None, error=f"http_status_{status}:{body}")
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                    result = HttpResult(ok=False, status=0, data=None, error=f"http_error:{exc}")

            if result.status and result.status not in RETRYABLE_STATUSES:
                break
            if attempt >= policy.attempts:
                break
            stats.retries += 1
            wait = policy.delay(attempt, result.status, retry_after)
            logger.debug(
                "HTTP_RETRY source=%s attempt=%s/%s status=%s delay=%.2fs url=%s",
                source,
                attempt,
                policy.attempts,
                result.status,
                wait,
                url,
            )
            await asyncio.sleep(wait)

        stats.failed += 1
        return result
