"""In-memory request metrics for /metrics and upstream client telemetry for /api/health."""
import time
from collections.abc import MutableMapping
from datetime import datetime, timezone
from threading import Lock

_start_time = time.monotonic()
_counts: MutableMapping[str, int] = {}
_lock = Lock()


def record_request(status_code: int) -> None:
    if 200 <= status_code < 300:
        bucket = "2xx"
    elif 400 <= status_code < 500:
        bucket = "4xx"
    elif status_code >= 500:
        bucket = "5xx"
    else:
        bucket = "other"
    with _lock:
        _counts[bucket] = _counts.get(bucket, 0) + 1


def get_metrics() -> dict:
    with _lock:
        counts = dict(_counts)
    uptime_seconds = time.monotonic() - _start_time
    return {
        "requests_total": sum(counts.values()),
        "requests_2xx": counts.get("2xx", 0),
        "requests_4xx": counts.get("4xx", 0),
        "requests_5xx": counts.get("5xx", 0),
        "uptime_seconds": round(uptime_seconds, 1),
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class UpstreamTelemetry:
    """Running counters for one upstream client. Observational only; nothing reads them for control flow."""

    def __init__(self) -> None:
        self.total_requests = 0
        self.retryable_responses = 0
        self.failed_requests = 0
        self.total_rate_limit_delay_ms = 0.0
        self.rate_limit_delay_count = 0
        self.last_rate_limit_delay_ms: float | None = None
        self.last_rate_limit_delay_at: str | None = None
        self.last_429_at: str | None = None
        self.last_429_path: str | None = None
        self.last_failure_at: str | None = None
        self.last_failure_message: str | None = None
        self.last_failure_path: str | None = None
        self.last_success_at: str | None = None
        self.last_success_path: str | None = None

    def record_success(self, path: str) -> None:
        self.total_requests += 1
        self.last_success_at = _now_iso()
        self.last_success_path = path

    def record_retryable(self, path: str, status_code: int | None) -> None:
        self.retryable_responses += 1
        if status_code == 429:
            self.last_429_at = _now_iso()
            self.last_429_path = path

    def record_failure(self, path: str, message: str) -> None:
        self.failed_requests += 1
        self.last_failure_at = _now_iso()
        self.last_failure_message = message
        self.last_failure_path = path

    def record_rate_limit_delay(self, delay_ms: float) -> None:
        self.total_rate_limit_delay_ms += delay_ms
        self.rate_limit_delay_count += 1
        self.last_rate_limit_delay_ms = round(delay_ms, 1)
        self.last_rate_limit_delay_at = _now_iso()

    def snapshot(self) -> dict:
        average = (
            self.total_rate_limit_delay_ms / self.rate_limit_delay_count
            if self.rate_limit_delay_count
            else 0
        )
        return {
            "total_requests": self.total_requests,
            "retryable_responses": self.retryable_responses,
            "failed_requests": self.failed_requests,
            "total_rate_limit_delay_ms": round(self.total_rate_limit_delay_ms),
            "rate_limit_delay_count": self.rate_limit_delay_count,
            "average_rate_limit_delay_ms": round(average),
            "last_rate_limit_delay_ms": self.last_rate_limit_delay_ms,
            "last_rate_limit_delay_at": self.last_rate_limit_delay_at,
            "last_429_at": self.last_429_at,
            "last_429_path": self.last_429_path,
            "last_failure_at": self.last_failure_at,
            "last_failure_message": self.last_failure_message,
            "last_failure_path": self.last_failure_path,
            "last_success_at": self.last_success_at,
            "last_success_path": self.last_success_path,
        }
