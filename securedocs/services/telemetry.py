from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    status_code: int
    latency_ms: float


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_request_samples: Deque[RequestSample] = deque(maxlen=20000)
_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    _request_samples.append(
        RequestSample(ts=time.time(), path=path, status_code=status_code, latency_ms=latency_ms)
    )


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture blob store and webhook latency and outcomes.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def availability(window_s: int) -> float | None:
    # Percentage of non-5xx requests over the window.
    cutoff = time.time() - window_s
    samples = [sample for sample in _request_samples if sample.ts >= cutoff]
    if not samples:
        return None
    failures = sum(1 for sample in samples if sample.status_code >= 500)
    return ((len(samples) - failures) / len(samples)) * 100.0


def external_success_rate(integration: str, window_s: int) -> float | None:
    cutoff = time.time() - window_s
    samples = [
        sample
        for sample in _external_samples
        if sample.integration == integration and sample.ts >= cutoff
    ]
    if not samples:
        return None
    return (sum(1 for sample in samples if sample.success) / len(samples)) * 100.0


def reset_telemetry() -> None:
    # Reset in-process samples for deterministic tests.
    _request_samples.clear()
    _external_samples.clear()
    _counters.clear()
