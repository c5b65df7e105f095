"""In-process metrics: request durations, token counts and active connections."""

from __future__ import annotations

import threading
from collections.abc import Mapping

from llmgate.core import GatewayError, ProviderError, RequestContext

REQUEST_DURATION = "llmgate_request_duration_seconds"
TOKENS_TOTAL = "llmgate_tokens_total"
ACTIVE_CONNECTIONS = "llmgate_active_connections"

_LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: Mapping[str, str] | None) -> _LabelKey:
    return tuple(sorted((labels or {}).items()))


class MetricsRegistry:
    """Counters, histograms and gauges keyed by metric name and label set."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, _LabelKey], float] = {}
        self._histograms: dict[tuple[str, _LabelKey], list[float]] = {}
        self._gauges: dict[str, float] = {}

    def increment_counter(
        self, name: str, labels: Mapping[str, str] | None = None, value: float = 1
    ) -> None:
        """Add value to the counter name with the given labels."""
        key = (name, _label_key(labels))
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def observe(self, name: str, labels: Mapping[str, str] | None, value: float) -> None:
        """Record one observation in the histogram name with the given labels."""
        key = (name, _label_key(labels))
        with self._lock:
            self._histograms.setdefault(key, []).append(value)

    def add_gauge(self, name: str, delta: float) -> None:
        """Move the gauge name by delta."""
        with self._lock:
            self._gauges[name] = self._gauges.get(name, 0.0) + delta

    def counter(self, name: str, labels: Mapping[str, str] | None = None) -> float:
        """Current value of a counter, 0 if it was never incremented."""
        with self._lock:
            return self._counters.get((name, _label_key(labels)), 0)

    def gauge(self, name: str) -> float:
        """Current value of a gauge, 0 if it was never moved."""
        with self._lock:
            return self._gauges.get(name, 0.0)

    def samples(self, name: str, labels: Mapping[str, str] | None = None) -> list[float]:
        """Every observation recorded in a histogram, oldest first."""
        with self._lock:
            return list(self._histograms.get((name, _label_key(labels)), []))


REGISTRY = MetricsRegistry()


def record_duration(ctx: RequestContext, status: str) -> None:
    """Record how long the request took, labelled by outcome."""
    REGISTRY.observe(
        REQUEST_DURATION,
        {
            "provider": ctx.provider,
            "model": ctx.model,
            "status": status,
            "stream": "true" if ctx.is_stream else "false",
        },
        ctx.elapsed(),
    )


def record_tokens(ctx: RequestContext, prompt: int, completion: int) -> None:
    """Count prompt and completion tokens; zero counts are not recorded."""
    for direction, amount in (("prompt", prompt), ("completion", completion)):
        if amount > 0:
            REGISTRY.increment_counter(
                TOKENS_TOTAL,
                {"provider": ctx.provider, "model": ctx.model, "direction": direction},
                amount,
            )


def error_status(error: GatewayError) -> str:
    """Status label for a failed request: '429', '4xx' or '5xx'."""
    if isinstance(error, ProviderError):
        if error.status == 429:
            return "429"
        if 400 <= error.status <= 499:
            return "4xx"
    return "5xx"