import uuid

from llmgate.core import GatewayTimeout, InternalError, ProviderError, RequestContext
from llmgate.metrics import (
    ACTIVE_CONNECTIONS,
    REGISTRY,
    REQUEST_DURATION,
    TOKENS_TOTAL,
    MetricsRegistry,
    error_status,
    record_duration,
    record_tokens,
)


def _ctx(is_stream=False):
    return RequestContext(
        request_id="req-1",
        model=f"model-{uuid.uuid4().hex}",
        provider="openai",
        is_stream=is_stream,
    )


def test_counter_accumulates():
    reg = MetricsRegistry()
    reg.increment_counter("hits", {"a": "1"}, 2)
    reg.increment_counter("hits", {"a": "1"}, 3)
    assert reg.counter("hits", {"a": "1"}) == 5


def test_counter_label_order_does_not_matter():
    reg = MetricsRegistry()
    reg.increment_counter("hits", {"a": "1", "b": "2"}, 1)
    reg.increment_counter("hits", {"b": "2", "a": "1"}, 1)
    assert reg.counter("hits", {"a": "1", "b": "2"}) == 2


def test_counter_labels_are_separate():
    reg = MetricsRegistry()
    reg.increment_counter("hits", {"a": "1"}, 4)
    assert reg.counter("hits", {"a": "2"}) == 0


def test_histogram_keeps_observations_in_order():
    reg = MetricsRegistry()
    reg.observe("lat", {"x": "y"}, 0.5)
    reg.observe("lat", {"x": "y"}, 1.5)
    assert reg.samples("lat", {"x": "y"}) == [0.5, 1.5]


def test_samples_returns_a_copy():
    reg = MetricsRegistry()
    reg.observe("lat", None, 1.0)
    reg.samples("lat").append(2.0)
    assert reg.samples("lat") == [1.0]


def test_gauge_moves_up_and_down():
    reg = MetricsRegistry()
    reg.add_gauge("conns", 1.0)
    reg.add_gauge("conns", 1.0)
    reg.add_gauge("conns", -1.0)
    assert reg.gauge("conns") == 1.0
    assert reg.gauge("other") == 0.0


def test_error_status_provider_codes():
    assert error_status(ProviderError(429, "slow")) == "429"
    assert error_status(ProviderError(404, "missing")) == "4xx"
    assert error_status(ProviderError(503, "down")) == "5xx"


def test_error_status_non_provider_is_5xx():
    assert error_status(GatewayTimeout()) == "5xx"
    assert error_status(InternalError("boom")) == "5xx"


def test_record_tokens_counts_both_directions():
    ctx = _ctx()
    record_tokens(ctx, 10, 20)
    base = {"provider": ctx.provider, "model": ctx.model}
    assert REGISTRY.counter(TOKENS_TOTAL, {**base, "direction": "prompt"}) == 10
    assert REGISTRY.counter(TOKENS_TOTAL, {**base, "direction": "completion"}) == 20


def test_record_tokens_skips_zero():
    ctx = _ctx()
    record_tokens(ctx, 0, 7)
    base = {"provider": ctx.provider, "model": ctx.model}
    assert REGISTRY.counter(TOKENS_TOTAL, {**base, "direction": "prompt"}) == 0
    assert REGISTRY.counter(TOKENS_TOTAL, {**base, "direction": "completion"}) == 7


def test_record_duration_labels_stream_flag():
    ctx = _ctx(is_stream=True)
    record_duration(ctx, "2xx")
    labels = {"provider": ctx.provider, "model": ctx.model, "status": "2xx", "stream": "true"}
    samples = REGISTRY.samples(REQUEST_DURATION, labels)
    assert len(samples) == 1
    assert samples[0] >= 0.0
    assert REGISTRY.samples(REQUEST_DURATION, {**labels, "stream": "false"}) == []


def test_active_connections_gauge_name_is_distinct():
    before = REGISTRY.gauge(ACTIVE_CONNECTIONS)
    REGISTRY.add_gauge(ACTIVE_CONNECTIONS, 1.0)
    REGISTRY.add_gauge(ACTIVE_CONNECTIONS, -1.0)
    assert REGISTRY.gauge(ACTIVE_CONNECTIONS) == before