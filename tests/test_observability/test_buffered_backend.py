"""
tests/test_observability/test_buffered_backend.py — BufferedBackend 测试
"""
import threading

import pytest

from actor_metrics.backend import InMemoryBackend, MetricsBackend
from actor_metrics.config import MetricsConfiguration
from actor_metrics.events import MetricEvent, MetricKind
from actor_metrics.exceptions import BackendError
from actor_metrics.registry import MetricsRegistry
from actor_metrics_observability.buffered_backend import BufferedBackend


def event(name="actor.created"):
    return MetricEvent(MetricKind.COUNTER, name, {}, 1)


class FlakyBackend(MetricsBackend):
    def __init__(self):
        self.seen = 0

    def record(self, event):
        self.seen += 1
        if self.seen % 2:
            raise BackendError("flaky")


class TestBufferedBackend:

    def test_record_is_deferred(self):
        sink = InMemoryBackend()
        buffered = BufferedBackend(sink)
        buffered.record(event())
        assert len(sink) == 0
        assert buffered.get_stats()["pending"] == 1

        assert buffered.flush() == 1
        assert sink.counter_total("actor.created") == 1

    def test_flush_in_batches(self):
        sink = InMemoryBackend()
        buffered = BufferedBackend(sink, batch_size=3)
        for _ in range(10):
            buffered.record(event())
        assert buffered.flush() == 10
        assert buffered.get_stats()["forwarded"] == 10

    def test_full_queue_drops(self):
        buffered = BufferedBackend(InMemoryBackend(), max_size=2)
        buffered.record(event())
        buffered.record(event())
        with pytest.raises(BackendError):
            buffered.record(event())
        assert buffered.get_stats()["dropped"] == 1

    def test_full_queue_counted_by_registry(self):
        buffered = BufferedBackend(InMemoryBackend(), max_size=5)
        registry = MetricsRegistry.build(MetricsConfiguration(), buffered)
        for _ in range(8):
            registry.record(MetricKind.COUNTER, "actor.created", {})
        stats = registry.get_stats()
        assert stats["events_emitted"] == 5
        assert stats["events_dropped"] == 3

    def test_delegate_errors_swallowed(self):
        flaky = FlakyBackend()
        buffered = BufferedBackend(flaky)
        for _ in range(4):
            buffered.record(event())
        assert buffered.flush() == 2
        assert buffered.get_stats()["delegate_errors"] == 2

    def test_background_thread_flushes(self):
        delivered = threading.Event()

        class SignalBackend(InMemoryBackend):
            def record(self, event):
                super().record(event)
                delivered.set()

        sink = SignalBackend()
        buffered = BufferedBackend(sink, flush_interval=0.01)
        buffered.start()
        assert buffered.running
        buffered.record(event())
        assert delivered.wait(timeout=5.0)
        buffered.shutdown()
        assert not buffered.running
        assert sink.counter_total("actor.created") == 1

    def test_shutdown_flushes_remaining(self):
        sink = InMemoryBackend()
        buffered = BufferedBackend(sink, flush_interval=60.0)
        buffered.start()
        for _ in range(3):
            buffered.record(event())
        buffered.shutdown(timeout=5.0)
        assert sink.counter_total("actor.created") == 3

    def test_stats_include_delegate(self):
        buffered = BufferedBackend(InMemoryBackend())
        stats = buffered.get_stats()
        assert stats["type"] == "BufferedBackend"
        assert stats["delegate"]["type"] == "InMemoryBackend"
        assert buffered.delegate.backend_type == "InMemoryBackend"
