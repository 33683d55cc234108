"""
MetricEvent / InMemoryBackend / CompositeBackend 单元测试
"""
import threading

import pytest

from actor_metrics.backend import CompositeBackend, InMemoryBackend, MetricsBackend
from actor_metrics.events import METRIC_KINDS, MetricEvent, MetricKind, merge_tags
from actor_metrics.exceptions import BackendError


class FailingBackend(MetricsBackend):
    def __init__(self):
        self.calls = 0

    def record(self, event):
        self.calls += 1
        raise BackendError("sink unavailable")


class TestMetricEvent:

    def test_tags_frozen(self):
        tags = {"actor.path": "/user/a"}
        event = MetricEvent(MetricKind.COUNTER, "actor.created", tags, 1.0)
        tags["actor.path"] = "/user/b"
        assert event.tags["actor.path"] == "/user/a"
        with pytest.raises(TypeError):
            event.tags["x"] = "y"

    def test_to_dict(self):
        event = MetricEvent(MetricKind.TIMER, "actor.mailbox.time", {"a": "b"}, 0.5, timestamp=10.0)
        assert event.to_dict() == {
            "kind": "timer",
            "name": "actor.mailbox.time",
            "tags": {"a": "b"},
            "value": 0.5,
            "timestamp": 10.0,
        }

    def test_metric_catalogue(self):
        """指标名称与类型是对外契约"""
        assert METRIC_KINDS == {
            "actor.created": MetricKind.COUNTER,
            "actor.terminated": MetricKind.COUNTER,
            "actor.active": MetricKind.GAUGE,
            "actor.message.processed": MetricKind.COUNTER,
            "actor.message.processing.time": MetricKind.TIMER,
            "actor.message.failed": MetricKind.COUNTER,
            "actor.mailbox.size": MetricKind.GAUGE,
            "actor.mailbox.time": MetricKind.TIMER,
        }

    def test_merge_tags_event_wins(self):
        merged = merge_tags({"env": "event", "actor.path": "/user/a"}, {"env": "common", "app": "x"})
        assert merged == {"env": "event", "actor.path": "/user/a", "app": "x"}


class TestInMemoryBackend:

    @pytest.fixture
    def mem(self):
        return InMemoryBackend(buffer_size=5)

    def test_counter_and_gauge_summaries(self, mem):
        mem.record(MetricEvent(MetricKind.COUNTER, "actor.created", {"actor.path": "/user/a"}, 1))
        mem.record(MetricEvent(MetricKind.COUNTER, "actor.created", {"actor.path": "/user/b"}, 1))
        mem.record(MetricEvent(MetricKind.GAUGE, "actor.active", {}, 2))
        mem.record(MetricEvent(MetricKind.GAUGE, "actor.active", {}, 1))

        assert mem.counter_total("actor.created") == 2
        assert mem.counter_total("actor.created", actor_path="/user/a") == 1
        assert mem.counter_total("actor.terminated") == 0
        assert mem.gauge_value("actor.active") == 1
        assert mem.gauge_value("actor.mailbox.size") is None

    def test_ring_buffer_bounded(self, mem):
        for i in range(8):
            mem.record(MetricEvent(MetricKind.COUNTER, "actor.created", {}, 1))
        assert len(mem) == 5
        assert mem.counter_total("actor.created") == 8
        assert mem.get_stats()["total_recorded"] == 8

    def test_query(self, mem):
        mem.record(MetricEvent(MetricKind.COUNTER, "actor.created", {}, 1, timestamp=1.0))
        mem.record(MetricEvent(MetricKind.TIMER, "actor.mailbox.time", {}, 0.1, timestamp=2.0))
        mem.record(MetricEvent(MetricKind.COUNTER, "actor.created", {}, 1, timestamp=3.0))

        assert len(mem.query(name="actor.created")) == 2
        assert len(mem.query(kind=MetricKind.TIMER)) == 1
        assert len(mem.query(since=2.0)) == 2
        assert len(mem.query(limit=1)) == 1

    def test_clear(self, mem):
        mem.record(MetricEvent(MetricKind.COUNTER, "actor.created", {}, 1))
        mem.clear()
        assert len(mem) == 0
        assert mem.counter_total("actor.created") == 0

    def test_concurrent_record(self):
        mem = InMemoryBackend(buffer_size=100000)

        def worker():
            for _ in range(1000):
                mem.record(MetricEvent(MetricKind.COUNTER, "actor.message.processed", {}, 1))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert mem.counter_total("actor.message.processed") == 8000


class TestCompositeBackend:

    def test_fan_out(self):
        a, b = InMemoryBackend(), InMemoryBackend()
        composite = CompositeBackend([a, b])
        composite.record(MetricEvent(MetricKind.COUNTER, "actor.created", {}, 1))
        assert a.counter_total("actor.created") == 1
        assert b.counter_total("actor.created") == 1

    def test_failing_delegate_does_not_stop_others(self):
        failing, mem = FailingBackend(), InMemoryBackend()
        composite = CompositeBackend([failing, mem])
        with pytest.raises(BackendError):
            composite.record(MetricEvent(MetricKind.COUNTER, "actor.created", {}, 1))
        assert failing.calls == 1
        assert mem.counter_total("actor.created") == 1

    def test_stats(self):
        composite = CompositeBackend([InMemoryBackend()])
        stats = composite.get_stats()
        assert stats["type"] == "CompositeBackend"
        assert stats["backends"][0]["type"] == "InMemoryBackend"
