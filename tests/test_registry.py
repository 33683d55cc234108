"""
MetricsRegistry 与活动槽位单元测试
"""
import logging
import threading

import pytest

from actor_metrics import registry as registry_module
from actor_metrics.backend import InMemoryBackend, MetricsBackend
from actor_metrics.config import FilterConfig, MetricsConfiguration, SamplingConfig
from actor_metrics.events import MetricKind
from actor_metrics.exceptions import BackendError, ConfigurationError
from actor_metrics.modules.base import InstrumentationModule, ModuleDescriptor
from actor_metrics.registry import MetricsRegistry, get_active, install
from actor_metrics.runtime import ActorContext


class StubModule(InstrumentationModule):
    descriptor = ModuleDescriptor(id="stub")

    def __init__(self, tag=""):
        super().__init__()
        self.tag = tag
        self.initialized_with = []
        self.shut_down = False

    def initialize(self, registry):
        self.initialized_with.append(registry)

    def shutdown(self):
        self.shut_down = True

    def interception_rules(self, binding):
        return []


class OtherModule(StubModule):
    descriptor = ModuleDescriptor(id="other")


class ExplodingBackend(MetricsBackend):
    def __init__(self):
        self.calls = 0

    def record(self, event):
        self.calls += 1
        raise BackendError("down")


class TestModuleRegistration:

    def test_register_and_order(self, backend):
        registry = MetricsRegistry.build(MetricsConfiguration(), backend)
        stub, other = StubModule(), OtherModule()
        registry.register_module(stub)
        registry.register_module(other)
        assert registry.get_modules() == [stub, other]
        assert stub.initialized_with == [registry]

    def test_same_id_replaces_in_place(self, backend):
        """同 id 注册两次只保留一个条目，后写覆盖且位置不变"""
        registry = MetricsRegistry.build(MetricsConfiguration(), backend)
        first, other, second = StubModule("first"), OtherModule(), StubModule("second")
        registry.register_module(first)
        registry.register_module(other)
        registry.register_module(second)

        modules = registry.get_modules()
        assert [m.module_id for m in modules] == ["stub", "other"]
        assert modules[0] is second
        assert registry.get_module("stub") is second

    def test_register_same_instance_twice(self, backend):
        registry = MetricsRegistry.build(MetricsConfiguration(), backend)
        stub = StubModule()
        registry.register_module(stub)
        registry.register_module(stub)
        assert registry.get_modules() == [stub]

    def test_shutdown_modules_not_backend(self):
        backend = InMemoryBackend()
        registry = MetricsRegistry.build(MetricsConfiguration(), backend)
        stub = StubModule()
        registry.register_module(stub)
        registry.shutdown()
        assert stub.shut_down
        # 后端仍可用
        registry.record(MetricKind.COUNTER, "actor.created", {})
        assert backend.counter_total("actor.created") == 1

    def test_requires_backend(self):
        with pytest.raises(ValueError):
            MetricsRegistry(MetricsConfiguration(), None)

    def test_invalid_filter_fails_fast(self, backend):
        config = MetricsConfiguration(filters=FilterConfig(actor_include=("",)))
        with pytest.raises(ConfigurationError):
            MetricsRegistry.build(config, backend)


class TestShouldInstrument:

    def test_filter_applied(self, backend):
        config = MetricsConfiguration(filters=FilterConfig(
            actor_include=("orders-*",),
            actor_exclude=("orders-debug",),
        ))
        registry = MetricsRegistry.build(config, backend)
        assert registry.should_instrument(ActorContext("orders-42"))
        assert not registry.should_instrument(ActorContext("orders-debug"))
        assert not registry.should_instrument(ActorContext("billing-1"))

    def test_disabled_configuration(self, backend):
        registry = MetricsRegistry.build(MetricsConfiguration(enabled=False), backend)
        assert not registry.should_instrument(ActorContext("/user/a"))

    def test_system_and_temporary_actors_skipped(self, backend):
        registry = MetricsRegistry.build(MetricsConfiguration(), backend)
        assert not registry.should_instrument(ActorContext("pekko://sys/system/log"))
        assert not registry.should_instrument(ActorContext("pekko://sys/temp/ask-1"))
        assert not registry.should_instrument(ActorContext("pekko://sys/user/$a"))
        assert registry.should_instrument(ActorContext("pekko://sys/user/orders"))

    def test_system_actors_allowed_when_configured(self, backend):
        registry = MetricsRegistry.build(MetricsConfiguration(skip_system_actors=False), backend)
        assert registry.should_instrument(ActorContext("pekko://sys/system/log"))

    def test_sampling_can_be_skipped(self, backend):
        config = MetricsConfiguration(sampling=SamplingConfig.never())
        registry = MetricsRegistry.build(config, backend)
        context = ActorContext("/user/a")
        assert not registry.should_instrument(context)
        assert registry.should_instrument(context, sample=False)

    def test_message_filter(self, backend):
        config = MetricsConfiguration(filters=FilterConfig(message_exclude=("*.Heartbeat",)))
        registry = MetricsRegistry.build(config, backend)
        assert registry.should_instrument_message("app.PlaceOrder")
        assert not registry.should_instrument_message("app.Heartbeat")


class TestRecord:

    def test_common_tags_merged(self, backend):
        config = MetricsConfiguration(common_tags={"application": "orders", "env": "prod"})
        registry = MetricsRegistry.build(config, backend)
        registry.record(MetricKind.COUNTER, "actor.created", {"actor.path": "/user/a", "env": "test"})

        event = backend.query(name="actor.created")[0]
        assert dict(event.tags) == {"application": "orders", "env": "test", "actor.path": "/user/a"}
        assert event.kind is MetricKind.COUNTER
        assert event.value == 1.0

    def test_backend_errors_dropped(self):
        failing = ExplodingBackend()
        registry = MetricsRegistry.build(MetricsConfiguration(), failing)
        for _ in range(10):
            assert registry.record(MetricKind.COUNTER, "actor.created", {}) is False
        stats = registry.get_stats()
        assert stats["events_dropped"] == 10
        assert stats["events_emitted"] == 0
        assert failing.calls == 10

    def test_drop_logging_rate_limited(self, caplog):
        registry = MetricsRegistry.build(MetricsConfiguration(), ExplodingBackend())
        with caplog.at_level(logging.DEBUG, logger="actor_metrics.registry"):
            for _ in range(2000):
                registry.record(MetricKind.COUNTER, "actor.created", {})
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        # 第 1、1000、2000 次
        assert len(warnings) == 3

    def test_stats(self, backend):
        registry = MetricsRegistry.build(MetricsConfiguration(), backend)
        registry.register_module(StubModule())
        registry.record(MetricKind.GAUGE, "actor.active", {}, 3)
        stats = registry.get_stats()
        assert stats["modules"] == ["stub"]
        assert stats["events_emitted"] == 1
        assert stats["backend"] == "InMemoryBackend"


class TestActiveSlot:

    def test_install_and_read(self, backend):
        registry = MetricsRegistry.build(MetricsConfiguration(), backend)
        assert get_active() is None
        assert install(registry) is None
        assert get_active() is registry

    def test_install_returns_previous(self, backend):
        first = MetricsRegistry.build(MetricsConfiguration(), backend)
        second = MetricsRegistry.build(MetricsConfiguration(), backend)
        install(first)
        assert install(second) is first
        assert install(None) is second
        assert get_active() is None

    def test_readers_never_see_torn_state(self, backend):
        """并发替换时读方只会看到完整构建的注册表或 None"""
        registries = [
            MetricsRegistry.build(MetricsConfiguration(common_tags={"n": str(i)}), backend)
            for i in range(4)
        ]
        stop = threading.Event()
        seen = []

        def reader():
            while not stop.is_set():
                current = get_active()
                if current is not None:
                    seen.append(current.common_tags["n"])

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for t in readers:
            t.start()
        for _ in range(200):
            for registry in registries:
                install(registry)
            install(None)
        stop.set()
        for t in readers:
            t.join()

        assert set(seen) <= {"0", "1", "2", "3"}
        assert registry_module._active is None
