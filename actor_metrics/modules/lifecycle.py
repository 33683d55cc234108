"""
actor_metrics/modules/lifecycle.py — Actor 生命周期模块

状态: Created → Active → Terminated

指标:
  - actor.created    (counter) 标签: actor.path, actor.class
  - actor.terminated (counter) 标签: actor.path, actor.class
  - actor.active     (gauge)   全局存活数，只带公共标签

拦截点:
  - cell.new_actor()  退出时 → Created
  - cell.terminate()  进入时 → Terminated

存活数按 actor 路径配对统计: 没有对应 Created 的 Terminated
（注册表安装前创建的 actor、重复终止）只计 counter，不会把 gauge 压到 0 以下。
注册表清空期间仍会扣减已记录的存活数（不发射），重新安装后 gauge 与实际一致。
"""
import functools
import logging
from typing import Any, Callable, Dict, List

from ..events import ACTOR_ACTIVE, ACTOR_CREATED, ACTOR_TERMINATED, MetricKind
from ..runtime import InterceptionRule, RuntimeBinding
from .base import InstrumentationModule, ModuleDescriptor

logger = logging.getLogger(__name__)


class ActorLifecycleModule(InstrumentationModule):
    """Actor 生命周期指标"""

    descriptor = ModuleDescriptor(
        id="actor-lifecycle",
        default_enabled=True,
        description="Actor 生命周期指标 (created, terminated, active)",
    )

    def __init__(self):
        super().__init__()
        self._live: Dict[str, int] = {}
        self._active = 0
        self._unmatched = 0

    @property
    def active_count(self) -> int:
        return self._active

    def interception_rules(self, binding: RuntimeBinding) -> List[InterceptionRule]:
        self.binding = binding
        return [
            self._rule(binding.cell_class, binding.create_method, self._wrap_create),
            self._rule(binding.cell_class, binding.terminate_method, self._wrap_terminate),
        ]

    def _wrap_create(self, original: Callable) -> Callable:
        module = self

        @functools.wraps(original)
        def new_actor(cell, *args, **kwargs):
            result = original(cell, *args, **kwargs)
            module._safely("actor_created", module.on_created, cell)
            return result

        return new_actor

    def _wrap_terminate(self, original: Callable) -> Callable:
        module = self

        @functools.wraps(original)
        def terminate(cell, *args, **kwargs):
            module._safely("actor_terminated", module.on_terminated, cell)
            return original(cell, *args, **kwargs)

        return terminate

    # ========== 状态转换 ==========

    def on_created(self, cell: Any) -> None:
        registry = self._active_registry()
        if registry is None:
            return
        context = self._context(cell)
        if not registry.should_instrument(context, sample=False):
            return

        registry.record(MetricKind.COUNTER, ACTOR_CREATED, context.to_tags())
        with self._lock:
            self._live[context.path] = self._live.get(context.path, 0) + 1
            self._active += 1
            active, stamp = self._active, self._stamp(ACTOR_ACTIVE)
        self._publish_gauge(registry, ACTOR_ACTIVE, {}, ACTOR_ACTIVE, active, stamp)

        logger.debug(f"Actor 已创建: {context.path} ({context.actor_class})")

    def on_terminated(self, cell: Any) -> None:
        registry = self._active_registry()
        if registry is None and not self._live:
            return
        context = self._context(cell)
        observed = registry is not None and registry.should_instrument(context, sample=False)
        if observed:
            registry.record(MetricKind.COUNTER, ACTOR_TERMINATED, context.to_tags())

        # 未观测时（注册表清空 / 被过滤）也要配对已记录的创建，
        # 否则重新安装后的存活数会残留旧值
        with self._lock:
            live = self._live.get(context.path, 0)
            matched = live > 0
            if matched:
                if live == 1:
                    del self._live[context.path]
                else:
                    self._live[context.path] = live - 1
                self._active -= 1
                active, stamp = self._active, self._stamp(ACTOR_ACTIVE)
            elif observed:
                self._unmatched += 1

        if matched:
            if registry is not None:
                self._publish_gauge(registry, ACTOR_ACTIVE, {}, ACTOR_ACTIVE, active, stamp)
            logger.debug(f"Actor 已终止: {context.path}")
        elif observed:
            logger.debug(f"Actor 终止但无对应创建记录，存活数保持不变: {context.path}")

    def _gauge_value(self, key) -> float:
        return float(self._active)

    def shutdown(self) -> None:
        with self._lock:
            self._live.clear()
            self._active = 0
            self._stamps.clear()

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            "active": self._active,
            "tracked_paths": len(self._live),
            "unmatched_terminations": self._unmatched,
        })
        return stats
