"""
actor_metrics/modules/base.py — 观测模块基类

每个模块负责一类运行时事件:
  1. interception_rules(binding) 产出拦截规则（由 Agent 统一应用）
  2. 拦截点触发时读取活动注册表；未安装或本模块未注册 → 空操作
  3. 经 FilterEngine 判断是否观测，计算载荷后交给注册表

钩子逻辑在模块边界内吞掉全部异常（计数 + DEBUG 日志），
宿主自身抛出的异常总是原样透传。
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, TYPE_CHECKING

from ..events import MetricKind
from ..registry import get_active
from ..runtime import ActorContext, InterceptionRule, RuntimeBinding

if TYPE_CHECKING:
    from ..registry import MetricsRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleDescriptor:
    """模块描述（id 在已知模块集合内唯一）"""
    id: str
    default_enabled: bool = True
    description: str = ""


class InstrumentationModule(ABC):
    """
    观测模块抽象基类

    子类需要声明类属性 descriptor 并实现 interception_rules()。
    """

    descriptor: ModuleDescriptor

    def __init__(self):
        self.binding = RuntimeBinding()
        self._error_count = 0
        # 模块私有锁，宿主代码不可能持有；只保护内部计数，从不在持锁时发射
        self._lock = threading.Lock()
        self._seq = 0
        self._stamps: Dict[Hashable, int] = {}

    @property
    def module_id(self) -> str:
        return self.descriptor.id

    @property
    def error_count(self) -> int:
        """钩子内部被吞掉的异常次数"""
        return self._error_count

    def initialize(self, registry: "MetricsRegistry") -> None:
        """注册到注册表时调用"""
        logger.debug(f"[{self.module_id}] 已初始化 ({registry!r})")

    def shutdown(self) -> None:
        """释放模块内部状态"""

    @abstractmethod
    def interception_rules(self, binding: RuntimeBinding) -> List[InterceptionRule]:
        """产出本模块的拦截规则（记录 binding 供钩子读取 cell）"""
        ...

    def get_stats(self) -> Dict[str, Any]:
        return {"module": self.module_id, "errors": self._error_count}

    # ========== 钩子辅助 ==========

    def _rule(self, target: Any, method: str, factory: Callable[[Callable], Callable]) -> InterceptionRule:
        return InterceptionRule(
            module_id=self.module_id,
            target=target,
            method=method,
            wrapper_factory=factory,
        )

    def _active_registry(self) -> Optional["MetricsRegistry"]:
        """活动注册表（未安装或本模块未注册时返回 None）"""
        registry = get_active()
        if registry is None or registry.get_module(self.module_id) is None:
            return None
        return registry

    def _context(self, cell: Any) -> ActorContext:
        return ActorContext.from_cell(cell, self.binding)

    def _stamp(self, key: Hashable) -> int:
        """记录 gauge 的一次变化（调用方持有 self._lock）"""
        self._seq += 1
        self._stamps[key] = self._seq
        return self._seq

    def _gauge_value(self, key: Hashable) -> float:
        """当前 gauge 值（调用方持有 self._lock）"""
        return 0.0

    def _publish_gauge(
        self,
        registry: "MetricsRegistry",
        name: str,
        tags: Dict[str, str],
        key: Hashable,
        value: float,
        stamp: Optional[int],
    ) -> None:
        """
        在锁外发射 gauge

        发射期间若其它线程又改变了该 gauge，补发最新值后再核对，
        因此最后一次发射的总是当前值，后端可以按"最后写入"处理 gauge。
        """
        while True:
            registry.record(MetricKind.GAUGE, name, tags, float(value))
            with self._lock:
                latest = self._stamps.get(key)
                if latest == stamp:
                    return
                stamp = latest
                value = self._gauge_value(key)

    def _safely(self, hook: str, fn: Callable, *args: Any) -> Any:
        """在模块边界内执行钩子逻辑，异常计数后丢弃"""
        try:
            return fn(*args)
        except Exception as e:
            self._error_count += 1
            logger.debug(f"[{self.module_id}] {hook} 失败，已忽略: {e}")
            return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.module_id!r})"
