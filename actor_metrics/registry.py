"""
actor_metrics/registry.py — 指标注册表与进程级活动槽位

MetricsRegistry 持有: 配置 + 后端引用 + 按 id 排序的模块集合。
本模块同时拥有进程内唯一的"活动注册表"槽位:

    install(registry)  — 原子替换槽位（写方加锁，读方无锁）
    install(None)      — 清空槽位，所有拦截点不再发射事件（拦截本身保留）
    get_active()       — 热路径读取，只是一次引用读取

初始化 / 拆除顺序:
    1. agent.premain() 挂载拦截（进程启动时）
    2. registry = MetricsRegistry.build(config, backend)
    3. registry.register_module(...)  对 agent 已挂载的模块
    4. install(registry)              开始产生指标
    ...
    5. install(None)                  停止产生指标
    6. 调用方自行关闭后端（注册表从不管理后端生命周期）
"""
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING

from .backend import MetricsBackend
from .config import MetricsConfiguration
from .events import MetricEvent, MetricKind, merge_tags
from .filter import FilterEngine
from .runtime import ActorContext
from .sampling import SamplingStrategy

if TYPE_CHECKING:
    from .modules.base import InstrumentationModule

logger = logging.getLogger(__name__)

# 后端丢弃日志: 第一次 WARNING，之后每 N 次 WARNING 一次
_DROP_LOG_EVERY = 1000


class MetricsRegistry:
    """
    指标注册表

    使用方式:
        registry = MetricsRegistry.build(config, backend)
        registry.register_module(lifecycle_module)
        install(registry)
    """

    def __init__(
        self,
        configuration: MetricsConfiguration,
        backend: MetricsBackend,
        filter_engine: Optional[FilterEngine] = None,
        sampling: Optional[SamplingStrategy] = None,
    ):
        if backend is None:
            raise ValueError("MetricsRegistry 需要一个 MetricsBackend")

        self.configuration = configuration
        self.backend = backend
        self.filter_engine = filter_engine or FilterEngine.build(configuration.filters)
        self.sampling = sampling or SamplingStrategy.from_config(configuration.sampling)
        self.common_tags: Mapping[str, str] = configuration.common_tags

        self._modules: "OrderedDict[str, InstrumentationModule]" = OrderedDict()
        self._modules_lock = threading.Lock()

        # 统计（近似值，热路径不加锁）
        self._events_emitted = 0
        self._events_dropped = 0

    @classmethod
    def build(
        cls,
        configuration: Optional[MetricsConfiguration],
        backend: MetricsBackend,
    ) -> "MetricsRegistry":
        """
        构建注册表（过滤模式非法时抛出 ConfigurationError）
        """
        return cls(configuration or MetricsConfiguration(), backend)

    # ========== 模块管理 ==========

    def register_module(self, module: "InstrumentationModule") -> None:
        """
        注册模块 — 按 id 幂等，后写覆盖

        覆盖时保留该 id 最初的注册位置。
        """
        with self._modules_lock:
            previous = self._modules.get(module.module_id)
            self._modules[module.module_id] = module
        if previous is not None and previous is not module:
            logger.info(f"替换已注册模块: {module.module_id}")
        else:
            logger.info(f"注册模块: {module.module_id}")
        module.initialize(self)

    def get_modules(self) -> List["InstrumentationModule"]:
        """按注册顺序返回模块列表（副本）"""
        with self._modules_lock:
            return list(self._modules.values())

    def get_module(self, module_id: str) -> Optional["InstrumentationModule"]:
        return self._modules.get(module_id)

    # ========== 热路径 ==========

    def should_instrument(self, context: ActorContext, sample: bool = True) -> bool:
        """
        是否观测该 actor

        依次检查: 总开关 → 系统/临时 actor → 过滤引擎 → 采样（可跳过）
        """
        if not self.configuration.enabled:
            return False
        if self.configuration.skip_system_actors and (context.is_system or context.is_temporary):
            return False
        if not self.filter_engine.matches_actor(context.path):
            return False
        return not sample or self.sampling.should_sample()

    def should_instrument_message(self, type_name: str) -> bool:
        return self.filter_engine.matches_message(type_name)

    def record(
        self,
        kind: MetricKind,
        name: str,
        tags: Mapping[str, str],
        value: float = 1.0,
    ) -> bool:
        """
        构建事件并转发到后端（合并公共标签）

        后端异常在此处被吞掉: 丢弃并记录日志，从不同步重试。

        Returns:
            是否被后端接收
        """
        event = MetricEvent(
            kind=kind,
            name=name,
            tags=merge_tags(tags, self.common_tags),
            value=value,
        )
        try:
            self.backend.record(event)
        except Exception as e:
            self._events_dropped += 1
            dropped = self._events_dropped
            if dropped == 1 or dropped % _DROP_LOG_EVERY == 0:
                logger.warning(
                    f"后端拒绝指标 {name}，已丢弃 (累计丢弃 {dropped}): {e}"
                )
            else:
                logger.debug(f"后端拒绝指标 {name}，已丢弃: {e}")
            return False
        self._events_emitted += 1
        return True

    # ========== 诊断 ==========

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.configuration.enabled,
            "modules": [m.module_id for m in self.get_modules()],
            "events_emitted": self._events_emitted,
            "events_dropped": self._events_dropped,
            "backend": self.backend.backend_type,
            "filter": repr(self.filter_engine),
            "sampling": self.configuration.sampling.strategy,
        }

    def shutdown(self) -> None:
        """关闭所有模块（不关闭后端）"""
        for module in self.get_modules():
            try:
                module.shutdown()
            except Exception as e:
                logger.warning(f"模块 {module.module_id} 关闭失败: {e}")

    def __repr__(self) -> str:
        return (
            f"MetricsRegistry(modules={list(self._modules)}, "
            f"backend={self.backend.backend_type})"
        )


# ========== 进程级活动槽位 ==========

_active: Optional[MetricsRegistry] = None
_install_lock = threading.Lock()


def install(registry: Optional[MetricsRegistry]) -> Optional[MetricsRegistry]:
    """
    原子设置 / 清空活动注册表

    读方看到的要么是旧注册表，要么是新注册表，从不会看到半构建状态
    （注册表在进入本函数前已完整构建，赋值是单次引用替换）。

    Returns:
        被替换下来的注册表
    """
    global _active
    with _install_lock:
        previous = _active
        _active = registry

    if registry is not None:
        logger.info(
            f"MetricsRegistry 已安装，启用 {len(registry.get_modules())} 个模块"
        )
    else:
        logger.info("MetricsRegistry 已清空，指标采集停止")
    return previous


def get_active() -> Optional[MetricsRegistry]:
    """热路径读取当前活动注册表（无锁）"""
    return _active
