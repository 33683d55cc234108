"""
actor_metrics_observability/stack.py — 指标组件编排

MetricsStack 负责把配置、后端链、注册表和健康检查串起来:
  - PrometheusBackend / LogBackend（按配置创建，多个时扇出）
  - BufferedBackend（可选，异步刷新）
  - MetricsRegistry（注册 Agent 已挂载的模块）
  - HealthChecker

启动顺序: 后端 → HTTP 端点 → install(registry)
关闭顺序: install(None) → 模块 → 自有后端 → HTTP 端点
调用方传入的 backend 不归本编排器管理，不会被关闭。
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from actor_metrics import agent
from actor_metrics.backend import CompositeBackend, InMemoryBackend, MetricsBackend
from actor_metrics.config import MetricsConfiguration
from actor_metrics.modules import InstrumentationModule
from actor_metrics.registry import MetricsRegistry, get_active, install

from .buffered_backend import BufferedBackend
from .config import ObservabilityConfig
from .health import HealthChecker
from .log_backend import LogBackend
from .prometheus_backend import PrometheusBackend, _PROMETHEUS_AVAILABLE

logger = logging.getLogger(__name__)


class MetricsStack:
    """
    指标组件编排器

    使用方式:
        agent.premain(binding)                      # 进程启动时
        stack = MetricsStack(MetricsConfiguration.from_env(), ObservabilityConfig())
        stack.start()                               # 开始产生指标
        # ...
        stack.shutdown()
    """

    def __init__(
        self,
        metrics_config: Optional[MetricsConfiguration] = None,
        observability_config: Optional[ObservabilityConfig] = None,
        backend: Optional[MetricsBackend] = None,
        modules: Optional[Sequence[InstrumentationModule]] = None,
        prometheus_registry: Optional[Any] = None,
    ):
        self.metrics_config = metrics_config or MetricsConfiguration()
        self.config = observability_config or ObservabilityConfig()
        self._prometheus_registry = prometheus_registry
        self._running = False

        # 组件实例（按需创建）
        self.prometheus: Optional[PrometheusBackend] = None
        self.log_backend: Optional[LogBackend] = None
        self.buffered: Optional[BufferedBackend] = None
        self.health: Optional[HealthChecker] = None

        self.backend = backend if backend is not None else self._create_backends()
        self.registry = MetricsRegistry.build(self.metrics_config, self.backend)

        for module in (agent.installed_modules() if modules is None else modules):
            self.registry.register_module(module)

        if self.config.health_enabled:
            self.health = HealthChecker(
                degraded_ratio=self.config.cluster_degraded_ratio,
                critical_ratio=self.config.cluster_critical_ratio,
            )

    def _create_backends(self) -> MetricsBackend:
        """按配置组装后端链: 外部后端（多个时扇出）→ 可选缓冲"""
        cfg = self.config
        self.prometheus = self._try_create(
            "PrometheusBackend",
            cfg.prometheus_enabled and _PROMETHEUS_AVAILABLE,
            lambda: PrometheusBackend(
                namespace=cfg.prometheus_namespace,
                registry=self._prometheus_registry,
                buckets=cfg.prometheus_buckets,
            ),
        )
        self.log_backend = self._try_create(
            "LogBackend",
            cfg.log_enabled,
            lambda: LogBackend(**_log_backend_options(cfg)),
        )

        sinks: List[MetricsBackend] = [b for b in (self.prometheus, self.log_backend) if b]
        if not sinks:
            logger.info("未配置外部后端，指标保留在 InMemoryBackend")
            sinks = [InMemoryBackend()]
        chain = sinks[0] if len(sinks) == 1 else CompositeBackend(sinks)

        if not cfg.buffer_enabled:
            return chain
        self.buffered = BufferedBackend(
            chain,
            max_size=cfg.buffer_size,
            flush_interval=cfg.buffer_flush_interval,
            batch_size=cfg.buffer_batch_size,
        )
        return self.buffered

    @staticmethod
    def _try_create(name: str, wanted: bool, factory: Callable[[], Any]) -> Optional[Any]:
        if not wanted:
            return None
        try:
            return factory()
        except Exception as e:
            logger.warning(f"{name} 创建失败，跳过: {e}")
            return None

    @property
    def running(self) -> bool:
        return self._running

    def _owned(self) -> List[Any]:
        """本编排器创建并负责关闭的组件（关闭顺序）"""
        return [c for c in (self.buffered, self.prometheus, self.log_backend, self.health) if c]

    def start(self) -> None:
        """启动组件并安装注册表"""
        if self._running:
            logger.warning("MetricsStack 重复启动，忽略")
            return

        cfg = self.config
        if self.buffered is not None:
            self.buffered.start()
        if self.prometheus is not None and cfg.prometheus_start_server:
            self.prometheus.start_server(cfg.prometheus_port)
        if self.health is not None and cfg.health_start_server:
            self.health.start_server(port=cfg.health_port, path=cfg.health_path)

        install(self.registry)
        self._running = True

        enabled = [
            name for name, component in (
                ("prometheus", self.prometheus),
                ("log", self.log_backend),
                ("buffered", self.buffered),
                ("health", self.health),
            ) if component is not None
        ]
        logger.info(
            f"MetricsStack 已启动: {len(self.registry.get_modules())} 个模块, "
            f"组件 {enabled or ['memory']}"
        )

    def shutdown(self) -> None:
        """清空活动注册表后关闭自有组件"""
        if get_active() is self.registry:
            install(None)
        self._running = False
        self.registry.shutdown()

        for component in self._owned():
            try:
                component.shutdown()
            except Exception as e:
                logger.warning(f"{type(component).__name__} 关闭失败: {e}")
        logger.info("MetricsStack 已关闭")

    def get_stats(self) -> Dict[str, Any]:
        """运行状态、注册表和后端链的统计快照"""
        stats: Dict[str, Any] = {
            "running": self._running,
            "registry": self.registry.get_stats(),
            "backend": self.backend.get_stats(),
        }
        report = agent.get_report()
        if report is not None:
            stats["agent"] = report.to_dict()
        return stats


def _log_backend_options(cfg: ObservabilityConfig) -> Dict[str, Any]:
    return {
        "format": cfg.log_format,
        "level": cfg.log_level,
        "file": cfg.log_file,
        "max_bytes": cfg.log_max_bytes,
        "backup_count": cfg.log_backup_count,
    }
