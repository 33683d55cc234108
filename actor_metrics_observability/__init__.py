"""
actor-metrics-observability — actor-metrics 可观测性附加包

为 actor_metrics 提供生产级后端与运维能力:
  - Prometheus 指标导出（Counter / Histogram / Gauge）
  - 结构化日志后端（JSON / Text）
  - 异步缓冲后端（有界队列 + 后台刷新）
  - 健康检查（注册表 / 后端 / 集群脑裂风险）与 HTTP 端点

设计原则:
  1. 零侵入: 只通过 MetricsBackend 契约接收事件
  2. Fail-Open: 可观测性组件故障只会让指标缺失
  3. 配置驱动: ObservabilityConfig + ACTOR_METRICS_* 环境变量

使用方式:
    from actor_metrics import agent
    agent.premain()                      # 进程启动时

    from actor_metrics_observability import setup_metrics
    setup_metrics(config_path="actor_metrics.yaml")
    # ...
    shutdown_metrics()
"""

__version__ = "1.0.0"

from .config import ObservabilityConfig
from .stack import MetricsStack
from .integration import setup_metrics, shutdown_metrics, get_global_stack
from .prometheus_backend import PrometheusBackend
from .log_backend import LogBackend
from .buffered_backend import BufferedBackend
from .health import (
    ClusterHealth,
    ClusterState,
    HealthChecker,
    HealthStatus,
    SplitBrainRisk,
    classify_cluster,
)

__all__ = [
    # 核心入口
    "setup_metrics",
    "shutdown_metrics",
    "get_global_stack",
    "MetricsStack",
    "ObservabilityConfig",
    # 后端
    "PrometheusBackend",
    "LogBackend",
    "BufferedBackend",
    # 健康检查
    "HealthChecker",
    "HealthStatus",
    "SplitBrainRisk",
    "ClusterState",
    "ClusterHealth",
    "classify_cluster",
]
