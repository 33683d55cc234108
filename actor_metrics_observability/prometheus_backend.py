"""
actor_metrics_observability/prometheus_backend.py — Prometheus 后端

把 MetricEvent 翻译成 prometheus_client 指标:

    counter → Counter    actor.created              → actor_created_total
    gauge   → Gauge      actor.mailbox.size         → actor_mailbox_size
    timer   → Histogram  actor.message.processing.time
                                                    → actor_message_processing_time_seconds

名称与标签键中的非法字符替换为 _（actor.path → actor_path）。
每个指标的标签集合由第一个事件确定，之后标签集合不一致的事件被拒绝
（BackendError，由注册表丢弃并记录）。

prometheus_client 的 child 操作本身线程安全且不做 I/O，
HTTP 抓取由独立的服务线程处理，不会阻塞被观测线程。
"""
import logging
import re
import threading
from typing import Any, Dict, Optional, Sequence, Tuple

from actor_metrics.backend import MetricsBackend
from actor_metrics.events import MetricEvent, MetricKind
from actor_metrics.exceptions import BackendError

logger = logging.getLogger(__name__)

# 尝试导入 prometheus_client（可选依赖）
_PROMETHEUS_AVAILABLE = False
try:
    from prometheus_client import (
        Counter,
        Histogram,
        Gauge,
        start_http_server,
        REGISTRY,
    )
    _PROMETHEUS_AVAILABLE = True
except ImportError:
    pass

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_]")

# 消息处理 / 排队耗时分桶（秒）
DEFAULT_BUCKETS = (
    0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05,
    0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)


def sanitize_name(name: str) -> str:
    """转换为合法的 Prometheus 名称（actor.mailbox.size → actor_mailbox_size）"""
    sanitized = _INVALID_CHARS.sub("_", name)
    if not sanitized or sanitized[0].isdigit():
        sanitized = "_" + sanitized
    return sanitized


def sanitize_label(key: str) -> str:
    label = sanitize_name(key)
    # __ 前缀为 Prometheus 保留
    if label.startswith("__"):
        label = "tag" + label
    return label


class PrometheusBackend(MetricsBackend):
    """
    Prometheus 后端

    使用方式:
        backend = PrometheusBackend(namespace="orders")
        backend.start_server(9095)  # 可选: 启动 /metrics 端点
        registry = MetricsRegistry.build(config, backend)
    """

    def __init__(
        self,
        namespace: str = "",
        registry: Optional[Any] = None,
        buckets: Optional[Sequence[float]] = None,
    ):
        if not _PROMETHEUS_AVAILABLE:
            raise ImportError(
                "prometheus_client 未安装。请运行: pip install prometheus-client"
            )

        self._namespace = sanitize_name(namespace) if namespace else ""
        self._registry = registry or REGISTRY
        self._buckets = tuple(buckets) if buckets else DEFAULT_BUCKETS
        self._server_started = False
        self._port: Optional[int] = None

        # 事件名 → (collector, 标签名元组, kind)
        self._metrics: Dict[str, Tuple[Any, Tuple[str, ...], MetricKind]] = {}
        self._create_lock = threading.Lock()

        self._recorded = 0
        self._rejected = 0

        logger.info(f"PrometheusBackend 初始化: namespace={namespace or '-'}")

    def metric_name(self, event_name: str, kind: MetricKind) -> str:
        """事件名对应的 Prometheus 指标名（Counter 暴露时再加 _total）"""
        name = sanitize_name(event_name)
        if kind is MetricKind.TIMER:
            name += "_seconds"
        if self._namespace:
            name = f"{self._namespace}_{name}"
        return name

    def record(self, event: MetricEvent) -> None:
        labels = {sanitize_label(k): str(v) for k, v in event.tags.items()}
        label_names = tuple(sorted(labels))

        entry = self._metrics.get(event.name)
        if entry is None:
            entry = self._create(event, label_names)

        collector, expected, kind = entry
        if kind is not event.kind:
            self._rejected += 1
            raise BackendError(
                f"{event.name} 已注册为 {kind.value}，收到 {event.kind.value}"
            )
        if label_names != expected:
            self._rejected += 1
            raise BackendError(
                f"{event.name} 标签集合不一致: 期望 {list(expected)}，实际 {list(label_names)}"
            )

        try:
            child = collector.labels(**labels) if expected else collector
            if kind is MetricKind.COUNTER:
                child.inc(event.value)
            elif kind is MetricKind.GAUGE:
                child.set(event.value)
            else:
                child.observe(event.value)
        except ValueError as e:
            self._rejected += 1
            raise BackendError(f"Prometheus 拒绝 {event.name}: {e}") from e
        self._recorded += 1

    def _create(
        self,
        event: MetricEvent,
        label_names: Tuple[str, ...],
    ) -> Tuple[Any, Tuple[str, ...], MetricKind]:
        with self._create_lock:
            entry = self._metrics.get(event.name)
            if entry is not None:
                return entry

            name = self.metric_name(event.name, event.kind)
            documentation = f"{event.name} ({event.kind.value})"
            try:
                if event.kind is MetricKind.COUNTER:
                    collector = Counter(name, documentation, label_names, registry=self._registry)
                elif event.kind is MetricKind.GAUGE:
                    collector = Gauge(name, documentation, label_names, registry=self._registry)
                else:
                    collector = Histogram(
                        name,
                        documentation,
                        label_names,
                        buckets=self._buckets,
                        registry=self._registry,
                    )
            except ValueError as e:
                # 同名指标已在 CollectorRegistry 中注册
                self._rejected += 1
                raise BackendError(f"无法注册 Prometheus 指标 {name}: {e}") from e

            entry = (collector, label_names, event.kind)
            self._metrics[event.name] = entry
            logger.debug(f"注册 Prometheus 指标: {name} {list(label_names)}")
            return entry

    def start_server(self, port: int = 9095) -> None:
        """启动 Prometheus HTTP 端点"""
        if self._server_started:
            logger.warning("Prometheus HTTP 端点已启动")
            return

        try:
            start_http_server(port, registry=self._registry)
            self._server_started = True
            self._port = port
            logger.info(f"Prometheus HTTP 端点已启动: http://0.0.0.0:{port}/metrics")
        except Exception as e:
            logger.error(f"Prometheus HTTP 端点启动失败: {e}")

    def shutdown(self) -> None:
        """关闭"""
        self._server_started = False
        logger.info("PrometheusBackend 已关闭")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "type": self.backend_type,
            "namespace": self._namespace,
            "metrics": len(self._metrics),
            "recorded": self._recorded,
            "rejected": self._rejected,
            "server_started": self._server_started,
            "port": self._port,
        }
