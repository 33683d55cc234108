"""
actor_metrics/backend.py — 指标后端契约

后端由调用方创建并管理生命周期，注册表只调用 record()。

实现约束:
  - record() 可被多个线程同时调用，必须线程安全
  - record() 不能无限期阻塞调用线程（被观测的 actor 线程）
  - 背压由后端自身策略处理（缓冲丢弃 / 异步刷新）

内置实现（零外部依赖）:
  - InMemoryBackend: 内存环形缓冲区，可查询（诊断 / 测试）
  - CompositeBackend: 扇出到多个后端
Prometheus / 结构化日志 / 异步缓冲后端见 actor_metrics_observability。
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .events import MetricEvent, MetricKind
from .exceptions import BackendError

logger = logging.getLogger(__name__)


class MetricsBackend(ABC):
    """指标后端抽象基类"""

    @abstractmethod
    def record(self, event: MetricEvent) -> None:
        """
        接收一个指标事件并转发到外部系统

        Raises:
            BackendError: 后端拒绝该事件（由注册表丢弃并记录）
        """
        ...

    @property
    def backend_type(self) -> str:
        return type(self).__name__

    def get_stats(self) -> Dict[str, Any]:
        return {"type": self.backend_type}


class InMemoryBackend(MetricsBackend):
    """
    内存后端

    特性:
    - 环形缓冲区保留最近 N 个事件（可查询）
    - 维护 counter 累计值与 gauge 最新值
    - 自身的锁只保护自身状态，不会与宿主代码的锁交叉

    使用方式:
        backend = InMemoryBackend(buffer_size=10000)
        ...
        backend.query(name="actor.created")
        backend.counter_total("actor.message.processed")
    """

    def __init__(self, buffer_size: int = 10000):
        self._buffer: deque = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
        self._gauges: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
        self._total_recorded = 0

    def record(self, event: MetricEvent) -> None:
        key = (event.name, tuple(sorted(event.tags.items())))
        with self._lock:
            self._buffer.append(event)
            self._total_recorded += 1
            if event.kind is MetricKind.COUNTER:
                self._counters[key] = self._counters.get(key, 0.0) + event.value
            elif event.kind is MetricKind.GAUGE:
                self._gauges[key] = event.value

    def query(
        self,
        name: Optional[str] = None,
        kind: Optional[MetricKind] = None,
        limit: int = 100,
        since: Optional[float] = None,
    ) -> List[MetricEvent]:
        """
        查询最近事件

        Args:
            name: 过滤指标名
            kind: 过滤指标类型
            limit: 返回数量
            since: 起始时间戳
        """
        with self._lock:
            events = list(self._buffer)
        if name:
            events = [e for e in events if e.name == name]
        if kind:
            events = [e for e in events if e.kind is kind]
        if since:
            events = [e for e in events if e.timestamp >= since]
        return events[-limit:]

    def counter_total(self, name: str, **tags: str) -> float:
        """counter 累计值（可按标签子集过滤，标签键中的 . 用 _ 传入）"""
        wanted = {k.replace("_", "."): v for k, v in tags.items()}
        with self._lock:
            items = list(self._counters.items())
        return sum(
            value for (metric, tag_items), value in items
            if metric == name and wanted.items() <= dict(tag_items).items()
        )

    def gauge_value(self, name: str, **tags: str) -> Optional[float]:
        """gauge 最新值（多个序列匹配时返回最后一个）"""
        wanted = {k.replace("_", "."): v for k, v in tags.items()}
        with self._lock:
            items = list(self._gauges.items())
        result = None
        for (metric, tag_items), value in items:
            if metric == name and wanted.items() <= dict(tag_items).items():
                result = value
        return result

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()
            self._counters.clear()
            self._gauges.clear()
            self._total_recorded = 0

    def __len__(self) -> int:
        return len(self._buffer)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "type": self.backend_type,
                "total_recorded": self._total_recorded,
                "buffer_size": len(self._buffer),
                "buffer_capacity": self._buffer.maxlen,
                "counter_series": len(self._counters),
                "gauge_series": len(self._gauges),
            }


class CompositeBackend(MetricsBackend):
    """
    扇出后端 — 把事件转发给所有子后端

    单个子后端失败不影响其它子后端；只要有一个失败，
    record() 最后抛出 BackendError（由注册表计入丢弃）。
    """

    def __init__(self, backends: Sequence[MetricsBackend]):
        self._backends = tuple(backends)

    @property
    def backends(self) -> Tuple[MetricsBackend, ...]:
        return self._backends

    def record(self, event: MetricEvent) -> None:
        failures = []
        for backend in self._backends:
            try:
                backend.record(event)
            except Exception as e:
                failures.append(f"{backend.backend_type}: {e}")
        if failures:
            raise BackendError("; ".join(failures))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "type": self.backend_type,
            "backends": [b.get_stats() for b in self._backends],
        }
