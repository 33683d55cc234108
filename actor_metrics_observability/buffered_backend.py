"""
actor_metrics_observability/buffered_backend.py — 异步缓冲后端

包装另一个后端: 被观测线程只做一次非阻塞入队，
后台 flush 线程批量转发给真实后端。

设计要点:
  - 有界队列，满时丢弃（put_nowait，从不阻塞热路径）
  - 定时 / 批量刷新
  - 被包装后端的异常在 flush 线程内吞掉并计数
  - start() / shutdown() 由调用方负责
"""
import logging
import queue
import threading
from typing import Any, Dict, List, Optional

from actor_metrics.backend import MetricsBackend
from actor_metrics.events import MetricEvent
from actor_metrics.exceptions import BackendError

logger = logging.getLogger(__name__)


class BufferedBackend(MetricsBackend):
    """
    异步缓冲后端

    使用方式:
        backend = BufferedBackend(PrometheusBackend(), max_size=10000)
        backend.start()
        # ...
        backend.shutdown()  # 停止线程并刷新剩余事件
    """

    def __init__(
        self,
        delegate: MetricsBackend,
        max_size: int = 10000,
        flush_interval: float = 0.5,
        batch_size: int = 500,
    ):
        self._delegate = delegate
        self._queue: "queue.Queue[MetricEvent]" = queue.Queue(maxsize=max_size)
        self._max_size = max_size
        self._flush_interval = flush_interval
        self._batch_size = batch_size

        self._stop_event = threading.Event()
        self._flush_thread: Optional[threading.Thread] = None
        self._flush_lock = threading.Lock()

        self._dropped = 0
        self._forwarded = 0
        self._delegate_errors = 0

    @property
    def delegate(self) -> MetricsBackend:
        return self._delegate

    @property
    def running(self) -> bool:
        return self._flush_thread is not None and self._flush_thread.is_alive()

    def record(self, event: MetricEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self._dropped += 1
            raise BackendError(f"缓冲区已满 ({self._max_size})，事件已丢弃: {event.name}")

    def start(self) -> None:
        """启动后台 flush 线程"""
        if self.running:
            logger.warning("BufferedBackend 已启动")
            return
        self._stop_event.clear()
        self._flush_thread = threading.Thread(
            target=self._run,
            name="actor-metrics-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info(
            f"BufferedBackend 已启动: delegate={self._delegate.backend_type}, "
            f"max_size={self._max_size}, flush_interval={self._flush_interval}s"
        )

    def _run(self) -> None:
        while not self._stop_event.wait(self._flush_interval):
            self.flush()

    def flush(self) -> int:
        """
        把队列中的事件转发给被包装后端

        Returns:
            本次转发成功的事件数
        """
        forwarded = 0
        with self._flush_lock:
            while True:
                batch = self._drain(self._batch_size)
                if not batch:
                    break
                for event in batch:
                    try:
                        self._delegate.record(event)
                        forwarded += 1
                    except Exception as e:
                        self._delegate_errors += 1
                        if self._delegate_errors == 1 or self._delegate_errors % 1000 == 0:
                            logger.warning(
                                f"后端 {self._delegate.backend_type} 写入失败 "
                                f"(累计 {self._delegate_errors}): {e}"
                            )
            self._forwarded += forwarded
        return forwarded

    def _drain(self, limit: int) -> List[MetricEvent]:
        batch: List[MetricEvent] = []
        while len(batch) < limit:
            try:
                batch.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return batch

    def shutdown(self, timeout: float = 5.0) -> None:
        """停止 flush 线程并刷新剩余事件"""
        self._stop_event.set()
        if self._flush_thread is not None:
            self._flush_thread.join(timeout=timeout)
            self._flush_thread = None
        remaining = self.flush()
        logger.info(f"BufferedBackend 已关闭 (最终刷新 {remaining} 个事件)")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "type": self.backend_type,
            "running": self.running,
            "pending": self._queue.qsize(),
            "capacity": self._max_size,
            "dropped": self._dropped,
            "forwarded": self._forwarded,
            "delegate_errors": self._delegate_errors,
            "delegate": self._delegate.get_stats(),
        }
