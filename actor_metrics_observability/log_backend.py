"""
actor_metrics_observability/log_backend.py — 结构化日志后端

每个 MetricEvent 写成一行日志，适合没有 Prometheus 的环境或排障。

    json: {"time": ..., "level": "INFO", "logger": ..., "event": "actor.created=1 ...",
           "metric": {"kind": ..., "name": ..., "value": ..., "tags": {...}, "timestamp": ...}}
    text: 2024-01-01T00:00:00 [INFO] counter actor.created=1 actor.path=/user/a

级别: actor.message.failed → WARNING，生命周期指标 → INFO，其余逐消息指标 → DEBUG。
输出到 stream（默认 stderr），可选再写入按大小轮转的文件。
"""
import json
import logging
import logging.handlers
from typing import Any, Dict, List, Optional

from actor_metrics.backend import MetricsBackend
from actor_metrics.events import (
    ACTOR_ACTIVE,
    ACTOR_CREATED,
    ACTOR_TERMINATED,
    MESSAGE_FAILED,
    MetricEvent,
    MetricKind,
)
from actor_metrics.exceptions import BackendError

logger = logging.getLogger(__name__)

_LIFECYCLE_METRICS = frozenset({ACTOR_CREATED, ACTOR_TERMINATED, ACTOR_ACTIVE})

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(metric_kind)s %(message)s"
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


class LogBackend(MetricsBackend):
    """
    结构化日志后端

    使用方式:
        backend = LogBackend(format="json", file="/var/log/actor_metrics.log")
        registry = MetricsRegistry.build(config, backend)
        # ...
        backend.shutdown()

    事件写入独立 logger（默认 actor_metrics.events），不传播到根 logger，
    同名 logger 再次创建后端时会替换旧的 handler。
    """

    def __init__(
        self,
        format: str = "json",
        level: str = "INFO",
        file: Optional[str] = None,
        max_bytes: int = 100 * 1024 * 1024,
        backup_count: int = 5,
        logger_name: str = "actor_metrics.events",
        stream: Optional[Any] = None,
    ):
        """
        Args:
            format: "json" 或 "text"
            level: 最低输出级别
            file: 额外写入的文件（None 表示只写 stream）
            max_bytes: 文件轮转大小
            backup_count: 轮转保留份数
            logger_name: 事件 logger 名称
            stream: 输出流（默认 sys.stderr）
        """
        self._format = format
        self._level = getattr(logging, level.upper(), logging.INFO)
        self._event_count = 0

        self._logger = logging.getLogger(logger_name)
        self._logger.setLevel(self._level)
        self._logger.propagate = False
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)

        formatter = _JsonFormatter() if format == "json" else logging.Formatter(
            _TEXT_FORMAT, datefmt=_TIME_FORMAT,
        )
        for handler in self._build_handlers(stream, file, max_bytes, backup_count):
            handler.setFormatter(formatter)
            handler.setLevel(self._level)
            self._logger.addHandler(handler)

    @staticmethod
    def _build_handlers(
        stream: Optional[Any],
        file: Optional[str],
        max_bytes: int,
        backup_count: int,
    ) -> List[logging.Handler]:
        handlers: List[logging.Handler] = [logging.StreamHandler(stream)]
        if file:
            handlers.append(logging.handlers.RotatingFileHandler(
                file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
            ))
        return handlers

    def record(self, event: MetricEvent) -> None:
        self._event_count += 1
        try:
            self._logger.log(
                self._level_for(event),
                self._format_event(event),
                extra={"metric_kind": event.kind.value, "metric_event": event},
            )
        except Exception as e:
            raise BackendError(f"日志输出失败 ({event.name}): {e}") from e

    @staticmethod
    def _level_for(event: MetricEvent) -> int:
        if event.name == MESSAGE_FAILED:
            return logging.WARNING
        if event.name in _LIFECYCLE_METRICS:
            return logging.INFO
        return logging.DEBUG

    def _format_event(self, event: MetricEvent) -> str:
        tags = " ".join(f"{k}={v}" for k, v in sorted(event.tags.items()))
        if event.kind is MetricKind.TIMER:
            head = f"{event.name} {event.value * 1000:.3f}ms"
        else:
            head = f"{event.name}={event.value:g}"
        return f"{head} {tags}" if tags else head

    def get_stats(self) -> Dict[str, Any]:
        return {
            "type": self.backend_type,
            "format": self._format,
            "event_count": self._event_count,
            "handlers": len(self._logger.handlers),
        }

    def shutdown(self) -> None:
        """刷新并移除本后端的 handler"""
        for handler in list(self._logger.handlers):
            handler.flush()
            handler.close()
            self._logger.removeHandler(handler)
        logger.info(f"LogBackend 已关闭 (共输出 {self._event_count} 个事件)")


class _JsonFormatter(logging.Formatter):
    """一行一个 JSON 对象"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "time": self.formatTime(record, _TIME_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        event = getattr(record, "metric_event", None)
        if event is not None:
            entry["metric"] = {
                "kind": event.kind.value,
                "name": event.name,
                "value": event.value,
                "tags": dict(event.tags),
                "timestamp": event.timestamp,
            }
        return json.dumps(entry, ensure_ascii=False, default=str)
