"""
actor_metrics/modules/message.py — 消息处理模块

状态: Received → Processing → {Completed | Failed}

指标:
  - actor.message.processed       (counter) 每次处理尝试恰好 +1
  - actor.message.processing.time (timer)   Received 到终态的耗时（秒）
  - actor.message.failed          (counter) Failed 时额外 +1，附 error.type 标签
  标签: actor.path, actor.class, message.type（简单类名）

拦截点:
  - cell.invoke(envelope)  进入 → Received/Processing，退出 → 终态

消息过滤使用完全限定类名（module.QualName），标签使用简单类名。
采样只作用于本模块。
"""
import enum
import functools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..events import (
    MESSAGE_FAILED,
    MESSAGE_PROCESSED,
    MESSAGE_PROCESSING_TIME,
    TAG_MESSAGE_TYPE,
    MetricKind,
)
from ..registry import MetricsRegistry
from ..runtime import InterceptionRule, RuntimeBinding, message_type_of
from .base import InstrumentationModule, ModuleDescriptor

logger = logging.getLogger(__name__)

# 失败的处理尝试同时计入 processed 与 failed
COUNT_FAILURES_AS_PROCESSED = True

TAG_ERROR_TYPE = "error.type"


class MessageState(enum.Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageAttempt:
    """单次消息处理尝试（终态只能进入一次）"""

    __slots__ = ("registry", "tags", "state", "started_at")

    def __init__(self, registry: MetricsRegistry, tags: Dict[str, str]):
        self.registry = registry
        self.tags = tags
        self.state = MessageState.RECEIVED
        self.started_at = time.perf_counter()

    @property
    def finished(self) -> bool:
        return self.state in (MessageState.COMPLETED, MessageState.FAILED)


class MessageProcessingModule(InstrumentationModule):
    """消息处理指标"""

    descriptor = ModuleDescriptor(
        id="message-processing",
        default_enabled=True,
        description="消息处理指标 (processed, processing time, failed)",
    )

    def interception_rules(self, binding: RuntimeBinding) -> List[InterceptionRule]:
        self.binding = binding
        return [self._rule(binding.cell_class, binding.invoke_method, self._wrap_invoke)]

    def _wrap_invoke(self, original: Callable) -> Callable:
        module = self

        @functools.wraps(original)
        def invoke(cell, envelope, *args, **kwargs):
            attempt = module._safely("message_received", module.begin, cell, envelope)
            try:
                result = original(cell, envelope, *args, **kwargs)
            except BaseException as exc:
                if attempt is not None:
                    module._safely("message_failed", module.fail, attempt, exc)
                raise
            if attempt is not None:
                module._safely("message_completed", module.complete, attempt)
            return result

        return invoke

    # ========== 状态转换 ==========

    def begin(self, cell: Any, envelope: Any) -> Optional[MessageAttempt]:
        """Received → Processing；不观测时返回 None"""
        registry = self._active_registry()
        if registry is None:
            return None
        context = self._context(cell)
        if not registry.should_instrument(context):
            return None
        qualified, simple = message_type_of(envelope, self.binding)
        if not registry.should_instrument_message(qualified):
            return None

        tags = context.to_tags()
        tags[TAG_MESSAGE_TYPE] = simple
        attempt = MessageAttempt(registry, tags)
        attempt.state = MessageState.PROCESSING
        return attempt

    def complete(self, attempt: MessageAttempt) -> bool:
        """Processing → Completed"""
        return self._finish(attempt, MessageState.COMPLETED, None)

    def fail(self, attempt: MessageAttempt, error: Optional[BaseException] = None) -> bool:
        """Processing → Failed"""
        return self._finish(attempt, MessageState.FAILED, error)

    def _finish(
        self,
        attempt: MessageAttempt,
        state: MessageState,
        error: Optional[BaseException],
    ) -> bool:
        if attempt.finished:
            return False
        attempt.state = state
        elapsed = time.perf_counter() - attempt.started_at

        # 发射到创建该尝试时的注册表；期间被清空则丢弃
        registry = attempt.registry
        if self._active_registry() is not registry:
            return False

        registry.record(MetricKind.TIMER, MESSAGE_PROCESSING_TIME, attempt.tags, elapsed)
        if state is MessageState.COMPLETED or COUNT_FAILURES_AS_PROCESSED:
            registry.record(MetricKind.COUNTER, MESSAGE_PROCESSED, attempt.tags)
        if state is MessageState.FAILED:
            failed_tags = dict(attempt.tags)
            failed_tags[TAG_ERROR_TYPE] = type(error).__name__ if error is not None else "unknown"
            registry.record(MetricKind.COUNTER, MESSAGE_FAILED, failed_tags)
        return True
