"""
actor_metrics/modules/mailbox.py — Mailbox 模块

指标:
  - actor.mailbox.size (gauge) 当前队列深度，每次入队 / 出队更新
                       标签: actor.path, actor.class
  - actor.mailbox.time (timer) 入队到出队的等待时间（秒）
                       标签: actor.path, actor.class, message.type

拦截点:
  - cell.send_message(envelope)  进入时 → 入队
  - cell.invoke(envelope)        进入时 → 出队

深度按 actor 路径统计并在 0 处截断；注册表安装前已入队的消息
出队时没有时间戳，只更新深度。注册表清空期间出队仍会扣减已记录的深度（不发射）。
"""
import functools
import logging
import threading
import time
import weakref
from collections import OrderedDict, deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from ..events import MAILBOX_SIZE, MAILBOX_TIME, TAG_MESSAGE_TYPE, MetricKind
from ..runtime import InterceptionRule, RuntimeBinding, message_type_of
from .base import InstrumentationModule, ModuleDescriptor

logger = logging.getLogger(__name__)


class _Pending:
    """同一个 envelope 对象的待出队时间戳（先进先出）"""

    __slots__ = ("_ref", "_obj", "times")

    def __init__(self, envelope: Any):
        try:
            self._ref: Optional[weakref.ref] = weakref.ref(envelope)
            self._obj = None
        except TypeError:
            # tuple、str、__slots__ 类: 持有强引用，防止 id 被复用
            self._ref = None
            self._obj = envelope
        self.times: Deque[float] = deque()

    def holds(self, envelope: Any) -> bool:
        target = self._ref() if self._ref is not None else self._obj
        return target is envelope


class _EnqueueTimes:
    """
    envelope 身份 → 入队时间戳

    按 id() 索引并在取出时核对身份: 值相等的不同 envelope
    （frozen dataclass、重复的字符串消息）各自保留时间戳，
    同一对象多次入队按先进先出取回。总条目数有界，超出时淘汰最旧的。
    """

    def __init__(self, max_entries: int = 10000):
        self._entries: "OrderedDict[int, _Pending]" = OrderedDict()
        self._max_entries = max_entries
        self._lock = threading.Lock()

    def put(self, envelope: Any, timestamp: float) -> None:
        key = id(envelope)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.holds(envelope):
                entry = _Pending(envelope)
                self._entries[key] = entry
            else:
                self._entries.move_to_end(key)
            entry.times.append(timestamp)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def pop(self, envelope: Any, newest: bool = False) -> Optional[float]:
        key = id(envelope)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.holds(envelope):
                # 原对象已回收，id 被新对象复用
                del self._entries[key]
                return None
            timestamp = entry.times.pop() if newest else entry.times.popleft()
            if not entry.times:
                del self._entries[key]
            return timestamp

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entry.times) for entry in self._entries.values())


class MailboxModule(InstrumentationModule):
    """Mailbox 深度与等待时间指标"""

    descriptor = ModuleDescriptor(
        id="mailbox",
        default_enabled=True,
        description="Mailbox 指标 (size, enqueue-to-dequeue time)",
    )

    def __init__(self):
        super().__init__()
        self._depths: Dict[str, int] = {}
        self._enqueued = _EnqueueTimes()

    def depth(self, path: str) -> int:
        return self._depths.get(path, 0)

    def interception_rules(self, binding: RuntimeBinding) -> List[InterceptionRule]:
        self.binding = binding
        return [
            self._rule(binding.cell_class, binding.enqueue_method, self._wrap_enqueue),
            self._rule(binding.cell_class, binding.invoke_method, self._wrap_dequeue),
        ]

    def _wrap_enqueue(self, original: Callable) -> Callable:
        module = self

        @functools.wraps(original)
        def send_message(cell, envelope, *args, **kwargs):
            enqueued = module._safely("mailbox_enqueue", module.on_enqueue, cell, envelope)
            try:
                return original(cell, envelope, *args, **kwargs)
            except BaseException:
                # 入队失败，撤销已记录的深度
                if enqueued:
                    module._safely("mailbox_enqueue_rollback", module.on_enqueue_failed, cell, envelope)
                raise

        return send_message

    def _wrap_dequeue(self, original: Callable) -> Callable:
        module = self

        @functools.wraps(original)
        def invoke(cell, envelope, *args, **kwargs):
            module._safely("mailbox_dequeue", module.on_dequeue, cell, envelope)
            return original(cell, envelope, *args, **kwargs)

        return invoke

    # ========== 入队 / 出队 ==========

    def on_enqueue(self, cell: Any, envelope: Any) -> bool:
        registry = self._active_registry()
        if registry is None:
            return False
        context = self._context(cell)
        if not registry.should_instrument(context, sample=False):
            return False

        self._enqueued.put(envelope, time.perf_counter())
        depth, stamp = self._adjust(context.path, 1)
        self._publish_gauge(registry, MAILBOX_SIZE, context.to_tags(), context.path, depth, stamp)
        return True

    def on_dequeue(self, cell: Any, envelope: Any) -> bool:
        enqueued_at = self._enqueued.pop(envelope)
        now = time.perf_counter()
        registry = self._active_registry()
        if registry is None and not self._depths:
            return False

        context = self._context(cell)
        if registry is None or not registry.should_instrument(context, sample=False):
            if context.path in self._depths:
                self._adjust(context.path, -1)
            return False

        tags = context.to_tags()
        depth, stamp = self._adjust(context.path, -1)
        self._publish_gauge(registry, MAILBOX_SIZE, tags, context.path, depth, stamp)

        if enqueued_at is not None:
            _, simple = message_type_of(envelope, self.binding)
            timer_tags = dict(tags)
            timer_tags[TAG_MESSAGE_TYPE] = simple
            registry.record(MetricKind.TIMER, MAILBOX_TIME, timer_tags, max(now - enqueued_at, 0.0))
        return True

    def on_enqueue_failed(self, cell: Any, envelope: Any) -> None:
        """宿主入队抛出异常: 撤销深度，不记录等待时间"""
        self._enqueued.pop(envelope, newest=True)
        context = self._context(cell)
        depth, stamp = self._adjust(context.path, -1)
        registry = self._active_registry()
        if registry is not None:
            self._publish_gauge(registry, MAILBOX_SIZE, context.to_tags(), context.path, depth, stamp)

    def _adjust(self, path: str, delta: int) -> Tuple[int, Optional[int]]:
        """更新深度并返回 (新深度, 变化戳)；深度归零时移除该路径"""
        with self._lock:
            depth = max(self._depths.get(path, 0) + delta, 0)
            if depth:
                self._depths[path] = depth
                return depth, self._stamp(path)
            self._depths.pop(path, None)
            self._stamps.pop(path, None)
            return 0, None

    def _gauge_value(self, key) -> float:
        return float(self._depths.get(key, 0))

    def shutdown(self) -> None:
        with self._lock:
            self._depths.clear()
            self._stamps.clear()
        self._enqueued.clear()

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            "tracked_mailboxes": len(self._depths),
            "pending_timestamps": len(self._enqueued),
        })
        return stats
