"""
actor_metrics/events.py — 指标事件模型

模块发射的统一载荷: kind / name / tags / value / timestamp。
指标名称与类型对下游 Dashboard 是精确契约，不得修改。
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping


class MetricKind(Enum):
    """指标类型"""
    COUNTER = "counter"
    GAUGE = "gauge"
    TIMER = "timer"  # value 单位: 秒


# === 指标名称（对外契约） ===
ACTOR_CREATED = "actor.created"
ACTOR_TERMINATED = "actor.terminated"
ACTOR_ACTIVE = "actor.active"
MESSAGE_PROCESSED = "actor.message.processed"
MESSAGE_PROCESSING_TIME = "actor.message.processing.time"
MESSAGE_FAILED = "actor.message.failed"
MAILBOX_SIZE = "actor.mailbox.size"
MAILBOX_TIME = "actor.mailbox.time"

METRIC_KINDS: Mapping[str, MetricKind] = MappingProxyType({
    ACTOR_CREATED: MetricKind.COUNTER,
    ACTOR_TERMINATED: MetricKind.COUNTER,
    ACTOR_ACTIVE: MetricKind.GAUGE,
    MESSAGE_PROCESSED: MetricKind.COUNTER,
    MESSAGE_PROCESSING_TIME: MetricKind.TIMER,
    MESSAGE_FAILED: MetricKind.COUNTER,
    MAILBOX_SIZE: MetricKind.GAUGE,
    MAILBOX_TIME: MetricKind.TIMER,
})

# === 标签键 ===
TAG_ACTOR_PATH = "actor.path"
TAG_ACTOR_CLASS = "actor.class"
TAG_MESSAGE_TYPE = "message.type"


@dataclass(frozen=True)
class MetricEvent:
    """单个指标事件（不可变）"""
    kind: MetricKind
    name: str
    tags: Mapping[str, str]
    value: float
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if not isinstance(self.tags, MappingProxyType):
            object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "tags": dict(self.tags),
            "value": self.value,
            "timestamp": self.timestamp,
        }


def merge_tags(event_tags: Mapping[str, str], common_tags: Mapping[str, str]) -> Dict[str, str]:
    """合并标签: 公共标签在前，事件自身标签覆盖同名公共标签"""
    if not common_tags:
        return dict(event_tags)
    merged = dict(common_tags)
    merged.update(event_tags)
    return merged
