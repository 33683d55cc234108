"""
actor_metrics/config.py — 指标配置

配置在构建后不可变（frozen dataclass + 只读映射），
FilterEngine / SamplingStrategy 在注册表构建时从这里编译一次。

加载方式:
    # 1. 直接创建
    config = MetricsConfiguration(common_tags={"application": "orders"})

    # 2. 从字典 / YAML 加载
    config = MetricsConfiguration.from_dict({"filters": {"actor_include": ["orders-*"]}})
    config = MetricsConfiguration.from_yaml("actor_metrics.yaml")

    # 3. 环境变量覆盖
    config = MetricsConfiguration.from_env(base=config)
"""
import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import ConfigurationError

ENV_ENABLED = "ACTOR_METRICS_ENABLED"
ENV_TAG_PREFIX = "ACTOR_METRICS_TAG_"
ENV_SAMPLING_RATE = "ACTOR_METRICS_SAMPLING_RATE"
ENV_FILTER_PREFIX = "ACTOR_METRICS_FILTER_"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})

SAMPLING_STRATEGIES = ("always", "never", "rate-based", "adaptive")


def parse_bool(value: Any, name: str = "value") -> bool:
    """解析布尔配置值（bool / "true" / "1" / "off" ...）"""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"无法解析布尔配置 {name}={value!r}")


def _as_patterns(value: Any, name: str) -> Tuple[str, ...]:
    """把 None / str / 列表统一成 glob 字符串元组"""
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError(
            f"{name} 必须是字符串列表，实际为 {type(value).__name__}"
        )
    for item in value:
        if not isinstance(item, str):
            raise ConfigurationError(f"{name} 中包含非字符串模式: {item!r}")
    return tuple(value)


def _split_env_list(raw: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class FilterConfig:
    """过滤配置 — 4 个有序 glob 列表"""
    actor_include: Tuple[str, ...] = ()
    actor_exclude: Tuple[str, ...] = ()
    message_include: Tuple[str, ...] = ()
    message_exclude: Tuple[str, ...] = ()

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, _as_patterns(getattr(self, f.name), f.name))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FilterConfig":
        """从字典创建（同时接受 actor_include / actor-include 两种键名）"""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(f"filters 必须是字典，实际为 {type(data).__name__}")
        normalized = {str(k).replace("-", "_"): v for k, v in data.items()}
        valid_fields = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in normalized.items() if k in valid_fields})


@dataclass(frozen=True)
class SamplingConfig:
    """采样配置: always / never / rate-based / adaptive"""
    strategy: str = "always"
    rate: float = 1.0
    target_throughput: int = 1000
    min_rate: float = 0.01
    max_rate: float = 1.0

    def __post_init__(self):
        strategy = str(self.strategy).strip().lower().replace("_", "-")
        if strategy not in SAMPLING_STRATEGIES:
            raise ConfigurationError(
                f"未知的采样策略: {self.strategy!r}，可选: {SAMPLING_STRATEGIES}"
            )
        object.__setattr__(self, "strategy", strategy)

        for name in ("rate", "min_rate", "max_rate"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"{name} 必须是数值，实际为 {value!r}")
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} 必须在 [0.0, 1.0] 之间，实际为 {value}")
        if self.min_rate > self.max_rate:
            raise ConfigurationError(
                f"min_rate ({self.min_rate}) 不能大于 max_rate ({self.max_rate})"
            )
        if self.target_throughput <= 0:
            raise ConfigurationError(
                f"target_throughput 必须为正数，实际为 {self.target_throughput}"
            )

    @classmethod
    def always(cls) -> "SamplingConfig":
        return cls(strategy="always", rate=1.0)

    @classmethod
    def never(cls) -> "SamplingConfig":
        return cls(strategy="never", rate=0.0)

    @classmethod
    def rate_based(cls, rate: float) -> "SamplingConfig":
        return cls(strategy="rate-based", rate=rate)

    @classmethod
    def adaptive(
        cls,
        target_throughput: int,
        min_rate: float = 0.01,
        max_rate: float = 1.0,
    ) -> "SamplingConfig":
        return cls(
            strategy="adaptive",
            target_throughput=target_throughput,
            min_rate=min_rate,
            max_rate=max_rate,
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SamplingConfig":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(f"sampling 必须是字典，实际为 {type(data).__name__}")
        valid_fields = {f.name for f in fields(cls)}
        normalized = {str(k).replace("-", "_"): v for k, v in data.items()}
        return cls(**{k: v for k, v in normalized.items() if k in valid_fields})


@dataclass(frozen=True)
class MetricsConfiguration:
    """
    指标系统配置（构建后不可变）

    Attributes:
        enabled: 总开关，False 时注册表不观测任何 actor
        common_tags: 合并到每个事件上的公共标签
        filters: actor 路径 / 消息类型过滤配置
        sampling: 逐消息指标的采样配置
        skip_system_actors: 跳过系统 actor（/system/）与临时 actor（/temp/、$）
    """

    enabled: bool = True
    common_tags: Mapping[str, str] = field(default_factory=dict)
    filters: FilterConfig = field(default_factory=FilterConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    skip_system_actors: bool = True

    def __post_init__(self):
        object.__setattr__(self, "enabled", parse_bool(self.enabled, "enabled"))
        object.__setattr__(
            self, "skip_system_actors",
            parse_bool(self.skip_system_actors, "skip_system_actors"),
        )

        tags = self.common_tags if self.common_tags is not None else {}
        if not isinstance(tags, Mapping):
            raise ConfigurationError(
                f"common_tags 必须是映射，实际为 {type(tags).__name__}"
            )
        for key, value in tags.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise ConfigurationError(
                    f"common_tags 的键和值都必须是字符串: {key!r}={value!r}"
                )
        object.__setattr__(self, "common_tags", MappingProxyType(dict(tags)))

        if isinstance(self.filters, dict):
            object.__setattr__(self, "filters", FilterConfig.from_dict(self.filters))
        elif not isinstance(self.filters, FilterConfig):
            raise ConfigurationError(f"filters 类型非法: {type(self.filters).__name__}")

        if isinstance(self.sampling, dict):
            object.__setattr__(self, "sampling", SamplingConfig.from_dict(self.sampling))
        elif not isinstance(self.sampling, SamplingConfig):
            raise ConfigurationError(f"sampling 类型非法: {type(self.sampling).__name__}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricsConfiguration":
        """从字典创建配置（未知字段被忽略）"""
        data = dict(data)  # 避免修改原始字典

        if "tags" in data and "common_tags" not in data:
            data["common_tags"] = data.pop("tags")
        if "filter" in data and "filters" not in data:
            data["filters"] = data.pop("filter")

        valid_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)

    @classmethod
    def from_yaml(cls, path: str) -> "MetricsConfiguration":
        """从 YAML 文件加载配置（读取 actor_metrics 键或文档根）"""
        import yaml

        filepath = Path(path)
        if not filepath.exists():
            raise ConfigurationError(f"配置文件不存在: {path}")

        with open(filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"配置文件根节点必须是映射: {path}")
        return cls.from_dict(data.get("actor_metrics", data))

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["MetricsConfiguration"] = None,
    ) -> "MetricsConfiguration":
        """
        用环境变量覆盖配置

        支持:
          - ACTOR_METRICS_ENABLED=false
          - ACTOR_METRICS_TAG_APPLICATION=orders → 标签 application=orders
          - ACTOR_METRICS_SAMPLING_RATE=0.5
          - ACTOR_METRICS_FILTER_ACTOR_INCLUDE=orders-*,billing-*
        """
        environ = os.environ if environ is None else environ
        base = base or cls()

        enabled = base.enabled
        if ENV_ENABLED in environ:
            enabled = parse_bool(environ[ENV_ENABLED], ENV_ENABLED)

        tags = dict(base.common_tags)
        for key, value in environ.items():
            if key.startswith(ENV_TAG_PREFIX):
                tag_name = key[len(ENV_TAG_PREFIX):].lower().replace("_", ".")
                if tag_name:
                    tags[tag_name] = value

        sampling = base.sampling
        raw_rate = environ.get(ENV_SAMPLING_RATE, "").strip()
        if raw_rate:
            try:
                sampling = SamplingConfig.rate_based(float(raw_rate))
            except ValueError:
                raise ConfigurationError(
                    f"{ENV_SAMPLING_RATE} 不是合法数值: {raw_rate!r}"
                )

        filter_values = {}
        for f in fields(FilterConfig):
            env_key = ENV_FILTER_PREFIX + f.name.upper()
            if env_key in environ:
                filter_values[f.name] = _split_env_list(environ[env_key])
            else:
                filter_values[f.name] = getattr(base.filters, f.name)

        return cls(
            enabled=enabled,
            common_tags=tags,
            filters=FilterConfig(**filter_values),
            sampling=sampling,
            skip_system_actors=base.skip_system_actors,
        )

    def to_dict(self) -> Dict[str, Any]:
        """导出为字典"""
        return {
            "enabled": self.enabled,
            "common_tags": dict(self.common_tags),
            "filters": {k: list(v) for k, v in asdict(self.filters).items()},
            "sampling": asdict(self.sampling),
            "skip_system_actors": self.skip_system_actors,
        }
