"""
actor_metrics_observability/config.py — 可观测性配置

后端链（Prometheus / 结构化日志 / 异步缓冲）与健康检查端点的配置。
支持直接创建、从字典或 YAML 加载。
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from actor_metrics.exceptions import ConfigurationError


@dataclass
class ObservabilityConfig:
    """
    可观测性配置

    可以独立创建，也可以与 MetricsConfiguration 写在同一个 YAML 文件的
    observability 键下。
    """

    # === Prometheus ===
    prometheus_enabled: bool = True
    prometheus_namespace: str = ""  # 指标前缀（空 = 不加前缀）
    prometheus_port: int = 9095
    prometheus_start_server: bool = False
    prometheus_buckets: Optional[list] = None  # timer 直方图分桶（秒）

    # === 结构化日志后端 ===
    log_enabled: bool = False
    log_format: str = "json"  # json / text
    log_level: str = "INFO"
    log_file: Optional[str] = None  # 日志文件路径（None=仅 stderr）
    log_max_bytes: int = 100 * 1024 * 1024  # 100MB
    log_backup_count: int = 5

    # === 异步缓冲 ===
    buffer_enabled: bool = True
    buffer_size: int = 10000
    buffer_flush_interval: float = 0.5  # 秒
    buffer_batch_size: int = 500

    # === 健康检查 ===
    health_enabled: bool = True
    health_start_server: bool = False
    health_port: int = 8080
    health_path: str = "/health"
    cluster_degraded_ratio: float = 1.0 / 3.0  # 不可达成员比例 ≥ 此值 → HIGH
    cluster_critical_ratio: float = 0.5  # 不可达成员比例 ≥ 此值 → CRITICAL

    # 其它字段（保留给扩展）
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.log_format not in ("json", "text"):
            raise ConfigurationError(f"log_format 必须是 json 或 text，实际为 {self.log_format!r}")
        if self.buffer_size <= 0:
            raise ConfigurationError(f"buffer_size 必须为正数，实际为 {self.buffer_size}")
        if self.buffer_flush_interval <= 0:
            raise ConfigurationError(
                f"buffer_flush_interval 必须为正数，实际为 {self.buffer_flush_interval}"
            )
        if not 0.0 < self.cluster_degraded_ratio <= self.cluster_critical_ratio <= 1.0:
            raise ConfigurationError(
                "需要 0 < cluster_degraded_ratio <= cluster_critical_ratio <= 1，"
                f"实际为 {self.cluster_degraded_ratio}, {self.cluster_critical_ratio}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObservabilityConfig":
        """从字典创建（未知字段放入 extra）"""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        extra = {k: v for k, v in data.items() if k not in valid_fields}
        if extra:
            filtered.setdefault("extra", {}).update(extra)
        return cls(**filtered)

    @classmethod
    def from_yaml(cls, path: str) -> "ObservabilityConfig":
        """从 YAML 文件加载（读取 observability 键或文档根）"""
        import yaml

        filepath = Path(path)
        if not filepath.exists():
            raise ConfigurationError(f"配置文件不存在: {path}")

        with open(filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"配置文件根节点必须是映射: {path}")
        return cls.from_dict(data.get("observability", data))
