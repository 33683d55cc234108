"""
actor_metrics_observability/integration.py — 进程级集成入口

宿主框架就绪后调用一次:

    from actor_metrics_observability import setup_metrics
    setup_metrics(config_path="actor_metrics.yaml")

约定:
  - 单例模式: 同一进程中只创建一个 MetricsStack
  - Fail-Open: 任何异常不影响宿主应用
  - 环境变量（ACTOR_METRICS_*）覆盖文件 / 参数配置
"""
import logging
import threading
from typing import Optional

from actor_metrics.backend import MetricsBackend
from actor_metrics.config import MetricsConfiguration

from .config import ObservabilityConfig
from .stack import MetricsStack

logger = logging.getLogger(__name__)

# 进程内唯一的 MetricsStack
_global_stack: Optional[MetricsStack] = None
_lock = threading.Lock()


def setup_metrics(
    metrics_config: Optional[MetricsConfiguration] = None,
    observability_config: Optional[ObservabilityConfig] = None,
    backend: Optional[MetricsBackend] = None,
    config_path: Optional[str] = None,
) -> Optional[MetricsStack]:
    """
    集成入口

    Args:
        metrics_config: 指标配置（默认从 config_path 或默认值创建）
        observability_config: 后端 / 健康检查配置
        backend: 调用方自有后端（不经过缓冲，不由本模块关闭）
        config_path: YAML 配置文件（actor_metrics / observability 两个键）

    Returns:
        MetricsStack 实例（如果创建成功）
    """
    global _global_stack

    with _lock:
        if _global_stack is not None:
            logger.debug("MetricsStack 已存在，跳过重复创建")
            return _global_stack

        try:
            if config_path:
                if metrics_config is None:
                    metrics_config = MetricsConfiguration.from_yaml(config_path)
                if observability_config is None:
                    observability_config = ObservabilityConfig.from_yaml(config_path)
            metrics_config = MetricsConfiguration.from_env(base=metrics_config)

            if not metrics_config.enabled:
                logger.info("actor-metrics 已禁用")
                return None

            stack = MetricsStack(
                metrics_config=metrics_config,
                observability_config=observability_config,
                backend=backend,
            )
            stack.start()

            _global_stack = stack
            logger.info("actor-metrics 集成完成")
            return stack

        except Exception as e:
            # Fail-Open: 不影响宿主应用
            logger.warning(f"actor-metrics 集成失败 (Fail-Open): {e}")
            return None


def get_global_stack() -> Optional[MetricsStack]:
    """获取全局 MetricsStack 实例"""
    return _global_stack


def shutdown_metrics() -> None:
    """关闭全局 MetricsStack（未创建时为空操作）"""
    global _global_stack

    with _lock:
        stack, _global_stack = _global_stack, None
        if stack is None:
            return
        stack.shutdown()
    logger.info("actor-metrics 已关闭")
