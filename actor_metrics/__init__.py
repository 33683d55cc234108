"""
actor-metrics — Actor 运行时零侵入指标引擎

在 actor 运行时已暴露的扩展点（构造 / 终止 / 入队 / 派发）上挂载观测逻辑，
按 glob 过滤决定是否观测，并把指标事件转发到可插拔后端。

进程启动:
    from actor_metrics import agent, RuntimeBinding

    agent.premain(RuntimeBinding(cell_class="myruntime.cell:ActorCell"))

框架就绪后:
    from actor_metrics import MetricsConfiguration, MetricsRegistry, InMemoryBackend, install

    registry = MetricsRegistry.build(MetricsConfiguration.from_env(), InMemoryBackend())
    for module in agent.installed_modules():
        registry.register_module(module)
    install(registry)

关闭采集（拦截保留，变为空操作）:
    install(None)

Fail-Open: 观测逻辑的任何故障只会让指标缺失，从不影响宿主行为。
"""

__version__ = "1.0.0"

from . import agent
from .backend import CompositeBackend, InMemoryBackend, MetricsBackend
from .config import FilterConfig, MetricsConfiguration, SamplingConfig
from .events import MetricEvent, MetricKind
from .exceptions import (
    ActorMetricsError,
    BackendError,
    ConfigurationError,
    EmissionError,
    InstallationError,
)
from .filter import FilterEngine, compile_glob
from .modules import (
    KNOWN_MODULES,
    ActorLifecycleModule,
    InstrumentationModule,
    MailboxModule,
    MessageProcessingModule,
    ModuleDescriptor,
)
from .registry import MetricsRegistry, get_active, install
from .runtime import ActorContext, RuntimeBinding
from .sampling import SamplingStrategy

__all__ = [
    # 核心
    "agent",
    "MetricsRegistry",
    "install",
    "get_active",
    "RuntimeBinding",
    "ActorContext",
    # 配置
    "MetricsConfiguration",
    "FilterConfig",
    "SamplingConfig",
    # 过滤 / 采样
    "FilterEngine",
    "compile_glob",
    "SamplingStrategy",
    # 事件 / 后端
    "MetricEvent",
    "MetricKind",
    "MetricsBackend",
    "InMemoryBackend",
    "CompositeBackend",
    # 模块
    "InstrumentationModule",
    "ModuleDescriptor",
    "ActorLifecycleModule",
    "MessageProcessingModule",
    "MailboxModule",
    "KNOWN_MODULES",
    # 异常
    "ActorMetricsError",
    "ConfigurationError",
    "InstallationError",
    "EmissionError",
    "BackendError",
]
