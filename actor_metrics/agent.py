"""
actor_metrics/agent.py — Agent 启动引导

进程启动时、宿主应用代码运行之前调用一次:

    from actor_metrics import agent
    agent.premain()

流程:
  1. 读取总开关 ACTOR_METRICS_ENABLED（环境变量，回退到 -X 系统属性）
     关闭时不安装任何拦截，之后零开销
  2. 对每个已知模块读取独立开关 ACTOR_METRICS_INSTRUMENT_<ID>（默认开启）
  3. 预先导入钩子运行时依赖的支持模块，热路径上不再触发导入
  4. 一次性应用全部拦截规则

失败语义:
  - 单个模块安装失败 → WARNING 并跳过，不影响其它模块
  - 其它任何意外 → ERROR 并放弃，宿主进程保持完整功能且没有任何拦截

注册表由宿主在框架就绪后单独构建并 install()，Agent 只负责拦截。
"""
import importlib
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .config import ENV_ENABLED, parse_bool
from .exceptions import ConfigurationError
from .modules import KNOWN_MODULES, InstrumentationModule
from .runtime import HookHandle, InterceptionRule, RuntimeBinding, apply_rules, resolve_rule

logger = logging.getLogger(__name__)

ENV_MODULE_PREFIX = "ACTOR_METRICS_INSTRUMENT_"

# 钩子在调用时会触及的支持模块
_SUPPORT_MODULES = (
    "actor_metrics.exceptions",
    "actor_metrics.events",
    "actor_metrics.filter",
    "actor_metrics.sampling",
    "actor_metrics.runtime",
    "actor_metrics.registry",
    "actor_metrics.modules.base",
)


@dataclass
class AgentReport:
    """启动引导结果"""
    enabled: bool
    installed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    modules: List[InstrumentationModule] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "installed": list(self.installed),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
            "aborted": self.aborted,
            "error": self.error,
        }


_lock = threading.Lock()
_report: Optional[AgentReport] = None
_handles: List[HookHandle] = []


def module_flag_name(module_id: str) -> str:
    """模块开关名: 前缀 + 大写 id（- 和 . 替换为 _）"""
    return ENV_MODULE_PREFIX + module_id.upper().replace("-", "_").replace(".", "_")


def system_properties() -> Mapping[str, Any]:
    """解释器 -X key=value 选项"""
    return sys._xoptions


def read_flag(
    name: str,
    default: bool,
    environ: Mapping[str, str],
    properties: Mapping[str, Any],
) -> bool:
    """读取开关: 环境变量优先，回退到系统属性，都没有时使用默认值"""
    raw = environ.get(name)
    if raw is None:
        raw = properties.get(name)
    if raw is None:
        return default
    try:
        return parse_bool(raw, name)
    except ConfigurationError as e:
        logger.warning(f"[MetricsAgent] {e}，使用默认值 {default}")
        return default


def premain(
    binding: Optional[RuntimeBinding] = None,
    environ: Optional[Mapping[str, str]] = None,
    properties: Optional[Mapping[str, Any]] = None,
) -> AgentReport:
    """
    启动引导（每个进程只执行一次，重复调用返回首次结果）

    Args:
        binding: 运行时扩展点描述，默认从环境变量读取
        environ: 环境变量映射，默认 os.environ
        properties: 系统属性映射，默认 sys._xoptions

    Returns:
        AgentReport（本函数从不抛出异常）
    """
    global _report
    with _lock:
        if _report is not None:
            logger.info("[MetricsAgent] 已初始化，忽略重复调用")
            return _report
        _report = _bootstrap(
            binding,
            os.environ if environ is None else environ,
            system_properties() if properties is None else properties,
        )
        return _report


def get_report() -> Optional[AgentReport]:
    return _report


def installed_modules() -> List[InstrumentationModule]:
    """已挂载拦截的模块实例（供注册表注册）"""
    return list(_report.modules) if _report is not None else []


def _ensure_support_loaded() -> None:
    for name in _SUPPORT_MODULES:
        importlib.import_module(name)


def _bootstrap(
    binding: Optional[RuntimeBinding],
    environ: Mapping[str, str],
    properties: Mapping[str, Any],
) -> AgentReport:
    logger.info("[MetricsAgent] 开始初始化")
    try:
        if not read_flag(ENV_ENABLED, True, environ, properties):
            logger.info(f"[MetricsAgent] 已通过 {ENV_ENABLED} 关闭，不安装任何拦截")
            return AgentReport(enabled=False)

        binding = binding or RuntimeBinding.from_env(environ)
        _ensure_support_loaded()

        report = AgentReport(enabled=True)
        rules: List[InterceptionRule] = []
        for module_cls in KNOWN_MODULES:
            descriptor = module_cls.descriptor
            flag = module_flag_name(descriptor.id)
            if not read_flag(flag, descriptor.default_enabled, environ, properties):
                logger.info(f"[MetricsAgent] 跳过模块 {descriptor.id}（{flag} 已关闭）")
                report.skipped.append(descriptor.id)
                continue

            try:
                module = module_cls()
                module_rules = module.interception_rules(binding)
                for rule in module_rules:
                    resolve_rule(rule)
            except Exception as e:
                logger.warning(f"[MetricsAgent] 模块 {descriptor.id} 安装失败，已跳过: {e}")
                report.failed[descriptor.id] = str(e)
                continue

            rules.extend(module_rules)
            report.modules.append(module)

        _handles.extend(apply_rules(rules))
        report.installed = [m.module_id for m in report.modules]

        logger.info(
            f"[MetricsAgent] 初始化完成: 安装 {len(report.installed)} 个模块，"
            f"跳过 {len(report.skipped)} 个，失败 {len(report.failed)} 个"
        )
        logger.info("[MetricsAgent] 等待宿主安装 MetricsRegistry")
        return report
    except Exception as e:
        logger.error(f"[MetricsAgent] 初始化失败，未安装任何拦截: {e}", exc_info=True)
        return AgentReport(enabled=True, aborted=True, error=str(e))
