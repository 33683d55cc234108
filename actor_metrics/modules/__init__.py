"""
actor_metrics.modules — 观测模块静态注册表

已知模块在此显式列出（不做扫描式发现），Agent 按此顺序安装。
新增模块时在 KNOWN_MODULES 中追加，导入时校验 id 唯一。
"""
from typing import Dict, Tuple, Type

from .base import InstrumentationModule, ModuleDescriptor
from .lifecycle import ActorLifecycleModule
from .mailbox import MailboxModule
from .message import COUNT_FAILURES_AS_PROCESSED, MessageProcessingModule

KNOWN_MODULES: Tuple[Type[InstrumentationModule], ...] = (
    ActorLifecycleModule,
    MessageProcessingModule,
    MailboxModule,
)


def _index_modules(modules) -> Dict[str, Type[InstrumentationModule]]:
    index: Dict[str, Type[InstrumentationModule]] = {}
    for module_cls in modules:
        module_id = module_cls.descriptor.id
        if module_id in index:
            raise ValueError(
                f"模块 id 重复: {module_id} "
                f"({index[module_id].__name__}, {module_cls.__name__})"
            )
        index[module_id] = module_cls
    return index


_MODULES_BY_ID = _index_modules(KNOWN_MODULES)

KNOWN_DESCRIPTORS: Tuple[ModuleDescriptor, ...] = tuple(m.descriptor for m in KNOWN_MODULES)


def create_module(module_id: str) -> InstrumentationModule:
    """按 id 创建模块实例"""
    try:
        return _MODULES_BY_ID[module_id]()
    except KeyError:
        raise ValueError(
            f"未知模块: {module_id}，可选: {list(_MODULES_BY_ID)}"
        ) from None


__all__ = [
    "InstrumentationModule",
    "ModuleDescriptor",
    "ActorLifecycleModule",
    "MessageProcessingModule",
    "MailboxModule",
    "COUNT_FAILURES_AS_PROCESSED",
    "KNOWN_MODULES",
    "KNOWN_DESCRIPTORS",
    "create_module",
]
