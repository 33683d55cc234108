"""
actor_metrics/runtime.py — 运行时扩展点与拦截契约

不修改 worker 自身逻辑，而是在运行时已暴露的扩展点
（actor 构造、终止、入队、派发）上包装原方法:

    原方法 ──► wrapper_factory(原方法) ──► 包装方法（写回类属性）

设计要点:
  - RuntimeBinding 描述宿主运行时的扩展点（类 + 方法名 + 属性名）
  - InterceptionRule 由各模块产生，Agent 统一收集
  - apply_rules() 先解析全部目标，再一次性替换；中途失败整体回滚
  - HookHandle.remove() 恢复原方法（仅测试使用，Bootstrap 不可逆）
"""
import importlib
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

from .events import TAG_ACTOR_CLASS, TAG_ACTOR_PATH
from .exceptions import EmissionError, InstallationError

logger = logging.getLogger(__name__)

ENV_RUNTIME_CELL = "ACTOR_METRICS_RUNTIME_CELL"

UNKNOWN_TYPE = "unknown"


@dataclass(frozen=True)
class RuntimeBinding:
    """
    宿主运行时扩展点描述

    cell_class 可以是类对象，也可以是 "package.module:ClassName" 字符串。
    方法名为空字符串时表示运行时不提供该扩展点。
    """
    cell_class: Union[str, type, None] = None
    create_method: str = "new_actor"
    terminate_method: str = "terminate"
    enqueue_method: str = "send_message"
    invoke_method: str = "invoke"
    path_attribute: str = "path"
    actor_attribute: str = "actor"
    message_attribute: str = "message"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RuntimeBinding":
        """
        从环境变量读取扩展点描述

        ACTOR_METRICS_RUNTIME_CELL=myruntime.cell:ActorCell
        ACTOR_METRICS_RUNTIME_INVOKE_METHOD=dispatch  （可覆盖任意字段）
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for name in cls.__dataclass_fields__:
            if name == "cell_class":
                continue
            env_key = f"ACTOR_METRICS_RUNTIME_{name.upper()}"
            if env_key in environ:
                overrides[name] = environ[env_key]
        return cls(cell_class=environ.get(ENV_RUNTIME_CELL) or None, **overrides)


def resolve_target(target: Union[str, type]) -> type:
    """
    解析拦截目标

    Raises:
        InstallationError: 模块或类不存在
    """
    if isinstance(target, type):
        return target
    if not isinstance(target, str) or ":" not in target:
        raise InstallationError(
            f"拦截目标必须是类或 'module:ClassName' 字符串: {target!r}"
        )
    module_name, _, qualname = target.partition(":")
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise InstallationError(f"无法导入运行时模块 {module_name}: {e}") from e
    for part in qualname.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise InstallationError(f"运行时模块 {module_name} 中不存在 {qualname}") from e
    if not isinstance(obj, type):
        raise InstallationError(f"拦截目标不是类: {target}")
    return obj


@dataclass(frozen=True)
class InterceptionRule:
    """单条拦截规则: 用 wrapper_factory(原方法) 替换 target.method"""
    module_id: str
    target: Union[str, type]
    method: str
    wrapper_factory: Callable[[Callable], Callable]


class HookHandle:
    """已应用拦截的句柄，remove() 恢复替换前的方法"""

    def __init__(self, owner: type, method: str, original: Any, had_own_attr: bool, module_id: str):
        self.owner = owner
        self.method = method
        self.module_id = module_id
        self._original = original
        self._had_own_attr = had_own_attr
        self._removed = False

    def remove(self) -> None:
        if self._removed:
            return
        if self._had_own_attr:
            setattr(self.owner, self.method, self._original)
        else:
            delattr(self.owner, self.method)
        self._removed = True

    def __repr__(self) -> str:
        return f"HookHandle({self.module_id}: {self.owner.__name__}.{self.method})"


def resolve_rule(rule: InterceptionRule) -> Tuple[type, Callable]:
    """
    解析规则的目标类与当前方法

    Raises:
        InstallationError: 目标类或方法不存在
    """
    owner = resolve_target(rule.target)
    if not rule.method:
        raise InstallationError(f"[{rule.module_id}] 运行时未提供该扩展点")
    current = getattr(owner, rule.method, None)
    if current is None or not callable(current):
        raise InstallationError(
            f"[{rule.module_id}] {owner.__name__} 没有可拦截的方法 {rule.method}"
        )
    return owner, current


def apply_rules(rules: Sequence[InterceptionRule]) -> List[HookHandle]:
    """
    一次性应用全部拦截规则

    同一方法上的多条规则按顺序叠加（后应用的包在外层）。
    任一替换失败时回滚已应用的替换并抛出 InstallationError。
    """
    prepared = []
    for rule in rules:
        owner = resolve_target(rule.target)
        prepared.append((rule, owner))

    handles: List[HookHandle] = []
    try:
        for rule, owner in prepared:
            had_own_attr = rule.method in owner.__dict__
            original = owner.__dict__.get(rule.method)
            current = getattr(owner, rule.method)
            wrapped = rule.wrapper_factory(current)
            setattr(owner, rule.method, wrapped)
            handles.append(HookHandle(owner, rule.method, original, had_own_attr, rule.module_id))
    except Exception as e:
        for handle in reversed(handles):
            handle.remove()
        raise InstallationError(f"拦截规则应用失败，已回滚 {len(handles)} 项: {e}") from e
    return handles


class ActorContext:
    """
    被观测 actor 的上下文（只用于过滤与打标签，从不用于寻址）

    业务规则:
      - 路径包含 /system/ → 系统 actor
      - 路径包含 /temp/ 或 $ → 临时 actor
    """

    __slots__ = ("path", "actor_class", "is_system", "is_temporary")

    def __init__(self, path: str, actor_class: str = "Unknown"):
        self.path = path
        self.actor_class = actor_class
        self.is_system = "/system/" in path
        self.is_temporary = "/temp/" in path or "$" in path

    @classmethod
    def from_cell(cls, cell: Any, binding: RuntimeBinding) -> "ActorContext":
        """
        从运行时 cell 提取上下文

        Raises:
            EmissionError: cell 上读不到 actor 路径
        """
        try:
            path = str(getattr(cell, binding.path_attribute))
        except Exception as e:
            raise EmissionError(f"无法读取 actor 路径: {e}") from e

        actor = getattr(cell, binding.actor_attribute, None)
        actor_class = type(actor).__name__ if actor is not None else "Unknown"
        return cls(path, actor_class)

    def to_tags(self) -> dict:
        return {TAG_ACTOR_PATH: self.path, TAG_ACTOR_CLASS: self.actor_class}

    def __eq__(self, other):
        if not isinstance(other, ActorContext):
            return NotImplemented
        return self.path == other.path and self.actor_class == other.actor_class

    def __hash__(self):
        return hash((self.path, self.actor_class))

    def __repr__(self) -> str:
        return f"ActorContext(path={self.path!r}, class={self.actor_class!r})"


def message_type_of(envelope: Any, binding: RuntimeBinding) -> Tuple[str, str]:
    """
    提取消息类型

    Returns:
        (qualified_name, simple_name) — 前者用于过滤，后者用于标签
    """
    try:
        message = getattr(envelope, binding.message_attribute, envelope)
        cls = type(message)
        return f"{cls.__module__}.{cls.__qualname__}", cls.__name__
    except Exception:
        return UNKNOWN_TYPE, UNKNOWN_TYPE
