"""
actor_metrics/filter.py — glob 模式匹配与过滤引擎

glob 语法（构建时一次编译为锚定的完整匹配正则，调用时不再编译）:
  - `*`   任意长度字符，不跨越路径分隔符 `/`
  - `**`  任意长度字符，可跨越 `/`
  - `?`   恰好一个非分隔符字符
  - 其它正则特殊字符一律按字面量转义

判定规则: included and not excluded
  - include 列表为空 → 默认全部包含
  - exclude 独立判定，命中即排除（即使 include 也命中）
"""
import re
from typing import Iterable, Pattern, Tuple

from .config import FilterConfig
from .exceptions import ConfigurationError

PATH_SEPARATOR = "/"


def compile_glob(glob: str) -> Pattern:
    """
    把 glob 模式编译为完整匹配的正则

    Raises:
        ConfigurationError: 模式不是非空字符串
    """
    if not isinstance(glob, str):
        raise ConfigurationError(f"过滤模式必须是字符串: {glob!r}")
    if not glob:
        raise ConfigurationError("过滤模式不能为空字符串")

    sep = re.escape(PATH_SEPARATOR)
    parts = []
    i = 0
    while i < len(glob):
        c = glob[i]
        if c == "*":
            if glob.startswith("**", i):
                parts.append(".*")
                i += 2
            else:
                parts.append(f"[^{sep}]*")
                i += 1
        elif c == "?":
            parts.append(f"[^{sep}]")
            i += 1
        else:
            parts.append(re.escape(c))
            i += 1

    try:
        return re.compile("".join(parts), re.DOTALL)
    except re.error as e:
        raise ConfigurationError(f"过滤模式无法编译: {glob!r}: {e}") from e


def _compile_all(globs: Iterable[str]) -> Tuple[Pattern, ...]:
    return tuple(compile_glob(g) for g in globs)


class FilterEngine:
    """
    过滤引擎 — 构建后不可变，可无锁并发读取

    使用方式:
        engine = FilterEngine.build(FilterConfig(
            actor_include=("orders-*",),
            actor_exclude=("orders-debug",),
        ))
        engine.matches_actor("orders-42")     # True
        engine.matches_actor("orders-debug")  # False
    """

    __slots__ = (
        "_actor_include",
        "_actor_exclude",
        "_message_include",
        "_message_exclude",
    )

    def __init__(
        self,
        actor_include: Iterable[str] = (),
        actor_exclude: Iterable[str] = (),
        message_include: Iterable[str] = (),
        message_exclude: Iterable[str] = (),
    ):
        self._actor_include = _compile_all(actor_include)
        self._actor_exclude = _compile_all(actor_exclude)
        self._message_include = _compile_all(message_include)
        self._message_exclude = _compile_all(message_exclude)

    @classmethod
    def build(cls, config: FilterConfig) -> "FilterEngine":
        """从 FilterConfig 构建（非法模式立即抛出 ConfigurationError）"""
        return cls(
            actor_include=config.actor_include,
            actor_exclude=config.actor_exclude,
            message_include=config.message_include,
            message_exclude=config.message_exclude,
        )

    @staticmethod
    def _decide(value: str, include: Tuple[Pattern, ...], exclude: Tuple[Pattern, ...]) -> bool:
        included = not include or any(p.fullmatch(value) for p in include)
        excluded = any(p.fullmatch(value) for p in exclude)
        return included and not excluded

    def matches_actor(self, path: str) -> bool:
        """actor 路径是否需要观测"""
        return self._decide(path, self._actor_include, self._actor_exclude)

    def matches_message(self, type_name: str) -> bool:
        """消息类型是否需要观测"""
        return self._decide(type_name, self._message_include, self._message_exclude)

    def __setattr__(self, name, value):
        if hasattr(self, name):
            raise AttributeError(f"FilterEngine 不可变，无法修改 {name}")
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        return (
            f"FilterEngine(actor_include={len(self._actor_include)}, "
            f"actor_exclude={len(self._actor_exclude)}, "
            f"message_include={len(self._message_include)}, "
            f"message_exclude={len(self._message_exclude)})"
        )
