"""
actor_metrics/exceptions.py — 异常体系

所有 actor_metrics 异常的基类和具体异常定义。
除 ConfigurationError 外，其余异常都不会穿透到被观测的业务代码。
"""


class ActorMetricsError(Exception):
    """actor_metrics 基础异常"""
    pass


class ConfigurationError(ActorMetricsError):
    """配置异常（过滤模式非法、配置值非法），构建时立即失败"""
    pass


class InstallationError(ActorMetricsError):
    """模块无法挂载到运行时（扩展点缺失、版本不兼容）"""
    pass


class EmissionError(ActorMetricsError):
    """拦截调用中计算或转发指标失败（在模块边界被吞掉）"""
    pass


class BackendError(ActorMetricsError):
    """后端拒绝或处理指标失败（丢弃并记录日志）"""
    pass
