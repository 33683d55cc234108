"""
actor_metrics_observability/health.py — 健康检查

提供指标系统与 actor 集群的健康状态检查，支持:
  - 组件级健康检查（活动注册表 / 后端 / 集群成员状态）
  - 聚合健康状态
  - HTTP 端点（可选，用于 K8s liveness/readiness probe）

集群状态只读取宿主已有的成员信息（由 provider 提供），按不可达成员比例分级:

    不可达 = 0              → HEALTHY   / LOW
    比例 ≥ critical_ratio   → UNHEALTHY / CRITICAL （可能脑裂）
    比例 ≥ degraded_ratio   → DEGRADED  / HIGH
    其它                    → DEGRADED  / MEDIUM
    无成员 / 读取失败       → UNHEALTHY / UNKNOWN
"""
import time
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
from http.server import HTTPServer, BaseHTTPRequestHandler
import json

from actor_metrics import registry as registry_slot

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """健康状态"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # 部分功能受限
    UNHEALTHY = "unhealthy"


class SplitBrainRisk(Enum):
    """脑裂风险等级"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ClusterState:
    """集群成员快照（由宿主提供）"""
    members: int
    unreachable: int = 0
    unreachable_members: List[str] = field(default_factory=list)
    self_address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterState":
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        return cls(**{k: v for k, v in data.items() if k in valid_fields})


@dataclass
class ClusterHealth:
    """集群健康分级结果"""
    status: HealthStatus
    risk: SplitBrainRisk
    member_count: int
    unreachable_count: int

    @property
    def reachable_count(self) -> int:
        return max(self.member_count - self.unreachable_count, 0)

    @property
    def unreachable_ratio(self) -> float:
        return self.unreachable_count / self.member_count if self.member_count else 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "split_brain_risk": self.risk.value,
            "cluster_size": self.member_count,
            "reachable_nodes": self.reachable_count,
            "unreachable_nodes": self.unreachable_count,
        }


def classify_cluster(
    member_count: int,
    unreachable_count: int,
    degraded_ratio: float = 1.0 / 3.0,
    critical_ratio: float = 0.5,
) -> ClusterHealth:
    """按不可达成员比例分级"""
    if member_count <= 0:
        return ClusterHealth(HealthStatus.UNHEALTHY, SplitBrainRisk.UNKNOWN, 0, unreachable_count)

    unreachable = min(max(unreachable_count, 0), member_count)
    if unreachable == 0:
        status, risk = HealthStatus.HEALTHY, SplitBrainRisk.LOW
    else:
        ratio = unreachable / member_count
        if ratio >= critical_ratio:
            status, risk = HealthStatus.UNHEALTHY, SplitBrainRisk.CRITICAL
        elif ratio >= degraded_ratio:
            status, risk = HealthStatus.DEGRADED, SplitBrainRisk.HIGH
        else:
            status, risk = HealthStatus.DEGRADED, SplitBrainRisk.MEDIUM
    return ClusterHealth(status, risk, member_count, unreachable)


ClusterProvider = Callable[[], Union[ClusterState, Dict[str, Any]]]


class HealthChecker:
    """
    健康检查器

    使用方式:
        checker = HealthChecker()
        checker.set_cluster_provider(lambda: ClusterState(members=5, unreachable=1))

        status = checker.check()
        # {
        #     "status": "degraded",
        #     "components": {
        #         "registry": {"status": "healthy", "modules": [...]},
        #         "backend": {"status": "healthy", ...},
        #         "cluster": {"status": "degraded", "split_brain_risk": "MEDIUM", ...},
        #     },
        #     "timestamp": 1234567890.0,
        # }

        checker.start_server(port=8080, path="/health")
    """

    def __init__(
        self,
        degraded_ratio: float = 1.0 / 3.0,
        critical_ratio: float = 0.5,
        require_registry: bool = True,
    ):
        self._degraded_ratio = degraded_ratio
        self._critical_ratio = critical_ratio
        self._require_registry = require_registry
        self._cluster_provider: Optional[ClusterProvider] = None
        self._server: Optional[HTTPServer] = None
        self._server_thread: Optional[threading.Thread] = None
        self._custom_checks: Dict[str, Callable[[], Dict[str, Any]]] = {}

    def set_cluster_provider(self, provider: Optional[ClusterProvider]) -> None:
        """设置集群状态读取函数"""
        self._cluster_provider = provider

    def add_check(self, name: str, check_fn: Callable[[], Dict[str, Any]]) -> None:
        """添加自定义健康检查"""
        self._custom_checks[name] = check_fn

    def check(self) -> Dict[str, Any]:
        """
        执行全部检查并聚合

        Returns:
            {"status": ..., "components": {...}, "timestamp": ...}
        """
        registry = registry_slot.get_active()
        components: Dict[str, Dict[str, Any]] = {"registry": self._check_registry()}
        if registry is not None:
            components["backend"] = self._check_backend(registry)
        if self._cluster_provider is not None:
            components["cluster"] = self._check_cluster()
        for name, check_fn in self._custom_checks.items():
            components[name] = self._run_custom(name, check_fn)

        return {
            "status": _worst(c.get("status") for c in components.values()).value,
            "components": components,
            "timestamp": time.time(),
        }

    @staticmethod
    def _run_custom(name: str, check_fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return check_fn()
        except Exception as e:
            logger.debug(f"自定义检查 {name} 失败: {e}")
            return {"status": HealthStatus.UNHEALTHY.value, "error": str(e)}

    def _check_registry(self) -> Dict[str, Any]:
        """检查活动注册表"""
        registry = registry_slot.get_active()
        if registry is None:
            status = HealthStatus.DEGRADED if self._require_registry else HealthStatus.HEALTHY
            return {"status": status.value, "installed": False}
        try:
            stats = registry.get_stats()
            status = HealthStatus.HEALTHY if stats["modules"] else HealthStatus.DEGRADED
            return {"status": status.value, "installed": True, **stats}
        except Exception as e:
            return {"status": HealthStatus.UNHEALTHY.value, "error": str(e)}

    def _check_backend(self, registry) -> Dict[str, Any]:
        """检查后端（丢弃比例过高时降级）"""
        try:
            stats = registry.get_stats()
            emitted = stats["events_emitted"]
            dropped = stats["events_dropped"]
            total = emitted + dropped
            drop_rate = dropped / total if total else 0.0

            status = HealthStatus.HEALTHY
            if drop_rate > 0.5:
                status = HealthStatus.UNHEALTHY
            elif drop_rate > 0.05:
                status = HealthStatus.DEGRADED

            return {
                "status": status.value,
                "drop_rate": drop_rate,
                **registry.backend.get_stats(),
            }
        except Exception as e:
            return {"status": HealthStatus.UNHEALTHY.value, "error": str(e)}

    def _check_cluster(self) -> Dict[str, Any]:
        """检查集群成员状态"""
        try:
            state = self._cluster_provider()
            if isinstance(state, dict):
                state = ClusterState.from_dict(state)
            health = classify_cluster(
                state.members,
                state.unreachable,
                self._degraded_ratio,
                self._critical_ratio,
            )
            result = health.to_dict()
            result["unreachable_members"] = list(state.unreachable_members)
            if state.self_address:
                result["self_address"] = state.self_address
            return result
        except Exception as e:
            return {
                "status": HealthStatus.UNHEALTHY.value,
                "split_brain_risk": SplitBrainRisk.UNKNOWN.value,
                "error": str(e),
            }

    def start_server(self, port: int = 8080, path: str = "/health") -> None:
        """
        在后台线程启动 HTTP 端点（port=0 时由系统分配端口）

        unhealthy 返回 503，其它状态返回 200，其它路径 404。
        """
        if self._server is not None:
            logger.warning(f"健康检查端点已在运行: {self.server_address}")
            return

        try:
            server = _HealthServer(("0.0.0.0", port), _HealthRequestHandler)
        except OSError as e:
            logger.error(f"健康检查端点绑定端口 {port} 失败: {e}")
            return
        server.checker = self
        server.health_path = path

        self._server = server
        self._server_thread = threading.Thread(
            target=server.serve_forever,
            name="actor-metrics-health",
            daemon=True,
        )
        self._server_thread.start()
        logger.info(f"健康检查端点已启动: http://0.0.0.0:{server.server_address[1]}{path}")

    @property
    def server_address(self) -> Optional[tuple]:
        return self._server.server_address if self._server else None

    def shutdown(self) -> None:
        """停止 HTTP 端点"""
        server, self._server = self._server, None
        if server is not None:
            server.shutdown()
            server.server_close()
            if self._server_thread is not None:
                self._server_thread.join(timeout=5.0)
        self._server_thread = None
        logger.info("HealthChecker 已关闭")


_SEVERITY = {
    HealthStatus.HEALTHY.value: 0,
    HealthStatus.DEGRADED.value: 1,
    HealthStatus.UNHEALTHY.value: 2,
}


def _worst(statuses) -> HealthStatus:
    """聚合: 取最严重的组件状态（未知状态按 healthy 处理）"""
    worst = HealthStatus.HEALTHY
    for status in statuses:
        if _SEVERITY.get(status, 0) > _SEVERITY[worst.value]:
            worst = HealthStatus(status)
    return worst


class _HealthServer(HTTPServer):
    checker: HealthChecker
    health_path: str


class _HealthRequestHandler(BaseHTTPRequestHandler):

    def do_GET(self):
        if self.path != self.server.health_path:
            self.send_error(404)
            return
        result = self.server.checker.check()
        body = json.dumps(result, indent=2, default=str).encode("utf-8")
        code = 503 if result["status"] == HealthStatus.UNHEALTHY.value else 200
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.debug(f"health {self.address_string()} {format % args}")
