"""
tests/test_observability/test_observability_config.py — ObservabilityConfig 测试
"""
import pytest

from actor_metrics.exceptions import ConfigurationError
from actor_metrics_observability.config import ObservabilityConfig


class TestObservabilityConfig:
    """ObservabilityConfig 测试"""

    def test_default_config(self):
        """默认配置"""
        config = ObservabilityConfig()
        assert config.prometheus_enabled is True
        assert config.prometheus_port == 9095
        assert config.prometheus_start_server is False
        assert config.log_enabled is False
        assert config.buffer_enabled is True
        assert config.health_enabled is True
        assert config.cluster_degraded_ratio == pytest.approx(1 / 3)
        assert config.cluster_critical_ratio == 0.5

    def test_from_dict(self):
        """从字典创建，未知字段放入 extra"""
        config = ObservabilityConfig.from_dict({
            "prometheus_port": 9191,
            "log_format": "text",
            "buffer_size": 128,
            "grafana_folder": "actors",
        })
        assert config.prometheus_port == 9191
        assert config.log_format == "text"
        assert config.buffer_size == 128
        assert config.extra == {"grafana_folder": "actors"}

    @pytest.mark.parametrize("overrides", [
        {"log_format": "xml"},
        {"buffer_size": 0},
        {"buffer_flush_interval": 0},
        {"cluster_degraded_ratio": 0.6, "cluster_critical_ratio": 0.5},
        {"cluster_critical_ratio": 1.5},
    ])
    def test_validation(self, overrides):
        with pytest.raises(ConfigurationError):
            ObservabilityConfig(**overrides)

    def test_from_yaml_section(self, tmp_path):
        """从 YAML 的 observability 键加载"""
        path = tmp_path / "actor_metrics.yaml"
        path.write_text(
            "actor_metrics:\n"
            "  enabled: true\n"
            "observability:\n"
            "  prometheus_namespace: orders\n"
            "  health_port: 8181\n",
            encoding="utf-8",
        )
        config = ObservabilityConfig.from_yaml(str(path))
        assert config.prometheus_namespace == "orders"
        assert config.health_port == 8181

    def test_from_yaml_root(self, tmp_path):
        path = tmp_path / "observability.yaml"
        path.write_text("log_enabled: true\nlog_level: DEBUG\n", encoding="utf-8")
        config = ObservabilityConfig.from_yaml(str(path))
        assert config.log_enabled is True
        assert config.log_level == "DEBUG"

    def test_from_yaml_missing(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ObservabilityConfig.from_yaml(str(tmp_path / "missing.yaml"))

    def test_from_yaml_not_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ObservabilityConfig.from_yaml(str(path))
