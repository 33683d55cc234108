"""
MetricsConfiguration / FilterConfig / SamplingConfig 单元测试
"""
import dataclasses

import pytest

from actor_metrics.config import (
    FilterConfig,
    MetricsConfiguration,
    SamplingConfig,
    parse_bool,
)
from actor_metrics.exceptions import ConfigurationError


class TestParseBool:

    @pytest.mark.parametrize("raw", ["true", "TRUE", "1", "yes", "on", " True ", True])
    def test_true_values(self, raw):
        assert parse_bool(raw) is True

    @pytest.mark.parametrize("raw", ["false", "0", "no", "OFF", False])
    def test_false_values(self, raw):
        assert parse_bool(raw) is False

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            parse_bool("maybe", "ACTOR_METRICS_ENABLED")


class TestFilterConfig:

    def test_defaults_empty(self):
        config = FilterConfig()
        assert config.actor_include == ()
        assert config.message_exclude == ()

    def test_lists_become_tuples(self):
        config = FilterConfig(actor_include=["a", "b"], actor_exclude="c")
        assert config.actor_include == ("a", "b")
        assert config.actor_exclude == ("c",)

    def test_from_dict_accepts_kebab_case(self):
        config = FilterConfig.from_dict({
            "actor-include": ["orders-*"],
            "message_exclude": ["*.Heartbeat"],
            "unknown": ["x"],
        })
        assert config.actor_include == ("orders-*",)
        assert config.message_exclude == ("*.Heartbeat",)

    def test_non_string_pattern_rejected(self):
        with pytest.raises(ConfigurationError):
            FilterConfig(actor_include=["ok", 3])

    def test_non_list_rejected(self):
        with pytest.raises(ConfigurationError):
            FilterConfig(actor_include={"a": 1})


class TestSamplingConfig:

    def test_default_always(self):
        assert SamplingConfig().strategy == "always"

    def test_strategy_normalized(self):
        assert SamplingConfig(strategy="RATE_BASED", rate=0.5).strategy == "rate-based"

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError):
            SamplingConfig(strategy="sometimes")

    @pytest.mark.parametrize("rate", [-0.1, 1.5])
    def test_rate_out_of_range(self, rate):
        with pytest.raises(ConfigurationError):
            SamplingConfig.rate_based(rate)

    def test_min_rate_above_max_rate(self):
        with pytest.raises(ConfigurationError):
            SamplingConfig.adaptive(100, min_rate=0.8, max_rate=0.5)

    def test_non_positive_target(self):
        with pytest.raises(ConfigurationError):
            SamplingConfig.adaptive(0)


class TestMetricsConfiguration:

    def test_defaults(self):
        config = MetricsConfiguration()
        assert config.enabled is True
        assert dict(config.common_tags) == {}
        assert config.skip_system_actors is True
        assert config.sampling.strategy == "always"

    def test_frozen(self):
        config = MetricsConfiguration()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.enabled = False

    def test_common_tags_read_only_copy(self):
        tags = {"application": "orders"}
        config = MetricsConfiguration(common_tags=tags)
        tags["application"] = "changed"
        assert config.common_tags["application"] == "orders"
        with pytest.raises(TypeError):
            config.common_tags["env"] = "prod"

    def test_non_string_tag_rejected(self):
        with pytest.raises(ConfigurationError):
            MetricsConfiguration(common_tags={"replicas": 3})

    def test_from_dict(self):
        config = MetricsConfiguration.from_dict({
            "enabled": "false",
            "tags": {"application": "orders"},
            "filter": {"actor-include": ["orders-*"]},
            "sampling": {"strategy": "rate-based", "rate": 0.25},
            "something_else": 1,
        })
        assert config.enabled is False
        assert config.common_tags == {"application": "orders"}
        assert config.filters.actor_include == ("orders-*",)
        assert config.sampling.rate == 0.25

    def test_from_dict_invalid_enabled(self):
        with pytest.raises(ConfigurationError):
            MetricsConfiguration.from_dict({"enabled": "perhaps"})

    def test_from_yaml_nested(self, tmp_path):
        path = tmp_path / "metrics.yaml"
        path.write_text(
            "actor_metrics:\n"
            "  common_tags:\n"
            "    application: orders\n"
            "  filters:\n"
            "    actor_include: ['/user/**']\n"
            "    actor_exclude: ['/user/debug-*']\n",
            encoding="utf-8",
        )
        config = MetricsConfiguration.from_yaml(str(path))
        assert config.common_tags == {"application": "orders"}
        assert config.filters.actor_exclude == ("/user/debug-*",)

    def test_from_yaml_root(self, tmp_path):
        path = tmp_path / "metrics.yaml"
        path.write_text("enabled: false\n", encoding="utf-8")
        assert MetricsConfiguration.from_yaml(str(path)).enabled is False

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            MetricsConfiguration.from_yaml(str(tmp_path / "missing.yaml"))

    def test_from_env(self):
        environ = {
            "ACTOR_METRICS_ENABLED": "true",
            "ACTOR_METRICS_TAG_APPLICATION": "orders",
            "ACTOR_METRICS_TAG_DEPLOY_REGION": "eu-1",
            "ACTOR_METRICS_SAMPLING_RATE": "0.5",
            "ACTOR_METRICS_FILTER_ACTOR_INCLUDE": "orders-*, billing-*",
            "UNRELATED": "x",
        }
        config = MetricsConfiguration.from_env(environ)
        assert config.common_tags == {"application": "orders", "deploy.region": "eu-1"}
        assert config.sampling.strategy == "rate-based"
        assert config.sampling.rate == 0.5
        assert config.filters.actor_include == ("orders-*", "billing-*")

    def test_from_env_keeps_base(self):
        base = MetricsConfiguration(
            common_tags={"application": "orders", "env": "dev"},
            filters=FilterConfig(actor_exclude=("/user/debug",)),
        )
        config = MetricsConfiguration.from_env({"ACTOR_METRICS_TAG_ENV": "prod"}, base=base)
        assert config.common_tags == {"application": "orders", "env": "prod"}
        assert config.filters.actor_exclude == ("/user/debug",)

    def test_from_env_disabled(self):
        config = MetricsConfiguration.from_env({"ACTOR_METRICS_ENABLED": "0"})
        assert config.enabled is False

    def test_from_env_invalid_rate(self):
        with pytest.raises(ConfigurationError):
            MetricsConfiguration.from_env({"ACTOR_METRICS_SAMPLING_RATE": "half"})

    def test_to_dict(self):
        config = MetricsConfiguration(
            common_tags={"application": "orders"},
            filters=FilterConfig(actor_include=("orders-*",)),
        )
        data = config.to_dict()
        assert data["common_tags"] == {"application": "orders"}
        assert data["filters"]["actor_include"] == ["orders-*"]
        assert MetricsConfiguration.from_dict(data) == config
