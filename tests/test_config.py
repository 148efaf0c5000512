"""
Unit tests for collector configuration.
"""
import pytest

from mesh_insights.config import CollectorConfig, PrivacyConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "ANALYTICS_ENABLED",
        "ANALYTICS_BATCH_SIZE",
        "ANALYTICS_FLUSH_INTERVAL",
        "MESH_INSIGHTS_ENVIRONMENT",
        "MESH_INSIGHTS_BATCH_SIZE",
        "MESH_INSIGHTS_ANONYMIZATION_SALT",
        "DEPLOY_ENV",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        config = CollectorConfig()

        assert config.enabled is True
        assert config.environment == "development"
        assert config.batch_size == 100
        assert config.flush_interval == 30.0
        assert config.aggregate_interval == 60.0
        assert config.cleanup_interval == 86400.0
        assert config.retention_seconds == 90 * 86400
        assert config.max_queue_size == 10000
        assert config.privacy.enable_error_tracking is True

    def test_legacy_env_vars(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_ENABLED", "false")
        monkeypatch.setenv("ANALYTICS_BATCH_SIZE", "25")
        monkeypatch.setenv("ANALYTICS_FLUSH_INTERVAL", "5000")
        monkeypatch.setenv("MESH_INSIGHTS_ENVIRONMENT", "production")

        config = CollectorConfig()

        assert config.enabled is False
        assert config.batch_size == 25
        assert config.flush_interval == 5.0
        assert config.is_production is True

    def test_invalid_env_number_falls_back(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_BATCH_SIZE", "lots")

        assert CollectorConfig().batch_size == 100

    def test_non_positive_values_reset(self):
        config = CollectorConfig(batch_size=0, flush_interval_ms=-5)

        assert config.batch_size == 100
        assert config.flush_interval_ms == 30000

    def test_queue_never_smaller_than_batch(self):
        assert CollectorConfig(batch_size=500, max_queue_size=100).max_queue_size == 500


class TestLoading:
    """Tests for dict, YAML and environment loading."""

    def test_from_dict_coerces_and_nests_privacy(self):
        config = CollectorConfig.from_dict({
            "enabled": "no",
            "batch_size": "50",
            "unknown_key": 1,
            "privacy": {"enable_feature_usage": "false", "anonymization_salt": "pepper"},
        })

        assert config.enabled is False
        assert config.batch_size == 50
        assert config.privacy.enable_feature_usage is False
        assert config.privacy.anonymization_salt == "pepper"

    def test_from_dict_invalid_value_uses_default(self):
        config = CollectorConfig.from_dict({"retention_days": "forever"})

        assert config.retention_days == 90

    def test_from_yaml_with_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("INGEST_BATCH", "20")
        path = tmp_path / "collector.yaml"
        path.write_text(
            "environment: ${DEPLOY_ENV:-staging}\n"
            "batch_size: ${INGEST_BATCH}\n"
            "privacy:\n"
            "  enable_behavior_analytics: false\n"
        )

        config = CollectorConfig.from_yaml(path)

        assert config.environment == "staging"
        assert config.batch_size == 20
        assert config.privacy.enable_behavior_analytics is False

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CollectorConfig.from_yaml(tmp_path / "missing.yaml")

    def test_from_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MESH_INSIGHTS_BATCH_SIZE", "10")

        assert CollectorConfig.from_env().batch_size == 10

    def test_load_config(self, tmp_path):
        path = tmp_path / "collector.yaml"
        path.write_text("app_version: '2.4.0'\n")

        assert load_config(path).app_version == "2.4.0"
        assert load_config().batch_size == 100

    def test_merge(self):
        config = CollectorConfig().merge({"batch_size": 5})

        assert config.batch_size == 5
        assert isinstance(config.privacy, PrivacyConfig)

    def test_salt_from_env(self, monkeypatch):
        monkeypatch.setenv("MESH_INSIGHTS_ANONYMIZATION_SALT", "from-env")

        assert PrivacyConfig().anonymization_salt == "from-env"
