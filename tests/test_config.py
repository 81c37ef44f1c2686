"""Tests for configuration loading."""

import json

import pytest

from core.config import BrokerConfig, ConfigManager, DatabaseConfig, FetchConfig, FlushConfig, PipelineConfig
from core.errors import ConfigError
from core.schema import SchemaDriftPolicy


class TestConfigValidation:

    def test_defaults(self):
        """Test default pipeline configuration"""
        config = PipelineConfig()
        assert config.broker.topic == "html-table-data"
        assert config.broker.group_id == "table-consumer-group"
        assert config.flush.batch_size == 100
        assert config.flush.interval_seconds == 5.0
        assert config.flush.drift_policy is SchemaDriftPolicy.REJECT
        assert config.fetch.max_retries == 3

    @pytest.mark.parametrize("factory", [
        lambda: FetchConfig(timeout=0),
        lambda: FetchConfig(max_retries=0),
        lambda: BrokerConfig(brokers=[]),
        lambda: DatabaseConfig(port=70000),
        lambda: DatabaseConfig(host=""),
        lambda: FlushConfig(batch_size=0),
        lambda: FlushConfig(drift_policy="ignore"),
    ])
    def test_invalid_values(self, factory):
        """Test out-of-range values are rejected"""
        with pytest.raises(ConfigError):
            factory()

    def test_broker_list_from_string(self):
        """Test comma-separated broker list"""
        config = BrokerConfig(brokers="kafka1:9092, kafka2:9092")
        assert config.brokers == ["kafka1:9092", "kafka2:9092"]
        assert config.bootstrap_servers == "kafka1:9092,kafka2:9092"

    def test_connection_string_hides_password(self):
        """Test password masking in the connection string"""
        config = DatabaseConfig(password="secret")
        assert "secret" not in config.get_connection_string()
        assert "secret" in config.get_connection_string(hide_password=False)


class TestConfigManager:

    def test_defaults_without_sources(self):
        """Test defaults when no file or environment is given"""
        manager = ConfigManager(environ={})
        assert manager.get_config() == PipelineConfig()
        assert manager.get_config_info()['config_sources']['default_fallback']

    def test_environment_overrides(self):
        """Test environment variables override defaults"""
        manager = ConfigManager(environ={
            'DATA_URL': 'https://example.org/table',
            'KAFKA_BROKERS': 'k1:9092,k2:9092',
            'DB_PORT': '5433',
            'DB_PASSWORD': 'pw',
            'MAX_RETRIES': '5',
            'RETRY_DELAY_MS': '250',
            'REQUEST_TIMEOUT_MS': '2000',
            'BATCH_SIZE': '50',
            'FLUSH_INTERVAL_MS': '1500',
            'SCHEMA_DRIFT_POLICY': 'new_session',
        })
        config = manager.get_config()

        assert config.source_url == 'https://example.org/table'
        assert config.broker.brokers == ['k1:9092', 'k2:9092']
        assert config.database.port == 5433
        assert config.fetch.max_retries == 5
        assert config.fetch.base_delay == 0.25
        assert config.fetch.timeout == 2.0
        assert config.flush.batch_size == 50
        assert config.flush.interval_seconds == 1.5
        assert config.flush.drift_policy is SchemaDriftPolicy.NEW_SESSION

    def test_environment_overlays_file(self, tmp_path):
        """Test environment values take precedence over the file"""
        config_file = tmp_path / "pipeline.json"
        config_file.write_text(json.dumps({
            "source_url": "https://example.org/from-file",
            "database": {"host": "db.internal", "table_name": "countries"},
            "flush": {"batch_size": 10},
        }))

        config = ConfigManager(config_file=config_file, environ={'DB_HOST': 'db.override'}).get_config()

        assert config.source_url == "https://example.org/from-file"
        assert config.database.host == "db.override"
        assert config.database.table_name == "countries"
        assert config.flush.batch_size == 10

    def test_invalid_integer(self):
        """Test non-numeric integer setting"""
        with pytest.raises(ConfigError):
            ConfigManager(environ={'BATCH_SIZE': 'lots'}).get_config()

    def test_unreadable_file(self, tmp_path):
        """Test malformed JSON config file"""
        config_file = tmp_path / "broken.json"
        config_file.write_text("{not json")
        with pytest.raises(ConfigError):
            ConfigManager(config_file=config_file, environ={}).get_config()

    def test_config_info_masks_password(self):
        """Test config info hides the password"""
        info = ConfigManager(environ={'DB_PASSWORD': 'secret'}).get_config_info()
        assert info['database']['password'] == '***'
        assert 'secret' not in json.dumps(info)

    def test_env_template(self, tmp_path):
        """Test env template lists every key"""
        path = ConfigManager(environ={}).save_env_template(tmp_path)
        content = open(path).read()
        for key in ConfigManager.ENV_KEYS:
            assert f"{key}=" in content

