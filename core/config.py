#!/usr/bin/env python3
"""
Configuration Management for the Table Pipeline
Supports environment variables, a JSON config file and development defaults.

Components never read the environment themselves: the command line builds a
PipelineConfig here and passes explicit values into their constructors.
"""

import os
import json
import logging
from typing import Any, Dict, List, Optional
from pathlib import Path
from dataclasses import dataclass, field, asdict

from .errors import ConfigError
from .schema import SchemaDriftPolicy

logger = logging.getLogger(__name__)

DEFAULT_DATA_URL = "https://en.wikipedia.org/wiki/List_of_countries_by_population_(United_Nations)"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; DataScraper/1.0)"


@dataclass
class FetchConfig:
    """Document retrieval settings (seconds)"""
    timeout: float = 10.0
    max_retries: int = 3
    base_delay: float = 1.0
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        if self.timeout <= 0:
            raise ConfigError("Request timeout must be positive")
        if self.max_retries < 1:
            raise ConfigError("Max retries must be at least 1")
        if self.base_delay < 0:
            raise ConfigError("Retry delay cannot be negative")


@dataclass
class BrokerConfig:
    """Kafka topic and consumer-group coordinates"""
    brokers: List[str] = field(default_factory=lambda: ["localhost:9092"])
    topic: str = "html-table-data"
    client_id: str = "html-table-scraper"
    group_id: str = "table-consumer-group"
    auto_commit_interval_ms: int = 5000
    session_timeout_ms: int = 30000

    def __post_init__(self):
        if isinstance(self.brokers, str):
            self.brokers = [b.strip() for b in self.brokers.split(',') if b.strip()]
        if not self.brokers:
            raise ConfigError("At least one broker address is required")
        if not self.topic:
            raise ConfigError("Kafka topic is required")
        if not self.group_id:
            raise ConfigError("Kafka consumer group is required")

    @property
    def bootstrap_servers(self) -> str:
        return ','.join(self.brokers)


@dataclass
class DatabaseConfig:
    """PostgreSQL configuration with validation"""
    host: str = 'localhost'
    port: int = 5432
    database: str = 'table_data'
    user: str = 'postgres'
    password: str = ''
    schema: str = 'public'
    table_name: str = 'extracted_data'
    pool_size: int = 5
    timeout: int = 30

    def __post_init__(self):
        """Validate configuration after initialization"""
        if not self.host:
            raise ConfigError("Database host is required")
        if not self.user:
            raise ConfigError("Database user is required")
        if not self.table_name:
            raise ConfigError("Database table name is required")
        if not (1 <= self.port <= 65535):
            raise ConfigError("Database port must be between 1 and 65535")
        if self.pool_size < 1:
            raise ConfigError("Database pool size must be at least 1")

    def to_dict(self, include_password: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for psycopg.connect"""
        config = {
            'host': self.host,
            'port': self.port,
            'dbname': self.database,
            'user': self.user,
        }
        if include_password:
            config['password'] = self.password
        if self.schema:
            config['options'] = f'-c search_path={self.schema}'
        return config

    def get_connection_string(self, hide_password: bool = True) -> str:
        """Get connection string representation"""
        password = "***" if hide_password else self.password
        conninfo = (
            f"postgresql://{self.user}:{password}@{self.host}:{self.port}/{self.database}"
        )
        if self.schema:
            conninfo += f"?options=-c%20search_path%3D{self.schema}"
        return conninfo


@dataclass
class FlushConfig:
    """Consumer buffering settings"""
    batch_size: int = 100
    interval_seconds: float = 5.0
    drift_policy: SchemaDriftPolicy = SchemaDriftPolicy.REJECT

    def __post_init__(self):
        if self.batch_size < 1:
            raise ConfigError("Batch size must be at least 1")
        if self.interval_seconds <= 0:
            raise ConfigError("Flush interval must be positive")
        try:
            self.drift_policy = SchemaDriftPolicy(self.drift_policy)
        except ValueError as exc:
            raise ConfigError(f"Unknown schema drift policy: {self.drift_policy}") from exc


@dataclass
class PipelineConfig:
    """Everything the producer and consumer commands need"""
    source_url: str = DEFAULT_DATA_URL
    fetch: FetchConfig = field(default_factory=FetchConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    flush: FlushConfig = field(default_factory=FlushConfig)

    def to_dict(self, include_password: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        data['flush']['drift_policy'] = self.flush.drift_policy.value
        if not include_password:
            data['database']['password'] = '***'
        return data


def _env_int(environ, name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


class ConfigManager:
    """Configuration manager with environment variable support"""

    ENV_KEYS = (
        'DATA_URL', 'KAFKA_BROKERS', 'KAFKA_TOPIC', 'KAFKA_CLIENT_ID', 'KAFKA_GROUP_ID',
        'DB_HOST', 'DB_PORT', 'DB_NAME', 'DB_USER', 'DB_PASSWORD', 'DB_SCHEMA',
        'DB_TABLE_NAME', 'DB_POOL_SIZE', 'DB_TIMEOUT', 'MAX_RETRIES', 'RETRY_DELAY_MS',
        'REQUEST_TIMEOUT_MS', 'BATCH_SIZE', 'FLUSH_INTERVAL_MS', 'SCHEMA_DRIFT_POLICY',
    )

    def __init__(self, config_file: Optional[Path] = None, environ: Optional[Dict[str, str]] = None):
        self._config: Optional[PipelineConfig] = None
        self._config_file = Path(config_file) if config_file else None
        self._environ = os.environ if environ is None else environ

    def get_config(self) -> PipelineConfig:
        """
        Get pipeline configuration from multiple sources in priority order:
        1. Environment variables
        2. JSON config file
        3. Default values (development only)
        """
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> PipelineConfig:
        if self._has_env_config():
            logger.info("Loading pipeline config from environment variables")
            base = self._load_from_file() if self._has_file_config() else PipelineConfig()
            return self._apply_environment(base)

        if self._has_file_config():
            logger.info(f"Loading pipeline config from {self._config_file}")
            return self._load_from_file()

        logger.warning("Using default pipeline configuration - not recommended for production")
        return PipelineConfig()

    def _has_env_config(self) -> bool:
        return any(self._environ.get(key) for key in self.ENV_KEYS)

    def _has_file_config(self) -> bool:
        return self._config_file is not None and self._config_file.exists()

    def _load_from_file(self) -> PipelineConfig:
        """Load configuration from JSON file"""
        try:
            with open(self._config_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read config file {self._config_file}: {exc}") from exc

        try:
            return PipelineConfig(
                source_url=data.get('source_url', DEFAULT_DATA_URL),
                fetch=FetchConfig(**data.get('fetch', {})),
                broker=BrokerConfig(**data.get('broker', {})),
                database=DatabaseConfig(**data.get('database', {})),
                flush=FlushConfig(**data.get('flush', {})),
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid config file {self._config_file}: {exc}") from exc

    def _apply_environment(self, base: PipelineConfig) -> PipelineConfig:
        """Overlay environment variables on top of ``base``"""
        env = self._environ
        fetch = FetchConfig(
            timeout=_env_int(env, 'REQUEST_TIMEOUT_MS', int(base.fetch.timeout * 1000)) / 1000,
            max_retries=_env_int(env, 'MAX_RETRIES', base.fetch.max_retries),
            base_delay=_env_int(env, 'RETRY_DELAY_MS', int(base.fetch.base_delay * 1000)) / 1000,
            user_agent=base.fetch.user_agent,
        )
        broker = BrokerConfig(
            brokers=env.get('KAFKA_BROKERS') or list(base.broker.brokers),
            topic=env.get('KAFKA_TOPIC') or base.broker.topic,
            client_id=env.get('KAFKA_CLIENT_ID') or base.broker.client_id,
            group_id=env.get('KAFKA_GROUP_ID') or base.broker.group_id,
            auto_commit_interval_ms=base.broker.auto_commit_interval_ms,
            session_timeout_ms=base.broker.session_timeout_ms,
        )
        database = DatabaseConfig(
            host=env.get('DB_HOST') or base.database.host,
            port=_env_int(env, 'DB_PORT', base.database.port),
            database=env.get('DB_NAME') or base.database.database,
            user=env.get('DB_USER') or base.database.user,
            password=env.get('DB_PASSWORD', base.database.password),
            schema=env.get('DB_SCHEMA') or base.database.schema,
            table_name=env.get('DB_TABLE_NAME') or base.database.table_name,
            pool_size=_env_int(env, 'DB_POOL_SIZE', base.database.pool_size),
            timeout=_env_int(env, 'DB_TIMEOUT', base.database.timeout),
        )
        flush = FlushConfig(
            batch_size=_env_int(env, 'BATCH_SIZE', base.flush.batch_size),
            interval_seconds=_env_int(env, 'FLUSH_INTERVAL_MS', int(base.flush.interval_seconds * 1000)) / 1000,
            drift_policy=env.get('SCHEMA_DRIFT_POLICY') or base.flush.drift_policy,
        )
        return PipelineConfig(
            source_url=env.get('DATA_URL') or base.source_url,
            fetch=fetch,
            broker=broker,
            database=database,
            flush=flush,
        )

    def save_env_template(self, directory: Path = Path('.')) -> str:
        """Create an environment file template"""
        env_template = """# Source
DATA_URL=https://en.wikipedia.org/wiki/List_of_countries_by_population_(United_Nations)

# Kafka Configuration
KAFKA_BROKERS=localhost:9092
KAFKA_TOPIC=html-table-data
KAFKA_CLIENT_ID=html-table-scraper
KAFKA_GROUP_ID=table-consumer-group

# Database Configuration
DB_HOST=localhost
DB_PORT=5432
DB_NAME=table_data
DB_USER=postgres
DB_PASSWORD=your_password_here
DB_SCHEMA=public
DB_TABLE_NAME=extracted_data
DB_POOL_SIZE=5
DB_TIMEOUT=30

# Fetch Retry Configuration
MAX_RETRIES=3
RETRY_DELAY_MS=1000
REQUEST_TIMEOUT_MS=10000

# Consumer Buffering
BATCH_SIZE=100
FLUSH_INTERVAL_MS=5000
SCHEMA_DRIFT_POLICY=reject
"""
        env_template_file = Path(directory) / '.env.template'
        with open(env_template_file, 'w') as f:
            f.write(env_template)

        return str(env_template_file)

    def get_config_info(self) -> Dict[str, Any]:
        """Get configuration information (without sensitive data)"""
        config = self.get_config()
        info = config.to_dict(include_password=False)
        info['database']['connection_string'] = config.database.get_connection_string(hide_password=True)
        info['config_sources'] = {
            'env_variables': self._has_env_config(),
            'config_file': self._has_file_config(),
            'default_fallback': not self._has_env_config() and not self._has_file_config(),
        }
        return info
