"""
Engine configuration

Layered configuration for the aggregation engine: built-in defaults, then
``config/engine_{environment}.yaml``, then an explicit YAML/JSON file, then
environment variables.
"""

import os
import yaml
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


@dataclass
class GatewayConfig:
    """Resource gateway connection settings"""
    base_url: str = "http://localhost:3001"
    api_prefix: str = "/api"
    token: Optional[str] = None
    connection_timeout: int = 10  # seconds
    request_timeout: int = 30  # seconds
    max_retries: int = 2
    retry_delay: float = 0.5  # seconds
    pool_size: int = 20
    collection_paths: Dict[str, str] = field(default_factory=dict)


@dataclass
class FetchConfig:
    """Fetch orchestrator settings"""
    page_size: int = 100
    max_records: int = 1000
    fan_out_concurrency: int = 5
    fan_out_warn_threshold: int = 200


@dataclass
class MetricsConfig:
    """Metric aggregator settings"""
    expiring_soon_days: int = 30
    renewal_window_days: int = 90
    default_period: str = "month"  # day, week, month
    top_n: int = 5


@dataclass
class ServiceConfig:
    """HTTP service settings"""
    host: str = "0.0.0.0"
    port: int = 8090
    debug: bool = False
    cors_origins: str = "*"


@dataclass
class LoggingConfig:
    """Logging settings"""
    level: str = "INFO"
    file: str = "logs/staffing_engine.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


SECTIONS = ('gateway', 'fetch', 'metrics', 'service', 'logging')


class EngineConfig:
    """Top-level engine configuration"""

    def __init__(self, config_file: Optional[str] = None, environment: str = "development"):
        """Initialise configuration

        Args:
            config_file: optional YAML or JSON file
            environment: environment name (development, testing, production)
        """
        self.environment = environment
        self.config_file = config_file
        self._config_data: Dict[str, Any] = {}

        self.gateway = GatewayConfig()
        self.fetch = FetchConfig()
        self.metrics = MetricsConfig()
        self.service = ServiceConfig()
        self.logging = LoggingConfig()

        self._load_config()

        logger.info(f"Engine config initialized for environment: {environment}")

    def _load_config(self) -> None:
        """Load every configuration layer in order"""
        try:
            self._load_default_config()
            self._load_environment_config()
            if self.config_file:
                self._load_file_config(self.config_file)
            self._load_env_config()
            self._apply_config()
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise

    def _load_default_config(self) -> None:
        default_config = {
            'gateway': {
                'base_url': 'http://localhost:3001',
                'api_prefix': '/api',
                'token': None,
                'connection_timeout': 10,
                'request_timeout': 30,
                'max_retries': 2,
                'retry_delay': 0.5,
                'pool_size': 20,
                'collection_paths': {},
            },
            'fetch': {
                'page_size': 100,
                'max_records': 1000,
                'fan_out_concurrency': 5,
                'fan_out_warn_threshold': 200,
            },
            'metrics': {
                'expiring_soon_days': 30,
                'renewal_window_days': 90,
                'default_period': 'month',
                'top_n': 5,
            },
            'service': {
                'host': '0.0.0.0',
                'port': 8090,
                'debug': False,
                'cors_origins': '*',
            },
            'logging': {
                'level': 'INFO',
                'file': 'logs/staffing_engine.log',
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            },
        }
        self._config_data.update(default_config)

    def _load_environment_config(self) -> None:
        env_config_file = f"config/engine_{self.environment}.yaml"
        if os.path.exists(env_config_file):
            self._load_file_config(env_config_file)

    def _load_file_config(self, config_file: str) -> None:
        """Merge a YAML or JSON file into the configuration"""
        try:
            config_path = Path(config_file)
            if not config_path.exists():
                logger.warning(f"Config file not found: {config_file}")
                return

            with open(config_path, 'r', encoding='utf-8') as f:
                if config_path.suffix.lower() in ['.yaml', '.yml']:
                    file_config = yaml.safe_load(f)
                elif config_path.suffix.lower() == '.json':
                    file_config = json.load(f)
                else:
                    logger.warning(f"Unsupported config file format: {config_file}")
                    return

            if file_config:
                self._merge_config(self._config_data, file_config)
                logger.info(f"Loaded config from: {config_file}")

        except Exception as e:
            logger.error(f"Failed to load config file {config_file}: {e}")
            raise

    def _load_env_config(self) -> None:
        """Apply environment variable overrides"""
        env_mappings = {
            'GATEWAY_BASE_URL': ('gateway', 'base_url', str),
            'GATEWAY_API_PREFIX': ('gateway', 'api_prefix', str),
            'GATEWAY_TOKEN': ('gateway', 'token', str),
            'GATEWAY_REQUEST_TIMEOUT': ('gateway', 'request_timeout', int),
            'GATEWAY_MAX_RETRIES': ('gateway', 'max_retries', int),
            'GATEWAY_RETRY_DELAY': ('gateway', 'retry_delay', float),

            'FETCH_PAGE_SIZE': ('fetch', 'page_size', int),
            'FETCH_MAX_RECORDS': ('fetch', 'max_records', int),
            'FETCH_FAN_OUT_CONCURRENCY': ('fetch', 'fan_out_concurrency', int),

            'METRICS_EXPIRING_SOON_DAYS': ('metrics', 'expiring_soon_days', int),
            'METRICS_RENEWAL_WINDOW_DAYS': ('metrics', 'renewal_window_days', int),
            'METRICS_DEFAULT_PERIOD': ('metrics', 'default_period', str),

            'ENGINE_HOST': ('service', 'host', str),
            'ENGINE_PORT': ('service', 'port', int),
            'ENGINE_DEBUG': ('service', 'debug', bool),

            'LOG_LEVEL': ('logging', 'level', str),
            'LOG_FILE': ('logging', 'file', str),
        }

        for env_var, (section, key, type_func) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                try:
                    if type_func == bool:
                        value = value.lower() in ('true', '1', 'yes', 'on')
                    elif type_func == str and value.lower() == 'none':
                        value = None
                    else:
                        value = type_func(value)

                    self._config_data.setdefault(section, {})[key] = value
                    if key == 'token':
                        logger.info(f"Applied env config: {env_var}=***")
                    else:
                        logger.info(f"Applied env config: {env_var}={value}")

                except (ValueError, TypeError) as e:
                    logger.warning(f"Invalid env config value for {env_var}: {value}, error: {e}")

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _apply_config(self) -> None:
        """Copy the merged dict onto the section dataclasses"""
        for section in SECTIONS:
            values = self._config_data.get(section)
            if not isinstance(values, dict):
                continue
            target = getattr(self, section)
            for key, value in values.items():
                if hasattr(target, key):
                    setattr(target, key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value by dotted key

        Args:
            key: dotted key, e.g. ``fetch.page_size``
            default: fallback value

        Returns:
            Any: configured value
        """
        keys = key.split('.')
        value = self._config_data

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set a value by dotted key and re-apply sections"""
        keys = key.split('.')
        config = self._config_data

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value
        self._apply_config()

    def validate(self) -> bool:
        """Validate value ranges

        Returns:
            bool: whether the configuration is usable
        """
        validations = [
            (bool(self.gateway.base_url), "gateway base_url must be specified"),
            (self.gateway.request_timeout > 0, "request_timeout must be positive"),
            (self.gateway.max_retries >= 0, "max_retries must not be negative"),
            (self.fetch.page_size > 0, "page_size must be positive"),
            (self.fetch.max_records >= self.fetch.page_size, "max_records must be at least page_size"),
            (self.fetch.fan_out_concurrency > 0, "fan_out_concurrency must be positive"),
            (self.metrics.expiring_soon_days > 0, "expiring_soon_days must be positive"),
            (self.metrics.renewal_window_days >= self.metrics.expiring_soon_days,
             "renewal_window_days must not be shorter than expiring_soon_days"),
            (self.metrics.default_period in ('day', 'week', 'month'), "default_period must be day, week or month"),
            (1 <= self.service.port <= 65535, "service port must be between 1 and 65535"),
        ]

        for condition, message in validations:
            if not condition:
                logger.error(f"Config validation failed: {message}")
                return False

        logger.info("Config validation passed")
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Return a copy of the merged configuration with secrets masked"""
        data = json.loads(json.dumps(self._config_data, default=str))
        if data.get('gateway', {}).get('token'):
            data['gateway']['token'] = '***'
        return data
