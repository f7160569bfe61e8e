"""
Configuration Management System for HubProbe

Handles loading configuration from environment variables and config files,
and provides validation and dot-path access.
"""

import os
import json
import copy
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass


DEFAULTS: Dict[str, Any] = {
    "hub": {
        "backend": "loopback",
        "connection_string": "",
    },
    "certificate": {
        "cert_path": "",
        "key_path": "",
        "ca_path": "",
    },
    "device": {
        "prefix": "E2E_X509_Python_",
    },
    "verification": {
        "ceiling_seconds": 5.0,
        "poll_wait_seconds": 1.0,
        "priming_wait_seconds": 2.0,
    },
    "matrix": {
        "profile": "default",
        "run_excluded": False,
    },
    "fixture": {
        "sweep_stale_devices": False,
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "max_size": "10MB",
        "backup_count": 5,
        "console": True,
    },
}

VALID_BACKENDS = ('loopback', 'iothub')
VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigurationManager:
    """
    Manages suite configuration with support for multiple sources
    and validation.
    """

    BOOLEAN_KEYS = frozenset({"matrix.run_excluded"})

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger('hubprobe.config')
        self.defaults = copy.deepcopy(DEFAULTS)

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        # Built-in defaults (lowest priority)
        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from all sources and return the merged result"""
        self.logger.info("Loading configuration from all sources")

        merged_config: Dict[str, Any] = {}
        for source in sorted(self.sources, key=lambda x: x.priority):
            source_config = source.loader()
            if source_config:
                merged_config = self._deep_merge(merged_config, source_config)
                self.logger.debug(f"Loaded configuration from {source.name}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")
        return self.config

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}

        env_mappings = {
            "IOTHUB_CONNECTION_STRING": "hub.connection_string",
            "IOTHUB_X509_CERTIFICATE": "certificate.cert_path",
            "IOTHUB_X509_PRIVATE_KEY": "certificate.key_path",
            "IOTHUB_X509_CA_CERTIFICATE": "certificate.ca_path",
            "HUBPROBE_BACKEND": "hub.backend",
            "HUBPROBE_PROFILE": "matrix.profile",
            "HUBPROBE_RUN_EXCLUDED": "matrix.run_excluded",
            "HUBPROBE_DEVICE_PREFIX": "device.prefix",
            "HUBPROBE_LOG_LEVEL": "logging.level",
            "HUBPROBE_CEILING_SECONDS": "verification.ceiling_seconds",
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            if config_key in self.BOOLEAN_KEYS:
                value = self._parse_bool(env_var, value)
            elif config_key.startswith('verification.'):
                try:
                    value = float(value)
                except ValueError:
                    raise ConfigurationError(f"Invalid number in {env_var}: {value}")

            self._set_nested_value(config, config_key, value)

        return config

    @staticmethod
    def _parse_bool(env_var: str, value: str) -> bool:
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
        raise ConfigurationError(f"Invalid boolean in {env_var}: {value}")

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Error loading config file {path}: {e}")

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = copy.deepcopy(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        backend = self.get('hub.backend')
        if backend not in VALID_BACKENDS:
            errors.append(f"Invalid backend: {backend}")

        if backend == 'iothub':
            if not self.get('hub.connection_string'):
                errors.append("hub.connection_string is required for the iothub backend")
            for key in ('certificate.cert_path', 'certificate.key_path'):
                if not self.get(key):
                    errors.append(f"{key} is required for the iothub backend")

        if not self.get('device.prefix'):
            errors.append("device.prefix must not be empty")

        for key in ('verification.ceiling_seconds', 'verification.poll_wait_seconds',
                    'verification.priming_wait_seconds'):
            value = self.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                errors.append(f"Invalid {key}: {value}")

        log_level = str(self.get('logging.level', 'INFO'))
        if log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"Invalid log level: {log_level}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(self.config, key, value)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.get(section, {})


def load_config(config_dir: str = "config") -> Dict[str, Any]:
    """Load and validate the layered configuration"""
    return ConfigurationManager(config_dir).load_config()
