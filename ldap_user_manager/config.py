"""
Configuration loading and resolution for the LDAP user manager.

This module turns a flat key/value source (a dict, or a YAML file loaded
through ConfigLoader) into an immutable Settings object. Every key falls back
to its own documented default when it is absent.
"""

import os
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional

import yaml

from ldap_user_manager.errors import ArgumentError, UserManagerError

logger = logging.getLogger(__name__)


class ConfigurationError(UserManagerError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


CONNECTION_HOST = 'connection.host'
CONNECTION_PORT = 'connection.port'
CONNECTION_NAME = 'connection.name'
CONNECTION_CREDENTIALS = 'connection.credentials'
CONNECTION_TIMEOUT = 'connection.timeout'
CONNECTION_MAX_ACTIVE = 'connection.max.active'
CONNECTION_MAX_IDLE = 'connection.max.idle'
CONNECTION_USE_SSL = 'connection.use.ssl'
CONNECTION_START_TLS = 'connection.start.tls'
CONNECTION_VERIFY_SSL = 'connection.verify.ssl'
CONNECTION_CA_CERT_FILE = 'connection.ca.cert.file'
CONNECTION_PAGE_SIZE = 'connection.page.size'
USER_BASE_DN = 'user.base.dn'
MAX_CONCURRENT_LOGINS = 'max.concurrent.logins'
MAX_CONCURRENT_LOGINS_PER_IP = 'max.concurrent.logins.per.ip'
DOWNLOAD_RATE = 'download.rate'
UPLOAD_RATE = 'upload.rate'

# Transfer rates have no practical limit unless configured
UNBOUNDED_RATE = 2 ** 31 - 1

DEFAULTS = {
    CONNECTION_HOST: 'localhost',
    CONNECTION_PORT: 10389,
    CONNECTION_NAME: 'uid=admin,ou=system',
    CONNECTION_CREDENTIALS: 'secret',
    CONNECTION_TIMEOUT: 1000 * 60 * 3,
    CONNECTION_MAX_ACTIVE: 200,
    CONNECTION_MAX_IDLE: 20,
    CONNECTION_USE_SSL: False,
    CONNECTION_START_TLS: False,
    CONNECTION_VERIFY_SSL: True,
    CONNECTION_CA_CERT_FILE: None,
    CONNECTION_PAGE_SIZE: 1000,
    USER_BASE_DN: 'ou=users,ou=system',
    MAX_CONCURRENT_LOGINS: 2,
    MAX_CONCURRENT_LOGINS_PER_IP: 2,
    DOWNLOAD_RATE: UNBOUNDED_RATE,
    UPLOAD_RATE: UNBOUNDED_RATE,
}

_TRUE_VALUES = ('true', 'yes', 'on', '1')
_FALSE_VALUES = ('false', 'no', 'off', '0')


def _to_str(key: str, value: Any) -> str:
    return str(value)


def _to_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid integer for {key}: {value!r}")
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"Invalid integer for {key}: {value!r}")


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean for {key}: {value!r}")


@dataclass(frozen=True)
class Settings:
    """Resolved connection and policy parameters."""

    connection_host: str = DEFAULTS[CONNECTION_HOST]
    connection_port: int = DEFAULTS[CONNECTION_PORT]
    connection_name: str = DEFAULTS[CONNECTION_NAME]
    connection_credentials: str = DEFAULTS[CONNECTION_CREDENTIALS]
    connection_timeout: int = DEFAULTS[CONNECTION_TIMEOUT]
    connection_max_active: int = DEFAULTS[CONNECTION_MAX_ACTIVE]
    connection_max_idle: int = DEFAULTS[CONNECTION_MAX_IDLE]
    connection_use_ssl: bool = DEFAULTS[CONNECTION_USE_SSL]
    connection_start_tls: bool = DEFAULTS[CONNECTION_START_TLS]
    connection_verify_ssl: bool = DEFAULTS[CONNECTION_VERIFY_SSL]
    connection_ca_cert_file: Optional[str] = DEFAULTS[CONNECTION_CA_CERT_FILE]
    connection_page_size: int = DEFAULTS[CONNECTION_PAGE_SIZE]
    user_base_dn: str = DEFAULTS[USER_BASE_DN]
    max_concurrent_logins: int = DEFAULTS[MAX_CONCURRENT_LOGINS]
    max_concurrent_logins_per_ip: int = DEFAULTS[MAX_CONCURRENT_LOGINS_PER_IP]
    download_rate: int = DEFAULTS[DOWNLOAD_RATE]
    upload_rate: int = DEFAULTS[UPLOAD_RATE]

    @classmethod
    def from_source(cls, source: Optional[Mapping[str, Any]]) -> 'Settings':
        """
        Resolve settings from a flat key/value source.

        Args:
            source: Mapping of dotted keys (e.g. 'connection.host') to values

        Returns:
            Resolved Settings

        Raises:
            ArgumentError: If source is None
            ConfigurationError: If a value cannot be converted
        """
        if source is None:
            raise ArgumentError("configuration source is None")

        values = {}
        for key, field_name, convert in _FIELDS:
            value = source.get(key)
            if value is None:
                values[field_name] = DEFAULTS[key]
            else:
                values[field_name] = convert(key, value)

        settings = cls(**values)
        settings._validate()
        return settings

    @property
    def timeout_seconds(self) -> float:
        """Round-trip timeout converted from milliseconds."""
        return self.connection_timeout / 1000.0

    def _validate(self):
        errors = []
        if not 0 < self.connection_port < 65536:
            errors.append(f"{CONNECTION_PORT} out of range: {self.connection_port}")
        if self.connection_timeout <= 0:
            errors.append(f"{CONNECTION_TIMEOUT} must be positive")
        if self.connection_max_active <= 0:
            errors.append(f"{CONNECTION_MAX_ACTIVE} must be positive")
        if self.connection_max_idle < 0:
            errors.append(f"{CONNECTION_MAX_IDLE} must not be negative")
        if self.connection_page_size <= 0:
            errors.append(f"{CONNECTION_PAGE_SIZE} must be positive")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def redacted(self) -> Dict[str, Any]:
        """Settings as a dict, safe for logging."""
        values = asdict(self)
        values['connection_credentials'] = '****'
        return values

    def __repr__(self) -> str:
        return f"Settings({self.redacted()!r})"


_FIELDS = (
    (CONNECTION_HOST, 'connection_host', _to_str),
    (CONNECTION_PORT, 'connection_port', _to_int),
    (CONNECTION_NAME, 'connection_name', _to_str),
    (CONNECTION_CREDENTIALS, 'connection_credentials', _to_str),
    (CONNECTION_TIMEOUT, 'connection_timeout', _to_int),
    (CONNECTION_MAX_ACTIVE, 'connection_max_active', _to_int),
    (CONNECTION_MAX_IDLE, 'connection_max_idle', _to_int),
    (CONNECTION_USE_SSL, 'connection_use_ssl', _to_bool),
    (CONNECTION_START_TLS, 'connection_start_tls', _to_bool),
    (CONNECTION_VERIFY_SSL, 'connection_verify_ssl', _to_bool),
    (CONNECTION_CA_CERT_FILE, 'connection_ca_cert_file', _to_str),
    (CONNECTION_PAGE_SIZE, 'connection_page_size', _to_int),
    (USER_BASE_DN, 'user_base_dn', _to_str),
    (MAX_CONCURRENT_LOGINS, 'max_concurrent_logins', _to_int),
    (MAX_CONCURRENT_LOGINS_PER_IP, 'max_concurrent_logins_per_ip', _to_int),
    (DOWNLOAD_RATE, 'download_rate', _to_int),
    (UPLOAD_RATE, 'upload_rate', _to_int),
)


class ConfigLoader:
    """Loads user manager configuration from a YAML file."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        CONNECTION_CREDENTIALS: 'LDAP_BIND_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses LDAP_USER_MANAGER_CONFIG env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('LDAP_USER_MANAGER_CONFIG', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Flat dictionary of dotted keys to values

        Raises:
            ConfigurationError: If config file not found or is not valid YAML
        """
        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self.config = self._flatten(data)
        self._apply_env_overrides()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _flatten(self, data: Dict[str, Any], prefix: str = '') -> Dict[str, Any]:
        """Flatten nested mappings into dotted keys."""
        flat = {}
        for key, value in data.items():
            full_key = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(value, dict):
                flat.update(self._flatten(value, full_key))
            else:
                flat[full_key] = value
        return flat

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self.config[config_key] = env_value
                logger.debug(f"Applied environment override for {config_key}")


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Convenience function to load and resolve configuration.

    Args:
        config_path: Path to config file

    Returns:
        Resolved Settings
    """
    loader = ConfigLoader(config_path)
    return Settings.from_source(loader.load())
