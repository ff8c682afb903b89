"""
Configuration Management for the Taxi Manager client.

This module handles the API location, request timeout, debug mode and logging
settings with support for an INI configuration file and environment variables.
"""

import os
import re
import logging
from configparser import ConfigParser
from pathlib import Path
from typing import Optional, Dict, Any

from taxi_shared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

IPV4_PATTERN = re.compile(r'^(\d{1,3}\.){3}\d{1,3}$')

DEFAULTS: Dict[str, Dict[str, Any]] = {
    'api': {
        'host': 'localhost',
        'port': 8000,
        'url': None,
        'timeout_ms': 10000,
    },
    'client': {
        'debug_mode': False,
    },
    'logging': {
        'level': 'INFO',
        'format': 'standard',
        'file': None,
    },
}

ENV_MAPPINGS = {
    'TAXI_MANAGER_API_HOST': ('api', 'host'),
    'TAXI_MANAGER_API_PORT': ('api', 'port'),
    'TAXI_MANAGER_API_URL': ('api', 'url'),
    'TAXI_MANAGER_TIMEOUT_MS': ('api', 'timeout_ms'),
    'TAXI_MANAGER_DEBUG_MODE': ('client', 'debug_mode'),
    'TAXI_MANAGER_LOG_LEVEL': ('logging', 'level'),
}


def is_valid_ip(ip: str) -> bool:
    """Dotted-quad IPv4 address with every part in 0-255."""
    if not ip or not IPV4_PATTERN.match(ip):
        return False
    return all(0 <= int(part) <= 255 for part in ip.split('.'))


def _coerce(value: str) -> Any:
    if value.lower() in ('true', 'false'):
        return value.lower() == 'true'
    if value.isdigit():
        return int(value)
    return value


class ClientConfiguration:
    """
    Configuration manager for the Taxi Manager client.

    Supports configuration from:
    1. Overrides set at runtime (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._file_data: Dict[str, Dict[str, Any]] = {}
        self._env_data: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        return str(Path.home() / '.taxi-manager' / 'client.conf')

    def _load_configuration(self) -> None:
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.debug(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()

    def _load_from_file(self) -> None:
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            self._file_data[section_name] = {
                key: _coerce(value) for key, value in config[section_name].items()
            }

    def _load_from_environment(self) -> None:
        for env_var, (section, key) in ENV_MAPPINGS.items():
            value = os.environ.get(env_var)
            if value is not None:
                self._env_data.setdefault(section, {})[key] = _coerce(value)

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get a value using dot notation (``api.host``).
        """
        if key in self._overrides:
            return self._overrides[key]

        section, _, name = key.partition('.')
        for source in (self._env_data, self._file_data, DEFAULTS):
            if name in source.get(section, {}):
                value = source[section][name]
                if value not in (None, ''):
                    return value
        return default

    def set_override(self, key: str, value: Any) -> None:
        """Set a runtime override (command line arguments)."""
        self._overrides[key] = value
        logger.debug(f"Configuration override set: {key}")

    def get_api_base_url(self) -> str:
        """API root; always ends with a slash."""
        url = self.get_config('api.url')
        if not url:
            url = f"http://{self.get_api_host()}:{self.get_api_port()}/api/"
        if not str(url).startswith(('http://', 'https://')):
            raise ConfigurationError(f"Invalid API URL: {url}", config_key='api.url')
        return url if url.endswith('/') else url + '/'

    def get_api_host(self) -> str:
        return str(self.get_config('api.host'))

    def get_api_port(self) -> int:
        port = self.get_config('api.port')
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid API port: {port}", config_key='api.port')
        if not 0 < port < 65536:
            raise ConfigurationError(f"API port out of range: {port}", config_key='api.port')
        return port

    def get_timeout(self) -> float:
        """Request timeout in seconds."""
        timeout_ms = self.get_config('api.timeout_ms')
        try:
            timeout_ms = int(timeout_ms)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid timeout: {timeout_ms}", config_key='api.timeout_ms')
        if timeout_ms <= 0:
            raise ConfigurationError(f"Timeout must be positive: {timeout_ms}", config_key='api.timeout_ms')
        return timeout_ms / 1000.0

    def is_debug_mode(self) -> bool:
        return bool(self.get_config('client.debug_mode'))

    def get_log_level(self) -> str:
        if self.is_debug_mode():
            return 'DEBUG'
        return str(self.get_config('logging.level')).upper()

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format')).lower()

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')

    def get_config_file_path(self) -> str:
        return self._config_file

    def set_api_host(self, ip: str) -> bool:
        """
        Point the client at a back end on another address and persist it.

        Returns:
            False if the host was already configured, True if it changed

        Raises:
            ConfigurationError: ip is not a valid IPv4 address
        """
        if not is_valid_ip(ip):
            raise ConfigurationError(
                f"Invalid IP address: {ip}",
                config_key='api.host',
                user_message="Expected format xxx.xxx.xxx.xxx (for example 192.168.1.100)"
            )

        if self._file_data.get('api', {}).get('host') == ip:
            logger.info(f"API host {ip} is already configured")
            return False

        self._file_data.setdefault('api', {})['host'] = ip
        # An explicit URL would shadow the new host
        self._file_data['api'].pop('url', None)
        self.save_configuration()

        logger.info(f"API host updated to {ip}, base URL: {self.get_api_base_url()}")
        return True

    def save_configuration(self) -> None:
        """Write the file-level settings back to the configuration file."""
        config = ConfigParser()
        for section, values in self._file_data.items():
            config[section] = {key: str(value) for key, value in values.items() if value is not None}

        path = Path(self._config_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w') as f:
                config.write(f)
        except OSError as e:
            raise ConfigurationError(
                f"Failed to write configuration file {path}: {e}",
                ErrorCode.CONFIG_FILE_NOT_FOUND,
                cause=e
            )
        logger.info(f"Configuration saved to {path}")

    def to_dict(self) -> Dict[str, Any]:
        """Effective configuration."""
        return {
            'config_file': self._config_file,
            'api_base_url': self.get_api_base_url(),
            'timeout_seconds': self.get_timeout(),
            'debug_mode': self.is_debug_mode(),
            'log_level': self.get_log_level(),
        }
