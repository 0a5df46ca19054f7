#!/usr/bin/env python3

"""
Configuration Management Module for the PIA WireGuard config generator

This module provides centralized configuration management with:
- Single source of truth for all settings
- Configuration validation and type checking
- JSON configuration file loading with environment overrides
- Ordered resolution chains for credentials and region lists

Credentials and region ids are resolved from an ordered list of sources;
the first source that yields a non-empty value wins.
"""

import os
import json
import ipaddress
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from dataclasses import dataclass, field


class SetupError(Exception):
    """Missing prerequisite or unusable configuration; aborts the run before any network work."""
    pass


PROBE_METHODS = ("tcp", "icmp")


@dataclass
class CredentialsConfig:
    """PIA account credentials."""
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


@dataclass
class PathConfig:
    """File system paths used by a provisioning run."""
    ca_cert: Path = field(default_factory=lambda: Path("./ca/ca.rsa.4096.crt"))
    output_dir: Path = field(default_factory=lambda: Path("./configs"))
    credentials_file: Path = field(default_factory=lambda: Path("./credentials.properties"))
    regions_file: Path = field(default_factory=lambda: Path("./regions.properties"))
    log_file: Optional[Path] = None

    def __post_init__(self):
        """Coerce string paths coming from JSON or the environment."""
        self.ca_cert = Path(self.ca_cert)
        self.output_dir = Path(self.output_dir)
        self.credentials_file = Path(self.credentials_file)
        self.regions_file = Path(self.regions_file)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)


@dataclass
class ApiConfig:
    """PIA API endpoints, timeouts and retry policy."""
    token_url: str = "https://www.privateinternetaccess.com/api/client/v2/token"
    server_list_url: str = "https://serverlist.piaservers.net/vpninfo/servers/v6"
    ca_cert_url: str = "https://raw.githubusercontent.com/pia-foss/manual-connections/master/ca.rsa.4096.crt"
    download_ca: bool = True
    registration_port: int = 1337
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 1.0

    def __post_init__(self):
        """Validate ports, timeouts and retries."""
        if not (1 <= self.registration_port <= 65535):
            raise ValueError(f"Invalid registration port: {self.registration_port}")
        for timeout in (self.connect_timeout, self.read_timeout):
            if timeout <= 0:
                raise ValueError(f"Invalid timeout value: {timeout}")
        if self.max_retries < 0:
            raise ValueError(f"Invalid retry count: {self.max_retries}")


@dataclass
class ProbeConfig:
    """Reachability and latency probing settings."""
    enabled: bool = True
    method: str = "tcp"
    port: int = 1337
    timeout: float = 2.0
    samples: int = 3
    max_workers: int = 10

    def __post_init__(self):
        """Validate probing settings."""
        if self.method not in PROBE_METHODS:
            raise ValueError(f"Invalid probe method: {self.method}. Must be one of {list(PROBE_METHODS)}")
        if not (1 <= self.port <= 65535):
            raise ValueError(f"Invalid probe port: {self.port}")
        if self.timeout <= 0:
            raise ValueError(f"Invalid probe timeout: {self.timeout}")
        if self.samples < 1:
            raise ValueError(f"Probe samples must be at least 1: {self.samples}")
        if self.max_workers < 1:
            raise ValueError(f"Worker count must be at least 1: {self.max_workers}")


@dataclass
class TunnelConfig:
    """Settings rendered into every generated WireGuard file."""
    allowed_ips: List[str] = field(default_factory=lambda: ["0.0.0.0/0", "::/0"])
    persistent_keepalive: int = 25
    dns_servers: List[str] = field(default_factory=list)  # empty = use the servers PIA hands out
    file_prefix: str = "pia"
    max_workers: int = 4

    def __post_init__(self):
        """Validate tunnel settings."""
        if not self.allowed_ips:
            raise ValueError("At least one AllowedIPs range is required")
        for network in self.allowed_ips:
            try:
                ipaddress.ip_network(network, strict=False)
            except ValueError as e:
                raise ValueError(f"Invalid AllowedIPs range {network!r}: {e}")
        for server in self.dns_servers:
            try:
                ipaddress.ip_address(server)
            except ValueError as e:
                raise ValueError(f"Invalid DNS server {server!r}: {e}")
        if self.persistent_keepalive < 0:
            raise ValueError(f"Invalid keepalive interval: {self.persistent_keepalive}")
        if not self.file_prefix or "/" in self.file_prefix:
            raise ValueError(f"Invalid file prefix: {self.file_prefix!r}")
        if self.max_workers < 1:
            raise ValueError(f"Worker count must be at least 1: {self.max_workers}")


@dataclass
class LoggingConfig:
    """Logging configuration settings."""
    default_verbosity: int = 3
    debug_mode: bool = False

    def __post_init__(self):
        """Validate logging configuration."""
        if not (0 <= self.default_verbosity <= 5):
            raise ValueError(f"Invalid default verbosity: {self.default_verbosity}")

    @property
    def verbosity(self) -> int:
        return 5 if self.debug_mode else self.default_verbosity


class Config:
    """
    Main configuration class that aggregates all configuration sections.

    Values come from the built-in defaults, then an optional JSON file, then
    environment variables; later sources override earlier ones.
    """

    SECTIONS = ('credentials', 'paths', 'api', 'probe', 'tunnel', 'logging')

    def __init__(self, config_file: Optional[Union[str, Path]] = None,
                 environ: Optional[Dict[str, str]] = None):
        """
        Initialize configuration.

        Args:
            config_file: Optional path to a JSON configuration file
            environ: Environment mapping (defaults to os.environ)

        Raises:
            SetupError: If the file cannot be read or a value is invalid
        """
        self.config_file = Path(config_file) if config_file else None
        self._environ = os.environ if environ is None else environ
        self._load_configuration()

    def _load_configuration(self):
        """Load configuration from file and environment."""
        config_data: Dict[str, Dict[str, Any]] = {}

        if self.config_file:
            config_data = self._load_config_file(self.config_file)

        for section, values in self._load_environment_config().items():
            config_data.setdefault(section, {}).update(values)

        unknown = set(config_data) - set(self.SECTIONS)
        if unknown:
            raise SetupError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        try:
            self.credentials = CredentialsConfig(**config_data.get('credentials', {}))
            self.paths = PathConfig(**config_data.get('paths', {}))
            self.api = ApiConfig(**config_data.get('api', {}))
            self.probe = ProbeConfig(**config_data.get('probe', {}))
            self.tunnel = TunnelConfig(**config_data.get('tunnel', {}))
            self.logging = LoggingConfig(**config_data.get('logging', {}))
        except (TypeError, ValueError) as e:
            raise SetupError(f"Invalid configuration: {e}")

    def _load_config_file(self, config_file: Path) -> Dict[str, Any]:
        """Load configuration from JSON file."""
        if not config_file.exists():
            raise SetupError(f"Configuration file not found: {config_file}")

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise SetupError(f"Invalid JSON in configuration file {config_file}: {e}")
        except OSError as e:
            raise SetupError(f"Error loading configuration file {config_file}: {e}")

        if not isinstance(config_data, dict):
            raise SetupError(f"Configuration file {config_file} must contain a JSON object")
        return config_data

    def _load_environment_config(self) -> Dict[str, Dict[str, Any]]:
        """Load overrides from environment variables."""
        env = self._environ
        env_config: Dict[str, Dict[str, Any]] = {}

        if env.get('PIA_USER'):
            env_config.setdefault('credentials', {})['username'] = env['PIA_USER']
        if env.get('PIA_PASS'):
            env_config.setdefault('credentials', {})['password'] = env['PIA_PASS']

        if env.get('PIA_CA_CERT'):
            env_config.setdefault('paths', {})['ca_cert'] = env['PIA_CA_CERT']
        if env.get('PIA_OUTPUT_DIR'):
            env_config.setdefault('paths', {})['output_dir'] = env['PIA_OUTPUT_DIR']

        # Debug mode from environment
        if env.get('PIA_DEBUG', env.get('DEBUG')) in ['1', 'true', 'True', 'TRUE']:
            env_config.setdefault('logging', {})['debug_mode'] = True

        return env_config


def first_non_empty(sources: Iterable[Callable[[], Any]]) -> Any:
    """
    Return the first non-empty value produced by an ordered list of sources.

    Each source is a zero-argument callable; sources after the first hit are
    never called, so an interactive prompt placed last only runs when every
    other source came up empty.
    """
    for source in sources:
        value = source()
        if value:
            return value
    return None


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_file: Optional[Union[str, Path]] = None) -> Config:
    """
    Get the global configuration instance.

    Args:
        config_file: Optional path to configuration file

    Returns:
        Configuration instance
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = Config(config_file)

    return _config_instance


def reset_config():
    """Reset the global configuration instance (primarily for testing)."""
    global _config_instance
    _config_instance = None
