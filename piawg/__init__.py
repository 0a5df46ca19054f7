"""
PIA WireGuard Config Generator

Generates ready-to-use WireGuard client configs for Private Internet Access
servers. The package is split into logical components:

- logger: Logging setup with numeric verbosity levels
- config: Dataclass configuration loaded from JSON and the environment
- utils: Command execution, properties files and selection prompts
- pia: PIA API access, server selection, key registration and config files
"""

from .logger import setup_logging, log_message
from .utils import (
    run_command, command_exists, read_properties_file, read_region_ids,
    parse_index_list, prompt_indices, format_enumerated
)
from .config import (
    Config, get_config, reset_config, first_non_empty, SetupError,
    CredentialsConfig, PathConfig, ApiConfig, ProbeConfig,
    TunnelConfig, LoggingConfig
)

__all__ = [
    # Logger functions
    'setup_logging',
    'log_message',

    # Utility functions
    'run_command',
    'command_exists',
    'read_properties_file',
    'read_region_ids',
    'parse_index_list',
    'prompt_indices',
    'format_enumerated',

    # Configuration management
    'Config',
    'get_config',
    'reset_config',
    'first_non_empty',
    'SetupError',
    'CredentialsConfig',
    'PathConfig',
    'ApiConfig',
    'ProbeConfig',
    'TunnelConfig',
    'LoggingConfig',
]

__version__ = "1.0.0"
__description__ = "WireGuard config generator for Private Internet Access"
