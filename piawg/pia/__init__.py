"""
PIA WireGuard Provisioning Package

Python implementation of the PIA "manual connections" WireGuard config
generators: authenticate, discover servers, choose endpoints, register a
fresh key with each and write wg-quick config files.

Architecture:
- api_client: PIA API client with retry logic and pinned-IP TLS
- auth: Credential resolution and token generation
- regions: Server directory parsing and reachability/latency probing
- selection: Manual, first-responsive, lowest-latency and all-responsive selection
- wireguard: Key generation, key registration and config emission
- integration: The provisioning workflow and run summary
"""

from .api_client import (
    PiaApiClient, ApiError, ConnectionError, AuthenticationError,
    ServerError, InvalidResponseError
)
from .auth import PiaTokenGenerator, CredentialManager, SessionToken
from .regions import (
    Region, Endpoint, ProbeResult, ServerSelector, LatencyTester,
    DirectoryError, MalformedDirectory, parse_server_list, PRESENCE, LATENCY
)
from .selection import (
    select_endpoints, SelectionError, NoReachableCandidate, SelectionOutOfRange,
    MANUAL, FIRST_RESPONSIVE, LOWEST_LATENCY, ALL_RESPONSIVE, SELECTION_MODES
)
from .wireguard import (
    KeyPair, TunnelGrant, ConfigRecord,
    WireGuardKeyManager, WireGuardRegistrar, WireGuardConfigManager,
    RegistrationError, RegistrationRejected, RegistrationUnreachable,
    MalformedRegistrationResponse, WriteError
)
from .integration import PiaConfigProvisioner, ProvisionSummary, PlannedEndpoint

__all__ = [
    # API client
    'PiaApiClient',
    'ApiError',
    'ConnectionError',
    'AuthenticationError',
    'ServerError',
    'InvalidResponseError',

    # Authentication
    'PiaTokenGenerator',
    'CredentialManager',
    'SessionToken',

    # Server directory and probing
    'Region',
    'Endpoint',
    'ProbeResult',
    'ServerSelector',
    'LatencyTester',
    'DirectoryError',
    'MalformedDirectory',
    'parse_server_list',
    'PRESENCE',
    'LATENCY',

    # Selection
    'select_endpoints',
    'SelectionError',
    'NoReachableCandidate',
    'SelectionOutOfRange',
    'MANUAL',
    'FIRST_RESPONSIVE',
    'LOWEST_LATENCY',
    'ALL_RESPONSIVE',
    'SELECTION_MODES',

    # WireGuard
    'KeyPair',
    'TunnelGrant',
    'ConfigRecord',
    'WireGuardKeyManager',
    'WireGuardRegistrar',
    'WireGuardConfigManager',
    'RegistrationError',
    'RegistrationRejected',
    'RegistrationUnreachable',
    'MalformedRegistrationResponse',
    'WriteError',

    # Workflow
    'PiaConfigProvisioner',
    'ProvisionSummary',
    'PlannedEndpoint',
]

__version__ = "1.0.0"
__description__ = "PIA WireGuard key registration and config generation"
