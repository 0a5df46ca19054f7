#!/usr/bin/env python3

"""
PIA WireGuard Provisioning Module

Key generation, key registration and config file generation for PIA
WireGuard endpoints. Replaces the `wg genkey` / curl / heredoc steps of the
bash config generators.

Features:
- Curve25519 key generation with the cryptography library
- Registration of the public key with a PIA endpoint and validation of the
  returned tunnel parameters
- wg-quick compatible config rendering
- Owner-only config files at deterministic, collision-free paths
"""

import os
import re
import base64
import ipaddress
from dataclasses import dataclass, field
from typing import Any, Optional, List, Union
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, PublicFormat, NoEncryption

from ..config import TunnelConfig
from ..logger import log_message
from .api_client import PiaApiClient, ApiError, ConnectionError, InvalidResponseError
from .auth import SessionToken
from .regions import Endpoint


class WireGuardError(Exception):
    """Exception for WireGuard errors."""
    pass


class RegistrationError(WireGuardError):
    """Registering a key with an endpoint failed; only that endpoint is affected."""

    def __init__(self, endpoint: Endpoint, reason: str):
        super().__init__(f"{endpoint}: {reason}")
        self.endpoint = endpoint
        self.reason = reason


class RegistrationRejected(RegistrationError):
    """The endpoint answered but refused the key."""
    pass


class RegistrationUnreachable(RegistrationError):
    """The endpoint could not be reached (timeout, TLS failure, refused)."""
    pass


class MalformedRegistrationResponse(RegistrationError):
    """The endpoint answered with missing or malformed tunnel parameters."""
    pass


class WriteError(WireGuardError):
    """A config file could not be written."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Failed to write {path}: {reason}")
        self.path = path
        self.reason = reason


@dataclass(frozen=True)
class KeyPair:
    """Base64 encoded Curve25519 key pair."""
    private_key: str = field(repr=False)
    public_key: str


@dataclass(frozen=True)
class TunnelGrant:
    """
    Tunnel parameters issued by an endpoint for one registered public key.

    The grant keeps the key pair it was issued for, so it cannot be combined
    with a different private key later on.
    """
    endpoint: Endpoint
    server_public_key: str
    server_port: int
    assigned_client_address: str
    dns_servers: List[str]
    key_pair: KeyPair = field(repr=False)


@dataclass(frozen=True)
class ConfigRecord:
    """Fully resolved WireGuard client config for one endpoint."""
    region_id: str
    endpoint: Endpoint
    private_key: str = field(repr=False)
    public_key: str
    address: str
    dns_servers: List[str]
    server_public_key: str
    server_port: int
    allowed_ips: List[str]
    persistent_keepalive: int
    latency_ms: Optional[int] = None

    @classmethod
    def from_grant(cls, grant: TunnelGrant, tunnel_config: Optional[TunnelConfig] = None,
                   latency_ms: Optional[int] = None) -> 'ConfigRecord':
        """Build the record for a grant, with the key pair the grant was issued for."""
        tunnel_config = tunnel_config or TunnelConfig()
        return cls(
            region_id=grant.endpoint.region_id,
            endpoint=grant.endpoint,
            private_key=grant.key_pair.private_key,
            public_key=grant.key_pair.public_key,
            address=_interface_address(grant.assigned_client_address),
            dns_servers=list(tunnel_config.dns_servers or grant.dns_servers),
            server_public_key=grant.server_public_key,
            server_port=grant.server_port,
            allowed_ips=list(tunnel_config.allowed_ips),
            persistent_keepalive=tunnel_config.persistent_keepalive,
            latency_ms=latency_ms,
        )


def _interface_address(address: str) -> str:
    """PIA hands out a bare host address; wg-quick wants a prefix length."""
    if '/' in address:
        return address
    return f"{address}/{ipaddress.ip_address(address).max_prefixlen}"


class WireGuardKeyManager:
    """
    WireGuard key management.

    Provides methods for:
    - Ephemeral key generation
    - Key validation
    """

    def generate_keys(self) -> KeyPair:
        """
        Generate an ephemeral WireGuard key pair.

        Returns:
            KeyPair with base64 encoded private and public keys
        """
        private = X25519PrivateKey.generate()
        private_bytes = private.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
        public_bytes = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

        key_pair = KeyPair(
            private_key=base64.b64encode(private_bytes).decode('ascii'),
            public_key=base64.b64encode(public_bytes).decode('ascii'),
        )
        log_message(4, f"Generated WireGuard key pair - Public key: {key_pair.public_key[:16]}...")
        return key_pair

    @staticmethod
    def validate_key(key: Any) -> bool:
        """
        Validate WireGuard key format.

        Args:
            key: Key to validate

        Returns:
            True if valid, False otherwise
        """
        # WireGuard keys are 44 characters base64 encoded
        if not isinstance(key, str) or len(key) != 44:
            return False
        try:
            decoded = base64.b64decode(key, validate=True)
        except ValueError:
            return False
        # Should be exactly 32 bytes
        return len(decoded) == 32


class WireGuardRegistrar:
    """
    Registers public keys with PIA WireGuard endpoints.

    Each call is independent; the token and trust anchor held by the API
    client are read-only, so one registrar can be shared across workers.
    """

    def __init__(self, api_client: Optional[PiaApiClient] = None,
                 key_manager: Optional[WireGuardKeyManager] = None):
        self.api_client = api_client or PiaApiClient()
        self.key_manager = key_manager or WireGuardKeyManager()

    def register(self, endpoint: Endpoint, token: SessionToken,
                 key_pair: Optional[KeyPair] = None) -> TunnelGrant:
        """
        Register a key pair with an endpoint.

        Args:
            endpoint: Endpoint to register with
            token: Authenticated session token
            key_pair: Key pair to register; a fresh one is generated if omitted

        Returns:
            The tunnel grant for that key pair

        Raises:
            RegistrationUnreachable: Transport failure
            RegistrationRejected: Error status from the endpoint
            MalformedRegistrationResponse: Missing or malformed fields
        """
        key_pair = key_pair or self.key_manager.generate_keys()

        try:
            wg_data = self.api_client.wireguard_add_key(
                hostname=endpoint.hostname,
                server_ip=endpoint.ip,
                token=token.value,
                public_key=key_pair.public_key,
            )
        except ConnectionError as e:
            raise RegistrationUnreachable(endpoint, str(e))
        except InvalidResponseError as e:
            raise MalformedRegistrationResponse(endpoint, str(e))
        except ApiError as e:
            if e.status_code is None:
                raise RegistrationUnreachable(endpoint, str(e))
            raise RegistrationRejected(endpoint, str(e))

        grant = self._parse_grant(endpoint, key_pair, wg_data)
        log_message(2, f"Successfully added WireGuard key to {endpoint}, peer IP: {grant.assigned_client_address}")
        return grant

    def _parse_grant(self, endpoint: Endpoint, key_pair: KeyPair, wg_data: Any) -> TunnelGrant:
        """Validate the addKey response, status first, then the tunnel parameters."""
        def malformed(reason):
            return MalformedRegistrationResponse(endpoint, reason)

        if not isinstance(wg_data, dict):
            raise malformed("response is not a JSON object")

        status = wg_data.get('status')
        if not isinstance(status, str) or not status:
            raise malformed("response has no status")
        if status != 'OK':
            reason = wg_data.get('message') or status
            raise RegistrationRejected(endpoint, f"status {status}: {reason}")

        for required in ('server_key', 'server_port', 'peer_ip', 'dns_servers'):
            if required not in wg_data:
                raise malformed(f"missing required field: {required}")

        server_key = wg_data['server_key']
        if not self.key_manager.validate_key(server_key):
            raise malformed("invalid server_key")

        try:
            server_port = int(wg_data['server_port'])
        except (TypeError, ValueError):
            raise malformed(f"invalid server_port: {wg_data['server_port']!r}")
        if isinstance(wg_data['server_port'], bool) or not (1 <= server_port <= 65535):
            raise malformed(f"invalid server_port: {wg_data['server_port']!r}")

        peer_ip = wg_data['peer_ip']
        try:
            if not isinstance(peer_ip, str):
                raise TypeError(peer_ip)
            ipaddress.ip_interface(peer_ip)
        except (TypeError, ValueError):
            raise malformed(f"invalid peer_ip: {peer_ip!r}")

        dns_servers = wg_data['dns_servers']
        if not isinstance(dns_servers, list):
            raise malformed("dns_servers is not a list")
        for server in dns_servers:
            try:
                if not isinstance(server, str):
                    raise TypeError(server)
                ipaddress.ip_address(server)
            except (TypeError, ValueError):
                raise malformed(f"invalid DNS server: {server!r}")

        # The endpoint echoes the key it registered; it has to be ours
        echoed = wg_data.get('peer_pubkey')
        if echoed is not None and echoed != key_pair.public_key:
            raise malformed("peer_pubkey does not match the submitted public key")

        return TunnelGrant(
            endpoint=endpoint,
            server_public_key=server_key,
            server_port=server_port,
            assigned_client_address=peer_ip,
            dns_servers=list(dns_servers),
            key_pair=key_pair,
        )


_UNSAFE_NAME_CHARS = re.compile(r'[^A-Za-z0-9._-]')


class WireGuardConfigManager:
    """
    WireGuard configuration file generation.

    Provides methods for:
    - Rendering config records in wg-quick syntax
    - Deterministic per-endpoint file naming
    - Owner-only file creation
    """

    FILE_MODE = 0o600

    def __init__(self, output_dir: Union[str, Path] = Path("./configs"), file_prefix: str = "pia"):
        """
        Initialize WireGuard config manager.

        Args:
            output_dir: Directory the config files are written to
            file_prefix: Leading component of every file name
        """
        self.output_dir = Path(output_dir)
        self.file_prefix = file_prefix

    def path_for(self, record: ConfigRecord) -> Path:
        """
        Destination path for a record.

        The name embeds the region id, hostname and IP, so it is unique per
        (region, endpoint), plus the measured latency when there is one.
        """
        parts = [self.file_prefix, record.region_id, record.endpoint.hostname, record.endpoint.ip]
        name = '-'.join(_UNSAFE_NAME_CHARS.sub('_', part) for part in parts)
        if record.latency_ms is not None:
            name += f"_{record.latency_ms}ms"
        return self.output_dir / f"{name}.conf"

    @staticmethod
    def render(record: ConfigRecord) -> str:
        """Render a record in wg-quick syntax."""
        lines = [
            "[Interface]",
            f"PrivateKey = {record.private_key}",
            f"Address = {record.address}",
        ]
        if record.dns_servers:
            lines.append(f"DNS = {', '.join(record.dns_servers)}")
        lines += [
            "",
            "[Peer]",
            f"PublicKey = {record.server_public_key}",
            f"Endpoint = {record.endpoint.ip}:{record.server_port}",
            f"AllowedIPs = {', '.join(record.allowed_ips)}",
        ]
        if record.persistent_keepalive:
            lines.append(f"PersistentKeepalive = {record.persistent_keepalive}")
        return '\n'.join(lines) + '\n'

    def emit(self, record: ConfigRecord, path: Optional[Union[str, Path]] = None) -> Path:
        """
        Write a record to disk with owner-only permissions.

        Args:
            record: Config to write
            path: Destination; defaults to path_for(record)

        Returns:
            Path of the written file

        Raises:
            WriteError: On any filesystem failure
        """
        config_path = Path(path) if path else self.path_for(record)
        content = self.render(record)

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.FILE_MODE)
            try:
                # An existing file keeps its old mode through O_CREAT
                os.fchmod(fd, self.FILE_MODE)
                with os.fdopen(fd, 'w') as f:
                    fd = None
                    f.write(content)
            finally:
                if fd is not None:
                    os.close(fd)
        except OSError as e:
            raise WriteError(config_path, str(e))

        log_message(2, f"Config generated: {config_path}")
        return config_path
