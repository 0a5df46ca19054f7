#!/usr/bin/env python3

"""
PIA API Client Module

Provides the HTTP client for the PIA services used while provisioning
WireGuard configs, with error handling, retry logic and timeout management.
Replaces the curl calls of the bash-based manual-connections scripts.

Features:
- Automatic retry with exponential backoff
- SSL certificate validation with the PIA CA for VPN endpoints
- Requests pinned to a server IP with the hostname used for SNI and
  certificate checks (the curl --connect-to behaviour)
- One-time CA certificate bootstrap
- Timeout handling for reliability
"""

import time
import socket
from typing import Dict, Any, Optional
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import ApiConfig, SetupError
from ..logger import log_message


class ApiError(Exception):
    """Base exception for PIA API errors."""
    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class ConnectionError(ApiError):
    """Exception for network connection errors (timeouts, TLS failures, refused connections)."""
    pass


class AuthenticationError(ApiError):
    """Exception for authentication failures."""
    pass


class ServerError(ApiError):
    """Exception for server-side errors."""
    pass


class InvalidResponseError(ApiError):
    """Exception for a successful HTTP response whose body is not JSON."""
    pass


class PinnedHostAdapter(HTTPAdapter):
    """
    Transport adapter that connects to whatever address the URL names (an IP)
    while presenting ``hostname`` for SNI and checking the certificate
    against it.
    """

    def __init__(self, hostname: str, *args, **kwargs):
        self.hostname = hostname
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs['server_hostname'] = self.hostname
        pool_kwargs['assert_hostname'] = self.hostname
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


class PiaApiClient:
    """
    PIA API client with error handling and retry logic.

    Provides methods for:
    - Token generation
    - Server list retrieval
    - WireGuard key registration
    - TCP latency measurement
    """

    # Retry configuration
    RETRY_STATUS_CODES = [500, 502, 503, 504]

    def __init__(self, api_config: Optional[ApiConfig] = None, ca_cert_path: Optional[Path] = None):
        """
        Initialize PIA API client.

        Args:
            api_config: Endpoint, timeout and retry settings
            ca_cert_path: Path to PIA CA certificate for SSL verification
        """
        self.config = api_config or ApiConfig()
        self.ca_cert_path = Path(ca_cert_path) if ca_cert_path else Path("./ca/ca.rsa.4096.crt")
        self.timeout = (self.config.connect_timeout, self.config.read_timeout)

        # Initialize session with retry strategy
        self.session = requests.Session()
        self.session.mount("http://", self._build_adapter(HTTPAdapter))
        self.session.mount("https://", self._build_adapter(HTTPAdapter))

        log_message(5, f"PIA API client initialized with timeout: {self.timeout}")

    def _retry_strategy(self) -> Retry:
        """Retry policy shared by every adapter this client mounts."""
        return Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.backoff_factor,
            status_forcelist=self.RETRY_STATUS_CODES,
            allowed_methods=["HEAD", "GET", "POST"],
            raise_on_status=False
        )

    def _build_adapter(self, adapter_class, *args) -> HTTPAdapter:
        return adapter_class(*args, max_retries=self._retry_strategy())

    def ensure_ca_certificate(self) -> Path:
        """
        Make sure the PIA CA certificate exists, downloading it once if needed.

        Returns:
            Path to the certificate

        Raises:
            SetupError: If the certificate is missing and cannot be obtained
        """
        if self.ca_cert_path.is_file() and self.ca_cert_path.stat().st_size > 0:
            log_message(5, f"CA certificate already exists at {self.ca_cert_path}")
            return self.ca_cert_path

        if not self.config.download_ca:
            raise SetupError(f"CA certificate not found at {self.ca_cert_path} and download is disabled")

        log_message(3, f"Downloading CA certificate to {self.ca_cert_path}")
        try:
            response = self.session.get(self.config.ca_cert_url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SetupError(f"Failed to download CA certificate: {e}")

        if response.status_code != 200 or not response.content:
            raise SetupError(f"Failed to download CA certificate: HTTP {response.status_code}")

        try:
            self.ca_cert_path.parent.mkdir(parents=True, exist_ok=True)
            self.ca_cert_path.write_bytes(response.content)
        except OSError as e:
            raise SetupError(f"Failed to store CA certificate at {self.ca_cert_path}: {e}")

        log_message(2, f"Downloaded CA certificate to {self.ca_cert_path}")
        return self.ca_cert_path

    def _make_request(self, method: str, url: str, session: Optional[requests.Session] = None,
                      log_body: bool = True, **kwargs) -> requests.Response:
        """
        Make HTTP request with error handling and logging.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            session: Session to use instead of the client's own
            log_body: Whether the response body may be written to the debug log
            **kwargs: Additional arguments for requests

        Returns:
            Response object

        Raises:
            ConnectionError: For network connection issues
            ApiError: For other request failures
        """
        # Set default timeout if not provided
        kwargs.setdefault('timeout', self.timeout)

        log_message(5, f"Making {method} request to: {url}")

        try:
            response = (session or self.session).request(method, url, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            # SSLError is a subclass of ConnectionError
            raise ConnectionError(f"Connection error for {url}: {e}")
        except requests.exceptions.RequestException as e:
            raise ApiError(f"Request error for {url}: {e}")
        except OSError as e:
            # Raised before connecting, e.g. an unreadable CA bundle
            raise ConnectionError(f"Connection error for {url}: {e}")

        log_message(5, f"Response status: {response.status_code}")
        if log_body:
            log_message(5, f"Response body: {response.text[:200]}")

        return response

    def _handle_response(self, response: requests.Response, expected_status: int = 200) -> Dict[str, Any]:
        """
        Handle API response and extract JSON data.

        Raises:
            AuthenticationError: For authentication failures
            ServerError: For server-side errors
            ApiError: For other API errors
        """
        if response.status_code == 401:
            raise AuthenticationError("Authentication failed - invalid credentials", 401)

        if response.status_code == 403:
            raise AuthenticationError("Access forbidden - insufficient permissions", 403)

        if response.status_code >= 500:
            raise ServerError(f"Server error: {response.status_code}", response.status_code)

        if response.status_code != expected_status:
            raise ApiError(f"Unexpected status code: {response.status_code}", response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Invalid JSON response: {e}", response.status_code)

    def generate_token(self, username: str, password: str) -> Dict[str, Any]:
        """
        Generate authentication token from PIA credentials.

        Args:
            username: PIA username
            password: PIA password

        Returns:
            Token data as returned by PIA

        Raises:
            AuthenticationError: For invalid credentials or a response without a token
            ApiError: For other API errors
        """
        log_message(3, f"Generating token for user: {username}")

        data = {
            'username': username,
            'password': password
        }

        # The response carries the token, keep it out of the debug log
        response = self._make_request('POST', self.config.token_url, data=data, log_body=False)
        token_data = self._handle_response(response)

        if not isinstance(token_data, dict) or not token_data.get('token'):
            raise AuthenticationError("No token in response", response.status_code)

        log_message(2, "Successfully generated authentication token")
        return token_data

    def get_server_list(self) -> str:
        """
        Retrieve the raw PIA server list document.

        Returns:
            Response body; parsing is left to the directory parser

        Raises:
            ApiError: For API errors
        """
        log_message(3, "Retrieving PIA server list")

        response = self._make_request('GET', self.config.server_list_url, log_body=False)
        if response.status_code != 200:
            raise ApiError(f"Unexpected status code: {response.status_code}", response.status_code)
        if not response.text.strip():
            raise ApiError("Empty server list response", response.status_code)

        log_message(5, f"Retrieved server list ({len(response.text)} bytes)")
        return response.text

    def wireguard_add_key(self, hostname: str, server_ip: str, token: str, public_key: str) -> Dict[str, Any]:
        """
        Register a WireGuard public key with a PIA server.

        The request goes to ``server_ip`` directly; ``hostname`` is only used
        for SNI and certificate verification against the PIA CA.

        Args:
            hostname: Server hostname (certificate common name)
            server_ip: Server IP address (actual connection target)
            token: Authentication token
            public_key: WireGuard public key

        Returns:
            Decoded JSON response, not yet validated

        Raises:
            ConnectionError: For transport failures
            InvalidResponseError: For a body that is not JSON
            ApiError: For HTTP error statuses
        """
        log_message(3, f"Adding WireGuard key to server: {hostname} ({server_ip})")

        base_url = f"https://{server_ip}:{self.config.registration_port}"
        params = {'pt': token, 'pubkey': public_key}

        with requests.Session() as session:
            session.mount(base_url, self._build_adapter(PinnedHostAdapter, hostname))
            response = self._make_request(
                'GET',
                f"{base_url}/addKey",
                session=session,
                params=params,
                headers={'Host': hostname},
                verify=str(self.ca_cert_path),
            )

        if response.status_code != 200:
            raise ApiError(f"HTTP {response.status_code} from {hostname}", response.status_code)

        try:
            wg_data = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Invalid JSON response from {hostname}: {e}", response.status_code)

        return wg_data

    def test_latency(self, server_ip: str, port: int, timeout: float) -> Optional[float]:
        """
        Test latency to a PIA server using a TCP connection test.

        Args:
            server_ip: Server IP address to test
            port: TCP port to connect to
            timeout: Connection timeout in seconds

        Returns:
            Latency in seconds, or None if unreachable
        """
        start_time = time.monotonic()
        try:
            with socket.create_connection((server_ip, port), timeout=timeout):
                latency = time.monotonic() - start_time
        except OSError as e:
            log_message(5, f"Server {server_ip}:{port} unreachable: {e}")
            return None

        log_message(5, f"Latency to {server_ip}:{port}: {latency:.3f}s")
        return latency

    def close(self):
        """Close the HTTP session."""
        self.session.close()
        log_message(5, "Closed API client session")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
