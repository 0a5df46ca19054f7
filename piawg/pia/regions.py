#!/usr/bin/env python3

"""
PIA Server Directory and Latency Module

Server discovery and reachability testing for the config generator.
Replaces the jq/ping plumbing of the bash config generators.

Features:
- Parsing of the PIA server list into regions and WireGuard endpoints
- Region lookup with unknown-id reporting
- Multi-threaded reachability and latency probing (TCP connect or ICMP)
"""

import re
import json
import subprocess
import statistics
import ipaddress
import concurrent.futures
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple, Union

from ..config import ProbeConfig
from ..logger import log_message
from ..utils import run_command
from .api_client import PiaApiClient, ApiError


class DirectoryError(Exception):
    """Exception for server directory fetch or parse failures."""
    pass


class MalformedDirectory(DirectoryError):
    """The directory document is not valid JSON or does not match the expected schema."""
    pass


@dataclass(frozen=True)
class Region:
    """A named geographic grouping of endpoints."""
    id: str
    display_name: str
    port_forward: bool = False
    geo: bool = False


@dataclass(frozen=True)
class Endpoint:
    """A single WireGuard server; identity is (hostname, ip)."""
    hostname: str
    ip: str
    region_id: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.hostname, self.ip)

    def __str__(self):
        return f"{self.hostname} ({self.ip})"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of probing one endpoint."""
    endpoint: Endpoint
    reachable: bool
    latency_ms: Optional[int] = None


PRESENCE = "presence"
LATENCY = "latency"
PROBE_MODES = (PRESENCE, LATENCY)


def _first_document_line(raw: Union[str, bytes]) -> str:
    """The live server list is a JSON line followed by a signature block."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedDirectory(f"Server list is not valid UTF-8: {e}")
    text = raw.strip()
    if not text:
        raise MalformedDirectory("Server list document is empty")
    return text.split('\n', 1)[0]


def _require_str(entry: Dict[str, Any], key: str, context: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedDirectory(f"{context} is missing '{key}'")
    return value.strip()


def parse_server_list(raw: Union[str, bytes, Dict[str, Any]]) -> Tuple[List[Region], Dict[str, List[Endpoint]]]:
    """
    Parse the PIA server directory.

    Args:
        raw: Raw document as returned by the server list endpoint, or an
            already decoded JSON object

    Returns:
        Regions ordered by display name (then id), and a mapping of region id
        to that region's WireGuard endpoints in document order

    Raises:
        MalformedDirectory: If the document is not JSON or lacks the
            region/server schema
    """
    if isinstance(raw, dict):
        document = raw
    else:
        try:
            document = json.loads(_first_document_line(raw))
        except json.JSONDecodeError as e:
            raise MalformedDirectory(f"Server list is not valid JSON: {e}")

    if not isinstance(document, dict):
        raise MalformedDirectory("Server list must be a JSON object")

    regions_data = document.get('regions')
    if not isinstance(regions_data, list):
        raise MalformedDirectory("Server list has no 'regions' list")

    regions: List[Region] = []
    endpoints: Dict[str, List[Endpoint]] = {}

    for index, region_data in enumerate(regions_data):
        if not isinstance(region_data, dict):
            raise MalformedDirectory(f"Region entry {index} is not an object")

        region_id = _require_str(region_data, 'id', f"Region entry {index}")
        if region_id in endpoints:
            raise MalformedDirectory(f"Duplicate region id: {region_id}")

        region = Region(
            id=region_id,
            display_name=_require_str(region_data, 'name', f"Region {region_id}"),
            port_forward=bool(region_data.get('port_forward', False)),
            geo=bool(region_data.get('geo', False)),
        )

        servers = region_data.get('servers') or {}
        if not isinstance(servers, dict):
            raise MalformedDirectory(f"Region {region_id} has a malformed 'servers' entry")
        wg_servers = servers.get('wg') or []
        if not isinstance(wg_servers, list):
            raise MalformedDirectory(f"Region {region_id} has a malformed 'wg' server list")

        region_endpoints = []
        for server in wg_servers:
            if not isinstance(server, dict):
                raise MalformedDirectory(f"Region {region_id} has a WireGuard entry that is not an object")
            context = f"WireGuard server in region {region_id}"
            hostname = _require_str(server, 'cn', context)
            ip = _require_str(server, 'ip', context)
            try:
                ipaddress.IPv4Address(ip)
            except ipaddress.AddressValueError:
                raise MalformedDirectory(f"{context} has an invalid IPv4 address: {ip!r}")
            region_endpoints.append(Endpoint(hostname=hostname, ip=ip, region_id=region_id))

        regions.append(region)
        endpoints[region_id] = region_endpoints

    regions.sort(key=lambda r: (r.display_name.lower(), r.id))

    log_message(5, f"Parsed {len(regions)} regions with "
                   f"{sum(len(e) for e in endpoints.values())} WireGuard endpoints")
    return regions, endpoints


class ServerSelector:
    """
    Server directory access backed by the PIA API.

    Provides methods for:
    - Retrieving and parsing the live server list
    - Resolving region ids against the directory
    """

    def __init__(self, api_client: Optional[PiaApiClient] = None):
        """
        Initialize server selector.

        Args:
            api_client: Optional PIA API client instance
        """
        self.api_client = api_client or PiaApiClient()
        self.regions: List[Region] = []
        self.endpoints: Dict[str, List[Endpoint]] = {}

    def load_directory(self) -> List[Region]:
        """
        Fetch and parse the server directory.

        Returns:
            Ordered list of regions

        Raises:
            DirectoryError: If the directory cannot be fetched or parsed
        """
        try:
            raw = self.api_client.get_server_list()
        except ApiError as e:
            raise DirectoryError(f"Failed to retrieve server list: {e}")

        self.regions, self.endpoints = parse_server_list(raw)
        log_message(2, f"Retrieved server list with {len(self.regions)} regions")
        return self.regions

    def get_region(self, region_id: str) -> Optional[Region]:
        """Look up a region by id."""
        for region in self.regions:
            if region.id == region_id:
                return region
        return None

    def get_endpoints(self, region_id: str) -> List[Endpoint]:
        """WireGuard endpoints of a region (empty for unknown ids)."""
        return list(self.endpoints.get(region_id, []))

    def resolve_regions(self, region_ids: List[str]) -> Tuple[List[Region], List[str]]:
        """
        Split requested region ids into known regions and unknown ids.

        Returns:
            (known regions in request order, unknown ids)
        """
        known, unknown = [], []
        for region_id in region_ids:
            region = self.get_region(region_id)
            if region is None:
                log_message(1, f"Invalid region ID: {region_id}. Skipping.")
                unknown.append(region_id)
            elif region not in known:
                known.append(region)
        return known, unknown


_PING_TIME = re.compile(r'time[=<]\s*([\d.]+)\s*ms')


class LatencyTester:
    """
    Reachability and latency testing with multi-threading.

    Every endpoint is probed on its own worker with its own timeout, so a
    slow or dead endpoint never holds up or skews another's result.
    """

    def __init__(self, api_client: Optional[PiaApiClient] = None, probe_config: Optional[ProbeConfig] = None):
        """
        Initialize latency tester.

        Args:
            api_client: PIA API client used for TCP probes
            probe_config: Probe method, port, sample count and pool size
        """
        self.config = probe_config or ProbeConfig()
        self.api_client = api_client or PiaApiClient()
        self.max_workers = self.config.max_workers

    def _tcp_probe(self, ip: str, timeout: float) -> Optional[float]:
        latency = self.api_client.test_latency(ip, self.config.port, timeout)
        return None if latency is None else latency * 1000.0

    def _icmp_probe(self, ip: str, timeout: float) -> Optional[float]:
        wait = max(1, int(round(timeout)))
        try:
            result = run_command(["ping", "-n", "-c", "1", "-W", str(wait), ip],
                                 check=False, capture_output=True, timeout=wait + 1)
        except (subprocess.TimeoutExpired, OSError) as e:
            log_message(5, f"Ping to {ip} failed: {e}")
            return None
        if result.returncode != 0:
            return None
        match = _PING_TIME.search(result.stdout or '')
        if not match:
            log_message(5, f"Ping to {ip} succeeded without a round-trip time")
            return None
        return float(match.group(1))

    def measure_once(self, endpoint: Endpoint, timeout: float) -> Optional[float]:
        """
        Probe an endpoint once.

        Returns:
            Round-trip time in milliseconds, or None if unreachable
        """
        if self.config.method == "icmp":
            return self._icmp_probe(endpoint.ip, timeout)
        return self._tcp_probe(endpoint.ip, timeout)

    def test_endpoint(self, endpoint: Endpoint, mode: str = LATENCY,
                      timeout: Optional[float] = None) -> ProbeResult:
        """
        Probe a single endpoint.

        In presence mode one probe is sent; in latency mode ``samples``
        probes are sent and the median of the successful ones is reported.
        """
        if mode not in PROBE_MODES:
            raise ValueError(f"Invalid probe mode: {mode}")
        timeout = timeout or self.config.timeout
        attempts = 1 if mode == PRESENCE else self.config.samples

        samples = []
        for _ in range(attempts):
            rtt = self.measure_once(endpoint, timeout)
            if rtt is not None:
                samples.append(rtt)

        if not samples:
            log_message(4, f"Server {endpoint}: unreachable")
            return ProbeResult(endpoint=endpoint, reachable=False, latency_ms=None)

        if mode == PRESENCE:
            log_message(4, f"Server {endpoint}: responsive")
            return ProbeResult(endpoint=endpoint, reachable=True, latency_ms=None)

        latency_ms = int(round(statistics.median(samples)))
        log_message(4, f"Server {endpoint}: {latency_ms}ms")
        return ProbeResult(endpoint=endpoint, reachable=True, latency_ms=latency_ms)

    def probe(self, endpoints: List[Endpoint], mode: str = LATENCY,
              timeout: Optional[float] = None) -> List[ProbeResult]:
        """
        Probe every endpoint concurrently.

        Args:
            endpoints: Candidates to test
            mode: ``presence`` or ``latency``
            timeout: Per-probe timeout in seconds

        Returns:
            One result per endpoint, in the order of ``endpoints``
        """
        if mode not in PROBE_MODES:
            raise ValueError(f"Invalid probe mode: {mode}")
        if not endpoints:
            return []

        log_message(3, f"Testing {mode} for {len(endpoints)} servers")
        results: List[Optional[ProbeResult]] = [None] * len(endpoints)

        workers = min(self.max_workers, len(endpoints))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_index = {
                executor.submit(self.test_endpoint, endpoint, mode, timeout): index
                for index, endpoint in enumerate(endpoints)
            }

            for future in concurrent.futures.as_completed(future_to_index):
                index = future_to_index[future]
                endpoint = endpoints[index]
                try:
                    results[index] = future.result()
                except Exception as e:
                    log_message(1, f"Latency test failed for {endpoint}: {e}")
                    results[index] = ProbeResult(endpoint=endpoint, reachable=False, latency_ms=None)

        reachable = sum(1 for r in results if r.reachable)
        log_message(3, f"{reachable} of {len(endpoints)} servers responded")
        return results
