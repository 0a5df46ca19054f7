#!/usr/bin/env python3

"""
PIA Provisioning Workflow Module

Ties the PIA modules together into one provisioning run:
authenticate, load the server directory, pick endpoints per region, then
register a fresh key with every chosen endpoint and write its config file.

Key Integration Points:
- CA certificate bootstrap and tool checks before any network work
- Per-region automatic selection, or manual selection across regions
- Bounded worker pool for registration and config emission
- Run summary of written files and skipped regions/endpoints

A failure that only concerns one region or endpoint is recorded as a skip
and the run carries on; setup, authentication and directory failures
propagate to the caller.
"""

import concurrent.futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config import Config, SetupError, get_config
from ..logger import log_message
from ..utils import command_exists
from .api_client import PiaApiClient
from .auth import CredentialManager, PiaTokenGenerator, SessionToken
from .regions import Endpoint, ProbeResult, Region, ServerSelector, LatencyTester, LATENCY, PRESENCE
from .selection import (
    MANUAL, LOWEST_LATENCY, AUTOMATIC_MODES,
    SelectionError, NoReachableCandidate, select_endpoints,
)
from .wireguard import (
    ConfigRecord, WireGuardRegistrar, WireGuardConfigManager,
    RegistrationError, RegistrationRejected, RegistrationUnreachable,
    MalformedRegistrationResponse, WriteError,
)


# Skip kinds reported in the run summary
UNKNOWN_REGION = "unknown-region"
NO_PORT_FORWARD = "no-port-forward"
NO_CANDIDATE = "no-candidate"

_ERROR_KINDS = (
    (RegistrationRejected, "rejected"),
    (RegistrationUnreachable, "unreachable"),
    (MalformedRegistrationResponse, "malformed-response"),
    (WriteError, "write-error"),
)


def _error_kind(error: Exception) -> str:
    for error_class, kind in _ERROR_KINDS:
        if isinstance(error, error_class):
            return kind
    if isinstance(error, RegistrationError):
        return "registration-error"
    return "unexpected-error"


@dataclass(frozen=True)
class PlannedEndpoint:
    """An endpoint chosen for provisioning, with its measured latency if any."""
    endpoint: Endpoint
    latency_ms: Optional[int] = None


@dataclass(frozen=True)
class ProvisionedConfig:
    endpoint: Endpoint
    path: Path
    latency_ms: Optional[int] = None


@dataclass(frozen=True)
class SkippedItem:
    """A region or endpoint that produced no config, and why."""
    subject: str
    kind: str
    reason: str


@dataclass
class ProvisionSummary:
    """Outcome of a provisioning run."""
    successes: List[ProvisionedConfig] = field(default_factory=list)
    skips: List[SkippedItem] = field(default_factory=list)

    def add_success(self, provisioned: ProvisionedConfig):
        self.successes.append(provisioned)

    def add_skip(self, subject: str, kind: str, reason: str):
        log_message(1, f"Skipping {subject} ({kind}): {reason}")
        self.skips.append(SkippedItem(subject=subject, kind=kind, reason=reason))

    @property
    def has_successes(self) -> bool:
        return bool(self.successes)

    def log_report(self):
        """Log the written files and the skips."""
        log_message(0, f"Generated {len(self.successes)} config(s), skipped {len(self.skips)}")
        for provisioned in self.successes:
            latency = f" ({provisioned.latency_ms}ms)" if provisioned.latency_ms is not None else ""
            log_message(0, f"  {provisioned.path}{latency}")
        for skipped in self.skips:
            log_message(0, f"  skipped {skipped.subject} [{skipped.kind}]: {skipped.reason}")


# Manual mode hook: receives the enumerated candidates and their probe
# results (None when probing is disabled) and returns display indices
Chooser = Callable[[List[Endpoint], Optional[List[ProbeResult]]], List[int]]


class PiaConfigProvisioner:
    """
    Provisioning workflow for PIA WireGuard configs.

    All collaborators can be injected; by default they are built from the
    configuration and share one API client.
    """

    def __init__(self, config: Optional[Config] = None,
                 api_client: Optional[PiaApiClient] = None,
                 credential_manager: Optional[CredentialManager] = None,
                 token_generator: Optional[PiaTokenGenerator] = None,
                 server_selector: Optional[ServerSelector] = None,
                 latency_tester: Optional[LatencyTester] = None,
                 registrar: Optional[WireGuardRegistrar] = None,
                 config_manager: Optional[WireGuardConfigManager] = None):
        """Initialize the provisioner with the configuration and its collaborators."""
        self.config = config or get_config()

        self.api_client = api_client or PiaApiClient(self.config.api, self.config.paths.ca_cert)
        self.credential_manager = credential_manager or CredentialManager(
            self.config.credentials, self.config.paths.credentials_file)
        self.token_generator = token_generator or PiaTokenGenerator(self.api_client)
        self.server_selector = server_selector or ServerSelector(self.api_client)
        self.latency_tester = latency_tester or LatencyTester(self.api_client, self.config.probe)
        self.registrar = registrar or WireGuardRegistrar(self.api_client)
        self.config_manager = config_manager or WireGuardConfigManager(
            self.config.paths.output_dir, self.config.tunnel.file_prefix)

        log_message(5, "PIA config provisioner initialized")

    def prepare(self) -> Path:
        """
        Check prerequisites before any provisioning work.

        Returns:
            Path of the CA certificate

        Raises:
            SetupError: Missing CA certificate or probe tool
        """
        if self.config.probe.enabled and self.config.probe.method == "icmp" and not command_exists("ping"):
            raise SetupError("ping is required for ICMP probing but was not found in PATH")

        return self.api_client.ensure_ca_certificate()

    def authenticate(self, username: Optional[str] = None, password: Optional[str] = None,
                     interactive: bool = True) -> SessionToken:
        """
        Resolve credentials and obtain a session token.

        Raises:
            AuthenticationError: Missing or rejected credentials
            ApiError: Token service unreachable or failing
        """
        credentials = self.credential_manager.resolve(username, password, interactive=interactive)
        log_message(3, "Authenticating with PIA...")
        return self.token_generator.generate_token(credentials.username, credentials.password)

    def load_directory(self) -> List[Region]:
        """Fetch and parse the server directory (raises DirectoryError)."""
        return self.server_selector.load_directory()

    def list_regions(self, port_forward_only: bool = False) -> List[Region]:
        """Regions of the loaded directory that have WireGuard servers."""
        regions = []
        for region in self.server_selector.regions:
            if port_forward_only and not region.port_forward:
                continue
            if self.server_selector.get_endpoints(region.id):
                regions.append(region)
        return regions

    def resolve_regions(self, region_ids: Sequence[str], summary: ProvisionSummary,
                        port_forward_only: bool = False) -> List[Region]:
        """Known regions in request order; everything else becomes a skip."""
        known, unknown = self.server_selector.resolve_regions(list(region_ids))
        for region_id in unknown:
            summary.add_skip(region_id, UNKNOWN_REGION, "region id not found in server list")

        if not port_forward_only:
            return known

        regions = []
        for region in known:
            if region.port_forward:
                regions.append(region)
            else:
                summary.add_skip(region.id, NO_PORT_FORWARD, "region does not support port forwarding")
        return regions

    def plan_region(self, region: Region, mode: str) -> List[PlannedEndpoint]:
        """
        Probe a region's endpoints and apply an automatic selection mode.

        Raises:
            NoReachableCandidate: The region has no usable endpoint
        """
        endpoints = self.server_selector.get_endpoints(region.id)
        if not endpoints:
            raise NoReachableCandidate(f"Region {region.id} has no WireGuard servers")

        log_message(3, f"Selecting {mode} server for region {region.display_name} ({region.id})")
        probe_mode = LATENCY if mode == LOWEST_LATENCY else PRESENCE
        results = self.latency_tester.probe(endpoints, probe_mode)
        chosen = select_endpoints(endpoints, results, mode)

        latencies = {result.endpoint.key: result.latency_ms for result in results}
        return [PlannedEndpoint(endpoint, latencies.get(endpoint.key)) for endpoint in chosen]

    def manual_candidates(self, regions: Sequence[Region]) -> Tuple[List[Endpoint], Optional[List[ProbeResult]]]:
        """
        Candidate list for manual selection, spanning all given regions.

        Returns:
            (candidates in display order, their latency results or None when
            probing is disabled)
        """
        candidates = [endpoint for region in regions
                      for endpoint in self.server_selector.get_endpoints(region.id)]
        if not candidates or not self.config.probe.enabled:
            return candidates, None
        return candidates, self.latency_tester.probe(candidates, LATENCY)

    def plan_manual(self, candidates: Sequence[Endpoint], results: Optional[Sequence[ProbeResult]],
                    indices: Sequence[int]) -> List[PlannedEndpoint]:
        """Apply a manual index selection (raises SelectionOutOfRange)."""
        chosen = select_endpoints(candidates, results, MANUAL, indices)
        latencies: Dict[Tuple[str, str], Optional[int]] = {}
        if results:
            latencies = {result.endpoint.key: result.latency_ms for result in results}
        return [PlannedEndpoint(endpoint, latencies.get(endpoint.key)) for endpoint in chosen]

    def provision_endpoint(self, planned: PlannedEndpoint, token: SessionToken) -> Path:
        """
        Register a fresh key with one endpoint and write its config.

        Raises:
            RegistrationError: Registration failed for this endpoint
            WriteError: The config could not be written
        """
        grant = self.registrar.register(planned.endpoint, token)
        record = ConfigRecord.from_grant(grant, self.config.tunnel, planned.latency_ms)
        return self.config_manager.emit(record)

    def provision(self, planned: Sequence[PlannedEndpoint], token: SessionToken,
                  summary: Optional[ProvisionSummary] = None) -> ProvisionSummary:
        """
        Provision every planned endpoint on a bounded worker pool.

        Results are recorded in plan order, whatever order the workers finish in.
        """
        summary = summary if summary is not None else ProvisionSummary()
        if not planned:
            return summary

        log_message(3, f"Provisioning {len(planned)} endpoint(s)")
        outcomes: List[object] = [None] * len(planned)

        workers = min(self.config.tunnel.max_workers, len(planned))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_index = {
                executor.submit(self.provision_endpoint, entry, token): index
                for index, entry in enumerate(planned)
            }

            for future in concurrent.futures.as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    outcomes[index] = future.result()
                except (RegistrationError, WriteError) as e:
                    outcomes[index] = e
                except Exception as e:
                    log_message(1, f"Provisioning failed unexpectedly for {planned[index].endpoint}: {e}")
                    outcomes[index] = e

        for entry, outcome in zip(planned, outcomes):
            if isinstance(outcome, Exception):
                reason = getattr(outcome, "reason", None) or str(outcome)
                summary.add_skip(str(entry.endpoint), _error_kind(outcome), reason)
            else:
                summary.add_success(ProvisionedConfig(entry.endpoint, outcome, entry.latency_ms))

        return summary

    def run(self, token: SessionToken, region_ids: Sequence[str], mode: str = LOWEST_LATENCY,
            selection_input: Optional[Sequence[int]] = None, chooser: Optional[Chooser] = None,
            port_forward_only: bool = False) -> ProvisionSummary:
        """
        Provision configs for the requested regions.

        Args:
            token: Session token from authenticate()
            region_ids: Requested region ids
            mode: One of the selection modes
            selection_input: Manual mode display indices
            chooser: Manual mode callback used when selection_input is None
            port_forward_only: Skip regions without port forwarding

        Returns:
            Run summary

        Raises:
            SelectionError: Manual mode without candidates or with an invalid selection
            ValueError: Unknown mode
        """
        if mode != MANUAL and mode not in AUTOMATIC_MODES:
            raise ValueError(f"Invalid selection mode: {mode}")

        summary = ProvisionSummary()
        regions = self.resolve_regions(region_ids, summary, port_forward_only)

        if mode == MANUAL:
            candidates, results = self.manual_candidates(regions)
            if not candidates:
                raise SelectionError("No WireGuard servers available in the selected regions")
            if selection_input is None:
                if chooser is None:
                    raise SelectionError("Manual mode needs a selection")
                selection_input = chooser(candidates, results)
            planned = self.plan_manual(candidates, results, selection_input)
        else:
            planned = []
            for region in regions:
                try:
                    planned.extend(self.plan_region(region, mode))
                except NoReachableCandidate as e:
                    summary.add_skip(region.id, NO_CANDIDATE, str(e))

        self.provision(planned, token, summary)
        summary.log_report()
        return summary

    def close(self):
        self.api_client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
