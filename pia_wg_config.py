#!/usr/bin/env python3

import os
import sys
import argparse
import dataclasses

from piawg import setup_logging, read_region_ids, parse_index_list, prompt_indices, format_enumerated
from piawg.config import Config, SetupError
from piawg.pia import (
    PiaConfigProvisioner, ApiError, AuthenticationError, DirectoryError, SelectionError,
    SELECTION_MODES, MANUAL, LOWEST_LATENCY
)

# Exit codes
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_NOTHING_PROVISIONED = 2

# Global log_message function - will be set by setup_logging
log_message = None


def build_parser():
    parser = argparse.ArgumentParser(
        description="Generate WireGuard config files for Private Internet Access servers."
    )
    parser.add_argument(
        "verbosity",
        type=int,
        nargs='?',
        default=3,
        choices=range(6), # 0 to 5
        help="Set verbosity level (0=STATUS, 1=ERROR, 2=SUCCESS, 3=INFO, 4=VARIABLES, 5=DEBUG). Default is 3.",
        metavar="LEVEL"
    )
    parser.add_argument("--debug", action="store_true", help="Same as verbosity 5.")
    parser.add_argument("--config", help="JSON configuration file.")

    selection = parser.add_argument_group("server selection")
    selection.add_argument(
        "-r", "--region",
        dest="regions",
        action="append",
        metavar="ID",
        help="Region id to provision (repeatable). Defaults to the regions file, then a prompt."
    )
    selection.add_argument(
        "--mode",
        choices=SELECTION_MODES,
        default=LOWEST_LATENCY,
        help=f"How endpoints are chosen. Default is {LOWEST_LATENCY}."
    )
    selection.add_argument("--select", metavar="INDICES", help='Manual mode: comma separated candidate indices, or "all".')
    selection.add_argument("--port-forward-only", action="store_true",
                           help="Only use regions that support port forwarding.")
    selection.add_argument("--list-regions", action="store_true", help="List regions and exit.")

    probing = parser.add_argument_group("probing")
    probing.add_argument("--probe-method", choices=("tcp", "icmp"), help="Reachability probe method.")
    probing.add_argument("--probe-timeout", type=float, metavar="SECONDS", help="Per-probe timeout.")
    probing.add_argument("--probe-samples", type=int, metavar="N", help="Latency samples per endpoint.")
    probing.add_argument("--no-probe", action="store_true", help="Manual mode: do not probe candidates.")

    parser.add_argument("--workers", type=int, metavar="N", help="Parallel registrations.")
    parser.add_argument("--username", help="PIA username (p#######).")
    parser.add_argument("--password", help="PIA password. Prefer PIA_PASS or the credentials file.")
    parser.add_argument("--credentials-file", help="Properties file with PIA_USER= and PIA_PASS=.")
    parser.add_argument("--output-dir", help="Directory for generated configs.")
    parser.add_argument("--ca-cert", help="PIA CA certificate path.")
    return parser


def apply_overrides(config, args):
    """Fold command line options into the loaded configuration (re-validating each section)."""
    paths = {}
    if args.output_dir:
        paths['output_dir'] = args.output_dir
    if args.ca_cert:
        paths['ca_cert'] = args.ca_cert
    if args.credentials_file:
        paths['credentials_file'] = args.credentials_file

    probe = {}
    if args.probe_method:
        probe['method'] = args.probe_method
    if args.probe_timeout is not None:
        probe['timeout'] = args.probe_timeout
    if args.probe_samples is not None:
        probe['samples'] = args.probe_samples
    if args.no_probe:
        probe['enabled'] = False

    tunnel = {}
    if args.workers is not None:
        tunnel['max_workers'] = args.workers

    try:
        config.paths = dataclasses.replace(config.paths, **paths)
        config.probe = dataclasses.replace(config.probe, **probe)
        config.tunnel = dataclasses.replace(config.tunnel, **tunnel)
    except ValueError as e:
        raise SetupError(f"Invalid option: {e}")

    if args.debug:
        config.logging.debug_mode = True
    return config


def choose_regions(provisioner, port_forward_only):
    """Interactive region selection from the enumerated region list."""
    regions = provisioner.list_regions(port_forward_only)
    if not regions:
        raise SelectionError("No regions with WireGuard servers available")
    print("Available regions:")
    for line in format_enumerated([f"{r.display_name} ({r.id})" for r in regions]):
        print(f"  {line}")
    indices = prompt_indices("Select region(s) by number: ", len(regions))
    for index in indices:
        if index >= len(regions):
            raise SelectionError(f"Selection {index} is out of range (0-{len(regions) - 1})")
    return [regions[i].id for i in indices]


def choose_endpoints(candidates, results):
    """Manual mode chooser: show candidates with their latency and prompt for indices."""
    latencies = {r.endpoint.key: r for r in results or []}
    lines = []
    for endpoint in candidates:
        result = latencies.get(endpoint.key)
        if result is None:
            status = ""
        elif result.reachable:
            status = f" - {result.latency_ms}ms"
        else:
            status = " - unreachable"
        lines.append(f"{endpoint.region_id}: {endpoint}{status}")

    print("Available servers:")
    for line in format_enumerated(lines):
        print(f"  {line}")
    return prompt_indices("Select server(s) by number: ", len(candidates))


def select_from_argument(text):
    """Manual mode chooser for --select; "all" picks every candidate."""
    if text.strip().lower() != "all":
        parse_index_list(text)

    def chooser(candidates, results):
        return parse_index_list(text, len(candidates))
    return chooser


def run(args):
    """Run one provisioning pass; returns the process exit code."""
    config = apply_overrides(Config(args.config), args)
    setup_logging(5 if config.logging.debug_mode else args.verbosity,
                  config.paths.log_file)

    if args.mode != MANUAL and not config.probe.enabled:
        raise SetupError(f"--no-probe only applies to manual mode, not {args.mode}")

    chooser = select_from_argument(args.select) if args.select else choose_endpoints

    # Generated files hold private keys
    os.umask(0o077)

    with PiaConfigProvisioner(config) as provisioner:
        if args.list_regions:
            provisioner.load_directory()
            for region in provisioner.list_regions(args.port_forward_only):
                pf = " [port forwarding]" if region.port_forward else ""
                print(f"{region.id}\t{region.display_name}{pf}")
            return EXIT_OK

        provisioner.prepare()
        token = provisioner.authenticate(args.username, args.password, interactive=sys.stdin.isatty())
        provisioner.load_directory()

        region_ids = args.regions or read_region_ids(config.paths.regions_file)
        if region_ids:
            log_message(4, f"Requested regions: {', '.join(region_ids)}")
        else:
            log_message(3, "No regions given. Falling back to manual region selection.")
            region_ids = choose_regions(provisioner, args.port_forward_only)

        summary = provisioner.run(
            token,
            region_ids,
            mode=args.mode,
            chooser=chooser,
            port_forward_only=args.port_forward_only,
        )

    if not summary.has_successes:
        log_message(1, "No configs were generated.")
        return EXIT_NOTHING_PROVISIONED
    log_message(0, "Config generation completed.")
    return EXIT_OK


def main():
    """Command line entry point."""
    parser = build_parser()
    args = parser.parse_args()

    # Import log_message after setup_logging initializes it
    setup_logging(5 if args.debug else args.verbosity)
    from piawg.logger import log_message
    globals()['log_message'] = log_message

    try:
        sys.exit(run(args))
    except SetupError as e:
        log_message(1, f"Setup failed: {e}")
    except AuthenticationError as e:
        log_message(1, f"Authentication failed: {e}")
    except DirectoryError as e:
        log_message(1, f"Server list unavailable: {e}")
    except ApiError as e:
        log_message(1, f"API error: {e}")
    except SelectionError as e:
        log_message(1, f"Invalid selection: {e}")
    except ValueError as e:
        # Unparseable interactive input
        log_message(1, f"Invalid input: {e}")
    except (KeyboardInterrupt, EOFError):
        log_message(0, "Interrupted.")
    sys.exit(EXIT_FATAL)


if __name__ == "__main__":
    main()
