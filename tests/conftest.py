"""pytest configuration and shared fixtures."""

import base64
import json
import dataclasses
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from piawg.config import Config, reset_config
from piawg.logger import logger
from piawg.pia.regions import Endpoint, ProbeResult
from piawg.pia.wireguard import KeyPair


SERVER_KEY = base64.b64encode(bytes(range(32))).decode('ascii')


@pytest.fixture(autouse=True)
def clean_global_state():
    """Drop the global config and any handlers a test attached to the package logger."""
    reset_config()
    yield
    reset_config()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def server_list_doc():
    """A small directory document in the shape of the PIA v6 server list."""
    return {
        "groups": {},
        "regions": [
            {
                "id": "swiss",
                "name": "Switzerland",
                "port_forward": True,
                "geo": False,
                "servers": {
                    "wg": [{"ip": "1.2.3.4", "cn": "vienna401"}],
                    "ovpnudp": [{"ip": "1.2.3.5", "cn": "vienna402"}],
                },
            },
            {
                "id": "de_berlin",
                "name": "DE Berlin",
                "port_forward": False,
                "servers": {
                    "wg": [
                        {"ip": "10.0.0.1", "cn": "berlin401"},
                        {"ip": "10.0.0.2", "cn": "berlin402"},
                        {"ip": "10.0.0.3", "cn": "berlin403"},
                    ],
                },
            },
            {
                "id": "aq_empty",
                "name": "Antarctica",
                "servers": {"ovpntcp": [{"ip": "10.9.9.9", "cn": "south401"}]},
            },
        ],
    }


@pytest.fixture
def server_list_text(server_list_doc):
    """The raw document as served: a JSON line followed by a signature."""
    return json.dumps(server_list_doc) + "\n\nc2lnbmF0dXJlLWJsb2NrLW5vdC1qc29u\n"


@pytest.fixture
def vienna():
    return Endpoint(hostname="vienna401", ip="1.2.3.4", region_id="swiss")


@pytest.fixture
def berlin_endpoints():
    return [
        Endpoint(hostname="berlin401", ip="10.0.0.1", region_id="de_berlin"),
        Endpoint(hostname="berlin402", ip="10.0.0.2", region_id="de_berlin"),
        Endpoint(hostname="berlin403", ip="10.0.0.3", region_id="de_berlin"),
    ]


@pytest.fixture
def key_pair():
    return KeyPair(
        private_key=base64.b64encode(b"\x01" * 32).decode('ascii'),
        public_key=base64.b64encode(b"\x02" * 32).decode('ascii'),
    )


def make_grant_response(public_key=None, **overrides):
    """A successful addKey response body."""
    response = {
        "status": "OK",
        "server_key": SERVER_KEY,
        "server_port": 1337,
        "server_ip": "1.2.3.4",
        "server_vip": "10.10.10.1",
        "peer_ip": "10.20.30.40",
        "dns_servers": ["10.0.0.243", "10.0.0.242"],
    }
    if public_key is not None:
        response["peer_pubkey"] = public_key
    response.update(overrides)
    return response


@pytest.fixture
def grant_response():
    return make_grant_response


def reachable(endpoint, latency_ms=None):
    return ProbeResult(endpoint=endpoint, reachable=True, latency_ms=latency_ms)


def unreachable(endpoint):
    return ProbeResult(endpoint=endpoint, reachable=False, latency_ms=None)


@pytest.fixture
def config(tmp_path):
    """Configuration isolated from the environment, writing under tmp_path."""
    cfg = Config(environ={})
    ca_cert = tmp_path / "ca" / "ca.rsa.4096.crt"
    ca_cert.parent.mkdir()
    ca_cert.write_text("-----BEGIN CERTIFICATE-----\n")
    cfg.paths = dataclasses.replace(
        cfg.paths,
        ca_cert=ca_cert,
        output_dir=tmp_path / "configs",
        credentials_file=tmp_path / "credentials.properties",
        regions_file=tmp_path / "regions.properties",
    )
    return cfg


@pytest.fixture
def api_client():
    """Stand-in for PiaApiClient; every network method is a mock."""
    client = MagicMock()
    client.ca_cert_path = Path("/nonexistent/ca.crt")
    return client
