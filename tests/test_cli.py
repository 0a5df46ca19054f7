"""Command line entry point tests."""

import sys
from unittest.mock import MagicMock, patch

import pytest

import pia_wg_config
from piawg.config import Config, SetupError
from piawg.pia.api_client import AuthenticationError
from piawg.pia.integration import ProvisionSummary, ProvisionedConfig
from piawg.pia.regions import Region
from tests.conftest import reachable, unreachable


def run_main(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["pia-wg-config", *argv])
    with pytest.raises(SystemExit) as excinfo:
        pia_wg_config.main()
    return excinfo.value.code


@pytest.fixture
def provisioner_class(monkeypatch, tmp_path, vienna):
    """Replace the provisioner; the CLI only sees the mock."""
    monkeypatch.setenv("PIA_OUTPUT_DIR", str(tmp_path / "configs"))
    monkeypatch.delenv("PIA_DEBUG", raising=False)
    monkeypatch.delenv("DEBUG", raising=False)
    monkeypatch.chdir(tmp_path)
    instance = MagicMock()
    instance.__enter__.return_value = instance
    instance.run.return_value = ProvisionSummary(successes=[
        ProvisionedConfig(vienna, tmp_path / "configs" / "pia-swiss-vienna401-1.2.3.4_8ms.conf", 8),
    ])
    with patch("pia_wg_config.PiaConfigProvisioner", return_value=instance) as provisioner_class:
        with patch("pia_wg_config.os.umask"):
            yield provisioner_class


class TestMain:
    """Exit codes and option handling."""

    def test_success(self, monkeypatch, provisioner_class):
        code = run_main(monkeypatch, "0", "-r", "swiss", "--username", "p1234567", "--password", "secret")

        assert code == pia_wg_config.EXIT_OK
        provisioner = provisioner_class.return_value
        provisioner.prepare.assert_called_once()
        provisioner.authenticate.assert_called_once_with("p1234567", "secret", interactive=sys.stdin.isatty())
        args, kwargs = provisioner.run.call_args
        assert args[1] == ["swiss"]
        assert kwargs["mode"] == "lowest-latency"

    def test_nothing_provisioned(self, monkeypatch, provisioner_class):
        provisioner_class.return_value.run.return_value = ProvisionSummary()

        assert run_main(monkeypatch, "0", "-r", "swiss") == pia_wg_config.EXIT_NOTHING_PROVISIONED

    def test_authentication_failure_is_fatal(self, monkeypatch, provisioner_class):
        provisioner_class.return_value.authenticate.side_effect = AuthenticationError("invalid credentials", 401)

        assert run_main(monkeypatch, "0", "-r", "swiss") == pia_wg_config.EXIT_FATAL
        provisioner_class.return_value.run.assert_not_called()

    def test_setup_failure_is_fatal(self, monkeypatch, provisioner_class):
        provisioner_class.return_value.prepare.side_effect = SetupError("CA certificate missing")

        assert run_main(monkeypatch, "0", "-r", "swiss") == pia_wg_config.EXIT_FATAL

    def test_manual_selection_indices(self, monkeypatch, provisioner_class, berlin_endpoints):
        run_main(monkeypatch, "0", "-r", "de_berlin", "--mode", "manual", "--select", "0,2")

        kwargs = provisioner_class.return_value.run.call_args.kwargs
        assert kwargs["mode"] == "manual"
        assert kwargs["chooser"](berlin_endpoints, None) == [0, 2]

    def test_select_all(self, monkeypatch, provisioner_class, berlin_endpoints):
        run_main(monkeypatch, "0", "-r", "de_berlin", "--mode", "manual", "--select", "all")

        chooser = provisioner_class.return_value.run.call_args.kwargs["chooser"]
        assert chooser(berlin_endpoints, None) == [0, 1, 2]

    def test_invalid_select_is_fatal(self, monkeypatch, provisioner_class):
        assert run_main(monkeypatch, "0", "-r", "swiss", "--mode", "manual", "--select", "first") == pia_wg_config.EXIT_FATAL
        provisioner_class.assert_not_called()

    def test_region_prompt(self, monkeypatch, provisioner_class, capsys):
        provisioner = provisioner_class.return_value
        provisioner.list_regions.return_value = [Region("swiss", "Switzerland"), Region("de_berlin", "DE Berlin")]

        with patch("builtins.input", return_value="1") as prompt:
            assert run_main(monkeypatch, "0") == pia_wg_config.EXIT_OK

        prompt.assert_called_once()
        assert provisioner.run.call_args[0][1] == ["de_berlin"]
        out = capsys.readouterr().out
        assert "0) Switzerland (swiss)" in out
        assert "1) DE Berlin (de_berlin)" in out

    def test_region_prompt_out_of_range(self, monkeypatch, provisioner_class):
        provisioner = provisioner_class.return_value
        provisioner.list_regions.return_value = [Region("swiss", "Switzerland")]

        with patch("builtins.input", return_value="3"):
            assert run_main(monkeypatch, "0") == pia_wg_config.EXIT_FATAL
        provisioner.run.assert_not_called()

    def test_regions_file(self, monkeypatch, provisioner_class, tmp_path):
        (tmp_path / "regions.properties").write_text("swiss de_berlin\n")

        run_main(monkeypatch, "0")

        assert provisioner_class.return_value.run.call_args[0][1] == ["swiss", "de_berlin"]

    def test_no_probe_requires_manual_mode(self, monkeypatch, provisioner_class):
        assert run_main(monkeypatch, "0", "-r", "swiss", "--no-probe") == pia_wg_config.EXIT_FATAL
        provisioner_class.assert_not_called()

    def test_invalid_option_value(self, monkeypatch, provisioner_class):
        assert run_main(monkeypatch, "0", "-r", "swiss", "--probe-samples", "0") == pia_wg_config.EXIT_FATAL

    def test_list_regions(self, monkeypatch, provisioner_class, capsys):
        provisioner = provisioner_class.return_value
        provisioner.list_regions.return_value = [Region("swiss", "Switzerland", port_forward=True)]

        assert run_main(monkeypatch, "0", "--list-regions") == pia_wg_config.EXIT_OK

        assert "swiss\tSwitzerland [port forwarding]" in capsys.readouterr().out
        provisioner.authenticate.assert_not_called()


class TestApplyOverrides:

    def test_overrides(self, tmp_path):
        args = pia_wg_config.build_parser().parse_args([
            "--output-dir", str(tmp_path), "--probe-method", "icmp", "--probe-timeout", "1.5",
            "--workers", "2", "--debug",
        ])

        config = pia_wg_config.apply_overrides(Config(environ={}), args)

        assert config.paths.output_dir == tmp_path
        assert config.probe.method == "icmp"
        assert config.probe.timeout == 1.5
        assert config.tunnel.max_workers == 2
        assert config.logging.verbosity == 5


class TestChooseEndpoints:
    """Manual mode candidate list and prompt."""

    def test_rendered_lines(self, berlin_endpoints, capsys):
        results = [reachable(berlin_endpoints[0], 12), unreachable(berlin_endpoints[1])]

        with patch("builtins.input", return_value="0,2"):
            indices = pia_wg_config.choose_endpoints(berlin_endpoints, results)

        assert indices == [0, 2]
        lines = capsys.readouterr().out.splitlines()
        assert lines == [
            "Available servers:",
            "  0) de_berlin: berlin401 (10.0.0.1) - 12ms",
            "  1) de_berlin: berlin402 (10.0.0.2) - unreachable",
            "  2) de_berlin: berlin403 (10.0.0.3)",
        ]

    def test_without_probing(self, berlin_endpoints, capsys):
        with patch("builtins.input", return_value="all"):
            indices = pia_wg_config.choose_endpoints(berlin_endpoints, None)

        assert indices == [0, 1, 2]
        assert "  0) de_berlin: berlin401 (10.0.0.1)\n" in capsys.readouterr().out

    def test_unparseable_input(self, berlin_endpoints):
        with patch("builtins.input", return_value="one"):
            with pytest.raises(ValueError):
                pia_wg_config.choose_endpoints(berlin_endpoints, None)
