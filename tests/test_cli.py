"""Tests for the command line interface."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from ssl_scanner import __version__
from ssl_scanner.cli import app, selected_protocols
from ssl_scanner.models import CipherSpec, ProtocolVersion

from conftest import FakeConnections, FakeEngine

runner = CliRunner()


@pytest.fixture
def fake_engine(certificate):
    catalog = {
        ProtocolVersion.TLSv1_2: [
            CipherSpec(ProtocolVersion.TLSv1_2, "ECDHE-RSA-AES256-GCM-SHA384", 256),
            CipherSpec(ProtocolVersion.TLSv1_2, "DES-CBC3-SHA", 112),
        ]
    }
    engine = FakeEngine(catalog, accepted=["ECDHE-RSA-AES256-GCM-SHA384"], certificate=certificate)
    with patch("ssl_scanner.cli.OpenSSLEngine", return_value=engine), patch(
        "ssl_scanner.scanner.ConnectionManager", side_effect=lambda target, **kwargs: FakeConnections(target)
    ):
        yield engine


class TestSelectedProtocols:
    """Tests for protocol flag handling."""

    def test_combination(self):
        """Flags combine into one selection."""
        assert selected_protocols(tls1=True, tls1_2=True) == ProtocolVersion.TLSv1_0 | ProtocolVersion.TLSv1_2
        assert selected_protocols(ssl=True) == ProtocolVersion.SSL
        assert selected_protocols(all_versions=True) == ProtocolVersion.ALL
        assert selected_protocols() == ProtocolVersion.NONE


class TestScanCommand:
    """Tests for the scan command."""

    def test_json_output(self, fake_engine):
        """JSON output holds one entry per target."""
        result = runner.invoke(app, ["scan", "www.example.com", "--tls1_2", "--json"])

        assert result.exit_code == 0
        document = json.loads(result.stdout)["document"]
        assert document["version"] == __version__
        entry = document["ssltests"][0]
        assert entry["host"] == "www.example.com"
        assert entry["port"] == 443
        assert [c["status"] for c in entry["ciphers"]] == ["accepted", "rejected"]

    def test_text_output_no_failed(self, fake_engine):
        """--no-failed hides rejected ciphers."""
        result = runner.invoke(app, ["scan", "www.example.com", "--tls1_2", "-n", "--no-color"])

        assert result.exit_code == 0
        assert "ECDHE-RSA-AES256-GCM-SHA384" in result.stdout
        assert "DES-CBC3-SHA" not in result.stdout

    def test_service_default_port(self, fake_engine):
        """The service picks the default port."""
        result = runner.invoke(app, ["scan", "ftp.example.com", "--service", "ftp", "--tls1_2", "--json"])

        assert json.loads(result.stdout)["document"]["ssltests"][0]["port"] == 21

    def test_targets_file(self, fake_engine, tmp_path):
        """Targets are read from a file."""
        targets_file = tmp_path / "targets.txt"
        targets_file.write_text("a.example.com\nb.example.com:8443\n")

        result = runner.invoke(app, ["scan", "--targets", str(targets_file), "--tls1_2", "--json"])

        entries = json.loads(result.stdout)["document"]["ssltests"]
        assert [(e["host"], e["port"]) for e in entries] == [("a.example.com", 443), ("b.example.com", 8443)]

    def test_http_with_internationalized_host(self, fake_engine):
        """--http against an IDN host completes the run."""
        result = runner.invoke(app, ["scan", "bücher.example", "--tls1_2", "--http", "--sni", "--json"])

        assert result.exit_code == 0
        entry = json.loads(result.stdout)["document"]["ssltests"][0]
        assert entry["host"] == "bücher.example"
        assert entry["ciphers"][0]["status"] == "accepted"
        assert b"Host: xn--bcher-kva.example\r\n" in fake_engine.sessions[0].sent[0]

    def test_targets_file_shows_progress(self, fake_engine, tmp_path):
        """Scanning a target file drives a progress bar."""
        targets_file = tmp_path / "targets.txt"
        targets_file.write_text("a.example.com\nb.example.com\n")

        with patch("ssl_scanner.cli.Progress") as mock_progress_cls:
            progress = mock_progress_cls.return_value.__enter__.return_value
            result = runner.invoke(app, ["scan", "--targets", str(targets_file), "--tls1_2", "--json"])

        assert result.exit_code == 0
        progress.add_task.assert_called_once_with("Scanning targets...", total=2)
        assert progress.update.call_args_list[-1][1]["completed"] == 2

    def test_single_target_has_no_progress(self, fake_engine):
        """A single target on the command line scans without a progress bar."""
        with patch("ssl_scanner.cli.Progress") as mock_progress_cls:
            result = runner.invoke(app, ["scan", "www.example.com", "--tls1_2", "--json"])

        assert result.exit_code == 0
        mock_progress_cls.assert_not_called()

    def test_help_describes_cipher_error_default(self):
        """The scan help states the default for unconfigurable ciphers."""
        result = runner.invoke(app, ["scan", "--help"])

        assert result.exit_code == 0
        assert "--abort-on-cipher-error" in result.stdout
        assert "Failed" in result.stdout

    def test_output_file(self, fake_engine, tmp_path):
        """--output writes the report to a file."""
        output = tmp_path / "reports" / "scan.json"

        result = runner.invoke(app, ["scan", "www.example.com", "--tls1_2", "--json", "--output", str(output)])

        assert result.exit_code == 0
        assert json.loads(output.read_text())["document"]["ssltests"][0]["host"] == "www.example.com"

    def test_configuration_error_exits_1(self, fake_engine):
        """Invalid option combinations exit with status 1."""
        result = runner.invoke(app, ["scan", "www.example.com", "--ftps-dcs"])

        assert result.exit_code == 1

    def test_unknown_service_exits_1(self, fake_engine):
        """Unknown services are configuration errors."""
        result = runner.invoke(app, ["scan", "www.example.com", "--service", "gopher"])

        assert result.exit_code == 1

    def test_no_target_exits_1(self, fake_engine):
        """A target or target file is required."""
        result = runner.invoke(app, ["scan", "--tls1_2"])

        assert result.exit_code == 1


class TestOtherCommands:
    """Tests for ciphers and --version."""

    def test_version(self):
        """--version prints the program version."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_ciphers(self, fake_engine):
        """The ciphers command lists the local catalog."""
        result = runner.invoke(app, ["ciphers", "--tls1_2"])

        assert result.exit_code == 0
        assert "TLSv1.2" in result.stdout
        assert "256 bits  ECDHE-RSA-AES256-GCM-SHA384" in result.stdout
