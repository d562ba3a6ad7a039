"""CLI entry point using Typer."""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from ssl_scanner import __version__
from ssl_scanner.batch import parse_target, read_targets_from_file
from ssl_scanner.catalog import build_cipher_catalog, catalog_size
from ssl_scanner.credentials import load_client_credentials
from ssl_scanner.engine import OpenSSLEngine
from ssl_scanner.exceptions import ConfigurationError
from ssl_scanner.models import ProtocolVersion, ScanOptions, Target
from ssl_scanner.reporter import generate_json_report, generate_text_report, set_color_output
from ssl_scanner.scanner import scan_targets
from ssl_scanner.services import parse_service

app = typer.Typer(help="SSL/TLS cipher suite scanner")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        print(f"ssl-scanner {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the program version and exit"
    ),
):
    """
    Probe SSL/TLS servers for the cipher suites they accept.
    """


def _set_verbose(verbose: bool) -> None:
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("ssl_scanner").setLevel(logging.DEBUG)


def selected_protocols(
    ssl2: bool = False,
    ssl3: bool = False,
    tls1: bool = False,
    tls1_1: bool = False,
    tls1_2: bool = False,
    ssl: bool = False,
    tls: bool = False,
    all_versions: bool = False,
) -> ProtocolVersion:
    """Combine the protocol flags given on the command line."""
    versions = ProtocolVersion.NONE
    for enabled, flag in (
        (ssl2, ProtocolVersion.SSLv2),
        (ssl3, ProtocolVersion.SSLv3),
        (tls1, ProtocolVersion.TLSv1_0),
        (tls1_1, ProtocolVersion.TLSv1_1),
        (tls1_2, ProtocolVersion.TLSv1_2),
        (ssl, ProtocolVersion.SSL),
        (tls, ProtocolVersion.TLS),
        (all_versions, ProtocolVersion.ALL),
    ):
        if enabled:
            versions |= flag
    return versions


@app.command()
def scan(
    target: Optional[str] = typer.Argument(None, help="Target as host or host:port"),
    targets_file: Optional[Path] = typer.Option(None, "--targets", help="File with one host[:port] per line"),
    ssl2: bool = typer.Option(False, "--ssl2", help="Test SSLv2 ciphers"),
    ssl3: bool = typer.Option(False, "--ssl3", help="Test SSLv3 ciphers"),
    tls1: bool = typer.Option(False, "--tls1", help="Test TLSv1 ciphers"),
    tls1_1: bool = typer.Option(False, "--tls1_1", help="Test TLSv1.1 ciphers"),
    tls1_2: bool = typer.Option(False, "--tls1_2", help="Test TLSv1.2 ciphers"),
    ssl: bool = typer.Option(False, "--ssl", help="Test all SSL versions"),
    tls: bool = typer.Option(False, "--tls", help="Test all TLS versions"),
    all_versions: bool = typer.Option(False, "--all", "-a", help="Test all SSL and TLS versions"),
    service: Optional[str] = typer.Option(None, "--service", help="Service spoken before TLS (raw, smtp, ftp, pop3, imap)"),
    ehlo_name: str = typer.Option("localhost", "--ehlo-name", help="Name sent in the SMTP EHLO command"),
    http: bool = typer.Option(False, "--http", help="Send an HTTP request after each accepted handshake"),
    ftps_dcs: bool = typer.Option(False, "--ftps-dcs", help="Check FTP data channel protection (PROT P)"),
    no_failed: bool = typer.Option(False, "--no-failed", "-n", help="Only list accepted ciphers"),
    ca_file: Optional[Path] = typer.Option(None, "--cafile", help="Trusted CA file (PEM) for certificate verification"),
    certs: Optional[Path] = typer.Option(None, "--certs", help="Client certificate file (PEM or DER)"),
    private_key: Optional[Path] = typer.Option(None, "--pk", help="Client private key file, or PKCS#12 bundle without --certs"),
    private_key_password: Optional[str] = typer.Option(None, "--pkpass", help="Password for the private key or PKCS#12 bundle"),
    sni: bool = typer.Option(False, "--sni", help="Send the server name indication extension"),
    sni_name: Optional[str] = typer.Option(None, "--sni-name", help="Name to send with --sni (default: target host)"),
    ocsp_stapling: bool = typer.Option(False, "--ocsp-stapling", "-o", help="Request a stapled OCSP response"),
    bugs: bool = typer.Option(False, "--bugs", help="Enable SSL implementation bug workarounds"),
    abort_on_cipher_error: bool = typer.Option(
        False,
        "--abort-on-cipher-error",
        help="Abort a target when a cipher cannot be configured "
        "(by default the cipher is recorded as Failed and the scan continues)",
    ),
    ipv6: bool = typer.Option(False, "--ipv6", help="Prefer IPv6 addresses when a name resolves to both families"),
    timeout: float = typer.Option(10.0, "--timeout", "-t", help="Timeout in seconds"),
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
    output: Optional[Path] = typer.Option(None, "--output", help="Write the report to a file instead of stdout"),
    wiki: bool = typer.Option(False, "--wiki", "-p", help="Format cipher tables as pseudo wiki tables"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Scan one or more targets for accepted cipher suites.

    A cipher the local TLS library cannot be restricted to is reported as
    Failed and the scan continues; use --abort-on-cipher-error to stop the
    target instead.
    """
    _set_verbose(verbose)
    set_color_output(color and not json_output and output is None)

    versions = selected_protocols(ssl2, ssl3, tls1, tls1_1, tls1_2, ssl, tls, all_versions)

    try:
        try:
            service_type = parse_service(service)
        except ValueError as e:
            raise ConfigurationError(str(e))

        options = ScanOptions(
            versions=versions,
            service=service_type,
            sni_enabled=sni,
            sni_name=sni_name,
            ca_file=ca_file,
            client_cert_file=certs,
            private_key_file=private_key,
            private_key_password=private_key_password,
            ocsp_request=ocsp_stapling,
            no_failed=no_failed,
            http_probe=http,
            data_channel_check=ftps_dcs,
            ssl_bugs=bugs,
            abort_on_cipher_error=abort_on_cipher_error,
            timeout=timeout,
            ehlo_name=ehlo_name,
            ipv6=ipv6,
        )
        options.validate()
        credentials = load_client_credentials(options)

        targets: List[Target] = []
        if target:
            targets.append(parse_target(target, service_type))
        if targets_file is not None:
            targets.extend(read_targets_from_file(targets_file, service_type))
        if not targets:
            raise ConfigurationError("No target given. Pass a TARGET or --targets FILE.")
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)

    if versions == ProtocolVersion.NONE:
        logger.warning("No protocol versions selected, no ciphers will be tested (use --all, --tls, --ssl, ...)")

    engine = OpenSSLEngine()
    catalog = build_cipher_catalog(engine, versions)
    logger.info(f"Testing {catalog_size(catalog)} cipher(s) against {len(targets)} target(s)")

    if targets_file is None:
        reports = scan_targets(targets, options, engine, catalog, credentials)
    else:
        # Progress goes to stderr so stdout only carries the report
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=Console(stderr=True),
            transient=True,
        ) as progress:
            task = progress.add_task("Scanning targets...", total=len(targets))

            def progress_callback(index: int, current: Target) -> None:
                logger.debug(f"Target {index + 1}/{len(targets)}: {current}")
                progress.update(task, completed=index, description=f"Scanning {current}")

            reports = scan_targets(targets, options, engine, catalog, credentials, progress_callback=progress_callback)
            progress.update(task, completed=len(targets))

    if json_output:
        report = generate_json_report(reports)
    else:
        report = "\n".join(generate_text_report(r, wiki=wiki) for r in reports)

    if output is not None:
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            with open(output, "w", encoding="utf-8") as f:
                f.write(report)
        except OSError as e:
            logger.error(f"Could not write report to {output}: {e}")
            sys.exit(1)
        logger.info(f"Report saved to {output}")
    else:
        print(report)

    sys.exit(0)


@app.command()
def ciphers(
    ssl2: bool = typer.Option(False, "--ssl2", help="List SSLv2 ciphers"),
    ssl3: bool = typer.Option(False, "--ssl3", help="List SSLv3 ciphers"),
    tls1: bool = typer.Option(False, "--tls1", help="List TLSv1 ciphers"),
    tls1_1: bool = typer.Option(False, "--tls1_1", help="List TLSv1.1 ciphers"),
    tls1_2: bool = typer.Option(False, "--tls1_2", help="List TLSv1.2 ciphers"),
    ssl: bool = typer.Option(False, "--ssl", help="List all SSL versions"),
    tls: bool = typer.Option(False, "--tls", help="List all TLS versions"),
    all_versions: bool = typer.Option(False, "--all", "-a", help="List all versions (default)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    List the cipher suites the local TLS library can test.
    """
    _set_verbose(verbose)
    versions = selected_protocols(ssl2, ssl3, tls1, tls1_1, tls1_2, ssl, tls, all_versions)
    if versions == ProtocolVersion.NONE:
        versions = ProtocolVersion.ALL

    catalog = build_cipher_catalog(OpenSSLEngine(), versions)
    for version, specs in catalog.items():
        for spec in specs:
            print(f"  {version.label:<7}  {spec.bits:>3} bits  {spec.name}")


if __name__ == "__main__":
    app()
