"""Per-target scan orchestration."""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from ssl_scanner.catalog import CipherCatalog
from ssl_scanner.certificate import inspect_certificate
from ssl_scanner.cipher import iter_cipher_probes
from ssl_scanner.credentials import ClientCredentials
from ssl_scanner.engine import TlsEngine
from ssl_scanner.exceptions import CipherConfigurationError, ResolutionError
from ssl_scanner.models import CertificateReport, CertificateStatus, ScanOptions, ScanReport, Target
from ssl_scanner.network import ConnectionManager
from ssl_scanner.preferred import probe_preferred_ciphers

logger = logging.getLogger(__name__)


def scan_target(
    target: Target,
    options: ScanOptions,
    engine: TlsEngine,
    catalog: CipherCatalog,
    credentials: Optional[ClientCredentials] = None,
) -> ScanReport:
    """
    Scan one target: every cataloged cipher, the preferred cipher per version,
    then the certificate.

    Failures are recorded in the report. Only resolution failures and an
    aborted cipher loop stop the scan early.
    """
    report = ScanReport(
        target=target,
        timestamp=datetime.now(timezone.utc),
        service=options.service,
        no_failed=options.no_failed,
    )
    connections = ConnectionManager(
        target,
        service=options.service,
        timeout=options.timeout,
        ehlo_name=options.ehlo_name,
        ipv6=options.ipv6,
    )

    try:
        connections.resolve()
    except ResolutionError as e:
        logger.error(str(e))
        report.error = str(e)
        report.resolution_failed = True
        return report
    report.ip_address = connections.ip_address

    logger.info(f"Scanning {target} ({report.ip_address})")
    try:
        for outcome in iter_cipher_probes(connections, engine, catalog, options, credentials):
            report.results.append(outcome)
    except CipherConfigurationError as e:
        report.error = str(e)
        report.aborted = True
        report.certificate = CertificateReport(CertificateStatus.SKIPPED, error="Scan aborted")
        return report

    report.preferred = probe_preferred_ciphers(connections, engine, catalog, options, credentials)
    report.certificate = inspect_certificate(connections, engine, options, credentials)

    logger.info(
        f"Finished {target}: {len(report.accepted)} of {len(report.results)} cipher(s) accepted, "
        f"{connections.connections_opened} connection(s)"
    )
    return report


def scan_targets(
    targets: Iterable[Target],
    options: ScanOptions,
    engine: TlsEngine,
    catalog: CipherCatalog,
    credentials: Optional[ClientCredentials] = None,
    progress_callback: Optional[Callable[[int, Target], None]] = None,
) -> List[ScanReport]:
    """
    Scan targets one at a time, in order.

    A target that fails does not stop the run; its report carries the error.
    """
    reports = []
    for index, target in enumerate(targets):
        if progress_callback:
            progress_callback(index, target)
        reports.append(scan_target(target, options, engine, catalog, credentials))
    return reports
