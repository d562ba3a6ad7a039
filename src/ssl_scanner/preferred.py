"""Preferred cipher detection per protocol version."""

import logging
import socket
from typing import List, Optional

from ssl_scanner.catalog import CipherCatalog
from ssl_scanner.credentials import ClientCredentials
from ssl_scanner.engine import HandshakeOptions, TlsEngine
from ssl_scanner.exceptions import PreambleError, ProbeConnectionError, TlsEngineError
from ssl_scanner.models import PreferredCipherResult, ProtocolVersion, ScanOptions
from ssl_scanner.network import ConnectionManager

logger = logging.getLogger(__name__)


def probe_preferred_cipher(
    connections: ConnectionManager,
    engine: TlsEngine,
    version: ProtocolVersion,
    options: ScanOptions,
    credentials: Optional[ClientCredentials] = None,
) -> PreferredCipherResult:
    """
    Offer the full catalog for ``version`` and record what the server picks.

    Never raises for probe-level failures: the result is marked absent and
    carries the reason instead.
    """
    result = PreferredCipherResult(protocol=version)
    handshake_options = HandshakeOptions.from_scan_options(options, connections.target.host, credentials)

    try:
        with connections.connect() as sock:
            handshake = engine.handshake(sock, version, None, handshake_options)
            if handshake.accepted:
                result.cipher = handshake.session.cipher_name
                result.bits = handshake.session.cipher_bits
                handshake.session.shutdown()
            else:
                result.error = handshake.reason or f"{version.label} handshake {handshake.status.value}"
    except (PreambleError, ProbeConnectionError, TlsEngineError) as e:
        result.error = str(e)
    except socket.timeout as e:
        result.error = f"Timed out: {e}"
    except OSError as e:
        result.error = f"Connection error: {e}"

    if result.found:
        logger.debug(f"Preferred {version.label} cipher on {connections.target}: {result.cipher}")
    else:
        logger.debug(f"No preferred {version.label} cipher on {connections.target}: {result.error}")
    return result


def probe_preferred_ciphers(
    connections: ConnectionManager,
    engine: TlsEngine,
    catalog: CipherCatalog,
    options: ScanOptions,
    credentials: Optional[ClientCredentials] = None,
) -> List[PreferredCipherResult]:
    """Run :func:`probe_preferred_cipher` for every version in ``catalog``, in version order."""
    return [
        probe_preferred_cipher(connections, engine, version, options, credentials)
        for version in catalog
    ]
