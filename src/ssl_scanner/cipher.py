"""Single-cipher probe loop."""

import logging
import socket
from typing import Iterator, List, Optional

from ssl_scanner import __version__
from ssl_scanner.catalog import CipherCatalog
from ssl_scanner.credentials import ClientCredentials
from ssl_scanner.engine import HandshakeOptions, HandshakeStatus, TlsEngine, TlsSession
from ssl_scanner.exceptions import CipherConfigurationError, PreambleError, ProbeConnectionError, TlsEngineError
from ssl_scanner.models import CipherSpec, ProbeOutcome, ProbeStatus, ScanOptions
from ssl_scanner.network import ConnectionManager, encode_hostname

logger = logging.getLogger(__name__)

HTTP_USER_AGENT = f"ssl-scanner/{__version__}"

# A single bounded read covers "HTTP/1.x NNN Reason"
HTTP_RESPONSE_BYTES = 49
HTTP_STATUS_OFFSET = 9

DATA_CHANNEL_COMMAND = b"PROT P\r\n"
DATA_CHANNEL_OK = "200"

_STATUS_MAP = {
    HandshakeStatus.ACCEPTED: ProbeStatus.ACCEPTED,
    HandshakeStatus.REJECTED: ProbeStatus.REJECTED,
    HandshakeStatus.FAILED: ProbeStatus.FAILED,
}


def parse_http_status(response: bytes) -> Optional[str]:
    """
    Extract the status token from the start of an HTTP response.

    Returns the text between byte 9 and the first line break, or None if the
    response is too short to carry one.
    """
    if len(response) <= HTTP_STATUS_OFFSET:
        return None
    status = response[HTTP_STATUS_OFFSET:]
    for terminator in (b"\r", b"\n"):
        status = status.split(terminator, 1)[0]
    return status.decode("ascii", errors="replace")


def http_probe(session: TlsSession, host: str) -> Optional[str]:
    """Send a fixed HTTP/1.0 request over ``session`` and return the status token."""
    request = (
        f"GET / HTTP/1.0\r\nUser-Agent: {HTTP_USER_AGENT}\r\nHost: ".encode("ascii")
        + encode_hostname(host)
        + b"\r\n\r\n"
    )
    session.send(request)
    return parse_http_status(session.recv(HTTP_RESPONSE_BYTES))


def data_channel_probe(session: TlsSession) -> str:
    """Ask an FTP server to protect the data channel and return its 3-byte reply code."""
    session.send(DATA_CHANNEL_COMMAND)
    return session.recv_exact(3).decode("ascii", errors="replace")


def probe_cipher(
    connections: ConnectionManager,
    engine: TlsEngine,
    cipher: CipherSpec,
    options: ScanOptions,
    credentials: Optional[ClientCredentials] = None,
) -> ProbeOutcome:
    """
    Probe one cipher on a fresh connection.

    Raises:
        CipherConfigurationError: If the engine cannot be restricted to the
            cipher. The caller decides whether to record or abort.
    """
    outcome = ProbeOutcome(ProbeStatus.FAILED, protocol=cipher.protocol, cipher=cipher.name, bits=cipher.bits)
    handshake_options = HandshakeOptions.from_scan_options(options, connections.target.host, credentials)

    try:
        with connections.connect() as sock:
            result = engine.handshake(sock, cipher.protocol, [cipher.name], handshake_options)
            outcome.status = _STATUS_MAP[result.status]
            outcome.reason = result.reason
            if result.accepted:
                _follow_up(result.session, outcome, connections.target.host, options)
                result.session.shutdown()
    except CipherConfigurationError:
        raise
    except (PreambleError, ProbeConnectionError, TlsEngineError) as e:
        outcome.status = ProbeStatus.FAILED
        outcome.reason = str(e)
    except socket.timeout as e:
        outcome.status = ProbeStatus.FAILED
        outcome.reason = f"Timed out: {e}"
    except OSError as e:
        outcome.status = ProbeStatus.FAILED
        outcome.reason = f"Connection error: {e}"

    if outcome.status == ProbeStatus.FAILED:
        logger.debug(f"{cipher.protocol.label} {cipher.name} failed: {outcome.reason}")
    return outcome


def _follow_up(session: TlsSession, outcome: ProbeOutcome, host: str, options: ScanOptions) -> None:
    outcome.negotiated_cipher = session.cipher_name
    outcome.negotiated_bits = session.cipher_bits
    # The cipher stays accepted even if the application exchange fails
    try:
        if options.http_probe:
            outcome.http_status = http_probe(session, host)
        if options.data_channel_check:
            reply = data_channel_probe(session)
            outcome.data_channel_reply = reply
            outcome.data_channel_status = reply == DATA_CHANNEL_OK
    except (TlsEngineError, OSError, UnicodeError) as e:
        logger.debug(f"Application exchange after {outcome.cipher} failed: {e}")
        if options.data_channel_check and outcome.data_channel_status is None:
            outcome.data_channel_status = False


def iter_cipher_probes(
    connections: ConnectionManager,
    engine: TlsEngine,
    catalog: CipherCatalog,
    options: ScanOptions,
    credentials: Optional[ClientCredentials] = None,
) -> Iterator[ProbeOutcome]:
    """
    Probe every cipher in ``catalog``, yielding one outcome per cipher in catalog order.

    Raises:
        CipherConfigurationError: If a cipher cannot be configured and
            ``options.abort_on_cipher_error`` is set. Outcomes already yielded stay valid.
    """
    for version, ciphers in catalog.items():
        logger.info(f"Testing {len(ciphers)} {version.label} cipher(s) on {connections.target}")
        for cipher in ciphers:
            try:
                outcome = probe_cipher(connections, engine, cipher, options, credentials)
            except CipherConfigurationError as e:
                if options.abort_on_cipher_error:
                    logger.error(f"Aborting scan of {connections.target}: {e}")
                    raise
                logger.warning(f"Skipping {version.label} {cipher.name}: {e}")
                outcome = ProbeOutcome(
                    ProbeStatus.FAILED, protocol=version, cipher=cipher.name, bits=cipher.bits, reason=str(e)
                )
            yield outcome


def probe_ciphers(
    connections: ConnectionManager,
    engine: TlsEngine,
    catalog: CipherCatalog,
    options: ScanOptions,
    credentials: Optional[ClientCredentials] = None,
) -> List[ProbeOutcome]:
    """Collect :func:`iter_cipher_probes` into a list."""
    return list(iter_cipher_probes(connections, engine, catalog, options, credentials))
