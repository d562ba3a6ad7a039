"""TCP connection lifecycle for probes."""

import logging
import socket
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from ssl_scanner.exceptions import ProbeConnectionError, ResolutionError
from ssl_scanner.models import Target
from ssl_scanner.preamble import negotiate_preamble
from ssl_scanner.services import ApplicationProtocol

logger = logging.getLogger(__name__)


def encode_hostname(host: str) -> bytes:
    """
    Wire form of a hostname for SNI and HTTP headers.

    Internationalized names are converted to their IDNA (punycode) form.

    Raises:
        UnicodeError: If the name is not a valid IDNA hostname
    """
    try:
        return host.encode("ascii")
    except UnicodeEncodeError:
        return host.encode("idna")


class ConnectionManager:
    """
    Opens one fresh TCP connection per probe for a single target.

    The target address is resolved once and reused for every probe. Each
    connection runs the preamble negotiator before it is handed out, and is
    closed when the ``connect()`` block exits, whatever the outcome. A
    connection is never reused: a handshake attempt changes its state for good.
    """

    def __init__(
        self,
        target: Target,
        service: ApplicationProtocol = ApplicationProtocol.RAW,
        timeout: float = 10.0,
        ehlo_name: str = "localhost",
        ipv6: bool = False,
    ):
        self.target = target
        self.service = service
        self.timeout = timeout
        self.ehlo_name = ehlo_name
        self.ipv6 = ipv6
        self._address: Optional[Tuple[int, tuple]] = None
        self.connections_opened = 0

    def resolve(self) -> Tuple[int, tuple]:
        """
        Resolve the target address (cached after the first call).

        Returns:
            Tuple of (address_family, socket_address)

        Raises:
            ResolutionError: If the hostname cannot be resolved
        """
        if self._address is not None:
            return self._address

        try:
            addr_info = socket.getaddrinfo(self.target.host, self.target.port, socket.AF_UNSPEC, socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise ResolutionError(f"Could not resolve hostname {self.target.host}: {e}")
        if not addr_info:
            raise ResolutionError(f"Could not resolve hostname {self.target.host}")

        # Prefer the requested family, fall back to whatever the name resolves to
        preferred = socket.AF_INET6 if self.ipv6 else socket.AF_INET
        chosen = next((info for info in addr_info if info[0] == preferred), addr_info[0])
        self._address = (chosen[0], chosen[4])
        logger.debug(f"Resolved {self.target.host} to {self.ip_address}")
        return self._address

    @property
    def ip_address(self) -> Optional[str]:
        if self._address is None:
            return None
        return self._address[1][0]

    @contextmanager
    def connect(self) -> Iterator[socket.socket]:
        """
        Open a connection and run the preamble.

        Yields:
            Connected socket, ready for the TLS handshake

        Raises:
            ResolutionError: If the target cannot be resolved
            ProbeConnectionError: If the TCP connection cannot be opened
            PreambleError: If the plaintext upgrade fails
        """
        family, address = self.resolve()
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        self.connections_opened += 1
        try:
            try:
                sock.connect(address)
            except socket.timeout:
                raise ProbeConnectionError(
                    f"Connection to {self.target} timed out after {self.timeout}s"
                )
            except OSError as e:
                raise ProbeConnectionError(f"Could not open a connection to {self.target}: {e}")
            logger.debug(f"TCP connection established to {address}")

            negotiate_preamble(sock, self.service, ehlo_name=self.ehlo_name)
            yield sock
        finally:
            try:
                sock.close()
            except OSError:
                pass
