"""Plaintext upgrade negotiation (STARTTLS and friends) before the TLS handshake."""

import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ssl_scanner.exceptions import PreambleError
from ssl_scanner.services import ApplicationProtocol

logger = logging.getLogger(__name__)

# Every reply is read with a single recv() of at most this many bytes
BUFFER_SIZE = 1024

IMAP_TAG = "a001"


class PreambleState(str, Enum):
    """Negotiator states."""

    START = "START"
    WAIT_GREETING = "WAIT_GREETING"
    SENT_COMMAND = "SENT_COMMAND"
    WAIT_UPGRADE_ACK = "WAIT_UPGRADE_ACK"
    READY = "READY"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Exchange:
    """
    One step of a preamble: a reply to wait for and the command to send next.

    ``expect`` and ``send`` are templates; ``{ehlo_name}`` and ``{tag}`` are
    substituted before use. A step with ``send=None`` ends the preamble.
    """

    expect: str
    send: Optional[str]
    description: str


PREAMBLE_TABLES: Dict[ApplicationProtocol, Tuple[Exchange, ...]] = {
    ApplicationProtocol.RAW: (),
    ApplicationProtocol.SMTP: (
        Exchange("220", "EHLO {ehlo_name}\r\n", "SMTP greeting"),
        Exchange("250", "STARTTLS\r\n", "reply to EHLO"),
        Exchange("220", None, "reply to STARTTLS"),
    ),
    ApplicationProtocol.FTP: (
        Exchange("220", "AUTH TLS\r\n", "FTP greeting"),
        Exchange("234", None, "reply to AUTH TLS"),
    ),
    ApplicationProtocol.POP3: (
        Exchange("+OK", "STLS\r\n", "POP3 greeting"),
        Exchange("+OK", None, "reply to STLS"),
    ),
    ApplicationProtocol.IMAP: (
        Exchange("* OK", "{tag} STARTTLS\r\n", "IMAP greeting"),
        Exchange("{tag} ", None, "tagged reply to STARTTLS"),
    ),
}


class PreambleNegotiator:
    """
    Drives the plaintext exchange that precedes a TLS handshake.

    The negotiator is table driven: it walks the exchanges configured for the
    application protocol and fails on the first reply that does not start with
    the expected marker. Replies are never reassembled across reads and
    mismatches are never retried.
    """

    def __init__(
        self,
        service: ApplicationProtocol,
        ehlo_name: str = "localhost",
        tag: str = IMAP_TAG,
        exchanges: Optional[Tuple[Exchange, ...]] = None,
    ):
        self.service = service
        self.exchanges = exchanges if exchanges is not None else PREAMBLE_TABLES[service]
        self.params = {"ehlo_name": ehlo_name, "tag": tag}
        self.state = PreambleState.START

    def negotiate(self, sock: socket.socket) -> None:
        """
        Run the preamble on a connected socket.

        Args:
            sock: Connected socket, positioned before the server greeting

        Raises:
            PreambleError: If the peer does not follow the expected exchange
        """
        self.state = PreambleState.START
        if not self.exchanges:
            self.state = PreambleState.READY
            return

        self.state = PreambleState.WAIT_GREETING
        last_index = len(self.exchanges) - 1
        for index, exchange in enumerate(self.exchanges):
            expected = exchange.expect.format(**self.params).encode("ascii")
            reply = self._read(sock, exchange)
            if not reply.startswith(expected):
                self._fail(
                    f"Unexpected {exchange.description} from {self.service.value.upper()} service: "
                    f"{reply[:100].decode('utf-8', errors='replace').strip()!r}"
                )

            if exchange.send is None:
                break

            command = exchange.send.format(**self.params).encode("ascii")
            try:
                sock.sendall(command)
            except OSError as e:
                self._fail(f"Could not send {command.strip().decode('ascii')!r}: {e}")
            logger.debug(f"Sent {command.strip().decode('ascii')!r}")
            if index + 1 == last_index:
                self.state = PreambleState.WAIT_UPGRADE_ACK
            else:
                self.state = PreambleState.SENT_COMMAND

        self.state = PreambleState.READY
        logger.debug(f"{self.service.value.upper()} preamble completed")

    def _read(self, sock: socket.socket, exchange: Exchange) -> bytes:
        try:
            data = sock.recv(BUFFER_SIZE)
        except socket.timeout:
            self._fail(f"Timed out waiting for {exchange.description}")
        except OSError as e:
            self._fail(f"Error reading {exchange.description}: {e}")
        if not data:
            self._fail(f"Connection closed while waiting for {exchange.description}")
        return data

    def _fail(self, message: str) -> None:
        failed_in = self.state
        self.state = PreambleState.FAILED
        logger.debug(f"Preamble failed in state {failed_in.value}: {message}")
        raise PreambleError(message, state=failed_in.value)


def negotiate_preamble(sock: socket.socket, service: ApplicationProtocol, ehlo_name: str = "localhost") -> None:
    """
    Perform the plaintext upgrade for ``service`` on ``sock``.

    Raises:
        PreambleError: If the upgrade fails
    """
    PreambleNegotiator(service, ehlo_name=ehlo_name).negotiate(sock)
