"""TLS engine: cipher enumeration and handshakes."""

import logging
import select
import socket
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from cryptography import x509
from OpenSSL import SSL, crypto

from ssl_scanner.credentials import ClientCredentials
from ssl_scanner.exceptions import CipherConfigurationError, TlsEngineError
from ssl_scanner.models import CipherSpec, PROTOCOL_VERSIONS, ProtocolVersion, ScanOptions
from ssl_scanner.network import encode_hostname

logger = logging.getLogger(__name__)

# Everything the local OpenSSL knows, including ciphers disabled by the default security level
FULL_CIPHER_LIST = "ALL:COMPLEMENTOFALL:@SECLEVEL=0"

# OpenSSL reports the minimum protocol version a cipher can be used with
_CIPHER_MIN_VERSION = {
    "SSLv2": ProtocolVersion.SSLv2,
    "SSLv3": ProtocolVersion.SSLv3,
    "TLSv1": ProtocolVersion.TLSv1_0,
    "TLSv1.0": ProtocolVersion.TLSv1_0,
    "TLSv1.1": ProtocolVersion.TLSv1_1,
    "TLSv1.2": ProtocolVersion.TLSv1_2,
}

_NO_VERSION_FLAGS = {
    ProtocolVersion.SSLv3: SSL.OP_NO_SSLv3,
    ProtocolVersion.TLSv1_0: SSL.OP_NO_TLSv1,
    ProtocolVersion.TLSv1_1: SSL.OP_NO_TLSv1_1,
    ProtocolVersion.TLSv1_2: SSL.OP_NO_TLSv1_2,
}

# Error reasons that mean the peer turned the offer down rather than something breaking
_REJECTION_MARKERS = (
    "alert",
    "wrong version number",
    "unsupported protocol",
    "no shared cipher",
    "wrong cipher returned",
    "unexpected eof",
)


class HandshakeStatus(str, Enum):
    """Classification of a handshake attempt."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"  # Peer cleanly refused the offer
    FAILED = "failed"  # Anything else went wrong


@dataclass(frozen=True)
class HandshakeOptions:
    """Per-probe handshake settings. Built fresh for every probe."""

    server_name: Optional[str] = None
    request_ocsp: bool = False
    credentials: Optional[ClientCredentials] = None
    verify: bool = False  # Verify the peer chain after the handshake
    ca_file: Optional[Path] = None  # None: system default trust store
    ssl_bugs: bool = False

    @classmethod
    def from_scan_options(
        cls,
        options: ScanOptions,
        host: str,
        credentials: Optional[ClientCredentials] = None,
        verify: bool = False,
    ) -> "HandshakeOptions":
        return cls(
            server_name=options.server_name_for(host),
            request_ocsp=options.ocsp_request,
            credentials=credentials,
            verify=verify,
            ca_file=options.ca_file,
            ssl_bugs=options.ssl_bugs,
        )


class TlsSession(ABC):
    """An established TLS session on a probe connection."""

    @property
    @abstractmethod
    def cipher_name(self) -> Optional[str]:
        ...

    @property
    @abstractmethod
    def cipher_bits(self) -> Optional[int]:
        ...

    @property
    @abstractmethod
    def peer_certificate(self) -> Optional[x509.Certificate]:
        ...

    @property
    @abstractmethod
    def verification_error(self) -> Optional[str]:
        """Textual reason if chain verification failed, None if it passed."""

    @property
    @abstractmethod
    def ocsp_staple(self) -> Optional[bytes]:
        """Stapled OCSP response. None if not requested, b"" if none was returned."""

    @abstractmethod
    def send(self, data: bytes) -> None:
        ...

    @abstractmethod
    def recv(self, size: int) -> bytes:
        ...

    @abstractmethod
    def shutdown(self) -> None:
        ...

    def recv_exact(self, size: int) -> bytes:
        """Read exactly ``size`` bytes, or fewer if the peer closes the session."""
        data = b""
        while len(data) < size:
            chunk = self.recv(size - len(data))
            if not chunk:
                break
            data += chunk
        return data


@dataclass
class HandshakeResult:
    """Outcome of one handshake attempt."""

    status: HandshakeStatus
    session: Optional[TlsSession] = None
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status == HandshakeStatus.ACCEPTED


class TlsEngine(ABC):
    """Interface the scanner uses to talk TLS."""

    @abstractmethod
    def enumerate_ciphers(self, version: ProtocolVersion) -> List[CipherSpec]:
        """Return the ordered cipher catalog for ``version``."""

    @abstractmethod
    def handshake(
        self,
        sock: socket.socket,
        version: ProtocolVersion,
        allowed_ciphers: Optional[Sequence[str]],
        options: HandshakeOptions,
    ) -> HandshakeResult:
        """
        Attempt a handshake on a connected socket.

        Args:
            sock: Connected socket, after any preamble
            version: Protocol version to speak, or a combination the peer may choose from
            allowed_ciphers: Cipher names to offer, or None for the full catalog
            options: Per-probe handshake options

        Raises:
            CipherConfigurationError: If the engine cannot be restricted to ``allowed_ciphers``
            TlsEngineError: If the engine cannot be configured for the handshake
        """


def _drive(operation: Callable, sock: socket.socket):
    """Run a pyOpenSSL operation on a socket with a timeout, waiting on WantRead/WantWrite."""
    timeout = sock.gettimeout()
    while True:
        try:
            return operation()
        except SSL.WantReadError:
            readable, _, _ = select.select([sock], [], [], timeout)
            if not readable:
                raise socket.timeout(f"Timed out after {timeout}s waiting for the peer")
        except SSL.WantWriteError:
            _, writable, _ = select.select([], [sock], [], timeout)
            if not writable:
                raise socket.timeout(f"Timed out after {timeout}s sending to the peer")


def describe_ssl_error(error: Exception) -> str:
    """Flatten a pyOpenSSL error into a readable message."""
    if isinstance(error, SSL.SysCallError) and len(error.args) == 2:
        return f"{error.args[1]} ({error.args[0]})"
    if error.args and isinstance(error.args[0], list):
        reasons = [entry[-1] for entry in error.args[0] if entry and entry[-1]]
        if reasons:
            return "; ".join(str(reason) for reason in reasons)
    return str(error) or error.__class__.__name__


def classify_handshake_error(error: Exception) -> HandshakeStatus:
    """Decide whether a handshake error is a clean refusal or a failure."""
    if isinstance(error, SSL.ZeroReturnError):
        return HandshakeStatus.REJECTED
    if isinstance(error, SSL.SysCallError):
        # (-1, 'Unexpected EOF'): the peer hung up mid-handshake
        return HandshakeStatus.REJECTED if error.args and error.args[0] == -1 else HandshakeStatus.FAILED
    if isinstance(error, SSL.Error):
        message = describe_ssl_error(error).lower()
        if any(marker in message for marker in _REJECTION_MARKERS):
            return HandshakeStatus.REJECTED
    return HandshakeStatus.FAILED


class OpenSSLSession(TlsSession):
    """TLS session backed by a pyOpenSSL connection."""

    def __init__(
        self,
        connection: SSL.Connection,
        sock: socket.socket,
        ocsp_staple: Optional[bytes] = None,
        verification_error: Optional[str] = None,
    ):
        self._connection = connection
        self._sock = sock
        self._ocsp_staple = ocsp_staple
        self._verification_error = verification_error

    @property
    def cipher_name(self) -> Optional[str]:
        return self._connection.get_cipher_name()

    @property
    def cipher_bits(self) -> Optional[int]:
        return self._connection.get_cipher_bits()

    @property
    def peer_certificate(self) -> Optional[x509.Certificate]:
        cert = self._connection.get_peer_certificate()
        return cert.to_cryptography() if cert is not None else None

    @property
    def verification_error(self) -> Optional[str]:
        return self._verification_error

    @property
    def ocsp_staple(self) -> Optional[bytes]:
        return self._ocsp_staple

    def send(self, data: bytes) -> None:
        try:
            _drive(lambda: self._connection.sendall(data), self._sock)
        except SSL.Error as e:
            raise TlsEngineError(f"TLS write failed: {describe_ssl_error(e)}")

    def recv(self, size: int) -> bytes:
        try:
            return _drive(lambda: self._connection.recv(size), self._sock)
        except SSL.ZeroReturnError:
            return b""
        except SSL.Error as e:
            raise TlsEngineError(f"TLS read failed: {describe_ssl_error(e)}")

    def shutdown(self) -> None:
        try:
            self._connection.shutdown()
        except (SSL.Error, OSError) as e:
            logger.debug(f"TLS shutdown did not complete cleanly: {describe_ssl_error(e)}")


class OpenSSLEngine(TlsEngine):
    """
    TLS engine using pyOpenSSL for handshakes.

    The cipher catalog comes from the standard library ``ssl`` module, which
    exposes the advertised strength of every cipher. A new ``SSL.Context`` is
    built for every handshake, so nothing configured for one probe is visible
    to the next.
    """

    def enumerate_ciphers(self, version: ProtocolVersion) -> List[CipherSpec]:
        if version not in _NO_VERSION_FLAGS:
            logger.warning(f"{version.label} is not supported by the local OpenSSL build, no ciphers to test")
            return []

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        try:
            context.set_ciphers(FULL_CIPHER_LIST)
        except ssl.SSLError:
            context.set_ciphers("ALL:COMPLEMENTOFALL")

        rank = PROTOCOL_VERSIONS.index(version)
        ciphers: List[CipherSpec] = []
        for entry in context.get_ciphers():
            min_version = _CIPHER_MIN_VERSION.get(entry.get("protocol", ""))
            if min_version is None:
                # TLSv1.3 suites and anything unknown
                continue
            if PROTOCOL_VERSIONS.index(min_version) > rank:
                continue
            bits = entry.get("strength_bits") or entry.get("alg_bits") or 0
            ciphers.append(CipherSpec(protocol=version, name=entry["name"], bits=bits))

        logger.debug(f"Enumerated {len(ciphers)} cipher(s) for {version.label}")
        return ciphers

    def handshake(
        self,
        sock: socket.socket,
        version: ProtocolVersion,
        allowed_ciphers: Optional[Sequence[str]],
        options: HandshakeOptions,
    ) -> HandshakeResult:
        if not any(supported in version for supported in _NO_VERSION_FLAGS):
            return HandshakeResult(
                HandshakeStatus.FAILED,
                reason=f"{version.label} is not supported by the local OpenSSL build",
            )

        server_name: Optional[bytes] = None
        if options.server_name:
            try:
                server_name = encode_hostname(options.server_name)
            except UnicodeError as e:
                return HandshakeResult(
                    HandshakeStatus.FAILED,
                    reason=f"Invalid server name {options.server_name}: {e}",
                )

        staple: dict = {}
        context = self._build_context(version, allowed_ciphers, options, staple)
        connection = SSL.Connection(context, sock)
        connection.set_connect_state()
        if server_name:
            connection.set_tlsext_host_name(server_name)
        if options.request_ocsp:
            connection.request_ocsp()

        try:
            _drive(connection.do_handshake, sock)
        except SSL.Error as e:
            status = classify_handshake_error(e)
            reason = describe_ssl_error(e)
            logger.debug(f"Handshake {status.value} ({version.label}): {reason}")
            return HandshakeResult(status, reason=reason)
        except socket.timeout as e:
            return HandshakeResult(HandshakeStatus.FAILED, reason=f"Handshake timed out: {e}")
        except OSError as e:
            return HandshakeResult(HandshakeStatus.FAILED, reason=f"Connection error during handshake: {e}")

        verification_error: Optional[str] = None
        if options.verify:
            verification_error = _verify_peer(connection, options.ca_file)

        session = OpenSSLSession(
            connection,
            sock,
            ocsp_staple=staple.get("data", b"") if options.request_ocsp else None,
            verification_error=verification_error,
        )
        logger.debug(f"Handshake accepted ({version.label}): {session.cipher_name}")
        return HandshakeResult(HandshakeStatus.ACCEPTED, session=session)

    def _build_context(
        self,
        version: ProtocolVersion,
        allowed_ciphers: Optional[Sequence[str]],
        options: HandshakeOptions,
        staple: dict,
    ) -> SSL.Context:
        context = SSL.Context(SSL.TLS_CLIENT_METHOD)

        # Pin the requested version(s) by disabling every other one
        flags = SSL.OP_NO_TLSv1_3
        for other, flag in _NO_VERSION_FLAGS.items():
            if other not in version:
                flags |= flag
        if options.ssl_bugs:
            flags |= SSL.OP_ALL
        context.set_options(flags)

        if allowed_ciphers:
            cipher_string = ":".join(allowed_ciphers) + ":@SECLEVEL=0"
        else:
            cipher_string = FULL_CIPHER_LIST
        try:
            context.set_cipher_list(cipher_string.encode("ascii"))
        except SSL.Error as e:
            raise CipherConfigurationError(f"Could not set cipher list {cipher_string}: {describe_ssl_error(e)}")

        # Verification runs after the handshake so an untrusted chain never blocks the probe
        context.set_verify(SSL.VERIFY_NONE, lambda conn, cert, errnum, depth, ok: True)

        if options.credentials is not None:
            _apply_credentials(context, options.credentials)

        if options.request_ocsp:
            def _ocsp_callback(conn, ocsp_data, data):
                staple["data"] = ocsp_data
                return True

            context.set_ocsp_client_callback(_ocsp_callback)

        return context


def _apply_credentials(context: SSL.Context, credentials: ClientCredentials) -> None:
    try:
        context.use_certificate(crypto.X509.from_cryptography(credentials.certificate))
        context.use_privatekey(crypto.PKey.from_cryptography_key(credentials.private_key))
        for extra in credentials.chain:
            context.add_extra_chain_cert(crypto.X509.from_cryptography(extra))
        context.check_privatekey()
    except (SSL.Error, crypto.Error) as e:
        raise TlsEngineError(f"Could not configure client certificate: {describe_ssl_error(e)}")


def _verify_peer(connection: SSL.Connection, ca_file: Optional[Path]) -> Optional[str]:
    """Verify the peer chain against the trust store. Returns the failure reason or None."""
    leaf = connection.get_peer_certificate()
    if leaf is None:
        return None

    store = crypto.X509Store()
    try:
        if ca_file is not None:
            store.load_locations(str(ca_file))
        else:
            paths = ssl.get_default_verify_paths()
            if paths.cafile or paths.capath:
                store.load_locations(paths.cafile, paths.capath)
    except crypto.Error as e:
        return f"failed to load trusted CA file: {describe_ssl_error(e)}"

    chain = connection.get_peer_cert_chain() or []
    store_context = crypto.X509StoreContext(store, leaf, chain=list(chain[1:]))
    try:
        store_context.verify_certificate()
    except crypto.X509StoreContextError as e:
        return str(e.args[0]) if e.args and isinstance(e.args[0], str) else str(e)
    return None
