"""Shared fixtures: a scripted TLS engine, fake connections and generated certificates."""

import datetime
from contextlib import contextmanager
from typing import Dict, List, Optional, Sequence
from unittest.mock import Mock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ssl_scanner.engine import HandshakeOptions, HandshakeResult, HandshakeStatus, TlsEngine, TlsSession
from ssl_scanner.exceptions import CipherConfigurationError, ResolutionError
from ssl_scanner.models import CipherSpec, ProtocolVersion, Target


class FakeSession(TlsSession):
    """TLS session returning scripted application data."""

    def __init__(
        self,
        cipher: str,
        bits: int,
        certificate: Optional[x509.Certificate] = None,
        verification_error: Optional[str] = None,
        ocsp_staple: Optional[bytes] = None,
        replies: Sequence[bytes] = (),
    ):
        self._cipher = cipher
        self._bits = bits
        self._certificate = certificate
        self._verification_error = verification_error
        self._ocsp_staple = ocsp_staple
        self.replies = list(replies)
        self.sent: List[bytes] = []
        self.shutdown_called = False

    @property
    def cipher_name(self):
        return self._cipher

    @property
    def cipher_bits(self):
        return self._bits

    @property
    def peer_certificate(self):
        return self._certificate

    @property
    def verification_error(self):
        return self._verification_error

    @property
    def ocsp_staple(self):
        return self._ocsp_staple

    def send(self, data):
        self.sent.append(data)

    def recv(self, size):
        if not self.replies:
            return b""
        chunk = self.replies.pop(0)
        if len(chunk) > size:
            self.replies.insert(0, chunk[size:])
            chunk = chunk[:size]
        return chunk

    def shutdown(self):
        self.shutdown_called = True


class FakeEngine(TlsEngine):
    """
    Deterministic engine.

    A single-cipher handshake is accepted if the cipher is in ``accepted``;
    a full-catalog handshake picks the first accepted cipher of that version.
    """

    def __init__(
        self,
        catalog: Dict[ProtocolVersion, List[CipherSpec]],
        accepted: Sequence[str] = (),
        failing: Sequence[str] = (),
        unconfigurable: Sequence[str] = (),
        certificate: Optional[x509.Certificate] = None,
        verification_error: Optional[str] = None,
        ocsp_staple: Optional[bytes] = None,
        replies: Sequence[bytes] = (),
    ):
        self.catalog = catalog
        self.accepted = set(accepted)
        self.failing = set(failing)
        self.unconfigurable = set(unconfigurable)
        self.certificate = certificate
        self.verification_error = verification_error
        self.ocsp_staple = ocsp_staple
        self.replies = list(replies)
        self.handshakes: List[tuple] = []
        self.sessions: List[FakeSession] = []

    def enumerate_ciphers(self, version):
        return list(self.catalog.get(version, []))

    def handshake(self, sock, version, allowed_ciphers, options: HandshakeOptions):
        self.handshakes.append((version, tuple(allowed_ciphers) if allowed_ciphers else None, options))
        if allowed_ciphers:
            name = allowed_ciphers[0]
            if name in self.unconfigurable:
                raise CipherConfigurationError(f"Could not set cipher list {name}")
            if name in self.failing:
                return HandshakeResult(HandshakeStatus.FAILED, reason="unexpected message")
            if name not in self.accepted:
                return HandshakeResult(HandshakeStatus.REJECTED, reason="sslv3 alert handshake failure")
            candidates = [name]
        else:
            candidates = [
                spec.name
                for v, specs in self.catalog.items()
                if v in version
                for spec in specs
                if spec.name in self.accepted
            ]
            if not candidates and self.certificate is None:
                return HandshakeResult(HandshakeStatus.REJECTED, reason="no shared cipher")

        name = candidates[0] if candidates else "ECDHE-RSA-AES128-GCM-SHA256"
        bits = next(
            (spec.bits for specs in self.catalog.values() for spec in specs if spec.name == name),
            128,
        )
        session = FakeSession(
            name,
            bits,
            certificate=self.certificate,
            verification_error=self.verification_error,
            ocsp_staple=self.ocsp_staple if options.request_ocsp else None,
            replies=self.replies,
        )
        self.sessions.append(session)
        return HandshakeResult(HandshakeStatus.ACCEPTED, session=session)


class FakeConnections:
    """Stands in for ConnectionManager; hands out mock sockets."""

    def __init__(self, target: Target, resolve_error: bool = False, connect_error: Optional[Exception] = None):
        self.target = target
        self.resolve_error = resolve_error
        self.connect_error = connect_error
        self.connections_opened = 0
        self.ip_address = None if resolve_error else "192.0.2.10"

    def resolve(self):
        if self.resolve_error:
            raise ResolutionError(f"Could not resolve hostname {self.target.host}")
        return (2, (self.ip_address, self.target.port))

    @contextmanager
    def connect(self):
        self.resolve()
        self.connections_opened += 1
        if self.connect_error is not None:
            raise self.connect_error
        yield Mock()


@pytest.fixture
def target():
    return Target("scan.example.com", 443)


@pytest.fixture
def tls12_catalog():
    return {
        ProtocolVersion.TLSv1_2: (
            CipherSpec(ProtocolVersion.TLSv1_2, "ECDHE-RSA-AES256-GCM-SHA384", 256),
            CipherSpec(ProtocolVersion.TLSv1_2, "ECDHE-RSA-AES128-GCM-SHA256", 128),
            CipherSpec(ProtocolVersion.TLSv1_2, "DES-CBC3-SHA", 112),
        )
    }


@pytest.fixture
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def build_certificate(key, common_name: str = "scan.example.com", serial: int = 0x1A2B3C) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .sign(key, hashes.SHA256())
    )


@pytest.fixture
def certificate(rsa_key):
    return build_certificate(rsa_key)


@pytest.fixture
def pem_files(tmp_path, rsa_key, certificate):
    """Client certificate and unencrypted private key written as PEM files."""
    cert_file = tmp_path / "client.pem"
    key_file = tmp_path / "client.key"
    cert_file.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_file.write_bytes(
        rsa_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return cert_file, key_file
