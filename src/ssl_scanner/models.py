"""Data models for scan options and scan results."""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag
from pathlib import Path
from typing import Optional, List

from ssl_scanner.exceptions import ConfigurationError
from ssl_scanner.services import ApplicationProtocol


class ProtocolVersion(Flag):
    """SSL/TLS protocol versions. Combine with ``|`` to select a subset."""

    NONE = 0
    SSLv2 = 0x01
    SSLv3 = 0x02
    TLSv1_0 = 0x04
    TLSv1_1 = 0x08
    TLSv1_2 = 0x10
    SSL = SSLv2 | SSLv3
    TLS = TLSv1_0 | TLSv1_1 | TLSv1_2
    ALL = SSL | TLS

    @property
    def label(self) -> str:
        """Label used in reports (e.g. "TLSv1.1")."""
        return _VERSION_LABELS.get(self, self.name or "unknown")


_VERSION_LABELS = {
    ProtocolVersion.SSLv2: "SSLv2",
    ProtocolVersion.SSLv3: "SSLv3",
    ProtocolVersion.TLSv1_0: "TLSv1",
    ProtocolVersion.TLSv1_1: "TLSv1.1",
    ProtocolVersion.TLSv1_2: "TLSv1.2",
}

# Probe order: oldest version first
PROTOCOL_VERSIONS = (
    ProtocolVersion.SSLv2,
    ProtocolVersion.SSLv3,
    ProtocolVersion.TLSv1_0,
    ProtocolVersion.TLSv1_1,
    ProtocolVersion.TLSv1_2,
)


def selected_versions(mask: ProtocolVersion) -> List[ProtocolVersion]:
    """Return the single versions contained in ``mask``, in probe order."""
    return [version for version in PROTOCOL_VERSIONS if version in mask]


@dataclass(frozen=True)
class Target:
    """A host and port to scan."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ScanOptions:
    """
    Immutable per-run configuration shared by every target of a scan.

    Per-probe state (the active cipher restriction) is never stored here.
    """

    versions: ProtocolVersion = ProtocolVersion.NONE
    service: ApplicationProtocol = ApplicationProtocol.RAW
    sni_enabled: bool = False
    sni_name: Optional[str] = None  # Defaults to the target host when SNI is enabled
    ca_file: Optional[Path] = None  # None: system default trust store
    client_cert_file: Optional[Path] = None
    private_key_file: Optional[Path] = None  # Private key, or PKCS#12 bundle when no cert file is given
    private_key_password: Optional[str] = None
    ocsp_request: bool = False
    no_failed: bool = False
    http_probe: bool = False
    data_channel_check: bool = False
    ssl_bugs: bool = False
    abort_on_cipher_error: bool = False
    timeout: float = 10.0
    ehlo_name: str = "localhost"
    ipv6: bool = False

    def server_name_for(self, host: str) -> Optional[str]:
        """SNI name to send for ``host``, or None when SNI is disabled."""
        if not self.sni_enabled:
            return None
        return self.sni_name or host

    @property
    def has_client_credentials(self) -> bool:
        return self.client_cert_file is not None or self.private_key_file is not None

    def validate(self) -> None:
        """
        Check option combinations and input files.

        Raises:
            ConfigurationError: If the options cannot be used for a scan
        """
        if self.timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive, got {self.timeout}")
        if self.data_channel_check and self.service != ApplicationProtocol.FTP:
            raise ConfigurationError("Data channel check requires the FTP service")
        if self.client_cert_file is not None and self.private_key_file is None:
            raise ConfigurationError("Client certificate given without a private key (--pk)")
        if self.private_key_password is not None and self.private_key_file is None:
            raise ConfigurationError("Private key password given without a private key or PKCS#12 file")
        if self.sni_name is not None and not self.sni_enabled:
            raise ConfigurationError("SNI name given but SNI is not enabled")

        for label, path in (
            ("Trusted CA file", self.ca_file),
            ("Client certificate file", self.client_cert_file),
            ("Private key file", self.private_key_file),
        ):
            if path is None:
                continue
            if not Path(path).is_file():
                raise ConfigurationError(f"{label} does not exist: {path}")
            if not os.access(path, os.R_OK):
                raise ConfigurationError(f"{label} is not readable: {path}")


@dataclass(frozen=True)
class CipherSpec:
    """A cipher suite offered by the TLS engine for one protocol version."""

    protocol: ProtocolVersion
    name: str
    bits: int  # Advertised symmetric key length


class ProbeStatus(str, Enum):
    """Outcome classification of a single-cipher probe."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class ProbeOutcome:
    """Result of probing one cipher suite on a fresh connection."""

    status: ProbeStatus
    protocol: ProtocolVersion
    cipher: str
    bits: int
    negotiated_cipher: Optional[str] = None
    negotiated_bits: Optional[int] = None
    http_status: Optional[str] = None  # e.g. "200 OK"
    data_channel_status: Optional[bool] = None  # True if "PROT P" was answered with 200
    data_channel_reply: Optional[str] = None  # Raw 3-byte reply code
    reason: Optional[str] = None  # Diagnostic for FAILED probes


@dataclass
class PreferredCipherResult:
    """Cipher the server chose when offered the full catalog of one version."""

    protocol: ProtocolVersion
    cipher: Optional[str] = None
    bits: Optional[int] = None
    error: Optional[str] = None  # Why no cipher was negotiated

    @property
    def found(self) -> bool:
        return self.cipher is not None


@dataclass
class PublicKeyInfo:
    """Public key algorithm and key-specific details."""

    algorithm: str  # e.g. "rsaEncryption"
    key_type: str  # "RSA", "DSA", "EC", "Ed25519", "Ed448" or "unknown"
    bits: Optional[int] = None
    exponent: Optional[int] = None  # RSA only
    curve: Optional[str] = None  # EC only
    error: bool = False  # Key could not be loaded or type is not supported


@dataclass
class CertificateExtension:
    """A single X509v3 extension, in certificate order."""

    name: str
    critical: bool
    value: str


@dataclass
class CertificateInfo:
    """Fields extracted from the leaf certificate."""

    version: int  # Raw X.509 version field (0-based, v3 = 2)
    serial_number: str  # Colon separated hex bytes
    serial_negative: bool
    signature_algorithm: str
    issuer: str
    subject: str
    not_before: datetime
    not_after: datetime
    public_key: PublicKeyInfo
    extensions: List[CertificateExtension] = field(default_factory=list)
    verified: bool = False
    verification_error: Optional[str] = None  # Textual reason from verification, None if verified


class OcspStapleStatus(str, Enum):
    """What came back for an OCSP status request."""

    NONE_RETURNED = "none_returned"
    DECODE_FAILED = "decode_failed"
    DECODED = "decoded"


@dataclass
class OcspStapleInfo:
    """Summary of the OCSP response stapled to the handshake."""

    status: OcspStapleStatus
    error: Optional[str] = None
    response_status: Optional[str] = None  # e.g. "SUCCESSFUL"
    responder: Optional[str] = None
    produced_at: Optional[datetime] = None
    cert_status: Optional[str] = None  # "GOOD", "REVOKED" or "UNKNOWN"
    serial_number: Optional[str] = None
    this_update: Optional[datetime] = None
    next_update: Optional[datetime] = None
    revocation_time: Optional[datetime] = None
    revocation_reason: Optional[str] = None


class CertificateStatus(str, Enum):
    """State of the certificate section of a report."""

    OK = "ok"
    ABSENT = "absent"  # Handshake completed, server sent no certificate
    ERROR = "error"  # Connection or handshake for inspection failed
    SKIPPED = "skipped"  # Target scan aborted before inspection


@dataclass
class CertificateReport:
    """Certificate section of a scan report."""

    status: CertificateStatus
    certificate: Optional[CertificateInfo] = None
    error: Optional[str] = None
    ocsp: Optional[OcspStapleInfo] = None  # None if OCSP stapling was not requested


@dataclass
class ScanReport:
    """Everything collected for one target."""

    target: Target
    timestamp: datetime
    service: ApplicationProtocol = ApplicationProtocol.RAW
    ip_address: Optional[str] = None
    results: List[ProbeOutcome] = field(default_factory=list)
    preferred: List[PreferredCipherResult] = field(default_factory=list)
    certificate: Optional[CertificateReport] = None
    error: Optional[str] = None
    resolution_failed: bool = False
    aborted: bool = False  # Cipher probing stopped early, later sections skipped
    no_failed: bool = False  # Hide rejected/failed ciphers when rendering

    def visible_results(self) -> List[ProbeOutcome]:
        """Probe outcomes to render, honoring the ``no_failed`` option."""
        if not self.no_failed:
            return list(self.results)
        return [r for r in self.results if r.status == ProbeStatus.ACCEPTED]

    @property
    def accepted(self) -> List[ProbeOutcome]:
        return [r for r in self.results if r.status == ProbeStatus.ACCEPTED]
