"""Leaf certificate inspection."""

import logging
import socket
from typing import List, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa

from ssl_scanner.credentials import ClientCredentials
from ssl_scanner.engine import HandshakeOptions, TlsEngine
from ssl_scanner.exceptions import PreambleError, ProbeConnectionError, TlsEngineError
from ssl_scanner.models import (
    CertificateExtension,
    CertificateInfo,
    CertificateReport,
    CertificateStatus,
    ProtocolVersion,
    PublicKeyInfo,
    ScanOptions,
)
from ssl_scanner.network import ConnectionManager
from ssl_scanner.ocsp import decode_ocsp_staple, format_serial

logger = logging.getLogger(__name__)


def _oid_name(oid: x509.ObjectIdentifier) -> str:
    name = oid._name
    return oid.dotted_string if name == "Unknown OID" else name


def format_serial_number(serial: int) -> tuple:
    """
    Render a serial number as colon separated hex bytes of its magnitude.

    Returns:
        Tuple of (hex_string, is_negative)
    """
    return format_serial(abs(serial)), serial < 0


def parse_public_key(cert: x509.Certificate) -> PublicKeyInfo:
    """Extract public key algorithm and key details."""
    try:
        algorithm = _oid_name(cert.public_key_algorithm_oid)
    except ValueError:
        algorithm = "unknown"

    try:
        key = cert.public_key()
    except (ValueError, UnsupportedAlgorithm) as e:
        logger.debug(f"Could not load public key: {e}")
        return PublicKeyInfo(algorithm=algorithm, key_type="unknown", error=True)

    if isinstance(key, rsa.RSAPublicKey):
        return PublicKeyInfo(algorithm, "RSA", bits=key.key_size, exponent=key.public_numbers().e)
    if isinstance(key, dsa.DSAPublicKey):
        return PublicKeyInfo(algorithm, "DSA", bits=key.key_size)
    if isinstance(key, ec.EllipticCurvePublicKey):
        return PublicKeyInfo(algorithm, "EC", bits=key.curve.key_size, curve=key.curve.name)
    if isinstance(key, ed25519.Ed25519PublicKey):
        return PublicKeyInfo(algorithm, "Ed25519", bits=256)
    if isinstance(key, ed448.Ed448PublicKey):
        return PublicKeyInfo(algorithm, "Ed448", bits=456)
    return PublicKeyInfo(algorithm, "unknown", error=True)


def _format_general_names(names) -> str:
    parts = []
    for name in names:
        if isinstance(name, x509.DNSName):
            parts.append(f"DNS:{name.value}")
        elif isinstance(name, x509.IPAddress):
            parts.append(f"IP Address:{name.value}")
        elif isinstance(name, x509.RFC822Name):
            parts.append(f"email:{name.value}")
        elif isinstance(name, x509.UniformResourceIdentifier):
            parts.append(f"URI:{name.value}")
        elif isinstance(name, x509.DirectoryName):
            parts.append(f"DirName:{name.value.rfc4514_string()}")
        else:
            parts.append(str(name.value))
    return ", ".join(parts)


_KEY_USAGE_FLAGS = (
    ("digital_signature", "Digital Signature"),
    ("content_commitment", "Non Repudiation"),
    ("key_encipherment", "Key Encipherment"),
    ("data_encipherment", "Data Encipherment"),
    ("key_agreement", "Key Agreement"),
    ("key_cert_sign", "Certificate Sign"),
    ("crl_sign", "CRL Sign"),
)


def format_extension_value(value: x509.ExtensionType) -> str:
    """Render an extension value as a single readable string."""
    if isinstance(value, x509.SubjectAlternativeName) or isinstance(value, x509.IssuerAlternativeName):
        return _format_general_names(value)
    if isinstance(value, x509.BasicConstraints):
        text = f"CA:{'TRUE' if value.ca else 'FALSE'}"
        if value.path_length is not None:
            text += f", pathlen:{value.path_length}"
        return text
    if isinstance(value, x509.KeyUsage):
        usages = [label for attr, label in _KEY_USAGE_FLAGS if getattr(value, attr)]
        if value.key_agreement:
            if value.encipher_only:
                usages.append("Encipher Only")
            if value.decipher_only:
                usages.append("Decipher Only")
        return ", ".join(usages)
    if isinstance(value, x509.ExtendedKeyUsage):
        return ", ".join(_oid_name(usage) for usage in value)
    if isinstance(value, x509.SubjectKeyIdentifier):
        return value.digest.hex(":").upper()
    if isinstance(value, x509.AuthorityKeyIdentifier):
        if value.key_identifier is not None:
            return "keyid:" + value.key_identifier.hex(":").upper()
        return ""
    if isinstance(value, x509.CRLDistributionPoints):
        uris = []
        for point in value:
            if point.full_name:
                uris.append(_format_general_names(point.full_name))
        return ", ".join(uris)
    if isinstance(value, x509.AuthorityInformationAccess):
        return ", ".join(
            f"{_oid_name(desc.access_method)} - {_format_general_names([desc.access_location])}"
            for desc in value
        )
    if isinstance(value, x509.CertificatePolicies):
        return ", ".join(f"Policy: {policy.policy_identifier.dotted_string}" for policy in value)
    if isinstance(value, x509.UnrecognizedExtension):
        return value.value.hex(":")
    return str(value)


def parse_extensions(cert: x509.Certificate) -> List[CertificateExtension]:
    """Extract X509v3 extensions in certificate order."""
    try:
        extensions = list(cert.extensions)
    except ValueError as e:
        logger.warning(f"Could not parse certificate extensions: {e}")
        return []

    return [
        CertificateExtension(name=_oid_name(ext.oid), critical=ext.critical, value=format_extension_value(ext.value))
        for ext in extensions
    ]


def parse_certificate(cert: x509.Certificate) -> CertificateInfo:
    """
    Extract the reported fields of a certificate.

    Verification fields are left at their defaults; the caller fills them in
    from the handshake.
    """
    serial, negative = format_serial_number(cert.serial_number)
    return CertificateInfo(
        version=cert.version.value,
        serial_number=serial,
        serial_negative=negative,
        signature_algorithm=_oid_name(cert.signature_algorithm_oid),
        issuer=cert.issuer.rfc4514_string(),
        subject=cert.subject.rfc4514_string(),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        public_key=parse_public_key(cert),
        extensions=parse_extensions(cert),
    )


def _inspection_versions(options: ScanOptions) -> ProtocolVersion:
    """Versions offered for the inspection handshake: the selected ones, or all of them."""
    usable = options.versions & ~ProtocolVersion.SSLv2
    return usable if usable != ProtocolVersion.NONE else ProtocolVersion.ALL


def inspect_certificate(
    connections: ConnectionManager,
    engine: TlsEngine,
    options: ScanOptions,
    credentials: Optional[ClientCredentials] = None,
) -> CertificateReport:
    """
    Handshake once with the full cipher set and inspect the leaf certificate.

    Connection, preamble and handshake failures produce an ERROR report; they
    never raise.
    """
    handshake_options = HandshakeOptions.from_scan_options(
        options, connections.target.host, credentials, verify=True
    )

    try:
        with connections.connect() as sock:
            handshake = engine.handshake(sock, _inspection_versions(options), None, handshake_options)
            if not handshake.accepted:
                reason = handshake.reason or f"handshake {handshake.status.value}"
                logger.warning(f"Certificate inspection handshake with {connections.target} failed: {reason}")
                return CertificateReport(CertificateStatus.ERROR, error=reason)

            session = handshake.session
            report = _build_report(session.peer_certificate, session.verification_error)
            if options.ocsp_request:
                report.ocsp = decode_ocsp_staple(session.ocsp_staple)
            session.shutdown()
            return report
    except (PreambleError, ProbeConnectionError, TlsEngineError) as e:
        error = str(e)
    except socket.timeout as e:
        error = f"Timed out: {e}"
    except OSError as e:
        error = f"Connection error: {e}"

    logger.warning(f"Certificate inspection of {connections.target} failed: {error}")
    return CertificateReport(CertificateStatus.ERROR, error=error)


def _build_report(cert: Optional[x509.Certificate], verification_error: Optional[str]) -> CertificateReport:
    if cert is None:
        logger.info("Server did not present a certificate")
        return CertificateReport(CertificateStatus.ABSENT)

    try:
        info = parse_certificate(cert)
    except ValueError as e:
        logger.warning(f"Could not parse server certificate: {e}")
        return CertificateReport(CertificateStatus.ERROR, error=f"Could not parse server certificate: {e}")
    info.verified = verification_error is None
    info.verification_error = verification_error
    if verification_error:
        logger.debug(f"Certificate verification failed: {verification_error}")
    return CertificateReport(CertificateStatus.OK, certificate=info)
