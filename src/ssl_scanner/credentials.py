"""Client certificate and private key loading."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from ssl_scanner.exceptions import ConfigurationError
from ssl_scanner.models import ScanOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientCredentials:
    """Client certificate, matching private key and optional extra chain certificates."""

    certificate: x509.Certificate
    private_key: object  # cryptography private key
    chain: Tuple[x509.Certificate, ...] = ()


def load_client_credentials(options: ScanOptions) -> Optional[ClientCredentials]:
    """
    Load client credentials configured in ``options``.

    Two layouts are supported: a certificate file plus a private key file
    (PEM or DER), or a single PKCS#12 bundle given as the private key file.

    Returns:
        ClientCredentials, or None if no client credentials are configured

    Raises:
        ConfigurationError: If files cannot be read or parsed, or the key
            does not match the certificate
    """
    if not options.has_client_credentials:
        return None

    password = options.private_key_password.encode("utf-8") if options.private_key_password is not None else None

    if options.client_cert_file is not None and options.private_key_file is not None:
        certificates = _load_certificates(_read_file(options.client_cert_file))
        private_key = _load_private_key(_read_file(options.private_key_file), password, options.private_key_file)
        credentials = ClientCredentials(certificates[0], private_key, tuple(certificates[1:]))
        logger.debug(f"Loaded client certificate from {options.client_cert_file}")
    elif options.private_key_file is not None:
        credentials = _load_pkcs12(_read_file(options.private_key_file), password, options.private_key_file)
        logger.debug(f"Loaded client certificate from PKCS#12 file {options.private_key_file}")
    else:
        raise ConfigurationError("Client certificate given without a private key (--pk)")

    if not _key_matches_certificate(credentials):
        raise ConfigurationError("Private key does not match certificate")
    return credentials


def _read_file(path: Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Could not read {path}: {e}")


def _load_certificates(data: bytes) -> list:
    if b"-----BEGIN CERTIFICATE-----" in data:
        try:
            certificates = x509.load_pem_x509_certificates(data)
        except ValueError as e:
            raise ConfigurationError(f"Could not configure certificate(s): {e}")
        if certificates:
            return certificates
    try:
        return [x509.load_der_x509_certificate(data)]
    except ValueError as e:
        raise ConfigurationError(f"Could not configure certificate(s): {e}")


def _load_private_key(data: bytes, password: Optional[bytes], path: Path):
    loaders = (
        serialization.load_pem_private_key,
        serialization.load_der_private_key,
    )
    last_error: Optional[Exception] = None
    for loader in loaders:
        try:
            return loader(data, password=password)
        except (ValueError, TypeError) as e:
            # TypeError: password given for an unencrypted key or missing for an encrypted one
            last_error = e
    raise ConfigurationError(f"Could not configure private key from {path}: {last_error}")


def _load_pkcs12(data: bytes, password: Optional[bytes], path: Path) -> ClientCredentials:
    try:
        private_key, certificate, additional = pkcs12.load_key_and_certificates(data, password)
    except ValueError as e:
        raise ConfigurationError(f"Error parsing PKCS#12 file {path}. Is the password correct? ({e})")
    if private_key is None or certificate is None:
        raise ConfigurationError(f"PKCS#12 file {path} does not contain a certificate and private key")
    return ClientCredentials(certificate, private_key, tuple(additional or ()))


def _key_matches_certificate(credentials: ClientCredentials) -> bool:
    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    der = serialization.Encoding.DER
    cert_public = credentials.certificate.public_key().public_bytes(der, spki)
    key_public = credentials.private_key.public_key().public_bytes(der, spki)
    return cert_public == key_public
