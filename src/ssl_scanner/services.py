"""Application protocols that can carry TLS and their default ports."""

from enum import Enum
from typing import Optional


class ApplicationProtocol(str, Enum):
    """Application protocol spoken before the TLS handshake."""

    RAW = "raw"
    SMTP = "smtp"
    FTP = "ftp"
    POP3 = "pop3"
    IMAP = "imap"


DEFAULT_PORTS = {
    ApplicationProtocol.RAW: 443,
    ApplicationProtocol.SMTP: 25,
    ApplicationProtocol.FTP: 21,
    ApplicationProtocol.POP3: 110,
    ApplicationProtocol.IMAP: 143,
}


def get_default_port(service: ApplicationProtocol) -> int:
    """Return the default port for an application protocol."""
    return DEFAULT_PORTS[service]


def parse_service(name: Optional[str]) -> ApplicationProtocol:
    """
    Parse a service name as given on the command line.

    Accepts the protocol names case-insensitively plus a few historic aliases
    (``esmtps``, ``starttls``, ``ftps``, ``pop3s``, ``imaps``).

    Raises:
        ValueError: If the name is not a known service
    """
    if not name:
        return ApplicationProtocol.RAW

    aliases = {
        "https": ApplicationProtocol.RAW,
        "tls": ApplicationProtocol.RAW,
        "esmtps": ApplicationProtocol.SMTP,
        "starttls": ApplicationProtocol.SMTP,
        "ftps": ApplicationProtocol.FTP,
        "pop3s": ApplicationProtocol.POP3,
        "imaps": ApplicationProtocol.IMAP,
    }
    normalized = name.strip().lower()
    if normalized in aliases:
        return aliases[normalized]
    try:
        return ApplicationProtocol(normalized)
    except ValueError:
        valid = ", ".join(p.value for p in ApplicationProtocol)
        raise ValueError(f"Unknown service '{name}'. Available: {valid}")
