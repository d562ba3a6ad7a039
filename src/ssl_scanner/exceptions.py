"""Exception hierarchy for scanning errors."""


class ScanError(Exception):
    """Base class for all scanner errors."""


class ConfigurationError(ScanError):
    """Invalid option combination or unreadable input file. Raised before scanning starts."""


class ResolutionError(ScanError, ConnectionError):
    """Target hostname could not be resolved. Fatal for that target only."""


class ProbeConnectionError(ScanError, ConnectionError):
    """TCP connection to the target could not be opened for a probe."""


class PreambleError(ScanError, ConnectionError):
    """Plaintext upgrade negotiation (STARTTLS and friends) failed."""

    def __init__(self, message: str, state: str = "FAILED"):
        super().__init__(message)
        self.state = state


class TlsEngineError(ScanError):
    """The TLS engine could not complete a handshake."""


class CipherConfigurationError(TlsEngineError):
    """The TLS engine could not be restricted to the requested cipher set."""
