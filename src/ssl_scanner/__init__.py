"""SSL/TLS cipher suite, preferred cipher and certificate scanner."""

__version__ = "0.1.0"
