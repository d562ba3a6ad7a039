"""Tests for preferred cipher detection."""

from ssl_scanner.exceptions import PreambleError
from ssl_scanner.models import CipherSpec, ProtocolVersion, ScanOptions
from ssl_scanner.preferred import probe_preferred_cipher, probe_preferred_ciphers

from conftest import FakeConnections, FakeEngine


class TestPreferredCipher:
    """Tests for probe_preferred_cipher."""

    def test_full_catalog_offered(self, target, tls12_catalog):
        """The preferred probe offers the whole catalog of the version."""
        engine = FakeEngine(tls12_catalog, accepted=["ECDHE-RSA-AES128-GCM-SHA256", "DES-CBC3-SHA"])

        result = probe_preferred_cipher(FakeConnections(target), engine, ProtocolVersion.TLSv1_2, ScanOptions())

        assert result.found
        assert result.cipher == "ECDHE-RSA-AES128-GCM-SHA256"
        assert result.bits == 128
        assert engine.handshakes[0][1] is None

    def test_idempotent(self, target, tls12_catalog):
        """Repeated probes against an unchanged peer agree."""
        engine = FakeEngine(tls12_catalog, accepted=["DES-CBC3-SHA"])
        connections = FakeConnections(target)

        first = probe_preferred_cipher(connections, engine, ProtocolVersion.TLSv1_2, ScanOptions())
        second = probe_preferred_cipher(connections, engine, ProtocolVersion.TLSv1_2, ScanOptions())

        assert first == second

    def test_rejection_records_absent(self, target, tls12_catalog):
        """A refused handshake records the version as absent."""
        engine = FakeEngine(tls12_catalog)

        result = probe_preferred_cipher(FakeConnections(target), engine, ProtocolVersion.TLSv1_2, ScanOptions())

        assert not result.found
        assert result.error == "no shared cipher"

    def test_connection_failure_records_absent(self, target, tls12_catalog):
        """Connection problems never raise out of the probe."""
        engine = FakeEngine(tls12_catalog, accepted=["DES-CBC3-SHA"])
        connections = FakeConnections(target, connect_error=PreambleError("Unexpected FTP greeting"))

        result = probe_preferred_cipher(connections, engine, ProtocolVersion.TLSv1_2, ScanOptions())

        assert not result.found
        assert result.error == "Unexpected FTP greeting"


class TestPreferredCiphers:
    """Tests for probe_preferred_ciphers."""

    def test_failure_does_not_skip_later_versions(self, target):
        """A version without a preferred cipher does not stop the others."""
        catalog = {
            ProtocolVersion.TLSv1_0: (CipherSpec(ProtocolVersion.TLSv1_0, "AES128-SHA", 128),),
            ProtocolVersion.TLSv1_2: (CipherSpec(ProtocolVersion.TLSv1_2, "AES256-GCM-SHA384", 256),),
        }
        engine = FakeEngine(catalog, accepted=["AES256-GCM-SHA384"])

        results = probe_preferred_ciphers(FakeConnections(target), engine, catalog, ScanOptions())

        assert [r.protocol for r in results] == [ProtocolVersion.TLSv1_0, ProtocolVersion.TLSv1_2]
        assert not results[0].found
        assert results[1].cipher == "AES256-GCM-SHA384"
