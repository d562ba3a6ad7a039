"""Per-version cipher catalog."""

import logging
from typing import Dict, Tuple

from ssl_scanner.engine import TlsEngine
from ssl_scanner.models import CipherSpec, ProtocolVersion, selected_versions

logger = logging.getLogger(__name__)

CipherCatalog = Dict[ProtocolVersion, Tuple[CipherSpec, ...]]


def build_cipher_catalog(engine: TlsEngine, versions: ProtocolVersion) -> CipherCatalog:
    """
    Enumerate the engine's ciphers once for every selected protocol version.

    The catalog is built before any target is scanned and is shared read-only
    by every target in the run.

    Args:
        engine: TLS engine to ask
        versions: Protocol versions to include

    Returns:
        Mapping of protocol version to its ordered cipher tuple, in probe order
    """
    catalog: CipherCatalog = {}
    for version in selected_versions(versions):
        catalog[version] = tuple(engine.enumerate_ciphers(version))
        logger.debug(f"{version.label}: {len(catalog[version])} cipher(s) in catalog")
    return catalog


def catalog_size(catalog: CipherCatalog) -> int:
    return sum(len(ciphers) for ciphers in catalog.values())
