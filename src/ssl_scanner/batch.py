"""Target specifications and target list files."""

import logging
from pathlib import Path
from typing import List

from ssl_scanner.exceptions import ConfigurationError
from ssl_scanner.models import Target
from ssl_scanner.services import ApplicationProtocol, get_default_port

logger = logging.getLogger(__name__)


def parse_target(spec: str, service: ApplicationProtocol = ApplicationProtocol.RAW) -> Target:
    """
    Parse ``host``, ``host:port`` or ``[ipv6]:port``.

    Without an explicit port the default port of ``service`` is used.

    Raises:
        ConfigurationError: If the host is empty or the port is not a valid number
    """
    spec = spec.strip()
    host, port_text = spec, None

    if spec.startswith("["):
        end = spec.find("]")
        if end == -1:
            raise ConfigurationError(f"Invalid target '{spec}': missing ']'")
        host = spec[1:end]
        rest = spec[end + 1:]
        if rest.startswith(":"):
            port_text = rest[1:]
        elif rest:
            raise ConfigurationError(f"Invalid target '{spec}'")
    elif spec.count(":") == 1:
        host, port_text = spec.split(":", 1)
    # More than one colon without brackets: a bare IPv6 address

    if not host:
        raise ConfigurationError(f"Invalid target '{spec}': empty host")
    if port_text is None:
        return Target(host, get_default_port(service))

    try:
        port = int(port_text)
    except ValueError:
        raise ConfigurationError(f"Invalid port in target '{spec}': {port_text!r}")
    if not 0 < port < 65536:
        raise ConfigurationError(f"Invalid port in target '{spec}': {port}")
    return Target(host, port)


def read_targets_from_file(path: Path, service: ApplicationProtocol = ApplicationProtocol.RAW) -> List[Target]:
    """
    Read targets from a file, one ``host[:port]`` per line.

    Blank lines are ignored and trailing whitespace (including CR) is trimmed.
    Entries stay in file order.

    Raises:
        ConfigurationError: If the file cannot be read or a line is not a valid target
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Could not read target file {path}: {e}")

    targets = []
    for line_no, line in enumerate(content.splitlines(), start=1):
        line = line.rstrip()
        if not line.strip():
            continue
        try:
            targets.append(parse_target(line, service))
        except ConfigurationError as e:
            raise ConfigurationError(f"{path}, line {line_no}: {e}")

    logger.debug(f"Read {len(targets)} target(s) from {path}")
    return targets
