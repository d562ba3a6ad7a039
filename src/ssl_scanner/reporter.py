"""Report generation (text and JSON)."""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from io import StringIO
from typing import Any, Dict, List, Optional

from rich.console import Console

from ssl_scanner import __version__
from ssl_scanner.models import (
    CertificateInfo,
    CertificateReport,
    CertificateStatus,
    OcspStapleInfo,
    OcspStapleStatus,
    PreferredCipherResult,
    ProbeOutcome,
    ProbeStatus,
    ScanReport,
)

logger = logging.getLogger(__name__)

REPORT_TITLE = "ssl-scanner Results"

# Global flag for colored output
_use_color = True


def set_color_output(enabled: bool) -> None:
    """Enable or disable colored output."""
    global _use_color
    _use_color = enabled


def _style(text: str, style: str) -> str:
    """Wrap text in terminal color codes when color output is enabled."""
    if not _use_color:
        return text
    output = StringIO()
    console = Console(file=output, force_terminal=True, width=1000)
    console.print(text, style=style, end="", markup=False, highlight=False)
    return output.getvalue()


def _format_status(status: ProbeStatus) -> str:
    label = status.value.capitalize()
    padded = f"{label:<8}"
    if status == ProbeStatus.ACCEPTED:
        return _style(padded, "green")
    if status == ProbeStatus.REJECTED:
        return padded
    return _style(padded, "red")


def _format_bits(bits: Optional[int]) -> str:
    return f"{bits if bits is not None else 0} bits".rjust(8)


def generate_text_report(report: ScanReport, wiki: bool = False) -> str:
    """
    Generate human-readable text report for one target.

    Args:
        report: ScanReport to render
        wiki: Format the cipher tables as a pseudo wiki table

    Returns:
        Formatted text report
    """
    target = report.target
    lines = [""]
    lines.append(_style(f"Testing SSL server {target.host} on port {target.port}", "green"))
    lines.append("")

    if report.resolution_failed:
        lines.append(_style(f"ERROR: {report.error}", "red"))
        return "\n".join(lines)

    lines.append("  " + _style("Supported Server Cipher(s):", "blue"))
    http = any(r.http_status is not None for r in report.results)
    if wiki:
        lines.append("|| Status || HTTP Code || Version || Bits || Cipher ||" if http else "|| Status || Version || Bits || Cipher ||")
    for outcome in report.visible_results():
        lines.append(_format_outcome(outcome, wiki, http))

    if report.aborted:
        lines.append("")
        lines.append(_style(f"ERROR: {report.error}", "red"))
        lines.append("Preferred cipher and certificate checks were skipped.")
        return "\n".join(lines)

    lines.append("")
    lines.append("  " + _style("Preferred Server Cipher(s):", "blue"))
    if wiki:
        lines.append("|| Version || Bits || Cipher ||")
    for preferred in report.preferred:
        line = _format_preferred(preferred, wiki)
        if line:
            lines.append(line)

    if report.certificate is not None:
        lines.append("")
        lines.extend(_format_certificate_section(report.certificate))

    lines.append("")
    return "\n".join(lines)


def _format_outcome(outcome: ProbeOutcome, wiki: bool, http: bool) -> str:
    label = outcome.protocol.label
    if wiki:
        parts = [outcome.status.value.capitalize()]
        if http:
            parts.append(outcome.http_status or ("" if outcome.status == ProbeStatus.ACCEPTED else "N/A"))
        parts.extend([label, str(outcome.bits), outcome.cipher])
        return "|| " + " || ".join(parts) + " ||"

    line = f"    {_format_status(outcome.status)}  "
    if http:
        status = outcome.http_status or ("" if outcome.status == ProbeStatus.ACCEPTED else "N/A")
        line += f"{status:<17}"
    if outcome.data_channel_reply:
        verdict = "OK" if outcome.data_channel_status else "NA"
        line += f"Data-Channel-Encryption-Support: {verdict} ({outcome.data_channel_reply})  "
    return line + f"{label:<7}  {_format_bits(outcome.bits)}  {outcome.cipher}"


def _format_preferred(preferred: PreferredCipherResult, wiki: bool) -> Optional[str]:
    if not preferred.found:
        return None
    label = preferred.protocol.label
    if wiki:
        return f"|| {label} || {preferred.bits} bits || {preferred.cipher} ||"
    return f"    {label:<7}  {_format_bits(preferred.bits)}  {preferred.cipher}"


def _format_certificate_section(section: CertificateReport) -> List[str]:
    lines = ["  " + _style("SSL Certificate:", "blue")]
    if section.status == CertificateStatus.ABSENT:
        lines.append("    No certificate presented by the server.")
    elif section.status == CertificateStatus.ERROR:
        lines.append(_style(f"    ERROR: {section.error}", "red"))
    elif section.status == CertificateStatus.SKIPPED:
        lines.append("    Skipped.")
    elif section.certificate is not None:
        lines.extend(_format_certificate(section.certificate))

    if section.ocsp is not None:
        lines.append("")
        lines.append("  " + _style("OCSP Stapling:", "blue"))
        lines.extend(_format_ocsp(section.ocsp))

    if section.certificate is not None:
        lines.append("")
        lines.append("  " + _style("Verify Certificate:", "blue"))
        if section.certificate.verified:
            lines.append("    Certificate passed verification")
        else:
            lines.append(f"    {section.certificate.verification_error}")
    return lines


def _format_certificate(cert: CertificateInfo) -> List[str]:
    serial = cert.serial_number + (" (Negative)" if cert.serial_negative else "")
    lines = [
        f"    Version: {cert.version + 1} (0x{cert.version:x})",
        f"    Serial Number: {serial}",
        f"    Signature Algorithm: {cert.signature_algorithm}",
        f"    Issuer: {cert.issuer}",
        f"    Not valid before: {cert.not_before.strftime('%b %d %H:%M:%S %Y GMT')}",
        f"    Not valid after: {cert.not_after.strftime('%b %d %H:%M:%S %Y GMT')}",
        f"    Subject: {cert.subject}",
        f"    Public Key Algorithm: {cert.public_key.algorithm}",
    ]
    key = cert.public_key
    if key.error:
        lines.append(f"    {_style('Public Key: Could not load', 'red')}")
    elif key.key_type == "RSA":
        lines.append(f"    RSA Public Key: ({key.bits} bit)")
        lines.append(f"      Exponent: {key.exponent} (0x{key.exponent:x})")
    elif key.key_type == "EC":
        lines.append(f"    EC Public Key: ({key.bits} bit, {key.curve})")
    else:
        lines.append(f"    {key.key_type} Public Key: ({key.bits} bit)")

    if cert.extensions:
        lines.append("    X509v3 Extensions:")
        for ext in cert.extensions:
            lines.append(f"      {ext.name}: {'critical' if ext.critical else ''}".rstrip())
            lines.append(f"        {ext.value}")
    return lines


def _format_ocsp(info: OcspStapleInfo) -> List[str]:
    if info.status != OcspStapleStatus.DECODED:
        return [f"    {info.error}"]
    lines = [f"    Response Status: {info.response_status}"]
    if info.responder:
        lines.append(f"    Responder: {info.responder}")
    if info.produced_at:
        lines.append(f"    Produced At: {info.produced_at.isoformat()}")
    if info.cert_status:
        lines.append(f"    Cert Status: {info.cert_status}")
        lines.append(f"    Serial Number: {info.serial_number}")
        if info.this_update:
            lines.append(f"    This Update: {info.this_update.isoformat()}")
        if info.next_update:
            lines.append(f"    Next Update: {info.next_update.isoformat()}")
    if info.revocation_time:
        lines.append(f"    Revocation Time: {info.revocation_time.isoformat()}")
    if info.revocation_reason:
        lines.append(f"    Revocation Reason: {info.revocation_reason}")
    return lines


def _outcome_to_dict(outcome: ProbeOutcome) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "status": outcome.status.value,
        "sslversion": outcome.protocol.label,
        "bits": outcome.bits,
        "cipher": outcome.cipher,
    }
    if outcome.http_status is not None:
        entry["http"] = outcome.http_status
    if outcome.data_channel_reply is not None:
        entry["data_connection_security_private"] = outcome.data_channel_reply
    if outcome.reason and outcome.status == ProbeStatus.FAILED:
        entry["reason"] = outcome.reason
    return entry


def _preferred_to_dict(preferred: PreferredCipherResult) -> Dict[str, Any]:
    return {
        "sslversion": preferred.protocol.label,
        "bits": preferred.bits,
        "cipher": preferred.cipher,
        "error": preferred.error,
    }


def report_to_dict(report: ScanReport) -> Dict[str, Any]:
    """Build the JSON-ready structure for one target."""
    return {
        "host": report.target.host,
        "port": report.target.port,
        "ip": report.ip_address,
        "service": report.service.value,
        "timestamp": report.timestamp,
        "error": report.error,
        "resolution_failed": report.resolution_failed,
        "aborted": report.aborted,
        "ciphers": [_outcome_to_dict(o) for o in report.visible_results()],
        "defaultciphers": [_preferred_to_dict(p) for p in report.preferred],
        "certificate": asdict(report.certificate) if report.certificate is not None else None,
    }


def generate_json_report(reports: List[ScanReport]) -> str:
    """
    Generate JSON document for one or more targets.

    Args:
        reports: ScanReports to include, in scan order

    Returns:
        JSON string
    """
    # Convert to dict, handling datetime serialization
    def serialize_value(obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        elif isinstance(obj, Enum):
            return obj.value
        raise TypeError(f"Type {type(obj)} not serializable")

    document = {
        "document": {
            "title": REPORT_TITLE,
            "version": __version__,
            "ssltests": [report_to_dict(r) for r in reports],
        }
    }
    return json.dumps(document, indent=2, default=serialize_value)
