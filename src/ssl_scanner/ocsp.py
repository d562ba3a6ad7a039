"""Decoding of OCSP responses stapled to the TLS handshake."""

import logging
from typing import Optional

from cryptography.x509 import ocsp

from ssl_scanner.models import OcspStapleInfo, OcspStapleStatus

logger = logging.getLogger(__name__)

NO_STAPLE_MESSAGE = "Certificate Status Request sent but no OCSP ticket stapled"
DECODE_FAILED_MESSAGE = "failed to parse OCSP response"


def format_serial(serial: int) -> str:
    """Render an integer serial as colon separated hex bytes."""
    length = max(1, (serial.bit_length() + 7) // 8)
    return ":".join(f"{b:02x}" for b in serial.to_bytes(length, "big"))


def decode_ocsp_staple(data: Optional[bytes]) -> OcspStapleInfo:
    """
    Decode a stapled OCSP response.

    Args:
        data: Raw DER bytes from the handshake; empty or None if the server
            stapled nothing

    Returns:
        OcspStapleInfo with status NONE_RETURNED, DECODE_FAILED or DECODED
    """
    if not data:
        logger.debug(NO_STAPLE_MESSAGE)
        return OcspStapleInfo(OcspStapleStatus.NONE_RETURNED, error=NO_STAPLE_MESSAGE)

    try:
        response = ocsp.load_der_ocsp_response(data)
    except ValueError as e:
        logger.warning(f"Error parsing stapled OCSP response: {e}")
        return OcspStapleInfo(OcspStapleStatus.DECODE_FAILED, error=f"{DECODE_FAILED_MESSAGE}: {e}")

    info = OcspStapleInfo(OcspStapleStatus.DECODED, response_status=response.response_status.name)
    if response.response_status != ocsp.OCSPResponseStatus.SUCCESSFUL:
        # Only the status is present on unsuccessful responses
        return info

    if response.responder_name is not None:
        info.responder = response.responder_name.rfc4514_string()
    elif response.responder_key_hash is not None:
        info.responder = "key hash " + response.responder_key_hash.hex(":")
    info.produced_at = response.produced_at_utc

    for single in response.responses:
        info.cert_status = single.certificate_status.name
        info.serial_number = format_serial(single.serial_number)
        info.this_update = single.this_update_utc
        info.next_update = single.next_update_utc
        if single.certificate_status == ocsp.OCSPCertStatus.REVOKED:
            info.revocation_time = single.revocation_time_utc
            if single.revocation_reason is not None:
                info.revocation_reason = single.revocation_reason.name
        # The staple is about the leaf only
        break

    logger.debug(f"Stapled OCSP response: {info.response_status}, certificate {info.cert_status}")
    return info
