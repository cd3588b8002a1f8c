"""Content-Transfer-Encoding decoding for MIME parts."""

import base64
import binascii
import quopri
import re

from .errors import TransferDecodeError

# "=" must introduce a hex escape or a soft line break
_INVALID_QP_ESCAPE = re.compile(rb"=(?![0-9A-Fa-f]{2}|[ \t]*\r?\n|[ \t]*\Z)")


def decode_base64(data: bytes) -> bytes:
    """Standard (padded) base64; line breaks are ignored, any other stray byte is an error."""
    compact = data.replace(b"\r", b"").replace(b"\n", b"")
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TransferDecodeError(f"was not able to base64 decode: {exc}") from exc


def decode_quoted_printable(data: bytes) -> bytes:
    match = _INVALID_QP_ESCAPE.search(data)
    if match is not None:
        raise TransferDecodeError(
            f"was not able to quoted-printable decode: invalid escape at offset {match.start()}"
        )
    return quopri.decodestring(data)


def decode_transfer_encoding(encoding: str, data: bytes) -> bytes:
    """Decode ``data`` according to a Content-Transfer-Encoding value.

    Encodings other than BASE64 and QUOTED-PRINTABLE (7bit, 8bit, binary,
    unknown tokens) pass through unmodified.
    """
    normalized = (encoding or "").strip().upper()
    if normalized == "BASE64":
        return decode_base64(data)
    if normalized == "QUOTED-PRINTABLE":
        return decode_quoted_printable(data)
    return data
