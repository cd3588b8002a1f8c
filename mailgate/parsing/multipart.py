"""Multipart stream reader and media-type parsing.

Splits a multipart body on its boundary delimiters (RFC 2046 section 5.1.1)
and parses the header block of every body part. The reader is a generator,
so the caller decides how far to descend and when to stop.
"""

import re
from dataclasses import dataclass
from email import errors as email_errors
from email import policy
from email.header import decode_header, make_header
from email.headerregistry import HeaderRegistry
from email.message import Message
from email.parser import BytesHeaderParser
from typing import Iterator, Optional

from .errors import MediaTypeError, MultipartError

DEFAULT_MEDIA_TYPE = "text/plain"

_HEADER_REGISTRY = HeaderRegistry()
_HEADER_PARSER = BytesHeaderParser(policy=policy.compat32)
_BLANK_LINE = re.compile(rb"\r?\n\r?\n")
_FOLDING = re.compile(r"\r?\n[ \t]+")
_FATAL_DEFECTS = (email_errors.InvalidHeaderDefect, email_errors.HeaderMissingRequiredValue)


def parse_media_type(value: Optional[str]) -> tuple[str, dict[str, str]]:
    """Parse a Content-Type value into ``(media_type, params)``.

    A missing or blank value is the RFC 2045 default ``text/plain``. A value
    that does not parse as ``type/subtype *(; param=value)`` raises
    MediaTypeError.
    """
    if value is None or not value.strip():
        return DEFAULT_MEDIA_TYPE, {}

    header = _HEADER_REGISTRY("content-type", _FOLDING.sub(" ", value).strip())
    for defect in header.defects:
        if isinstance(defect, _FATAL_DEFECTS):
            raise MediaTypeError(f"was not able to parse media type {value!r}: {defect}")
    return header.content_type, {k.lower(): v for k, v in header.params.items()}


@dataclass
class MimePart:
    """One body part: its header block and its still-encoded payload."""

    headers: Message
    payload: bytes

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("Content-Type")

    @property
    def transfer_encoding(self) -> str:
        return (self.headers.get("Content-Transfer-Encoding") or "").strip()

    @property
    def filename(self) -> str:
        """Attachment filename from Content-Disposition (or Content-Type ``name``), decoded."""
        raw = self.headers.get_filename()
        if not raw:
            return ""
        try:
            return str(make_header(decode_header(raw))).strip()
        except (email_errors.HeaderParseError, UnicodeDecodeError, LookupError):
            return raw.strip()


def split_part(raw: bytes) -> MimePart:
    """Split raw part (or embedded message) bytes at the first blank line."""
    if raw.startswith(b"\r\n"):
        header_block, payload = b"", raw[2:]
    elif raw.startswith(b"\n"):
        header_block, payload = b"", raw[1:]
    else:
        match = _BLANK_LINE.search(raw)
        if match is None:
            header_block, payload = raw, b""
        else:
            header_block, payload = raw[: match.start()], raw[match.end():]
    headers = _HEADER_PARSER.parsebytes(header_block + b"\n\n")
    return MimePart(headers=headers, payload=payload)


def _strip_line_end(data: bytes) -> bytes:
    # The line break before a delimiter belongs to the delimiter
    if data.endswith(b"\r\n"):
        return data[:-2]
    if data.endswith(b"\n") or data.endswith(b"\r"):
        return data[:-1]
    return data


def iter_parts(body: bytes, boundary: Optional[str]) -> Iterator[MimePart]:
    """Yield the body parts of a multipart entity in document order.

    The preamble and epilogue are skipped. Reaching the end of input before
    the close delimiter ends the stream normally; a part cut short by the end
    of input is still yielded.
    """
    if not boundary:
        raise MultipartError("multipart entity has no boundary parameter")
    try:
        marker = b"--" + boundary.encode("ascii")
    except UnicodeEncodeError as exc:
        raise MultipartError(f"boundary is not ASCII: {boundary!r}") from exc
    close_marker = marker + b"--"

    current: Optional[list[bytes]] = None  # None while in the preamble
    for line in body.splitlines(keepends=True):
        stripped = line.rstrip()
        if stripped == marker or stripped == close_marker:
            if current is not None:
                yield split_part(_strip_line_end(b"".join(current)))
            if stripped == close_marker:
                return
            current = []
            continue
        if current is not None:
            current.append(line)

    if current:
        yield split_part(b"".join(current))
