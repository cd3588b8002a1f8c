"""Content Extractor — flattens a (possibly nested) MIME message into named units.

Traversal is depth-first in document order over an explicit stack of part
iterators, so attacker-controlled nesting cannot exhaust the interpreter
stack. Every leaf part becomes one unit:

- named parts (attachments) are transfer-decoded and keyed by filename;
- unnamed ``text/plain`` / ``text/html`` parts are keyed ``<type>-<n>``;
- any other unnamed part is keyed ``unknown-<n>`` and scanned raw.

``n`` comes from a single counter shared by the whole traversal.
"""

import secrets
import string
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Optional, Sequence

from ..utils.logging import get_logger
from .decoding import decode_quoted_printable, decode_transfer_encoding
from .errors import (
    EmbeddedMessageError,
    ExtractionError,
    MediaTypeError,
    NestingLimitExceeded,
    NotMultipart,
)
from .multipart import MimePart, iter_parts, parse_media_type, split_part

logger = get_logger("parsing.extractor")

_SUFFIX_ALPHABET = string.ascii_letters + string.digits
_SUFFIX_LENGTH = 3


@dataclass
class ExtractionResult:
    """Units produced so far plus the terminal error, if any."""

    units: dict[str, bytes] = field(default_factory=dict)
    error: Optional[ExtractionError] = None

    @property
    def fatal(self) -> bool:
        return self.error is not None and self.error.fatal

    def __len__(self) -> int:
        return len(self.units)


def _header_value(headers: Mapping[str, Sequence[str]], name: str) -> Optional[str]:
    """Case-insensitive lookup returning the first value of a header."""
    wanted = name.lower()
    for key, values in headers.items():
        if key.lower() == wanted and values:
            return values[0]
    return None


class ContentExtractor:
    """Decomposes one message body. Instances are single-use."""

    def __init__(self, trace_id: str = "", max_depth: int = 32, max_parts: int = 1000):
        self.trace_id = trace_id
        self.max_depth = max_depth
        self.max_parts = max_parts
        self._result = ExtractionResult()
        self._body_counter = 0
        self._parts_seen = 0

    def extract(self, headers: Mapping[str, Sequence[str]], body: bytes) -> ExtractionResult:
        """Extract units from ``body`` given the top-level message headers."""
        try:
            media_type, params = parse_media_type(_header_value(headers, "Content-Type"))
        except MediaTypeError as exc:
            self._result.error = exc
            return self._result

        if not media_type.startswith("multipart/"):
            self._add_unit("body-0", body)
            self._result.error = NotMultipart(f"not multipart: {media_type}")
            return self._result

        try:
            self._walk(body, params.get("boundary"))
        except ExtractionError as exc:
            logger.debug("extraction_aborted", trace_id=self.trace_id, error=str(exc))
            self._result.error = exc
        return self._result

    def _walk(self, body: bytes, boundary: Optional[str]) -> None:
        stack: list[Iterator[MimePart]] = [iter_parts(body, boundary)]
        while stack:
            part = next(stack[-1], None)
            if part is None:
                stack.pop()
                continue

            self._parts_seen += 1
            if self._parts_seen > self.max_parts:
                raise NestingLimitExceeded(f"more than {self.max_parts} MIME parts")

            media_type, params = parse_media_type(part.content_type)
            logger.debug("mime_part", trace_id=self.trace_id, media_type=media_type)

            if media_type.startswith("multipart/"):
                self._push(stack, iter_parts(part.payload, params.get("boundary")))
            elif media_type.startswith("message/rfc822"):
                nested = self._open_embedded(part)
                if nested is not None:
                    self._push(stack, nested)
            else:
                self._add_leaf(part, media_type)

    def _push(self, stack: list, parts: Iterator[MimePart]) -> None:
        if len(stack) >= self.max_depth:
            raise NestingLimitExceeded(f"MIME nesting deeper than {self.max_depth}")
        stack.append(parts)

    def _open_embedded(self, part: MimePart) -> Optional[Iterator[MimePart]]:
        """Return the part iterator of a multipart embedded message.

        A non-multipart embedded message is handed to ``_add_leaf`` with its
        own headers instead of being dropped.
        """
        if not part.payload.strip():
            raise EmbeddedMessageError("was not able to read 'message/rfc822' message: empty")
        inner = split_part(part.payload)
        try:
            media_type, params = parse_media_type(inner.content_type)
        except MediaTypeError as exc:
            raise EmbeddedMessageError(
                f"was not able to read 'message/rfc822' header: {exc}"
            ) from exc
        if media_type.startswith("multipart/"):
            return iter_parts(inner.payload, params.get("boundary"))
        self._add_leaf(inner, media_type)
        return None

    def _add_leaf(self, part: MimePart, media_type: str) -> None:
        filename = part.filename
        if filename:
            self._add_unit(filename, decode_transfer_encoding(part.transfer_encoding, part.payload))
            return

        if media_type.startswith("text/plain"):
            name = f"text/plain-{self._body_counter}"
        elif media_type.startswith("text/html"):
            name = f"text/html-{self._body_counter}"
        else:
            logger.warning(
                "unknown_mime_type",
                trace_id=self.trace_id,
                media_type=media_type,
                action="scanning raw",
            )
            name = f"unknown-{self._body_counter}"
        self._body_counter += 1
        payload = part.payload
        # Unnamed bodies are only ever QP-decoded; base64 stays as sent
        if part.transfer_encoding.strip().upper() == "QUOTED-PRINTABLE":
            payload = decode_quoted_printable(payload)
        self._add_unit(name, payload)

    def _add_unit(self, name: str, data: bytes) -> None:
        """Insert a unit, suffixing the name on collision. Never overwrites."""
        key = name
        while key in self._result.units:
            suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))
            key = f"{name}_{suffix}"
        self._result.units[key] = data
