"""Extraction error taxonomy."""


class ExtractionError(Exception):
    """Terminal extraction failure. Aborts the traversal of the current message."""

    fatal = True


class NotMultipart(ExtractionError):
    """The message is not multipart; the raw body was returned as a single unit."""

    fatal = False


class MediaTypeError(ExtractionError):
    """A Content-Type header could not be parsed."""


class MultipartError(ExtractionError):
    """A multipart stream could not be read."""


class EmbeddedMessageError(ExtractionError):
    """A message/rfc822 part could not be read."""


class TransferDecodeError(ExtractionError):
    """A named part failed base64 or quoted-printable decoding."""


class NestingLimitExceeded(ExtractionError):
    """The MIME tree is deeper or larger than the configured ceiling."""
