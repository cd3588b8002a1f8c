"""MIME decomposition of in-transit messages into scannable units."""

from .errors import (
    EmbeddedMessageError,
    ExtractionError,
    MediaTypeError,
    MultipartError,
    NestingLimitExceeded,
    NotMultipart,
    TransferDecodeError,
)
from .extractor import ContentExtractor, ExtractionResult

__all__ = [
    "ContentExtractor",
    "ExtractionResult",
    "ExtractionError",
    "EmbeddedMessageError",
    "MediaTypeError",
    "MultipartError",
    "NestingLimitExceeded",
    "NotMultipart",
    "TransferDecodeError",
]
