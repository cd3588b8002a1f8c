"""Per-message decision record."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class QuarantineVerdict:
    """Outcome of one message's end-of-body processing."""

    should_quarantine: bool = False
    findings_count: int = 0
    quarantine_applied: bool = False
    unit_count: int = 0
    skipped: Optional[str] = None  # size_exceeded / extraction_failed / internal_error
