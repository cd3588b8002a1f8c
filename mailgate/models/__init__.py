"""Data models shared by the scan client, the policy engine and the session pipeline."""

from .finding import FindingContext, ScanFinding, SubMatch
from .verdict import QuarantineVerdict

__all__ = [
    "FindingContext",
    "ScanFinding",
    "SubMatch",
    "QuarantineVerdict",
]
