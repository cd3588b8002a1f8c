"""Finding models — the JSON shapes returned by THOR Thunderstorm."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SubMatch(BaseModel):
    """One signature hit contributing to a finding."""

    model_config = ConfigDict(populate_by_name=True)

    author: str = ""
    reason: str = ""
    ref: str = ""
    rule_date: str = Field("", alias="ruledate")
    rule_name: str = Field("", alias="rulename")
    sig_class: str = Field("", alias="sigclass")
    sig_type: str = Field("", alias="sigtype")
    subscore: int = 0
    matched: list[str] = Field(default_factory=list)
    tags: set[str] = Field(default_factory=set)


class FindingContext(BaseModel):
    """File metadata the scanner attaches to a finding."""

    model_config = ConfigDict(populate_by_name=True)

    file: str = ""
    ext: str = ""
    md5: str = ""
    sha1: str = ""
    sha256: str = ""
    size: int = 0
    sample_id: int = 0
    type: str = ""
    firstbytes: str = ""
    reasons_count: int = 0


class ScanFinding(BaseModel):
    """One detection event reported for one scanned unit."""

    model_config = ConfigDict(populate_by_name=True)

    level: str = ""
    module: str = ""
    message: str = ""
    score: int = 0
    context: FindingContext = Field(default_factory=FindingContext)
    sub_matches: list[SubMatch] = Field(default_factory=list, alias="matches")

    @property
    def subscores(self) -> list[int]:
        return [m.subscore for m in self.sub_matches]
