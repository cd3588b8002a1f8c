"""Structured audit records — one per finding and one per message."""

from typing import Optional

from ..models.finding import ScanFinding
from ..utils.logging import get_logger

logger = get_logger("engine.audit")


def record_finding(fields: dict, unit: str, finding: ScanFinding) -> None:
    """Log every field of a finding together with the unit it came from."""
    ctx = finding.context
    logger.warning(
        "finding",
        **fields,
        unit=unit,
        filename=ctx.file,
        thor_level=finding.level,
        thor_module=finding.module,
        thor_msg=finding.message,
        thor_score=finding.score,
        thor_subscores=finding.subscores,
        rule_names=[m.rule_name for m in finding.sub_matches],
        ext=ctx.ext,
        file_type=ctx.type,
        file_size=ctx.size,
        md5=ctx.md5,
        sha1=ctx.sha1,
        sha256=ctx.sha256,
        sample_id=ctx.sample_id,
        firstbytes=ctx.firstbytes,
        reasons_count=ctx.reasons_count,
        thor_raw=finding.model_dump_json(by_alias=True),
    )


def record_message(
    fields: dict,
    *,
    duration_ms: float,
    size: int,
    unit_count: int,
    findings_count: int,
    quarantine: bool,
    quarantine_applied: bool,
    skipped: Optional[str] = None,
) -> None:
    """Log the per-message summary. Applied quarantines are logged at WARNING."""
    log = logger.warning if quarantine_applied else logger.info
    log(
        "mail_quarantined" if quarantine_applied else "mail_scanned",
        **fields,
        duration_ms=round(duration_ms, 3),
        size=size,
        unit_count=unit_count,
        findings_count=findings_count,
        quarantine=quarantine,
        quarantine_applied=quarantine_applied,
        skipped=skipped,
    )
