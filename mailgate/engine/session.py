"""Session Pipeline — per-message state machine.

One MailSession exists per inbound message. Transport callbacks feed it
envelope, header and body events; ``end_of_body`` runs the extract, scan
and decide steps once and returns the verdict. All mutable state sits
behind one lock, held across body accumulation and the whole end-of-body
sequence.

    IDLE -> ACCUMULATING -> EXTRACTING -> SCANNING -> DECIDING -> DONE
"""

import threading
import time
import uuid
from enum import Enum
from typing import Callable, Mapping, Optional, Sequence

from ..intel.thunderstorm import ScanError
from ..models.finding import ScanFinding
from ..models.verdict import QuarantineVerdict
from ..parsing.extractor import ContentExtractor, ExtractionResult
from ..utils.logging import get_logger
from .audit import record_finding, record_message
from .context import GatewayContext
from .policy import PolicyContext, PolicyEvaluationError

logger = get_logger("engine.session")

# Issues the transport's quarantine action; raising means it failed.
QuarantineAction = Callable[[str], object]


class SessionPhase(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    EXTRACTING = "extracting"
    SCANNING = "scanning"
    DECIDING = "deciding"
    DONE = "done"


def new_trace_id() -> str:
    return str(uuid.uuid4())


class MailSession:
    """Accumulates one message and decides whether to quarantine it."""

    def __init__(self, context: GatewayContext, trace_id: Optional[str] = None):
        self._context = context
        self._config = context.config
        self._lock = threading.Lock()

        self._trace_id = trace_id or new_trace_id()
        self._start = time.monotonic()
        self._mail_from = ""
        self._rcpt_to: list[str] = []
        self._raw = bytearray()
        self._headers: dict[str, list[str]] = {}
        self._size_exceeded = False
        self._phase = SessionPhase.IDLE
        self._verdict: Optional[QuarantineVerdict] = None

    # -- read-only views -------------------------------------------------

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def size_exceeded(self) -> bool:
        return self._size_exceeded

    @property
    def size(self) -> int:
        return len(self._raw)

    @property
    def verdict(self) -> Optional[QuarantineVerdict]:
        return self._verdict

    def _fields(self) -> dict:
        return {
            "trace_id": self._trace_id,
            "mail_from": self._mail_from,
            "rcpt_to": list(self._rcpt_to),
        }

    # -- envelope and header events ----------------------------------------

    def connect(self, host: str, family: str = "", port: int = 0, address: str = "") -> None:
        logger.debug(
            "connection",
            trace_id=self._trace_id,
            host=host,
            family=family,
            port=port,
            ip=address,
        )

    def helo(self, name: str) -> None:
        logger.debug("helo", trace_id=self._trace_id, name=name)

    def mail_from(self, sender: str) -> None:
        if not sender:
            logger.warning("empty_mail_from", trace_id=self._trace_id)
            return
        with self._lock:
            self._mail_from = sender
            fields = self._fields()
        logger.debug("mail_from", **fields)

    def rcpt_to(self, recipient: str) -> None:
        if not recipient:
            logger.warning("empty_rcpt_to", trace_id=self._trace_id)
            return
        with self._lock:
            self._rcpt_to.append(recipient)
            fields = self._fields()
        logger.debug("rcpt_to", **fields, recipient=recipient)

    def header(self, name: str, value: str) -> None:
        logger.debug("header", trace_id=self._trace_id, name=name, value=value)
        with self._lock:
            self._headers.setdefault(name, []).append(value)

    def headers(self, headers: Mapping[str, Sequence[str]]) -> None:
        with self._lock:
            for name, values in headers.items():
                self._headers.setdefault(name, []).extend(values)

    # -- body ---------------------------------------------------------------

    def body_chunk(self, chunk: bytes) -> bool:
        """Append a body chunk. Returns False once the size guard has tripped."""
        with self._lock:
            if self._size_exceeded:
                return False
            self._phase = SessionPhase.ACCUMULATING
            if len(self._raw) + len(chunk) > self._config.max_file_size_bytes:
                self._size_exceeded = True
                logger.warning(
                    "size_limit_exceeded",
                    **self._fields(),
                    limit=self._config.max_file_size_bytes,
                    action="skip",
                )
                return False
            self._raw.extend(chunk)
            return True

    def end_of_body(self, quarantine: Optional[QuarantineAction] = None) -> QuarantineVerdict:
        """Extract, scan and decide. Runs once; later calls return the same verdict.

        Never raises: every failure is logged and the message is passed
        through.
        """
        with self._lock:
            if self._verdict is not None:
                return self._verdict
            if self._size_exceeded:
                return self._finish(skipped="size_exceeded")
            try:
                return self._process(quarantine)
            except Exception as exc:
                logger.error("session_failed", **self._fields(), error=str(exc), exc_info=True)
                return self._finish(skipped="internal_error")

    # -- pipeline steps (lock held) ------------------------------------------

    def _process(self, quarantine: Optional[QuarantineAction]) -> QuarantineVerdict:
        self._phase = SessionPhase.EXTRACTING
        extraction = self._extract()
        if extraction.fatal:
            logger.error(
                "mail_parse_failed",
                **self._fields(),
                error=str(extraction.error),
                partial_units=len(extraction),
            )
            return self._finish(unit_count=len(extraction), skipped="extraction_failed")

        self._phase = SessionPhase.SCANNING
        findings = self._scan(extraction)

        self._phase = SessionPhase.DECIDING
        should_quarantine = False
        for unit, finding in findings:
            if self._matches_policy(finding):
                should_quarantine = True
            record_finding(self._fields(), unit, finding)

        applied = False
        if should_quarantine:
            if self._config.active_mode:
                applied = self._apply_quarantine(quarantine)
            else:
                logger.info(
                    "quarantine_advisory",
                    **self._fields(),
                    detail="this mail would have been quarantined (use active mode)",
                )

        return self._finish(
            should_quarantine=should_quarantine,
            findings_count=len(findings),
            quarantine_applied=applied,
            unit_count=len(extraction),
        )

    def _extract(self) -> ExtractionResult:
        extractor = ContentExtractor(
            trace_id=self._trace_id,
            max_depth=self._config.max_mime_depth,
            max_parts=self._config.max_mime_parts,
        )
        result = extractor.extract(self._headers, bytes(self._raw))
        if result.error is not None and not result.fatal:
            logger.debug("not_multipart", trace_id=self._trace_id, detail=str(result.error))
        logger.debug(
            "units_extracted",
            trace_id=self._trace_id,
            units={name: len(data) for name, data in result.units.items()},
        )
        return result

    def _scan(self, extraction: ExtractionResult) -> list[tuple[str, ScanFinding]]:
        findings: list[tuple[str, ScanFinding]] = []
        for unit, data in extraction.units.items():
            try:
                unit_findings = self._context.scanner.scan(unit, data, self._config.scan_retries)
            except ScanError as exc:
                logger.error(
                    "scan_failed",
                    **self._fields(),
                    unit=unit,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue
            findings.extend((unit, finding) for finding in unit_findings)
        return findings

    def _matches_policy(self, finding: ScanFinding) -> bool:
        try:
            return self._context.policy.evaluate(PolicyContext.for_finding(finding))
        except PolicyEvaluationError as exc:
            logger.error("policy_failed", **self._fields(), error=str(exc))
            return False

    def _apply_quarantine(self, quarantine: Optional[QuarantineAction]) -> bool:
        if quarantine is None:
            logger.error("quarantine_failed", **self._fields(), error="no quarantine action available")
            return False
        try:
            quarantine(self._config.quarantine_reason)
        except Exception as exc:
            logger.error("quarantine_failed", **self._fields(), error=str(exc))
            return False
        return True

    def _finish(
        self,
        *,
        should_quarantine: bool = False,
        findings_count: int = 0,
        quarantine_applied: bool = False,
        unit_count: int = 0,
        skipped: Optional[str] = None,
    ) -> QuarantineVerdict:
        self._verdict = QuarantineVerdict(
            should_quarantine=should_quarantine,
            findings_count=findings_count,
            quarantine_applied=quarantine_applied,
            unit_count=unit_count,
            skipped=skipped,
        )
        self._phase = SessionPhase.DONE
        record_message(
            self._fields(),
            duration_ms=(time.monotonic() - self._start) * 1000,
            size=len(self._raw),
            unit_count=unit_count,
            findings_count=findings_count,
            quarantine=should_quarantine,
            quarantine_applied=quarantine_applied,
            skipped=skipped,
        )
        return self._verdict
