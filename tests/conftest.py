"""Shared test fixtures."""

from typing import Optional

import pytest

from mailgate.config import GatewayConfig
from mailgate.engine.context import GatewayContext
from mailgate.engine.policy import compile_policy
from mailgate.models.finding import ScanFinding


def make_config(**overrides) -> GatewayConfig:
    """Config isolated from the environment and any .env file."""
    values = {
        "thunderstorm_url": "http://thunderstorm.test/api/check",
        "max_file_size_bytes": 1_000_000,
        "scan_retries": 1,
        "scan_retry_default_wait": 0.0,
    }
    values.update(overrides)
    return GatewayConfig(_env_file=None, **values)


def make_finding(score: int = 0, filename: str = "", subscores=(), tags=(), level: str = "Alert") -> ScanFinding:
    """Build a finding the way it arrives from the backend (JSON aliases)."""
    return ScanFinding.model_validate({
        "level": level,
        "module": "Filescan",
        "message": "Malware file found",
        "score": score,
        "context": {"file": filename, "ext": ".exe", "md5": "d41d8cd98f00b204e9800998ecf8427e", "size": 42},
        "matches": [
            {
                "rulename": f"RULE_{i}",
                "subscore": sub,
                "tags": list(tags),
                "matched": ["Str1: evil"],
            }
            for i, sub in enumerate(subscores)
        ],
    })


class FakeScanner:
    """Stand-in for ThunderstormClient returning canned findings per unit."""

    def __init__(self, findings: Optional[dict] = None, errors: Optional[dict] = None, default=None):
        self.findings = findings or {}
        self.errors = errors or {}
        self.default = default or []
        self.calls: list[tuple[str, bytes, int]] = []
        self.closed = False

    def scan(self, unit_name, data, remaining_attempts, endpoint=None):
        self.calls.append((unit_name, data, remaining_attempts))
        if unit_name in self.errors:
            raise self.errors[unit_name]
        return list(self.findings.get(unit_name, self.default))

    def close(self):
        self.closed = True


def make_context(scanner=None, expression: str = "fullMatch.score > 50", **config_overrides) -> GatewayContext:
    config = make_config(quarantine_expression=expression, **config_overrides)
    return GatewayContext(
        config=config,
        scanner=scanner or FakeScanner(),
        policy=compile_policy(expression),
    )


# --- MIME samples ---

@pytest.fixture
def multipart_headers():
    return {"Content-Type": ['multipart/mixed; boundary="outer"']}


@pytest.fixture
def multipart_body():
    """Two text bodies, one base64 attachment, one nested alternative."""
    return (
        b"This is a multi-part message in MIME format.\r\n"
        b"--outer\r\n"
        b"Content-Type: text/plain; charset=utf-8\r\n"
        b"\r\n"
        b"Hello there\r\n"
        b"--outer\r\n"
        b"Content-Type: multipart/alternative; boundary=inner\r\n"
        b"\r\n"
        b"--inner\r\n"
        b"Content-Type: text/plain\r\n"
        b"\r\n"
        b"plain alt\r\n"
        b"--inner\r\n"
        b"Content-Type: text/html\r\n"
        b"\r\n"
        b"<p>html alt</p>\r\n"
        b"--inner--\r\n"
        b"--outer\r\n"
        b"Content-Type: application/octet-stream\r\n"
        b"Content-Disposition: attachment; filename=\"invoice.exe\"\r\n"
        b"Content-Transfer-Encoding: base64\r\n"
        b"\r\n"
        b"TVqQAAMAAAAEAAAA\r\n"
        b"--outer--\r\n"
        b"epilogue is ignored\r\n"
    )
