"""THOR Thunderstorm scan client.

Uploads one unit per request as a multipart ``file`` field and decodes the
JSON array of findings. Non-200 answers are retried after ``Retry-After``
seconds (or a default wait) until the caller's attempt budget runs out.
"""

import time
from typing import Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from ..models.finding import ScanFinding
from ..utils.logging import get_logger

logger = get_logger("intel.thunderstorm")

_FINDINGS = TypeAdapter(list[ScanFinding])


class ScanError(Exception):
    """Base class for per-unit scan failures."""


class ScanTransportError(ScanError):
    """The HTTP request could not be sent or answered. Not retried."""


class ScanResponseError(ScanError):
    """The backend answered 200 with a body that is not a findings array."""


class RetryExceeded(ScanError):
    """The backend kept refusing until the attempt budget was spent."""


def retry_after_seconds(response: httpx.Response, default: float) -> float:
    """Delay requested by a ``Retry-After: <seconds>`` header, else ``default``."""
    value = response.headers.get("Retry-After")
    if value is None:
        return default
    try:
        seconds = int(value.strip())
    except ValueError:
        return default
    return float(seconds) if seconds >= 0 else default


class ThunderstormClient:
    """Blocking client for the Thunderstorm ``/api/check`` endpoint.

    One instance (and its connection pool) is shared by every session.
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.Client] = None,
        timeout: float = 60.0,
        default_wait: float = 10.0,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.default_wait = default_wait
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def scan(
        self,
        unit_name: str,
        data: bytes,
        remaining_attempts: int,
        endpoint: Optional[str] = None,
    ) -> list[ScanFinding]:
        """Scan one unit and return its findings.

        Raises:
            ScanTransportError: the request failed at the transport level or
                an attempt ran past ``timeout`` seconds.
            ScanResponseError: the 200 response body is not a findings array.
            RetryExceeded: ``remaining_attempts`` dropped below zero.
        """
        url = endpoint or self.url
        while True:
            if remaining_attempts < 0:
                raise RetryExceeded("THOR retry exceeded - THOR seems to be down")

            response, body = self._send(url, unit_name, data)

            if response.status_code == httpx.codes.OK:
                return self._parse_findings(body)

            wait = retry_after_seconds(response, self.default_wait)
            logger.warning(
                "thunderstorm_retry",
                unit=unit_name,
                status=response.status_code,
                wait_seconds=wait,
                remaining_attempts=remaining_attempts,
            )
            time.sleep(wait)
            remaining_attempts -= 1

    def _send(self, url: str, unit_name: str, data: bytes) -> tuple[httpx.Response, bytes]:
        """One upload, bounded by ``timeout`` seconds from connect to the last body byte."""
        deadline = time.monotonic() + self.timeout
        body = bytearray()
        try:
            with self._client.stream(
                "POST",
                url,
                files={"file": (unit_name, data, "application/octet-stream")},
            ) as response:
                for chunk in response.iter_bytes():
                    body += chunk
                    if time.monotonic() > deadline:
                        break
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            raise ScanTransportError(f"sending HTTP req: {exc}") from exc

        if time.monotonic() > deadline:
            raise ScanTransportError(f"sending HTTP req: no complete answer within {self.timeout}s")
        return response, bytes(body)

    @staticmethod
    def _parse_findings(body: bytes) -> list[ScanFinding]:
        if body.strip() == b"null":
            return []
        try:
            return _FINDINGS.validate_json(body)
        except ValidationError as exc:
            raise ScanResponseError(f"parsing json resp: {exc.error_count()} error(s)") from exc

    def close(self) -> None:
        """Close the connection pool if this client created it."""
        if self._owns_client:
            self._client.close()
