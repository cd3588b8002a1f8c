"""Milter Gateway Module — connects the session pipeline to the MTA.

Uses pymilter (libmilter bindings). libmilter runs each SMTP connection in
its own thread and calls back into one GatewayMilter object per connection;
a fresh MailSession is opened for every message on that connection.
"""

import asyncio
import socket
import threading
from dataclasses import dataclass, field
from typing import Optional

import Milter
import milter

from ..engine.context import GatewayContext
from ..engine.session import MailSession
from ..models.verdict import QuarantineVerdict
from ..utils.logging import get_logger
from .base_module import BaseModule

logger = get_logger("module.milter_gateway")

_FAMILY_NAMES = {
    socket.AF_INET: "inet",
    socket.AF_INET6: "inet6",
    socket.AF_UNIX: "unix",
}


def _strip_angle_brackets(address: str) -> str:
    address = (address or "").strip()
    if address.startswith("<") and address.endswith(">"):
        address = address[1:-1]
    return address.strip()


@dataclass
class GatewayStats:
    """Message counters shared by all connection threads."""

    messages: int = 0
    quarantined: int = 0
    advisory: int = 0
    skipped: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, verdict: QuarantineVerdict) -> None:
        with self._lock:
            self.messages += 1
            if verdict.quarantine_applied:
                self.quarantined += 1
            elif verdict.should_quarantine:
                self.advisory += 1
            if verdict.skipped:
                self.skipped += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "messages": self.messages,
                "quarantined": self.quarantined,
                "advisory": self.advisory,
                "skipped": self.skipped,
            }


class GatewayMilter(Milter.Base):
    """pymilter callback object for one SMTP connection."""

    def __init__(self, context: GatewayContext, stats: GatewayStats):
        self.id = Milter.uniqueID()
        self._context = context
        self._stats = stats
        self._session: Optional[MailSession] = None
        self._connection: Optional[tuple[str, str, int, str]] = None
        self._helo = ""

    def _open_session(self) -> MailSession:
        session = MailSession(self._context)
        if self._connection is not None:
            session.connect(*self._connection)
        if self._helo:
            session.helo(self._helo)
        self._session = session
        return session

    def _current_session(self) -> MailSession:
        return self._session or self._open_session()

    def _close_session(self, verdict: QuarantineVerdict) -> None:
        self._stats.record(verdict)
        self._session = None

    def connect(self, IPname, family, hostaddr):
        address, port = "", 0
        if family in (socket.AF_INET, socket.AF_INET6) and hostaddr:
            address, port = hostaddr[0], int(hostaddr[1])
        elif hostaddr:
            address = str(hostaddr)
        self._connection = (IPname, _FAMILY_NAMES.get(family, str(family)), port, address)
        return Milter.CONTINUE

    def hello(self, heloname):
        self._helo = heloname
        return Milter.CONTINUE

    def envfrom(self, mailfrom, *params):
        self._open_session().mail_from(_strip_angle_brackets(mailfrom))
        return Milter.CONTINUE

    def envrcpt(self, to, *params):
        self._current_session().rcpt_to(_strip_angle_brackets(to))
        return Milter.CONTINUE

    def header(self, name, hval):
        self._current_session().header(name, hval)
        return Milter.CONTINUE

    def body(self, chunk):
        session = self._current_session()
        if session.body_chunk(chunk):
            return Milter.CONTINUE
        # Size guard tripped: pass the message through without scanning
        self._close_session(session.end_of_body())
        return Milter.ACCEPT

    def eom(self):
        session = self._current_session()
        self._close_session(session.end_of_body(self.quarantine))
        return Milter.ACCEPT

    def abort(self):
        if self._session is not None:
            logger.debug("session_aborted", trace_id=self._session.trace_id)
        self._session = None
        return Milter.CONTINUE

    def close(self):
        return Milter.CONTINUE


class MilterGateway(BaseModule):
    """Serves the milter protocol on ``inet:<port>@<host>``."""

    def __init__(self, context: GatewayContext):
        super().__init__(name="milter_gateway", config=context.config)
        self._context = context
        self.stats = GatewayStats()

    def factory(self) -> GatewayMilter:
        return GatewayMilter(self._context, self.stats)

    def serve(self) -> None:
        """Run libmilter in the calling thread until it is stopped or signalled."""
        Milter.factory = self.factory
        Milter.set_flags(Milter.QUARANTINE)
        self.mark_running()
        self.logger.info(
            "milter_gateway_started",
            socket=self.config.milter_socket,
            active_mode=self.config.active_mode,
        )
        try:
            Milter.runmilter(self.config.milter_name, self.config.milter_socket, self.config.milter_timeout)
        finally:
            self.mark_stopped()
            self.logger.info("milter_gateway_stopped", **self.stats.snapshot())

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.serve)

    async def stop(self) -> None:
        if self.running:
            milter.stop()

    async def health_check(self) -> dict:
        self.heartbeat()
        return {
            "status": self.health_status,
            "details": {**self.get_status(), **self.stats.snapshot()},
        }
