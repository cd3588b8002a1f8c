"""Abstract base class for long-running gateway modules."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from ..config import GatewayConfig
from ..utils.logging import get_logger


class BaseModule(ABC):
    """Base class for modules with a start/stop lifecycle, such as transport listeners.

    Provides a standard lifecycle and health reporting interface.
    """

    def __init__(self, name: str, config: GatewayConfig):
        self.name = name
        self.config = config
        self.running = False
        self.health_status = "initialized"
        self.started_at: Optional[datetime] = None
        self.last_heartbeat: Optional[datetime] = None
        self.logger = get_logger(f"module.{name}")

    @abstractmethod
    async def start(self) -> None:
        """Start serving. May block until the module stops."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Ask the module to stop serving."""
        ...

    @abstractmethod
    async def health_check(self) -> dict:
        """Return module health status.

        Returns:
            dict with keys: status (str), details (dict)
        """
        ...

    def mark_running(self) -> None:
        self.running = True
        self.health_status = "running"
        self.started_at = datetime.now(timezone.utc)
        self.heartbeat()

    def mark_stopped(self) -> None:
        self.running = False
        self.health_status = "stopped"

    def heartbeat(self) -> None:
        """Update the last heartbeat timestamp."""
        self.last_heartbeat = datetime.now(timezone.utc)

    def get_status(self) -> dict:
        """Get current module status."""
        uptime = None
        if self.running and self.started_at:
            uptime = (datetime.now(timezone.utc) - self.started_at).total_seconds()
        return {
            "name": self.name,
            "running": self.running,
            "health_status": self.health_status,
            "uptime_seconds": uptime,
            "last_heartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
        }
