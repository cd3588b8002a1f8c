"""Process-wide gateway context, built once at startup and read-only afterwards."""

from dataclasses import dataclass

from ..config import GatewayConfig
from ..intel.thunderstorm import ThunderstormClient
from .policy import PolicyExpression, compile_policy


@dataclass(frozen=True)
class GatewayContext:
    """Everything a session needs that outlives one message."""

    config: GatewayConfig
    scanner: ThunderstormClient
    policy: PolicyExpression

    def close(self) -> None:
        self.scanner.close()


def build_context(config: GatewayConfig, scanner: ThunderstormClient | None = None) -> GatewayContext:
    """Compile the quarantine policy and open the shared scan client.

    Raises PolicyError when the expression is unusable, before any
    connection is opened.
    """
    policy = compile_policy(config.quarantine_expression)
    if scanner is None:
        scanner = ThunderstormClient(
            config.thunderstorm_url,
            timeout=config.scan_timeout,
            default_wait=config.scan_retry_default_wait,
        )
    return GatewayContext(config=config, scanner=scanner, policy=policy)
