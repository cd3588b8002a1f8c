"""Per-message decision pipeline."""

from .context import GatewayContext, build_context
from .policy import PolicyContext, PolicyError, PolicyEvaluationError, PolicyExpression, compile_policy
from .session import MailSession, SessionPhase

__all__ = [
    "GatewayContext",
    "build_context",
    "PolicyContext",
    "PolicyError",
    "PolicyEvaluationError",
    "PolicyExpression",
    "compile_policy",
    "MailSession",
    "SessionPhase",
]
