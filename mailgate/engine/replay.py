"""Offline replay of a complete RFC 822 message through the session pipeline.

Feeds the same events a mail server would: envelope, headers, then the body
in milter-sized chunks.
"""

from typing import Iterable, Optional

from ..models.verdict import QuarantineVerdict
from ..parsing.multipart import split_part
from .context import GatewayContext
from .session import MailSession, QuarantineAction

CHUNK_SIZE = 65535


def split_message(raw: bytes) -> tuple[dict[str, list[str]], bytes]:
    """Split a raw message into its header mapping and its body."""
    part = split_part(raw)
    headers: dict[str, list[str]] = {}
    for name, value in part.headers.items():
        headers.setdefault(name, []).append(value)
    return headers, part.payload


def replay_message(
    context: GatewayContext,
    raw: bytes,
    quarantine: Optional[QuarantineAction] = None,
    mail_from: str = "",
    rcpt_to: Iterable[str] = (),
) -> QuarantineVerdict:
    session = MailSession(context)
    session.mail_from(mail_from)
    for recipient in rcpt_to:
        session.rcpt_to(recipient)

    headers, body = split_message(raw)
    session.headers(headers)
    for offset in range(0, len(body), CHUNK_SIZE):
        if not session.body_chunk(body[offset:offset + CHUNK_SIZE]):
            break
    return session.end_of_body(quarantine)
