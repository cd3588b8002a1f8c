"""Tests for offline message replay."""

from email.message import EmailMessage
from unittest.mock import MagicMock

from conftest import FakeScanner, make_context, make_finding
from mailgate.engine import replay
from mailgate.engine.replay import replay_message, split_message


def _eml_with_attachment() -> bytes:
    msg = EmailMessage()
    msg["From"] = "alice@example.org"
    msg["To"] = "bob@example.org"
    msg["Subject"] = "Invoice"
    msg.set_content("Please see attached.")
    msg.add_attachment(b"MZ\x90\x00payload", maintype="application", subtype="octet-stream", filename="invoice.exe")
    return msg.as_bytes()


class TestSplitMessage:
    def test_headers_and_body(self):
        headers, body = split_message(b"Subject: hi\r\nReceived: a\r\nReceived: b\r\n\r\nbody\r\n")
        assert headers["Subject"] == ["hi"]
        assert headers["Received"] == ["a", "b"]
        assert body == b"body\r\n"


class TestReplay:
    def test_generated_message_units(self):
        """A message built by the stdlib email package is decomposed and scanned."""
        scanner = FakeScanner(findings={"invoice.exe": [make_finding(score=90)]})
        context = make_context(scanner=scanner, active_mode=True)
        quarantine = MagicMock()

        verdict = replay_message(
            context,
            _eml_with_attachment(),
            quarantine,
            mail_from="alice@example.org",
            rcpt_to=["bob@example.org"],
        )

        names = [name for name, _, _ in scanner.calls]
        assert names == ["text/plain-0", "invoice.exe"]
        assert dict((n, d) for n, d, _ in scanner.calls)["invoice.exe"] == b"MZ\x90\x00payload"
        assert verdict.quarantine_applied is True
        quarantine.assert_called_once_with("Quarantine")

    def test_body_is_fed_in_chunks(self, monkeypatch):
        monkeypatch.setattr(replay, "CHUNK_SIZE", 7)
        scanner = FakeScanner()
        context = make_context(scanner=scanner)
        body = b"0123456789" * 5

        verdict = replay_message(context, b"Content-Type: text/plain\r\n\r\n" + body)

        assert scanner.calls == [("body-0", body, 1)]
        assert verdict.unit_count == 1

    def test_oversized_message_stops_feeding(self, monkeypatch):
        monkeypatch.setattr(replay, "CHUNK_SIZE", 4)
        scanner = FakeScanner()
        context = make_context(scanner=scanner, max_file_size_bytes=10)

        verdict = replay_message(context, b"Subject: big\r\n\r\n" + b"x" * 100)

        assert verdict.skipped == "size_exceeded"
        assert scanner.calls == []
