"""Build webhook payloads from log entries and serialize them to JSON."""

import json

from mmlogmon.config import Presentation
from mmlogmon.models import LogEntry


class SerializationError(Exception):
    """Raised when a payload cannot be encoded as JSON."""


def build_attachment(entry: LogEntry, presentation: Presentation) -> dict:
    """Attachment form: summary fallback, colored sidebar, indented body."""
    return {
        "fallback": (
            f"New log entry in {entry.source}. \n"
            f"{entry.first_line}\n[...]{entry.last_line}\n"
        ),
        "color": presentation.color,
        "pretext": f"{presentation.prefix} New log entry in {entry.source}",
        "text": "  " + "\n  ".join(entry.lines),
    }


def build_text(entry: LogEntry, presentation: Presentation) -> str:
    """Plain form: header line plus a fenced code block with the body."""
    body = "\n".join(entry.lines)
    return (
        f"{presentation.prefix} New log entry in {entry.source}\n"
        f"```{presentation.syntax}\n{body}\n```"
    )


def build_payload(entry: LogEntry, presentation: Presentation) -> dict:
    payload: dict = {"username": presentation.username}
    if presentation.attach:
        payload["attachments"] = [build_attachment(entry, presentation)]
    else:
        payload["text"] = build_text(entry, presentation)
    return payload


def encode_payload(payload: dict) -> bytes:
    """Serialize a payload to compact UTF-8 JSON."""
    try:
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"JSON serialization failed: {exc}") from exc
