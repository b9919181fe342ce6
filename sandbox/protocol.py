"""
Message protocol between a running sandbox unit and the host.

Each message is one JSON object per line on the unit's stdout::

    {"type": "variableRead" | "variableChange" | "error", "payload": {...}}

and the stream ends with the control frame
``{"type": "exit", "payload": {"status": "completed" | "aborted"}}``.
"""

from __future__ import annotations

import json
from typing import cast

from pydantic import ValidationError

from analyzer.schemas import LOG_ENTRY_ADAPTER, ExitFrame, LogEntry

VARIABLE_READ = "variableRead"
VARIABLE_CHANGE = "variableChange"
ERROR = "error"
EXIT = "exit"

MESSAGE_TYPES = (VARIABLE_READ, VARIABLE_CHANGE, ERROR)


class ProtocolError(ValueError):
    """A line on the sandbox stdout is not a valid message."""


def encode_message(message_type: str, payload: dict[str, object]) -> str:
    if message_type not in MESSAGE_TYPES and message_type != EXIT:
        raise ProtocolError(f"Unknown message type: {message_type}")
    return json.dumps({"type": message_type, "payload": payload})


def decode_message(line: str) -> LogEntry | ExitFrame:
    try:
        loaded = cast(object, json.loads(line))
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Invalid JSON from sandbox: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProtocolError("Invalid message type from sandbox")
    data = cast(dict[str, object], loaded)

    message_type = data.get("type")
    try:
        if message_type == EXIT:
            return ExitFrame.from_dict(data)
        if message_type in MESSAGE_TYPES:
            return LOG_ENTRY_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed {message_type} message: {exc}") from exc
    raise ProtocolError(f"Unknown message type: {message_type!r}")
