import io
import json

import pytest

from analyzer.schemas import ErrorEntry, ExitFrame, VariableChange, VariableRead
from sandbox.protocol import ProtocolError, decode_message, encode_message
from sandbox.runtime import MessageChannel


def test_decode_each_message_type():
    read = decode_message('{"type": "variableRead", "payload": {"name": "x", "value": [1, 2]}}')
    change = decode_message('{"type": "variableChange", "payload": {"name": "x", "value": null}}')
    error = decode_message('{"type": "error", "payload": {"message": "boom"}}')
    exit_frame = decode_message('{"type": "exit", "payload": {"status": "completed"}}')

    assert isinstance(read, VariableRead) and read.payload.value == [1, 2]
    assert isinstance(change, VariableChange) and change.payload.value is None
    assert isinstance(error, ErrorEntry) and error.payload.message == "boom"
    assert isinstance(exit_frame, ExitFrame) and exit_frame.status == "completed"


def test_encode_matches_wire_schema():
    line = encode_message("variableChange", {"name": "x", "value": 3})
    assert json.loads(line) == {"type": "variableChange", "payload": {"name": "x", "value": 3}}
    assert isinstance(decode_message(line), VariableChange)


@pytest.mark.parametrize(
    "line",
    [
        "not json",
        "[1, 2]",
        '{"type": "print", "payload": {}}',
        '{"type": "error", "payload": {}}',
        '{"type": "exit", "payload": {"status": "paused"}}',
    ],
)
def test_malformed_messages_raise(line):
    with pytest.raises(ProtocolError):
        decode_message(line)


def test_encode_rejects_unknown_type():
    with pytest.raises(ProtocolError):
        encode_message("print", {})


def test_entries_serialize_back_to_wire_form():
    entry = ErrorEntry.from_message("boom")
    assert json.loads(entry.to_json()) == {"type": "error", "payload": {"message": "boom"}}


@pytest.mark.parametrize(
    "message_type, payload",
    [
        ("variableRead", {"name": "xs", "value": [1, 2.5, None, "s"]}),
        ("variableChange", {"name": "cfg", "value": {"a": {"b": True}}}),
        ("error", {"message": "ZeroDivisionError: division by zero"}),
        ("exit", {"status": "aborted"}),
    ],
)
def test_runtime_channel_writes_encoded_lines(message_type, payload):
    stream = io.StringIO()
    MessageChannel(stream).send(message_type, payload)
    assert stream.getvalue() == encode_message(message_type, payload) + "\n"
