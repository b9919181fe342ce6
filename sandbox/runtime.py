"""
Runtime guard library for sandbox units.

This module is copied verbatim into every generated sandbox unit, so it must
only depend on the standard library and must not use ``__future__`` imports.
It provides the memory estimator, the variable access tracker, the loop
timeout clock, the restricted builtins and the message channel.
"""

import builtins
import json
import math
import sys
import time

ENV_NAME = "__sandbox_env__"
START_NAME = "__sandbox_start__"
GUARD_NAME = "__sandbox_loop_guard__"
CLASS_SCOPE_NAME = "__sandbox_class_scope__"

MAX_WIRE_DEPTH = 20


class SandboxAbort(BaseException):
    """Raised by a guard. Not an Exception, so ``except Exception`` can't hide it."""


class RuntimeTimeout(SandboxAbort):
    pass


class MemoryLimitExceeded(SandboxAbort):
    pass


def estimate_size(value):
    """Approximate the size in bytes of a value graph.

    bool 4, int/float 8, str 2 per character, bytes 1 per byte. Containers
    add 2 bytes per character of each key name (list indexes count as their
    decimal text) plus the size of each item. Containers are tracked by
    identity, so a repeated or cyclic reference adds nothing. Other objects
    are opaque and count 0.
    """
    visited = set()
    stack = [value]
    total = 0

    while stack:
        current = stack.pop()
        if current is None:
            continue
        if isinstance(current, bool):
            total += 4
        elif isinstance(current, int):
            total += max(8, (current.bit_length() + 7) // 8)
        elif isinstance(current, float):
            total += 8
        elif isinstance(current, str):
            total += 2 * len(current)
        elif isinstance(current, (bytes, bytearray)):
            total += len(current)
        elif isinstance(current, (dict, list, tuple, set, frozenset)):
            if id(current) in visited:
                continue
            visited.add(id(current))
            if isinstance(current, dict):
                for key, item in current.items():
                    if isinstance(key, str):
                        total += 2 * len(key)
                    else:
                        stack.append(key)
                    stack.append(item)
            elif isinstance(current, (list, tuple)):
                for index, item in enumerate(current):
                    total += 2 * len(str(index))
                    stack.append(item)
            else:
                stack.extend(current)

    return total


def _wire_key(key):
    if isinstance(key, str):
        return key
    if key is None or isinstance(key, (bool, int, float)):
        return json.dumps(to_wire(key))
    return "<%s>" % type(key).__name__


def to_wire(value, _depth=0, _seen=None):
    """Convert a value to null/bool/number/text/list/map for the JSON channel."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        if value.bit_length() > 10000:
            return "<int with %d bits>" % value.bit_length()
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, (bytes, bytearray)):
        return repr(bytes(value[:256]))
    if not isinstance(value, (dict, list, tuple, set, frozenset)):
        return "<%s>" % type(value).__name__
    if _depth >= MAX_WIRE_DEPTH:
        return "..."

    seen = _seen if _seen is not None else set()
    if id(value) in seen:
        return "<cycle>"
    seen.add(id(value))
    try:
        if isinstance(value, dict):
            return {_wire_key(k): to_wire(v, _depth + 1, seen) for k, v in value.items()}
        return [to_wire(item, _depth + 1, seen) for item in value]
    finally:
        seen.discard(id(value))


def format_error(exc):
    return "%s: %s" % (exc.__class__.__name__, exc)


class MessageChannel:
    """One JSON object per line: ``{"type": ..., "payload": ...}``."""

    def __init__(self, stream):
        self._stream = stream

    def send(self, message_type, payload):
        line = json.dumps({"type": message_type, "payload": to_wire(payload)})
        self._stream.write(line + "\n")
        self._stream.flush()

    def close(self, status):
        self.send("exit", {"status": status})


class BindingTable:
    """Flat table of top-level bindings with logged reads and writes.

    Every write is followed by a size check of the whole table. The write is
    kept even when the check fails; the error aborts execution instead.
    """

    def __init__(self, emit, memory_limit_bytes, fallback=None):
        self._values = {}
        self._emit = emit
        self._fallback = fallback if fallback is not None else {}
        self.memory_limit_bytes = memory_limit_bytes

    def __getitem__(self, name):
        try:
            value = self._values[name]
        except KeyError:
            # a tracked name that shadows a builtin falls back like a real global
            if name in self._fallback:
                return self._fallback[name]
            raise NameError("name %r is not defined" % name) from None
        self._emit("variableRead", {"name": name, "value": value})
        return value

    def __setitem__(self, name, value):
        self._values[name] = value
        self._emit("variableChange", {"name": name, "value": value})
        used = estimate_size(self._values)
        if used > self.memory_limit_bytes:
            raise MemoryLimitExceeded(
                "Memory limit exceeded: %.2f MB used" % (used / (1024 * 1024))
            )

    def lookup(self, name, namespace):
        """Class-body read of a tracked name the class also assigns.

        The class namespace wins, as with an ordinary class-scope lookup.
        """
        if name in namespace:
            return namespace[name]
        return self[name]

    def __delitem__(self, name):
        try:
            del self._values[name]
        except KeyError:
            raise NameError("name %r is not defined" % name) from None

    def __contains__(self, name):
        return name in self._values

    def __len__(self):
        return len(self._values)

    def snapshot(self):
        return dict(self._values)


def check_loop_budget(start, timeout_ms, clock=time.monotonic):
    elapsed_ms = (clock() - start) * 1000
    if elapsed_ms > timeout_ms:
        raise RuntimeTimeout(
            "Execution timeout: loop ran longer than %d ms" % timeout_ms
        )
    return True


def build_safe_builtins(forbidden_names=(), allowed_modules=()):
    """Copy of ``builtins`` without forbidden names and with a guarded import."""
    forbidden = set(forbidden_names)
    allowed = set(allowed_modules)
    original_import = builtins.__import__

    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level:
            raise ImportError("Relative imports are not supported in the sandbox")
        root = name.split(".")[0]
        if root in forbidden or name in forbidden:
            raise ImportError("Import of '%s' blocked by sandbox policy" % root)
        if root not in allowed:
            raise ImportError("Import of '%s' is not allowlisted" % root)
        return original_import(name, globals, locals, fromlist, level)

    safe = {
        name: value
        for name, value in vars(builtins).items()
        if name not in forbidden
    }
    safe["__import__"] = guarded_import
    return safe


def run_unit(
    user_source,
    start,
    memory_limit_bytes,
    forbidden_names=(),
    allowed_modules=(),
    stream=None,
):
    """Execute tracked user code and report through the message channel.

    Any error escaping user code becomes an ``error`` message. The stream
    always ends with an ``exit`` message.
    """
    channel = MessageChannel(stream if stream is not None else sys.stdout)
    if stream is None:
        # user print() must not interleave with protocol lines
        sys.stdout = sys.stderr

    safe_builtins = build_safe_builtins(forbidden_names, allowed_modules)
    table = BindingTable(channel.send, memory_limit_bytes, fallback=safe_builtins)
    namespace = {
        "__name__": "__sandbox__",
        "__builtins__": safe_builtins,
        ENV_NAME: table,
        START_NAME: start,
        GUARD_NAME: check_loop_budget,
        CLASS_SCOPE_NAME: builtins.locals,
    }

    status = "completed"
    try:
        exec(compile(user_source, "<sandbox>", "exec"), namespace)
    except BaseException as exc:  # noqa: BLE001 - boundary for all user errors
        status = "aborted"
        channel.send("error", {"message": format_error(exc)})
    finally:
        channel.close(status)
    return status
