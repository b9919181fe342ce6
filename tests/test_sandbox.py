from analyzer import SandboxConfiguration, analyze
from analyzer.schemas import ErrorEntry, VariableChange, VariableRead
from sandbox.executor import SandboxExecutor
from sandbox.generator import build_sandbox_unit


def _unit(code: str, config: SandboxConfiguration | None = None) -> str:
    return build_sandbox_unit(analyze(code, config), config)


def _summary(entries):
    return [(entry.type, getattr(entry.payload, "name", None)) for entry in entries]


def test_happy_path_streams_reads_and_writes_in_order():
    executor = SandboxExecutor(hard_timeout_s=10)
    result = executor.execute(_unit("a = 1\nb = a + 1\nprint(b)\n"))

    assert result.completed is True
    assert result.timed_out is False
    assert result.errors == []
    assert _summary(result.entries) == [
        ("variableChange", "a"),
        ("variableRead", "a"),
        ("variableChange", "b"),
        ("variableRead", "b"),
    ]
    assert result.entries[2].payload.value == 2
    assert result.console == "2\n"


def test_container_values_reach_the_host():
    executor = SandboxExecutor()
    result = executor.execute(_unit("data = {'xs': [1, 2.5, None], 'ok': True}\n"))

    assert result.completed is True
    change = result.entries[0]
    assert isinstance(change, VariableChange)
    assert change.payload.value == {"xs": [1, 2.5, None], "ok": True}


def test_while_loop_times_out():
    config = SandboxConfiguration(loop_timeout_ms=100)
    result = SandboxExecutor(hard_timeout_s=10).execute(_unit("while True:\n    pass\n", config))

    assert result.exit_status == "aborted"
    assert result.timed_out is False
    assert len(result.errors) == 1
    assert "Execution timeout" in result.errors[0]


def test_for_loop_inside_function_times_out():
    code = """
def spin():
    for _ in iter(int, 1):
        pass

spin()
"""
    config = SandboxConfiguration(loop_timeout_ms=100)
    result = SandboxExecutor(hard_timeout_s=10).execute(_unit(code, config))

    assert result.exit_status == "aborted"
    assert "Execution timeout" in result.errors[0]


def test_loop_timeout_is_not_swallowed_by_except_exception():
    code = """
count = 0
try:
    while True:
        count += 1
except Exception:
    count = -1
"""
    config = SandboxConfiguration(loop_timeout_ms=100)
    result = SandboxExecutor(hard_timeout_s=10).execute(_unit(code, config))

    assert result.exit_status == "aborted"
    assert "Execution timeout" in result.errors[0]
    assert all(entry.payload.value != -1 for entry in result.entries if isinstance(entry, VariableChange))


def test_runtime_error_is_reported():
    result = SandboxExecutor().execute(_unit("x = 1\ny = x / 0\n"))

    assert result.exit_status == "aborted"
    assert result.errors == ["ZeroDivisionError: division by zero"]
    assert _summary(result.entries)[:2] == [("variableChange", "x"), ("variableRead", "x")]


def test_memory_limit_aborts_after_the_write():
    config = SandboxConfiguration(memory_limit_bytes=1000)
    result = SandboxExecutor().execute(_unit("small = 1\ndata = 'x' * 600\nafter = 2\n", config))

    assert result.exit_status == "aborted"
    assert result.errors[0].startswith("MemoryLimitExceeded: Memory limit exceeded")
    names = [entry.payload.name for entry in result.entries if isinstance(entry, VariableChange)]
    assert names == ["small", "data"]


def test_unlisted_import_is_blocked_at_runtime():
    result = SandboxExecutor().execute(_unit("import zlib\n"))

    assert result.exit_status == "aborted"
    assert "not allowlisted" in result.errors[0]


def test_allowed_import_works():
    result = SandboxExecutor().execute(_unit("import math\nroot = math.sqrt(16)\n"))

    assert result.completed is True
    assert result.entries[0].payload.value == 4.0


def test_hard_timeout_kills_runaway_builtin():
    # a single builtin call never reaches a loop guard
    executor = SandboxExecutor(hard_timeout_s=1)
    result = executor.execute(_unit("total = sum(range(10 ** 12))\n"))

    assert result.timed_out is True
    assert result.exit_status is None
    assert "hard timeout" in result.errors[-1]


def test_stream_yields_entries_as_they_arrive():
    executor = SandboxExecutor()
    entries = list(executor.stream(_unit("a = 1\na = a + 1\nz = a * 0\nw = 1 / z\n")))

    assert isinstance(entries[0], VariableChange)
    assert isinstance(entries[1], VariableRead)
    assert isinstance(entries[-1], ErrorEntry)
    assert entries[-1].payload.message.startswith("ZeroDivisionError")
