import pytest
from pydantic import ValidationError

from analyzer.policy import FORBIDDEN_NAMES
from analyzer.schemas import LOG_ENTRY_ADAPTER, SandboxConfiguration, VariableRead


def test_configuration_defaults():
    config = SandboxConfiguration()
    assert config.memory_limit_bytes == 5 * 1024 * 1024
    assert config.loop_timeout_ms == 2000
    assert config.forbidden_names == frozenset(FORBIDDEN_NAMES)
    assert {"os", "sys", "open", "eval"} <= config.forbidden_names
    assert config.check_computed_bases is False


def test_configuration_accepts_camel_case():
    config = SandboxConfiguration.from_dict(
        {"forbiddenNames": ["window", "window.location"], "memoryLimitBytes": 1024, "loopTimeoutMs": 50}
    )
    assert config.forbidden_names == frozenset({"window", "window.location"})
    assert config.memory_limit_bytes == 1024
    assert config.loop_timeout_ms == 50


def test_configuration_is_immutable():
    config = SandboxConfiguration()
    with pytest.raises(ValidationError):
        config.loop_timeout_ms = 1


@pytest.mark.parametrize(
    "data",
    [
        {"memory_limit_bytes": 0},
        {"loop_timeout_ms": -5},
        {"unknown_option": True},
    ],
)
def test_configuration_validation(data):
    with pytest.raises(ValidationError):
        SandboxConfiguration.from_dict(data)


def test_log_entry_union_dispatches_on_type():
    entry = LOG_ENTRY_ADAPTER.validate_python({"type": "variableRead", "payload": {"name": "a", "value": 1}})
    assert isinstance(entry, VariableRead)
    with pytest.raises(ValidationError):
        LOG_ENTRY_ADAPTER.validate_python({"type": "nope", "payload": {}})
