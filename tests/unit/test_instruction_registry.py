"""Tests for the instruction registry."""

import types

import pytest

from stepwise.errors import UnknownInstructionError
from stepwise.instructions import REGISTRY, Instruction, InstructionRegistry, create_registry


def _run(node, prev_job, processor):
    return None


def _resume(node, job, processor):
    return job


def test_builtins_registered() -> None:
    registry = create_registry()
    assert registry.types() == ["condition", "echo", "parallel", "prompt"]
    assert registry.lookup("prompt").resume is not None
    assert registry.lookup("echo").resume is None
    assert "parallel" in REGISTRY


def test_empty_registry() -> None:
    registry = create_registry(builtins=False)
    assert registry.types() == []
    with pytest.raises(UnknownInstructionError) as exc_info:
        registry.lookup("echo")
    assert exc_info.value.node_type == "echo"


def test_register_accepts_mapping_module_or_instruction() -> None:
    registry = InstructionRegistry()
    module = types.SimpleNamespace(run=_run, resume=_resume)

    registry.register("from_mapping", {"run": _run})
    registry.register("from_object", module)
    registry.register("from_instruction", Instruction(run=_run, resume=_resume))

    assert registry.lookup("from_mapping") == Instruction(run=_run)
    assert registry.lookup("from_object").resume is _resume
    assert registry.lookup("from_instruction").run is _run


def test_register_accepts_bare_run_function() -> None:
    registry = InstructionRegistry()
    registry.register("step", _run)
    assert registry.lookup("step") == Instruction(run=_run)


def test_register_replaces_previous() -> None:
    registry = InstructionRegistry()
    registry.register("step", {"run": _run})
    registry.register("step", {"run": _run, "resume": _resume})
    assert registry.lookup("step").resume is _resume


@pytest.mark.parametrize(
    "instruction",
    [
        {},
        {"run": "not callable"},
        {"run": _run, "resume": 42},
        object(),
    ],
)
def test_register_rejects_invalid_instruction(instruction) -> None:
    with pytest.raises(ValueError):
        InstructionRegistry().register("step", instruction)


def test_register_rejects_empty_type() -> None:
    with pytest.raises(ValueError):
        InstructionRegistry().register("", {"run": _run})
