"""
Sanity tests for the tool executor.

Run with:
$ pytest -q
"""

from typing import List

import pytest

from troupe.agent.tool_executor import (
    ExecutionFailedError,
    InvalidArgumentsError,
    MissingRequiredParameterError,
    ToolExecutionError,
    ToolExecutor,
    ToolNotFoundError,
    decode_arguments,
)
from troupe.core.schema import (
    ToolCall,
    ToolParameter,
)
from troupe.tools import (
    Tool,
    ToolRegistry,
    tool,
)


class RecordingTool(Tool):
    """Tool that remembers every argument mapping it was called with."""

    name = "record"
    description = "Records its arguments"
    parameters = [
        ToolParameter(name="key", type="string", required=True),
        ToolParameter(name="mode", type="string", required=False, enum_values=["fast", "slow"]),
    ]

    def __init__(self) -> None:
        self.seen: List[dict] = []

    async def execute(self, arguments):
        self.seen.append(dict(arguments))
        return f"recorded {arguments['key']}"


# This is a stub tool for testing purposes.
@tool("add")
def _add(a: int, b: int) -> int:
    """Return the sum of two integers (used only for tests)."""

    return a + b


@tool("explode")
def _explode(reason: str) -> str:
    """Always fails."""

    raise RuntimeError(f"boom: {reason}")


@pytest.fixture
def recorder() -> RecordingTool:
    return RecordingTool()


@pytest.fixture
def executor(recorder: RecordingTool) -> ToolExecutor:
    return ToolExecutor(ToolRegistry([_add, _explode, recorder]))


async def test_execute_tool_success(executor: ToolExecutor) -> None:
    """Executor should return the tool's output wrapped in an observation."""

    observation = await executor.execute(ToolCall(id="c1", name="add", arguments='{"a": 2, "b": 3}'))
    assert observation.content == "5"
    assert observation.tool_name == "add"
    assert observation.metadata == {"tool_call_id": "c1"}
    assert not observation.is_error


async def test_execute_tool_missing(executor: ToolExecutor) -> None:
    """Executor should raise *ToolNotFoundError* for an unknown tool."""

    try:
        await executor.execute(ToolCall(name="not_a_tool", arguments="{}"))
    except ToolNotFoundError as exc:
        assert "not_a_tool" in str(exc)
        assert exc.tool_name == "not_a_tool"
    else:  # pragma: no cover
        raise AssertionError("ToolNotFoundError was not raised")


async def test_missing_required_parameter_has_no_side_effect(
    executor: ToolExecutor, recorder: RecordingTool
) -> None:
    """A call omitting a required parameter fails before the tool runs."""

    with pytest.raises(MissingRequiredParameterError) as info:
        await executor.execute(ToolCall(name="record", arguments='{"mode": "fast"}'))

    assert info.value.parameter == "key"
    assert recorder.seen == []


async def test_optional_parameter_may_be_omitted(
    executor: ToolExecutor, recorder: RecordingTool
) -> None:
    observation = await executor.execute(ToolCall(name="record", arguments='{"key": "k"}'))
    assert observation.content == "recorded k"
    assert recorder.seen == [{"key": "k"}]


async def test_enum_values_are_enforced(executor: ToolExecutor, recorder: RecordingTool) -> None:
    with pytest.raises(InvalidArgumentsError):
        await executor.execute(ToolCall(name="record", arguments='{"key": "k", "mode": "warp"}'))
    assert recorder.seen == []


@pytest.mark.parametrize("payload", ["{not json", "[1, 2]", '"text"'])
async def test_undecodable_arguments(executor: ToolExecutor, payload: str) -> None:
    """Arguments must be a JSON object."""

    with pytest.raises(InvalidArgumentsError):
        await executor.execute(ToolCall(name="record", arguments=payload))


async def test_execute_tool_bad_args(executor: ToolExecutor) -> None:
    """Values that cannot be coerced to the annotated types are invalid arguments."""

    with pytest.raises(InvalidArgumentsError) as info:
        await executor.execute(ToolCall(name="add", arguments='{"a": "two", "b": 3}'))
    assert "Invalid arguments" in str(info.value)


async def test_execution_failure_is_wrapped_and_chained(executor: ToolExecutor) -> None:
    with pytest.raises(ExecutionFailedError) as info:
        await executor.execute(ToolCall(name="explode", arguments='{"reason": "test"}'))

    assert "boom: test" in str(info.value)
    assert isinstance(info.value.__cause__, RuntimeError)
    assert isinstance(info.value, ToolExecutionError)


async def test_non_string_values_are_stringified(
    executor: ToolExecutor, recorder: RecordingTool
) -> None:
    await executor.execute(ToolCall(name="record", arguments='{"key": 42, "extra": {"x": [1, true]}}'))
    assert recorder.seen == [{"key": "42", "extra": '{"x":[1,true]}'}]


async def test_batch_first_failure_aborts(executor: ToolExecutor, recorder: RecordingTool) -> None:
    """The second call fails: the error propagates and the third call never runs."""

    calls = [
        ToolCall(name="record", arguments='{"key": "first"}'),
        ToolCall(name="explode", arguments='{"reason": "second"}'),
        ToolCall(name="record", arguments='{"key": "third"}'),
    ]
    with pytest.raises(ExecutionFailedError) as info:
        await executor.execute_batch(calls)

    assert info.value.tool_name == "explode"
    assert recorder.seen == [{"key": "first"}]


async def test_batch_success_preserves_order(executor: ToolExecutor) -> None:
    observations = await executor.execute_batch(
        [
            ToolCall(name="add", arguments='{"a": 1, "b": 1}'),
            ToolCall(name="add", arguments='{"a": 2, "b": 2}'),
        ]
    )
    assert [o.content for o in observations] == ["2", "4"]


def test_decode_arguments_empty_payload() -> None:
    assert decode_arguments("any", "") == {}
    assert decode_arguments("any", None) == {}
    assert decode_arguments("any", '{"flag": false}') == {"flag": "false"}


async def test_undeclared_arguments_are_ignored(executor: ToolExecutor) -> None:
    """An extra argument the function does not declare is dropped, not rejected."""

    observation = await executor.execute(
        ToolCall(name="add", arguments='{"a": 2, "b": 3, "note": "extra"}')
    )
    assert observation.content == "5"


async def test_keyword_catch_all_receives_extra_arguments() -> None:
    @tool("collect")
    def collect(key: str, **extra: str) -> str:
        """Echo the key and any extra arguments."""

        return f"{key} {sorted(extra)}"

    executor = ToolExecutor(ToolRegistry([collect]))
    observation = await executor.execute(
        ToolCall(name="collect", arguments='{"key": "k", "x": "1", "y": "2"}')
    )
    assert observation.content == "k ['x', 'y']"
