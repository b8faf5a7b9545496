"""Dispatches tool calls registered in a :class:`~troupe.tools.ToolRegistry` and wraps errors."""

import logging
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from pydantic import (
    TypeAdapter,
    ValidationError,
)

from troupe.common import stringify_arguments
from troupe.core.schema import (
    Observation,
    ToolCall,
    ToolParameter,
)
from troupe.tools import (
    Tool,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

_ARGUMENT_OBJECT = TypeAdapter(Dict[str, Any])


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class ToolNotFoundError(ToolExecutionError):
    """No tool is registered under the requested name."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, f"Tool '{tool_name}' is not registered.")


class MissingRequiredParameterError(ToolExecutionError):
    """A parameter flagged required was absent from the call."""

    def __init__(self, tool_name: str, parameter: str) -> None:
        super().__init__(tool_name, f"Tool '{tool_name}' is missing required parameter '{parameter}'.")
        self.parameter = parameter


class InvalidArgumentsError(ToolExecutionError):
    """The argument payload could not be decoded or failed validation."""

    def __init__(self, tool_name: str, detail: str) -> None:
        super().__init__(tool_name, f"Invalid arguments for tool '{tool_name}': {detail}")


class ExecutionFailedError(ToolExecutionError):
    """The tool itself raised."""

    def __init__(self, tool_name: str, detail: str) -> None:
        super().__init__(tool_name, f"Tool '{tool_name}' raised an error: {detail}")


def decode_arguments(tool_name: str, payload: str | None) -> Dict[str, str]:
    """
    Decode a JSON object blob into a flat ``name -> text`` mapping.

    An empty payload decodes to ``{}``.  Non-string leaf values are re-encoded as JSON text.

    Raises
    ------
    InvalidArgumentsError
        If *payload* is not valid JSON or does not encode an object.
    """
    if payload is None or not payload.strip():
        return {}
    try:
        decoded = _ARGUMENT_OBJECT.validate_json(payload)
    except ValidationError as exc:
        raise InvalidArgumentsError(tool_name, "arguments must be a JSON object") from exc
    return stringify_arguments(decoded)


class ToolExecutor:
    """Validate, execute and report tool calls against one registry."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def execute(self, call: ToolCall) -> Observation:
        """
        Run a single tool call.

        Parameters
        ----------
        call:
            The backend's tool call; ``call.arguments`` is a JSON object blob.

        Returns
        -------
        Observation
            The tool's text output, with ``tool_call_id`` in the metadata.

        Raises
        ------
        ToolNotFoundError, InvalidArgumentsError, MissingRequiredParameterError
            Before the tool runs; no side effect has happened.
        ExecutionFailedError
            If the tool raised while running.
        """
        tool_obj = self.registry.get(call.name)
        if tool_obj is None:
            raise ToolNotFoundError(call.name)

        arguments = decode_arguments(call.name, call.arguments)
        self._validate(tool_obj, arguments)

        try:
            logger.debug("Executing tool '%s' with args=%s", call.name, arguments)
            result = await tool_obj.execute(arguments)
        except ValidationError as exc:
            # Argument coercion inside a FunctionTool
            logger.exception("Argument error while executing tool '%s'", call.name)
            raise InvalidArgumentsError(call.name, str(exc)) from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error in tool '%s'", call.name)
            raise ExecutionFailedError(call.name, str(exc)) from exc

        return Observation(
            content=result if isinstance(result, str) else str(result),
            tool_name=tool_obj.name,
            metadata={"tool_call_id": call.id},
        )

    async def execute_batch(self, calls: Sequence[ToolCall]) -> List[Observation]:
        """
        Run *calls* in order.  All-or-nothing: the first failure propagates and no partial
        results are returned.
        """
        observations: List[Observation] = []
        for call in calls:
            observations.append(await self.execute(call))
        return observations

    @staticmethod
    def _validate(tool_obj: Tool, arguments: Dict[str, str]) -> None:
        params: Sequence[ToolParameter] = tool_obj.parameters
        for param in params:
            if param.required and param.name not in arguments:
                raise MissingRequiredParameterError(tool_obj.name, param.name)
        for param in params:
            value = arguments.get(param.name)
            if param.enum_values and value is not None and value not in param.enum_values:
                raise InvalidArgumentsError(
                    tool_obj.name,
                    f"value {value!r} for '{param.name}' is not one of {param.enum_values}",
                )
