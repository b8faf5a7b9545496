"""
Tool registry for troupe.

This module defines the :class:`Tool` interface, a :class:`FunctionTool` adapter that turns a plain
(or async) function into a tool, and the :class:`ToolRegistry` that agents look tools up in.
Tools receive their arguments as a flat ``name -> text`` mapping and return text.
"""

import inspect
import json
import logging
import types
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Literal,
    Mapping,
    Optional,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import validate_call

from troupe.core.schema import ToolParameter

logger = logging.getLogger(__name__)


class Tool(ABC):
    """A named capability invocable with a structured argument set, returning text."""

    name: str
    description: str = ""
    parameters: List[ToolParameter] = []

    @abstractmethod
    async def execute(self, arguments: Mapping[str, str]) -> str:
        """Run the tool and return its textual result."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


# ---------------------------------------------------------------------------
# Function adapter
# ---------------------------------------------------------------------------
_JSON_TYPES: Dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    dict: "object",
}


def _unwrap_optional(hint: Any) -> Any:
    """``Optional[X]`` / ``X | None`` -> ``X``."""
    if get_origin(hint) in (Union, types.UnionType):
        members = [arg for arg in get_args(hint) if arg is not type(None)]
        if len(members) == 1:
            return members[0]
    return hint


def _describe_hint(hint: Any) -> tuple[str, Optional[List[str]]]:
    """Map a Python annotation to a JSON-Schema type name and optional enum values."""
    hint = _unwrap_optional(hint)
    if get_origin(hint) is Literal:
        return "string", [str(value) for value in get_args(hint)]
    origin = get_origin(hint) or hint
    return _JSON_TYPES.get(origin, "string"), None


class FunctionTool(Tool):
    """
    Wrap a function as a :class:`Tool`.

    Parameter declarations come from the signature: parameters without a default are required and
    ``Literal[...]`` annotations become enum values.  Incoming text arguments are coerced to the
    annotated types by pydantic; JSON-typed parameters (lists, dicts) are decoded first.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        param_descriptions: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.fn = fn
        self.name = name or fn.__name__
        self.description = description if description is not None else inspect.getdoc(fn) or ""
        self.parameters = self._build_parameters(fn, param_descriptions or {})
        sig_params = inspect.signature(fn).parameters.values()
        self._accepts_extra = any(p.kind is inspect.Parameter.VAR_KEYWORD for p in sig_params)
        self._validated = validate_call(fn)
        self._is_async = inspect.iscoroutinefunction(fn)

    @staticmethod
    def _build_parameters(
        fn: Callable[..., Any], descriptions: Mapping[str, str]
    ) -> List[ToolParameter]:
        sig = inspect.signature(fn)
        type_hints = get_type_hints(fn)
        params: List[ToolParameter] = []
        for param_name, param in sig.parameters.items():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            json_type, enum_values = _describe_hint(type_hints.get(param_name, str))
            params.append(
                ToolParameter(
                    name=param_name,
                    type=json_type,
                    description=descriptions.get(param_name, ""),
                    required=param.default is inspect.Parameter.empty,
                    enum_values=enum_values,
                )
            )
        return params

    def _prepare(self, arguments: Mapping[str, str]) -> Dict[str, Any]:
        if self._accepts_extra:
            kwargs: Dict[str, Any] = dict(arguments)
        else:
            # undeclared arguments are ignored, as a dictionary-reading tool would
            declared = {param.name for param in self.parameters}
            kwargs = {key: value for key, value in arguments.items() if key in declared}
        for param in self.parameters:
            value = kwargs.get(param.name)
            if param.type in ("array", "object") and isinstance(value, str):
                try:
                    kwargs[param.name] = json.loads(value)
                except json.JSONDecodeError:
                    pass  # let pydantic report the mismatch
        return kwargs

    async def execute(self, arguments: Mapping[str, str]) -> str:
        result = self._validated(**self._prepare(arguments))
        if self._is_async:
            result = await result
        return result if isinstance(result, str) else str(result)


def tool(
    name: Optional[str] = None,
    description: Optional[str] = None,
    param_descriptions: Optional[Mapping[str, str]] = None,
) -> Callable[[Callable[..., Any]], FunctionTool]:
    """
    Decorator turning a function into a :class:`FunctionTool`.

        @tool("echo", param_descriptions={"text": "Text to echo"})
        def echo(text: str) -> str:
            return f"Echo: {text}"
    """

    def wrapper(fn: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(fn, name=name, description=description, param_descriptions=param_descriptions)

    return wrapper


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """
    Name-keyed catalog of tools.

    Registering a tool under an existing name replaces the prior entry.  Enumeration follows
    registration order.
    """

    def __init__(self, tools: Optional[Iterable[Tool]] = None) -> None:
        self._tools: Dict[str, Tool] = {}
        if tools:
            self.register_many(tools)

    def register(self, tool_obj: Tool) -> Tool:
        if tool_obj.name in self._tools:
            logger.debug("Replacing tool '%s'", tool_obj.name)
            # re-registration moves the tool to the end of the enumeration order
            del self._tools[tool_obj.name]
        else:
            logger.debug("Registering tool '%s'", tool_obj.name)
        self._tools[tool_obj.name] = tool_obj
        return tool_obj

    def register_many(self, tools: Iterable[Tool]) -> None:
        for tool_obj in tools:
            self.register(tool_obj)

    def tool(
        self, name: Optional[str] = None, **kwargs: Any
    ) -> Callable[[Callable[..., Any]], FunctionTool]:
        """Decorator form: wrap the function and register it in one step."""

        def wrapper(fn: Callable[..., Any]) -> FunctionTool:
            return self.register(FunctionTool(fn, name=name, **kwargs))  # type: ignore[return-value]

        return wrapper

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def get_all(self) -> List[Tool]:
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def contains(self, name: str) -> bool:
        return name in self._tools

    def remove(self, name: str) -> Optional[Tool]:
        return self._tools.pop(name, None)

    def clear(self) -> None:
        self._tools.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    def to_model_tools(self) -> List[Dict[str, Any]]:
        """
        Project every tool into a function declaration for function-calling backends.

        ``parameters`` is a JSON-Schema object whose ``required`` array lists exactly the
        parameters flagged required.
        """
        return [declaration_for(tool_obj) for tool_obj in self._tools.values()]


def declaration_for(tool_obj: Tool) -> Dict[str, Any]:
    """Model-facing declaration of a single tool."""
    properties: Dict[str, Dict[str, Any]] = {}
    for param in tool_obj.parameters:
        prop: Dict[str, Any] = {"type": param.type, "description": param.description}
        if param.enum_values:
            prop["enum"] = list(param.enum_values)
        properties[param.name] = prop
    return {
        "name": tool_obj.name,
        "description": tool_obj.description,
        "parameters": {
            "type": "object",
            "properties": properties,
            "required": [param.name for param in tool_obj.parameters if param.required],
        },
    }
