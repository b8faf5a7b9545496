"""Tests for tool declarations and the registry."""

from typing import (
    List,
    Literal,
    Optional,
)

from troupe.core.schema import ToolParameter
from troupe.tools import (
    FunctionTool,
    Tool,
    ToolRegistry,
    declaration_for,
    tool,
)


class StaticTool(Tool):
    """Hand-written tool with explicit parameters."""

    def __init__(self, name: str, description: str = "static", parameters=None) -> None:
        self.name = name
        self.description = description
        self.parameters = parameters or []

    async def execute(self, arguments):
        return self.description


def _weather_tool() -> StaticTool:
    return StaticTool(
        "weather",
        "Look up the weather",
        [
            ToolParameter(name="city", type="string", description="City name", required=True),
            ToolParameter(
                name="unit",
                type="string",
                description="Temperature unit",
                required=False,
                enum_values=["celsius", "fahrenheit"],
            ),
            ToolParameter(name="days", type="integer", description="Forecast days", required=True),
        ],
    )


def test_declaration_shape() -> None:
    """``required`` is an array of exactly the required parameter names."""

    declaration = declaration_for(_weather_tool())

    assert declaration["name"] == "weather"
    assert declaration["description"] == "Look up the weather"
    params = declaration["parameters"]
    assert params["type"] == "object"
    assert params["required"] == ["city", "days"]
    assert params["properties"]["city"] == {"type": "string", "description": "City name"}
    assert params["properties"]["unit"]["enum"] == ["celsius", "fahrenheit"]
    assert "required" not in params["properties"]["city"]


def test_declaration_without_required_parameters_keeps_empty_array() -> None:
    declaration = declaration_for(StaticTool("noop"))
    assert declaration["parameters"] == {"type": "object", "properties": {}, "required": []}


def test_register_replaces_by_name() -> None:
    registry = ToolRegistry()
    registry.register(StaticTool("clock", "first"))
    registry.register(StaticTool("clock", "second"))

    assert len(registry) == 1
    assert registry.get("clock").description == "second"


def test_register_many_get_all_and_remove() -> None:
    registry = ToolRegistry()
    registry.register_many([StaticTool("a"), StaticTool("b"), StaticTool("c")])

    assert registry.names() == ["a", "b", "c"]
    assert [t.name for t in registry.get_all()] == ["a", "b", "c"]
    assert "b" in registry and registry.contains("b")

    removed = registry.remove("b")
    assert removed is not None and removed.name == "b"
    assert registry.get("b") is None
    assert registry.remove("b") is None
    assert [d["name"] for d in registry.to_model_tools()] == ["a", "c"]

    registry.clear()
    assert registry.to_model_tools() == []


def test_function_tool_derives_parameters() -> None:
    @tool("search", description="Search the web")
    def search(query: str, limit: int = 5, mode: Literal["news", "web"] = "web", tags: Optional[List[str]] = None) -> str:
        return query

    assert isinstance(search, FunctionTool)
    assert search.name == "search"
    assert search.description == "Search the web"
    by_name = {p.name: p for p in search.parameters}
    assert by_name["query"].required and by_name["query"].type == "string"
    assert not by_name["limit"].required and by_name["limit"].type == "integer"
    assert by_name["mode"].enum_values == ["news", "web"]
    assert by_name["tags"].type == "array"

    declaration = declaration_for(search)
    assert declaration["parameters"]["required"] == ["query"]


def test_function_tool_uses_docstring_as_description() -> None:
    def shout(text: str) -> str:
        """Upper-case the text."""
        return text.upper()

    assert FunctionTool(shout).description == "Upper-case the text."
    assert FunctionTool(shout).name == "shout"


async def test_function_tool_coerces_text_arguments() -> None:
    @tool()
    def total(values: List[int], scale: float = 1.0) -> float:
        return sum(values) * scale

    assert await total.execute({"values": "[1, 2, 3]", "scale": "0.5"}) == "3.0"


async def test_async_function_tool() -> None:
    @tool("greet")
    async def greet(name: str) -> str:
        return f"hello {name}"

    assert await greet.execute({"name": "ada"}) == "hello ada"


def test_registry_decorator_registers() -> None:
    registry = ToolRegistry()

    @registry.tool("ping")
    def ping() -> str:
        """Reply with pong."""
        return "pong"

    assert registry.get("ping") is ping
    assert registry.to_model_tools()[0]["description"] == "Reply with pong."
