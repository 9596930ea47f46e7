"""Tests for tool registry."""

import json

import pytest

from mneme.tools import Tool, ToolNotFoundError, ToolRegistry, ToolResult


class EchoTool(Tool):
    """Simple echo tool for testing."""

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes the input message"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Message to echo"},
            },
            "required": ["message"],
        }

    async def execute(self, message: str) -> ToolResult:
        return ToolResult(success=True, output=message)


class BrokenTool(EchoTool):
    @property
    def name(self) -> str:
        return "broken"

    async def execute(self, **kwargs) -> ToolResult:
        raise RuntimeError("boom")


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


def test_register_tool(registry: ToolRegistry, echo_tool: EchoTool) -> None:
    registry.register(echo_tool)
    assert registry.get("echo") is echo_tool
    assert len(registry) == 1


def test_register_duplicate_raises(registry: ToolRegistry, echo_tool: EchoTool) -> None:
    registry.register(echo_tool)
    with pytest.raises(ValueError, match="already registered"):
        registry.register(echo_tool)


def test_get_unknown_tool(registry: ToolRegistry) -> None:
    assert registry.get("unknown") is None


def test_get_tools_schema(registry: ToolRegistry, echo_tool: EchoTool) -> None:
    registry.register(echo_tool)
    schemas = registry.get_tools_schema()
    assert len(schemas) == 1
    assert schemas[0]["type"] == "function"
    assert schemas[0]["function"]["name"] == "echo"


@pytest.mark.asyncio
async def test_dispatch_success(registry: ToolRegistry, echo_tool: EchoTool) -> None:
    registry.register(echo_tool)
    result = await registry.dispatch("echo", {"message": "hello"})
    assert result.success is True
    assert result.output == "hello"


@pytest.mark.asyncio
async def test_dispatch_unknown_tool(registry: ToolRegistry) -> None:
    with pytest.raises(ToolNotFoundError, match="tool not found: missing"):
        await registry.dispatch("missing", {})


@pytest.mark.asyncio
async def test_dispatch_missing_required_arg(registry: ToolRegistry, echo_tool: EchoTool) -> None:
    registry.register(echo_tool)
    result = await registry.dispatch("echo", {})
    assert result.success is False
    assert "message" in result.error


@pytest.mark.asyncio
async def test_dispatch_execution_error(registry: ToolRegistry) -> None:
    registry.register(BrokenTool())
    result = await registry.dispatch("broken", {"message": "x"})
    assert result.success is False
    assert "boom" in result.error


def test_validate_args_type_check(echo_tool: EchoTool) -> None:
    assert echo_tool.validate_args({"message": "ok"}) == (True, None)

    valid, error = echo_tool.validate_args({"message": 123})
    assert valid is False
    assert "string" in error


@pytest.mark.asyncio
async def test_dispatch_blank_required_arg(registry: ToolRegistry, echo_tool: EchoTool) -> None:
    registry.register(echo_tool)
    result = await registry.dispatch("echo", {"message": "   "})
    assert result.success is False
    assert "must not be empty" in result.error


def test_tool_result_content() -> None:
    ok = ToolResult(success=True, output="stored")
    failed = ToolResult(success=False, output="", error="nope")

    assert json.loads(ok.to_content("memory_store")) == {
        "name": "memory_store",
        "result": "stored",
    }
    assert json.loads(failed.to_content("memory_store"))["result"] == "error: nope"
