"""Tools the model can call, and the registry that dispatches them."""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from memory.sqlite_store import SQLiteMemoryStore

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """Result from tool execution."""
    tool_name: str
    success: bool
    result: Any = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Payload returned to the model: {success: true, ...} or {success: false, error}."""
        if not self.success:
            return {"success": False, "error": self.error or "Function call failed with unknown error"}
        payload = {"success": True}
        if isinstance(self.result, dict):
            payload.update(self.result)
        elif self.result is not None:
            payload["result"] = self.result
        return payload


class Tool(ABC):
    """Abstract base class for tools."""
    name: str
    description: str
    parameters: Dict[str, Any]

    @abstractmethod
    def execute(self, **kwargs) -> ToolResult:
        """Execute the tool with given arguments."""
        pass

    def get_declaration(self) -> Dict:
        """Get Gemini function declaration."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters
        }


class ToolRegistry:
    """Name to tool mapping used by the tool execution loop."""

    def __init__(self, tools: Optional[List[Tool]] = None):
        self.tools: Dict[str, Tool] = {tool.name: tool for tool in tools or []}

    def register(self, tool: Tool):
        self.tools[tool.name] = tool

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def subset(self, names: List[str]) -> "ToolRegistry":
        """Registry restricted to the named tools."""
        return ToolRegistry([self.tools[name] for name in names if name in self.tools])

    def declarations(self) -> List[Dict]:
        """Function declarations of every registered tool."""
        return [tool.get_declaration() for tool in self.tools.values()]

    def execute(self, name: str, args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Execute a tool call.

        Never raises: unknown names, bad arguments and tool exceptions all
        become {success: false, error} payloads the model can react to.

        Args:
            name: Tool name from the function call
            args: Arguments from the function call

        Returns:
            Structured result payload
        """
        tool = self.tools.get(name)
        if tool is None:
            logger.error(f"Function {name} not found in toolbox")
            return {
                "success": False,
                "error": f"Function '{name}' not found in toolbox. This function may be unavailable.",
            }

        try:
            result = tool.execute(**(args or {}))
        except Exception as e:
            logger.error(f"Error executing function {name}: {e}")
            return {"success": False, "error": f"Error executing function {name}: {e}"}

        return result.to_payload()


class CreateMemoryTool(Tool):
    """Store a new memory under a generated key."""

    name = "create_memory"
    description = "Create a memory. The key will be generated automatically."
    parameters = {
        "type": "object",
        "properties": {
            "memoryValue": {
                "type": "string",
                "description": "The fact in string that you summarize and store in the memory."
            }
        },
        "required": ["memoryValue"]
    }

    def __init__(self, store: SQLiteMemoryStore):
        self.store = store

    def execute(self, memoryValue: str) -> ToolResult:
        if not memoryValue:
            return ToolResult(tool_name=self.name, success=False, error="Missing required parameter: memoryValue")
        memory_key = uuid.uuid4().hex[:12]
        self.store.set_memory(memory_key, memoryValue)
        return ToolResult(
            tool_name=self.name,
            success=True,
            result={"memoryKey": memory_key, "memoryValue": memoryValue}
        )


class UpdateMemoryTool(Tool):
    """Overwrite the value of a memory."""

    name = "update_memory"
    description = "Update the value of a stored memory."
    parameters = {
        "type": "object",
        "properties": {
            "memoryKey": {"type": "string", "description": "The key of the memory to set."},
            "memoryValue": {
                "type": "string",
                "description": "The fact in string that you summarize and store in the memory."
            }
        },
        "required": ["memoryKey", "memoryValue"]
    }

    def __init__(self, store: SQLiteMemoryStore):
        self.store = store

    def execute(self, memoryKey: str, memoryValue: str) -> ToolResult:
        self.store.set_memory(memoryKey, memoryValue)
        return ToolResult(
            tool_name=self.name,
            success=True,
            result={"memoryKey": memoryKey, "memoryValue": memoryValue}
        )


class DeleteMemoryTool(Tool):
    """Delete a memory."""

    name = "delete_memory"
    description = "Delete a stored memory."
    parameters = {
        "type": "object",
        "properties": {
            "memoryKey": {"type": "string", "description": "The key of the memory to delete."}
        },
        "required": ["memoryKey"]
    }

    def __init__(self, store: SQLiteMemoryStore):
        self.store = store

    def execute(self, memoryKey: str) -> ToolResult:
        if not self.store.delete_memory(memoryKey):
            return ToolResult(tool_name=self.name, success=False, error=f"Memory '{memoryKey}' does not exist")
        return ToolResult(tool_name=self.name, success=True, result={"memoryKey": memoryKey})


class GetMemoryTool(Tool):
    """Read one memory."""

    name = "get_memory"
    description = "Get the value of a stored memory."
    parameters = {
        "type": "object",
        "properties": {
            "memoryKey": {"type": "string", "description": "The key of the memory to retrieve."}
        },
        "required": ["memoryKey"]
    }

    def __init__(self, store: SQLiteMemoryStore):
        self.store = store

    def execute(self, memoryKey: str) -> ToolResult:
        value = self.store.get_memory(memoryKey)
        if value is None:
            return ToolResult(tool_name=self.name, success=False, error=f"Memory '{memoryKey}' does not exist")
        return ToolResult(tool_name=self.name, success=True, result={"memoryKey": memoryKey, "memoryValue": value})


class GetAllMemoriesTool(Tool):
    """Read every memory."""

    name = "get_all_memories"
    description = "Get all stored memories."
    parameters = {"type": "object", "properties": {}, "required": []}

    def __init__(self, store: SQLiteMemoryStore):
        self.store = store

    def execute(self) -> ToolResult:
        return ToolResult(tool_name=self.name, success=True, result={"memories": self.store.get_all_memories()})


class SetDocumentContentTool(Tool):
    """Replace the co-edited document."""

    name = "set_document_content"
    description = "Set the content of the co-edited document."
    parameters = {
        "type": "object",
        "properties": {
            "documentContent": {
                "type": "string",
                "description": "The new content to set for the co-edited document."
            }
        },
        "required": ["documentContent"]
    }

    def __init__(self, store: SQLiteMemoryStore):
        self.store = store

    def execute(self, documentContent: str) -> ToolResult:
        self.store.set_document(documentContent)
        return ToolResult(tool_name=self.name, success=True, result={"length": len(documentContent)})


def build_default_registry(store: SQLiteMemoryStore) -> ToolRegistry:
    """Registry with the memory and document tools backed by the store."""
    return ToolRegistry([
        CreateMemoryTool(store),
        UpdateMemoryTool(store),
        DeleteMemoryTool(store),
        GetMemoryTool(store),
        GetAllMemoriesTool(store),
        SetDocumentContentTool(store),
    ])
