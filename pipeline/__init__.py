"""Request pipeline: content preparation, tools and the tool execution loop."""

from .content_preparer import ContentPreparer
from .tools import Tool, ToolResult, ToolRegistry, build_default_registry
from .tool_loop import ToolExecutionLoop, LoopOutcome

__all__ = [
    "ContentPreparer",
    "Tool",
    "ToolResult",
    "ToolRegistry",
    "build_default_registry",
    "ToolExecutionLoop",
    "LoopOutcome",
]
