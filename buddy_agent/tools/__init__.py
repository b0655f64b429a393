"""Tools package for Buddy Agent."""

from buddy_agent.tools.adapters import CommandResult, DirEntry, LocalFileSystem, ProcessRunner
from buddy_agent.tools.boundary import WorkspaceBoundary
from buddy_agent.tools.catalog import TOOL_CATALOG, ToolDefinition, get_definitions
from buddy_agent.tools.executor import (
    ERROR_MARKER,
    OutcomeKind,
    ToolExecutor,
    ToolInvocation,
    ToolOutcome,
)

__all__ = [
    "CommandResult",
    "DirEntry",
    "ERROR_MARKER",
    "LocalFileSystem",
    "OutcomeKind",
    "ProcessRunner",
    "TOOL_CATALOG",
    "ToolDefinition",
    "ToolExecutor",
    "ToolInvocation",
    "ToolOutcome",
    "WorkspaceBoundary",
    "get_definitions",
]
