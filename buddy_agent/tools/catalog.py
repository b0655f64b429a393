"""Static catalog of tool descriptors advertised to the backend."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

READ_FILE = "read_file"
WRITE_TO_FILE = "write_to_file"
LIST_FILES = "list_files"
EXECUTE_COMMAND = "execute_command"
SEARCH_FILES = "search_files"
ASK_FOLLOWUP_QUESTION = "ask_followup_question"
ATTEMPT_COMPLETION = "attempt_completion"


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a tool for the backend."""

    name: str
    description: str
    input_schema: Mapping[str, Any]

    @property
    def required(self) -> tuple[str, ...]:
        return tuple(self.input_schema.get("required", ()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": _thaw(self.input_schema),
        }


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


def _tool(name: str, description: str, properties: dict[str, Any], required: list[str]) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=description,
        input_schema=_freeze({
            "type": "object",
            "properties": properties,
            "required": required,
        }),
    )


TOOL_CATALOG: tuple[ToolDefinition, ...] = (
    _tool(
        READ_FILE,
        "Read the contents of a file at the specified path",
        {"path": {"type": "string", "description": "The path to the file to read"}},
        ["path"],
    ),
    _tool(
        WRITE_TO_FILE,
        "Write content to a file at the specified path",
        {
            "path": {"type": "string", "description": "The path to the file to write"},
            "content": {"type": "string", "description": "The content to write to the file"},
        },
        ["path", "content"],
    ),
    _tool(
        LIST_FILES,
        "List files and directories at the specified path",
        {
            "path": {"type": "string", "description": "The path to list files from"},
            "recursive": {"type": "boolean", "description": "Whether to list recursively"},
        },
        ["path"],
    ),
    _tool(
        EXECUTE_COMMAND,
        "Execute a shell command in the terminal",
        {
            "command": {"type": "string", "description": "The command to execute"},
            "cwd": {"type": "string", "description": "Working directory for the command"},
        },
        ["command"],
    ),
    _tool(
        SEARCH_FILES,
        "Search for files matching a pattern",
        {
            "pattern": {"type": "string", "description": "The search pattern (glob or regex)"},
            "path": {"type": "string", "description": "The directory to search in"},
        },
        ["pattern"],
    ),
    _tool(
        ASK_FOLLOWUP_QUESTION,
        "Ask the user a follow-up question for clarification",
        {"question": {"type": "string", "description": "The question to ask the user"}},
        ["question"],
    ),
    _tool(
        ATTEMPT_COMPLETION,
        "Indicate that the task is complete and provide a summary",
        {
            "result": {"type": "string", "description": "Summary of what was accomplished"},
            "command": {"type": "string", "description": "Optional command for the user to run"},
        },
        ["result"],
    ),
)

_BY_NAME: Mapping[str, ToolDefinition] = MappingProxyType({tool.name: tool for tool in TOOL_CATALOG})


def get_definition(name: str) -> ToolDefinition | None:
    return _BY_NAME.get(name)


def list_tools() -> list[str]:
    return [tool.name for tool in TOOL_CATALOG]


def get_definitions() -> list[dict[str, Any]]:
    """Serialisable catalog payload sent with every backend request."""
    return [tool.to_dict() for tool in TOOL_CATALOG]
