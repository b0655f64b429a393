"""Dispatch tool invocations to side effects and turn every failure into text."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from buddy_agent.cancellation import CancellationToken
from buddy_agent.config import ToolsConfig
from buddy_agent.exceptions import ToolExecutionError
from buddy_agent.logging import get_logger
from buddy_agent.tools import catalog
from buddy_agent.tools.adapters import DirEntry, LocalFileSystem, ProcessRunner
from buddy_agent.tools.boundary import WorkspaceBoundary
from buddy_agent.tools.command_policy import find_blocked_reason

log = get_logger(__name__)

ERROR_MARKER = "[ERROR]"
FOLLOWUP_PREFIX = "[FOLLOWUP_QUESTION]: "
COMPLETE_PREFIX = "[TASK_COMPLETE]: "


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call parsed from a backend response."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


class OutcomeKind(str, Enum):
    ORDINARY = "ordinary"
    FOLLOWUP = "followup"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ToolOutcome:
    """Tagged result of one tool invocation."""

    kind: OutcomeKind
    payload: str
    suggested_command: str | None = None
    is_error: bool = False

    @classmethod
    def ordinary(cls, payload: str) -> "ToolOutcome":
        return cls(kind=OutcomeKind.ORDINARY, payload=payload)

    @classmethod
    def error(cls, message: str) -> "ToolOutcome":
        text = message if message.startswith(ERROR_MARKER) else f"{ERROR_MARKER} {message}"
        return cls(kind=OutcomeKind.ORDINARY, payload=text, is_error=True)

    @property
    def terminates(self) -> bool:
        return self.kind is not OutcomeKind.ORDINARY

    @property
    def text(self) -> str:
        """Transcript form fed back to the model."""
        if self.kind is OutcomeKind.FOLLOWUP:
            return f"{FOLLOWUP_PREFIX}{self.payload}"
        if self.kind is OutcomeKind.COMPLETE:
            text = f"{COMPLETE_PREFIX}{self.payload}"
            if self.suggested_command:
                text += f"\n\nSuggested command: {self.suggested_command}"
            return text
        return self.payload


def format_tree(nodes: list[DirEntry], indent: str = "") -> str:
    lines: list[str] = []
    for node in nodes:
        tag = "[DIR]" if node.is_directory else "[FILE]"
        lines.append(f"{indent}{tag} {node.name}")
        if node.children:
            lines.append(format_tree(node.children, indent + "  "))
    return "\n".join(lines)


def compile_name_pattern(pattern: str) -> re.Pattern[str]:
    """``*`` matches anything; everything else is literal, case-insensitive."""
    parts = [re.escape(part) for part in str(pattern or "").split("*")]
    return re.compile(".*".join(parts), re.IGNORECASE)


def find_matches(nodes: list[DirEntry], regex: re.Pattern[str], results: list[str] | None = None) -> list[str]:
    results = [] if results is None else results
    for node in nodes:
        if regex.search(node.name):
            results.append(node.path)
        if node.children:
            find_matches(node.children, regex, results)
    return results


class ToolExecutor:
    """Executes catalog tools inside one workspace boundary."""

    def __init__(
        self,
        boundary: WorkspaceBoundary,
        config: ToolsConfig | None = None,
        filesystem: LocalFileSystem | None = None,
        runner: ProcessRunner | None = None,
    ):
        self.boundary = boundary
        self.config = config or ToolsConfig()
        self.fs = filesystem or LocalFileSystem(self.config.ignored_names)
        self.runner = runner or ProcessRunner()

    async def execute(
        self,
        invocation: ToolInvocation,
        cancel_token: CancellationToken | None = None,
    ) -> ToolOutcome:
        """Execute one invocation. Never raises."""
        name = invocation.name
        arguments = invocation.input if isinstance(invocation.input, dict) else {}
        try:
            definition = catalog.get_definition(name)
            if definition is None:
                return ToolOutcome.error(f"Unknown tool: {name}")
            for required in definition.required:
                if arguments.get(required) is None:
                    raise ToolExecutionError(name, f"Missing required argument: {required}")

            log.info("Executing tool", tool=name, call_id=invocation.id)
            outcome = await self._dispatch(name, arguments, cancel_token)
            log.info("Tool executed", tool=name, success=not outcome.is_error, kind=outcome.kind.value)
            return outcome
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            return ToolOutcome.error(f"Failed to execute {name}: {e}")

    async def _dispatch(
        self,
        name: str,
        arguments: dict[str, Any],
        cancel_token: CancellationToken | None,
    ) -> ToolOutcome:
        if name == catalog.READ_FILE:
            return ToolOutcome.ordinary(await self.read_file(str(arguments["path"])))
        if name == catalog.WRITE_TO_FILE:
            return ToolOutcome.ordinary(
                await self.write_file(str(arguments["path"]), str(arguments["content"]))
            )
        if name == catalog.LIST_FILES:
            return ToolOutcome.ordinary(
                await self.list_files(str(arguments["path"]), bool(arguments.get("recursive", False)))
            )
        if name == catalog.EXECUTE_COMMAND:
            return await self.execute_command(
                str(arguments["command"]),
                arguments.get("cwd"),
                cancel_token=cancel_token,
            )
        if name == catalog.SEARCH_FILES:
            return ToolOutcome.ordinary(
                await self.search_files(str(arguments["pattern"]), arguments.get("path"))
            )
        if name == catalog.ASK_FOLLOWUP_QUESTION:
            return ToolOutcome(kind=OutcomeKind.FOLLOWUP, payload=str(arguments["question"]))
        if name == catalog.ATTEMPT_COMPLETION:
            command = arguments.get("command")
            return ToolOutcome(
                kind=OutcomeKind.COMPLETE,
                payload=str(arguments["result"]),
                suggested_command=str(command) if command else None,
            )
        return ToolOutcome.error(f"Unknown tool: {name}")

    async def read_file(self, path: str) -> str:
        full_path = self.boundary.resolve_checked(path, tool_name=catalog.READ_FILE)
        return await self.fs.read_text(full_path)

    async def write_file(self, path: str, content: str) -> str:
        full_path = self.boundary.resolve_checked(path, tool_name=catalog.WRITE_TO_FILE)
        await self.fs.write_text(full_path, content)
        if not await self.fs.exists(full_path):
            raise ToolExecutionError(
                catalog.WRITE_TO_FILE,
                f"File write failed to verify, file does not exist at: {full_path}. "
                "Check folder permissions or sandbox restrictions.",
            )
        return f"Successfully wrote to {path}"

    async def list_files(self, path: str, recursive: bool = False) -> str:
        full_path = self.boundary.resolve_checked(path, tool_name=catalog.LIST_FILES)
        if recursive:
            tree = await self.fs.read_tree(full_path, max_depth=self.config.list_depth)
            return format_tree(tree)
        entries = await self.fs.list_dir(full_path)
        return "\n".join(
            f"{'[DIR]' if entry.is_directory else '[FILE]'} {entry.name}"
            for entry in entries
        )

    async def search_files(self, pattern: str, path: str | None = None) -> str:
        search_path = (
            self.boundary.resolve_checked(str(path), tool_name=catalog.SEARCH_FILES)
            if path
            else self.boundary.require_root()
        )
        tree = await self.fs.read_tree(search_path, max_depth=self.config.search_depth)
        matches = find_matches(tree, compile_name_pattern(pattern))
        if not matches:
            return "No matches found"
        return f"Found {len(matches)} matches:\n" + "\n".join(matches)

    async def execute_command(
        self,
        command: str,
        cwd: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ToolOutcome:
        working_dir = (
            self.boundary.resolve_checked(str(cwd), tool_name=catalog.EXECUTE_COMMAND)
            if cwd
            else self.boundary.require_root()
        )
        blocked_reason = find_blocked_reason(command, self.config.blocked_command_patterns)
        if blocked_reason:
            log.warning("Blocked shell command", command=command, reason=blocked_reason)
            return ToolOutcome.error(f"Command blocked ({blocked_reason}): {command}")
        if cancel_token is not None and cancel_token.cancelled:
            return ToolOutcome.error(f"Command aborted before start: {command}")

        timeout = float(self.config.command_timeout)
        result = await self.runner.run(command, cwd=working_dir, timeout=timeout, cancel_token=cancel_token)
        if result.aborted:
            return ToolOutcome.error(f"Command aborted: {command}")
        if result.timed_out:
            label = int(timeout) if timeout.is_integer() else timeout
            message = f"Command timed out after {label}s: {command}"
            if result.output:
                message += f"\n\nPartial output:\n{result.output}"
            return ToolOutcome.error(message)
        return ToolOutcome.ordinary(f"Exit code: {result.exit_code}\n\nOutput:\n{result.output}")
