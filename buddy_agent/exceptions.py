"""Custom exceptions for Buddy Agent."""


class BuddyAgentError(Exception):
    """Base exception for Buddy Agent."""

    pass


class ConfigurationError(BuddyAgentError):
    """Configuration-related errors."""

    pass


class LLMError(BuddyAgentError):
    """Backend-related errors."""

    pass


class LLMAPIError(LLMError):
    """Backend API errors (rate limit, auth, transport, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(BuddyAgentError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class BoundaryViolationError(ToolExecutionError):
    """A path resolved outside the configured workspace root."""

    def __init__(self, path: str, root: str, tool_name: str = ""):
        super().__init__(
            tool_name,
            f'Path "{path}" is outside the current workspace "{root}". '
            "Change the configured workspace to a folder that contains it; "
            "retrying with the same workspace will fail again.",
        )
        self.path = path
        self.root = root


class AgentError(BuddyAgentError):
    """Agent loop errors."""

    pass


class AgentBusyError(AgentError):
    """A task is already running on this agent instance."""

    def __init__(self, current_task: str | None = None):
        super().__init__("Agent is already running a task")
        self.current_task = current_task


class AgentAbortedError(AgentError):
    """The running task was cancelled by the user."""

    def __init__(self, message: str = "Task aborted"):
        super().__init__(message)
