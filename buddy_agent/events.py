"""Lifecycle events emitted by the agent loop.

Every event is a frozen dataclass with a literal ``kind``; ``AgentEvent`` is
the closed union of all of them, so a ``match`` over ``event.kind`` (or the
class) can be checked for exhaustiveness by a type checker.
"""

from dataclasses import dataclass
from typing import Callable, Literal, Union

from buddy_agent.logging import get_logger
from buddy_agent.tools.executor import ToolInvocation, ToolOutcome

log = get_logger(__name__)


@dataclass(frozen=True)
class TaskStarted:
    task: str
    kind: Literal["task_started"] = "task_started"


@dataclass(frozen=True)
class MessageEmitted:
    text: str
    role: Literal["assistant"] = "assistant"
    kind: Literal["message"] = "message"


@dataclass(frozen=True)
class ToolUse:
    invocation: ToolInvocation
    kind: Literal["tool_use"] = "tool_use"


@dataclass(frozen=True)
class ToolResultEmitted:
    invocation: ToolInvocation
    outcome: ToolOutcome
    kind: Literal["tool_result"] = "tool_result"

    @property
    def result(self) -> str:
        return self.outcome.text


@dataclass(frozen=True)
class FollowupQuestion:
    question: str
    kind: Literal["followup_question"] = "followup_question"


@dataclass(frozen=True)
class TaskComplete:
    result: str
    suggested_command: str | None = None
    kind: Literal["task_complete"] = "task_complete"


@dataclass(frozen=True)
class TaskAborted:
    reason: str = "Task aborted"
    kind: Literal["task_aborted"] = "task_aborted"


@dataclass(frozen=True)
class MaxIterationsReached:
    iterations: int
    kind: Literal["max_iterations_reached"] = "max_iterations_reached"


@dataclass(frozen=True)
class ErrorOccurred:
    error: BaseException
    kind: Literal["error"] = "error"

    @property
    def message(self) -> str:
        return str(self.error)


AgentEvent = Union[
    TaskStarted,
    MessageEmitted,
    ToolUse,
    ToolResultEmitted,
    FollowupQuestion,
    TaskComplete,
    TaskAborted,
    MaxIterationsReached,
    ErrorOccurred,
]

EventSubscriber = Callable[[AgentEvent], None]


class EventDispatcher:
    """Single fan-out point for agent events."""

    def __init__(self) -> None:
        self._subscribers: list[EventSubscriber] = []

    def subscribe(self, subscriber: EventSubscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that unsubscribes it."""
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    def emit(self, event: AgentEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                # A broken host callback must not break the loop.
                log.warning("Event subscriber failed", kind=event.kind, error=str(e))
