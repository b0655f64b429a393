"""Agent loop controller for Buddy Agent."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from buddy_agent.cancellation import CancellationToken
from buddy_agent.config import Config
from buddy_agent.context import ContextWindowReducer, TokenEstimator
from buddy_agent.conversation import ConversationStore, Message, Usage, image_block, text_block
from buddy_agent.events import (
    AgentEvent,
    ErrorOccurred,
    EventDispatcher,
    EventSubscriber,
    FollowupQuestion,
    MaxIterationsReached,
    MessageEmitted,
    TaskAborted,
    TaskComplete,
    TaskStarted,
    ToolResultEmitted,
    ToolUse,
)
from buddy_agent.exceptions import AgentAbortedError, AgentBusyError
from buddy_agent.llm import CredentialStore, LLMProvider, LLMResponse, create_provider
from buddy_agent.logging import get_logger
from buddy_agent.prompts import build_system_prompt
from buddy_agent.tools import catalog
from buddy_agent.tools.adapters import LocalFileSystem, ProcessRunner
from buddy_agent.tools.boundary import WorkspaceBoundary
from buddy_agent.tools.executor import OutcomeKind, ToolExecutor

log = get_logger(__name__)


class AgentStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERROR = "error"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


@dataclass
class AgentRunState:
    """Live state of the one task an agent may be running."""

    task: str
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    usage: Usage = field(default_factory=Usage)
    iterations: int = 0


@dataclass(frozen=True)
class AgentState:
    """Read-only snapshot for hosts."""

    is_running: bool
    status: AgentStatus
    current_task: str | None
    tokens_used: int
    message_count: int


class Agent:
    """Drives the backend/tool loop for one hosting session."""

    def __init__(
        self,
        provider: LLMProvider,
        executor: ToolExecutor,
        config: Config | None = None,
        system_prompt: str | None = None,
        reducer: ContextWindowReducer | None = None,
        events: EventDispatcher | None = None,
    ):
        """Initialize the agent.

        Args:
            provider: Backend used for every iteration
            executor: Tool executor bound to the workspace
            config: Configuration (defaults apply when omitted)
            system_prompt: Optional system prompt override
            reducer: Optional context window reducer override
            events: Optional shared event dispatcher
        """
        self.config = config or Config()
        self.provider = provider
        self.executor = executor
        self.reducer = reducer or ContextWindowReducer.from_config(self.config.context)
        self.events = events or EventDispatcher()
        self.system_prompt = (
            system_prompt
            or self.config.agent.system_prompt
            or build_system_prompt(executor.boundary.root)
        )
        self.max_iterations = max(1, int(self.config.agent.max_iterations))
        self.tool_definitions = catalog.get_definitions()
        self.status = AgentStatus.IDLE
        self.last_error: BaseException | None = None
        self.last_context_window: dict[str, int | float] = {}
        self._conversation = ConversationStore()
        self._run: AgentRunState | None = None

    @property
    def is_running(self) -> bool:
        return self._run is not None

    @property
    def messages(self) -> list[Message]:
        return self._conversation.messages

    @property
    def usage(self) -> Usage:
        return self._conversation.usage

    @property
    def state(self) -> AgentState:
        run = self._run
        return AgentState(
            is_running=run is not None,
            status=self.status,
            current_task=run.task if run else None,
            tokens_used=self._conversation.usage.total_tokens,
            message_count=len(self._conversation),
        )

    def subscribe(self, subscriber: EventSubscriber):
        """Register an event subscriber; returns an unsubscribe callable."""
        return self.events.subscribe(subscriber)

    def _emit(self, event: AgentEvent) -> None:
        self.events.emit(event)

    async def start_task(self, task: str, images: list[str] | None = None) -> AgentStatus:
        """Run a new task to completion, abort, error or the iteration bound.

        Raises:
            AgentBusyError: a task is already running on this instance
        """
        if self._run is not None:
            raise AgentBusyError(self._run.task)

        run = AgentRunState(task=task)
        self._run = run
        self.status = AgentStatus.RUNNING
        self.last_error = None

        content: list[dict[str, Any]] = [text_block(task)]
        content.extend(image_block(image) for image in images or [])
        self._conversation.append_user(content)
        self._emit(TaskStarted(task=task))
        log.info("Task started", task=task[:200], images=len(images or []))

        status = AgentStatus.ERROR
        try:
            status = await self._run_loop(run)
        except AgentAbortedError as e:
            log.info("Task aborted", iterations=run.iterations)
            status = AgentStatus.ABORTED
            self._emit(TaskAborted(reason=str(e)))
        except asyncio.CancelledError:
            status = AgentStatus.ABORTED
            self._emit(TaskAborted(reason="Task cancelled"))
            raise
        except Exception as e:
            log.error("Task failed", error=str(e), iterations=run.iterations, exc_info=True)
            status = AgentStatus.ERROR
            self.last_error = e
            self._emit(ErrorOccurred(error=e))
        finally:
            self._run = None
            self.status = status
        return status

    async def send_message(self, text: str) -> AgentStatus:
        """Continue the conversation with a fresh task.

        Raises:
            AgentBusyError: while a task is running; messages are never merged
            into a live run
        """
        if self._run is not None:
            raise AgentBusyError(self._run.task)
        return await self.start_task(text)

    def abort(self) -> None:
        """Cancel the running task. No-op when idle or already aborted."""
        run = self._run
        if run is None:
            return
        if not run.cancel_token.cancelled:
            log.info("Abort requested", task=run.task[:200])
        run.cancel_token.cancel()

    async def close(self) -> None:
        await self.provider.close()

    async def _call_backend(self, run: AgentRunState) -> LLMResponse:
        window = self.reducer.reduce(self._conversation.to_wire(), self.system_prompt)
        self.last_context_window = window.stats
        log.info(
            "Calling backend",
            iteration=run.iterations,
            message_count=len(window.messages),
            estimated_tokens=window.estimated_tokens,
        )
        response = await self.provider.complete(
            system=self.system_prompt,
            messages=window.messages,
            tools=self.tool_definitions,
            cancel_token=run.cancel_token,
        )
        input_tokens = response.usage.get("input_tokens", 0)
        output_tokens = response.usage.get("output_tokens", 0)
        run.usage.add(input_tokens, output_tokens)
        self._conversation.usage.add(input_tokens, output_tokens)
        return response

    async def _run_loop(self, run: AgentRunState) -> AgentStatus:
        for iteration in range(1, self.max_iterations + 1):
            run.iterations = iteration
            run.cancel_token.raise_if_cancelled()

            response = await self._call_backend(run)
            self._conversation.append_assistant(response.content)
            self._emit(MessageEmitted(text=response.text))

            invocations = response.tool_invocations
            if invocations:
                log.info("Tool calls detected", count=len(invocations), iteration=iteration)

            # Strictly sequential: each result lands in history before the next
            # invocation runs, and is first visible to the backend next iteration.
            for invocation in invocations:
                run.cancel_token.raise_if_cancelled()
                self._emit(ToolUse(invocation=invocation))
                outcome = await self.executor.execute(invocation, cancel_token=run.cancel_token)
                self._conversation.append_tool_result(invocation.id, outcome.text)

                if outcome.kind is OutcomeKind.FOLLOWUP:
                    self._emit(FollowupQuestion(question=outcome.payload))
                    return AgentStatus.COMPLETED
                if outcome.kind is OutcomeKind.COMPLETE:
                    self._emit(TaskComplete(
                        result=outcome.payload,
                        suggested_command=outcome.suggested_command,
                    ))
                    return AgentStatus.COMPLETED
                self._emit(ToolResultEmitted(invocation=invocation, outcome=outcome))

            if not invocations and response.is_end_turn:
                return AgentStatus.COMPLETED

        log.warning("Max iterations reached", max_iterations=self.max_iterations)
        self._emit(MaxIterationsReached(iterations=self.max_iterations))
        return AgentStatus.MAX_ITERATIONS_REACHED


def create_agent(
    config: Config | None = None,
    *,
    workspace: str | Path | None = None,
    provider: LLMProvider | None = None,
    credentials: CredentialStore | None = None,
    filesystem: LocalFileSystem | None = None,
    runner: ProcessRunner | None = None,
    estimator: TokenEstimator | None = None,
    system_prompt: str | None = None,
) -> Agent:
    """Build an agent scoped to one hosting session.

    ``workspace`` overrides ``config.workspace.path``.
    """
    config = config or Config()
    root = str(workspace) if workspace is not None else config.resolved_workspace_path()
    boundary = WorkspaceBoundary(root)
    executor = ToolExecutor(
        boundary=boundary,
        config=config.tools,
        filesystem=filesystem,
        runner=runner,
    )
    reducer = ContextWindowReducer.from_config(config.context, estimator=estimator)
    return Agent(
        provider=provider or create_provider(config.backend, credentials=credentials),
        executor=executor,
        config=config,
        system_prompt=system_prompt,
        reducer=reducer,
    )
