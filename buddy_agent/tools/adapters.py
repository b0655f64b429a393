"""Filesystem and process adapters consumed by the tool executor."""

import asyncio
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from buddy_agent.cancellation import CancellationToken
from buddy_agent.logging import get_logger

log = get_logger(__name__)

DEFAULT_IGNORED_NAMES = ("node_modules", "dist", "build", "__pycache__", ".git")


@dataclass
class DirEntry:
    """One directory entry, optionally with a captured subtree."""

    name: str
    path: str
    is_directory: bool
    children: list["DirEntry"] = field(default_factory=list)


class LocalFileSystem:
    """Async facade over the local filesystem.

    Blocking calls run in a worker thread so the event loop stays free.
    """

    def __init__(self, ignored_names: Iterable[str] = DEFAULT_IGNORED_NAMES):
        self.ignored_names = frozenset(ignored_names)

    async def read_text(self, path: str) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")

    async def write_text(self, path: str, content: str) -> None:
        def _write() -> None:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(os.path.exists, path)

    async def list_dir(self, path: str) -> list[DirEntry]:
        def _list() -> list[DirEntry]:
            with os.scandir(path) as it:
                entries = [
                    DirEntry(name=e.name, path=os.path.join(path, e.name), is_directory=e.is_dir())
                    for e in it
                ]
            return sorted(entries, key=lambda e: e.name)

        return await asyncio.to_thread(_list)

    def _visible(self, name: str) -> bool:
        return not name.startswith(".") and name not in self.ignored_names

    def _read_tree(self, path: str, max_depth: int, depth: int) -> list[DirEntry]:
        if depth >= max_depth:
            return []
        try:
            with os.scandir(path) as it:
                raw = [e for e in it if self._visible(e.name)]
        except OSError as e:
            log.warning("Failed to read directory tree", path=path, error=str(e))
            return []

        # Directories first, then files, alphabetically.
        raw.sort(key=lambda e: (not e.is_dir(), e.name.lower()))
        nodes: list[DirEntry] = []
        for entry in raw:
            full_path = os.path.join(path, entry.name)
            node = DirEntry(name=entry.name, path=full_path, is_directory=entry.is_dir())
            if node.is_directory:
                node.children = self._read_tree(full_path, max_depth, depth + 1)
            nodes.append(node)
        return nodes

    async def read_tree(self, path: str, max_depth: int = 3) -> list[DirEntry]:
        """Capture a depth-bounded snapshot of the tree under ``path``."""
        if not await asyncio.to_thread(os.path.isdir, path):
            raise NotADirectoryError(f"Not a directory: {path}")
        return await asyncio.to_thread(self._read_tree, path, max_depth, 0)


@dataclass
class CommandResult:
    """Outcome of one spawned shell command."""

    exit_code: int | None
    output: str
    timed_out: bool = False
    aborted: bool = False


class ProcessRunner:
    """Spawn shell commands with combined output capture and a hard timeout.

    Completion is the shell's own exit. Background children that keep the
    output pipe open do not hold the result back; whatever they print within
    ``drain_timeout`` after the shell exits is still captured.
    """

    def __init__(
        self,
        max_output_chars: int = 100_000,
        drain_timeout: float = 0.5,
        poll_interval: float = 0.05,
    ):
        self.max_output_chars = max_output_chars
        self.drain_timeout = drain_timeout
        self.poll_interval = poll_interval

    async def run(
        self,
        command: str,
        cwd: str,
        timeout: float,
        cancel_token: CancellationToken | None = None,
    ) -> CommandResult:
        env = os.environ.copy()
        env["PATH"] = os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin")

        log.info("Executing shell command", command=command, cwd=cwd, timeout=timeout)
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=env,
            start_new_session=True,
        )

        chunks: list[bytes] = []
        reader_task = asyncio.create_task(self._read_output(process.stdout, chunks))
        exit_task = asyncio.create_task(self._wait_for_exit(process))
        cancel_wait_task: asyncio.Task[Any] | None = None
        if cancel_token is not None:
            cancel_wait_task = asyncio.create_task(cancel_token.wait())
        try:
            wait_tasks: set[asyncio.Task[Any]] = {exit_task}
            if cancel_wait_task is not None:
                wait_tasks.add(cancel_wait_task)
            done, _ = await asyncio.wait(
                wait_tasks,
                timeout=max(0.001, float(timeout)),
                return_when=asyncio.FIRST_COMPLETED,
            )

            if exit_task in done:
                exit_code = exit_task.result()
                await self._drain(reader_task)
                return CommandResult(exit_code=exit_code, output=self._decode(b"".join(chunks)))

            await self._kill(process)
            await self._drain(reader_task)
            output = self._decode(b"".join(chunks))
            if cancel_wait_task is not None and cancel_wait_task in done:
                log.info("Shell command aborted", command=command)
                return CommandResult(exit_code=process.returncode, output=output, aborted=True)
            log.warning("Shell command timed out", command=command, timeout=timeout)
            return CommandResult(exit_code=process.returncode, output=output, timed_out=True)
        except asyncio.CancelledError:
            await self._kill(process)
            await _stop(reader_task)
            raise
        finally:
            await _stop(exit_task)
            await _stop(cancel_wait_task)

    async def _wait_for_exit(self, process: asyncio.subprocess.Process) -> int:
        # Process.wait() also waits for every pipe to close; poll the exit status instead.
        while process.returncode is None:
            await asyncio.sleep(self.poll_interval)
        return process.returncode

    async def _read_output(self, stream: asyncio.StreamReader | None, chunks: list[bytes]) -> None:
        if stream is None:
            return
        kept = 0
        limit = self.max_output_chars * 4
        while True:
            chunk = await stream.read(65536)
            if not chunk:
                return
            if kept < limit:
                chunks.append(chunk)
                kept += len(chunk)

    async def _drain(self, reader_task: asyncio.Task[Any]) -> None:
        """Give the reader a short grace period, then stop it."""
        done, _ = await asyncio.wait({reader_task}, timeout=self.drain_timeout)
        if reader_task not in done:
            await _stop(reader_task)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                # The shell runs in its own session; take its children down too.
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except ProcessLookupError:
            pass
        await self._wait_for_exit(process)

    def _decode(self, raw: bytes | None) -> str:
        text = (raw or b"").decode("utf-8", errors="replace")
        if len(text) > self.max_output_chars:
            text = text[: self.max_output_chars] + f"\n... [truncated, {len(text)} total chars]"
        return text


async def _stop(task: asyncio.Task[Any] | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
