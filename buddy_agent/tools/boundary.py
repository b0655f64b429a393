"""Workspace boundary check shared by every path-touching tool."""

import os

from buddy_agent.exceptions import BoundaryViolationError, ConfigurationError

WORKSPACE_NOT_SET = (
    "Workspace path not set. Open a folder first before reading, "
    "writing or running commands."
)


def normalize(path: str) -> str:
    """Lexical normalisation only; symlinks are not resolved."""
    return os.path.normpath(path)


def is_within(root: str, candidate: str) -> bool:
    """Whether ``candidate`` equals ``root`` or lies beneath it, component-wise."""
    norm_root = normalize(root)
    norm_candidate = normalize(candidate)
    if norm_candidate == norm_root:
        return True
    prefix = norm_root if norm_root.endswith(os.sep) else norm_root + os.sep
    return norm_candidate.startswith(prefix)


class WorkspaceBoundary:
    """A single absolute root that every resolved path must stay under."""

    def __init__(self, root: str | os.PathLike[str] | None):
        raw = os.fspath(root) if root is not None else ""
        raw = raw.strip()
        if raw and not os.path.isabs(os.path.expanduser(raw)):
            raise ConfigurationError(f"Workspace root must be absolute: {raw}")
        self.root: str | None = normalize(os.path.expanduser(raw)) if raw else None

    @property
    def configured(self) -> bool:
        return self.root is not None

    def require_root(self) -> str:
        if self.root is None:
            raise ConfigurationError(WORKSPACE_NOT_SET)
        return self.root

    def resolve(self, path: str) -> str:
        """Resolve a tool-supplied path.

        Paths beginning with ``/`` or ``~`` are taken as absolute; anything
        else is joined onto the root. The result is not yet boundary-checked.
        """
        raw = str(path or "").strip()
        if raw.startswith("/") or raw.startswith("~"):
            return os.path.expanduser(raw)
        return os.path.join(self.require_root(), raw)

    def check(self, path: str, tool_name: str = "") -> str:
        """Return the normalised path or raise ``BoundaryViolationError``."""
        root = self.require_root()
        normalized = normalize(path)
        if not is_within(root, normalized):
            raise BoundaryViolationError(path=normalized, root=root, tool_name=tool_name)
        return normalized

    def resolve_checked(self, path: str, tool_name: str = "") -> str:
        return self.check(self.resolve(path), tool_name=tool_name)
