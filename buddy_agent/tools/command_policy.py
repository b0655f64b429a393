"""Pre-spawn safety check for shell commands."""

import re
import shlex

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=.*$")
_SHELL_SEPARATOR_TOKENS = {";", "&&", "||", "|", "&"}
# No ``sudo`` here; it has to stay visible as a base command.
_SHELL_WRAPPER_TOKENS = {"command", "builtin", "nohup", "time", "exec"}
_SHELL_INTERPRETERS = {"sh", "bash", "zsh", "dash", "ksh", "fish"}


def _compile_shell_pattern(pattern: str) -> re.Pattern[str]:
    """Compile regex pattern with literal fallback for invalid regex input."""
    try:
        return re.compile(pattern)
    except re.error:
        return re.compile(re.escape(pattern))


def _tokenize_shell_command(command: str) -> list[str]:
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    return list(lexer)


def split_shell_segments(command: str) -> list[tuple[str, list[str]]]:
    """Split into ``(operator_before, tokens)`` segments.

    Raises:
        ValueError: unbalanced quoting
    """
    segments: list[tuple[str, list[str]]] = []
    operator = ""
    current: list[str] = []
    for token in _tokenize_shell_command(command):
        if token in _SHELL_SEPARATOR_TOKENS:
            if current:
                segments.append((operator, current))
                current = []
            operator = token
            continue
        current.append(token)
    if current:
        segments.append((operator, current))
    return segments


def segment_base_command(tokens: list[str]) -> str:
    """Executable token of one segment, skipping wrappers and env assignments."""
    for token in tokens:
        token = str(token).strip()
        if not token or token in _SHELL_WRAPPER_TOKENS:
            continue
        if _ASSIGNMENT_RE.match(token) and "/" not in token:
            continue
        return token
    return ""


def find_blocked_reason(command: str, blocked_patterns: list[str]) -> str | None:
    """Return why ``command`` must not run, or None when it may.

    Patterns without whitespace match the start of each segment's base
    command (path prefix stripped); patterns with whitespace are searched in
    the whole segment text. Piping into a shell interpreter is always blocked.
    """
    cleaned = str(command or "").strip()
    if not cleaned:
        return "Command is empty"
    try:
        segments = split_shell_segments(cleaned)
    except ValueError:
        return "Command is not parseable"
    if not segments:
        return "Command is not parseable"

    compiled = [
        (pattern, _compile_shell_pattern(pattern), bool(re.search(r"\s", pattern)))
        for pattern in (str(raw or "").strip() for raw in blocked_patterns or [])
        if pattern
    ]
    for operator, tokens in segments:
        base = segment_base_command(tokens)
        base_name = base.rsplit("/", 1)[-1]
        if operator == "|" and base_name in _SHELL_INTERPRETERS:
            return f"Piped shell execution is blocked: | {base_name}"
        segment_text = " ".join(tokens)
        for pattern, regex, segment_level in compiled:
            if segment_level:
                if regex.search(segment_text):
                    return f"Command matches blocked pattern: {pattern}"
            elif base_name and regex.match(base_name):
                return f"Command matches blocked pattern: {pattern}"
    return None
