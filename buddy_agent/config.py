"""Configuration management for Buddy Agent."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.buddy-agent/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class BackendConfig(BaseModel):
    """Inference backend configuration."""

    base_url: str = "https://api.aibuddy.life"
    endpoint: str = "/chat"
    model: str = "claude-opus-4-20250514"
    max_tokens: int = 8192
    temperature: float = 0.7
    api_key: str = ""
    timeout: float = 120.0


class AgentConfig(BaseModel):
    """Agent loop configuration."""

    max_iterations: int = 50
    system_prompt: str = ""


class ContextConfig(BaseModel):
    """Sliding context window configuration."""

    max_tokens: int = 40000
    chars_per_token: float = 3.5
    min_messages: int = 2


class ToolsConfig(BaseModel):
    """Tools configuration."""

    command_timeout: float = 60.0
    list_depth: int = 3
    search_depth: int = 5
    ignored_names: list[str] = [
        "node_modules",
        "dist",
        "build",
        "__pycache__",
        ".git",
    ]
    blocked_command_patterns: list[str] = [
        "sudo$",
        "su$",
        "doas$",
        "mkfs",
        "shutdown$",
        "reboot$",
        "rm -rf /$",
        r"rm -rf /\*",
        "rm -rf ~$",
        "dd if=",
    ]


class WorkspaceConfig(BaseModel):
    """Workspace root configuration."""

    path: str = ""


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["console", "json"] = "console"


class Config(BaseSettings):
    """Main configuration for Buddy Agent."""

    backend: BackendConfig = Field(default_factory=BackendConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="BUDDY_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration; pydantic-settings layers env vars on top."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_workspace_path(self, runtime_base: Path | str | None = None) -> str | None:
        """Return the absolute workspace root, or None when unset.

        Relative paths are anchored to ``runtime_base`` (default: cwd). The
        result is normalised lexically; symlinks are left alone so the
        boundary check compares the same strings the user configured.
        """
        raw = (self.workspace.path or "").strip()
        if not raw:
            return None
        expanded = Path(raw).expanduser()
        if not expanded.is_absolute():
            anchor = Path(runtime_base).expanduser() if runtime_base is not None else Path.cwd()
            expanded = anchor / expanded
        return os.path.normpath(str(expanded))

