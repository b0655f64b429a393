"""Backend client - direct HTTP calls to the inference endpoint."""

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from buddy_agent.cancellation import CancellationToken
from buddy_agent.config import BackendConfig
from buddy_agent.exceptions import ConfigurationError, LLMAPIError, LLMError
from buddy_agent.logging import get_logger
from buddy_agent.tools.executor import ToolInvocation

log = get_logger(__name__)

API_KEY_ENV_VAR = "BUDDY_API_KEY"
END_TURN = "end_turn"


@dataclass
class LLMResponse:
    """Response from the backend."""

    content: list[dict[str, Any]] = field(default_factory=list)
    stop_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    model: str = ""

    @property
    def text(self) -> str:
        return "".join(
            str(block.get("text", ""))
            for block in self.content
            if block.get("type") == "text"
        )

    @property
    def tool_invocations(self) -> list[ToolInvocation]:
        invocations: list[ToolInvocation] = []
        for block in self.content:
            if block.get("type") != "tool_use":
                continue
            raw_input = block.get("input")
            if isinstance(raw_input, str):
                try:
                    raw_input = json.loads(raw_input)
                except json.JSONDecodeError:
                    raw_input = {"raw": raw_input}
            invocations.append(ToolInvocation(
                id=str(block.get("id", "")),
                name=str(block.get("name", "")),
                input=dict(raw_input) if isinstance(raw_input, dict) else {},
            ))
        return invocations

    @property
    def is_end_turn(self) -> bool:
        return self.stop_reason == END_TURN

    @classmethod
    def from_payload(cls, data: dict[str, Any], model: str = "") -> "LLMResponse":
        content = data.get("content") or []
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        usage = data.get("usage") or {}
        return cls(
            content=[block for block in content if isinstance(block, dict)],
            stop_reason=data.get("stop_reason"),
            usage={
                "input_tokens": int(usage.get("input_tokens", 0) or 0),
                "output_tokens": int(usage.get("output_tokens", 0) or 0),
            },
            model=str(data.get("model", model) or model),
        )


class CredentialStore(Protocol):
    """Supplies the backend API key."""

    def get_api_key(self) -> str | None: ...


class EnvCredentialStore:
    """Explicit key first, then the ``BUDDY_API_KEY`` environment variable."""

    def __init__(self, api_key: str | None = None, env_var: str = API_KEY_ENV_VAR):
        self._api_key = api_key
        self.env_var = env_var

    def get_api_key(self) -> str | None:
        return (self._api_key or os.environ.get(self.env_var) or "").strip() or None


class LLMProvider(ABC):
    """Abstract base class for inference backends."""

    @abstractmethod
    async def complete(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        cancel_token: CancellationToken | None = None,
    ) -> LLMResponse:
        pass

    async def close(self) -> None:
        return None


class HTTPProvider(LLMProvider):
    """Posts the full request body to a single chat endpoint."""

    def __init__(
        self,
        model: str,
        base_url: str,
        endpoint: str = "/chat",
        max_tokens: int = 8192,
        temperature: float = 0.7,
        credentials: CredentialStore | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the provider.

        Args:
            model: Model identifier sent with every request
            base_url: Backend base URL
            endpoint: Path of the chat endpoint
            max_tokens: Max tokens to generate
            temperature: Sampling temperature
            credentials: Source of the API key, read on every call
            timeout: HTTP timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.endpoint = "/" + endpoint.lstrip("/") if endpoint else ""
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.credentials: CredentialStore = credentials or EnvCredentialStore()
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.endpoint}"

    def build_body(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system,
            "tools": tools,
            "messages": messages,
        }

    async def complete(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        cancel_token: CancellationToken | None = None,
    ) -> LLMResponse:
        """Send one request; the token aborts it while in flight."""
        api_key = self.credentials.get_api_key()
        if not api_key:
            raise ConfigurationError("API key not configured")

        body = self.build_body(system, messages, tools)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        log.debug("Calling backend", model=self.model, url=self.url, msg_count=len(messages))
        request = self.client.post(self.url, json=body, headers=headers)
        try:
            if cancel_token is not None:
                response = await cancel_token.run(request)
            else:
                response = await request
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Backend HTTP error: {e}") from e

        log.debug("Backend response status", status=response.status_code)
        if not response.is_success:
            raise LLMAPIError(
                f"API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"Backend response decode error: {e}") from e
        if not isinstance(data, dict):
            raise LLMError("Backend response is not a JSON object")

        return LLMResponse.from_payload(data, model=self.model)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    config: BackendConfig,
    credentials: CredentialStore | None = None,
    client: httpx.AsyncClient | None = None,
) -> LLMProvider:
    """Create the backend provider from configuration."""
    return HTTPProvider(
        model=config.model,
        base_url=config.base_url,
        endpoint=config.endpoint,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        credentials=credentials or EnvCredentialStore(config.api_key or None),
        timeout=config.timeout,
        client=client,
    )
