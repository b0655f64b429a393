"""Conversation messages and the append-only store owned by the agent loop."""

import copy
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant"]
ContentBlock = dict[str, Any]
MessageContent = str | list[ContentBlock]


@dataclass(frozen=True)
class Message:
    """A message in the conversation."""

    role: Role
    content: MessageContent

    def to_dict(self) -> dict[str, Any]:
        """Wire representation sent to the backend."""
        return {"role": self.role, "content": copy.deepcopy(self.content)}

    @property
    def text(self) -> str:
        """Plain-text portion of the message."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            str(block.get("text", ""))
            for block in self.content
            if block.get("type") == "text"
        )


def text_block(text: str) -> ContentBlock:
    return {"type": "text", "text": text}


def image_block(data_url: str) -> ContentBlock:
    """Convert a ``data:<media>;base64,<data>`` URL into an image block."""
    header, _, data = data_url.partition(",")
    media_type = "image/png"
    if header.startswith("data:"):
        media_type = header[len("data:"):].split(";", 1)[0] or media_type
    if not data:
        # Bare base64 payload without a data-URL header.
        data = header
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": media_type, "data": data},
    }


def tool_result_block(tool_use_id: str, content: str) -> ContentBlock:
    return {"type": "tool_result", "tool_use_id": tool_use_id, "content": content}


@dataclass
class Usage:
    """Cumulative backend token usage."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
        self.input_tokens += max(0, int(input_tokens or 0))
        self.output_tokens += max(0, int(output_tokens or 0))


@dataclass
class ConversationStore:
    """Ordered, append-only message history plus usage counters.

    Only the agent loop appends; readers get copies.
    """

    _messages: list[Message] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)

    def append(self, message: Message) -> None:
        if message.role not in ("user", "assistant"):
            raise ValueError(f"Unsupported message role: {message.role!r}")
        self._messages.append(message)

    def append_user(self, content: MessageContent) -> Message:
        message = Message(role="user", content=content)
        self.append(message)
        return message

    def append_assistant(self, content: MessageContent) -> Message:
        message = Message(role="assistant", content=content)
        self.append(message)
        return message

    def append_tool_result(self, tool_use_id: str, content: str) -> Message:
        """Append one tool result as its own user message."""
        return self.append_user([tool_result_block(tool_use_id, content)])

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def to_wire(self) -> list[dict[str, Any]]:
        return [message.to_dict() for message in self._messages]

    def __len__(self) -> int:
        return len(self._messages)
