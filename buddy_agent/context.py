"""Sliding context window applied before every backend call."""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Protocol

from buddy_agent.config import ContextConfig
from buddy_agent.logging import get_logger

log = get_logger(__name__)


def message_chars(message: dict[str, Any]) -> int:
    """Character size of one wire message.

    Plain text counts its length; block content counts the length of its
    compact JSON serialisation.
    """
    content = message.get("content", "")
    if isinstance(content, str):
        return len(content)
    return len(json.dumps(content, separators=(",", ":"), ensure_ascii=False))


class TokenEstimator(Protocol):
    """Strategy turning a character count into an estimated token count."""

    def estimate(self, chars: int) -> int: ...


@dataclass(frozen=True)
class CharRatioEstimator:
    """Approximate tokens as ``ceil(chars / chars_per_token)``."""

    chars_per_token: float = 3.5

    def estimate(self, chars: int) -> int:
        if chars <= 0:
            return 0
        return math.ceil(chars / self.chars_per_token)


@dataclass
class ContextWindow:
    """Outcome of one reduction pass."""

    messages: list[dict[str, Any]]
    estimated_tokens: int
    budget_tokens: int
    dropped_messages: int = 0
    stats: dict[str, int | float] = field(default_factory=dict)

    @property
    def over_budget(self) -> bool:
        return self.estimated_tokens > self.budget_tokens


class ContextWindowReducer:
    """Drop the oldest messages until the estimate fits the token budget."""

    def __init__(
        self,
        max_tokens: int = 40000,
        min_messages: int = 2,
        estimator: TokenEstimator | None = None,
    ):
        self.max_tokens = max(1, int(max_tokens))
        self.min_messages = max(0, int(min_messages))
        self.estimator: TokenEstimator = estimator or CharRatioEstimator()

    @classmethod
    def from_config(
        cls,
        config: ContextConfig,
        estimator: TokenEstimator | None = None,
    ) -> "ContextWindowReducer":
        return cls(
            max_tokens=config.max_tokens,
            min_messages=config.min_messages,
            estimator=estimator or CharRatioEstimator(config.chars_per_token),
        )

    def estimate(self, messages: list[dict[str, Any]], system_prompt: str = "") -> int:
        total_chars = sum(message_chars(msg) for msg in messages) + len(system_prompt or "")
        return self.estimator.estimate(total_chars)

    def reduce(self, messages: list[dict[str, Any]], system_prompt: str = "") -> ContextWindow:
        """Return the size-bounded suffix of ``messages``.

        The input list is not modified. The two most recent messages (or
        ``min_messages``) are always kept, even when they alone exceed the
        budget.
        """
        window = list(messages)
        sizes = [message_chars(msg) for msg in window]
        total_chars = sum(sizes) + len(system_prompt or "")
        estimated = self.estimator.estimate(total_chars)
        dropped = 0

        while estimated > self.max_tokens and len(window) > self.min_messages:
            total_chars -= sizes.pop(0)
            window.pop(0)
            dropped += 1
            estimated = self.estimator.estimate(total_chars)

        result = ContextWindow(
            messages=window,
            estimated_tokens=estimated,
            budget_tokens=self.max_tokens,
            dropped_messages=dropped,
        )
        result.stats = {
            "context_budget_tokens": self.max_tokens,
            "system_chars": len(system_prompt or ""),
            "estimated_tokens": estimated,
            "total_messages": len(messages),
            "included_messages": len(window),
            "dropped_messages": dropped,
            "over_budget": 1 if result.over_budget else 0,
            "utilization": estimated / self.max_tokens,
        }
        if dropped:
            log.info(
                "Context window pruned history",
                dropped_messages=dropped,
                included_messages=len(window),
                estimated_tokens=estimated,
                budget=self.max_tokens,
            )
        return result
