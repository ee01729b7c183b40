from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ChatToolCall:
    """A tool call as the chat API returned it: unvalidated."""
    id: str
    name: str
    arguments: Any  # parsed json, or the raw string if it did not parse


@dataclass
class AssistantTurn:
    text: str = ""
    tool_calls: list[ChatToolCall] = field(default_factory=list)
    reasoning_content: str | None = None
