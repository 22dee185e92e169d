"""Data types shared by the model adapter and the web search scraper.

This module defines:

- :class:`Message` for a single chat turn.
- :class:`ModelSpec` describing the model an endpoint talks to.
- :class:`GenerationRequest`, the immutable input of an endpoint call.
- :class:`TokenEvent`, one streamed unit of generated text.
- :class:`WebSearchSource`, one search result link.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Literal, Optional, Sequence, Tuple

Role = Literal["user", "assistant", "system"]


@dataclass(frozen=True)
class Message:
    """A single chat message.

    Attributes:
        role: Author of the message (``"user"``, ``"assistant"`` or
            ``"system"``).
        content: Message text.
    """

    role: Role
    content: str


def render_plain_prompt(messages: Sequence[Message], preprompt: Optional[str]) -> str:
    """Render messages as a plain role-tagged transcript.

    Used when a :class:`ModelSpec` is created without its own chat template.
    The prompt always ends with an open ``Assistant:`` turn unless the last
    message is an assistant message being continued.
    """
    parts = []
    if preprompt:
        parts.append(f"{preprompt}\n\n")
    for message in messages:
        parts.append(f"{message.role.capitalize()}: {message.content}\n")
    if not messages or messages[-1].role != "assistant":
        parts.append("Assistant:")
    return "".join(parts)


@dataclass(frozen=True)
class ModelSpec:
    """Model reference used by an endpoint.

    Attributes:
        name: Model name, also used as the Ollama name unless the endpoint
            is given an override.
        parameters: Default generation parameters. Call-level settings
            override them key by key.
        chat_prompt_render: Callable turning ``(messages, preprompt)`` into
            the flattened prompt string sent to the server.
    """

    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    chat_prompt_render: Callable[[Sequence[Message], Optional[str]], str] = render_plain_prompt


@dataclass(frozen=True)
class GenerationRequest:
    """Input of a single endpoint call.

    ``messages`` is stored as a tuple so the request stays immutable once
    built.
    """

    messages: Tuple[Message, ...]
    preprompt: Optional[str] = None
    continue_message: bool = False
    generate_settings: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))


@dataclass(frozen=True)
class TokenEvent:
    """One incremental unit of generated text.

    ``full_text`` carries the accumulated generated text and is only set on
    the final event.
    """

    id: int
    text: str
    is_final: bool = False
    full_text: Optional[str] = None


@dataclass(frozen=True)
class WebSearchSource:
    """A search result pointing at ``link``."""

    link: str
