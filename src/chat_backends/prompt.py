"""Prompt building for raw-mode generation."""

from __future__ import annotations

from typing import Iterable, Union

from .types import GenerationRequest, ModelSpec


def _stop_sequences(stop: Union[str, Iterable[str], None]) -> list:
    if not stop:
        return []
    if isinstance(stop, str):
        return [stop]
    return [s for s in stop if s]


def build_prompt(request: GenerationRequest, model: ModelSpec) -> str:
    """Render ``request`` into the single prompt string sent to the server.

    When the request continues the last assistant message, trailing stop
    sequences are removed so the model picks up where that message ended
    instead of starting a new turn.
    """
    prompt = model.chat_prompt_render(request.messages, request.preprompt)

    if request.continue_message:
        prompt = prompt.rstrip()
        for stop in _stop_sequences(model.parameters.get("stop")):
            if prompt.endswith(stop):
                prompt = prompt[: -len(stop)]

    return prompt
