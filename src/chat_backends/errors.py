"""Exception types raised by the chat backends.

- :class:`ConfigurationError` is raised when an endpoint is built from an
  invalid configuration.
- :class:`ModelNotReadyError` is raised when the model server does not have the
  requested model yet. A pull has been requested and the call can be retried.
- :class:`UpstreamError` is raised when the model server answers with a
  non-successful status.
"""

from __future__ import annotations

from typing import Optional


class ChatBackendsError(Exception):
    """Base class for all errors raised by this package."""

    retryable = False


class ConfigurationError(ChatBackendsError):
    """Invalid endpoint configuration."""


class ModelNotReadyError(ChatBackendsError):
    """The model is being pulled by the server; retry later."""

    retryable = True

    def __init__(self, model_name: str) -> None:
        super().__init__(
            f"Currently pulling model '{model_name}' from Ollama, please try again later."
        )
        self.model_name = model_name


class UpstreamError(ChatBackendsError):
    """The model server returned a non-successful response."""

    def __init__(self, body: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"Failed to generate text: {body}")
        self.body = body
        self.status_code = status_code
