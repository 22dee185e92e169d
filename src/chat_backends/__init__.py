"""Chat application backends for a local model server and web search.

This package provides:

- A streaming text-generation endpoint for a local Ollama server.
- A web search scraper that reads result links from a Google results page
  rendered in headless Chromium via Playwright.
- A CLI entrypoint for interactive usage.
"""

from .errors import ChatBackendsError, ConfigurationError, ModelNotReadyError, UpstreamError
from .ollama import OllamaEndpoint, OllamaEndpointConfig, endpoint_ollama
from .types import GenerationRequest, Message, ModelSpec, TokenEvent, WebSearchSource
from .web_search import search_web_local

__all__ = [
    "ChatBackendsError",
    "ConfigurationError",
    "GenerationRequest",
    "Message",
    "ModelNotReadyError",
    "ModelSpec",
    "OllamaEndpoint",
    "OllamaEndpointConfig",
    "TokenEvent",
    "UpstreamError",
    "WebSearchSource",
    "endpoint_ollama",
    "search_web_local",
]
