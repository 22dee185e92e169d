"""Streaming text-generation endpoint backed by a local Ollama server.

This module defines:

- :class:`OllamaEndpointConfig`, the validated endpoint configuration.
- :class:`OllamaEndpoint`, the callable that turns a
  :class:`~chat_backends.types.GenerationRequest` into a stream of
  :class:`~chat_backends.types.TokenEvent`.
- :func:`endpoint_ollama`, a shortcut that validates keyword arguments and
  builds the endpoint.

Only the native Ollama API is used: ``GET /api/tags`` to check that the model
is present, ``POST /api/pull`` to download it when it is not, and
``POST /api/generate`` in raw mode to stream the completion as
newline-delimited JSON.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Set

import httpx

from . import config as settings
from .errors import ConfigurationError, ModelNotReadyError, UpstreamError
from .prompt import build_prompt
from .transcript import Transcript
from .types import GenerationRequest, ModelSpec, TokenEvent
from .urls import is_url

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://127.0.0.1:11434"

# Pull requests run detached from the call that triggered them. Keeping a
# reference stops the event loop from garbage-collecting them mid-flight.
_background_tasks: Set["asyncio.Task[None]"] = set()


@dataclass(frozen=True)
class OllamaEndpointConfig:
    """Validated configuration of an Ollama endpoint.

    Attributes:
        model: The model reference. Its ``name`` is used on the server
            unless :attr:`ollama_name` is set.
        weight: Positive integer used by the caller to balance between
            several endpoints of the same model.
        url: Base URL of the Ollama server.
        ollama_name: Optional name of the model on the server.

    Raises:
        ConfigurationError: If any field is invalid.
    """

    model: ModelSpec
    weight: int = 1
    url: str = DEFAULT_OLLAMA_URL
    ollama_name: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.weight, bool) or not isinstance(self.weight, int) or self.weight <= 0:
            raise ConfigurationError(f"weight must be a positive integer, got {self.weight!r}")
        if not isinstance(self.url, str) or not is_url(self.url):
            raise ConfigurationError(f"url must be a valid URL, got {self.url!r}")
        if self.ollama_name is not None and not self.ollama_name:
            raise ConfigurationError("ollama_name must not be empty")

    @property
    def model_name(self) -> str:
        return self.ollama_name or self.model.name


def build_generate_body(prompt: str, model_name: str, parameters: Dict[str, Any]) -> dict:
    """Build the ``/api/generate`` payload from merged generation parameters."""
    return {
        "prompt": prompt,
        "model": model_name,
        "raw": True,
        "options": {
            "top_p": parameters.get("top_p"),
            "top_k": parameters.get("top_k"),
            "temperature": parameters.get("temperature"),
            "repeat_penalty": parameters.get("repetition_penalty"),
            "stop": parameters.get("stop"),
            "num_predict": parameters.get("max_new_tokens"),
        },
    }


@dataclass
class OllamaEndpoint:
    """Callable endpoint streaming generated tokens from Ollama.

    Calling the endpoint is a two-step affair: awaiting the call checks the
    model and opens the generation stream, raising
    :class:`~chat_backends.errors.ModelNotReadyError` or
    :class:`~chat_backends.errors.UpstreamError` before any token is
    produced. The returned async iterator then yields
    :class:`~chat_backends.types.TokenEvent` objects as the server sends
    them. Once streaming has started no exception is raised: a malformed
    chunk or an early end of stream simply stops the iteration.

    Example::

        endpoint = endpoint_ollama(model=ModelSpec(name="llama3.1"))
        async for event in await endpoint(request):
            print(event.text, end="")

    Attributes:
        config: Validated endpoint configuration.
        transcript: Diagnostic transcript the prompt and tokens are
            appended to.
        transport: Optional httpx transport, used by tests to fake the
            server.
    """

    config: OllamaEndpointConfig
    transcript: Transcript = field(default_factory=lambda: Transcript(settings.OLLAMA_OUTPUT_LOG))
    transport: Optional[httpx.AsyncBaseTransport] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.url,
            headers={"Content-Type": "application/json"},
            timeout=None,
            transport=self.transport,
        )

    async def __call__(self, request: GenerationRequest) -> AsyncIterator[TokenEvent]:
        model = self.config.model
        model_name = self.config.model_name

        prompt = build_prompt(request, model)
        logger.debug("Prompt for %s:\n%s", model_name, prompt)

        parameters = {**model.parameters, **request.generate_settings}

        client = self._client()
        try:
            await self._ensure_model(client, model_name)

            response = await client.send(
                client.build_request(
                    "POST",
                    "/api/generate",
                    json=build_generate_body(prompt, model_name, parameters),
                ),
                stream=True,
            )
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                await response.aclose()
                raise UpstreamError(body, status_code=response.status_code)
        except httpx.HTTPError as exc:
            await client.aclose()
            raise UpstreamError(f"{type(exc).__name__}: {exc}") from exc
        except BaseException:
            await client.aclose()
            raise

        return self._stream_tokens(client, response, prompt)

    async def _ensure_model(self, client: httpx.AsyncClient, model_name: str) -> None:
        """Raise :class:`ModelNotReadyError` unless the server lists ``model_name``.

        A pull of the missing model is started in the background and left
        running; its result is only logged.
        """
        resp = await client.get("/api/tags")
        if not resp.is_success:
            raise UpstreamError(resp.text, status_code=resp.status_code)
        try:
            tags = resp.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Invalid model list: {resp.text}", status_code=resp.status_code
            ) from exc
        models = tags.get("models") if isinstance(tags, dict) else None
        names = {m.get("name") for m in models or [] if isinstance(m, dict)}
        if model_name in names:
            return

        logger.info("Model %s not found on %s, pulling it", model_name, self.config.url)
        task = asyncio.create_task(self._pull(model_name))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        raise ModelNotReadyError(model_name)

    async def _pull(self, model_name: str) -> None:
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/api/pull", json={"name": model_name, "stream": False}
                )
            logger.info("Pull of %s finished with status %s", model_name, resp.status_code)
        except httpx.HTTPError as exc:
            logger.warning("Pull of %s failed: %r", model_name, exc)

    async def _stream_tokens(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        prompt: str,
    ) -> AsyncIterator[TokenEvent]:
        generated_text = ""
        token_id = 0

        self.transcript.begin(prompt)
        try:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Stopping on malformed chunk: %r", line)
                    return
                if not isinstance(data, dict):
                    logger.debug("Stopping on non-object chunk: %r", line)
                    return

                text = data.get("response") or ""
                if not isinstance(text, str):
                    text = str(text)
                if not data.get("done"):
                    generated_text += text
                    self.transcript.write(text)
                    yield TokenEvent(id=token_id, text=text)
                    token_id += 1
                else:
                    self.transcript.end()
                    yield TokenEvent(
                        id=token_id,
                        text=text,
                        is_final=True,
                        full_text=generated_text,
                    )
                    return
        except (httpx.HTTPError, UnicodeDecodeError) as exc:
            logger.warning("Generation stream from %s ended early: %r", self.config.url, exc)
        finally:
            await response.aclose()
            await client.aclose()


def endpoint_ollama(
    *,
    model: ModelSpec,
    weight: int = 1,
    url: str = DEFAULT_OLLAMA_URL,
    ollama_name: Optional[str] = None,
    transcript: Optional[Transcript] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> OllamaEndpoint:
    """Validate the configuration and build an :class:`OllamaEndpoint`.

    Raises:
        ConfigurationError: If ``weight``, ``url`` or ``ollama_name`` is
            invalid.
    """
    cfg = OllamaEndpointConfig(model=model, weight=weight, url=url, ollama_name=ollama_name)
    if transcript is None:
        transcript = Transcript(settings.OLLAMA_OUTPUT_LOG)
    return OllamaEndpoint(config=cfg, transcript=transcript, transport=transport)
