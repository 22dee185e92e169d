"""CLI interface for the chat backends.

This module implements a simple interactive loop that:

- Builds an Ollama endpoint from the environment settings.
- Reads user input from standard input.
- Streams each answer token by token, keeping the conversation history.
- Runs ``/search <query>`` lines through the web search scraper.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import List

from . import config
from .errors import ChatBackendsError
from .exit_handler import run_exit_handlers
from .ollama import OllamaEndpoint, endpoint_ollama
from .types import GenerationRequest, Message, ModelSpec
from .web_search import search_web_local

SEARCH_COMMAND = "/search"


async def print_search_results(query: str) -> None:
    """Print the links found by :func:`search_web_local` for ``query``."""
    results = await search_web_local(query)
    if not results:
        print("No results.")
        return
    for i, result in enumerate(results, 1):
        print(f"{i}. {result.link}")


async def stream_answer(endpoint: OllamaEndpoint, history: List[Message]) -> str:
    """Stream one assistant answer to standard output and return its text."""
    tokens = await endpoint(GenerationRequest(messages=tuple(history)))
    answer = ""
    async for event in tokens:
        print(event.text, end="", flush=True)
        if event.is_final:
            answer = event.full_text or ""
        else:
            answer += event.text
    print()
    return answer


async def chat_loop(endpoint: OllamaEndpoint) -> None:
    """Run an interactive CLI chat loop.

    This function:

    1. Repeatedly reads user input from standard input.
    2. Runs ``/search`` lines through the web search scraper and prints
       the links.
    3. Sends any other line to the model and prints the streamed answer.

    Errors raised by the endpoint before streaming (model still being
    pulled, server error) are printed and the loop continues.

    Args:
        endpoint: Endpoint used to generate answers.
    """
    history: List[Message] = []

    async with AsyncExitStack() as stack:
        stack.push_async_callback(run_exit_handlers)

        while True:
            try:
                user_text = await asyncio.to_thread(input, "\nYou> ")
            except (EOFError, KeyboardInterrupt):
                print("\nExiting.")
                break

            text = user_text.strip()
            if not text:
                continue
            if text.lower() in {"exit", "quit"}:
                print("Bye.")
                break

            command, _, query = text.partition(" ")
            if command == SEARCH_COMMAND:
                query = query.strip()
                if query:
                    await print_search_results(query)
                continue

            history.append(Message(role="user", content=text))
            print("\nAssistant>")
            try:
                answer = await stream_answer(endpoint, history)
            except ChatBackendsError as exc:
                history.pop()
                print(exc)
                continue
            history.append(Message(role="assistant", content=answer))


def main() -> None:
    """Entry point for the chat-backends CLI.

    This function configures logging, builds the endpoint from
    :mod:`chat_backends.config` and runs the chat loop.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    endpoint = endpoint_ollama(
        model=ModelSpec(name=config.MODEL_NAME),
        url=config.OLLAMA_URL,
        ollama_name=config.OLLAMA_NAME,
    )
    asyncio.run(chat_loop(endpoint))
