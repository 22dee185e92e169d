"""Process-lifetime teardown callbacks.

Long-lived resources (the shared browser, the Playwright driver) register
their teardown with :func:`on_exit`. The application runs
:func:`run_exit_handlers` from its event loop before it exits.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, List, Union

logger = logging.getLogger(__name__)

ExitCallback = Callable[[], Union[None, Awaitable[None]]]

_handlers: List[ExitCallback] = []


def on_exit(callback: ExitCallback) -> None:
    """Register ``callback`` to run at shutdown."""
    _handlers.append(callback)


async def run_exit_handlers() -> None:
    """Run and unregister every callback, most recently registered first.

    A failing callback is logged and does not prevent the remaining ones
    from running.
    """
    while _handlers:
        callback = _handlers.pop()
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            logger.exception("Exit handler %r failed", callback)
