"""Environment-driven settings for the chat backends.

Values are read once at import time. A ``.env`` file in the working
directory is loaded first, so every setting below can be overridden there.
"""

import logging
import os

from dotenv import load_dotenv


load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_WEBSEARCH_TIMEOUT_MS = 10000


def _read_timeout(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        logger.warning(
            "Invalid WEBSEARCH_TIMEOUT %r, using %d ms", raw, DEFAULT_WEBSEARCH_TIMEOUT_MS
        )
        return DEFAULT_WEBSEARCH_TIMEOUT_MS
    return value if value > 0 else DEFAULT_WEBSEARCH_TIMEOUT_MS


# NOTE: Defaults target a local Ollama instance serving Llama 3.1.
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://127.0.0.1:11434")
MODEL_NAME = os.getenv("MODEL_NAME", "llama3.1")
OLLAMA_NAME = os.getenv("OLLAMA_NAME") or None

# Empty string disables the transcript.
OLLAMA_OUTPUT_LOG = os.getenv("OLLAMA_OUTPUT_LOG", "ollama_output.log") or None

PLAYWRIGHT_ADBLOCKER = os.getenv("PLAYWRIGHT_ADBLOCKER", "false") == "true"
WEBSEARCH_JAVASCRIPT = os.getenv("WEBSEARCH_JAVASCRIPT", "true") != "false"
WEBSEARCH_TIMEOUT = _read_timeout(
    os.getenv("WEBSEARCH_TIMEOUT", str(DEFAULT_WEBSEARCH_TIMEOUT_MS))
)
