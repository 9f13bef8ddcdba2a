"""
Best-effort chat title generation.
"""
import logging
import re

import httpx

from ec2chat.errors import ErrorKind, RelayError, Result
from ec2chat.models import Provider
from ec2chat.relay import ChatRelay

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 50
FALLBACK_LENGTH = 40

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
_THINK_UNTERMINATED = re.compile(r"<think>[\s\S]*$", re.IGNORECASE)
_WRAPPING_QUOTES = re.compile(r"^[\"']|[\"']$")


def title_prompt(message: str) -> str:
    return (
        "Generate a short title (3-6 words, no quotes, no punctuation at the end) "
        f"for a chat that starts with this message: \"{message}\""
    )


def fallback_title(message: str) -> str:
    return message[:FALLBACK_LENGTH]


def clean_title(raw: str) -> str:
    """Strip reasoning blocks, wrapping quotes and newlines; cap the length."""
    title = _THINK_BLOCK.sub("", raw)
    title = _THINK_UNTERMINATED.sub("", title)
    title = _WRAPPING_QUOTES.sub("", title.strip())
    title = title.replace("\n", " ").strip()

    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH - 3] + "..."
    return title


class TitleGenerator:
    def __init__(self, relay: ChatRelay):
        self._relay = relay

    async def request_title(self, message: str, provider: Provider) -> Result[str]:
        """Ask the provider for a title; failures come back as a ``Result``."""
        try:
            raw = await self._relay.backend(provider).complete(title_prompt(message))
        except RelayError as e:
            logger.info("Title generation unavailable (%s): %s", provider.value, e.message)
            return Result.failure(e.kind, e.message)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Title generation failed (%s): %s", provider.value, e)
            return Result.failure(ErrorKind.UPSTREAM, str(e))
        except Exception as e:
            logger.exception("Unexpected error generating title (%s)", provider.value)
            return Result.failure(ErrorKind.UPSTREAM, str(e))

        if not isinstance(raw, str):
            return Result.failure(ErrorKind.MALFORMED, "non-text title")
        title = clean_title(raw)
        if not title:
            return Result.failure(ErrorKind.MALFORMED, "empty title")
        return Result.success(title)

    async def generate(self, message: str, provider: Provider) -> str:
        result = await self.request_title(message, provider)
        return result.unwrap_or(fallback_title(message))
