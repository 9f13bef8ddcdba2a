"""
Streaming chat relay: forwards a conversation to the selected backend and
re-emits its reply as a flat stream of text.
"""
import logging
from typing import AsyncIterator, Dict, List

from ec2chat.backends import ChatBackend
from ec2chat.errors import RelayError
from ec2chat.models import ChatTurn, Provider

logger = logging.getLogger(__name__)


class ChatRelay:
    """Selects a ``ChatBackend`` by provider and normalizes its output.

    Nothing is retried. A failure before the first chunk raises from
    ``open``; a failure mid-stream ends the stream with the error after
    whatever was already emitted.
    """

    def __init__(self, backends: Dict[Provider, ChatBackend]):
        self._backends = backends

    def backend(self, provider: Provider) -> ChatBackend:
        try:
            return self._backends[provider]
        except KeyError:
            raise RelayError(f"Unsupported provider: {provider}", status_code=400) from None

    async def open(self, turns: List[ChatTurn], provider: Provider) -> AsyncIterator[str]:
        backend = self.backend(provider)
        chunks = await backend.open(turns)
        logger.info("Streaming %s reply for %d turns", provider.value, len(turns))
        return self._relay(chunks, provider)

    async def _relay(self, chunks: AsyncIterator[str], provider: Provider) -> AsyncIterator[str]:
        emitted = 0
        try:
            async for chunk in chunks:
                emitted += len(chunk)
                yield chunk
        except Exception:
            logger.exception("%s stream failed after %d characters", provider.value, emitted)
            raise
        finally:
            # Also runs when the consumer goes away; releases the upstream.
            await chunks.aclose()
        logger.info("%s stream finished (%d characters)", provider.value, emitted)
