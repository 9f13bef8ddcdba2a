"""
Chat backends: the self-hosted Ollama model on the EC2 instance and the
hosted OpenAI-compatible API.

Both expose the same two operations so the relay and the title generator
never branch on the provider themselves.
"""
import codecs
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, List, Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from ec2chat.errors import MissingCredentialError, ServiceUnavailableError, UpstreamError
from ec2chat.instance import InstanceMonitor
from ec2chat.models import ChatTurn, InstanceState

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_PROMPT = "Describe this image."
GENERIC_FAILURE = "Failed to generate response."


class ChatBackend(ABC):
    """A chat-completion upstream."""

    @abstractmethod
    async def open(self, turns: List[ChatTurn]) -> AsyncIterator[str]:
        """Connect upstream and return an iterator of text fragments.

        Precondition and connection failures raise here, before the first
        fragment, so the caller can still answer with an error status.
        """

    @abstractmethod
    async def complete(self, prompt: str, max_tokens: int = 30) -> str:
        """Single non-streaming completion for a one-shot prompt."""


class NDJSONDecoder:
    """Incremental decoder for Ollama's newline-delimited JSON stream.

    Bytes may be split anywhere, including inside a multi-byte character;
    incomplete lines stay buffered until the next ``feed`` or ``flush``.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> List[str]:
        self._buffer += self._decoder.decode(data)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        fragments: List[str] = []
        for line in lines:
            fragment = self._parse_line(line)
            if fragment:
                fragments.append(fragment)
        return fragments

    def flush(self) -> List[str]:
        """Parse whatever is left once the upstream body has ended."""
        leftover = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        fragment = self._parse_line(leftover)
        return [fragment] if fragment else []

    @staticmethod
    def _parse_line(line: str) -> Optional[str]:
        line = line.strip()
        if not line:
            return None
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed NDJSON line: %s", line[:200])
            return None
        return extract_fragment(payload)


def extract_fragment(payload: Any) -> Optional[str]:
    """Return ``message.content`` from an Ollama chat chunk, if present."""
    if not isinstance(payload, dict):
        return None
    message = payload.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class LocalBackend(ChatBackend):
    """Ollama running on the EC2 instance, reached by its public address."""

    def __init__(
        self,
        monitor: InstanceMonitor,
        http_client: httpx.AsyncClient,
        model: str,
        port: int = 11434,
    ):
        self.monitor = monitor
        self.model = model
        self.port = port
        self._http = http_client

    async def _base_url(self) -> str:
        status = await self.monitor.get_status()
        if status.state != InstanceState.RUNNING or not status.public_address:
            raise ServiceUnavailableError("EC2 instance is not running")
        return f"http://{status.public_address}:{self.port}"

    async def open(self, turns: List[ChatTurn]) -> AsyncIterator[str]:
        base_url = await self._base_url()
        # Ollama text models take no attachments; images are dropped here.
        payload = {
            "model": self.model,
            "messages": [{"role": t.role, "content": t.content} for t in turns],
        }
        request = self._http.build_request("POST", f"{base_url}/api/chat", json=payload)

        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("Ollama request to %s failed: %s", base_url, e)
            raise UpstreamError(GENERIC_FAILURE) from e

        if not response.is_success:
            await response.aclose()
            logger.error("Ollama returned %s %s", response.status_code, response.reason_phrase)
            raise UpstreamError(
                f"Ollama API error: {response.reason_phrase}",
                status_code=response.status_code,
            )

        return self._iter_fragments(response)

    async def _iter_fragments(self, response: httpx.Response) -> AsyncIterator[str]:
        decoder = NDJSONDecoder()
        try:
            async for data in response.aiter_bytes():
                for fragment in decoder.feed(data):
                    yield fragment
            for fragment in decoder.flush():
                yield fragment
        finally:
            await response.aclose()

    async def complete(self, prompt: str, max_tokens: int = 30) -> str:
        base_url = await self._base_url()
        try:
            response = await self._http.post(
                f"{base_url}/api/generate",
                json={"model": self.model, "prompt": prompt, "stream": False},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(GENERIC_FAILURE) from e

        if not response.is_success:
            raise UpstreamError(
                f"Ollama API error: {response.reason_phrase}",
                status_code=response.status_code,
            )
        payload = response.json()
        text = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise UpstreamError("Ollama returned an unexpected generate payload")
        return text


def to_cloud_messages(turns: List[ChatTurn]) -> List[dict[str, Any]]:
    """Translate turns into OpenAI chat messages.

    A user turn with images becomes a content list: every image first, then
    a single text part (the turn text, or a default prompt when it is empty).
    """
    messages: List[dict[str, Any]] = []
    for turn in turns:
        if turn.role == "user" and turn.images:
            content: List[dict[str, Any]] = [
                {"type": "image_url", "image_url": {"url": image}}
                for image in turn.images
            ]
            content.append({"type": "text", "text": turn.content or DEFAULT_IMAGE_PROMPT})
            messages.append({"role": turn.role, "content": content})
        else:
            messages.append({"role": turn.role, "content": turn.content})
    return messages


class CloudBackend(ChatBackend):
    """Hosted OpenAI-compatible chat completions (Hugging Face router)."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self._client = client
        if self._client is None and api_key:
            self._client = AsyncOpenAI(base_url=base_url, api_key=api_key)

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise MissingCredentialError("HF_TOKEN not configured")
        return self._client

    async def open(self, turns: List[ChatTurn]) -> AsyncIterator[str]:
        client = self._require_client()
        try:
            stream = await client.chat.completions.create(
                model=self.model,
                messages=to_cloud_messages(turns),
                stream=True,
            )
        except OpenAIError as e:
            logger.error("Cloud chat request failed: %s", e)
            raise UpstreamError(GENERIC_FAILURE) from e

        return self._iter_deltas(stream)

    async def _iter_deltas(self, stream) -> AsyncIterator[str]:
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            await stream.close()

    async def complete(self, prompt: str, max_tokens: int = 30) -> str:
        client = self._require_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            raise UpstreamError(GENERIC_FAILURE) from e

        if not response.choices:
            return ""
        content = response.choices[0].message.content or ""
        if not isinstance(content, str):
            raise UpstreamError("Unexpected completion content")
        return content.strip()
