"""Shared fixtures and fakes for the upstream services."""
from types import SimpleNamespace
from typing import List, Optional

import pytest
import pytest_asyncio

from ec2chat import database
from ec2chat.backends import ChatBackend
from ec2chat.models import InstanceState, InstanceStatus


class FakeMonitor:
    """Stands in for InstanceMonitor where only get_status is needed."""

    def __init__(self, state=InstanceState.RUNNING, address: Optional[str] = "10.0.0.5"):
        self.status = InstanceStatus(state=state, public_address=address)
        self.calls = 0

    async def get_status(self) -> InstanceStatus:
        self.calls += 1
        return self.status


class FakeBackend(ChatBackend):
    """Backend emitting fixed chunks, optionally failing."""

    def __init__(self, chunks: List[str] = (), title: str = "", open_error=None, complete_error=None):
        self.chunks = list(chunks)
        self.title = title
        self.open_error = open_error
        self.complete_error = complete_error
        self.opened_with = None
        self.prompts: List[str] = []

    async def open(self, turns):
        if self.open_error is not None:
            raise self.open_error
        self.opened_with = list(turns)
        return self._iter()

    async def _iter(self):
        for chunk in self.chunks:
            yield chunk

    async def complete(self, prompt, max_tokens=30):
        self.prompts.append(prompt)
        if self.complete_error is not None:
            raise self.complete_error
        return self.title


def delta(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    def __init__(self, chunks, error: Optional[Exception] = None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, stream=None, reply: str = "", error: Optional[Exception] = None):
        self.stream = stream
        self.reply = reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            return self.stream
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))]
        )


def fake_openai(completions: FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "chats.db"
    monkeypatch.setattr(database, "DATABASE_PATH", path)
    return path


@pytest_asyncio.fixture
async def db(db_path):
    await database.init_database()
    return db_path
