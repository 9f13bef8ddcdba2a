"""Tests for chat title cleaning and generation."""
import httpx
import pytest

from conftest import FakeBackend, FakeCompletions, FakeMonitor, fake_openai
from ec2chat.backends import CloudBackend, LocalBackend
from ec2chat.errors import ErrorKind, MissingCredentialError, ServiceUnavailableError, UpstreamError
from ec2chat.models import Provider
from ec2chat.relay import ChatRelay
from ec2chat.titles import TitleGenerator, clean_title, fallback_title, title_prompt


def _generator(local=None, cloud=None):
    return TitleGenerator(ChatRelay({
        Provider.LOCAL: local or FakeBackend(),
        Provider.CLOUD: cloud or FakeBackend(),
    }))


@pytest.mark.parametrize("raw,expected", [
    ('<think>ok</think>"Quicksort Explained"', "Quicksort Explained"),
    ("<think>\nlet me think\n</think>\n\n'Sorting Basics'", "Sorting Basics"),
    ("Trip Planning<think>unfinished reasoning", "Trip Planning"),
    ("<THINK>x</THINK>Case Insensitive", "Case Insensitive"),
    ("Multi\nLine\nTitle", "Multi Line Title"),
    ("Plain Title", "Plain Title"),
    ("<think>only thoughts", ""),
])
def test_clean_title(raw, expected):
    assert clean_title(raw) == expected


def test_clean_title_truncates_long_titles():
    title = clean_title("word " * 20)

    assert len(title) == 50
    assert title.endswith("...")


def test_clean_title_keeps_exactly_fifty_characters():
    raw = "x" * 50
    assert clean_title(raw) == raw


def test_fallback_is_first_forty_characters():
    message = "Explain the difference between processes and threads in detail"
    assert fallback_title(message) == message[:40]
    assert fallback_title("short") == "short"


def test_prompt_quotes_message():
    assert title_prompt("hi there").endswith('this message: "hi there"')


@pytest.mark.asyncio
async def test_generate_cleans_upstream_title():
    cloud = FakeBackend(title='<think>ok</think>"Quicksort Explained"')

    title = await _generator(cloud=cloud).generate("Explain quicksort to me", Provider.CLOUD)

    assert title == "Quicksort Explained"
    assert cloud.prompts == [title_prompt("Explain quicksort to me")]


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    UpstreamError("Failed to generate response."),
    MissingCredentialError("HF_TOKEN not configured"),
    ServiceUnavailableError("EC2 instance is not running"),
    httpx.ConnectError("refused"),
    ValueError("bad json"),
])
async def test_generate_falls_back_on_failure(error):
    message = "Can you help me write a cover letter for a job application?"
    local = FakeBackend(complete_error=error)

    title = await _generator(local=local).generate(message, Provider.LOCAL)

    assert title == message[:40]


@pytest.mark.asyncio
async def test_empty_title_falls_back():
    result = await _generator(local=FakeBackend(title="<think>hmm")).request_title("hello", Provider.LOCAL)

    assert not result.ok
    assert result.error == ErrorKind.MALFORMED
    assert result.unwrap_or("hello") == "hello"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[], "just text", {"response": 5}, {"done": True}])
async def test_unexpected_generate_payload_falls_back(body):
    message = "Summarize the plot of Moby Dick in two sentences"

    def handler(request):
        return httpx.Response(200, json=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        local = LocalBackend(FakeMonitor(), http, model="llama3")
        title = await _generator(local=local).generate(message, Provider.LOCAL)

    assert title == message[:40]


@pytest.mark.asyncio
async def test_non_text_cloud_content_falls_back():
    message = "Plan a three day trip to Lisbon"
    cloud = CloudBackend(api_key=None, model="kimi", client=fake_openai(FakeCompletions(reply=["not", "text"])))

    title = await _generator(cloud=cloud).generate(message, Provider.CLOUD)

    assert title == message[:40]


@pytest.mark.asyncio
async def test_unexpected_error_falls_back():
    message = "Why is the sky blue?"
    local = FakeBackend(complete_error=RuntimeError("boom"))

    result = await _generator(local=local).request_title(message, Provider.LOCAL)

    assert result.error == ErrorKind.UPSTREAM
    assert result.unwrap_or(fallback_title(message)) == message


@pytest.mark.asyncio
async def test_non_string_title_is_malformed():
    result = await _generator(local=FakeBackend(title=None)).request_title("hi", Provider.LOCAL)

    assert result.error == ErrorKind.MALFORMED
