"""Tests for the Ollama NDJSON stream decoder."""
import json

from ec2chat.backends import NDJSONDecoder, extract_fragment


def _line(content, done=False):
    return json.dumps({"message": {"role": "assistant", "content": content}, "done": done}, ensure_ascii=False) + "\n"


BODY = (
    _line("Hel") + _line("lo, ") + _line("wörld ") + _line("☕") + _line("", done=True)
).encode("utf-8")

EXPECTED = ["Hel", "lo, ", "wörld ", "☕"]


def _decode(pieces):
    decoder = NDJSONDecoder()
    out = []
    for piece in pieces:
        out.extend(decoder.feed(piece))
    out.extend(decoder.flush())
    return out


def test_whole_body_in_one_read():
    assert _decode([BODY]) == EXPECTED


def test_every_single_split_point_gives_same_fragments():
    # Includes splits inside multi-byte characters.
    for i in range(len(BODY) + 1):
        assert _decode([BODY[:i], BODY[i:]]) == EXPECTED, i


def test_byte_at_a_time():
    assert _decode([BODY[i:i + 1] for i in range(len(BODY))]) == EXPECTED


def test_trailing_line_without_newline_emitted_once_at_end():
    decoder = NDJSONDecoder()
    tail = json.dumps({"message": {"content": "end"}, "done": True}).encode()

    assert decoder.feed(_line("start").encode() + tail) == ["start"]
    assert decoder.flush() == ["end"]
    assert decoder.flush() == []


def test_malformed_line_is_skipped():
    body = (_line("a") + "{not json\n" + _line("b")).encode()
    assert _decode([body]) == ["a", "b"]


def test_malformed_leftover_is_ignored():
    assert _decode([_line("a").encode() + b'{"message": {"con']) == ["a"]


def test_blank_lines_ignored():
    assert _decode([b"\n\n" + _line("x").encode() + b"\r\n\n"]) == ["x"]


def test_extract_fragment_shapes():
    assert extract_fragment({"message": {"content": "hi"}}) == "hi"
    assert extract_fragment({"message": {"content": ""}}) is None
    assert extract_fragment({"done": True}) is None
    assert extract_fragment({"message": "hi"}) is None
    assert extract_fragment([1, 2]) is None
