"""Line Splitter のテスト"""

import asyncio

from livetail.splitter import SOURCE_RESET, LineSplitter, split_lines


def test_partial_line_is_held_until_terminator():
    splitter = LineSplitter()
    assert splitter.feed(b"a\nb\nc") == ["a", "b"]
    assert splitter.pending == "c"
    assert splitter.feed(b"\n") == ["c"]


def test_partial_line_is_flushed_at_end_of_stream():
    splitter = LineSplitter()
    splitter.feed(b"a\nb\nc")
    assert splitter.flush() == ["c"]
    assert splitter.flush() == []


def test_empty_lines_kept():
    assert LineSplitter(keep_empty_lines=True).feed(b"a\n\nb\n") == ["a", "", "b"]


def test_empty_lines_dropped():
    assert LineSplitter(keep_empty_lines=False).feed(b"a\n\nb\n") == ["a", "b"]


def test_crlf_split_across_chunks_is_one_terminator():
    splitter = LineSplitter()
    assert splitter.feed(b"a\r") == []
    assert splitter.feed(b"\nb\r\n") == ["a", "b"]
    assert splitter.flush() == []


def test_lone_carriage_return_terminates_line():
    splitter = LineSplitter()
    assert splitter.feed(b"a\rb\r") == ["a"]
    assert splitter.flush() == ["b"]


def test_multibyte_character_split_across_chunks():
    data = "héllo\n".encode("utf-8")
    cut = data.index(b"\xc3") + 1
    splitter = LineSplitter()
    assert splitter.feed(data[:cut]) == []
    assert splitter.feed(data[cut:]) == ["héllo"]


def test_invalid_utf8_is_replaced():
    assert LineSplitter().feed(b"\xff\n") == ["�"]


def test_split_lines_over_async_chunks():
    async def chunks():
        yield b"one\ntw"
        yield b"o\n\nthree"

    async def collect(keep):
        return [line async for line in split_lines(chunks(), keep_empty_lines=keep)]

    assert asyncio.run(collect(True)) == ["one", "two", "", "three"]
    assert asyncio.run(collect(False)) == ["one", "two", "three"]


def test_source_reset_ends_the_partial_line():
    async def chunks():
        yield b"old-partial"
        yield SOURCE_RESET
        yield b"\xe3\x81"
        yield SOURCE_RESET
        yield b"new-line\n"

    async def collect():
        return [line async for line in split_lines(chunks())]

    assert asyncio.run(collect()) == ["old-partial", "�", "new-line"]
