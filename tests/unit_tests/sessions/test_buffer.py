import pytest

from uploads_api.errors import BufferCapacityError
from uploads_api.sessions.buffer import ChunkBuffer


def test_put_then_get():
    buffer = ChunkBuffer()
    buffer.put("s1", 1, b"abc")

    assert list(buffer.ordered("s1", [1])) == [(1, b"abc")]
    assert ("s1", 1) in buffer
    assert ("s1", 2) not in buffer
    assert buffer.total_bytes == 3


def test_rewriting_a_part_replaces_bytes_and_accounting():
    buffer = ChunkBuffer()
    buffer.put("s1", 1, b"aaaa")
    buffer.put("s1", 1, b"bb")

    assert list(buffer.ordered("s1", [1])) == [(1, b"bb")]
    assert buffer.part_size("s1", 1) == 2
    assert buffer.session_bytes("s1") == 2
    assert buffer.total_bytes == 2


def test_ordered_yields_ascending_part_numbers():
    buffer = ChunkBuffer()
    for part_number, data in [(3, b"c"), (1, b"a"), (2, b"b")]:
        buffer.put("s1", part_number, data)

    assert list(buffer.ordered("s1", [2, 3, 1])) == [(1, b"a"), (2, b"b"), (3, b"c")]


def test_cap_rejects_growth_but_keeps_existing_bytes():
    buffer = ChunkBuffer(max_bytes=5)
    buffer.put("s1", 1, b"abcd")

    with pytest.raises(BufferCapacityError):
        buffer.put("s2", 1, b"xy")

    assert list(buffer.ordered("s1", [1])) == [(1, b"abcd")]
    assert ("s2", 1) not in buffer
    assert buffer.total_bytes == 4


def test_cap_allows_shrinking_a_part_when_full():
    buffer = ChunkBuffer(max_bytes=4)
    buffer.put("s1", 1, b"abcd")
    buffer.put("s1", 1, b"ab")

    assert buffer.total_bytes == 2


def test_release_frees_only_that_session():
    buffer = ChunkBuffer()
    buffer.put("s1", 1, b"abc")
    buffer.put("s1", 2, b"de")
    buffer.put("s2", 1, b"zz")

    assert buffer.release("s1") == 5
    assert buffer.release("s1") == 0
    assert buffer.total_bytes == 2
    assert list(buffer.ordered("s2", [1])) == [(1, b"zz")]
