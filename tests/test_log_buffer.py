import asyncio

from depot_packer.core.log_buffer import ConsoleLogBuffer


def test_trim_drops_oldest_lines_in_one_batch():
    buffer = ConsoleLogBuffer(cap=5, margin=2)
    for index in range(7):
        assert not buffer.append(f"line {index}")
    assert len(buffer) == 7

    assert buffer.append("line 7")
    assert buffer.lines == [f"line {index}" for index in range(3, 8)]
    assert buffer.needs_full_render


def test_length_never_exceeds_cap_plus_margin():
    buffer = ConsoleLogBuffer(cap=10, margin=3)
    for index in range(200):
        buffer.append(str(index))
        assert len(buffer) <= 13
    assert buffer.lines[-1] == "199"


def test_flush_is_full_first_then_incremental():
    buffer = ConsoleLogBuffer(job_id="job-1")
    buffer.append("a")
    buffer.append("b")

    first = buffer.flush()
    assert first.full
    assert first.lines == ["a", "b"]
    assert first.job_id == "job-1"

    buffer.append("c")
    second = buffer.flush()
    assert not second.full
    assert second.lines == ["c"]

    assert buffer.flush() is None
    assert not buffer.dirty


def test_trim_forces_full_render():
    buffer = ConsoleLogBuffer(cap=3, margin=1)
    for line in "abcd":
        buffer.append(line)
    buffer.flush()

    buffer.append("e")
    chunk = buffer.flush()
    assert chunk.full
    assert chunk.lines == ["c", "d", "e"]


def test_appends_are_coalesced_into_one_flush():
    received = []

    async def scenario():
        buffer = ConsoleLogBuffer(flush_interval=0.01)
        buffer.attach(received.append)
        buffer.append("one")
        buffer.append("two")
        buffer.append("three")
        assert buffer.flush_scheduled
        await asyncio.sleep(0.05)

        buffer.append("four")
        await asyncio.sleep(0.05)
        buffer.detach()

    asyncio.run(scenario())

    assert len(received) == 2
    assert received[0].full
    assert received[0].lines == ["one", "two", "three"]
    assert not received[1].full
    assert received[1].lines == ["four"]


def test_attach_requests_full_render():
    received = []
    buffer = ConsoleLogBuffer()
    buffer.append("x")
    buffer.flush()

    buffer.attach(received.append)
    buffer.flush()
    assert received[0].full
    assert received[0].lines == ["x"]
