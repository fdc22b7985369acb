"""Tests for chunked transport."""

import random

import pytest

from relay_core.exceptions import CapacityError, JobNotFoundError, TransportError
from relay_backend.transport import (
    Chunk,
    ChunkReceiver,
    ChunkSender,
    checksum,
    choose_chunk_size,
    decode_payload,
    encode_payload,
    split_payload,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestChunkSize:
    def test_small_payload_travels_whole(self):
        assert choose_chunk_size(10_000) == 10_000
        assert choose_chunk_size(50 * 1024) == 50 * 1024

    def test_medium_and_large_payloads(self):
        assert choose_chunk_size(50 * 1024 + 1) == 50_000
        assert choose_chunk_size(1024 * 1024) == 50_000
        assert choose_chunk_size(1024 * 1024 + 1) == 100_000

    def test_fixed_size_when_not_adaptive(self):
        assert choose_chunk_size(10, default=4, adaptive=False) == 4


class TestSplitAndAssemble:
    def test_shuffled_chunks_reassemble(self):
        data = encode_payload({"objects": list(range(2000))})
        chunks = split_payload("s1", data, 100)
        random.Random(7).shuffle(chunks)
        receiver = ChunkReceiver(max_total_chunks=10_000)

        for chunk in chunks:
            receiver.receive(chunk)

        assert receiver.is_complete("s1")
        assembled = receiver.assemble("s1", checksum(data))
        assert decode_payload(assembled) == {"objects": list(range(2000))}
        assert receiver.session_count == 0

    def test_indices_are_one_based(self):
        chunks = split_payload("s1", "abcdefg", 3)
        assert [(c.index, c.total, c.data) for c in chunks] == [(1, 3, "abc"), (2, 3, "def"), (3, 3, "g")]

    def test_empty_payload_is_one_chunk(self):
        assert split_payload("s1", "", 10) == [Chunk("s1", 1, 1, "")]

    def test_duplicates_overwrite_and_are_counted(self):
        receiver = ChunkReceiver()
        receiver.receive(Chunk("s1", 1, 2, "stale"))
        receiver.receive(Chunk("s1", 1, 2, "ab"))
        status = receiver.receive(Chunk("s1", 2, 2, "cd"))

        assert status["duplicates"] == 1
        assert status["complete"] is True
        assert receiver.assemble("s1") == "abcd"

    def test_incomplete_session_reports_missing(self):
        receiver = ChunkReceiver()
        receiver.begin_session("s1", 3)
        receiver.receive(Chunk("s1", 2, 3, "x"))

        with pytest.raises(TransportError) as excinfo:
            receiver.assemble("s1")

        assert excinfo.value.counters["missing"] == [1, 3]
        assert receiver.status("s1")["received"] == 1

    def test_checksum_mismatch(self):
        receiver = ChunkReceiver()
        receiver.receive(Chunk("s1", 1, 1, "payload"))
        with pytest.raises(TransportError, match="Checksum"):
            receiver.assemble("s1", checksum("other"))

    def test_undecodable_payload(self):
        with pytest.raises(TransportError):
            decode_payload("definitely not deflate")

    def test_chunk_dict_conversion(self):
        chunk = Chunk("s1", 2, 5, "data")
        assert Chunk.from_dict(chunk.to_dict()) == chunk


class TestReceiverLimits:
    def test_declared_total_is_bounded(self):
        receiver = ChunkReceiver(max_total_chunks=4)
        with pytest.raises(TransportError):
            receiver.begin_session("s1", 0)
        with pytest.raises(TransportError):
            receiver.begin_session("s1", 5)

    def test_session_count_is_bounded(self):
        receiver = ChunkReceiver(max_sessions=2)
        receiver.begin_session("a", 1)
        receiver.begin_session("b", 1)

        with pytest.raises(CapacityError):
            receiver.begin_session("c", 1)
        # Re-opening an existing session is not a new session.
        assert receiver.begin_session("a", 1, {"transfer_id": "t1"})["session_id"] == "a"
        assert receiver.metadata("a") == {"transfer_id": "t1"}

    def test_total_must_stay_consistent(self):
        receiver = ChunkReceiver()
        receiver.begin_session("s1", 2)
        with pytest.raises(TransportError):
            receiver.begin_session("s1", 3)
        with pytest.raises(TransportError):
            receiver.receive(Chunk("s1", 1, 3, "x"))

    def test_index_out_of_range(self):
        receiver = ChunkReceiver()
        with pytest.raises(TransportError):
            receiver.receive(Chunk("s1", 0, 2, "x"))
        with pytest.raises(TransportError):
            receiver.receive(Chunk("s1", 3, 2, "x"))

    def test_idle_sessions_expire(self):
        clock = FakeClock()
        receiver = ChunkReceiver(max_session_age=60.0, clock=clock)
        receiver.begin_session("old", 2)
        clock.now += 30
        receiver.begin_session("new", 2)
        clock.now += 31

        assert receiver.prune() == ["old"]
        with pytest.raises(JobNotFoundError):
            receiver.status("old")
        assert receiver.status("new")["age_seconds"] == 31.0

    def test_receiving_keeps_session_alive(self):
        clock = FakeClock()
        receiver = ChunkReceiver(max_session_age=60.0, clock=clock)
        receiver.begin_session("s1", 2)
        clock.now += 50
        receiver.receive(Chunk("s1", 1, 2, "x"))
        clock.now += 50
        assert receiver.prune() == []


class TestSender:
    @pytest.mark.asyncio
    async def test_sends_in_order(self):
        received = []

        async def send(chunk):
            received.append(chunk.index)

        sender = ChunkSender(send, retries=0)
        metrics = await sender.send_all(split_payload("s1", "x" * 25, 10))

        assert received == [1, 2, 3]
        assert metrics["chunks"] == 3
        assert metrics["bytes"] == 25
        assert metrics["retries"] == 0

    @pytest.mark.asyncio
    async def test_retries_with_backoff(self):
        failures = {2: 2}
        delays = []

        async def send(chunk):
            if failures.get(chunk.index):
                failures[chunk.index] -= 1
                raise TransportError("connection reset")

        async def fake_sleep(seconds):
            delays.append(seconds)

        sender = ChunkSender(send, retries=3, retry_delay=0.5, sleep=fake_sleep)
        metrics = await sender.send_all(split_payload("s1", "abcdef", 2))

        assert metrics["retries"] == 2
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        async def send(chunk):
            raise TransportError("unreachable")

        async def fake_sleep(seconds):
            pass

        sender = ChunkSender(send, retries=2, sleep=fake_sleep)
        with pytest.raises(TransportError) as excinfo:
            await sender.send_all(split_payload("s1", "abc", 3))
        assert excinfo.value.counters["attempts"] == 3

    @pytest.mark.asyncio
    async def test_pacing_sleeps_when_ahead(self):
        delays = []

        async def send(chunk):
            pass

        async def fake_sleep(seconds):
            delays.append(seconds)

        sender = ChunkSender(send, max_bytes_per_second=10, sleep=fake_sleep)
        await sender.send_all(split_payload("s1", "x" * 20, 10))

        assert len(delays) == 2
        assert delays[1] > 1.5
