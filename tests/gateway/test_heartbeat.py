"""Tests for HeartbeatScheduler."""

import asyncio

import pytest

from gatewire.gateway.heartbeat import HeartbeatScheduler


class Recorder:
    def __init__(self, seq=None):
        self.sent: list[int | None] = []
        self.zombies = 0
        self.seq = seq

    async def send(self, seq):
        self.sent.append(seq)

    def sequence(self):
        return self.seq

    def zombie(self):
        self.zombies += 1


def make_scheduler(rec: Recorder, jitter: float = 0.0) -> HeartbeatScheduler:
    return HeartbeatScheduler(rec.send, rec.sequence, rec.zombie, jitter_fn=lambda: jitter)


class TestFirstDelay:
    @pytest.mark.parametrize("jitter", [0.0, 0.25, 0.5, 0.999999, 1.0])
    def test_strictly_inside_interval(self, jitter):
        sched = HeartbeatScheduler(None, None, None, jitter_fn=lambda: jitter)
        delay = sched.first_delay(45.0)
        assert 0 < delay < 45.0

    def test_scales_with_jitter(self):
        sched = HeartbeatScheduler(None, None, None, jitter_fn=lambda: 0.5)
        assert sched.first_delay(40.0) == pytest.approx(20.0)


@pytest.mark.smoke
class TestBeating:
    async def test_acked_beats_continue(self):
        rec = Recorder(seq=7)
        sched = make_scheduler(rec)
        sched.start(20)  # 20 ms

        for _ in range(3):
            while not sched.ack_pending:
                await asyncio.sleep(0.001)
            sched.on_ack_received()
        await asyncio.sleep(0.005)

        assert rec.zombies == 0
        assert len(rec.sent) >= 3
        assert set(rec.sent) == {7}
        assert sched.running
        sched.stop()

    async def test_missed_ack_fires_zombie_once(self):
        rec = Recorder(seq=3)
        sched = make_scheduler(rec)
        sched.start(20)

        await asyncio.sleep(0.15)

        assert rec.sent == [3]
        assert rec.zombies == 1
        assert not sched.running

    async def test_async_zombie_callback_is_awaited(self):
        fired = asyncio.Event()

        async def on_zombie():
            fired.set()

        async def send(_seq):
            pass

        sched = HeartbeatScheduler(send, lambda: None, on_zombie, jitter_fn=lambda: 0.0)
        sched.start(10)
        await asyncio.wait_for(fired.wait(), 1.0)

    async def test_sequence_read_at_send_time(self):
        rec = Recorder(seq=None)
        sched = make_scheduler(rec)
        sched.start(20)
        while not rec.sent:
            await asyncio.sleep(0.001)
        sched.on_ack_received()
        rec.seq = 12
        while len(rec.sent) < 2:
            await asyncio.sleep(0.001)
        sched.stop()

        assert rec.sent[:2] == [None, 12]

    async def test_send_failure_stops_loop_quietly(self):
        async def send(_seq):
            raise ConnectionError("socket gone")

        zombies = []
        sched = HeartbeatScheduler(send, lambda: None, lambda: zombies.append(1), jitter_fn=lambda: 0.0)
        sched.start(10)
        await asyncio.sleep(0.05)

        assert not sched.running
        assert zombies == []


class TestLifecycle:
    async def test_stop_cancels_timer(self):
        rec = Recorder()
        sched = make_scheduler(rec, jitter=0.5)
        sched.start(100)
        assert sched.running

        sched.stop()
        await asyncio.sleep(0.08)

        assert not sched.running
        assert rec.sent == []
        assert not sched.ack_pending

    async def test_restart_replaces_interval(self):
        rec = Recorder()
        sched = make_scheduler(rec, jitter=0.5)
        sched.start(60_000)
        first = sched._task

        sched.start(20)
        await asyncio.sleep(0.001)

        assert sched.interval == pytest.approx(0.02)
        assert first.cancelled() or first.done()
        sched.stop()

    @pytest.mark.parametrize("interval", [0, -5])
    async def test_rejects_non_positive_interval(self, interval):
        sched = make_scheduler(Recorder())
        with pytest.raises(ValueError):
            sched.start(interval)
        assert not sched.running

    async def test_beat_now_and_latency(self):
        rec = Recorder(seq=4)
        sched = make_scheduler(rec)
        assert sched.latency is None
        assert sched.last_ack is None

        await sched.beat_now()
        assert rec.sent == [4]
        assert sched.ack_pending

        sched.on_ack_received()
        assert not sched.ack_pending
        assert sched.latency is not None and sched.latency >= 0
        assert sched.last_ack is not None

    def test_interval_none_before_start(self):
        assert make_scheduler(Recorder()).interval is None
