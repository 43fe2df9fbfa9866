"""
Tests for the output broadcaster.

Tests cover:
- Replay of the transcript to new subscribers
- Live delivery in publish order, exactly once per subscriber
- End-of-stream after close, including for late subscribers
- Timeouts and detaching
"""

import threading

import pytest

from jobengine.execution.broadcast import ChannelClosed, OutputChannel


class TestPublish:
    def test_transcript_keeps_order(self):
        channel = OutputChannel()
        for chunk in ("a\n", "b\n", "c\n"):
            channel.publish(chunk)
        assert channel.transcript() == ["a\n", "b\n", "c\n"]
        assert channel.text() == "a\nb\nc\n"

    def test_publish_after_close_raises(self):
        channel = OutputChannel()
        channel.close()
        with pytest.raises(ChannelClosed):
            channel.publish("late\n")

    def test_close_is_idempotent(self):
        channel = OutputChannel()
        channel.close()
        channel.close()
        assert channel.closed


class TestSubscribe:
    def test_replay_then_live(self):
        channel = OutputChannel()
        channel.publish("before\n")
        sub = channel.subscribe()

        assert sub.next_chunk(timeout=1) == "before\n"
        channel.publish("after\n")
        assert sub.next_chunk(timeout=1) == "after\n"

    def test_late_subscriber_gets_transcript_then_end(self):
        channel = OutputChannel()
        channel.publish("one\n")
        channel.publish("two\n")
        channel.close()

        sub = channel.subscribe()
        assert list(sub) == ["one\n", "two\n"]
        assert sub.ended

    def test_each_subscriber_sees_every_chunk_once(self):
        channel = OutputChannel()
        subs = [channel.subscribe() for _ in range(3)]
        results: list[list[str]] = [[] for _ in subs]

        def reader(i):
            results[i].extend(subs[i])

        threads = [threading.Thread(target=reader, args=(i,)) for i in range(len(subs))]
        for t in threads:
            t.start()
        expected = [f"{n}\n" for n in range(200)]
        for chunk in expected:
            channel.publish(chunk)
        channel.close()
        for t in threads:
            t.join(5)

        assert all(r == expected for r in results)

    def test_slow_reader_does_not_block_publisher(self):
        channel = OutputChannel()
        channel.subscribe()  # never read
        for n in range(1000):
            channel.publish(f"{n}\n")
        channel.close()
        assert len(channel.transcript()) == 1000

    def test_next_chunk_timeout(self):
        channel = OutputChannel()
        sub = channel.subscribe()
        assert sub.next_chunk(timeout=0.05) is None
        assert not sub.ended

    def test_next_chunk_end_of_stream(self):
        channel = OutputChannel()
        sub = channel.subscribe()
        channel.close()
        assert sub.next_chunk(timeout=1) is None
        assert sub.ended

    def test_close_wakes_blocked_reader(self):
        channel = OutputChannel()
        sub = channel.subscribe()
        received = []
        t = threading.Thread(target=lambda: received.extend(sub))
        t.start()
        channel.publish("x\n")
        channel.close()
        t.join(5)
        assert not t.is_alive()
        assert received == ["x\n"]


class TestDetach:
    def test_subscriber_count(self):
        channel = OutputChannel()
        with channel.subscribe():
            assert channel.subscriber_count == 1
        assert channel.subscriber_count == 0

    def test_detached_subscription_reports_end(self):
        channel = OutputChannel()
        channel.publish("a\n")
        sub = channel.subscribe()
        sub.close()
        assert sub.ended
        assert list(sub) == []
        # transcript is unaffected
        assert channel.transcript() == ["a\n"]
