"""Output broadcaster — retained transcript plus live fan-out.

WHY
───
A deploy's output must be visible live to everyone watching, and still
readable after the job has finished. Callback chains ("on output
received") make ordering and slow-reader behaviour implicit; a channel
with explicit ``publish`` / ``subscribe`` / ``close`` makes them testable.

ARCHITECTURE
────────────
::

    OutputChannel
      ├── .publish(chunk)   ─ append to transcript, wake subscribers
      ├── .subscribe()      ─ Subscription (replay, then live, then end)
      ├── .close()          ─ end-of-stream for everyone, transcript frozen
      └── .transcript()     ─ copy of every chunk published so far

    Subscription (iterator)
      ├── next(sub)              ─ next chunk, blocks until one is published
      ├── .next_chunk(timeout)   ─ same with a timeout (None on timeout)
      └── .close()               ─ detach

Every subscription is a cursor into the one shared transcript, so the
publisher never waits for a reader, a slow reader costs no extra memory,
and each reader sees chunks exactly once and in publish order.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator


class ChannelClosed(Exception):
    """Raised when publishing to a closed channel."""


class _Timeout:
    pass


_TIMEOUT = _Timeout()


class Subscription:
    """A reader's position in an :class:`OutputChannel`."""

    def __init__(self, channel: OutputChannel, position: int):
        self._channel = channel
        self._position = position
        self._detached = False

    @property
    def position(self) -> int:
        return self._position

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        chunk = self._channel._read(self, timeout=None)
        if chunk is None:
            raise StopIteration
        return chunk  # type: ignore[return-value]

    def next_chunk(self, timeout: float | None = None) -> str | None:
        """Return the next chunk, or ``None`` at end-of-stream or on timeout.

        Use :attr:`ended` to tell the two apart.
        """
        chunk = self._channel._read(self, timeout=timeout)
        if chunk is _TIMEOUT:
            return None
        return chunk  # type: ignore[return-value]

    @property
    def ended(self) -> bool:
        """True once every chunk was consumed and the channel is closed."""
        return self._detached or self._channel._exhausted(self)

    def close(self) -> None:
        """Detach from the channel; further reads report end-of-stream."""
        if not self._detached:
            self._detached = True
            self._channel._detach(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class OutputChannel:
    """Append-only transcript of one execution with live fan-out."""

    def __init__(self) -> None:
        self._chunks: list[str] = []
        self._closed = False
        self._subscribers = 0
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def subscriber_count(self) -> int:
        with self._cond:
            return self._subscribers

    def publish(self, chunk: str) -> None:
        """Append *chunk* and wake every waiting subscriber.

        Raises:
            ChannelClosed: If the channel was already closed.
        """
        with self._cond:
            if self._closed:
                raise ChannelClosed("Cannot publish to a closed output channel")
            self._chunks.append(chunk)
            self._cond.notify_all()

    def close(self) -> None:
        """Mark the transcript complete. Idempotent."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def subscribe(self) -> Subscription:
        """Return a subscription that replays the transcript, then follows it."""
        with self._cond:
            self._subscribers += 1
            return Subscription(self, 0)

    def transcript(self) -> list[str]:
        with self._cond:
            return list(self._chunks)

    def text(self) -> str:
        return "".join(self.transcript())

    # ------------------------------------------------------------------ #
    # Subscription plumbing
    # ------------------------------------------------------------------ #

    def _read(self, sub: Subscription, timeout: float | None) -> str | _Timeout | None:
        with self._cond:
            if sub._detached:
                return None
            ready = self._cond.wait_for(
                lambda: sub._detached or sub._position < len(self._chunks) or self._closed,
                timeout=timeout,
            )
            if not ready:
                return _TIMEOUT
            if sub._detached:
                return None
            if sub._position < len(self._chunks):
                chunk = self._chunks[sub._position]
                sub._position += 1
                return chunk
            return None

    def _exhausted(self, sub: Subscription) -> bool:
        with self._cond:
            return self._closed and sub._position >= len(self._chunks)

    def _detach(self, sub: Subscription) -> None:
        with self._cond:
            self._subscribers -= 1
            self._cond.notify_all()
