"""Unbounded non-blocking message bus between background work and the UI."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Generic, Optional, TypeVar

from financial_analysis.core.messages import Event

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelClosedError(RuntimeError):
    """Raised when sending to a channel whose receiver has been dropped."""


class _ChannelState(Generic[T]):
    """Queue plus the closed flag shared by both ends of a channel."""

    def __init__(self, wake: Optional[Callable[[], None]]) -> None:
        self.queue: "queue.SimpleQueue[T]" = queue.SimpleQueue()
        self.closed = threading.Event()
        self.wake = wake


class Sender(Generic[T]):
    """Producer end of a channel. Clone it to hand it to another task."""

    __slots__ = ("_state",)

    def __init__(self, state: _ChannelState[T]) -> None:
        self._state = state

    def send(self, item: T) -> None:
        """Append ``item`` to the tail of the queue without blocking."""

        if self._state.closed.is_set():
            raise ChannelClosedError(f"receiver dropped; cannot send {type(item).__name__}")
        self._state.queue.put_nowait(item)
        wake = self._state.wake
        if wake is not None:
            try:
                wake()
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Wake callback failed after sending %s", type(item).__name__)

    def clone(self) -> "Sender[T]":
        return Sender(self._state)

    @property
    def closed(self) -> bool:
        return self._state.closed.is_set()


class Receiver(Generic[T]):
    """Consumer end of a channel, read by exactly one owner."""

    __slots__ = ("_state",)

    def __init__(self, state: _ChannelState[T]) -> None:
        self._state = state

    def try_receive(self) -> Optional[T]:
        """Return the oldest queued item, or ``None`` when the queue is empty."""

        try:
            return self._state.queue.get_nowait()
        except queue.Empty:
            return None

    def try_receive_all(self) -> list[T]:
        """Drain every currently queued item in enqueue order."""

        items: list[T] = []
        while True:
            try:
                items.append(self._state.queue.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        """Drop the receiver; later sends raise :class:`ChannelClosedError`."""

        self._state.closed.set()

    @property
    def closed(self) -> bool:
        return self._state.closed.is_set()

    def __len__(self) -> int:
        return self._state.queue.qsize()


def channel(wake: Optional[Callable[[], None]] = None) -> tuple[Sender[Event], Receiver[Event]]:
    """Create a new event channel.

    ``wake`` is invoked after every successful send; the desktop shell uses it
    to schedule a repaint so an idle frame loop notices the new event.
    """

    state: _ChannelState[Event] = _ChannelState(wake)
    return Sender(state), Receiver(state)


__all__ = ["ChannelClosedError", "Receiver", "Sender", "channel"]
