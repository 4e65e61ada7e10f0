"""
Message channels between execution contexts.
- Every message is a JSON-compatible dict with a `type` key, wrapped in an
  envelope stamped with the sender origin.
- Payloads are JSON-copied per delivery; contexts never share objects.
- Delivery is asynchronous and FIFO per listener. Listener errors are logged
  and never reach the sender.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class BoundaryUnavailable(Exception):
    """The receiving side of a channel is gone or was never there."""


@dataclass(frozen=True)
class Envelope:
    origin: str
    data: dict

    @property
    def type(self) -> Optional[str]:
        kind = self.data.get("type")
        return kind if isinstance(kind, str) else None


Listener = Callable[[Envelope], Awaitable[Any]]


class _Subscription:
    def __init__(self, channel_name: str, listener: Listener):
        self.listener = listener
        self.queue: asyncio.Queue[Envelope] = asyncio.Queue()
        self._channel_name = channel_name
        self._worker: Optional[asyncio.Task] = None
        self.pending = 0

    def deliver(self, envelope: Envelope) -> None:
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(self._run())
        self.pending += 1
        self.queue.put_nowait(envelope)

    async def _run(self) -> None:
        while True:
            envelope = await self.queue.get()
            try:
                await self.listener(envelope)
            except Exception:
                logger.exception(
                    "Listener failed",
                    extra={"channel": self._channel_name, "type": envelope.type},
                )
            finally:
                self.pending -= 1
                self.queue.task_done()

    def cancel(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            self._worker = None


class MessageChannel:
    """One-to-many asynchronous message channel."""

    def __init__(self, name: str):
        self.name = name
        self._subscriptions: list[_Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_listeners(self) -> bool:
        return bool(self._subscriptions)

    @property
    def busy(self) -> bool:
        return any(s.pending for s in self._subscriptions)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that removes it."""
        if self._closed:
            raise BoundaryUnavailable(f"Channel {self.name} is closed")
        subscription = _Subscription(self.name, listener)
        self._subscriptions.append(subscription)

        def remove() -> None:
            self._remove(subscription)

        return remove

    def _remove(self, subscription: _Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        subscription.cancel()

    def post(self, message: dict, *, origin: str, require_receiver: bool = False) -> None:
        """
        Queue `message` for every listener and return immediately.
        Raises BoundaryUnavailable if the channel is closed, or if
        `require_receiver` is set and nobody is listening.
        """
        if self._closed:
            raise BoundaryUnavailable(f"Channel {self.name} is closed")
        if require_receiver and not self._subscriptions:
            raise BoundaryUnavailable(f"No receiver on channel {self.name}")

        wire = json.dumps(message)
        for subscription in list(self._subscriptions):
            subscription.deliver(Envelope(origin=origin, data=json.loads(wire)))

    async def drain(self) -> None:
        """Wait until every queued message has been handled, including follow-ups."""
        while True:
            pending = [s.queue for s in self._subscriptions if s.pending]
            if not pending:
                return
            await asyncio.gather(*(queue.join() for queue in pending))

    def close(self) -> None:
        self._closed = True
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()


async def drain_all(*channels: MessageChannel, rounds: int = 5) -> None:
    """Drain several channels until none has queued work left."""
    for _ in range(rounds):
        for channel in channels:
            await channel.drain()
        await asyncio.sleep(0)
        if not any(channel.busy for channel in channels):
            return
