"""Progress fan-out from running jobs to live subscribers."""
import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union

logger = logging.getLogger(__name__)

COMPLETE = "Complete"
ERROR = "Error"


class Transport(Protocol):
    """Anything that can push a JSON message, e.g. a websocket."""

    async def send_json(self, data: Any) -> None:
        ...


@dataclass(frozen=True)
class ProgressEvent:
    """One progress update or terminal sentinel for a job."""

    job_id: str
    progress: Union[int, str]

    @classmethod
    def tick(cls, job_id: str, percent: int) -> "ProgressEvent":
        return cls(job_id, percent)

    @classmethod
    def complete(cls, job_id: str) -> "ProgressEvent":
        return cls(job_id, COMPLETE)

    @classmethod
    def error(cls, job_id: str) -> "ProgressEvent":
        return cls(job_id, ERROR)

    @property
    def is_terminal(self) -> bool:
        return self.progress in (COMPLETE, ERROR)

    def to_message(self) -> dict:
        return {"jobId": self.job_id, "progress": self.progress}


_subscription_ids = itertools.count(1)


@dataclass(eq=False)
class Subscription:
    """Handle returned by subscribe(); job_id None means every job.

    Messages wait in ``outbox`` until the handle's own sender task writes
    them to the transport.
    """

    transport: Transport
    job_id: Optional[str] = None
    id: int = field(default_factory=lambda: next(_subscription_ids))
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    sender: Optional[asyncio.Task] = None

    def wants(self, event: ProgressEvent) -> bool:
        return self.job_id is None or self.job_id == event.job_id


class ProgressBroadcaster:
    """Manages progress subscriptions and broadcasting."""

    def __init__(self, send_timeout: float = 5.0, max_pending: int = 100):
        self.send_timeout = send_timeout
        self.max_pending = max_pending
        self._subscriptions: set[Subscription] = set()
        self._lock = asyncio.Lock()

    async def subscribe(self, transport: Transport, job_id: Optional[str] = None) -> Subscription:
        """
        Register a transport for progress events.

        Args:
            transport: Connection to push messages to
            job_id: Only deliver this job's events (all jobs if None)

        Returns:
            Subscription handle for unsubscribe()
        """
        handle = Subscription(
            transport=transport,
            job_id=job_id,
            outbox=asyncio.Queue(maxsize=self.max_pending),
        )
        handle.sender = asyncio.create_task(self._sender(handle))
        async with self._lock:
            self._subscriptions.add(handle)
            count = len(self._subscriptions)
        logger.info(f"Subscriber {handle.id} attached (job={job_id or '*'}). Total: {count}")
        return handle

    async def unsubscribe(self, handle: Subscription):
        """
        Remove a subscription. Unknown handles are ignored.

        Args:
            handle: Handle returned by subscribe()
        """
        async with self._lock:
            if handle not in self._subscriptions:
                return
            self._subscriptions.discard(handle)
            count = len(self._subscriptions)
        self._stop_sender(handle)
        logger.info(f"Subscriber {handle.id} detached. Total: {count}")

    async def publish(self, event: ProgressEvent):
        """
        Queue an event for every matching subscriber.

        Only enqueues; each subscriber's sender task does the actual write.
        A subscriber whose backlog is full is dropped. Never raises and
        never waits on a transport.

        Args:
            event: Progress event to deliver
        """
        message = event.to_message()
        async with self._lock:
            targets = [s for s in self._subscriptions if s.wants(event)]
            dead = []
            for handle in targets:
                try:
                    handle.outbox.put_nowait(message)
                except asyncio.QueueFull:
                    dead.append(handle)
            for handle in dead:
                self._subscriptions.discard(handle)

        for handle in dead:
            logger.info(f"Subscriber {handle.id} fell {self.max_pending} messages behind; dropping")
            self._stop_sender(handle)

    async def flush(self):
        """Wait until every queued message has been written or discarded."""
        async with self._lock:
            handles = list(self._subscriptions)
        await asyncio.gather(*(handle.outbox.join() for handle in handles))

    async def close(self):
        """Drop every subscription and stop their sender tasks."""
        async with self._lock:
            handles = list(self._subscriptions)
            self._subscriptions.clear()
        for handle in handles:
            self._stop_sender(handle)
        await asyncio.gather(
            *(h.sender for h in handles if h.sender is not None), return_exceptions=True
        )

    async def _sender(self, handle: Subscription):
        """Write a subscriber's messages in order until it fails or is stopped."""
        while True:
            message = await handle.outbox.get()
            try:
                await asyncio.wait_for(handle.transport.send_json(message), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                logger.info(f"Subscriber {handle.id} timed out; dropping")
                break
            except Exception as e:
                logger.info(f"Subscriber {handle.id} not writable ({e}); dropping")
                break
            finally:
                handle.outbox.task_done()

        async with self._lock:
            self._subscriptions.discard(handle)
        self._discard_pending(handle)

    def _stop_sender(self, handle: Subscription):
        if handle.sender is not None and handle.sender is not asyncio.current_task():
            handle.sender.cancel()
        self._discard_pending(handle)

    @staticmethod
    def _discard_pending(handle: Subscription):
        while True:
            try:
                handle.outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            handle.outbox.task_done()

    def subscriber_count(self) -> int:
        """Get number of active subscriptions."""
        return len(self._subscriptions)
