"""In-process delivery queue.

Same contract as the HTTP relay, without the network hop:
- Daemon thread with its own asyncio event loop
- asyncio.Queue of pending deliveries, Semaphore concurrency control
- At-least-once: a handler exception schedules a redelivery with
  exponential backoff until ``max_attempts`` is reached
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import uuid4

from ..constants import DELIVERY_BACKOFF_BASE_SECONDS, DELIVERY_MAX_ATTEMPTS
from ..exceptions import QueueError
from .messages import JobMessage

logger = logging.getLogger(__name__)


@dataclass
class Delivery:
    """A message in flight plus its attempt counter."""
    delivery_id: str
    body: str
    attempt: int = 1


class LocalDeliveryQueue:
    """Deliver job messages to ``handler`` on a background thread.

    Lifecycle:
    1. start() spawns daemon thread with asyncio loop
    2. publish() enqueues a serialized message (thread-safe)
    3. each delivery runs ``handler(JobMessage)`` in a worker thread
    4. failures are redelivered after base * 2**(attempt-1) seconds
    5. stop() signals shutdown
    """

    def __init__(
        self,
        handler: Callable[[JobMessage], None],
        max_attempts: int = DELIVERY_MAX_ATTEMPTS,
        backoff_base_seconds: float = DELIVERY_BACKOFF_BASE_SECONDS,
        max_concurrent: int = 2,
    ):
        self._handler = handler
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.max_concurrent = max_concurrent

        self._queue: Optional[asyncio.Queue] = None
        self._running = False
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

        self.delivered = 0
        self.dead_lettered = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the background delivery thread."""
        if self._running:
            logger.warning("Delivery queue already running")
            return
        self._running = True
        self._ready.clear()
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="reqloom-delivery",
        )
        self._thread.start()
        logger.info("Local delivery queue started")

    def stop(self):
        """Stop the background delivery thread."""
        self._running = False
        if self._loop and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=5.0)
        logger.info("Local delivery queue stopped")

    def publish(self, message: JobMessage) -> str:
        """Enqueue ``message`` for delivery. Returns a delivery id.

        Raises:
            QueueError: the queue is not running.
        """
        if not self._running or not self._ready.wait(timeout=5.0):
            raise QueueError("Local delivery queue is not running")
        delivery = Delivery(delivery_id=str(uuid4()), body=message.to_json())
        self._loop.call_soon_threadsafe(self._queue.put_nowait, delivery)
        logger.debug(f"Queued delivery {delivery.delivery_id} for analysis {message.analysis_id}")
        return delivery.delivery_id

    def _run_loop(self):
        """Run the async event loop in the background thread."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._queue = asyncio.Queue()
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._ready.set()

        try:
            self._loop.run_until_complete(self._main_loop())
        except RuntimeError:
            # stop() halts the loop from another thread
            pass
        except Exception as e:
            logger.error(f"Delivery loop error: {e}", exc_info=True)
        finally:
            self._ready.clear()
            self._loop.close()

    async def _main_loop(self):
        while self._running:
            try:
                delivery = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            asyncio.create_task(self._deliver_with_semaphore(delivery))

    async def _deliver_with_semaphore(self, delivery: Delivery):
        async with self._semaphore:
            ok = await asyncio.to_thread(self._deliver_sync, delivery)
        if ok:
            return
        if delivery.attempt >= self.max_attempts:
            self.dead_lettered += 1
            logger.error(
                f"Delivery {delivery.delivery_id} exhausted {self.max_attempts} attempts"
            )
            return
        delay = self.backoff_base_seconds * (2 ** (delivery.attempt - 1))
        delivery.attempt += 1
        logger.info(
            f"Redelivering {delivery.delivery_id} in {delay:.1f}s "
            f"(attempt {delivery.attempt}/{self.max_attempts})"
        )
        await asyncio.sleep(delay)
        if self._running:
            await self._queue.put(delivery)

    def _deliver_sync(self, delivery: Delivery) -> bool:
        """Run the handler once. True on success."""
        try:
            message = JobMessage.from_json(delivery.body)
            self._handler(message)
        except Exception as e:
            logger.warning(
                f"Delivery {delivery.delivery_id} attempt {delivery.attempt} failed: {e}"
            )
            return False
        self.delivered += 1
        return True
