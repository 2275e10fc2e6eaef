"""
Ingestion worker.
Consumes one task at a time and runs a sync pass per message. Failed tasks are
re-published with an incremented retryCount; the original is always acked.
"""

import json
import functools
import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from pika.exceptions import AMQPError

from ..core.config import get_config
from ..ingest.service import IngestService
from .broker import QueueAdapter

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 5.0
RECONNECT_DELAY = 5.0

# Message outcomes
COMPLETED = "completed"
RETRIED = "retried"
DROPPED = "dropped"


class InvalidMessage(ValueError):
    """Message body is not a usable ingestion task."""


@dataclass(frozen=True)
class IngestionTask:
    """Queue wire format: {"tenantId": "<id>", "retryCount": <n>}."""
    tenant_id: str
    retry_count: int = 0

    @classmethod
    def from_body(cls, body: bytes) -> "IngestionTask":
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise InvalidMessage(f"Message is not valid JSON: {e}") from e

        if not isinstance(payload, dict) or payload.get('tenantId') in (None, ''):
            raise InvalidMessage(f"Message has no tenantId: {payload!r}")

        try:
            retry_count = int(payload.get('retryCount') or 0)
        except (TypeError, ValueError) as e:
            raise InvalidMessage(f"Invalid retryCount: {payload.get('retryCount')!r}") from e

        return cls(tenant_id=str(payload['tenantId']), retry_count=retry_count)

    def next_attempt(self) -> "IngestionTask":
        return IngestionTask(tenant_id=self.tenant_id, retry_count=self.retry_count + 1)


class IngestionWorker:
    """
    Long-running consumer applying the retry/give-up policy.

    Each pass runs on its own thread so the consuming thread keeps servicing
    broker heartbeats. The republish and the ack are handed back to the
    consuming thread with add_callback_threadsafe.
    """

    def __init__(
        self,
        queue: QueueAdapter,
        service: IngestService,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        reconnect_delay: float = RECONNECT_DELAY,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.queue = queue
        self.service = service
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.reconnect_delay = reconnect_delay
        self._sleep = sleep
        self._stopping = False
        self._in_flight: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config=None, service: Optional[IngestService] = None) -> "IngestionWorker":
        config = config or get_config()
        return cls(
            queue=QueueAdapter.from_config(config),
            service=service or IngestService.from_config(config),
            max_retries=config.get_int('queue', 'max_retries', default=MAX_RETRIES),
            retry_delay=config.get_float('queue', 'retry_delay', default=RETRY_DELAY),
            reconnect_delay=config.get_float('queue', 'reconnect_delay', default=RECONNECT_DELAY)
        )

    # ==================== Task Handling ====================

    def handle(self, body: bytes) -> Tuple[str, Optional[IngestionTask]]:
        """
        Run the task in one message body. Never raises.
        Returns the outcome and, when RETRIED, the follow-up task to publish.
        """
        try:
            task = IngestionTask.from_body(body)
        except InvalidMessage as e:
            logger.error(f"Dropping malformed message: {e}")
            return DROPPED, None

        logger.info(
            f"Received task for tenant: {task.tenant_id} "
            f"(Attempt: {task.retry_count + 1}/{self.max_retries + 1})"
        )

        try:
            self.service.ingest_for_tenant(task.tenant_id)
        except Exception:
            logger.exception(f"Task failed for tenant {task.tenant_id}")
            return self._retry_or_drop(task)

        logger.info(f"Task completed for {task.tenant_id}")
        return COMPLETED, None

    def _retry_or_drop(self, task: IngestionTask) -> Tuple[str, Optional[IngestionTask]]:
        if task.retry_count >= self.max_retries:
            logger.error(f"Max retries reached for tenant {task.tenant_id}. Task dropped.")
            return DROPPED, None

        logger.info(f"Re-queueing task for tenant {task.tenant_id} in {self.retry_delay} seconds...")
        self._sleep(self.retry_delay)
        return RETRIED, task.next_attempt()

    def settle(self, channel, delivery_tag: int, retry: Optional[IngestionTask]) -> None:
        """Publish the follow-up task, if any, then ack the original. Consuming thread only."""
        try:
            if retry is not None:
                try:
                    self.queue.publish_ingestion_task(retry.tenant_id, retry.retry_count)
                except AMQPError:
                    logger.exception(f"Could not re-queue task for tenant {retry.tenant_id}. Task dropped.")
        finally:
            # Always ack the original so the broker never redelivers it
            self.queue.ack(channel, delivery_tag)

    def process(self, channel, delivery_tag: int, body: bytes) -> None:
        """Work thread: run the pass, then schedule settle() on the consuming thread."""
        retry = None
        try:
            _, retry = self.handle(body)
        finally:
            try:
                self.queue.add_callback_threadsafe(
                    functools.partial(self.settle, channel, delivery_tag, retry)
                )
            except AMQPError as e:
                logger.error(
                    f"Connection lost before message {delivery_tag} could be acked ({e!r}); "
                    f"the broker will redeliver it"
                )

    def on_message(self, channel, method, properties, body: bytes) -> None:
        """pika consumer callback. Returns at once so heartbeats keep flowing."""
        thread = threading.Thread(
            target=self.process,
            args=(channel, method.delivery_tag, body),
            name=f"ingest-{method.delivery_tag}",
            daemon=True
        )
        self._in_flight = thread
        thread.start()

    def _wait_for_in_flight(self) -> None:
        thread = self._in_flight
        if thread is not None and thread.is_alive():
            logger.info("Waiting for the running task to finish...")
            thread.join()
        self._in_flight = None

    # ==================== Consumer Loop ====================

    def run(self) -> None:
        """Consume until stopped, reconnecting after broker connection loss."""
        logger.info("Worker started...")
        while not self._stopping:
            try:
                self.queue.consume(self.on_message)
            except AMQPError as e:
                if self._stopping:
                    break
                logger.error(f"Broker connection lost ({e}); reconnecting in {self.reconnect_delay}s")
                # A task still running would otherwise overlap its own redelivery
                self._wait_for_in_flight()
                self._sleep(self.reconnect_delay)
            except KeyboardInterrupt:
                logger.info("Worker interrupted")
                break
            else:
                # start_consuming returned: stop_consuming was called
                break
        self._wait_for_in_flight()
        self.queue.close()
        logger.info("Worker stopped")

    def stop(self) -> None:
        """Ask the consuming thread to stop. Safe to call from any thread."""
        self._stopping = True
        try:
            self.queue.add_callback_threadsafe(self.queue.stop_consuming)
        except AMQPError:
            logger.debug("Worker not connected; nothing to stop")
