"""Worker that drains the outbound queue."""
import threading

from oxalis_outbound.disposition import OutcomeKind
from oxalis_outbound.errors import OutboundError
from oxalis_outbound.logging_conf import logger


class Worker:
    """Polls the queue in batches and processes messages one at a time."""

    def __init__(self, queue, processor, batch_size: int = 10, poll_interval: float = 1,
                 io_error_pause: float = 60, name: str = "worker-1"):
        self.queue = queue
        self.processor = processor
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.io_error_pause = io_error_pause
        self.name = name
        self.thread = None
        self._stop_event = threading.Event()
        self.processed = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def start(self):
        """Start the worker in a background thread."""
        if self.thread and self.thread.is_alive():
            logger.warning(f"{self.name} is already running")
            return

        self._stop_event.clear()
        self.thread = threading.Thread(target=self.run, name=self.name)
        self.thread.start()
        logger.info(f"{self.name} started")

    def stop(self):
        """Ask the worker to stop once the in-flight message is disposed of."""
        if not self._stop_event.is_set():
            logger.info(f"{self.name} stopping after current message")
        self._stop_event.set()

    def join(self, timeout=None):
        if self.thread:
            self.thread.join(timeout)

    def is_alive(self) -> bool:
        return bool(self.thread and self.thread.is_alive())

    def run(self):
        """Main worker loop."""
        logger.info(f"{self.name} polling for new messages ...")

        while self.running:
            pause = self.run_once()
            if self.running:
                self._sleep(pause)

        logger.info(f"{self.name} stopped (processed={self.processed}, errors={self.errors})")

    def run_once(self) -> float:
        """Poll and process one batch. Returns the number of seconds to wait before the next poll."""
        try:
            batch = self.queue.dequeue_batch(self.batch_size)
        except OutboundError as e:
            logger.error(f"{self.name} failed to poll queue: {e}")
            return self.poll_interval

        if batch:
            logger.debug(f"{self.name} received {len(batch)} messages")

        for item in batch:
            if not self.running:
                # Unprocessed messages become visible again after their timeout
                break

            try:
                outcome = self.processor.process(item)
            except Exception as e:
                self.errors += 1
                logger.error(f"Unexpected error processing message {item.message_id}, leaving it in queue: {e}",
                             exc_info=True)
                continue

            self.processed += 1
            if outcome.kind == OutcomeKind.LOCAL_IO:
                # Usually disk or permission trouble that redelivery cannot fix
                self.errors += 1
                logger.error(
                    f"Local I/O failure on message {item.message_id}, "
                    f"needs operator attention; pausing {self.io_error_pause}s"
                )
                return self.io_error_pause
            if not outcome.terminal:
                self.errors += 1

        return self.poll_interval

    def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on stop."""
        self._stop_event.wait(seconds)
