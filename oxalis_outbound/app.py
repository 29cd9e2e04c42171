"""Main application - drains the outbound queue and sends documents via oxalis-standalone."""
import signal
import sys
from typing import List, Optional

from oxalis_outbound.disposition import DispositionEngine
from oxalis_outbound.errors import ConfigError
from oxalis_outbound.logging_conf import logger, setup_logging
from oxalis_outbound.processor import MessageProcessor
from oxalis_outbound.queue.storage_queue import StorageQueue
from oxalis_outbound.routing import RoutingExtractor
from oxalis_outbound.settings import Settings
from oxalis_outbound.storage import AzureBlobBackend, DocumentStore
from oxalis_outbound.transport import TransportInvoker
from oxalis_outbound.worker import Worker


def build_worker(settings: Settings, name: str = "worker-1", queue=None, blob_backend=None, runner=None) -> Worker:
    """Wire one worker from settings; backends may be substituted."""
    if queue is None:
        queue = StorageQueue.from_connection_string(
            settings.connection_string, settings.queue_name, settings.effective_visibility_timeout
        )
    if blob_backend is None:
        blob_backend = AzureBlobBackend.from_connection_string(settings.connection_string)

    store = DocumentStore(blob_backend)
    transport = TransportInvoker(
        command=settings.oxalis_standalone,
        cert_path=settings.cert_path,
        scratch_dir=settings.scratch_dir,
        protocol=settings.transport_protocol,
        timeout=settings.transport_timeout,
        runner=runner,
    )
    engine = DispositionEngine(
        queue=queue,
        store=store,
        archive_container=settings.archive_container,
        failed_container=settings.failed_container,
        after_completed=settings.after_completed,
        after_failed=settings.after_failed,
    )
    processor = MessageProcessor(
        store=store,
        extractor=RoutingExtractor.for_strategy(settings.routing_strategy),
        transport=transport,
        engine=engine,
    )
    return Worker(
        queue=queue,
        processor=processor,
        batch_size=settings.batch_size,
        poll_interval=settings.poll_interval,
        io_error_pause=settings.io_error_pause,
        name=name,
    )


class Application:
    """Runs one or more queue workers until a shutdown signal arrives."""

    def __init__(self, settings: Settings, workers: Optional[List[Worker]] = None):
        self.settings = settings
        self.workers = workers
        self.running = False

    def start(self):
        """Start the application."""
        self.settings.validate()

        logger.info("=" * 50)
        logger.info("Oxalis Outbound Daemon")
        logger.info("=" * 50)
        for key, value in self.settings.describe().items():
            logger.info(f"{key} = {value}")
        logger.info("=" * 50)

        if self.workers is None:
            self.workers = [
                build_worker(self.settings, name=f"worker-{n + 1}")
                for n in range(self.settings.workers)
            ]

        self.running = True
        for worker in self.workers:
            worker.start()
        logger.info(f"Started {len(self.workers)} worker(s) on queue {self.settings.queue_name}")

    def stop(self):
        """Ask all workers to finish their in-flight message and stop."""
        if not self.running:
            return
        self.running = False
        for worker in self.workers or []:
            worker.stop()

    def run(self):
        """Start workers and block until all of them have exited."""
        self.start()

        # Short joins keep the main thread responsive to signals
        while any(worker.is_alive() for worker in self.workers):
            for worker in self.workers:
                worker.join(timeout=1)

        self.running = False
        logger.info("Stopped")


def main():
    """Entry point."""
    settings = Settings.from_env()
    setup_logging(settings)
    app = Application(settings)

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down")
        app.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
