"""Run one queue message through fetch, routing extraction and transport."""
import time

from oxalis_outbound.disposition import DispositionEngine, Outcome
from oxalis_outbound.errors import OutboundError
from oxalis_outbound.logging_conf import logger
from oxalis_outbound.queue.models import DocumentReference, QueueItem
from oxalis_outbound.routing import RoutingExtractor
from oxalis_outbound.storage import DocumentStore
from oxalis_outbound.transport import TransportInvoker


class MessageProcessor:
    """Processes a single outbound message and resolves its disposition."""

    def __init__(self, store: DocumentStore, extractor: RoutingExtractor,
                 transport: TransportInvoker, engine: DispositionEngine):
        self.store = store
        self.extractor = extractor
        self.transport = transport
        self.engine = engine

    def process(self, item: QueueItem) -> Outcome:
        """
        Process one message and apply its disposition.

        Per-item errors never escape: they are classified into the returned
        Outcome. Anything outside the error taxonomy propagates to the caller.
        """
        started = time.monotonic()
        logger.info(f"Processing queue message id {item.message_id} (dequeue count {item.dequeue_count})")

        ref = None
        outcome = None
        try:
            ref = DocumentReference.from_queue_item(item)
        except OutboundError as e:
            logger.error(f"Message {item.message_id} failed at decode: {e}")
            outcome = Outcome.from_error("decode", e)

        if outcome is None:
            outcome = self._run(item, ref)

        outcome = self.engine.apply(item, ref, outcome)
        logger.info(
            f"Message {item.message_id} resolved as {outcome.kind.value} "
            f"in {time.monotonic() - started:.2f}s"
        )
        return outcome

    def _run(self, item: QueueItem, ref: DocumentReference) -> Outcome:
        stage = "fetch"
        try:
            document = self.store.fetch(ref)

            stage = "extract"
            routing = self.extractor.extract(document)

            stage = "transport"
            evidence = self.transport.send(document, routing)
        except OutboundError as e:
            logger.error(
                f"Message {item.message_id} ({ref}) failed at {stage}: {type(e).__name__}: {e}"
            )
            return Outcome.from_error(stage, e)

        logger.info(f"Transported {ref}, got {len(evidence)} bytes of evidence")
        return Outcome.success(evidence)
