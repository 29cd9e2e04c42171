"""Outcome classification and disposition of queue messages and documents.

``decide`` maps an outcome to a plan without touching any backend. The
``DispositionEngine`` then applies the plan in a fixed order:

1. archive the evidence (success only)
2. acknowledge the queue message
3. dispose of the source document, only if step 2 succeeded
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from oxalis_outbound.errors import (
    BackendTransientError,
    DocumentNotFoundError,
    LocalIOError,
    MalformedDocumentError,
    OutboundError,
    TransportRejectedError,
)
from oxalis_outbound.logging_conf import logger
from oxalis_outbound.queue.models import DocumentReference, QueueItem


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    BACKEND_TRANSIENT = "backend_transient"
    MALFORMED = "malformed"
    REJECTED = "rejected"
    LOCAL_IO = "local_io"


class DocumentAction(str, Enum):
    NONE = "none"
    DELETE = "delete"
    MOVE_TO_ARCHIVE = "move_to_archive"
    MOVE_TO_FAILED = "move_to_failed"


@dataclass(frozen=True)
class Outcome:
    """Result of one processing attempt."""

    kind: OutcomeKind
    stage: str
    evidence: Optional[bytes] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, evidence: bytes) -> "Outcome":
        return cls(kind=OutcomeKind.SUCCESS, stage="transport", evidence=evidence)

    @classmethod
    def from_error(cls, stage: str, error: OutboundError) -> "Outcome":
        return cls(kind=classify(error), stage=stage, error=error)

    @property
    def terminal(self) -> bool:
        return self.kind not in (OutcomeKind.BACKEND_TRANSIENT, OutcomeKind.LOCAL_IO)


def classify(error: OutboundError) -> OutcomeKind:
    if isinstance(error, DocumentNotFoundError):
        return OutcomeKind.NOT_FOUND
    if isinstance(error, MalformedDocumentError):
        return OutcomeKind.MALFORMED
    if isinstance(error, TransportRejectedError):
        return OutcomeKind.REJECTED
    if isinstance(error, LocalIOError):
        return OutcomeKind.LOCAL_IO
    if isinstance(error, BackendTransientError):
        return OutcomeKind.BACKEND_TRANSIENT
    raise TypeError(f"Unclassified error type {type(error).__name__}")


@dataclass(frozen=True)
class DispositionPlan:
    archive_evidence: bool
    acknowledge: bool
    document_action: DocumentAction
    pause: bool


_POLICY_ACTIONS = {
    # (policy, succeeded) -> action
    ("delete", True): DocumentAction.DELETE,
    ("move", True): DocumentAction.MOVE_TO_ARCHIVE,
    ("noop", True): DocumentAction.NONE,
    ("delete", False): DocumentAction.DELETE,
    ("move", False): DocumentAction.MOVE_TO_FAILED,
    ("noop", False): DocumentAction.NONE,
}


def decide(outcome: Outcome, after_completed: str = "move", after_failed: str = "move") -> DispositionPlan:
    """Pure mapping from an outcome to the side effects it requires."""
    kind = outcome.kind

    if kind == OutcomeKind.SUCCESS:
        return DispositionPlan(
            archive_evidence=True,
            acknowledge=True,
            document_action=_POLICY_ACTIONS[(after_completed, True)],
            pause=False,
        )

    if kind in (OutcomeKind.MALFORMED, OutcomeKind.REJECTED):
        # Acknowledged so one bad document cannot block the queue
        return DispositionPlan(
            archive_evidence=False,
            acknowledge=True,
            document_action=_POLICY_ACTIONS[(after_failed, False)],
            pause=False,
        )

    if kind == OutcomeKind.NOT_FOUND:
        return DispositionPlan(False, True, DocumentAction.NONE, False)

    if kind == OutcomeKind.LOCAL_IO:
        return DispositionPlan(False, False, DocumentAction.NONE, True)

    # Left for the queue's own redelivery
    return DispositionPlan(False, False, DocumentAction.NONE, False)


class DispositionEngine:
    """Applies disposition plans against the queue and document store."""

    def __init__(self, queue, store, archive_container: str, failed_container: str,
                 after_completed: str = "move", after_failed: str = "move"):
        self.queue = queue
        self.store = store
        self.archive_container = archive_container
        self.failed_container = failed_container
        self.after_completed = after_completed
        self.after_failed = after_failed

    def apply(self, item: QueueItem, ref: Optional[DocumentReference], outcome: Outcome) -> Outcome:
        """Carry out the plan for an outcome. Returns the outcome as finally resolved."""
        plan = decide(outcome, self.after_completed, self.after_failed)
        logger.debug(
            f"Disposition for {item.message_id}: outcome={outcome.kind.value} ack={plan.acknowledge} "
            f"document={plan.document_action.value} pause={plan.pause}"
        )

        if plan.archive_evidence:
            try:
                self.store.store(self.archive_container, ref.receipt_name, outcome.evidence)
            except OutboundError as e:
                logger.error(
                    f"Failed to archive receipt for message {item.message_id} ({ref}), "
                    f"leaving message for redelivery: {e}"
                )
                return Outcome(kind=OutcomeKind.BACKEND_TRANSIENT, stage="archive", error=e)

        if not plan.acknowledge:
            logger.info(f"Leaving message {item.message_id} in queue ({outcome.kind.value} at {outcome.stage})")
            return outcome

        try:
            self.queue.mark_processed(item)
        except OutboundError as e:
            # Message will be redelivered, so the document must stay where it is
            logger.error(f"Failed to delete queue message {item.message_id}, keeping document {ref}: {e}")
            return outcome

        if ref is not None and plan.document_action != DocumentAction.NONE:
            self._dispose(item, ref, plan.document_action)

        return outcome

    def _dispose(self, item: QueueItem, ref: DocumentReference, action: DocumentAction) -> None:
        try:
            if action == DocumentAction.DELETE:
                self.store.delete(ref)
            elif action == DocumentAction.MOVE_TO_ARCHIVE:
                self.store.move(ref, self.archive_container)
            elif action == DocumentAction.MOVE_TO_FAILED:
                self.store.move(ref, self.failed_container)
        except DocumentNotFoundError as e:
            logger.warning(f"Document {ref} already gone during {action.value} for message {item.message_id}: {e}")
        except OutboundError as e:
            logger.error(f"Failed to {action.value} document {ref} for message {item.message_id}: {e}")
