"""Tests for outcome classification and the disposition executor."""

import pytest

from fakes import SBD_XML, make_item
from oxalis_outbound.disposition import (
    DispositionEngine,
    DocumentAction,
    Outcome,
    OutcomeKind,
    classify,
    decide,
)
from oxalis_outbound.errors import (
    BackendTransientError,
    DocumentNotFoundError,
    LocalIOError,
    MalformedDocumentError,
    MalformedMessageError,
    OutboundError,
    TransportRejectedError,
    TransportTimeoutError,
)
from oxalis_outbound.queue.models import DocumentReference
from oxalis_outbound.storage import DocumentStore

REF = DocumentReference(container="outbound", path="2024/invoice-1.xml")


class TestClassify:
    @pytest.mark.parametrize(
        "error, kind",
        [
            (BackendTransientError("x"), OutcomeKind.BACKEND_TRANSIENT),
            (DocumentNotFoundError("x"), OutcomeKind.NOT_FOUND),
            (MalformedDocumentError("x"), OutcomeKind.MALFORMED),
            (MalformedMessageError("x"), OutcomeKind.MALFORMED),
            (TransportRejectedError("x"), OutcomeKind.REJECTED),
            (LocalIOError("x"), OutcomeKind.LOCAL_IO),
            (TransportTimeoutError("x"), OutcomeKind.LOCAL_IO),
        ],
    )
    def test_each_error_maps_to_one_kind(self, error, kind):
        assert classify(error) == kind

    def test_unknown_error_type(self):
        with pytest.raises(TypeError):
            classify(OutboundError("x"))


class TestDecide:
    def test_success(self):
        plan = decide(Outcome.success(b"<R/>"), after_completed="move")

        assert plan.archive_evidence
        assert plan.acknowledge
        assert plan.document_action == DocumentAction.MOVE_TO_ARCHIVE
        assert not plan.pause

    @pytest.mark.parametrize(
        "policy, action",
        [
            ("delete", DocumentAction.DELETE),
            ("move", DocumentAction.MOVE_TO_ARCHIVE),
            ("noop", DocumentAction.NONE),
        ],
    )
    def test_after_completed_policy(self, policy, action):
        assert decide(Outcome.success(b""), after_completed=policy).document_action == action

    @pytest.mark.parametrize("error", [MalformedDocumentError("x"), TransportRejectedError("x")])
    @pytest.mark.parametrize(
        "policy, action",
        [
            ("delete", DocumentAction.DELETE),
            ("move", DocumentAction.MOVE_TO_FAILED),
            ("noop", DocumentAction.NONE),
        ],
    )
    def test_terminal_failures_follow_after_failed_policy(self, error, policy, action):
        plan = decide(Outcome.from_error("extract", error), after_failed=policy)

        assert plan.acknowledge
        assert not plan.archive_evidence
        assert plan.document_action == action
        assert not plan.pause

    def test_not_found_acknowledges_without_document_action(self):
        plan = decide(Outcome.from_error("fetch", DocumentNotFoundError("gone")))

        assert plan.acknowledge
        assert plan.document_action == DocumentAction.NONE

    def test_backend_transient_is_left_for_redelivery(self):
        plan = decide(Outcome.from_error("fetch", BackendTransientError("503")))

        assert not plan.acknowledge
        assert not plan.pause
        assert plan.document_action == DocumentAction.NONE

    def test_local_io_pauses_without_acknowledging(self):
        plan = decide(Outcome.from_error("transport", LocalIOError("disk full")))

        assert not plan.acknowledge
        assert plan.pause
        assert plan.document_action == DocumentAction.NONE


@pytest.fixture
def engine(queue, blobs):
    return DispositionEngine(
        queue=queue,
        store=DocumentStore(blobs),
        archive_container="archived",
        failed_container="failed",
    )


class TestDispositionEngine:
    def test_success_order_is_archive_then_ack_then_move(self, engine, events, blobs):
        engine.apply(make_item(), REF, Outcome.success(b"<Receipt/>"))

        assert events == [
            ("put", "archived", "2024/invoice-1.xml_receipt.xml"),
            ("ack", "msg-1"),
            ("copy", "outbound", "2024/invoice-1.xml", "archived"),
            ("delete", "outbound", "2024/invoice-1.xml"),
        ]
        assert blobs.blobs[("archived", "2024/invoice-1.xml_receipt.xml")] == b"<Receipt/>"
        assert blobs.blobs[("archived", "2024/invoice-1.xml")] == SBD_XML

    def test_success_with_delete_policy(self, engine, events):
        engine.after_completed = "delete"

        engine.apply(make_item(), REF, Outcome.success(b"<Receipt/>"))

        assert [e[0] for e in events] == ["put", "ack", "delete"]

    def test_rejection_moves_to_failed_without_archive(self, engine, events, queue):
        engine.apply(make_item(), REF, Outcome.from_error("transport", TransportRejectedError("exit 1")))

        assert events == [
            ("ack", "msg-1"),
            ("copy", "outbound", "2024/invoice-1.xml", "failed"),
            ("delete", "outbound", "2024/invoice-1.xml"),
        ]
        assert queue.acknowledged == ["msg-1"]

    def test_archive_failure_leaves_message_and_document(self, engine, events, blobs, queue):
        blobs.fail_put = True

        outcome = engine.apply(make_item(), REF, Outcome.success(b"<Receipt/>"))

        assert outcome.kind == OutcomeKind.BACKEND_TRANSIENT
        assert outcome.stage == "archive"
        assert queue.acknowledged == []
        assert events == []

    def test_ack_failure_keeps_document(self, engine, events, queue, blobs):
        queue.fail_ack = True

        engine.apply(make_item(), REF, Outcome.from_error("extract", MalformedDocumentError("bad")))

        assert events == []
        assert ("outbound", "2024/invoice-1.xml") in blobs.blobs

    def test_move_of_missing_source_is_tolerated(self, engine, events, blobs, queue):
        del blobs.blobs[("outbound", "2024/invoice-1.xml")]

        outcome = engine.apply(make_item(), REF, Outcome.from_error("transport", TransportRejectedError("x")))

        assert outcome.kind == OutcomeKind.REJECTED
        assert queue.acknowledged == ["msg-1"]

    def test_malformed_message_without_reference(self, engine, events):
        engine.apply(make_item(), None, Outcome.from_error("decode", MalformedMessageError("bad base64")))

        assert events == [("ack", "msg-1")]

    def test_transient_outcomes_touch_nothing(self, engine, events):
        engine.apply(make_item(), REF, Outcome.from_error("fetch", BackendTransientError("503")))
        engine.apply(make_item(), REF, Outcome.from_error("transport", LocalIOError("disk full")))

        assert events == []
