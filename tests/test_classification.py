"""
Tests for the classification orchestrator.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_email
from rfq_reply_router.classification import ClassificationOrchestrator
from rfq_reply_router.models import ClassificationResult, Email, EmailBody, RfqSupplierMapping
from rfq_reply_router.stores import EmailIdMappingStore, RfqSupplierStore


@pytest.fixture
def parts(tmp_path):
    client = MagicMock()
    classifier = MagicMock()
    classifier.classify.return_value = ClassificationResult(classification="quote", confidence=0.8)
    rfq_store = RfqSupplierStore(tmp_path / "rfq.json")
    id_store = EmailIdMappingStore(tmp_path / "ids.json")
    orchestrator = ClassificationOrchestrator(client, classifier, rfq_store, id_store)
    return orchestrator, client, classifier, rfq_store, id_store


class TestBuildEmailChain:
    """Tests for conversation chain building."""

    def test_uses_conversation_messages(self, parts):
        orchestrator, client, *_ = parts
        client.search_by_conversation.return_value = [
            Email(
                id="rfq",
                subject="RFQ for MAT-1",
                body=EmailBody(contentType="html", content="<p>Please <b>quote</b></p>"),
                receivedDateTime=datetime(2024, 1, 1, tzinfo=timezone.utc),
            ),
            make_email(message_id="msg-1"),
        ]

        chain = orchestrator.build_email_chain(make_email(conversation_id="conv-1"))

        assert [m.subject for m in chain] == ["RFQ for MAT-1", "RE: RFQ for MAT-55555"]
        assert "<p>" not in chain[0].body
        assert "quote" in chain[0].body
        assert chain[0].date.startswith("2024-01-01")
        assert chain[1].from_email == "supplier@x.com"

    def test_single_message_without_conversation(self, parts):
        orchestrator, client, *_ = parts

        chain = orchestrator.build_email_chain(make_email())

        assert len(chain) == 1
        assert chain[0].body == "We quote $12.50/unit, lead time 3 weeks."
        client.search_by_conversation.assert_not_called()

    def test_conversation_failure_falls_back_to_single_message(self, parts):
        orchestrator, client, *_ = parts
        client.search_by_conversation.side_effect = requests.ConnectionError("down")

        chain = orchestrator.build_email_chain(make_email(conversation_id="conv-1"))

        assert len(chain) == 1


class TestResolveRfqAndSupplier:
    """Tests for RFQ and supplier resolution."""

    def test_prefers_stored_mapping(self, parts):
        orchestrator, _, _, rfq_store, _ = parts
        rfq_store.register(
            RfqSupplierMapping(rfq_id="RFQ-100", supplier_id="SUP-7"),
            conversation_id="conv-1",
        )

        assert orchestrator.resolve_rfq_and_supplier(make_email(conversation_id="conv-1")) == (
            "RFQ-100",
            "SUP-7",
        )

    def test_falls_back_to_subject_and_sender(self, parts):
        orchestrator, *_ = parts

        assert orchestrator.resolve_rfq_and_supplier(make_email()) == ("MAT-55555", "supplier@x.com")

    def test_nothing_known(self, parts):
        orchestrator, *_ = parts

        assert orchestrator.resolve_rfq_and_supplier(make_email(subject="Hello", sender="")) == (None, None)


class TestClassify:
    """Tests for the classifier call."""

    def test_sends_latest_reply_and_ids(self, parts):
        orchestrator, _, classifier, *_ = parts
        email = make_email(conversation_id="conv-1")

        orchestrator.classify(email, chain=[])

        kwargs = classifier.classify.call_args.kwargs
        assert kwargs["email_chain"] == []
        assert kwargs["most_recent_reply"]["subject"] == "RE: RFQ for MAT-55555"
        assert kwargs["most_recent_reply"]["in_reply_to"] == "MAT-55555"
        assert kwargs["rfq_id"] == "MAT-55555"
        assert kwargs["supplier_id"] == "supplier@x.com"

    def test_in_reply_to_uses_mapped_rfq_id(self, parts):
        orchestrator, _, classifier, rfq_store, _ = parts
        rfq_store.register(
            RfqSupplierMapping(rfq_id="RFQ-9", supplier_id="SUP-1"),
            conversation_id="conv-1",
        )

        orchestrator.classify(make_email(conversation_id="conv-1"), chain=[])

        kwargs = classifier.classify.call_args.kwargs
        assert kwargs["most_recent_reply"]["in_reply_to"] == "RFQ-9"
        assert kwargs["rfq_id"] == "RFQ-9"

    def test_persists_backend_id(self, parts):
        orchestrator, _, classifier, _, id_store = parts
        classifier.classify.return_value = ClassificationResult(classification="quote", email_id="b-42")

        orchestrator.classify(make_email(), chain=[])

        assert id_store.get("msg-1") == "b-42"

    def test_no_backend_id(self, parts):
        orchestrator, _, _, _, id_store = parts

        orchestrator.classify(make_email(), chain=[])

        assert id_store.get("msg-1") is None

    def test_unwritable_id_store_does_not_fail_classification(self, parts, tmp_path, caplog):
        orchestrator, _, classifier, *_ = parts
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        orchestrator.id_store = EmailIdMappingStore(blocker / "ids.json")
        classifier.classify.return_value = ClassificationResult(classification="quote", email_id="b-42")

        result = orchestrator.classify(make_email(), chain=[])

        assert result.backend_id == "b-42"
        assert "Could not store backend id" in caplog.text
