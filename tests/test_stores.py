"""
Tests for the JSON-file stores.
"""

import pytest

from conftest import make_email
from rfq_reply_router.models import RfqSupplierMapping
from rfq_reply_router.stores import EmailIdMappingStore, RfqSupplierStore


@pytest.fixture
def mapping():
    return RfqSupplierMapping(rfq_id="MAT-1", supplier_id="sales@acme.com", supplier_name="Acme")


class TestRfqSupplierStore:
    """Tests for RFQ/supplier lookups by threading metadata."""

    def test_lookup_by_conversation_id(self, tmp_path, mapping):
        store = RfqSupplierStore(tmp_path / "rfq.json")
        store.register(mapping, conversation_id="conv-1")

        found = store.lookup_by_threading_metadata(make_email(conversation_id="conv-1"))

        assert found == mapping

    def test_lookup_by_internet_message_id(self, tmp_path, mapping):
        store = RfqSupplierStore(tmp_path / "rfq.json")
        store.register(mapping, internet_message_id="<abc@acme.com>")

        found = store.lookup_by_threading_metadata(
            make_email(conversation_id="other", internet_message_id="<abc@acme.com>")
        )

        assert found.supplier_id == "sales@acme.com"

    def test_unknown_thread(self, tmp_path, mapping):
        store = RfqSupplierStore(tmp_path / "rfq.json")
        store.register(mapping, conversation_id="conv-1")

        assert store.lookup_by_threading_metadata(make_email(conversation_id="conv-2")) is None
        assert store.lookup_by_threading_metadata(make_email()) is None

    def test_persists_across_instances(self, tmp_path, mapping):
        path = tmp_path / "nested" / "rfq.json"
        RfqSupplierStore(path).register(mapping, conversation_id="conv-1")

        reloaded = RfqSupplierStore(path)

        assert reloaded.lookup_by_threading_metadata(make_email(conversation_id="conv-1")) == mapping

    def test_register_requires_a_key(self, tmp_path, mapping):
        with pytest.raises(ValueError):
            RfqSupplierStore(tmp_path / "rfq.json").register(mapping)

    def test_malformed_entry_is_ignored(self, tmp_path):
        path = tmp_path / "rfq.json"
        path.write_text('{"conversations": {"conv-1": {"rfq_id": "x"}}}')

        assert RfqSupplierStore(path).lookup_by_threading_metadata(make_email(conversation_id="conv-1")) is None


class TestEmailIdMappingStore:
    """Tests for the backend email id mapping."""

    def test_set_and_get(self, tmp_path):
        path = tmp_path / "ids.json"
        EmailIdMappingStore(path).set("msg-1", "backend-9")

        assert EmailIdMappingStore(path).get("msg-1") == "backend-9"
        assert EmailIdMappingStore(path).get("msg-2") is None

    def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "ids.json"
        path.write_text("not json")

        store = EmailIdMappingStore(path)

        assert store.get("msg-1") is None
        store.set("msg-1", "b1")
        assert EmailIdMappingStore(path).get("msg-1") == "b1"
