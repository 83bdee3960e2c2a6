"""Classification of supplier replies in conversation context.

Objective:
    Prepare everything the classification backend needs for one inbound
    message and call it:

    1) Build the conversation chain (oldest first, bodies sanitized)
    2) Resolve the RFQ id and supplier id
    3) Classify and remember the backend's email id

High-level call tree:
    - :class:`ClassificationOrchestrator`
        - :meth:`build_email_chain`
            - :meth:`EmailClient.search_by_conversation`
            - :func:`sanitize_email_body`
        - :meth:`resolve_rfq_and_supplier`
            - :meth:`RfqSupplierStore.lookup_by_threading_metadata`
            - :func:`extract_rfq_id`
        - :meth:`classify`
            - :meth:`ClassifierClient.classify`
            - :meth:`EmailIdMappingStore.set`
"""

import logging
from datetime import datetime
from typing import Optional

import requests

from .classifier_client import ClassifierClient
from .email_client import EmailClient
from .models import ChainMessage, ClassificationResult, Email
from .reply_detector import extract_rfq_id
from .sanitizer import sanitize_email_body
from .stores import EmailIdMappingStore, RfqSupplierStore

logger = logging.getLogger(__name__)

CHAIN_FIELDS = "id,subject,from,sender,body,receivedDateTime,conversationId"


def _format_date(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def to_chain_message(email: Email) -> ChainMessage:
    """Convert a Graph message into the classifier's chain entry."""
    return ChainMessage(
        subject=email.subject,
        body=sanitize_email_body(email.body.content, email.body.content_type),
        from_email=email.from_email,
        date=_format_date(email.received_date_time),
    )


class ClassificationOrchestrator:
    """
    Builds classifier input for a message and records the answer.

    Attributes:
        email_client: Email client for conversation lookups.
        classifier: Classification backend client.
        rfq_store: RFQ/supplier mapping store.
        id_store: Backend email id mapping store.
    """

    def __init__(
        self,
        email_client: EmailClient,
        classifier: ClassifierClient,
        rfq_store: RfqSupplierStore,
        id_store: EmailIdMappingStore,
    ) -> None:
        self.email_client = email_client
        self.classifier = classifier
        self.rfq_store = rfq_store
        self.id_store = id_store

    def build_email_chain(self, email: Email) -> list[ChainMessage]:
        """
        Return the conversation of ``email`` as an ordered chain.

        Falls back to a single-element chain when the message has no
        conversation id or the conversation cannot be read.

        Args:
            email: Fully fetched inbound message.

        Returns:
            list[ChainMessage]: Chain, oldest first.
        """
        if email.conversation_id:
            try:
                conversation = self.email_client.search_by_conversation(
                    email.conversation_id, select=CHAIN_FIELDS
                )
            except requests.RequestException as e:
                logger.warning(f"Could not load conversation, classifying single message: {e}")
                conversation = []

            if conversation:
                return [to_chain_message(m) for m in conversation]

        return [to_chain_message(email)]

    def resolve_rfq_and_supplier(self, email: Email) -> tuple[Optional[str], Optional[str]]:
        """
        Resolve the RFQ id and supplier id for a reply.

        A mapping recorded when the RFQ was sent wins; otherwise the RFQ id
        comes from the subject and the sender address stands in for the
        supplier id.

        Args:
            email: Inbound message.

        Returns:
            tuple[Optional[str], Optional[str]]: ``(rfq_id, supplier_id)``.
        """
        mapping = self.rfq_store.lookup_by_threading_metadata(email)
        if mapping:
            logger.debug(f"Found RFQ mapping: {mapping.rfq_id} / {mapping.supplier_id}")
            return mapping.rfq_id, mapping.supplier_id

        return extract_rfq_id(email.subject), email.from_email or None

    def classify(self, email: Email, chain: Optional[list[ChainMessage]] = None) -> ClassificationResult:
        """
        Classify ``email`` and persist the backend's email id.

        Args:
            email: Fully fetched inbound message.
            chain: Pre-built conversation chain (built when omitted).

        Returns:
            ClassificationResult: Backend answer.

        Raises:
            ClassificationError: If the backend call fails.
        """
        if chain is None:
            chain = self.build_email_chain(email)
        rfq_id, supplier_id = self.resolve_rfq_and_supplier(email)

        latest = to_chain_message(email).model_dump()
        latest["in_reply_to"] = rfq_id

        result = self.classifier.classify(
            email_chain=chain,
            most_recent_reply=latest,
            rfq_id=rfq_id,
            supplier_id=supplier_id,
        )

        if result.backend_id:
            try:
                self.id_store.set(email.id, result.backend_id)
            except OSError as e:
                logger.warning(f"Could not store backend id for message {email.id[:20]}...: {e}")
        return result
