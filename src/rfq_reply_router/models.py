"""Pydantic data models used across the application.

Objective:
    Centralize all strongly-typed data structures representing:
    - Email messages and folders returned by Microsoft Graph
    - Master categories from the mailbox category list
    - Reply detection evidence and classification results
    - Per-message processing results produced by the pipeline
    - Sent-item lookup results returned to the send workflow

Design notes:
    - These models use Pydantic aliases to match Microsoft Graph field names
      (e.g. ``receivedDateTime`` -> :attr:`Email.received_date_time`).
    - ``model_config = ConfigDict(populate_by_name=True)`` is used to allow
      constructing models with either alias names or pythonic field names.

Call tree usage:
    - :class:`rfq_reply_router.email_client.EmailClient`:
        - validates Graph responses into :class:`Email`, :class:`Folder`,
          :class:`MasterCategory`
    - :class:`rfq_reply_router.reply_detector.ReplyDetector`:
        - returns :class:`ReplyEvidence`
    - :class:`rfq_reply_router.classifier_client.ClassifierClient`:
        - returns :class:`ClassificationResult`
    - :class:`rfq_reply_router.orchestrator.ReplyPipeline`:
        - returns :class:`ProcessingResult`
    - :class:`rfq_reply_router.sent_items.SentItemResolver`:
        - returns :class:`SentItemLookup`
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import Classification


class EmailAddress(BaseModel):
    """Email address with name and address.

    This corresponds to the nested Graph structure:
    ``{"name": "...", "address": "..."}``.
    """

    name: str = ""
    address: str = ""


class EmailRecipient(BaseModel):
    """Email recipient wrapper.

    Microsoft Graph wraps addresses under an ``emailAddress`` object.
    """

    email_address: EmailAddress = Field(alias="emailAddress")

    model_config = ConfigDict(populate_by_name=True)


class EmailBody(BaseModel):
    """Email body content."""

    content_type: str = Field(default="text", alias="contentType")
    content: str = ""

    model_config = ConfigDict(populate_by_name=True)


class Email(BaseModel):
    """
    Email message from Microsoft Graph API.

    Only the fields requested through ``$select`` are populated; everything
    else falls back to its default.

    Attributes:
        id: Unique message ID.
        subject: Email subject line.
        body: Email body content.
        body_preview: Short plain-text preview.
        from_recipient: From address information.
        to_recipients: List of recipients.
        conversation_id: Conversation (thread) ID.
        internet_message_id: RFC 2822 Message-ID.
        parent_folder_id: ID of the containing folder.
        is_read: Whether email has been read.
        categories: Categories currently applied to the email.
    """

    id: str
    subject: str = ""
    received_date_time: Optional[datetime] = Field(default=None, alias="receivedDateTime")
    sent_date_time: Optional[datetime] = Field(default=None, alias="sentDateTime")
    body: EmailBody = Field(default_factory=EmailBody)
    body_preview: str = Field(default="", alias="bodyPreview")
    sender: Optional[EmailRecipient] = None
    from_recipient: Optional[EmailRecipient] = Field(default=None, alias="from")
    to_recipients: list[EmailRecipient] = Field(default_factory=list, alias="toRecipients")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    internet_message_id: Optional[str] = Field(default=None, alias="internetMessageId")
    parent_folder_id: Optional[str] = Field(default=None, alias="parentFolderId")
    is_read: bool = Field(default=False, alias="isRead")
    categories: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("subject", mode="before")
    @classmethod
    def _none_subject_to_empty(cls, value: Optional[str]) -> str:
        # Graph returns null subjects for some system messages
        return value or ""

    @property
    def from_email(self) -> str:
        """Get from email address, falling back to the sender.

        Returns:
            str: Address lowercased, or an empty string if missing.
        """
        for recipient in (self.from_recipient, self.sender):
            if recipient and recipient.email_address.address:
                return recipient.email_address.address.lower()
        return ""

    @property
    def from_name(self) -> str:
        """Get the display name of the sender, or an empty string."""
        for recipient in (self.from_recipient, self.sender):
            if recipient and recipient.email_address.name:
                return recipient.email_address.name
        return ""

    @property
    def recipient_addresses(self) -> list[str]:
        """Lowercased addresses of all ``to`` recipients."""
        return [
            r.email_address.address.lower()
            for r in self.to_recipients
            if r.email_address.address
        ]


class Folder(BaseModel):
    """
    Outlook mail folder.

    Attributes:
        id: Unique folder ID.
        display_name: Folder display name.
        parent_folder_id: Parent folder ID.
        child_folder_count: Number of child folders.
    """

    id: str
    display_name: str = Field(alias="displayName")
    parent_folder_id: Optional[str] = Field(default=None, alias="parentFolderId")
    child_folder_count: int = Field(default=0, alias="childFolderCount")

    model_config = ConfigDict(populate_by_name=True)


class MasterCategory(BaseModel):
    """Entry of the mailbox master category list."""

    id: str
    display_name: str = Field(alias="displayName")
    color: str = "none"

    model_config = ConfigDict(populate_by_name=True)


class DetectionMethod(str, Enum):
    """Which reply detection strategy produced the evidence."""

    SUBJECT = "subject"
    CONVERSATION = "conversation"
    FOLDER_ANCESTRY = "folder_ancestry"
    FOLDER_MEMBERSHIP = "folder_membership"


class ReplyEvidence(BaseModel):
    """Transient proof that an inbound message answers a sent RFQ.

    Attributes:
        material_code: Material code the reply belongs to, when known.
        parent_message_id: ID of the originating RFQ message, when found.
        parent_subject: Subject of the originating message (or of the reply).
        method: Detection strategy that matched.
    """

    material_code: Optional[str] = None
    parent_message_id: Optional[str] = None
    parent_subject: str = ""
    method: DetectionMethod


class ChainMessage(BaseModel):
    """One message of the conversation handed to the classifier."""

    subject: str = ""
    body: str = ""
    from_email: str = ""
    date: str = ""


class ClassificationResult(BaseModel):
    """
    Result returned by the classification backend.

    The backend answers with ``sub_classification`` and ``email_id`` keys;
    unknown labels collapse to :attr:`Classification.OTHER`.

    Attributes:
        classification: Primary label.
        sub_classification: Optional refinement (e.g. ``engineering``).
        confidence: Backend confidence in ``[0, 1]``.
        backend_id: Backend correlation id for follow-up calls.
    """

    classification: Classification
    sub_classification: Optional[str] = None
    confidence: float = 0.0
    backend_id: Optional[str] = Field(default=None, alias="email_id")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("classification", mode="before")
    @classmethod
    def _coerce_unknown(cls, value: object) -> object:
        if isinstance(value, Classification):
            return value
        label = str(value or "").strip().lower()
        known = {c.value for c in Classification}
        return label if label in known else Classification.OTHER.value


class RfqSupplierMapping(BaseModel):
    """RFQ and supplier identifiers recorded when an RFQ is sent."""

    rfq_id: str
    supplier_id: str
    supplier_name: str = ""


class ProcessingOutcome(str, Enum):
    """Terminal state of one pipeline run for one message."""

    FILED = "filed"
    NOT_RFQ_REPLY = "not_rfq_reply"
    ALREADY_PROCESSED = "already_processed"
    DELETED_NOISE = "deleted_noise"
    UNFILEABLE = "unfileable"
    FAILED = "failed"
    QUARANTINED = "quarantined"


class ProcessingResult(BaseModel):
    """
    Result of processing a single inbound message.

    Attributes:
        email_id: Original (inbox) message ID.
        subject: Email subject.
        outcome: Terminal state of the run.
        material_code: Material code the message was filed under.
        classification: Backend classification label.
        target_folder: Folder path the message was moved to.
        moved_email_id: Message ID after the move.
        error: Error message if failed.
    """

    email_id: str
    subject: str = ""
    sender: str = ""
    outcome: ProcessingOutcome
    material_code: Optional[str] = None
    classification: Optional[str] = None
    sub_classification: Optional[str] = None
    target_folder: Optional[str] = None
    moved_email_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        """Whether the message reached a non-failure terminal state."""
        return self.outcome != ProcessingOutcome.FAILED


class SentItemLookup(BaseModel):
    """Answer handed back to the send workflow after a send."""

    found: bool
    message_id: Optional[str] = None
    attempts: int = 0
    matched_by: Optional[str] = None
    filed_folder: Optional[str] = None
