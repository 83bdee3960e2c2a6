"""Decide whether an inbound message answers a sent RFQ.

Objective:
    Recognise supplier replies and recover the material code they belong to,
    using an ordered list of interchangeable strategies. The first strategy
    that returns evidence wins; a message no strategy recognises is simply
    not an RFQ reply.

Strategies (in order):
    1. :class:`SubjectPatternStrategy` - ``MAT-<digits>`` in a subject that is
       a reply/forward or mentions ``RFQ``. No Graph calls.
    2. :class:`ConversationStrategy` - a sibling in the same conversation
       carries the ``Sent RFQ`` category.
    3. :class:`FolderAncestryStrategy` - the message sits somewhere below a
       ``MAT-<digits>`` folder.
    4. :class:`FolderMembershipStrategy` - the message sits in a folder named
       ``Sent RFQs``.

High-level call tree:
    - :class:`ReplyDetector`
        - :meth:`ReplyDetector.detect`
            - ``strategy.detect(email)`` for each strategy
                - :meth:`FolderManager.find_material_code_in_ancestry`
                - :meth:`EmailClient.search_by_conversation`

Error handling:
    A Graph failure inside one strategy is logged and the cascade moves on to
    the next strategy.
"""

import logging
import re
from typing import Optional, Protocol

import requests
from pydantic import ValidationError

from .config import MATERIAL_CODE_PATTERN, FolderName
from .email_client import EmailClient
from .folder_manager import FolderManager
from .models import DetectionMethod, Email, ReplyEvidence

logger = logging.getLogger(__name__)

MATERIAL_CODE_RE = re.compile(MATERIAL_CODE_PATTERN, re.IGNORECASE)
REPLY_PREFIX_RE = re.compile(r"^(re|fw|fwd):", re.IGNORECASE)
RFQ_RE = re.compile(r"rfq", re.IGNORECASE)
RFQ_NUMBER_RE = re.compile(r"RFQ[- ]?(\d+)", re.IGNORECASE)


def extract_material_code(text: Optional[str]) -> Optional[str]:
    """Return the first ``MAT-<digits>`` token of ``text``, uppercased."""
    if not text:
        return None
    match = MATERIAL_CODE_RE.search(text)
    return match.group(0).upper() if match else None


def extract_rfq_id(subject: Optional[str]) -> Optional[str]:
    """Extract an RFQ identifier from a subject line.

    ``RFQ for MAT-12345`` yields ``MAT-12345``; ``RFQ-981`` or ``RFQ 981``
    yields ``981``.

    Args:
        subject: Subject line.

    Returns:
        Optional[str]: RFQ identifier, or None.
    """
    material_code = extract_material_code(subject)
    if material_code:
        return material_code

    match = RFQ_NUMBER_RE.search(subject or "")
    return match.group(1) if match else None


class DetectionStrategy(Protocol):
    """A single reply detection heuristic."""

    method: DetectionMethod

    def detect(self, email: Email) -> Optional[ReplyEvidence]:
        ...


class SubjectPatternStrategy:
    """Match ``MAT-<digits>`` in reply/forward or RFQ subjects."""

    method = DetectionMethod.SUBJECT

    def detect(self, email: Email) -> Optional[ReplyEvidence]:
        subject = email.subject.strip()
        material_code = extract_material_code(subject)
        if not material_code:
            return None

        is_reply = bool(REPLY_PREFIX_RE.match(subject))
        mentions_rfq = bool(RFQ_RE.search(subject))
        if not (is_reply or mentions_rfq):
            return None

        return ReplyEvidence(
            material_code=material_code,
            parent_subject=email.subject,
            method=self.method,
        )


class _FolderAwareStrategy:
    """Shared plumbing for strategies that need the message's folder."""

    def __init__(self, email_client: EmailClient, folder_manager: FolderManager) -> None:
        self.email_client = email_client
        self.folder_manager = folder_manager

    def _parent_folder_id(self, email: Email) -> Optional[str]:
        if email.parent_folder_id:
            return email.parent_folder_id
        fetched = self.email_client.get_message(email.id, select="id,parentFolderId")
        return fetched.parent_folder_id


class ConversationStrategy(_FolderAwareStrategy):
    """Find a ``Sent RFQ`` categorized sibling in the same conversation."""

    method = DetectionMethod.CONVERSATION
    SENT_RFQ_MARKER = "sent rfq"

    def detect(self, email: Email) -> Optional[ReplyEvidence]:
        conversation_id = email.conversation_id
        if not conversation_id:
            conversation_id = self.email_client.get_message(
                email.id, select="id,conversationId"
            ).conversation_id
        if not conversation_id:
            logger.debug(f"Message {email.id[:20]}... has no conversationId")
            return None

        siblings = self.email_client.search_by_conversation(
            conversation_id,
            select="id,subject,categories,receivedDateTime,parentFolderId",
        )
        for sibling in siblings:
            if sibling.id == email.id:
                continue
            if not any(self.SENT_RFQ_MARKER in c.lower() for c in sibling.categories):
                continue

            material_code = self.folder_manager.find_material_code_in_ancestry(
                self._parent_folder_id(sibling)
            ) or extract_material_code(sibling.subject)

            logger.debug(f"Found Sent RFQ parent {sibling.id[:20]}... (material={material_code})")
            return ReplyEvidence(
                material_code=material_code,
                parent_message_id=sibling.id,
                parent_subject=sibling.subject,
                method=self.method,
            )
        return None


class FolderAncestryStrategy(_FolderAwareStrategy):
    """Recover the material code from the folders above the message."""

    method = DetectionMethod.FOLDER_ANCESTRY

    def detect(self, email: Email) -> Optional[ReplyEvidence]:
        material_code = self.folder_manager.find_material_code_in_ancestry(
            self._parent_folder_id(email)
        )
        if not material_code:
            return None
        return ReplyEvidence(
            material_code=material_code,
            parent_subject=email.subject,
            method=self.method,
        )


class FolderMembershipStrategy(_FolderAwareStrategy):
    """Treat messages already filed in a ``Sent RFQs`` folder as RFQ context."""

    method = DetectionMethod.FOLDER_MEMBERSHIP

    def detect(self, email: Email) -> Optional[ReplyEvidence]:
        folder_id = self._parent_folder_id(email)
        if not folder_id:
            return None
        folder = self.folder_manager.get_folder(folder_id)
        if not folder or folder.display_name != FolderName.SENT_RFQS.value:
            return None

        return ReplyEvidence(
            material_code=self.folder_manager.find_material_code_in_ancestry(folder_id),
            parent_subject=email.subject,
            method=self.method,
        )


class ReplyDetector:
    """
    Runs detection strategies in order and returns the first match.

    Attributes:
        strategies: Ordered strategies; earlier ones are cheaper.
    """

    def __init__(self, strategies: list[DetectionStrategy]) -> None:
        self.strategies = list(strategies)

    @classmethod
    def default(cls, email_client: EmailClient, folder_manager: FolderManager) -> "ReplyDetector":
        """Build the standard four-step cascade."""
        return cls(
            [
                SubjectPatternStrategy(),
                ConversationStrategy(email_client, folder_manager),
                FolderAncestryStrategy(email_client, folder_manager),
                FolderMembershipStrategy(email_client, folder_manager),
            ]
        )

    def detect(self, email: Email) -> Optional[ReplyEvidence]:
        """
        Decide whether ``email`` is a reply to a sent RFQ.

        Args:
            email: Inbound message (listing fields are enough).

        Returns:
            Optional[ReplyEvidence]: Evidence from the first matching
            strategy, or None when the message is not an RFQ reply.
        """
        for strategy in self.strategies:
            try:
                evidence = strategy.detect(email)
            except (requests.RequestException, ValidationError) as e:
                logger.warning(
                    "Reply detection via %s failed for %s: %s",
                    strategy.method.value,
                    email.id[:20],
                    e,
                )
                continue

            if evidence:
                logger.info(
                    "Detected RFQ reply via %s (material=%s): %s",
                    evidence.method.value,
                    evidence.material_code or "unknown",
                    email.subject[:60],
                )
                return evidence

        logger.debug(f"Not an RFQ reply: {email.subject[:60]}")
        return None
