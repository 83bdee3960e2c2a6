"""Locate and file RFQs right after they are sent.

Objective:
    The Sent Items listing is only eventually consistent: a message sent a
    second ago is often not there yet. :class:`SentItemResolver` polls it a
    bounded number of times with a growing delay, and
    :class:`SentItemFiler` files the message it finds under the material's
    ``Sent RFQs`` folder and records the RFQ/supplier pair for later replies.

Search order per attempt:
    1. Exact subject, then exact recipient (case-insensitive).
    2. Most recent exact-subject match when no recipient matches.
    3. Most recent ``sent_item_recent_window`` items, recipient and subject.
    4. Final attempt only: subject-only match among those recent items.

High-level call tree:
    - :class:`SentItemFiler`
        - :meth:`SentItemFiler.file_sent_rfq`
            - :meth:`SentItemResolver.find`
                - :func:`retry_until`
                    - :meth:`EmailClient.list_sent_items`
            - :meth:`FolderManager.initialize_material_folders`
            - :meth:`FolderManager.move_message_to_folder`
            - :meth:`CategorySynchronizer.set_folder_category`
            - :meth:`RfqSupplierStore.register`
"""

import logging
import time
from typing import Callable, Optional, TypeVar

import requests

from .category_sync import CategorySynchronizer
from .config import FolderName, Settings
from .email_client import EmailClient
from .folder_manager import FolderManager
from .models import Email, RfqSupplierMapping, SentItemLookup
from .orchestrator import ReplyPipeline
from .reply_detector import extract_rfq_id
from .stores import RfqSupplierStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_until(
    attempt_fn: Callable[[int], T],
    attempts: int,
    delay_fn: Callable[[int], float],
    is_done: Callable[[T], bool] = lambda result: result is not None,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[T, int]:
    """Call ``attempt_fn`` until ``is_done`` accepts its result.

    ``delay_fn(i)`` seconds are slept before attempt ``i`` (zero-based).

    Args:
        attempt_fn: Called with the zero-based attempt index.
        attempts: Maximum number of attempts.
        delay_fn: Delay before each attempt.
        is_done: Predicate on the attempt result.
        sleep: Sleep function (injected in tests).

    Returns:
        tuple[T, int]: Last result and the number of attempts made.

    Raises:
        ValueError: If ``attempts`` is smaller than 1.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    result = None
    for attempt in range(attempts):
        delay = delay_fn(attempt)
        if delay > 0:
            sleep(delay)
        result = attempt_fn(attempt)
        if is_done(result):
            return result, attempt + 1
    return result, attempts


class SentItemResolver:
    """
    Finds a just-sent message in Sent Items.

    Attributes:
        email_client: Email client for Sent Items listings.
        settings: Attempt count, delays and recent window.
    """

    SUBJECT_SEARCH_SIZE = 10

    def __init__(
        self,
        email_client: EmailClient,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.email_client = email_client
        self.settings = settings
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before the zero-based ``attempt``."""
        return (
            self.settings.sent_item_initial_delay_seconds
            + attempt * self.settings.sent_item_delay_step_seconds
        )

    def _search_once(
        self, subject: str, recipient: str, final: bool
    ) -> Optional[tuple[Email, str]]:
        wanted_subject = subject.strip()
        wanted_recipient = recipient.strip().lower()

        subject_matches = self.email_client.list_sent_items(
            top=self.SUBJECT_SEARCH_SIZE, subject=subject
        )
        for item in subject_matches:
            if wanted_recipient in item.recipient_addresses:
                return item, "subject_and_recipient"
        if subject_matches:
            return subject_matches[0], "subject"

        recent = self.email_client.list_sent_items(top=self.settings.sent_item_recent_window)
        for item in recent:
            if item.subject.strip() == wanted_subject and wanted_recipient in item.recipient_addresses:
                return item, "recent_subject_and_recipient"

        if final:
            for item in recent:
                if item.subject.strip() == wanted_subject:
                    return item, "recent_subject"
        return None

    def find(self, subject: str, recipient: str) -> tuple[Optional[Email], int, Optional[str]]:
        """
        Search Sent Items for a just-sent message.

        Args:
            subject: Subject of the sent message.
            recipient: Recipient address.

        Returns:
            tuple: ``(message or None, attempts made, match rule or None)``.
        """
        max_attempts = self.settings.sent_item_max_attempts

        def attempt(index: int) -> Optional[tuple[Email, str]]:
            logger.debug(f"Sent item search attempt {index + 1}/{max_attempts}")
            try:
                return self._search_once(subject, recipient, final=index == max_attempts - 1)
            except requests.RequestException as e:
                logger.warning(f"Sent item search attempt {index + 1} failed: {e}")
                return None

        found, attempts = retry_until(
            attempt,
            attempts=max_attempts,
            delay_fn=self.delay_for,
            sleep=self.sleep,
        )
        if found is None:
            logger.warning(
                f"Sent item {subject!r} to {recipient} not found after {attempts} attempt(s)"
            )
            return None, attempts, None

        email, matched_by = found
        logger.info(f"Found sent item {email.id[:20]}... after {attempts} attempt(s) ({matched_by})")
        return email, attempts, matched_by

    def resolve(self, subject: str, recipient: str) -> SentItemLookup:
        """Search Sent Items and answer the send workflow."""
        email, attempts, matched_by = self.find(subject, recipient)
        return SentItemLookup(
            found=email is not None,
            message_id=email.id if email else None,
            attempts=attempts,
            matched_by=matched_by,
        )


class SentItemFiler:
    """
    Files sent RFQs into the material taxonomy.

    Attributes:
        resolver: Sent item resolver.
        folder_manager: Folder taxonomy management.
        category_sync: Folder category synchronizer.
        rfq_store: RFQ/supplier mapping store.
    """

    def __init__(
        self,
        resolver: SentItemResolver,
        folder_manager: FolderManager,
        category_sync: CategorySynchronizer,
        rfq_store: RfqSupplierStore,
    ) -> None:
        self.resolver = resolver
        self.folder_manager = folder_manager
        self.category_sync = category_sync
        self.rfq_store = rfq_store

    @classmethod
    def from_pipeline(cls, pipeline: ReplyPipeline, settings: Settings) -> "SentItemFiler":
        """Build a filer sharing the mailbox session and caches of ``pipeline``."""
        return cls(
            SentItemResolver(pipeline.email_client, settings),
            pipeline.folder_manager,
            pipeline.category_sync,
            pipeline.classification.rfq_store,
        )

    def file_sent_rfq(
        self,
        subject: str,
        recipient: str,
        material_code: str,
        rfq_id: Optional[str] = None,
        supplier_id: Optional[str] = None,
        supplier_name: str = "",
    ) -> SentItemLookup:
        """
        Find a sent RFQ and file it under ``{material}/Sent RFQs``.

        A message that cannot be found is reported as not found; the send
        itself already succeeded and nothing is retried later.

        Args:
            subject: Subject of the sent RFQ.
            recipient: Supplier address the RFQ was sent to.
            material_code: Material code the RFQ belongs to.
            rfq_id: RFQ identifier (taken from the subject if None).
            supplier_id: Supplier identifier (recipient address if None).
            supplier_name: Supplier display name.

        Returns:
            SentItemLookup: Lookup outcome, with the folder when filed.

        Raises:
            requests.HTTPError: If folder creation or the move fails.
            FolderNotFoundError: If the destination cannot be resolved.
        """
        material_code = material_code.upper()
        email, attempts, matched_by = self.resolver.find(subject, recipient)
        if email is None:
            return SentItemLookup(found=False, attempts=attempts)

        self.folder_manager.initialize_material_folders(material_code)
        path = f"{material_code}/{FolderName.SENT_RFQS.value}"
        moved_id = self.folder_manager.move_message_to_folder(email.id, path)

        try:
            self.category_sync.set_folder_category(moved_id, FolderName.SENT_RFQS.value)
        except requests.RequestException as e:
            logger.warning(f"Could not tag sent RFQ {moved_id[:20]}...: {e}")

        if email.conversation_id or email.internet_message_id:
            mapping = RfqSupplierMapping(
                rfq_id=rfq_id or extract_rfq_id(subject) or material_code,
                supplier_id=supplier_id or recipient.strip().lower(),
                supplier_name=supplier_name,
            )
            self.rfq_store.register(
                mapping,
                conversation_id=email.conversation_id,
                internet_message_id=email.internet_message_id,
            )

        return SentItemLookup(
            found=True,
            message_id=moved_id,
            attempts=attempts,
            matched_by=matched_by,
            filed_folder=path,
        )
