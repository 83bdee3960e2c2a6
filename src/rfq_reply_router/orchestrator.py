"""Reply processing pipeline.

Objective:
    Coordinate the end-to-end handling of one inbound supplier reply:
    1) Skip messages already handled in this session
    2) Detect whether the message answers a sent RFQ
    3) Delete automated noise (bounces, postmaster reports)
    4) Classify the message in its conversation context
    5) Ensure the material folders exist and move the message
    6) Mirror the folder as a category and mark the message read
    7) Return a :class:`ProcessingResult` suitable for CLI/web API

Responsibilities:
    - Compose the core components (Graph client, folder manager, category
      synchronizer, reply detector, classification orchestrator).
    - Own the session state: the processed set, per-message failure counts
      and, through its components, the folder and category caches.

High-level call tree:
    - :class:`ReplyPipeline`
        - :meth:`ReplyPipeline.handle`
            - :meth:`ReplyDetector.detect`
            - :meth:`ReplyPipeline.process_message`
                - :meth:`EmailClient.get_message`
                - :meth:`ClassificationOrchestrator.build_email_chain`
                - :meth:`ClassificationOrchestrator.classify`
                - :func:`get_folder_for_classification`
                - :meth:`FolderManager.initialize_material_folders`
                - :meth:`FolderManager.move_message_to_folder`
                - :meth:`CategorySynchronizer.set_folder_category`
                - :meth:`EmailClient.patch_message`

Operational notes:
    - Moving the message is the last critical step. Category and read-state
      updates afterwards are best-effort.
    - A message that keeps failing is quarantined after
      ``settings.max_processing_attempts`` failures so it stops consuming
      classifier calls on every poll.
    - The processed set lives in memory only; a restart re-inspects the inbox.
"""

import logging
from typing import Optional

import requests
from pydantic import ValidationError

from .auth import GraphAuthenticator
from .category_sync import CategorySynchronizer
from .classification import ClassificationOrchestrator
from .classifier_client import ClassificationError, ClassifierClient
from .config import Settings, get_settings
from .email_client import EmailClient
from .folder_manager import FolderManager, FolderNotFoundError, get_folder_for_classification
from .models import Email, ProcessingOutcome, ProcessingResult, ReplyEvidence
from .reply_detector import ReplyDetector, extract_material_code
from .sanitizer import is_noise_sender
from .stores import EmailIdMappingStore, RfqSupplierStore

logger = logging.getLogger(__name__)


class ReplyPipeline:
    """
    Processes inbound RFQ replies for one mailbox session.

    Attributes:
        settings: Application settings.
        email_client: Email client for API operations.
        folder_manager: Folder taxonomy management.
        category_sync: Folder category synchronizer.
        detector: Reply detection cascade.
        classification: Classification orchestrator.
        processed_ids: Inbox message ids handled in this session.
        failure_counts: Failed attempts per inbox message id.
    """

    def __init__(
        self,
        settings: Settings,
        email_client: EmailClient,
        classifier: ClassifierClient,
        rfq_store: RfqSupplierStore,
        id_store: EmailIdMappingStore,
        detector: Optional[ReplyDetector] = None,
        folder_manager: Optional[FolderManager] = None,
        category_sync: Optional[CategorySynchronizer] = None,
    ) -> None:
        """
        Initialize the pipeline with explicit dependencies.

        Args:
            settings: Application settings.
            email_client: Email client bound to the mailbox.
            classifier: Classification backend client.
            rfq_store: RFQ/supplier mapping store.
            id_store: Backend email id mapping store.
            detector: Reply detector (default cascade if None).
            folder_manager: Folder manager (created if None).
            category_sync: Category synchronizer (created if None).
        """
        self.settings = settings
        self.email_client = email_client
        self.folder_manager = folder_manager or FolderManager(
            email_client, max_depth=settings.folder_ancestry_max_depth
        )
        self.category_sync = category_sync or CategorySynchronizer(email_client)
        self.detector = detector or ReplyDetector.default(email_client, self.folder_manager)
        self.classification = ClassificationOrchestrator(
            email_client, classifier, rfq_store, id_store
        )

        self.processed_ids: set[str] = set()
        self.failure_counts: dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        auth: Optional[GraphAuthenticator] = None,
    ) -> "ReplyPipeline":
        """Build a pipeline and all of its collaborators from settings.

        Args:
            settings: Application settings (loads from env if None).
            auth: Authenticator to share with other components.

        Returns:
            ReplyPipeline: Ready-to-use pipeline.
        """
        settings = settings or get_settings()
        auth = auth or GraphAuthenticator(settings)
        email_client = EmailClient(settings, auth)
        return cls(
            settings=settings,
            email_client=email_client,
            classifier=ClassifierClient(settings),
            rfq_store=RfqSupplierStore(settings.rfq_mapping_path),
            id_store=EmailIdMappingStore(settings.email_id_mapping_path),
        )

    def is_processed(self, message_id: str) -> bool:
        return message_id in self.processed_ids

    def reset_processed(self) -> None:
        """Forget every processed and failed message (operator recheck)."""
        logger.info(f"Clearing {len(self.processed_ids)} processed message id(s)")
        self.processed_ids.clear()
        self.failure_counts.clear()

    def _mark_processed(self, message_id: str) -> None:
        self.processed_ids.add(message_id)
        self.failure_counts.pop(message_id, None)

    def handle(self, email: Email) -> ProcessingResult:
        """
        Detect and, if the message is an RFQ reply, process it.

        Args:
            email: Inbound message from the inbox listing.

        Returns:
            ProcessingResult: Result of handling.
        """
        if self.is_processed(email.id):
            logger.debug(f"Skipping already processed message {email.id[:20]}...")
            return ProcessingResult(
                email_id=email.id,
                subject=email.subject,
                sender=email.from_email,
                outcome=ProcessingOutcome.ALREADY_PROCESSED,
            )

        evidence = self.detector.detect(email)
        if evidence is None:
            return ProcessingResult(
                email_id=email.id,
                subject=email.subject,
                sender=email.from_email,
                outcome=ProcessingOutcome.NOT_RFQ_REPLY,
            )

        return self.process_message(email, evidence)

    def _noise_result(self, email: Email) -> Optional[ProcessingResult]:
        if not is_noise_sender(
            email.from_email,
            email.from_name,
            email.subject,
            self.settings.noise_sender_pattern_list,
            email.body_preview,
        ):
            return None

        logger.info(f"Deleting automated message from {email.from_email or email.from_name}: {email.subject[:60]}")
        self.email_client.delete_message(email.id)
        self._mark_processed(email.id)
        return ProcessingResult(
            email_id=email.id,
            subject=email.subject,
            sender=email.from_email,
            outcome=ProcessingOutcome.DELETED_NOISE,
        )

    def process_message(self, email: Email, evidence: ReplyEvidence) -> ProcessingResult:
        """
        Classify, file and tag one detected RFQ reply.

        Errors are caught and returned inside :class:`ProcessingResult` so
        that a poll tick can continue with other messages. A failed message
        stays unprocessed and is retried on the next poll until it is
        quarantined.

        Args:
            email: Inbound message (listing fields are enough).
            evidence: Detection evidence.

        Returns:
            ProcessingResult: Result of processing.
        """
        try:
            noise = self._noise_result(email)
            if noise:
                return noise

            full_email = self.email_client.get_message(email.id)
            # Sender fields can be missing from the listing
            noise = self._noise_result(full_email)
            if noise:
                return noise

            chain = self.classification.build_email_chain(full_email)
            result = self.classification.classify(full_email, chain)

            material_code = evidence.material_code or extract_material_code(full_email.subject)
            if not material_code:
                logger.warning(
                    f"No material code for {full_email.subject[:60]!r}; leaving it in place"
                )
                self._mark_processed(email.id)
                return ProcessingResult(
                    email_id=email.id,
                    subject=full_email.subject,
                    sender=full_email.from_email,
                    outcome=ProcessingOutcome.UNFILEABLE,
                    classification=result.classification.value,
                    sub_classification=result.sub_classification,
                )

            target_path = get_folder_for_classification(
                material_code, result.classification, result.sub_classification
            )
            self.folder_manager.initialize_material_folders(material_code)
            moved_id = self.folder_manager.move_message_to_folder(email.id, target_path)

        except (
            requests.RequestException,
            ValidationError,
            ClassificationError,
            FolderNotFoundError,
        ) as e:
            logger.error(f"Error processing message {email.id[:20]}...: {e}", exc_info=True)
            return self._record_failure(email, evidence, str(e))

        leaf = target_path.rsplit("/", 1)[-1]
        self._apply_category(moved_id, leaf)
        self._mark_read(moved_id)

        self._mark_processed(email.id)
        logger.info(
            "Filed %r as %s in %s",
            full_email.subject[:60],
            result.classification.value,
            target_path,
        )
        return ProcessingResult(
            email_id=email.id,
            subject=full_email.subject,
            sender=full_email.from_email,
            outcome=ProcessingOutcome.FILED,
            material_code=material_code,
            classification=result.classification.value,
            sub_classification=result.sub_classification,
            target_folder=target_path,
            moved_email_id=moved_id,
        )

    def _apply_category(self, message_id: str, folder_name: str) -> None:
        try:
            self.category_sync.set_folder_category(message_id, folder_name)
        except requests.RequestException as e:
            logger.warning(f"Could not apply category for folder {folder_name!r}: {e}")

    def _mark_read(self, message_id: str) -> None:
        try:
            self.email_client.patch_message(message_id, is_read=True)
        except requests.RequestException as e:
            logger.warning(f"Could not mark message {message_id[:20]}... as read: {e}")

    def _record_failure(self, email: Email, evidence: ReplyEvidence, error: str) -> ProcessingResult:
        attempts = self.failure_counts.get(email.id, 0) + 1
        self.failure_counts[email.id] = attempts

        limit = self.settings.max_processing_attempts
        if limit and attempts >= limit:
            logger.warning(
                "Quarantining message %s after %s failed attempt(s): %s",
                email.id[:20],
                attempts,
                email.subject[:60],
            )
            self._mark_processed(email.id)
            outcome = ProcessingOutcome.QUARANTINED
        else:
            outcome = ProcessingOutcome.FAILED

        return ProcessingResult(
            email_id=email.id,
            subject=email.subject,
            sender=email.from_email,
            outcome=outcome,
            material_code=evidence.material_code,
            error=error,
        )
