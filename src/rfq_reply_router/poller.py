"""Fixed-interval inbox poller.

Objective:
    Periodically list the newest inbox messages and hand every unseen one to
    the :class:`ReplyPipeline`, one after the other.

High-level call tree:
    - :class:`ReplyPoller`
        - :meth:`run_forever`
            - :meth:`tick`
                - :meth:`GraphAuthenticator.is_signed_in`
                - :meth:`EmailClient.list_messages`
                - :meth:`ReplyPipeline.handle` (sequentially)
        - :meth:`force_recheck`
            - :meth:`ReplyPipeline.reset_processed`
            - :meth:`tick`

Operational notes:
    - Read and unread messages are both listed; the user may already have
      opened a reply before the poll saw it.
    - Ticks never overlap. A tick requested while another one runs (e.g. a
      web API poll during ``watch``) is skipped.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

import requests

from .auth import GraphAuthenticator
from .config import Settings
from .email_client import EmailClient
from .models import ProcessingOutcome, ProcessingResult
from .orchestrator import ReplyPipeline

logger = logging.getLogger(__name__)


class ReplyPoller:
    """
    Runs the reply pipeline over the inbox on a fixed interval.

    Attributes:
        pipeline: Reply processing pipeline.
        email_client: Email client used for the inbox listing.
        auth: Authenticator used to check the sign-in state.
        settings: Application settings.
        last_results: Results of the most recent completed tick.
        last_tick_at: Completion time of the most recent tick.
    """

    def __init__(
        self,
        pipeline: ReplyPipeline,
        email_client: EmailClient,
        auth: GraphAuthenticator,
        settings: Settings,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.pipeline = pipeline
        self.email_client = email_client
        self.auth = auth
        self.settings = settings

        self._lock = threading.Lock()
        self._stop_event = stop_event or threading.Event()
        self.last_results: list[ProcessingResult] = []
        self.last_tick_at: Optional[datetime] = None
        self.tick_count = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReplyPoller":
        auth = GraphAuthenticator(settings)
        pipeline = ReplyPipeline.from_settings(settings, auth=auth)
        return cls(pipeline, pipeline.email_client, auth, settings)

    @property
    def is_running_tick(self) -> bool:
        return self._lock.locked()

    def tick(self) -> list[ProcessingResult]:
        """
        Run one polling cycle.

        Returns:
            list[ProcessingResult]: Results for messages not yet processed.
            Empty when signed out, when the inbox cannot be listed, or when
            another tick is in progress.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Previous poll still running; skipping this tick")
            return []

        try:
            if not self.auth.is_signed_in():
                logger.debug("Not signed in; skipping poll")
                return []

            try:
                emails = self.email_client.list_messages(
                    "inbox", top=self.settings.inbox_page_size
                )
            except requests.RequestException as e:
                logger.error(f"Could not list inbox messages: {e}")
                return []

            pending = [e for e in emails if not self.pipeline.is_processed(e.id)]
            logger.info(
                "Inbox check: %s message(s), %s already processed",
                len(emails),
                len(emails) - len(pending),
            )

            results = []
            for i, email in enumerate(pending, 1):
                logger.debug(f"Checking message {i}/{len(pending)}: {email.subject[:50]}")
                results.append(self.pipeline.handle(email))

            filed = sum(1 for r in results if r.outcome == ProcessingOutcome.FILED)
            failed = sum(1 for r in results if not r.success)
            logger.info(f"Poll complete: {filed} filed, {failed} failed")

            self.last_results = results
            self.last_tick_at = datetime.now(timezone.utc)
            self.tick_count += 1
            return results
        finally:
            self._lock.release()

    def force_recheck(self) -> list[ProcessingResult]:
        """Clear the processed set and poll immediately."""
        self.pipeline.reset_processed()
        return self.tick()

    def run_forever(self, max_ticks: Optional[int] = None) -> None:
        """
        Poll until :meth:`stop` is called.

        Args:
            max_ticks: Stop after this many ticks (None runs until stopped).
        """
        interval = self.settings.poll_interval_seconds
        logger.info(f"Watching inbox every {interval:g}s")

        ticks = 0
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Poll failed; retrying after the interval")
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            self._stop_event.wait(interval)

        logger.info("Inbox watcher stopped")

    def stop(self) -> None:
        self._stop_event.set()

    def status(self) -> dict:
        """Summarize the poller state for the CLI and web API."""
        return {
            "signed_in": self.auth.is_signed_in(),
            "poll_interval_seconds": self.settings.poll_interval_seconds,
            "tick_in_progress": self.is_running_tick,
            "tick_count": self.tick_count,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "processed_count": len(self.pipeline.processed_ids),
            "pending_failures": len(self.pipeline.failure_counts),
        }
