"""Small JSON-file stores shared with the send workflow.

Objective:
    Persist the two mappings the reply pipeline needs across restarts:

    - :class:`RfqSupplierStore`: RFQ/supplier identifiers recorded when an RFQ
      is sent, keyed by the sent message's ``conversationId`` and
      ``internetMessageId`` so replies in the same thread can find them.
    - :class:`EmailIdMappingStore`: mailbox message id -> backend email id
      returned by the classifier.

Both stores read their file lazily and rewrite it completely on every
change. They are meant for one process; concurrent writers are not
coordinated.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .models import Email, RfqSupplierMapping

logger = logging.getLogger(__name__)


class _JsonFileStore:
    """Lazy-loading JSON dictionary backed by a file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data: Optional[dict[str, Any]] = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data

        self._data = {}
        if self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"Ignoring unreadable store {self.path}: {e}")
            else:
                if isinstance(loaded, dict):
                    self._data = loaded
        return self._data

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._load(), indent=2, sort_keys=True), encoding="utf-8")


class EmailIdMappingStore(_JsonFileStore):
    """Maps mailbox message ids to backend email ids."""

    def get(self, message_id: str) -> Optional[str]:
        return self._load().get(message_id)

    def set(self, message_id: str, backend_id: str) -> None:
        data = self._load()
        if data.get(message_id) == backend_id:
            return
        data[message_id] = backend_id
        self._save()
        logger.debug(f"Stored backend id {backend_id} for message {message_id[:20]}...")


class RfqSupplierStore(_JsonFileStore):
    """
    RFQ to supplier mapping keyed by message threading metadata.

    File layout::

        {
          "conversations": {"<conversationId>": {"rfq_id", "supplier_id", "supplier_name"}},
          "messages": {"<internetMessageId>": {...}}
        }
    """

    CONVERSATIONS = "conversations"
    MESSAGES = "messages"

    def register(
        self,
        mapping: RfqSupplierMapping,
        conversation_id: Optional[str] = None,
        internet_message_id: Optional[str] = None,
    ) -> None:
        """
        Record an RFQ/supplier pair for a sent message.

        Args:
            mapping: Identifiers to store.
            conversation_id: Conversation of the sent message.
            internet_message_id: RFC 2822 Message-ID of the sent message.

        Raises:
            ValueError: If neither key is given.
        """
        if not conversation_id and not internet_message_id:
            raise ValueError("conversation_id or internet_message_id is required")

        data = self._load()
        payload = mapping.model_dump()
        if conversation_id:
            data.setdefault(self.CONVERSATIONS, {})[conversation_id] = payload
        if internet_message_id:
            data.setdefault(self.MESSAGES, {})[internet_message_id] = payload
        self._save()
        logger.info(
            "Registered RFQ %s for supplier %s",
            mapping.rfq_id,
            mapping.supplier_id,
        )

    def lookup_by_threading_metadata(self, email: Email) -> Optional[RfqSupplierMapping]:
        """
        Find the RFQ/supplier pair recorded for the thread of ``email``.

        The conversation id is tried first, then the internet message id.

        Args:
            email: Inbound message.

        Returns:
            Optional[RfqSupplierMapping]: Stored mapping, or None.
        """
        data = self._load()
        candidates = (
            (self.CONVERSATIONS, email.conversation_id),
            (self.MESSAGES, email.internet_message_id),
        )
        for section, key in candidates:
            if not key:
                continue
            raw = data.get(section, {}).get(key)
            if raw is None:
                continue
            try:
                return RfqSupplierMapping.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed RFQ mapping for {key[:20]}...: {e}")
        return None
