"""HTTP client for the procurement classification backend.

Objective:
    Send a supplier conversation to the backend's ``/emails/classify``
    endpoint and return a validated :class:`ClassificationResult`.

Request payload::

    {
      "email_chain": [{"subject", "body", "from_email", "date"}, ...],
      "most_recent_reply": {"subject", "body", "from_email", "date", "in_reply_to"},
      "rfq_id": "...",        # optional
      "supplier_id": "..."    # optional
    }

Response payload::

    {"classification": "quote", "sub_classification": null,
     "confidence": 0.93, "email_id": "backend-123"}
"""

import logging
from typing import Any, Optional

import requests
from pydantic import ValidationError

from .config import Settings
from .models import ChainMessage, ClassificationResult

logger = logging.getLogger(__name__)


class ClassificationError(RuntimeError):
    """Raised when the backend cannot classify a message.

    Attributes:
        status_code: HTTP status, or None for transport errors.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClassifierClient:
    """
    Thin wrapper around the classification endpoint.

    Attributes:
        settings: Application settings (backend URL and timeout).
        session: HTTP session reused across calls.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()

    def classify(
        self,
        email_chain: list[ChainMessage],
        most_recent_reply: dict[str, Any],
        rfq_id: Optional[str] = None,
        supplier_id: Optional[str] = None,
    ) -> ClassificationResult:
        """
        Classify a supplier message in the context of its conversation.

        Args:
            email_chain: Conversation, oldest first.
            most_recent_reply: The message being classified.
            rfq_id: RFQ identifier, when known.
            supplier_id: Supplier identifier, when known.

        Returns:
            ClassificationResult: Backend answer.

        Raises:
            ClassificationError: On transport errors, non-2xx answers or an
                unexpected payload.
        """
        payload: dict[str, Any] = {
            "email_chain": [m.model_dump() for m in email_chain],
            "most_recent_reply": most_recent_reply,
        }
        if rfq_id:
            payload["rfq_id"] = rfq_id
        if supplier_id:
            payload["supplier_id"] = supplier_id

        url = f"{self.settings.classifier_base_url}/emails/classify"
        logger.debug(
            "Classifying message (chain=%s, rfq_id=%s, supplier_id=%s)",
            len(email_chain),
            rfq_id,
            supplier_id,
        )

        try:
            response = self.session.post(
                url,
                json=payload,
                timeout=self.settings.classifier_timeout_seconds,
            )
        except requests.RequestException as e:
            raise ClassificationError(
                f"Network error: {e}. Is the backend running at {self.settings.classifier_api_url}?"
            ) from e

        if not response.ok:
            detail = response.text
            try:
                detail = response.json().get("detail", detail)
            except ValueError:
                pass
            raise ClassificationError(
                f"HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        try:
            result = ClassificationResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ClassificationError(f"Unexpected classification payload: {e}") from e

        logger.info(
            "Classification result: %s (confidence: %.2f)",
            result.classification.value,
            result.confidence,
        )
        return result
