"""FastAPI operator API for the RFQ reply router.

Objective:
    Expose the poller and the sent-RFQ filer over a small JSON API so the
    send workflow and operators can drive them. Business logic stays in
    :mod:`rfq_reply_router.poller` and :mod:`rfq_reply_router.sent_items`;
    this module only handles request parsing and response shaping.

High-level call tree:
    - :func:`create_app`:
        - defines routes:
            - ``GET /health`` -> :func:`health`
            - ``GET /api/status`` -> :func:`status`
            - ``POST /api/poll`` -> :func:`poll`
            - ``POST /api/recheck`` -> :func:`recheck`
            - ``POST /api/sent-items/file`` -> :func:`file_sent_item`
    - :func:`get_poller`:
        - returns the process-wide :class:`ReplyPoller`.
    - :func:`get_filer`:
        - returns a :class:`SentItemFiler` sharing the poller's session.

Operational notes:
    - The poller is created once per process so the processed set and the
      folder caches survive between requests.
    - Settings are switched to ``device_code_prompt_mode="web"``; a missing
      sign-in is answered with 401 and the device code instructions.
    - For tests, :func:`get_poller` and :func:`get_filer` are overridden via
      ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional

import requests
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth import DeviceCodeAuthRequired
from .config import get_settings
from .folder_manager import FolderNotFoundError
from .models import ProcessingResult
from .poller import ReplyPoller
from .sent_items import SentItemFiler

logger = logging.getLogger(__name__)


class FileSentItemRequest(BaseModel):
    """Body of ``POST /api/sent-items/file``."""

    subject: str
    recipient: str
    material_code: str
    rfq_id: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_name: str = ""


@lru_cache
def get_poller() -> ReplyPoller:
    """Create the process-wide :class:`ReplyPoller`.

    Returns:
        ReplyPoller: Shared poller instance.
    """
    settings = get_settings()
    settings.device_code_prompt_mode = "web"
    return ReplyPoller.from_settings(settings)


def get_filer(poller: ReplyPoller = Depends(get_poller)) -> SentItemFiler:
    return SentItemFiler.from_pipeline(poller.pipeline, poller.settings)


def _auth_required(e: DeviceCodeAuthRequired) -> JSONResponse:
    return JSONResponse(
        {
            "error": "authentication_required",
            "verification_uri": e.verification_uri,
            "user_code": e.user_code,
            "message": e.message,
        },
        status_code=401,
    )


def _results_payload(results: list[ProcessingResult]) -> dict[str, Any]:
    return {
        "results": [r.model_dump(mode="json") for r in results],
        "summary": {
            "total": len(results),
            "filed": sum(1 for r in results if r.outcome.value == "filed"),
            "failed": sum(1 for r in results if not r.success),
        },
    }


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: FastAPI app.
    """

    app = FastAPI(title="RFQ Reply Router")

    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint.

        This is intentionally simple and should not perform external calls.
        """

        return {"status": "ok"}

    @app.get("/api/status")
    def status(poller: ReplyPoller = Depends(get_poller)) -> Any:
        try:
            return poller.status()
        except DeviceCodeAuthRequired as e:
            return _auth_required(e)

    @app.post("/api/poll")
    def poll(poller: ReplyPoller = Depends(get_poller)) -> Any:
        """Run one polling cycle now."""

        try:
            results = poller.tick()
        except DeviceCodeAuthRequired as e:
            return _auth_required(e)
        return _results_payload(results)

    @app.post("/api/recheck")
    def recheck(poller: ReplyPoller = Depends(get_poller)) -> Any:
        """Forget processed messages and run one polling cycle."""

        try:
            results = poller.force_recheck()
        except DeviceCodeAuthRequired as e:
            return _auth_required(e)
        return _results_payload(results)

    @app.post("/api/sent-items/file")
    def file_sent_item(
        payload: FileSentItemRequest,
        filer: SentItemFiler = Depends(get_filer),
    ) -> Any:
        """Find a just-sent RFQ and file it under its material code.

        Expected request body:
            ``{"subject": "RFQ for MAT-12345", "recipient": "sales@acme.com",
            "material_code": "MAT-12345"}``

        A sent item that cannot be found is not an error: the answer carries
        ``found: false``.
        """

        try:
            lookup = filer.file_sent_rfq(
                subject=payload.subject,
                recipient=payload.recipient,
                material_code=payload.material_code,
                rfq_id=payload.rfq_id,
                supplier_id=payload.supplier_id,
                supplier_name=payload.supplier_name,
            )
        except DeviceCodeAuthRequired as e:
            return _auth_required(e)
        except (requests.RequestException, FolderNotFoundError) as e:
            logger.error(f"Filing sent RFQ {payload.subject!r} failed: {e}")
            return JSONResponse(
                {"error": "filing_failed", "message": str(e)},
                status_code=502,
            )

        return lookup.model_dump()

    return app


app = create_app()
