from unittest.mock import MagicMock

import requests
from fastapi.testclient import TestClient

from rfq_reply_router.auth import DeviceCodeAuthRequired
from rfq_reply_router.models import ProcessingOutcome, ProcessingResult, SentItemLookup
from rfq_reply_router.webapp import create_app, get_filer, get_poller


def _client(poller=None, filer=None) -> TestClient:
    app = create_app()
    if poller is not None:
        app.dependency_overrides[get_poller] = lambda: poller
    if filer is not None:
        app.dependency_overrides[get_filer] = lambda: filer
    return TestClient(app)


def test_health() -> None:
    """Health endpoint returns ok."""

    resp = _client().get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_api_poll_returns_results_and_summary() -> None:
    """Poll runs one tick and summarizes outcomes."""

    poller = MagicMock()
    poller.tick.return_value = [
        ProcessingResult(
            email_id="e1",
            subject="RE: RFQ for MAT-1",
            sender="sales@acme.com",
            outcome=ProcessingOutcome.FILED,
            material_code="MAT-1",
            classification="quote",
            target_folder="MAT-1/Quotes",
        ),
        ProcessingResult(
            email_id="e2",
            subject="RE: RFQ for MAT-2",
            outcome=ProcessingOutcome.FAILED,
            error="boom",
        ),
    ]

    resp = _client(poller=poller).post("/api/poll")

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["summary"] == {"total": 2, "filed": 1, "failed": 1}
    assert payload["results"][0]["target_folder"] == "MAT-1/Quotes"
    assert payload["results"][1]["outcome"] == "failed"
    poller.tick.assert_called_once_with()


def test_api_recheck_forces_recheck() -> None:
    poller = MagicMock()
    poller.force_recheck.return_value = []

    resp = _client(poller=poller).post("/api/recheck")

    assert resp.status_code == 200
    assert resp.json()["summary"]["total"] == 0
    poller.force_recheck.assert_called_once_with()


def test_api_status() -> None:
    poller = MagicMock()
    poller.status.return_value = {"signed_in": True, "tick_count": 3}

    resp = _client(poller=poller).get("/api/status")

    assert resp.json() == {"signed_in": True, "tick_count": 3}


def test_api_poll_returns_401_when_sign_in_required() -> None:
    """Device code instructions are returned instead of a stack trace."""

    poller = MagicMock()
    poller.tick.side_effect = DeviceCodeAuthRequired(
        {
            "user_code": "ABCD-1234",
            "verification_uri": "https://microsoft.com/devicelogin",
            "message": "Sign in with ABCD-1234",
        }
    )

    resp = _client(poller=poller).post("/api/poll")

    assert resp.status_code == 401
    payload = resp.json()
    assert payload["error"] == "authentication_required"
    assert payload["user_code"] == "ABCD-1234"


def test_api_file_sent_item() -> None:
    filer = MagicMock()
    filer.file_sent_rfq.return_value = SentItemLookup(
        found=True,
        message_id="moved-1",
        attempts=2,
        matched_by="subject_and_recipient",
        filed_folder="MAT-1/Sent RFQs",
    )

    resp = _client(filer=filer).post(
        "/api/sent-items/file",
        json={"subject": "RFQ for MAT-1", "recipient": "sales@acme.com", "material_code": "MAT-1"},
    )

    assert resp.status_code == 200
    assert resp.json()["filed_folder"] == "MAT-1/Sent RFQs"
    filer.file_sent_rfq.assert_called_once_with(
        subject="RFQ for MAT-1",
        recipient="sales@acme.com",
        material_code="MAT-1",
        rfq_id=None,
        supplier_id=None,
        supplier_name="",
    )


def test_api_file_sent_item_not_found_is_not_an_error() -> None:
    filer = MagicMock()
    filer.file_sent_rfq.return_value = SentItemLookup(found=False, attempts=5)

    resp = _client(filer=filer).post(
        "/api/sent-items/file",
        json={"subject": "RFQ", "recipient": "a@b.com", "material_code": "MAT-1"},
    )

    assert resp.status_code == 200
    assert resp.json()["found"] is False


def test_api_file_sent_item_graph_failure() -> None:
    filer = MagicMock()
    filer.file_sent_rfq.side_effect = requests.HTTPError("500 Server Error")

    resp = _client(filer=filer).post(
        "/api/sent-items/file",
        json={"subject": "RFQ", "recipient": "a@b.com", "material_code": "MAT-1"},
    )

    assert resp.status_code == 502
    assert resp.json()["error"] == "filing_failed"


def test_api_file_sent_item_validates_body() -> None:
    resp = _client(filer=MagicMock()).post("/api/sent-items/file", json={"subject": "RFQ"})

    assert resp.status_code == 422
