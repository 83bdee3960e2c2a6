"""
Tests for the classification backend client.
"""

from unittest.mock import MagicMock

import pytest
import requests

from rfq_reply_router.classifier_client import ClassificationError, ClassifierClient
from rfq_reply_router.config import Classification
from rfq_reply_router.models import ChainMessage


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock()


def test_posts_chain_and_ids(settings, session) -> None:
    """The request carries the chain, the latest reply and both ids."""

    session.post.return_value = _response(
        payload={"classification": "quote", "confidence": 0.9, "email_id": "b-1"}
    )
    client = ClassifierClient(settings, session=session)
    chain = [ChainMessage(subject="RFQ", body="Please quote", from_email="me@corp.com", date="2024-01-01")]

    result = client.classify(chain, {"subject": "RE: RFQ"}, rfq_id="MAT-1", supplier_id="s@x.com")

    assert result.classification == Classification.QUOTE
    assert result.confidence == 0.9
    assert result.backend_id == "b-1"

    args, kwargs = session.post.call_args
    assert args[0] == "http://localhost:8000/api/emails/classify"
    assert kwargs["json"]["rfq_id"] == "MAT-1"
    assert kwargs["json"]["supplier_id"] == "s@x.com"
    assert kwargs["json"]["email_chain"][0]["body"] == "Please quote"
    assert kwargs["timeout"] == settings.classifier_timeout_seconds


def test_optional_ids_are_omitted(settings, session) -> None:
    session.post.return_value = _response(payload={"classification": "other"})

    ClassifierClient(settings, session=session).classify([], {"subject": "x"})

    payload = session.post.call_args.kwargs["json"]
    assert "rfq_id" not in payload
    assert "supplier_id" not in payload


def test_unknown_label_becomes_other(settings, session) -> None:
    session.post.return_value = _response(
        payload={"classification": "price_negotiation", "sub_classification": "x", "confidence": 0.4}
    )

    result = ClassifierClient(settings, session=session).classify([], {})

    assert result.classification == Classification.OTHER
    assert result.sub_classification == "x"


def test_http_error_raises_with_detail(settings, session) -> None:
    session.post.return_value = _response(status_code=503, payload={"detail": "model offline"})

    with pytest.raises(ClassificationError, match="model offline") as exc_info:
        ClassifierClient(settings, session=session).classify([], {})

    assert exc_info.value.status_code == 503


def test_http_error_without_json_body(settings, session) -> None:
    session.post.return_value = _response(status_code=500, payload=ValueError("no json"), text="oops")

    with pytest.raises(ClassificationError, match="HTTP 500: oops"):
        ClassifierClient(settings, session=session).classify([], {})


def test_transport_error(settings, session) -> None:
    session.post.side_effect = requests.ConnectionError("refused")

    with pytest.raises(ClassificationError, match="Network error") as exc_info:
        ClassifierClient(settings, session=session).classify([], {})

    assert exc_info.value.status_code is None


def test_malformed_payload(settings, session) -> None:
    session.post.return_value = _response(payload={"confidence": "high"})

    with pytest.raises(ClassificationError, match="Unexpected classification payload"):
        ClassifierClient(settings, session=session).classify([], {})
