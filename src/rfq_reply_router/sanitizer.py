"""Email body cleanup and automated-sender heuristics.

Objective:
    Convert raw email content returned by Microsoft Graph (often HTML) into a
    compact plain-text form for the classification backend, and recognise
    automated senders (bounces, delivery reports) that should never reach it.

Responsibilities:
    - Strip non-content HTML elements (scripts, styles, metadata).
    - Convert HTML to markdown-ish text to preserve paragraph structure.
    - Normalize whitespace and drop quoted reply history.
    - Decide whether a message is a bounce or comes from a deny-listed sender.

High-level call tree:
    - :func:`sanitize_email_body`
        - :func:`html_to_markdown` (HTML input)
        - :func:`clean_text`
    - :func:`is_noise_sender`
        - :func:`is_noreply_address`
"""

import re
from typing import Iterable

from bs4 import BeautifulSoup
from markdownify import markdownify as md

# Subject fragments of delivery failure reports, from any sender
DELIVERY_FAILURE_MARKERS = (
    "undeliverable",
    "delivery failure",
    "delivery has failed",
    "mail delivery failed",
)

# Subject fragment that only marks a bounce when sent by a no-reply address
NOREPLY_FAILURE_MARKER = "failed"

# Body preview phrases of non-delivery reports
BOUNCE_BODY_MARKERS = (
    "message undeliverable",
    "delivery has failed",
    "returned mail",
    "mail delivery subsystem",
    "delivery status notification",
    "delivery to the following recipient failed",
    "could not be delivered",
)

MAX_BODY_LENGTH = 8000


def html_to_markdown(html_content: str) -> str:
    """Convert HTML to markdown-like plain text.

    Scripts, styles and document metadata are removed with BeautifulSoup
    before ``markdownify`` runs.

    Args:
        html_content: Raw HTML string.

    Returns:
        str: Markdown formatted text.
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style", "head", "meta", "link"]):
        element.decompose()

    return md(str(soup), heading_style="ATX")


def clean_text(text: str) -> str:
    """Normalize plain text for the classifier.

    Keeps line structure (quotes and prices span lines) but removes:
    - leftover HTML tags
    - markdown link/image syntax
    - quoted reply lines starting with ``>``
    - runs of blank lines and repeated spaces

    Args:
        text: Raw text to clean.

    Returns:
        str: Cleaned text.
    """
    if not text:
        return ""

    text = re.sub(r"<[^>]*>", "", text)

    # Images first so their "!" does not survive the link rule
    text = re.sub(r"!\[[^\]]*\]\([^)]*\)", "", text)
    text = re.sub(r"\[([^\]]*)\]\([^)]*\)", r"\1", text)

    text = re.sub(r"^>.*$", "", text, flags=re.MULTILINE)
    text = text.replace("\r\n", "\n").replace("\xa0", " ")
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)

    return text.strip()


def sanitize_email_body(body_content: str, content_type: str = "html") -> str:
    """Sanitize an email body before it is sent to the classification backend.

    Args:
        body_content: Raw email body content.
        content_type: Content type ("html" or "text").

    Returns:
        str: Cleaned text, truncated to :data:`MAX_BODY_LENGTH`.
    """
    if not body_content:
        return ""

    if content_type.lower() == "html":
        cleaned = clean_text(html_to_markdown(body_content))
    else:
        cleaned = clean_text(body_content)

    if len(cleaned) > MAX_BODY_LENGTH:
        cleaned = cleaned[:MAX_BODY_LENGTH] + "..."

    return cleaned


def is_noreply_address(email_address: str) -> bool:
    """Check whether an email address looks like a no-reply sender.

    Args:
        email_address: Email address to check.

    Returns:
        bool: True if it's a no-reply address.
    """
    if not email_address:
        return False

    noreply_patterns = ["noreply", "no-reply", "donotreply", "do-not-reply"]
    email_lower = email_address.lower()
    return any(pattern in email_lower for pattern in noreply_patterns)


def is_noise_sender(
    address: str,
    name: str,
    subject: str,
    patterns: Iterable[str],
    body_preview: str = "",
) -> bool:
    """Decide whether a message is an automated system message.

    A message is noise when the sender address or display name contains one
    of ``patterns``, when it is a delivery failure report (recognised by its
    subject or by the bounce wording of its body preview), or when a
    no-reply address reports a failure in the subject.

    Args:
        address: Sender address.
        name: Sender display name.
        subject: Message subject.
        patterns: Lowercased deny-list fragments.
        body_preview: Plain-text start of the body.

    Returns:
        bool: True if the message should be deleted without processing.
    """
    address_lower = (address or "").lower()
    name_lower = (name or "").lower()
    subject_lower = (subject or "").lower()
    body_lower = (body_preview or "").lower()

    for pattern in patterns:
        if pattern and (pattern in address_lower or pattern in name_lower):
            return True

    if any(marker in subject_lower for marker in DELIVERY_FAILURE_MARKERS):
        return True

    if is_noreply_address(address_lower) and NOREPLY_FAILURE_MARKER in subject_lower:
        return True

    return any(marker in body_lower for marker in BOUNCE_BODY_MARKERS)
