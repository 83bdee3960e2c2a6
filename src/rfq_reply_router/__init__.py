"""RFQ Reply Router package.

Objective:
    File supplier replies to Requests For Quotation (RFQs) in an Outlook
    mailbox:
    - Watch the inbox through Microsoft Graph.
    - Recognise replies to sent RFQs and recover their material code.
    - Classify each reply with the procurement backend (quote, clarification
      request, engineer response).
    - Move it into the material's folder taxonomy and tag it with the
      matching category.

Key modules:
    - :mod:`rfq_reply_router.auth`:
        Microsoft Graph authentication (device code flow, token cache).
    - :mod:`rfq_reply_router.email_client`:
        Graph API wrapper for messages, folders and master categories.
    - :mod:`rfq_reply_router.folder_manager` / :mod:`rfq_reply_router.category_sync`:
        Per-material folder taxonomy and folder-derived categories.
    - :mod:`rfq_reply_router.reply_detector`:
        Ordered reply detection strategies.
    - :mod:`rfq_reply_router.classification` / :mod:`rfq_reply_router.classifier_client`:
        Conversation chain building and backend classification calls.
    - :mod:`rfq_reply_router.orchestrator` / :mod:`rfq_reply_router.poller`:
        Per-message pipeline and the fixed-interval inbox poller.
    - :mod:`rfq_reply_router.sent_items`:
        Sent Items lookup with bounded retries and sent-RFQ filing.
    - :mod:`rfq_reply_router.cli` / :mod:`rfq_reply_router.webapp`:
        Operator entrypoints.
"""

__version__ = "0.1.0"
