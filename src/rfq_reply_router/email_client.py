"""Microsoft Graph API client for mail operations (the Mailbox Gateway).

Objective:
    Provide a thin wrapper around Microsoft Graph Mail endpoints used by this
    project. This module centralizes HTTP request construction, authentication
    headers, and Pydantic validation of responses.

Responsibilities:
    - Issue authenticated HTTP requests to Graph (via :class:`requests`).
    - List, fetch, move, patch and delete messages.
    - Search a conversation and the Sent Items folder.
    - List, fetch and create mail folders.
    - Read and upsert entries of the master category list.

High-level call tree:
    - Messages:
        - :meth:`EmailClient.list_messages` -> :class:`rfq_reply_router.models.Email`
        - :meth:`EmailClient.get_message`
        - :meth:`EmailClient.search_by_conversation`
        - :meth:`EmailClient.list_sent_items`
        - :meth:`EmailClient.move_message` -> new message id
        - :meth:`EmailClient.patch_message`
        - :meth:`EmailClient.delete_message`
    - Folders:
        - :meth:`EmailClient.list_child_folders` -> :class:`rfq_reply_router.models.Folder`
        - :meth:`EmailClient.get_folder`
        - :meth:`EmailClient.create_folder`
    - Categories:
        - :meth:`EmailClient.list_master_categories`
        - :meth:`EmailClient.create_master_category`
        - :meth:`EmailClient.patch_master_category_color`
    - Internal helpers:
        - :meth:`EmailClient._make_request` (auth + error handling)

Error handling:
    - HTTP errors are logged and raised from :meth:`_make_request`; callers
      decide which steps are critical.
    - "Already exists" (409) answers on create calls return ``None`` so the
      caller can re-read and continue idempotently.
    - 404 on :meth:`get_folder` returns ``None``.
"""

import logging
from typing import AbstractSet, Any, Optional
from urllib.parse import quote

import requests

from .auth import GraphAuthenticator
from .config import Settings
from .models import Email, Folder, MasterCategory

logger = logging.getLogger(__name__)

MESSAGE_LIST_FIELDS = (
    "id,subject,from,sender,receivedDateTime,conversationId,"
    "internetMessageId,parentFolderId,bodyPreview,isRead,categories"
)
MESSAGE_FULL_FIELDS = (
    "id,subject,from,sender,body,receivedDateTime,conversationId,"
    "internetMessageId,parentFolderId,bodyPreview,categories"
)
SENT_ITEM_FIELDS = "id,subject,toRecipients,createdDateTime,sentDateTime,conversationId,internetMessageId"
FOLDER_FIELDS = "id,displayName,parentFolderId,childFolderCount"


def _odata_quote(value: str) -> str:
    """Escape a string literal for an OData ``$filter`` clause."""
    return value.replace("'", "''")


def _status_of(error: requests.HTTPError) -> Optional[int]:
    return getattr(getattr(error, "response", None), "status_code", None)


class EmailClient:
    """
    Client for interacting with Microsoft Graph API for email operations.

    This class is intentionally state-light: it primarily depends on
    :class:`rfq_reply_router.auth.GraphAuthenticator` for tokens and builds
    URLs relative to :attr:`GRAPH_BASE_URL`. All caching lives in the
    pipeline-owned components.

    Attributes:
        settings: Application settings.
        auth: Graph API authenticator.
    """

    GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

    def __init__(self, settings: Settings, auth: GraphAuthenticator) -> None:
        """
        Initialize email client.

        Args:
            settings: Application settings.
            auth: Graph API authenticator.
        """
        self.settings = settings
        self.auth = auth

    @property
    def mailbox_root(self) -> str:
        """Path prefix of the mailbox: ``/me`` or ``/users/{upn}`` for app permissions."""
        upn = getattr(self.settings, "target_user_principal_name", None)
        if getattr(self.settings, "use_client_credentials", False) is True and upn:
            return f"/users/{quote(upn, safe='@')}"
        return "/me"

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
        suppress_statuses: Optional[AbstractSet[int]] = None,
    ) -> dict:
        """Make an authenticated request to Microsoft Graph.

        This helper:
        - Adds auth headers (Bearer token).
        - Applies a default timeout.
        - Raises for non-2xx responses.
        - Returns decoded JSON or ``{}`` for 204 responses.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE).
            endpoint: API endpoint path relative to the mailbox root.
            params: Query parameters.
            json_data: JSON body data.
            suppress_statuses: Statuses logged at DEBUG instead of ERROR.

        Returns:
            dict: Response JSON data.

        Raises:
            requests.HTTPError: If request fails.
        """
        url = f"{self.GRAPH_BASE_URL}{self.mailbox_root}{endpoint}"
        headers = self.auth.get_auth_headers()

        response = requests.request(
            method=method,
            url=url,
            headers=headers,
            params=params,
            json=json_data,
            timeout=30,
        )

        if not response.ok:
            suppress = suppress_statuses and response.status_code in suppress_statuses
            if suppress:
                logger.debug(
                    "Graph API expected non-2xx: %s - %s",
                    response.status_code,
                    response.text,
                )
            else:
                logger.error(
                    f"Graph API error: {response.status_code} - {response.text}"
                )
            response.raise_for_status()

        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    @staticmethod
    def _parse_emails(response: dict) -> list[Email]:
        emails = []
        for item in response.get("value", []):
            try:
                emails.append(Email.model_validate(item))
            except Exception as e:
                logger.warning(f"Failed to parse email: {e}")
        return emails

    @staticmethod
    def _parse_folders(response: dict) -> list[Folder]:
        folders = []
        for item in response.get("value", []):
            try:
                folders.append(Folder.model_validate(item))
            except Exception as e:
                logger.warning(f"Failed to parse folder: {e}")
        return folders

    # Messages

    def list_messages(
        self,
        folder: str = "inbox",
        top: int = 20,
        order_by: str = "receivedDateTime desc",
        select: str = MESSAGE_LIST_FIELDS,
    ) -> list[Email]:
        """List messages of a folder.

        Read and unread messages are both returned; filtering is left to the
        caller.

        Args:
            folder: Well-known folder name (``inbox``, ``sentitems``) or folder id.
            top: Page size.
            order_by: OData ``$orderby`` clause.
            select: OData ``$select`` field list.

        Returns:
            list[Email]: Messages in the requested order.
        """
        safe_folder = quote(folder, safe="")
        params = {"$top": top, "$select": select, "$orderby": order_by}

        logger.debug(f"Listing up to {top} messages from {folder}")
        response = self._make_request("GET", f"/mailFolders/{safe_folder}/messages", params=params)
        return self._parse_emails(response)

    def get_message(self, message_id: str, select: str = MESSAGE_FULL_FIELDS) -> Email:
        """Fetch a single message.

        Args:
            message_id: Message ID.
            select: OData ``$select`` field list.

        Returns:
            Email: The message.

        Raises:
            requests.HTTPError: If the message cannot be fetched.
        """
        safe_id = quote(message_id, safe="")
        response = self._make_request("GET", f"/messages/{safe_id}", params={"$select": select})
        return Email.model_validate(response)

    def search_by_conversation(
        self,
        conversation_id: str,
        select: str = "id,subject,from,body,categories,receivedDateTime,parentFolderId",
        top: int = 50,
    ) -> list[Email]:
        """List every message of a conversation, oldest first.

        Personal accounts reject ``$filter`` combined with ``$orderby``, so the
        sort happens client-side.

        Args:
            conversation_id: Conversation ID.
            select: OData ``$select`` field list.
            top: Maximum messages returned.

        Returns:
            list[Email]: Conversation messages sorted by receive time ascending.
        """
        params = {
            "$filter": f"conversationId eq '{_odata_quote(conversation_id)}'",
            "$select": select,
            "$top": top,
        }
        response = self._make_request("GET", "/messages", params=params)
        emails = self._parse_emails(response)
        emails.sort(key=lambda e: (e.received_date_time is None, e.received_date_time or 0))
        logger.debug(f"Conversation {conversation_id[:20]}... has {len(emails)} message(s)")
        return emails

    def list_sent_items(self, top: int = 10, subject: Optional[str] = None) -> list[Email]:
        """List the most recent Sent Items, optionally filtered by exact subject.

        OData subject filters are unreliable on some tenants, so a larger page
        is fetched and the subject is compared client-side (trimmed, exact).

        Args:
            top: Number of recent items to inspect.
            subject: Exact subject to keep.

        Returns:
            list[Email]: Sent items, most recent first.
        """
        params = {
            "$top": top,
            "$select": SENT_ITEM_FIELDS,
            "$orderby": "sentDateTime desc",
        }
        response = self._make_request("GET", "/mailFolders/sentitems/messages", params=params)
        emails = self._parse_emails(response)

        if subject is not None:
            wanted = subject.strip()
            emails = [e for e in emails if e.subject.strip() == wanted]
            logger.debug(f"Filtered to {len(emails)} sent item(s) matching subject {subject!r}")
        return emails

    def move_message(self, message_id: str, destination_folder_id: str) -> str:
        """Move a message to a different folder.

        Graph assigns a new id to the moved copy; callers must use it for any
        follow-up writes.

        Args:
            message_id: ID of message to move.
            destination_folder_id: Destination folder ID.

        Returns:
            str: ID of the message after the move.

        Raises:
            requests.HTTPError: If the move fails.
        """
        safe_id = quote(message_id, safe="")
        response = self._make_request(
            "POST",
            f"/messages/{safe_id}/move",
            json_data={"destinationId": destination_folder_id},
        )
        new_id = response.get("id") or message_id
        logger.debug(f"Moved message {message_id} to folder {destination_folder_id}")
        return new_id

    def patch_message(
        self,
        message_id: str,
        categories: Optional[list[str]] = None,
        is_read: Optional[bool] = None,
    ) -> dict:
        """Update the categories and/or read flag of a message.

        Args:
            message_id: Message ID.
            categories: Full replacement category list.
            is_read: New read state.

        Returns:
            dict: Updated message payload.
        """
        json_data: dict[str, Any] = {}
        if categories is not None:
            json_data["categories"] = categories
        if is_read is not None:
            json_data["isRead"] = is_read
        if not json_data:
            return {}

        safe_id = quote(message_id, safe="")
        return self._make_request("PATCH", f"/messages/{safe_id}", json_data=json_data)

    def delete_message(self, message_id: str) -> None:
        """Delete a message (moves it to Deleted Items)."""
        safe_id = quote(message_id, safe="")
        self._make_request("DELETE", f"/messages/{safe_id}")
        logger.debug(f"Deleted message {message_id}")

    # Folders

    def list_child_folders(
        self,
        parent_folder_id: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> list[Folder]:
        """List folders directly under a parent (or at the mailbox root).

        Args:
            parent_folder_id: Parent folder ID (None for root level).
            display_name: Only return folders with this exact display name.

        Returns:
            list[Folder]: Child folders.
        """
        if parent_folder_id:
            endpoint = f"/mailFolders/{quote(parent_folder_id, safe='')}/childFolders"
        else:
            endpoint = "/mailFolders"

        params: dict[str, Any] = {"$top": 100, "$select": FOLDER_FIELDS}
        if display_name is not None:
            params["$filter"] = f"displayName eq '{_odata_quote(display_name)}'"

        response = self._make_request("GET", endpoint, params=params)
        return self._parse_folders(response)

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        """Fetch folder metadata.

        Args:
            folder_id: Folder ID or well-known name.

        Returns:
            Optional[Folder]: Folder, or None if it does not exist.
        """
        try:
            response = self._make_request(
                "GET",
                f"/mailFolders/{quote(folder_id, safe='')}",
                params={"$select": FOLDER_FIELDS},
                suppress_statuses={404},
            )
        except requests.HTTPError as e:
            if _status_of(e) == 404:
                return None
            raise
        return Folder.model_validate(response)

    def create_folder(
        self, display_name: str, parent_folder_id: Optional[str] = None
    ) -> Optional[Folder]:
        """Create a new mail folder.

        If Graph returns a conflict (HTTP 409), this function returns ``None``
        and lets the folder manager re-read and continue.

        Args:
            display_name: Name for the new folder.
            parent_folder_id: Parent folder ID (None for root level).

        Returns:
            Optional[Folder]: Created folder, or None if it already exists.

        Raises:
            requests.HTTPError: For failures other than a conflict.
        """
        if parent_folder_id:
            endpoint = f"/mailFolders/{quote(parent_folder_id, safe='')}/childFolders"
        else:
            endpoint = "/mailFolders"

        try:
            response = self._make_request(
                "POST",
                endpoint,
                json_data={"displayName": display_name},
                suppress_statuses={409},
            )
        except requests.HTTPError as e:
            if _status_of(e) == 409:
                logger.debug(f"Folder already exists: {display_name}")
                return None
            raise

        folder = Folder.model_validate(response)
        logger.debug(f"Created folder: {display_name}")
        return folder

    # Master categories

    def list_master_categories(self) -> list[MasterCategory]:
        """Read the master category list of the mailbox."""
        response = self._make_request("GET", "/outlook/masterCategories")
        categories = []
        for item in response.get("value", []):
            try:
                categories.append(MasterCategory.model_validate(item))
            except Exception as e:
                logger.warning(f"Failed to parse category: {e}")
        return categories

    def create_master_category(self, name: str, color: str) -> Optional[MasterCategory]:
        """Create a master category.

        Names are unique server-side; a concurrent creator wins with 409 and
        this call returns ``None``.

        Args:
            name: Category display name.
            color: Color preset (e.g. ``preset4``).

        Returns:
            Optional[MasterCategory]: Created category, or None if it already exists.
        """
        try:
            response = self._make_request(
                "POST",
                "/outlook/masterCategories",
                json_data={"displayName": name, "color": color},
                suppress_statuses={409},
            )
        except requests.HTTPError as e:
            if _status_of(e) == 409:
                logger.debug(f"Category already exists: {name}")
                return None
            raise
        logger.info(f"Created master category {name!r} ({color})")
        return MasterCategory.model_validate(response)

    def patch_master_category_color(self, category_id: str, color: str) -> None:
        """Change the color of an existing master category."""
        self._make_request(
            "PATCH",
            f"/outlook/masterCategories/{quote(category_id, safe='')}",
            json_data={"color": color},
        )
        logger.debug(f"Updated master category {category_id} color to {color}")
