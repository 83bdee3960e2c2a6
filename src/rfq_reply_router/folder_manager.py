"""Per-material folder taxonomy and destination resolution.

Objective:
    Provide a higher-level abstraction over Outlook mail folders for the
    procurement workflow. Every material code owns a root folder with six
    direct subfolders (see :class:`rfq_reply_router.config.FolderName`); this
    module creates that tree idempotently, resolves ``MAT-1/Quotes`` style
    paths to folder ids, and moves messages into them.

Responsibilities:
    - Cache folder lookups keyed by ``(parent_folder_id, lowercased name)``.
    - Create the material taxonomy, tolerating a partially existing tree.
    - Resolve folder paths and move messages (no auto-create on move).
    - Walk folder ancestry to recover a material code.
    - Map a classification to the destination folder path.

Caching strategy:
    Folder names in Outlook are not globally unique (every material root has
    its own ``Quotes`` child), so lookups are always scoped by parent id.
    The cache is populated on lookup and creation and is never invalidated
    automatically; :meth:`FolderManager.clear_cache` resets it.

High-level call tree:
    - :func:`get_folder_for_classification`
    - :class:`FolderManager`
        - :meth:`initialize_material_folders`
            - :meth:`create_folder_if_not_exists`
                - :meth:`get_folder_by_name`
                - :meth:`EmailClient.create_folder`
        - :meth:`move_message_to_folder`
            - :meth:`get_folder_id_by_path`
            - :meth:`EmailClient.move_message`
        - :meth:`find_material_code_in_ancestry` / :meth:`get_folder_path`
            - :meth:`get_folder`
"""

import logging
import re
from typing import Optional

from .config import Classification, FolderName
from .email_client import EmailClient
from .models import Folder

logger = logging.getLogger(__name__)

MATERIAL_FOLDER_RE = re.compile(r"^MAT-\d+$", re.IGNORECASE)

FOLDER_DESCRIPTIONS = {
    FolderName.SENT_RFQS: "Sent RFQ emails",
    FolderName.QUOTES: "Received quote emails",
    FolderName.CLARIFICATION_REQUESTS: "Supplier clarification requests",
    FolderName.AWAITING_CLARIFICATION: "Awaiting your response",
    FolderName.AWAITING_ENGINEER: "Forwarded to engineering team",
    FolderName.ENGINEER_RESPONSE: "Technical responses from engineering",
}


class FolderNotFoundError(LookupError):
    """Raised when a folder path cannot be resolved."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Folder not found: {path}")
        self.path = path


def get_folder_for_classification(
    material_code: str,
    classification: str,
    sub_classification: Optional[str] = None,
) -> str:
    """Return the folder path a classified message belongs in.

    Unknown classifications map to the material root itself.

    Args:
        material_code: Material code, e.g. ``MAT-12345``.
        classification: Backend classification label.
        sub_classification: Optional refinement; ``engineering`` routes
            clarification requests to the engineer queue.

    Returns:
        str: Folder path such as ``MAT-12345/Quotes``.
    """
    label = classification.value if isinstance(classification, Classification) else str(classification)

    if label == Classification.QUOTE.value:
        leaf: Optional[FolderName] = FolderName.QUOTES
    elif label == Classification.CLARIFICATION_REQUEST.value:
        if sub_classification == "engineering":
            leaf = FolderName.AWAITING_ENGINEER
        else:
            leaf = FolderName.CLARIFICATION_REQUESTS
    elif label == Classification.ENGINEER_RESPONSE.value:
        leaf = FolderName.ENGINEER_RESPONSE
    elif label == Classification.SENT_RFQ.value:
        leaf = FolderName.SENT_RFQS
    else:
        leaf = None

    if leaf is None:
        return material_code
    return f"{material_code}/{leaf.value}"


class FolderManager:
    """
    Manages the per-material folder taxonomy.

    Attributes:
        email_client: Email client for folder operations.
        max_depth: Maximum number of folders visited by ancestry walks.
        _folder_cache: ``(parent_id, lowercased name) -> Folder``.
        _folder_id_cache: ``folder_id -> Folder``.
    """

    ROOT_KEY = "root"

    def __init__(self, email_client: EmailClient, max_depth: int = 5) -> None:
        """
        Initialize folder manager.

        Args:
            email_client: Email client for folder operations.
            max_depth: Bound for ancestry walks.
        """
        self.email_client = email_client
        self.max_depth = max_depth
        self._folder_cache: dict[tuple[str, str], Folder] = {}
        self._folder_id_cache: dict[str, Folder] = {}

    def _cache_key(self, name: str, parent_folder_id: Optional[str]) -> tuple[str, str]:
        return (parent_folder_id or self.ROOT_KEY, name.lower())

    def _remember(self, folder: Folder, parent_folder_id: Optional[str]) -> None:
        self._folder_cache[self._cache_key(folder.display_name, parent_folder_id)] = folder
        self._folder_id_cache[folder.id] = folder

    def clear_cache(self) -> None:
        """Forget every cached folder."""
        self._folder_cache.clear()
        self._folder_id_cache.clear()

    def get_folder_by_name(
        self, name: str, parent_folder_id: Optional[str] = None
    ) -> Optional[Folder]:
        """
        Get a folder by display name within a parent (case-insensitive).

        Args:
            name: Folder display name.
            parent_folder_id: Parent folder ID (None for root level).

        Returns:
            Optional[Folder]: Folder if found, None otherwise.
        """
        key = self._cache_key(name, parent_folder_id)
        cached = self._folder_cache.get(key)
        if cached:
            return cached

        matches = self.email_client.list_child_folders(parent_folder_id, display_name=name)
        folder = next(
            (f for f in matches if f.display_name.lower() == name.lower()),
            None,
        )
        if folder:
            self._remember(folder, parent_folder_id)
        return folder

    def create_folder_if_not_exists(
        self, name: str, parent_folder_id: Optional[str] = None
    ) -> Folder:
        """
        Ensure a folder exists under a parent, creating it if needed.

        Args:
            name: Folder display name.
            parent_folder_id: Parent folder ID (None for root level).

        Returns:
            Folder: Existing or newly created folder.

        Raises:
            FolderNotFoundError: If Graph reports a conflict but the folder
                still cannot be read back.
            requests.HTTPError: On Graph failures.
        """
        existing = self.get_folder_by_name(name, parent_folder_id)
        if existing:
            return existing

        logger.debug(f"Creating folder {name!r} under {parent_folder_id or 'root'}")
        created = self.email_client.create_folder(name, parent_folder_id)
        if created:
            self._remember(created, parent_folder_id)
            return created

        # Graph returns 409 when another writer created the folder first
        resolved = self.get_folder_by_name(name, parent_folder_id)
        if resolved:
            return resolved
        raise FolderNotFoundError(name)

    def initialize_material_folders(self, material_code: str) -> Folder:
        """
        Ensure the material root folder and all six subfolders exist.

        Safe to call repeatedly and on a partially created tree. Network
        errors propagate; nothing is rolled back.

        Args:
            material_code: Material code, e.g. ``MAT-12345``.

        Returns:
            Folder: The material root folder.
        """
        root = self.create_folder_if_not_exists(material_code)
        for subfolder in FolderName:
            self.create_folder_if_not_exists(subfolder.value, root.id)

        logger.debug(f"Folder structure ready for {material_code}")
        return root

    def get_folder_id_by_path(self, path: str) -> Optional[str]:
        """
        Resolve a ``/``-separated folder path to a folder id.

        Missing segments are never created here.

        Args:
            path: Folder path, e.g. ``MAT-12345/Quotes``.

        Returns:
            Optional[str]: Folder id, or None if any segment is missing.
        """
        parts = [p.strip() for p in path.replace("\\", "/").split("/") if p.strip()]
        if not parts:
            return None

        parent_id: Optional[str] = None
        for part in parts:
            folder = self.get_folder_by_name(part, parent_id)
            if not folder:
                return None
            parent_id = folder.id
        return parent_id

    def move_message_to_folder(self, message_id: str, path: str) -> str:
        """
        Move a message to the folder at ``path``.

        :meth:`initialize_material_folders` must have been called for the
        material first.

        Args:
            message_id: Message to move.
            path: Destination folder path.

        Returns:
            str: Message id after the move.

        Raises:
            FolderNotFoundError: If the destination does not exist.
            requests.HTTPError: If the move fails.
        """
        folder_id = self.get_folder_id_by_path(path)
        if not folder_id:
            raise FolderNotFoundError(path)

        new_id = self.email_client.move_message(message_id, folder_id)
        logger.info(f"Moved message {message_id[:20]}... to {path}")
        return new_id

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        """Fetch folder metadata by id, using the id cache."""
        cached = self._folder_id_cache.get(folder_id)
        if cached:
            return cached

        folder = self.email_client.get_folder(folder_id)
        if folder:
            self._folder_id_cache[folder.id] = folder
        return folder

    def find_material_code_in_ancestry(self, folder_id: Optional[str]) -> Optional[str]:
        """Walk up from a folder looking for a ``MAT-<digits>`` folder.

        The walk stops at the first material folder, at a folder named
        ``Inbox``, at a folder without parent, or after :attr:`max_depth`
        folders.

        Args:
            folder_id: Folder to start from (the message's immediate folder).

        Returns:
            Optional[str]: Uppercased material code, or None.
        """
        current_id = folder_id
        visited: list[str] = []

        for _ in range(self.max_depth):
            if not current_id:
                break
            folder = self.get_folder(current_id)
            if not folder:
                break

            visited.append(folder.display_name)
            if MATERIAL_FOLDER_RE.match(folder.display_name):
                return folder.display_name.upper()

            if folder.display_name == "Inbox" or not folder.parent_folder_id:
                break
            current_id = folder.parent_folder_id

        logger.debug(f"No material code in folder ancestry: {'/'.join(reversed(visited))}")
        return None

    def get_folder_path(self, folder_id: Optional[str]) -> str:
        """Return the display path of a folder, e.g. ``MAT-12345/Quotes``.

        The walk is bounded by :attr:`max_depth` and stops at ``Inbox``.

        Args:
            folder_id: Folder id.

        Returns:
            str: Path, or an empty string if the folder is unknown.
        """
        parts: list[str] = []
        current_id = folder_id

        for _ in range(self.max_depth):
            if not current_id:
                break
            folder = self.get_folder(current_id)
            if not folder:
                break
            parts.insert(0, folder.display_name)
            if folder.display_name == "Inbox" or not folder.parent_folder_id:
                break
            current_id = folder.parent_folder_id

        return "/".join(parts)

    def list_material_folders(self, material_code: str) -> list[Folder]:
        """List the subfolders that currently exist under a material root.

        Args:
            material_code: Material code.

        Returns:
            list[Folder]: Existing subfolders (empty if the root is missing).
        """
        root = self.get_folder_by_name(material_code)
        if not root:
            return []

        folders = self.email_client.list_child_folders(root.id)
        for folder in folders:
            self._remember(folder, root.id)
        return folders

    @staticmethod
    def folder_structure(material_code: str) -> list[dict[str, str]]:
        """Describe the taxonomy of a material without touching the mailbox.

        Args:
            material_code: Material code.

        Returns:
            list[dict[str, str]]: ``name``, ``path`` and ``description`` per subfolder.
        """
        return [
            {
                "name": folder.value,
                "path": f"{material_code}/{folder.value}",
                "description": FOLDER_DESCRIPTIONS[folder],
            }
            for folder in FolderName
        ]
