"""Keep Outlook categories in sync with folder placement.

Objective:
    Every folder of the material taxonomy has a matching "location" category
    (see :data:`rfq_reply_router.config.FOLDER_CATEGORY_MAP`). When a message
    is filed, its location category is replaced while any category the user
    applied by hand is left alone.

Responsibilities:
    - Upsert master categories (create when missing, fix the color when it
      drifted). Graph has no atomic create-or-update call, so this is a read
      followed by at most one write, and a 409 from a concurrent creator is
      treated as success.
    - Replace the location category on a message, writing only on change.
    - Remember the last category applied per message to skip redundant calls.

High-level call tree:
    - :class:`CategorySynchronizer`
        - :meth:`set_folder_category`
            - :meth:`ensure_master_category`
                - :meth:`EmailClient.list_master_categories`
                - :meth:`EmailClient.create_master_category`
                - :meth:`EmailClient.patch_master_category_color`
            - :meth:`EmailClient.get_message`
            - :meth:`EmailClient.patch_message`
        - :meth:`remove_folder_categories`
"""

import logging
from typing import Optional

from .config import FOLDER_CATEGORY_MAP, CategorySpec
from .email_client import EmailClient
from .models import MasterCategory

logger = logging.getLogger(__name__)


class CategorySynchronizer:
    """
    Applies folder-derived categories to messages.

    Attributes:
        email_client: Email client for category operations.
        mapping: Folder name -> category spec.
        _ensured_categories: Master categories already verified this session.
        _applied_cache: ``message_id -> last applied category name``.
    """

    def __init__(
        self,
        email_client: EmailClient,
        mapping: Optional[dict[str, CategorySpec]] = None,
    ) -> None:
        self.email_client = email_client
        self.mapping = mapping if mapping is not None else FOLDER_CATEGORY_MAP
        self._ensured_categories: set[str] = set()
        self._applied_cache: dict[str, str] = {}

    @property
    def location_category_names(self) -> set[str]:
        """Lowercased names of every mapped category."""
        return {spec.name.lower() for spec in self.mapping.values()}

    def category_for_folder(self, folder_name: str) -> Optional[CategorySpec]:
        """Return the category mapped to a folder name, if any."""
        return self.mapping.get(folder_name)

    def ensure_master_category(self, spec: CategorySpec) -> None:
        """
        Make sure a master category exists with the expected color.

        Args:
            spec: Category name and color preset.

        Raises:
            requests.HTTPError: On Graph failures other than a create conflict.
        """
        if spec.name.lower() in self._ensured_categories:
            return

        existing = self._find_master_category(spec.name)
        if existing is None:
            created = self.email_client.create_master_category(spec.name, spec.color)
            if created is None:
                # Another process created it between our read and write
                existing = self._find_master_category(spec.name)

        if existing is not None and existing.color.lower() != spec.color.lower():
            logger.info(
                "Updating color of category %r from %s to %s",
                existing.display_name,
                existing.color,
                spec.color,
            )
            self.email_client.patch_master_category_color(existing.id, spec.color)

        self._ensured_categories.add(spec.name.lower())

    def _find_master_category(self, name: str) -> Optional[MasterCategory]:
        lowered = name.lower()
        for category in self.email_client.list_master_categories():
            if category.display_name.lower() == lowered:
                return category
        return None

    def set_folder_category(self, message_id: str, folder_name: str) -> bool:
        """
        Make the message carry exactly the location category of ``folder_name``.

        Categories outside the mapping are preserved. Folder names without a
        mapping are ignored.

        Args:
            message_id: Message to update.
            folder_name: Leaf folder name (e.g. ``Quotes``).

        Returns:
            bool: True if the message categories were written.
        """
        spec = self.category_for_folder(folder_name)
        if spec is None:
            logger.debug(f"No category mapped to folder {folder_name!r}")
            return False

        if self._applied_cache.get(message_id) == spec.name:
            return False

        self.ensure_master_category(spec)

        message = self.email_client.get_message(message_id, select="id,categories")
        current = list(message.categories)
        location_names = self.location_category_names

        stale = [c for c in current if c.lower() in location_names and c != spec.name]
        changed = bool(stale) or spec.name not in current
        if changed:
            updated = [c for c in current if c.lower() not in location_names]
            updated.append(spec.name)
            self.email_client.patch_message(message_id, categories=updated)
            logger.info(f"Applied category {spec.name!r} to message {message_id[:20]}...")
        else:
            logger.debug(f"Category {spec.name!r} already present on {message_id[:20]}...")

        self._applied_cache[message_id] = spec.name
        return changed

    def remove_folder_categories(self, message_id: str) -> bool:
        """
        Strip every location category from a message.

        Args:
            message_id: Message to update.

        Returns:
            bool: True if the message categories were written.
        """
        message = self.email_client.get_message(message_id, select="id,categories")
        current = list(message.categories)
        location_names = self.location_category_names
        updated = [c for c in current if c.lower() not in location_names]

        changed = updated != current
        if changed:
            self.email_client.patch_message(message_id, categories=updated)
            logger.info(f"Removed location categories from message {message_id[:20]}...")

        self._applied_cache.pop(message_id, None)
        return changed
