"""
Shared fixtures: settings and an in-memory stand-in for the Graph client.
"""

from typing import Optional
from unittest.mock import MagicMock

import pytest

from rfq_reply_router.config import Settings
from rfq_reply_router.models import Email, EmailAddress, EmailBody, EmailRecipient, Folder, MasterCategory


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and the home directory."""
    return Settings(
        _env_file=None,
        azure_client_id="test-client-id",
        token_cache_path=tmp_path / "token_cache.json",
        rfq_mapping_path=tmp_path / "rfq_mapping.json",
        email_id_mapping_path=tmp_path / "email_ids.json",
    )


def make_email(
    message_id: str = "msg-1",
    subject: str = "RE: RFQ for MAT-55555",
    sender: str = "supplier@x.com",
    body: str = "We quote $12.50/unit, lead time 3 weeks.",
    **kwargs,
) -> Email:
    """Build an inbound message with sensible defaults."""
    return Email(
        id=message_id,
        subject=subject,
        body=EmailBody(contentType="text", content=body),
        from_recipient=EmailRecipient(emailAddress=EmailAddress(address=sender)),
        **kwargs,
    )


class FakeGraph:
    """In-memory mailbox behind a MagicMock ``EmailClient``.

    Folders, master categories and message categories are stored so that
    folder creation and category writes can be asserted end to end. Every
    call is still recorded on :attr:`client`.
    """

    def __init__(self) -> None:
        self.folders: dict[str, Folder] = {}
        self.master_categories: dict[str, MasterCategory] = {}
        self.messages: dict[str, Email] = {}
        self.message_categories: dict[str, list[str]] = {}

        client = MagicMock()
        client.list_child_folders.side_effect = self._list_child_folders
        client.create_folder.side_effect = self._create_folder
        client.get_folder.side_effect = lambda folder_id: self.folders.get(folder_id)
        client.list_master_categories.side_effect = lambda: list(self.master_categories.values())
        client.create_master_category.side_effect = self._create_master_category
        client.patch_master_category_color.side_effect = self._patch_master_category_color
        client.get_message.side_effect = self._get_message
        client.patch_message.side_effect = self._patch_message
        client.move_message.side_effect = lambda message_id, folder_id: f"{message_id}-moved"
        client.search_by_conversation.return_value = []
        self.client = client

    def add_folder(self, name: str, parent_id: Optional[str] = None, folder_id: Optional[str] = None) -> Folder:
        folder_id = folder_id or f"folder-{len(self.folders) + 1}"
        folder = Folder(id=folder_id, displayName=name, parentFolderId=parent_id)
        self.folders[folder_id] = folder
        return folder

    def children(self, parent_id: Optional[str]) -> list[Folder]:
        return [f for f in self.folders.values() if f.parent_folder_id == parent_id]

    def find(self, name: str, parent_id: Optional[str] = None) -> Optional[Folder]:
        return next((f for f in self.children(parent_id) if f.display_name == name), None)

    def _list_child_folders(self, parent_id=None, display_name=None):
        return [
            f
            for f in self.children(parent_id)
            if display_name is None or f.display_name.lower() == display_name.lower()
        ]

    def _create_folder(self, name, parent_id=None):
        if self.find(name, parent_id):
            return None
        return self.add_folder(name, parent_id)

    def _create_master_category(self, name, color):
        if name.lower() in {n.lower() for n in self.master_categories}:
            return None
        category = MasterCategory(id=f"cat-{len(self.master_categories) + 1}", displayName=name, color=color)
        self.master_categories[name] = category
        return category

    def _patch_master_category_color(self, category_id, color):
        for name, category in self.master_categories.items():
            if category.id == category_id:
                self.master_categories[name] = category.model_copy(update={"color": color})

    def _get_message(self, message_id, select=None):
        email = self.messages.get(message_id) or Email(id=message_id)
        categories = self.message_categories.get(message_id, email.categories)
        return email.model_copy(update={"categories": list(categories)})

    def _patch_message(self, message_id, categories=None, is_read=None):
        if categories is not None:
            self.message_categories[message_id] = list(categories)
        return {}


@pytest.fixture
def graph():
    """In-memory Graph client double."""
    return FakeGraph()
