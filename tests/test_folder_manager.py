"""
Tests for the folder_manager module.
"""

import pytest

from rfq_reply_router.config import FolderName
from rfq_reply_router.folder_manager import (
    FolderManager,
    FolderNotFoundError,
    get_folder_for_classification,
)


class TestGetFolderForClassification:
    """Tests for the classification -> folder path table."""

    def test_quote(self):
        assert get_folder_for_classification("MAT-1", "quote") == "MAT-1/Quotes"

    def test_clarification_request_engineering(self):
        path = get_folder_for_classification("MAT-1", "clarification_request", "engineering")
        assert path == "MAT-1/Awaiting Engineer Response"

    def test_clarification_request_without_sub_classification(self):
        assert (
            get_folder_for_classification("MAT-1", "clarification_request")
            == "MAT-1/Clarification Requests"
        )
        assert (
            get_folder_for_classification("MAT-1", "clarification_request", "commercial")
            == "MAT-1/Clarification Requests"
        )

    def test_engineer_response_and_sent_rfq(self):
        assert get_folder_for_classification("MAT-1", "engineer_response") == "MAT-1/Engineer Response"
        assert get_folder_for_classification("MAT-1", "sent_rfq") == "MAT-1/Sent RFQs"

    def test_unknown_maps_to_material_root(self):
        assert get_folder_for_classification("MAT-1", "other") == "MAT-1"
        assert get_folder_for_classification("MAT-1", "spam") == "MAT-1"


class TestInitializeMaterialFolders:
    """Tests for idempotent taxonomy creation."""

    def test_creates_root_and_six_children(self, graph):
        """A fresh mailbox gets the root plus every taxonomy folder."""
        manager = FolderManager(graph.client)

        root = manager.initialize_material_folders("MAT-12345")

        assert root.display_name == "MAT-12345"
        names = {f.display_name for f in graph.children(root.id)}
        assert names == {f.value for f in FolderName}
        assert graph.client.create_folder.call_count == 7

    def test_second_call_creates_nothing(self, graph):
        """Running twice issues no create call on the second run."""
        manager = FolderManager(graph.client)
        manager.initialize_material_folders("MAT-12345")
        graph.client.create_folder.reset_mock()

        manager.initialize_material_folders("MAT-12345")

        graph.client.create_folder.assert_not_called()

    def test_partial_tree_only_creates_missing_children(self, graph):
        """An existing root with some children is completed, not recreated."""
        root = graph.add_folder("MAT-7", folder_id="root-7")
        graph.add_folder("Quotes", parent_id="root-7")
        graph.add_folder("Sent RFQs", parent_id="root-7")

        manager = FolderManager(graph.client)
        result = manager.initialize_material_folders("MAT-7")

        assert result.id == root.id
        created = [c.args[0] for c in graph.client.create_folder.call_args_list]
        assert sorted(created) == sorted(
            [
                "Clarification Requests",
                "Awaiting Clarification Response",
                "Awaiting Engineer Response",
                "Engineer Response",
            ]
        )

    def test_conflict_on_create_rereads_folder(self, graph):
        """A 409 from a concurrent creator resolves to the existing folder."""
        manager = FolderManager(graph.client)
        graph.client.list_child_folders.side_effect = [[], [graph.add_folder("MAT-1", folder_id="r1")]]
        graph.client.create_folder.side_effect = lambda name, parent_id=None: None

        folder = manager.create_folder_if_not_exists("MAT-1")

        assert folder.id == "r1"

    def test_conflict_without_folder_raises(self, graph):
        manager = FolderManager(graph.client)
        graph.client.list_child_folders.side_effect = lambda *a, **k: []
        graph.client.create_folder.side_effect = lambda name, parent_id=None: None

        with pytest.raises(FolderNotFoundError):
            manager.create_folder_if_not_exists("MAT-1")


class TestPathsAndMoves:
    """Tests for path resolution and moves."""

    def test_get_folder_id_by_path(self, graph):
        manager = FolderManager(graph.client)
        manager.initialize_material_folders("MAT-1")

        quotes = graph.find("Quotes", graph.find("MAT-1").id)
        assert manager.get_folder_id_by_path("MAT-1/Quotes") == quotes.id
        assert manager.get_folder_id_by_path("mat-1/quotes") == quotes.id

    def test_get_folder_id_by_path_missing_segment(self, graph):
        """Missing segments are reported, never created."""
        manager = FolderManager(graph.client)

        assert manager.get_folder_id_by_path("MAT-404/Quotes") is None
        graph.client.create_folder.assert_not_called()

    def test_lookups_are_cached(self, graph):
        manager = FolderManager(graph.client)
        manager.initialize_material_folders("MAT-1")
        graph.client.list_child_folders.reset_mock()

        manager.get_folder_id_by_path("MAT-1/Quotes")

        graph.client.list_child_folders.assert_not_called()

    def test_clear_cache_forces_lookup(self, graph):
        manager = FolderManager(graph.client)
        manager.initialize_material_folders("MAT-1")
        manager.clear_cache()
        graph.client.list_child_folders.reset_mock()

        manager.get_folder_id_by_path("MAT-1/Quotes")

        assert graph.client.list_child_folders.call_count == 2

    def test_move_requires_initialized_folders(self, graph):
        manager = FolderManager(graph.client)

        with pytest.raises(FolderNotFoundError, match="MAT-1/Quotes"):
            manager.move_message_to_folder("msg-1", "MAT-1/Quotes")
        graph.client.move_message.assert_not_called()

    def test_move_returns_new_id(self, graph):
        manager = FolderManager(graph.client)
        manager.initialize_material_folders("MAT-1")

        new_id = manager.move_message_to_folder("msg-1", "MAT-1/Quotes")

        assert new_id == "msg-1-moved"
        quotes = graph.find("Quotes", graph.find("MAT-1").id)
        graph.client.move_message.assert_called_once_with("msg-1", quotes.id)


class TestAncestry:
    """Tests for the bounded folder ancestry walk."""

    def test_finds_material_code_above_message_folder(self, graph):
        graph.add_folder("mat-9", folder_id="root")
        graph.add_folder("Quotes", parent_id="root", folder_id="quotes")

        manager = FolderManager(graph.client)

        assert manager.find_material_code_in_ancestry("quotes") == "MAT-9"
        assert manager.get_folder_path("quotes") == "mat-9/Quotes"

    def test_stops_at_inbox(self, graph):
        graph.add_folder("MAT-3", folder_id="mat")
        graph.add_folder("Inbox", parent_id="mat", folder_id="inbox")
        graph.add_folder("Suppliers", parent_id="inbox", folder_id="sub")

        manager = FolderManager(graph.client)

        assert manager.find_material_code_in_ancestry("sub") is None

    def test_name_must_match_exactly(self, graph):
        graph.add_folder("MAT-3 archive", folder_id="a")
        manager = FolderManager(graph.client)

        assert manager.find_material_code_in_ancestry("a") is None

    def test_walk_is_bounded(self, graph):
        parent = graph.add_folder("MAT-1", folder_id="f0")
        for i in range(1, 8):
            parent = graph.add_folder(f"Level {i}", parent_id=parent.id, folder_id=f"f{i}")

        assert FolderManager(graph.client, max_depth=5).find_material_code_in_ancestry("f7") is None
        assert FolderManager(graph.client, max_depth=10).find_material_code_in_ancestry("f7") == "MAT-1"

    def test_unknown_folder(self, graph):
        manager = FolderManager(graph.client)

        assert manager.find_material_code_in_ancestry(None) is None
        assert manager.find_material_code_in_ancestry("missing") is None
        assert manager.get_folder_path("missing") == ""


class TestHelpers:
    """Tests for listing and describing the taxonomy."""

    def test_list_material_folders(self, graph):
        manager = FolderManager(graph.client)
        manager.initialize_material_folders("MAT-2")

        folders = manager.list_material_folders("MAT-2")

        assert len(folders) == 6
        assert manager.list_material_folders("MAT-404") == []

    def test_folder_structure(self):
        structure = FolderManager.folder_structure("MAT-5")

        assert len(structure) == 6
        assert structure[1] == {
            "name": "Quotes",
            "path": "MAT-5/Quotes",
            "description": "Received quote emails",
        }
