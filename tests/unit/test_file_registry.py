"""
Unit tests for FileMetaRegistry
"""

import hashlib
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add parent directory to path to import trello2planner module
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from trello2planner.file_registry import FileMetaRegistry
from trello2planner.models import Board, Card, TrelloList
from trello2planner.snapshots import SnapshotStore


@pytest.fixture
def boards(simple_board_fixture):
    board = Board.from_api(simple_board_fixture["board"])
    for raw in simple_board_fixture["cards"]:
        card = Card.from_api(raw)
        next(lst for lst in board.lists if lst.id == card.list_id).cards.append(card)
    return [board]


@pytest.fixture
def registry(tmp_path):
    return FileMetaRegistry(SnapshotStore(tmp_path), tmp_path / "attachments")


def fake_reader(content=b"0123456789"):
    reader = MagicMock()
    reader.download_attachment.return_value = content
    return reader


class TestRender:
    """Test building the catalog from boards"""

    def test_one_entry_per_attachment(self, registry, boards):
        entries = registry.render(boards)

        assert set(entries) == {"att_upload", "att_link"}
        assert all(meta.origin_board == "board_1" for meta in entries.values())
        assert not any(meta.complete for meta in entries.values())
        assert registry.loaded

    def test_no_boards(self, registry):
        """Rendering without boards is refused"""
        assert registry.render(None) is None
        assert registry.render([]) is None
        assert not registry.loaded

    def test_render_replaces_previous_catalog(self, registry, boards):
        registry.render(boards)
        registry.render([Board("b2", "Empty", [TrelloList("l", "L")])])
        assert registry.entries == {}


class TestPersistence:
    """Test save/load of the catalog"""

    def test_round_trip(self, tmp_path, registry, boards):
        """A saved catalog loads back equal, null hash and url included"""
        registry.render(boards)
        registry.save()

        other = FileMetaRegistry(SnapshotStore(tmp_path), tmp_path / "attachments")
        assert other.load() is True

        assert other.entries == registry.entries
        assert other.entries["att_link"].hash is None
        assert other.entries["att_link"].graph_url is None

    def test_saved_under_filemeta_directory(self, tmp_path, registry, boards):
        registry.render(boards)
        registry.save()
        assert (tmp_path / "filemeta" / "file-metadata-latest.json").exists()

    def test_load_missing(self, registry):
        assert registry.load() is False
        assert not registry.loaded

    def test_save_without_catalog(self, registry):
        assert registry.save() is None


class TestDownloadAll:
    """Test downloading attachment bytes"""

    def test_downloads_uploads_only(self, registry, boards):
        """External links are never downloaded"""
        registry.render(boards)
        reader = fake_reader()

        downloaded, failed = registry.download_all(reader)

        assert (downloaded, failed) == (1, 0)
        reader.download_attachment.assert_called_once_with(
            "https://trello.com/1/cards/card_1/attachments/att_upload/download/plan.txt"
        )
        upload = registry.entries["att_upload"]
        assert upload.complete
        assert upload.hash == hashlib.sha256(b"0123456789").hexdigest()
        assert registry.attachment_path(upload).read_bytes() == b"0123456789"
        assert not registry.entries["att_link"].complete

    def test_idempotent(self, registry, boards):
        """A second run makes zero downloads and changes nothing"""
        registry.render(boards)
        registry.download_all(fake_reader())
        before = {k: m.to_dict() for k, m in registry.entries.items()}

        reader = fake_reader()
        assert registry.download_all(reader) == (0, 0)

        reader.download_attachment.assert_not_called()
        assert {k: m.to_dict() for k, m in registry.entries.items()} == before

    def test_progress_saved_after_each_download(self, tmp_path, registry, boards):
        """Completion is persisted so an interrupted run can resume"""
        registry.render(boards)
        registry.download_all(fake_reader())

        resumed = FileMetaRegistry(SnapshotStore(tmp_path), tmp_path / "attachments")
        resumed.load()
        assert resumed.entries["att_upload"].complete

    def test_failed_download_stays_pending(self, registry, boards):
        registry.render(boards)

        assert registry.download_all(fake_reader(content=None)) == (0, 1)
        assert not registry.entries["att_upload"].complete

    def test_size_mismatch_still_completes(self, registry, boards):
        """Trello's byte count is advisory"""
        registry.render(boards)
        assert registry.download_all(fake_reader(content=b"short")) == (1, 0)
        assert registry.entries["att_upload"].complete

    def test_requires_catalog(self, registry):
        assert registry.download_all(fake_reader()) == (0, 0)


class TestOpenAndStats:
    """Test reading cached files, recording uploads and statistics"""

    def test_open_for_read(self, registry, boards):
        registry.render(boards)
        registry.download_all(fake_reader())

        with registry.open_for_read(registry.entries["att_upload"]) as f:
            assert f.read() == b"0123456789"

    def test_open_missing_file(self, registry, boards):
        """A file that was never downloaded cannot be opened"""
        registry.render(boards)
        assert registry.open_for_read(registry.entries["att_upload"]) is None

    def test_mark_uploaded_persists(self, tmp_path, registry, boards):
        registry.render(boards)
        registry.mark_uploaded(registry.entries["att_upload"], "https://sp/plan.txt")

        reloaded = FileMetaRegistry(SnapshotStore(tmp_path), tmp_path / "attachments")
        reloaded.load()
        assert reloaded.entries["att_upload"].graph_url == "https://sp/plan.txt"

    def test_mark_complete_persists(self, tmp_path, registry, boards):
        """Entries with nothing to transfer are recorded as complete"""
        registry.render(boards)
        registry.mark_complete(registry.entries["att_link"])

        reloaded = FileMetaRegistry(SnapshotStore(tmp_path), tmp_path / "attachments")
        reloaded.load()
        assert reloaded.entries["att_link"].complete

    def test_statistics(self, registry, boards):
        registry.render(boards)
        registry.download_all(fake_reader())

        stats = registry.statistics()

        assert stats["total"] == 2
        assert stats["uploads"] == 1
        assert stats["downloaded"] == 1
        assert stats["pending"] == 0
        assert stats["external_links"] == 1
        assert stats["filename_mismatches"] == 0
        assert stats["uploaded_to_graph"] == 0
        assert stats["total_bytes"] == 10
