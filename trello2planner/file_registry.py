"""Catalog of every attachment and its download/upload state."""

from __future__ import annotations

import hashlib
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO

from trello2planner.models import Board, FileMeta
from trello2planner.snapshots import SnapshotStore

if TYPE_CHECKING:
    from trello2planner.trello_client import TrelloReader

logger = logging.getLogger(__name__)


class FileMetaRegistry:
    """Flat, persisted catalog of attachments keyed by Trello attachment id.

    The catalog is rendered from the board tree, then mutated in place as
    attachments are downloaded (``complete`` + ``hash``) and uploaded
    (``graph_url``). Every mutation is followed by a full save, so a transfer
    that runs for hours can be resumed after a restart by loading
    ``filemeta/file-metadata-latest.json``.

    Downloaded bytes live in ``<attachments_dir>/<file_id>``; the original
    filename is only used again when uploading.

    Thread Safety:
        Mutation-then-save sequences hold an internal lock, so concurrent
        uploaders can record results safely.
    """

    SNAPSHOT_NAME = "filemeta/file-metadata"

    def __init__(self, store: SnapshotStore, attachments_dir: str | Path):
        self.store = store
        self.attachments_dir = Path(attachments_dir)
        self.entries: dict[str, FileMeta] | None = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self.entries is not None

    def render(self, boards: list[Board] | None) -> dict[str, FileMeta] | None:
        """Build a fresh catalog from every attachment on every card.

        Replaces any catalog already held in memory.
        """
        if not boards:
            logger.error("❌ Boards not yet loaded: download or load Trello data first")
            return None

        entries: dict[str, FileMeta] = {}
        for board in boards:
            for lst in board.lists:
                for card in lst.cards:
                    for attachment in card.attachments:
                        entries[attachment.id] = FileMeta(attachment, origin_board=board.id)

        with self._lock:
            self.entries = entries

        logger.info(f"📎 Rendered metadata for {len(entries)} attachments")
        return entries

    def _save_locked(self) -> Path | None:
        if self.entries is None:
            return None
        return self.store.save(
            self.SNAPSHOT_NAME, [meta.to_dict() for meta in self.entries.values()]
        )

    def save(self) -> Path | None:
        """Persist the catalog (timestamped snapshot + latest pointer)."""
        with self._lock:
            path = self._save_locked()
        if path is None:
            logger.error("No file metadata to save")
        return path

    def load(self, filename: str | None = None) -> bool:
        """Load a catalog snapshot, by default the latest one."""
        filename = filename or SnapshotStore.latest_name(self.SNAPSHOT_NAME)
        data = self.store.load(filename)
        if data is None:
            return False

        try:
            metas = [FileMeta.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            logger.error("File metadata in %s is malformed: %s", filename, e)
            return False

        with self._lock:
            self.entries = {meta.attachment.id: meta for meta in metas}
        logger.info(f"📂 Loaded metadata for {len(metas)} attachments from {filename}")
        return True

    def attachment_path(self, meta: FileMeta) -> Path:
        return self.attachments_dir / meta.file_id

    def download_all(self, reader: TrelloReader) -> tuple[int, int]:
        """Download every uploaded attachment that is not yet complete.

        External links and entries already downloaded are skipped without a
        network request. After each successful download the catalog is saved,
        so an interrupted run loses at most the file in flight.

        Returns:
            Tuple of (downloaded, failed)
        """
        if self.entries is None:
            logger.error("❌ File metadata not loaded: render or load it first")
            return 0, 0

        pending = [
            meta
            for meta in self.entries.values()
            if meta.attachment.is_upload and not meta.complete
        ]
        logger.info(f"⬇️  Downloading {len(pending)} incomplete attachments...")

        self.attachments_dir.mkdir(parents=True, exist_ok=True)
        downloaded = 0
        failed = 0

        for i, meta in enumerate(pending, 1):
            content = reader.download_attachment(meta.attachment.url)
            if content is None:
                failed += 1
                continue

            expected = meta.attachment.bytes
            if expected is not None and expected >= 0 and expected != len(content):
                logger.warning(
                    "Attachment %s: Trello reported %d bytes, downloaded %d",
                    meta.attachment.id,
                    expected,
                    len(content),
                )

            path = self.attachment_path(meta)
            try:
                with open(path, "wb") as f:
                    f.write(content)
            except OSError as e:
                logger.error("Unable to write %s: %s", path, e)
                failed += 1
                continue

            with self._lock:
                meta.hash = hashlib.sha256(content).hexdigest()
                meta.complete = True
                self._save_locked()

            downloaded += 1
            if len(pending) > 10 and i % 10 == 0:
                logger.info(f"  Progress: {i}/{len(pending)} attachments")

        logger.info(f"✅ Downloaded {downloaded} attachments ({failed} failed)")
        return downloaded, failed

    def open_for_read(self, meta: FileMeta) -> BinaryIO | None:
        """Open the locally cached bytes of an attachment.

        Returns:
            Binary file object (caller closes it), or None if it cannot be opened
        """
        path = self.attachment_path(meta)
        try:
            return open(path, "rb")
        except OSError as e:
            logger.error(
                "Unable to open %s for attachment %s (%s): %s",
                path,
                meta.attachment.id,
                meta.attachment.file_name,
                e,
            )
            return None

    def mark_complete(self, meta: FileMeta) -> None:
        """Mark an entry that has nothing to transfer (empty or external) as complete"""
        with self._lock:
            meta.complete = True
            self._save_locked()

    def mark_uploaded(self, meta: FileMeta, graph_url: str | None) -> None:
        """Record the Planner-side URL of an uploaded file and persist."""
        with self._lock:
            meta.graph_url = graph_url
            self._save_locked()

    def statistics(self) -> dict[str, Any]:
        entries = list((self.entries or {}).values())
        uploads = [m for m in entries if m.attachment.is_upload]
        return {
            "total": len(entries),
            "uploads": len(uploads),
            "downloaded": sum(1 for m in uploads if m.complete),
            "pending": sum(1 for m in uploads if not m.complete),
            "external_links": len(entries) - len(uploads),
            "filename_mismatches": sum(1 for m in entries if not m.attachment.file_names_match),
            "uploaded_to_graph": sum(1 for m in entries if m.graph_url),
            "total_bytes": sum(max(m.attachment.bytes or 0, 0) for m in uploads),
        }

    def log_statistics(self) -> None:
        if self.entries is None:
            logger.warning("File metadata not loaded")
            return

        stats = self.statistics()
        logger.info("📎 Attachment metadata:")
        logger.info(f"   Total attachments: {stats['total']}")
        logger.info(f"   Trello uploads: {stats['uploads']}")
        logger.info(f"     Downloaded: {stats['downloaded']}")
        logger.info(f"     Pending: {stats['pending']}")
        logger.info(f"   External links: {stats['external_links']}")
        logger.info(f"   Name/filename mismatches: {stats['filename_mismatches']}")
        logger.info(f"   Uploaded to Planner: {stats['uploaded_to_graph']}")
        logger.info(f"   Total upload size: {stats['total_bytes'] / 1024 / 1024:.1f} MiB")
