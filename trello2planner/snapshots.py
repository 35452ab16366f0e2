"""JSON snapshot persistence with timestamped files and a "latest" pointer."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Write and read JSON snapshots under a base directory.

    Every ``save`` writes two files: ``<name>-<timestamp>.json`` and
    ``<name>-latest.json``. The latest file is replaced atomically, so a crash
    mid-write leaves the previous state discoverable by its fixed name.

    Example:
        >>> store = SnapshotStore("./data")
        >>> store.save("data-export", [board.to_dict() for board in boards])
        PosixPath('data/data-export-latest.json')
        >>> store.load("data-export-latest.json")
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)

    @staticmethod
    def latest_name(name: str) -> str:
        return f"{name}-latest.json"

    def _write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, path)

    def save(self, name: str, data: Any) -> Path:
        """Persist ``data`` as a timestamped snapshot plus the latest pointer.

        Args:
            name: Snapshot name, optionally with a subdirectory
                  (e.g. "filemeta/file-metadata")

        Returns:
            Path of the latest pointer file
        """
        payload = json.dumps(data, indent=2, ensure_ascii=False)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")

        self._write(self.base_path / f"{name}-{timestamp}.json", payload)
        latest = self.base_path / self.latest_name(name)
        self._write(latest, payload)

        logger.debug("Saved snapshot %s (%d bytes)", latest, len(payload))
        return latest

    def load(self, filename: str) -> Any | None:
        """Load a snapshot file relative to the base directory.

        Returns:
            Parsed JSON, or None if the file is missing or not valid JSON
        """
        path = self.base_path / filename
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            logger.error("Snapshot not found: %s", path)
        except json.JSONDecodeError as e:
            logger.error("Snapshot %s is not valid JSON: %s", path, e)
        return None
