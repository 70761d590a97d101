"""
JSON document persistence port.

Every durable resource (ledger, aggregate state, market guard, cooldowns)
owns exactly one document. The document is read fully at construction and
rewritten wholesale on each mutation:

- Atomic write via temp file + rename (a crash never leaves a torn file)
- File lock (flock) around each read/write
- Corrupt documents are moved aside, never silently overwritten
- Write failures are logged and reported, not raised: the owner's
  in-memory copy stays authoritative until the next successful write
"""
import fcntl
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from solscalp.monitoring.logger import get_logger

logger = get_logger(__name__)


class JsonDocumentStore:
    """Load/save a single JSON document at `path`."""

    def __init__(self, path: Path | str):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[Any]:
        """Return the parsed document, or None if missing or unreadable."""
        if not self._path.exists():
            return None

        try:
            with open(self._path, "r") as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                try:
                    return json.load(f)
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except (json.JSONDecodeError, ValueError) as e:
            quarantine = self._path.with_name(
                f"{self._path.name}.corrupt-{datetime.now(timezone.utc):%Y%m%dT%H%M%S}"
            )
            logger.critical(
                "DOCUMENT_CORRUPT — moved aside, starting fresh",
                path=str(self._path),
                quarantine=str(quarantine),
                error=str(e),
            )
            try:
                self._path.rename(quarantine)
            except OSError as rename_err:
                logger.error("Failed to quarantine corrupt document", path=str(self._path), error=str(rename_err))
            return None
        except OSError as e:
            logger.error("DOCUMENT_READ_FAILED — starting fresh", path=str(self._path), error=str(e))
            return None

    def save(self, document: Any) -> bool:
        """Atomically replace the document. Returns False on failure."""
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                try:
                    json.dump(document, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
            tmp_path.replace(self._path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.critical("DOCUMENT_WRITE_FAILED — in-memory state kept", path=str(self._path), error=str(e))
            return False
