"""JSON-file vector store for extracted images, keyed by image path.

Every mutation is a whole-file read-modify-write. Cycles are serialized with an
in-process lock plus a portalocker lock file so concurrent ingestions in
separate processes cannot lose each other's updates.
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Union

import portalocker
from pydantic import ValidationError

from .exceptions import StoreLockTimeout, VectorStoreError
from .models import VectorEntry

logger = logging.getLogger(__name__)

VECTOR_STORE_FILENAME = "image_vectors.json"


def relative_image_path(path: Union[str, Path], root_dir: Union[str, Path]) -> str:
    """Path relative to root_dir, always forward-slash separated."""
    return os.path.relpath(Path(path).resolve(), Path(root_dir).resolve()).replace("\\", "/")


def resolve_image_path(image_path: str, root_dir: Union[str, Path]) -> Path:
    """
    Resolve a stored image path against root_dir.

    Raises:
        ValueError: If the path is empty or points outside root_dir
    """
    if not image_path:
        raise ValueError("image_path must not be empty")
    root = Path(root_dir).resolve()
    absolute = (root / image_path).resolve()
    if absolute != root and root not in absolute.parents:
        raise ValueError(f"Image path escapes root directory: {image_path}")
    return absolute


class ImageVectorStore:
    """Durable, ordered collection of VectorEntry records."""

    def __init__(self, path: Union[str, Path], lock_timeout: float = 30.0):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout
        self._thread_lock = threading.RLock()

    def ensure(self) -> None:
        """Create the store directory and an empty collection if absent."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text("[]", encoding="utf-8")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._thread_lock:
            try:
                lock = portalocker.Lock(
                    str(self.lock_path), mode="a", timeout=self.lock_timeout
                )
                lock.acquire()
            except portalocker.exceptions.LockException as e:
                raise StoreLockTimeout(
                    f"Could not lock {self.lock_path} within {self.lock_timeout}s"
                ) from e
            try:
                yield
            finally:
                lock.release()

    def _read_items(self) -> list:
        """Raw JSON items of the collection; [] when the file is unusable."""
        try:
            self.ensure()
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read image vector store {self.path}: {e}")
            return []

        if not isinstance(data, list):
            logger.warning(f"Image vector store {self.path} is not a list, ignoring")
            return []
        return data

    def _write_items(self, items: list) -> None:
        payload = json.dumps(items, indent=2)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise VectorStoreError(f"Failed to write image vector store: {e}") from e

    def read(self) -> List[VectorEntry]:
        """
        Return the full collection.

        A missing, unreadable or malformed file yields an empty list; records
        that do not validate are skipped here but left untouched on disk.
        """
        entries = []
        for item in self._read_items():
            try:
                entries.append(VectorEntry.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed vector entry {_item_field(item, 'image_path')!r}: "
                    f"{e.error_count()} errors"
                )
        return entries

    def write(self, entries: Iterable[VectorEntry]) -> None:
        """Replace the whole collection on disk."""
        self._write_items([entry.model_dump() for entry in entries])

    def upsert(self, entry: VectorEntry) -> None:
        """Insert or replace the entry with the same image_path."""
        self.upsert_many([entry])

    def upsert_many(self, entries: Iterable[VectorEntry]) -> None:
        """Merge several entries in a single read-modify-write cycle."""
        entries = list(entries)
        for entry in entries:
            if not entry.image_path:
                raise ValueError("Vector entry must carry a non-empty image_path")
        if not entries:
            return

        # Last occurrence wins when the same path appears twice
        incoming = {entry.image_path: entry for entry in entries}
        with self._locked():
            items = [
                item for item in self._read_items()
                if _item_field(item, "image_path") not in incoming
            ]
            items.extend(entry.model_dump() for entry in incoming.values())
            self._write_items(items)
        logger.debug(f"Upserted {len(incoming)} image vectors into {self.path}")

    def delete_by_source(self, source_doc: str) -> List[VectorEntry]:
        """Remove and return every valid entry whose source_doc matches."""
        if not source_doc:
            return []

        with self._locked():
            items = self._read_items()
            matching = [item for item in items if _item_field(item, "source_doc") == source_doc]
            if not matching:
                return []
            self._write_items(
                [item for item in items if _item_field(item, "source_doc") != source_doc]
            )

        removed = []
        for item in matching:
            try:
                removed.append(VectorEntry.model_validate(item))
            except ValidationError:
                logger.warning(
                    f"Dropped malformed vector entry {_item_field(item, 'image_path')!r} "
                    f"for {source_doc}"
                )
        logger.info(f"Removed {len(matching)} image vectors for {source_doc}")
        return removed


def _item_field(item, key: str):
    return item.get(key) if isinstance(item, dict) else None
