import json
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence, TypeVar

from sqlmodel import SQLModel

from . import config
from .config import LOGGER
from .exceptions import PersistenceError

ModelT = TypeVar("ModelT", bound=SQLModel)


class CollectionStore(ABC):
    """Whole-collection load/save of typed records, keyed by collection name.

    Loading never raises: a missing or unreadable collection is empty.
    Saving overwrites the collection and raises PersistenceError on failure.
    Callers that load a collection, change it and save it back hold locked()
    for the whole sequence.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator["CollectionStore"]:
        """Hold the store for a whole load, modify and save sequence."""
        with self._lock:
            yield self

    @abstractmethod
    def _read(self, name: str) -> bytes | None:
        ...

    @abstractmethod
    def _write(self, name: str, payload: bytes) -> None:
        ...

    def _read_backup(self, name: str) -> bytes | None:
        return None

    def load_collection(self, name: str, model: type[ModelT]) -> list[ModelT]:
        raw = self._decode(name, self._read(name))
        if raw is None:
            LOGGER.warning("Collection %s is unreadable, trying backup", name)
            raw = self._decode(name, self._read_backup(name))
            if raw is None:
                LOGGER.error("No valid backup for collection %s, continuing with no data", name)
                return []

        items: list[ModelT] = []
        for index, record in enumerate(raw):
            try:
                items.append(model.model_validate(record))
            except ValueError as exc:
                LOGGER.warning("Skipping invalid %s record #%s: %s", name, index, exc)
        LOGGER.debug("Loaded %s %s", len(items), name)
        return items

    def save_collection(self, name: str, items: Sequence[SQLModel]) -> None:
        payload = json.dumps(
            [item.model_dump(mode="json") for item in items],
            indent=2,
            ensure_ascii=False,
        ).encode("utf-8")
        with self._lock:
            self._write(name, payload)
        LOGGER.debug("Saved %s %s", len(items), name)

    def _decode(self, name: str, payload: bytes | None) -> list | None:
        if payload is None:
            return None
        try:
            raw = json.loads(payload)
        except ValueError as exc:
            LOGGER.error("Could not decode collection %s: %s", name, exc)
            return None
        if not isinstance(raw, list):
            LOGGER.error("Collection %s is not a list, found %s", name, type(raw).__name__)
            return None
        return raw


class JsonStore(CollectionStore):
    """One pretty-printed JSON array per collection under data_dir."""

    def __init__(self, data_dir: Path | str) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def load_collection(self, name: str, model: type[ModelT]) -> list[ModelT]:
        if not self.path_for(name).exists() and not self._backup_path(name).exists():
            LOGGER.debug("Collection file for %s not found, returning empty data", name)
            return []
        return super().load_collection(name, model)

    def _backup_path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json.bak"

    def _read(self, name: str) -> bytes | None:
        try:
            return self.path_for(name).read_bytes()
        except OSError as exc:
            LOGGER.error("Could not read %s: %s", self.path_for(name), exc)
            return None

    def _read_backup(self, name: str) -> bytes | None:
        backup = self._backup_path(name)
        if not backup.exists():
            return None
        try:
            payload = backup.read_bytes()
        except OSError as exc:
            LOGGER.error("Could not read backup %s: %s", backup, exc)
            return None
        LOGGER.info("Loading %s from backup %s", name, backup)
        return payload

    def _write(self, name: str, payload: bytes) -> None:
        target = self.path_for(name)
        # An unreadable file must not replace the last good backup
        if target.exists() and self._decode(name, self._read(name)) is not None:
            try:
                shutil.copy2(target, self._backup_path(name))
            except OSError as exc:
                LOGGER.warning("Failed to back up %s: %s", target, exc)

        # Write to a sibling temp file and swap it in, so readers never see a partial file
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=self.data_dir)
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            LOGGER.error("Failed to save collection %s to %s: %s", name, target, exc)
            raise PersistenceError(f"Could not save {name}") from exc


class MemoryStore(CollectionStore):
    """Keeps serialized collections in memory. Used by tests."""

    def __init__(self) -> None:
        super().__init__()
        self.collections: dict[str, bytes] = {}

    def _read(self, name: str) -> bytes | None:
        return self.collections.get(name, b"[]")

    def _write(self, name: str, payload: bytes) -> None:
        self.collections[name] = payload


_store: CollectionStore | None = None


def init_store(data_dir: Path | str | None = None) -> CollectionStore:
    global _store
    _store = JsonStore(data_dir or config.DATA_DIR)
    LOGGER.info("Using data directory %s", Path(data_dir or config.DATA_DIR).resolve())
    return _store


def get_store() -> CollectionStore:
    if _store is None:
        return init_store()
    return _store
