from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from mesync.db import MemoryStore, get_store
from mesync.exceptions import PersistenceError
from mesync.main import app, get_now

NOW = datetime(2024, 3, 1, 7, 0)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_now] = lambda: NOW
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class FailingStore(MemoryStore):
    """Accepts writes until ``failing`` is set, then raises like a full disk."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    def _write(self, name: str, payload: bytes) -> None:
        if self.failing:
            raise PersistenceError(f"Could not save {name}")
        super()._write(name, payload)


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()
