"""
Pytest configuration and shared fixtures.
"""

import copy
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from api.database import BookStore
from api.main import create_app


def _matches(document, filter_query):
    for field, condition in filter_query.items():
        value = document.get(field)
        if isinstance(condition, dict):
            # Range operators only match values of the bound's type
            bounds = [condition[op] for op in ("$gte", "$lt") if op in condition]
            if value is None or not all(isinstance(value, type(bound)) for bound in bounds):
                return False
            if "$gte" in condition and not value >= condition["$gte"]:
                return False
            if "$lt" in condition and not value < condition["$lt"]:
                return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    """Async cursor over a snapshot of matching documents."""

    def __init__(self, documents):
        self._documents = documents
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for document in self._documents:
            yield copy.deepcopy(document)

    async def close(self):
        self.closed = True


class InMemoryCollection:
    """Just enough of a motor collection for the book store."""

    def __init__(self):
        self.documents = []
        self.cursors = []
        self.database = SimpleNamespace(command=AsyncMock(return_value={"ok": 1.0}))

    async def insert_one(self, document):
        stored = copy.deepcopy(document)
        stored["_id"] = ObjectId()
        self.documents.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def find_one(self, filter_query):
        for document in self.documents:
            if _matches(document, filter_query):
                return copy.deepcopy(document)
        return None

    def find(self, filter_query):
        cursor = FakeCursor([d for d in self.documents if _matches(d, filter_query)])
        self.cursors.append(cursor)
        return cursor

    async def replace_one(self, filter_query, replacement):
        for index, document in enumerate(self.documents):
            if _matches(document, filter_query):
                updated = copy.deepcopy(replacement)
                updated["_id"] = document["_id"]
                modified = 0 if updated == document else 1
                self.documents[index] = updated
                return SimpleNamespace(matched_count=1, modified_count=modified)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, filter_query):
        for index, document in enumerate(self.documents):
            if _matches(document, filter_query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, filter_query):
        return len([d for d in self.documents if _matches(d, filter_query)])


@pytest.fixture
def memory_collection():
    """Create an empty in-memory book collection."""
    return InMemoryCollection()


@pytest.fixture
def book_store(memory_collection):
    """Create a store gateway backed by the in-memory collection."""
    return BookStore(memory_collection, write_timeout=5.0, read_timeout=30.0)


@pytest.fixture
def client(book_store):
    """Create a test client wired to the in-memory store."""
    with TestClient(create_app(store=book_store)) as test_client:
        yield test_client


@pytest.fixture
def mock_book_store():
    """Create a mock store gateway for testing failure paths."""
    return AsyncMock(spec=BookStore)


@pytest.fixture
def mock_client(mock_book_store):
    """Create a test client wired to the mock store."""
    with TestClient(create_app(store=mock_book_store)) as test_client:
        yield test_client


@pytest.fixture
def sample_book_data():
    """Create sample book data for testing."""
    return {
        "title": "Dune",
        "author": "Herbert",
        "isbn": "978-0441013593",
        "released": "1965-08-01T00:00:00Z"
    }
