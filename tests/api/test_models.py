"""
Tests for API models and the Book wire format.
"""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from api.models import Book, BookPayload


class TestBookPayload:
    """Test cases for BookPayload."""

    def test_ignores_id_and_unknown_fields(self):
        payload = BookPayload.model_validate({
            "_id": str(ObjectId()),
            "title": "Dune",
            "pages": 412
        })
        assert payload.to_document() == {"title": "Dune"}

    def test_released_normalised_to_utc(self):
        payload = BookPayload(released="1965-08-01T02:00:00+02:00")
        assert payload.released == datetime(1965, 8, 1, tzinfo=timezone.utc)
        assert payload.released.utcoffset() == timedelta(0)

    def test_naive_released_taken_as_utc(self):
        payload = BookPayload(released=datetime(1965, 8, 1))
        assert payload.released.tzinfo is not None
        assert payload.released == datetime(1965, 8, 1, tzinfo=timezone.utc)

    def test_rejects_non_string_title(self):
        with pytest.raises(ValidationError):
            BookPayload(title=["Dune"])

    def test_rejects_unparseable_timestamp(self):
        with pytest.raises(ValidationError):
            BookPayload(released="sometime in 1965")

    def test_empty_payload_is_empty_document(self):
        assert BookPayload().to_document() == {}


class TestBook:
    """Test cases for Book."""

    def test_from_document_renders_hex_id(self):
        object_id = ObjectId()
        book = Book.from_document({
            "_id": object_id,
            "title": "Dune",
            "released": datetime(1965, 8, 1, tzinfo=timezone.utc)
        })
        assert book.id == str(object_id)

    def test_response_uses_wire_names_and_omits_absent_fields(self):
        object_id = ObjectId()
        book = Book.from_document({
            "_id": object_id,
            "title": "Dune",
            "released": datetime(1965, 8, 1, tzinfo=timezone.utc)
        })
        assert book.to_response() == {
            "_id": str(object_id),
            "title": "Dune",
            "released": "1965-08-01T00:00:00Z"
        }

    def test_to_document_excludes_id(self):
        book = Book.model_validate({"_id": str(ObjectId()), "author": "Herbert"})
        assert book.to_document() == {"author": "Herbert"}

    def test_stored_extra_fields_ignored(self):
        book = Book.from_document({"_id": ObjectId(), "legacy_rating": 5})
        assert "legacy_rating" not in book.to_response()
