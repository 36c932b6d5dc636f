"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BookPayload(BaseModel):
    """Book fields accepted on create and replace.

    Unknown fields, including ``_id``, are ignored.
    """
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(None, description="Book title")
    author: Optional[str] = Field(None, description="Book author")
    isbn: Optional[str] = Field(None, description="ISBN")
    released: Optional[datetime] = Field(None, description="Release timestamp (UTC)")

    @field_validator("released")
    @classmethod
    def normalize_released(cls, v):
        """Store every release instant in UTC; naive values are taken as UTC."""
        if v is None:
            return v
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def to_document(self) -> Dict[str, Any]:
        """Mongo document for this payload, without absent fields."""
        return self.model_dump(include=set(BookPayload.model_fields), exclude_none=True)


class Book(BookPayload):
    """Book as stored, including its identifier."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id", description="Hex-encoded document identifier")

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Book":
        """Build a Book from a raw collection document."""
        data = dict(document)
        if data.get("_id") is not None:
            data["_id"] = str(data["_id"])
        return cls.model_validate(data)

    def to_response(self) -> Dict[str, Any]:
        """Wire representation: ``_id`` key, absent fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class InsertResult(BaseModel):
    """Outcome of a create."""
    inserted_id: str = Field(..., description="Identifier assigned by the store")


class ReplaceResult(BaseModel):
    """Outcome of a whole-document replace."""
    matched_count: int = Field(..., description="Documents matching the id")
    modified_count: int = Field(..., description="Documents actually changed")


class DeleteResult(BaseModel):
    """Outcome of a delete."""
    deleted_count: int = Field(..., description="Documents removed")


class ErrorResponse(BaseModel):
    """Error response model."""
    message: str = Field(..., description="Human readable error description")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
