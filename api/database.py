"""
Store gateway for the book collection.

All access to MongoDB goes through BookStore. Every call is bounded by a
deadline and driver failures are reported through the BookStoreError
hierarchy, never as pymongo or bson exception types.
"""

import asyncio
from datetime import timezone
from typing import Any, Awaitable, Dict, List, Mapping

import structlog
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from api.config import APIConfig
from api.models import Book, BookPayload, DeleteResult, InsertResult, ReplaceResult
from api.queries import id_filter

logger = structlog.get_logger(__name__)


class BookStoreError(Exception):
    """Base class for store gateway failures."""


class InvalidBookIdError(BookStoreError):
    """The supplied id is not a valid document identifier."""


class BookNotFoundError(BookStoreError):
    """No document matched the supplied id."""


class StoreUnavailableError(BookStoreError):
    """Deadline expiry, connectivity loss or any other driver error."""


def create_client(config: APIConfig) -> AsyncIOMotorClient:
    """Create the process-wide motor client. Datetimes come back tz-aware in UTC."""
    return AsyncIOMotorClient(
        config.mongodb_url,
        tz_aware=True,
        tzinfo=timezone.utc,
        serverSelectionTimeoutMS=config.server_selection_timeout_ms,
    )


class BookStore:
    """Insert, lookup, listing, replace and delete over the book collection."""

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        write_timeout: float = 5.0,
        read_timeout: float = 30.0
    ):
        self.collection = collection
        self.write_timeout = write_timeout
        self.read_timeout = read_timeout

    @classmethod
    def from_client(cls, client: AsyncIOMotorClient, config: APIConfig) -> "BookStore":
        """Bind a store to the configured database and collection."""
        collection = client[config.mongodb_database][config.mongodb_collection]
        return cls(
            collection,
            write_timeout=config.write_timeout_seconds,
            read_timeout=config.read_timeout_seconds
        )

    async def _bounded(self, operation: str, awaitable: Awaitable, timeout: float) -> Any:
        """Await a driver call under a deadline, translating driver failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as e:
            logger.error("Store operation timed out", operation=operation, timeout_seconds=timeout)
            raise StoreUnavailableError(f"{operation} timed out after {timeout}s") from e
        except PyMongoError as e:
            logger.error("Store operation failed", operation=operation, error=str(e))
            raise StoreUnavailableError(str(e)) from e

    @staticmethod
    def _filter_for(book_id: str) -> Dict[str, Any]:
        try:
            return id_filter(book_id)
        except InvalidId as e:
            raise InvalidBookIdError(str(e)) from e

    async def insert(self, payload: BookPayload) -> InsertResult:
        """
        Insert a new book.

        Args:
            payload: Book fields; the store assigns the id

        Returns:
            InsertResult carrying the new id
        """
        document = payload.to_document()
        result = await self._bounded(
            "insert", self.collection.insert_one(document), self.write_timeout
        )
        logger.debug("Book inserted", book_id=str(result.inserted_id))
        return InsertResult(inserted_id=str(result.inserted_id))

    async def find_by_id(self, book_id: str) -> Book:
        """
        Get a single book by ID.

        Raises:
            InvalidBookIdError: book_id is malformed
            BookNotFoundError: no such book
            StoreUnavailableError: deadline expiry or driver error
        """
        filter_query = self._filter_for(book_id)
        document = await self._bounded(
            "find_by_id", self.collection.find_one(filter_query), self.read_timeout
        )
        if document is None:
            raise BookNotFoundError(book_id)
        try:
            return Book.from_document(document)
        except ValidationError as e:
            logger.error("Stored book does not match the book schema", book_id=book_id, error=str(e))
            raise StoreUnavailableError(f"stored book {book_id} is malformed") from e

    async def find_many(self, filter_query: Mapping[str, Any]) -> List[Book]:
        """
        Get every book matching a filter.

        Args:
            filter_query: Field name mapped to a scalar (equality) or to
                ``{"$gte": lower, "$lt": upper}`` (half-open interval)

        Returns:
            All matches, materialised in memory
        """
        cursor = self.collection.find(dict(filter_query))
        try:
            return await self._bounded("find_many", self._collect(cursor), self.read_timeout)
        finally:
            await self._close_cursor(cursor)

    @staticmethod
    async def _collect(cursor) -> List[Book]:
        """Materialise a cursor, skipping documents written in a foreign shape."""
        books = []
        async for document in cursor:
            try:
                books.append(Book.from_document(document))
            except ValidationError as e:
                logger.warning(
                    "Skipping stored book that does not match the book schema",
                    book_id=str(document.get("_id")),
                    error=str(e)
                )
        return books

    @staticmethod
    async def _close_cursor(cursor) -> None:
        try:
            await cursor.close()
        except PyMongoError as e:
            logger.warning("Failed to close cursor", error=str(e))

    async def replace_by_id(self, book_id: str, payload: BookPayload) -> ReplaceResult:
        """
        Replace a whole book document. Fields absent from payload are removed.

        Raises:
            InvalidBookIdError: book_id is malformed
            BookNotFoundError: no such book
            StoreUnavailableError: deadline expiry or driver error
        """
        filter_query = self._filter_for(book_id)
        result = await self._bounded(
            "replace_by_id",
            self.collection.replace_one(filter_query, payload.to_document()),
            self.write_timeout
        )
        if result.matched_count == 0:
            raise BookNotFoundError(book_id)
        return ReplaceResult(
            matched_count=result.matched_count,
            modified_count=result.modified_count
        )

    async def delete_by_id(self, book_id: str) -> DeleteResult:
        """Delete a book. Deleting a missing id removes nothing and is not an error."""
        filter_query = self._filter_for(book_id)
        result = await self._bounded(
            "delete_by_id", self.collection.delete_one(filter_query), self.write_timeout
        )
        return DeleteResult(deleted_count=result.deleted_count)

    async def ping(self) -> None:
        """Round-trip to the server; raises StoreUnavailableError when unreachable."""
        await self._bounded(
            "ping", self.collection.database.command("ping"), self.read_timeout
        )

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.ping()
            books_count = await self._bounded(
                "count", self.collection.count_documents({}), self.read_timeout
            )
            return {
                "status": "healthy",
                "books_collection": "accessible",
                "books_count": books_count
            }
        except StoreUnavailableError as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }
