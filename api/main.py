"""
FastAPI main application for the Book Catalog API.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from api.config import APIConfig, config
from api.database import (
    BookNotFoundError, BookStore, InvalidBookIdError, StoreUnavailableError, create_client
)
from api.models import BookPayload, ErrorResponse, HealthResponse
from api.queries import InvalidYearError, author_filter, parse_year, released_in_year_filter
from utilities.logger import bind_request_context, clear_request_context

# Setup logging
logger = structlog.get_logger(__name__)

# Literal path segments under /books that are never book ids
RESERVED_SEGMENTS = frozenset({"author", "year"})


def error_response(status_code: int, message: str, headers=None) -> JSONResponse:
    """Render the {"message": ...} error envelope."""
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message).model_dump(),
        headers=headers
    )


class RequestContextMiddleware:
    """
    Bind request fields to log events and render unhandled errors as a JSON 500.

    Plain ASGI so it can sit inside the CORS middleware.
    """

    def __init__(self, app: ASGIApp, debug: bool = False):
        self.app = app
        self.debug = debug

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        bind_request_context(scope["method"], scope["path"])
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            logger.error("Unhandled exception", error=str(exc), path=scope["path"])
            if response_started:
                raise
            message = f"Internal server error: {exc}" if self.debug else "Internal server error"
            response = error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, message)
            await response(scope, receive, send)
        finally:
            clear_request_context()


def get_book_store(request: Request) -> BookStore:
    """Resolve the store gateway from the application context."""
    store = getattr(request.app.state, "book_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database service not available"
        )
    return store


def book_id_path(book_id: str) -> str:
    """Path parameter for /books/{book_id}; namespace names are not ids."""
    if book_id in RESERVED_SEGMENTS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    return book_id


router = APIRouter(prefix="/books", tags=["Books"])


@router.post("")
async def create_book(payload: BookPayload, store: BookStore = Depends(get_book_store)):
    """Create a book. Any ``_id`` in the body is ignored."""
    logger.info("Received request to create a new book")
    try:
        result = await store.insert(payload)
    except StoreUnavailableError as e:
        logger.error("Failed to create book", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error creating book"
        )
    logger.info("Book created successfully", book_id=result.inserted_id)
    return JSONResponse(content=result.model_dump())


@router.get("")
async def get_books(store: BookStore = Depends(get_book_store)):
    """Get all books."""
    logger.info("Received request to get all books")
    try:
        books = await store.find_many({})
    except StoreUnavailableError as e:
        logger.error("Failed to get books", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching books"
        )
    logger.info("All books fetched successfully", count=len(books))
    return JSONResponse(content=[book.to_response() for book in books])


@router.get("/author/{author}")
async def get_books_by_author(author: str, store: BookStore = Depends(get_book_store)):
    """
    Get books by author.

    - **author**: exact, case-sensitive author name
    """
    logger.info("Received request to get books by author", author=author)
    try:
        books = await store.find_many(author_filter(author))
    except StoreUnavailableError as e:
        logger.error("Failed to get books by author", author=author, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching books by author"
        )
    logger.info("Books by author fetched", author=author, count=len(books))
    return JSONResponse(content=[book.to_response() for book in books])


@router.get("/year/{year}")
async def get_books_by_year(year: str, store: BookStore = Depends(get_book_store)):
    """
    Get books released in a calendar year (UTC).

    - **year**: four digit year, e.g. 1965
    """
    logger.info("Received request to get books by year", year=year)
    try:
        filter_query = released_in_year_filter(parse_year(year))
    except InvalidYearError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        books = await store.find_many(filter_query)
    except StoreUnavailableError as e:
        logger.error("Failed to get books by year", year=year, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching books by year"
        )
    logger.info("Books by year fetched", year=year, count=len(books))
    return JSONResponse(content=[book.to_response() for book in books])


@router.get("/{book_id}")
async def get_book(
    book_id: str = Depends(book_id_path),
    store: BookStore = Depends(get_book_store)
):
    """
    Get a single book by ID.

    - **book_id**: hex encoded document id
    """
    logger.info("Received request to get book", book_id=book_id)
    try:
        book = await store.find_by_id(book_id)
    except StoreUnavailableError as e:
        logger.error("Failed to get book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching book"
        )
    logger.info("Book fetched successfully", book_id=book_id)
    return JSONResponse(content=book.to_response())


@router.put("/{book_id}")
async def update_book(
    payload: BookPayload,
    book_id: str = Depends(book_id_path),
    store: BookStore = Depends(get_book_store)
):
    """Replace a book. Fields missing from the body are cleared."""
    logger.info("Received request to update book", book_id=book_id)
    try:
        result = await store.replace_by_id(book_id, payload)
    except StoreUnavailableError as e:
        logger.error("Failed to update book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error updating book"
        )
    logger.info("Book updated successfully", book_id=book_id, modified=result.modified_count)
    return JSONResponse(content=result.model_dump())


@router.delete("/{book_id}")
async def delete_book(
    book_id: str = Depends(book_id_path),
    store: BookStore = Depends(get_book_store)
):
    """Delete a book."""
    logger.info("Received request to delete book", book_id=book_id)
    try:
        result = await store.delete_by_id(book_id)
    except StoreUnavailableError as e:
        logger.error("Failed to delete book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error deleting book"
        )
    logger.info("Book deleted successfully", book_id=book_id, deleted=result.deleted_count)
    return JSONResponse(content=result.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Every error leaves the service as {"message": ...}."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions, including routing 404/405."""
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed or wrongly typed request bodies."""
        logger.warning("Invalid request body", path=request.url.path, errors=str(exc.errors()))
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request body")

    @app.exception_handler(InvalidBookIdError)
    async def invalid_id_handler(request: Request, exc: InvalidBookIdError):
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid book id")

    @app.exception_handler(BookNotFoundError)
    async def not_found_handler(request: Request, exc: BookNotFoundError):
        return error_response(status.HTTP_404_NOT_FOUND, "Book not found")


def create_app(settings: Optional[APIConfig] = None, store: Optional[BookStore] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; the environment-derived config by default
        store: Pre-built store gateway. When omitted, the lifespan connects
            to MongoDB and aborts startup if the server does not answer a ping.
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting Book Catalog API")

        if store is not None:
            app.state.book_store = store
            yield
            logger.info("Shutting down Book Catalog API")
            return

        client = create_client(settings)
        book_store = BookStore.from_client(client, settings)
        try:
            await book_store.ping()
        except StoreUnavailableError as e:
            logger.error("Failed to connect to database", error=str(e))
            client.close()
            raise
        logger.info(
            "Database connection established",
            database=settings.mongodb_database,
            collection=settings.mongodb_collection
        )
        app.state.book_store = book_store

        try:
            yield
        finally:
            logger.info("Shutting down Book Catalog API")
            client.close()

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan
    )

    # Must be added before CORS: the last middleware added is the outermost
    app.add_middleware(RequestContextMiddleware, debug=settings.debug)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    register_exception_handlers(app)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint."""
        db_status = "unavailable"
        book_store = getattr(request.app.state, "book_store", None)
        if book_store is not None:
            health_info = await book_store.health_check()
            db_status = health_info.get("status", "unknown")

        response = HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            timestamp=datetime.now(timezone.utc),
            version=settings.api_version,
            database_status=db_status
        )
        return JSONResponse(content=response.model_dump(mode="json"))

    app.include_router(router)
    return app


# Create FastAPI application
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level=config.log_level.lower()
    )
