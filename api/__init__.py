"""
FastAPI REST API for the Book Catalog service.

This package provides:
- CRUD endpoints over the books collection
- Lookups by author and by release year
- A deadline-bounded MongoDB store gateway
"""
