"""Book inventory REST API: CRUD, search and stock tracking."""

__version__ = "1.0.0"
