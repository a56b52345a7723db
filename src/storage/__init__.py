"""Storage layer: asyncpg connection pool shared by all repositories."""

from src.storage.database import Database, close_database, get_database, load_json

__all__ = ["Database", "get_database", "close_database", "load_json"]
