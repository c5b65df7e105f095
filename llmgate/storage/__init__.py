"""Key-value and counter storage backends: in memory, SQLite and Redis."""

__all__ = ["memory", "sqlite_store", "redis_store"]