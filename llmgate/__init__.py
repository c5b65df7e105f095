"""Building blocks for an LLM gateway: core types, key admin, upstream retries and metrics."""

__version__ = "0.0.12"

__all__ = ["admin", "core", "dispatch", "ext", "metrics", "storage"]