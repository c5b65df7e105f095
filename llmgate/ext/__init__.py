"""Gateway extensions: audit log, budget, response cache, rate limit and usage tracking."""

__all__ = ["audit", "budget", "cache", "rate_limit", "usage"]