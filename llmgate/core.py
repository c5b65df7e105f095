"""Shared gateway types: errors, key configuration, request context and interfaces."""

from __future__ import annotations

import abc
import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any

PREFIX_LEN = 4


def storage_key(prefix: bytes, suffix: bytes | str) -> bytes:
    """Build a storage key from a four-byte namespace prefix and a suffix."""
    prefix = bytes(prefix)
    if len(prefix) != PREFIX_LEN:
        raise ValueError(f"storage prefix must be {PREFIX_LEN} bytes, got {len(prefix)}")
    if isinstance(suffix, str):
        suffix = suffix.encode("utf-8")
    return prefix + bytes(suffix)


class GatewayError(Exception):
    """Base class for errors raised while serving a request."""

    def is_transient(self) -> bool:
        """Whether retrying the same call might succeed."""
        return False


class ProviderError(GatewayError):
    """An upstream provider answered with an error status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"provider error ({status}): {body}")
        self.status = status
        self.body = body

    def is_transient(self) -> bool:
        return self.status == 429 or self.status >= 500


class GatewayTimeout(GatewayError):
    """An upstream call did not finish within the deployment timeout."""

    def __init__(self) -> None:
        super().__init__("request timed out")

    def is_transient(self) -> bool:
        return True


class InternalError(GatewayError):
    """A failure inside the gateway itself, such as a storage error."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class ApiError:
    """An OpenAI-style error body."""

    message: str
    error_type: str

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"message": self.message, "type": self.error_type}}


class ExtensionError(Exception):
    """Raised by an extension's request hook to reject a request."""

    def __init__(self, status: int, message: str, error_type: str) -> None:
        super().__init__(message)
        self.status = status
        self.body = ApiError(message, error_type)


@dataclass
class KeyConfig:
    """A virtual API key: its name, token and the models it may use."""

    name: str
    key: str
    models: list[str] = field(default_factory=lambda: ["*"])

    def to_json(self) -> bytes:
        return json.dumps(asdict(self)).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> KeyConfig:
        try:
            obj = json.loads(data)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError(f"invalid key config: {exc}") from exc
        if not isinstance(obj, dict):
            raise ValueError("invalid key config: expected an object")
        name, key, models = obj.get("name"), obj.get("key"), obj.get("models", ["*"])
        if not isinstance(name, str) or not isinstance(key, str):
            raise ValueError("invalid key config: 'name' and 'key' must be strings")
        if not isinstance(models, list) or not all(isinstance(m, str) for m in models):
            raise ValueError("invalid key config: 'models' must be a list of strings")
        return cls(name=name, key=key, models=list(models))


@dataclass
class RequestContext:
    """Per-request information handed to extension hooks."""

    request_id: str
    model: str
    provider: str
    key_name: str | None = None
    is_stream: bool = False
    started_at: float = field(default_factory=time.monotonic)

    def elapsed(self) -> float:
        """Seconds since the request started."""
        return time.monotonic() - self.started_at


class Storage(abc.ABC):
    """Asynchronous key-value store with separate integer counters."""

    @abc.abstractmethod
    async def get(self, key: bytes) -> bytes | None:
        """Return the value stored under key, or None."""

    @abc.abstractmethod
    async def set(self, key: bytes, value: bytes) -> None:
        """Store value under key, replacing any previous value."""

    @abc.abstractmethod
    async def increment(self, key: bytes, delta: int) -> int:
        """Add delta to the counter under key and return the new value."""

    @abc.abstractmethod
    async def list(self, prefix: bytes) -> list[tuple[bytes, bytes]]:
        """Return all (key, value) pairs whose key starts with prefix."""

    @abc.abstractmethod
    async def delete(self, key: bytes) -> None:
        """Remove key from both values and counters."""


class Extension:
    """Base class for request hooks; every hook defaults to doing nothing."""

    name: str = "extension"
    prefix: bytes = b"\x00\x00\x00\x00"

    def storage_key(self, suffix: bytes | str) -> bytes:
        return storage_key(self.prefix, suffix)

    async def on_request(self, ctx: RequestContext) -> None:
        """Inspect a request before dispatch; raise ExtensionError to reject it."""
        return None

    async def on_cache_lookup(self, request: dict[str, Any]) -> dict[str, Any] | None:
        """Return a cached response for the request, or None."""
        return None

    async def on_response(
        self, ctx: RequestContext, request: dict[str, Any], response: dict[str, Any]
    ) -> None:
        return None

    async def on_chunk(self, ctx: RequestContext, chunk: dict[str, Any]) -> None:
        return None

    async def on_error(self, ctx: RequestContext, error: GatewayError) -> None:
        return None


@dataclass
class Deployment:
    """One upstream provider able to serve a model. A zero timeout disables it."""

    provider: Any
    timeout: float = 0.0
    max_retries: int = 0


@dataclass
class AppState:
    """State shared by every request handler."""

    registry: Any
    client: Any = None
    config: Any = None
    extensions: list[Extension] = field(default_factory=list)
    storage: Storage | None = None
    key_map: dict[str, str] = field(default_factory=dict)
    admin_token: str | None = None