"""Admin API for managing virtual keys at run time."""

from __future__ import annotations

import functools
import hmac
import json
import logging
import secrets
from collections.abc import Awaitable, Callable, Iterable, MutableMapping
from typing import Any

from aiohttp import web

from llmgate.core import ApiError, GatewayError, KeyConfig, Storage, storage_key

KEY_PREFIX = b"keys"
DEFAULT_MODELS = ("*",)

log = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error(status: int, message: str, error_type: str) -> web.Response:
    return web.json_response(ApiError(message, error_type).to_dict(), status=status)


def _server_error(message: str) -> web.Response:
    return _error(500, message, "server_error")


def mask_key(key: str) -> str:
    """Show the first eight characters of a key, or hide a short key entirely."""
    if len(key) > 8:
        return f"{key[:8]}..."
    return "***"


def generate_key() -> str:
    """A fresh random token: 'sk-' followed by 32 random bytes in hex."""
    return f"sk-{secrets.token_hex(32)}"


def _summary(config: KeyConfig, source: str) -> dict[str, Any]:
    return {
        "name": config.name,
        "key_prefix": mask_key(config.key),
        "models": list(config.models),
        "source": source,
    }


def _decode(value: bytes) -> KeyConfig | None:
    try:
        return KeyConfig.from_json(value)
    except ValueError:
        return None


class KeyAdmin:
    """Creates, lists, shows and revokes virtual keys behind an admin token."""

    def __init__(
        self,
        storage: Storage,
        key_map: MutableMapping[str, str],
        admin_token: str,
        toml_keys: Iterable[KeyConfig],
    ) -> None:
        self._storage = storage
        self._key_map = key_map
        self._admin_token = admin_token
        self._toml_keys = list(toml_keys)
        self._toml_names = {k.name for k in self._toml_keys}

    def _check_auth(self, request: web.Request) -> web.Response | None:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return _error(401, "missing or invalid Authorization header", "authentication_error")
        token = header[len("Bearer "):]
        if not hmac.compare_digest(token.encode("utf-8"), self._admin_token.encode("utf-8")):
            return _error(401, "invalid admin token", "authentication_error")
        return None

    def _guarded(self, handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(request: web.Request) -> web.StreamResponse:
            denied = self._check_auth(request)
            if denied is not None:
                return denied
            return await handler(request)

        return wrapper

    def routes(self) -> list[web.RouteDef]:
        """Key management routes, each requiring the admin token."""
        return [
            web.post("/v1/admin/keys", self._guarded(self.create_key)),
            web.get("/v1/admin/keys", self._guarded(self.list_keys)),
            web.get("/v1/admin/keys/{name}", self._guarded(self.get_key)),
            web.delete("/v1/admin/keys/{name}", self._guarded(self.delete_key)),
        ]

    async def create_key(self, request: web.Request) -> web.Response:
        """POST /v1/admin/keys: create a key and return its token once."""
        try:
            body = json.loads(await request.read())
        except (ValueError, UnicodeDecodeError) as exc:
            return _error(400, f"invalid JSON body: {exc}", "invalid_request_error")
        if not isinstance(body, dict) or not isinstance(body.get("name"), str):
            return _error(422, "'name' must be a string", "invalid_request_error")
        name: str = body["name"]
        models = body.get("models", list(DEFAULT_MODELS))
        if not isinstance(models, list) or not all(isinstance(m, str) for m in models):
            return _error(422, "'models' must be a list of strings", "invalid_request_error")

        if not name:
            return _error(400, "name is required", "invalid_request_error")
        if name in self._toml_names:
            return _error(
                409, f"key '{name}' is managed by config file", "invalid_request_error"
            )

        skey = storage_key(KEY_PREFIX, name)
        try:
            existing = await self._storage.get(skey)
        except GatewayError as exc:
            return _server_error(str(exc))
        if existing is not None:
            return _error(409, f"key '{name}' already exists", "invalid_request_error")

        config = KeyConfig(name=name, key=generate_key(), models=models)
        # Persist first so the live map never holds a key that storage lacks.
        try:
            await self._storage.set(skey, config.to_json())
        except GatewayError as exc:
            return _server_error(str(exc))
        self._key_map[config.key] = name

        return web.json_response(
            {"name": name, "key": config.key, "models": models}, status=201
        )

    async def list_keys(self, request: web.Request) -> web.Response:
        """GET /v1/admin/keys: config keys followed by dynamic ones."""
        keys = [_summary(k, "config") for k in self._toml_keys]
        try:
            pairs = await self._storage.list(KEY_PREFIX)
        except GatewayError as exc:
            return _server_error(str(exc))
        for _, value in pairs:
            config = _decode(value)
            if config is None or config.name in self._toml_names:
                continue
            keys.append(_summary(config, "dynamic"))
        return web.json_response(keys)

    async def get_key(self, request: web.Request) -> web.Response:
        """GET /v1/admin/keys/{name}: one key's masked details."""
        name = request.match_info["name"]
        for config in self._toml_keys:
            if config.name == name:
                return web.json_response(_summary(config, "config"))

        try:
            value = await self._storage.get(storage_key(KEY_PREFIX, name))
        except GatewayError as exc:
            return _server_error(str(exc))
        if value is None:
            return _error(404, f"key '{name}' not found", "invalid_request_error")
        try:
            config = KeyConfig.from_json(value)
        except ValueError as exc:
            return _server_error(str(exc))
        return web.json_response(_summary(config, "dynamic"))

    async def delete_key(self, request: web.Request) -> web.Response:
        """DELETE /v1/admin/keys/{name}: revoke a dynamic key."""
        name = request.match_info["name"]
        if name in self._toml_names:
            return _error(
                403,
                f"key '{name}' is managed by config file and cannot be deleted via API",
                "invalid_request_error",
            )

        skey = storage_key(KEY_PREFIX, name)
        try:
            value = await self._storage.get(skey)
        except GatewayError as exc:
            return _server_error(str(exc))
        if value is None:
            return _error(404, f"key '{name}' not found", "invalid_request_error")
        config = _decode(value)
        if config is None:
            return _server_error("corrupt key data")

        try:
            await self._storage.delete(skey)
        except GatewayError as exc:
            return _server_error(str(exc))
        self._key_map.pop(config.key, None)
        return web.Response(status=204)


def key_admin_routes(
    storage: Storage,
    key_map: MutableMapping[str, str],
    admin_token: str,
    toml_keys: Iterable[KeyConfig],
) -> list[web.RouteDef]:
    """Build the admin key routes, protected by admin_token."""
    return KeyAdmin(storage, key_map, admin_token, toml_keys).routes()


async def load_stored_keys(
    storage: Storage,
    toml_keys: Iterable[KeyConfig],
    key_map: MutableMapping[str, str],
) -> None:
    """Add stored keys to key_map; config keys win on name conflicts."""
    try:
        pairs = await storage.list(KEY_PREFIX)
    except GatewayError as exc:
        log.warning("failed to load stored keys: %s", exc)
        return
    toml_names = {k.name for k in toml_keys}
    for _, value in pairs:
        config = _decode(value)
        if config is None or config.name in toml_names:
            continue
        key_map[config.key] = config.name