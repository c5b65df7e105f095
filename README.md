# llmgate

Asynchronous building blocks for a gateway that sits in front of LLM
providers: key-value storage backends, request extensions (audit log, budget,
response cache, rate limit, usage tracking), a virtual-key admin API, retry
and timeout helpers for upstream calls, and an in-process metrics registry.
HTTP routes are `aiohttp` route tables.

## Core types (`llmgate.core`)

* Errors: `GatewayError` and its subclasses `ProviderError(status, body)`,
  `GatewayTimeout` and `InternalError(message)`. `is_transient()` is true for
  timeouts and for provider statuses 429 and 5xx.
* `ApiError(message, error_type).to_dict()` gives an OpenAI-style
  `{"error": {"message": ..., "type": ...}}` body.
* `ExtensionError(status, message, error_type)` is raised by an extension's
  `on_request` hook to reject a request.
* `KeyConfig(name, key, models=["*"])` with `to_json()` / `from_json()`.
* `RequestContext(request_id, model, provider, key_name=None, is_stream=False)`
  with `elapsed()` in seconds.
* `Storage`: the abstract async store. `Extension`: the base class for hooks
  (`on_request`, `on_cache_lookup`, `on_response`, `on_chunk`, `on_error`), all of
  which do nothing by default.
* `Deployment(provider, timeout=0.0, max_retries=0)` and `AppState`.
* `storage_key(prefix, suffix)` joins a four-byte prefix and a suffix.

## Storage

```python
from llmgate.core import storage_key
from llmgate.storage.memory import MemoryStorage

storage = MemoryStorage()
key = storage_key(b"keys", b"alice")
await storage.set(key, b"{}")
assert await storage.get(key) == b"{}"
assert await storage.increment(storage_key(b"usge", b"alice:gpt:p"), 10) == 10
```

Values and counters are kept apart. `list(prefix)` returns both, with counters
encoded as 8-byte little-endian signed integers; `delete` removes a key from both.

* `llmgate.storage.memory.MemoryStorage`: in process, lost on restart.
* `llmgate.storage.sqlite_store.SqliteStorage`: `await SqliteStorage.open(path)`,
  usable as an async context manager.
* `llmgate.storage.redis_store.RedisStorage`: `await RedisStorage.open(url)`,
  usable as an async context manager.

Backend failures are raised as `InternalError`.

## Extensions (`llmgate.ext`)

| Class          | Module                   | What it does |
|----------------|--------------------------|--------------|
| `AuditLogger`  | `llmgate.ext.audit`      | Stores an `AuditRecord` for every response, usage-bearing chunk and error. `admin_routes()` serves `GET /v1/admin/logs` with `key`, `model`, `since`, `until` and `limit` (default 100) filters, newest first. `query_records(...)` does the same from code; `flush()` waits for pending writes. |
| `Budget`       | `llmgate.ext.budget`     | Rejects with 429 `budget_exceeded` once a key has spent its budget. `entries()` and `GET /v1/budget` show spending. |
| `Cache`        | `llmgate.ext.cache`      | Caches non-streaming responses under a SHA-256 of the request for `ttl_seconds`. `clear()` and `DELETE /v1/cache` empty it. |
| `RateLimit`    | `llmgate.ext.rate_limit` | Requests and tokens per key per minute; rejects with 429 `rate_limit_error`. |
| `UsageTracker` | `llmgate.ext.usage`      | Prompt and completion token totals per key and model, from `entries()` or `GET /v1/usage`. |

Requests without a key name are counted under `__global`. Settings come from a
mapping:

* `Budget(config, storage, pricing)`: `default_budget` (USD, must be positive)
  and, optionally, `keys.<name>.budget`. `pricing` maps a model to a function of
  prompt and completion tokens that returns USD.
* `Cache(config, storage)`: `ttl_seconds` (default 300).
* `RateLimit(config, storage)`: `requests_per_minute` (required, positive) and,
  optionally, `tokens_per_minute` (positive).
* `AuditLogger(config, storage, pricing)`: no settings.

Invalid settings raise `ValueError`.

## Key management (`llmgate.admin`)

`key_admin_routes(storage, key_map, admin_token, toml_keys)` returns the routes
of a `KeyAdmin`. Every call must carry `Authorization: Bearer <admin token>`.

* `POST /v1/admin/keys` with `{"name": "...", "models": ["*"]}` creates a key
  (`generate_key()`: `sk-` and 64 hex digits). The response is the only place
  the full key appears.
* `GET /v1/admin/keys` lists config keys, then stored ones, masked by `mask_key`.
* `GET /v1/admin/keys/{name}` shows one key.
* `DELETE /v1/admin/keys/{name}` revokes a stored key; config keys answer 403.

`load_stored_keys(storage, toml_keys, key_map)` merges stored keys into the
token-to-name map at startup; config keys win on name conflicts.

```python
from aiohttp import web
from llmgate.admin import key_admin_routes
from llmgate.ext.usage import UsageTracker

app = web.Application()
app.add_routes(key_admin_routes(storage, {}, "token", []))
app.add_routes(UsageTracker(None, storage).admin_routes())
```

## Upstream calls (`llmgate.dispatch`)

* `with_timeout(timeout, awaitable)` raises `GatewayTimeout`; zero means no limit.
* `call_with_retries(deployment, call)` runs `call(deployment.provider)` and
  retries transient errors up to `max_retries` times, with jittered exponential
  backoff from 100 ms (`jittered(backoff)` picks between half and all of it).
* `error_response(error)` builds the JSON error response: provider status with
  `upstream_error`, 504 `timeout_error`, or 500 `server_error`.

## Metrics (`llmgate.metrics`)

`MetricsRegistry` holds counters, histograms and gauges by name and labels;
`REGISTRY` is the shared instance. `record_duration(ctx, status)` and
`record_tokens(ctx, prompt, completion)` feed `llmgate_request_duration_seconds`
and `llmgate_tokens_total`; `error_status(error)` gives the `429`, `4xx` or `5xx`
label. Nothing exports the metrics over HTTP.

## What the package does not do

It has no ready-made gateway application: no handlers for chat completions,
embeddings, images, speech, transcriptions or the model list, no streaming
responses, no bearer-token middleware for those routes, no health route, no
request-logging extension and no command to start a server. Provider clients
and model registries are not included either; `Deployment.provider` and
`AppState.registry` take whatever objects the caller supplies.