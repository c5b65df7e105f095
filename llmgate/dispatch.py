"""Calling upstream deployments: timeouts, retries with backoff, error responses."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from aiohttp import web

from llmgate.core import ApiError, Deployment, GatewayError, GatewayTimeout, ProviderError

T = TypeVar("T")

INITIAL_BACKOFF = 0.1


async def with_timeout(timeout: float, awaitable: Awaitable[T]) -> T:
    """Await with a limit in seconds, raising GatewayTimeout; zero means no limit."""
    if not timeout:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise GatewayTimeout() from exc


def jittered(backoff: float) -> float:
    """A random delay between half of backoff and backoff."""
    return random.uniform(backoff / 2, backoff)


async def call_with_retries(
    deployment: Deployment, call: Callable[[Any], Awaitable[T]]
) -> T:
    """Run call(provider) on one deployment, retrying transient errors.

    Up to deployment.max_retries extra attempts are made, with exponential
    jittered backoff starting at 100 ms. A non-transient error is raised at once.
    """
    try:
        return await with_timeout(deployment.timeout, call(deployment.provider))
    except GatewayError as exc:
        if not exc.is_transient() or deployment.max_retries == 0:
            raise
        last_error = exc

    backoff = INITIAL_BACKOFF
    for _ in range(deployment.max_retries):
        await asyncio.sleep(jittered(backoff))
        backoff *= 2
        try:
            return await with_timeout(deployment.timeout, call(deployment.provider))
        except GatewayError as exc:
            if not exc.is_transient():
                raise
            last_error = exc
    raise last_error


def error_response(error: GatewayError) -> web.Response:
    """The HTTP response for a request that failed upstream or in the gateway."""
    if isinstance(error, ProviderError):
        status = error.status if 100 <= error.status <= 999 else 502
        body = ApiError(error.body, "upstream_error")
    elif isinstance(error, GatewayTimeout):
        status = 504
        body = ApiError(str(error), "timeout_error")
    else:
        status = 500
        body = ApiError(str(error), "server_error")
    return web.json_response(body.to_dict(), status=status)