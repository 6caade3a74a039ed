"""Shared HTTP primitives for the network backends."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx


@dataclass(frozen=True)
class ConnectionResult:
    connected: bool
    version: str | None = None
    error: str | None = None


# Mutable: context managers re-raising the error assign __traceback__.
@dataclass(eq=False)
class HttpError(RuntimeError):
    message: str
    url: str | None = None
    status_code: int | None = None
    body: str | None = None

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.url:
            parts.append(f"url={self.url}")
        if self.body:
            parts.append(f"body={self.body}")
        return " ".join(parts)


async def raise_for_status(response: httpx.Response) -> None:
    """Raise `HttpError` with the (possibly streamed) body for non-2xx responses."""
    if response.is_success:
        return
    try:
        body = (await response.aread()).decode("utf-8", errors="replace")
    except httpx.HTTPError:
        body = None
    raise HttpError(
        f"HTTP {response.status_code}",
        url=str(response.request.url),
        status_code=response.status_code,
        body=body,
    )


def error_message(body: str | dict[str, Any] | None) -> str | None:
    """Extract a provider error message from a JSON error body, if there is one."""
    if not body:
        return None
    if isinstance(body, dict):
        payload: Any = body
    else:
        try:
            payload = json.loads(body)
        except ValueError:
            return None
    if not isinstance(payload, dict):
        return None
    err = payload.get("error")
    if isinstance(err, dict):
        msg = err.get("message")
        return str(msg) if msg else None
    if isinstance(err, str):
        return err
    return None


async def aiter_ndjson(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Yield one JSON object per non-empty line.

    Raises:
        ValueError: On a line that is not a JSON object.
    """
    async for line in lines:
        line = line.strip()
        if not line:
            continue
        obj = json.loads(line)
        if not isinstance(obj, dict):
            raise ValueError(f"Expected a JSON object per line, got {type(obj).__name__}")
        yield obj
