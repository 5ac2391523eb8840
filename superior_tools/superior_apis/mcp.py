"""
Model Context Protocol client: JSON-RPC 2.0 envelopes over plain HTTP POST,
or a server-sent-event stream opened with a bodiless GET.

SSE sessions end on the first of:
  - a `data: [DONE]` line
  - a JSON payload carrying `result` or `error` (the JSON-RPC response)
  - the configured timeout (partial data is returned, not an error)
  - the server closing the stream (the trailing partial event is flushed)
"""
from __future__ import annotations

import json
import time
import codecs
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, Sequence

import httpx
from pydantic import BaseModel

from .assembler import decode_response
from .config import McpHttpCredentials, McpSseCredentials
from .errors import BodyParseError, ConfigurationError, McpTransportError, SuperiorApisError

logger = logging.getLogger(__name__)

ConnectionType = Literal["sse", "http"]

MCP_OPERATIONS = (
    "initialize",
    "tools/list",
    "tools/call",
    "prompts/list",
    "prompts/get",
    "resources/list",
    "resources/read",
)

SSE_TIMEOUT_RECORD = {"error": "SSE timeout - no data received"}

_DATA_PREFIX = "data: "
_DONE_MARKER = "[DONE]"


# ----------------------------
# Envelope
# ----------------------------

class McpEnvelope(BaseModel):
    model_config = {"extra": "forbid"}

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    id: int
    params: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


@dataclass
class McpCallOptions:
    connection_type: ConnectionType = "sse"
    operation: str = "tools/list"
    tool_name: str = ""
    resource_uri: str = ""
    prompt_name: str = ""
    parameters: str = "{}"


def _parse_arguments(text: str) -> dict[str, Any]:
    if not (text or "").strip():
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise BodyParseError(f"Failed to parse parameters JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise BodyParseError("Parameters JSON must be an object.")
    return parsed


def build_envelope(options: McpCallOptions, request_id: int) -> McpEnvelope:
    operation = options.operation
    if operation not in MCP_OPERATIONS:
        raise ConfigurationError(f"Unsupported MCP operation: {operation!r}")

    params: Optional[dict[str, Any]] = None
    if operation == "tools/call":
        params = {"name": options.tool_name, "arguments": _parse_arguments(options.parameters)}
    elif operation == "resources/read":
        params = {"uri": options.resource_uri}
    elif operation == "prompts/get":
        params = {"name": options.prompt_name, "arguments": _parse_arguments(options.parameters)}

    return McpEnvelope(method=operation, id=request_id, params=params)


def parse_header_lines(text: Optional[str]) -> dict[str, str]:
    """Parse "key=value" lines; split on the first "=", empty names are skipped."""
    headers: dict[str, str] = {}
    for line in (text or "").split("\n"):
        idx = line.find("=")
        if idx <= 0:
            continue
        name = line[:idx].strip()
        if name:
            headers[name] = line[idx + 1:].strip()
    return headers


# ----------------------------
# SSE parsing
# ----------------------------

class SseAccumulator:
    """
    Incremental SSE reader. feed() returns True once the session is over
    ([DONE] or a JSON-RPC response); after that further input is ignored.
    """
    def __init__(self):
        self.messages: list[Any] = []
        self.done = False
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes) -> bool:
        if self.done:
            return True

        self._buffer += self._decoder.decode(chunk)
        self._buffer = self._buffer.replace("\r\n", "\n")
        *events, self._buffer = self._buffer.split("\n\n")

        for event in events:
            if not event.strip():
                continue
            for line in event.split("\n"):
                if not line.startswith(_DATA_PREFIX):
                    continue
                payload = line[len(_DATA_PREFIX):].strip()

                if payload == _DONE_MARKER:
                    logger.debug("SSE stream finished with [DONE]")
                    self.done = True
                    return True

                try:
                    message = json.loads(payload)
                except json.JSONDecodeError:
                    continue
                self.messages.append(message)

                if isinstance(message, dict) and ("result" in message or "error" in message):
                    logger.debug("SSE stream finished with a JSON-RPC response")
                    self.done = True
                    return True
        return False

    def flush(self) -> None:
        """Parse whatever is left in the buffer once the stream has ended."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if self.done or not tail.strip():
            return
        for line in tail.replace("\r\n", "\n").split("\n"):
            if not line.startswith(_DATA_PREFIX):
                continue
            try:
                self.messages.append(json.loads(line[len(_DATA_PREFIX):].strip()))
            except json.JSONDecodeError:
                continue


def shape_messages(messages: list[Any]) -> Any:
    if len(messages) == 1:
        return messages[0]
    return {"messages": messages, "messageCount": len(messages)}


# ----------------------------
# Transports
# ----------------------------

async def sse_request(
    url: str,
    headers: dict[str, str],
    timeout_s: float,
) -> list[Any]:
    accumulator = SseAccumulator()

    async def _consume() -> None:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, read=None)) as client:
            async with client.stream("GET", url, headers=headers) as resp:
                resp.raise_for_status()
                async for chunk in resp.aiter_bytes():
                    if accumulator.feed(chunk):
                        return
        logger.debug("SSE stream ended by server")
        accumulator.flush()

    try:
        await asyncio.wait_for(_consume(), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.debug("SSE stream timed out after %ss", timeout_s)
        return accumulator.messages or [dict(SSE_TIMEOUT_RECORD)]
    except httpx.HTTPError as e:
        raise McpTransportError(f"SSE request error: {e}") from e

    return accumulator.messages


async def http_request(
    url: str,
    envelope: dict[str, Any],
    headers: dict[str, str],
    timeout_s: float,
) -> Any:
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            resp = await client.post(url, json=envelope, headers=headers)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise McpTransportError(f"HTTP request error: {e}") from e
    return decode_response(resp)


# ----------------------------
# Client
# ----------------------------

class McpClient:
    def __init__(
        self,
        *,
        sse_credentials: Optional[McpSseCredentials] = None,
        http_credentials: Optional[McpHttpCredentials] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.sse_credentials = sse_credentials
        self.http_credentials = http_credentials
        self.clock = clock
        self._last_id = 0

    def next_request_id(self) -> int:
        # millisecond timestamp, bumped so two calls in one tick never collide
        self._last_id = max(int(self.clock() * 1000), self._last_id + 1)
        return self._last_id

    def build_envelope(self, options: McpCallOptions) -> McpEnvelope:
        return build_envelope(options, self.next_request_id())

    async def _call_sse(self, envelope: McpEnvelope) -> Any:
        creds = self.sse_credentials
        if creds is None or not creds.sse_url:
            raise ConfigurationError("SSE credentials with an sse_url are required")

        headers = parse_header_lines(creds.headers)
        headers["Accept"] = "text/event-stream"
        headers["Cache-Control"] = "no-cache"
        headers["Connection"] = "keep-alive"
        headers["Content-Type"] = "application/json"

        timeout_s = (creds.sse_timeout or 60000) / 1000
        logger.debug("SSE %s (id %s) -> %s", envelope.method, envelope.id, creds.sse_url)
        messages = await sse_request(creds.sse_url, headers, timeout_s)
        return shape_messages(messages)

    async def _call_http(self, envelope: McpEnvelope) -> Any:
        creds = self.http_credentials
        if creds is None or not creds.http_stream_url:
            raise ConfigurationError("HTTP credentials with an http_stream_url are required")

        headers = parse_header_lines(creds.headers)
        headers["Content-Type"] = "application/json"

        timeout_s = (creds.http_timeout or 60000) / 1000
        return await http_request(creds.http_stream_url, envelope.to_dict(), headers, timeout_s)

    async def call(self, options: McpCallOptions) -> Any:
        envelope = self.build_envelope(options)
        if options.connection_type == "sse":
            return await self._call_sse(envelope)
        if options.connection_type == "http":
            return await self._call_http(envelope)
        raise ConfigurationError(f"Unsupported connection type: {options.connection_type!r}")

    async def execute(
        self,
        items: Sequence[McpCallOptions],
        *,
        continue_on_fail: bool = False,
    ) -> list[Any]:
        results: list[Any] = []
        for i, options in enumerate(items):
            try:
                results.append(await self._call_item(options))
            except SuperiorApisError as e:
                e.item_index = i
                if continue_on_fail:
                    logger.warning("MCP item %d failed: %s", i, e)
                    results.append({"error": e.message})
                    continue
                raise
        return results

    async def _call_item(self, options: McpCallOptions) -> Any:
        try:
            return await self.call(options)
        except SuperiorApisError:
            raise
        except Exception as e:
            raise McpTransportError(f"{type(e).__name__}: {e}") from e
