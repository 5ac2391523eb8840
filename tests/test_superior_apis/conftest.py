import sys, os
target_path = os.path.abspath(os.path.join(os.path.dirname(os.path.abspath(__file__)), "../.."))
if target_path not in sys.path:
    sys.path.insert(0, target_path)

import asyncio
from typing import Iterable

import httpx
import pytest

from superior_tools.superior_apis import ApiDescriptor, encode_descriptor


WEATHER_INTERFACE = {
    "openapi": "3.0.0",
    "info": {"title": "Weather", "version": "1.2.0"},
    "paths": {
        "/weather": {
            "get": {
                "summary": "Current weather",
                "parameters": [
                    {"name": "units", "in": "query", "required": False, "schema": {"type": "string"}},
                    {"name": "city", "in": "query", "required": True, "schema": {"type": "string"},
                     "description": "City name"},
                    {"name": "X-Trace", "in": "header", "required": False, "schema": {"type": "integer"}},
                ],
            },
            "post": {
                "summary": "Report weather",
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {
                                "type": "object",
                                "required": ["city", "temp"],
                                "properties": {
                                    "note": {"type": "string"},
                                    "city": {"type": "string", "example": "Paris"},
                                    "verified": {"type": "boolean"},
                                    "temp": {"type": "number", "example": 21.5},
                                    "tags": {"type": "array"},
                                    "meta": {"type": "object"},
                                    "extra": {},
                                },
                            }
                        }
                    }
                },
            },
        }
    },
}


@pytest.fixture
def weather_descriptor() -> ApiDescriptor:
    return ApiDescriptor(
        id=42,
        interface_id="3b52426bfe33",
        version="1.2.0",
        name="Weather",
        interface=WEATHER_INTERFACE,
    )


@pytest.fixture
def weather_selection(weather_descriptor) -> str:
    return encode_descriptor(weather_descriptor)


@pytest.fixture
def install_mock_httpx(monkeypatch):
    """
    Patch httpx.AsyncClient so every client built by the package uses
    httpx.MockTransport (no real network).
    """
    original_async_client = httpx.AsyncClient

    def _install(handler):
        transport = httpx.MockTransport(handler)

        def patched_async_client(*args, **kwargs):
            kwargs["transport"] = transport
            return original_async_client(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", patched_async_client)
        return transport

    return _install


class ChunkedStream(httpx.AsyncByteStream):
    """Yields the given chunks, then optionally stalls as if the server kept the connection open."""

    def __init__(self, chunks: Iterable[bytes], *, stall: bool = False):
        self.chunks = list(chunks)
        self.stall = stall

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.stall:
            await asyncio.sleep(3600)

    async def aclose(self) -> None:
        pass
