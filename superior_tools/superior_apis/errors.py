"""
Exceptions raised on the execution paths of the SuperiorAPIs client.

Discovery helpers (API list, method list, scenario list, field views) never
raise these: they degrade to empty lists or sentinel options instead.
"""
from __future__ import annotations

from typing import Optional


class SuperiorApisError(Exception):
    """Base class. `item_index` is set when the error belongs to a batch item."""

    def __init__(self, message: str, *, item_index: Optional[int] = None):
        self.message = message
        self.item_index = item_index
        super().__init__(message)


class ConfigurationError(SuperiorApisError):
    """A mandatory field is missing or cannot be decoded."""


class BodyParseError(SuperiorApisError):
    """User-supplied JSON (body, headers, query, parameters) failed to parse."""


class ApiCallError(SuperiorApisError):
    """The third-party call failed (network error or non-2xx response)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        response_text: Optional[str] = None,
        item_index: Optional[int] = None,
    ):
        self.status_code = status_code
        self.response_text = response_text
        super().__init__(message, item_index=item_index)


class McpTransportError(SuperiorApisError):
    """Connection-level failure while talking to an MCP server."""
