"""
API descriptors: the catalog cache, the opaque selection codec and the
option lists built from them.

A descriptor is encoded once (base64 of JSON) when the catalog is listed and
that string is the selection value from then on. Every consumer decodes its
own copy; nothing keeps decoded state between calls.
"""
from __future__ import annotations

import re
import json
import time
import base64
import logging
from dataclasses import dataclass
from typing import Any, Callable, MutableMapping, Optional

import httpx
from pydantic import BaseModel, Field

from .config import PlatformEndpoints

logger = logging.getLogger(__name__)

CACHE_TTL_S = 5 * 60
CACHE_KEY_PREFIX_LEN = 20

_SPEC_URL_RE = re.compile(r"(https?://[^\s\"'<>]*doc=spec[^\s\"'<>]*)", re.IGNORECASE)
_INTERFACE_ID_RE = re.compile(r"/interface/([a-zA-Z0-9]+)")


@dataclass
class SelectOption:
    name: str
    value: str
    description: Optional[str] = None


# ----------------------------
# Descriptor + codec
# ----------------------------

class ApiDescriptor(BaseModel):
    """
    One selectable third-party API. `interface` is the embedded OpenAPI
    document; only its `paths` map (path -> verb -> operation) is used for
    request building, and only its first path.
    """
    model_config = {"populate_by_name": True, "frozen": True}

    id: Any = None
    interface_id: str = Field(default="", alias="interfaceId")
    version: str = ""
    name: Optional[str] = None
    interface: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_plugin(cls, plugin: dict[str, Any]) -> "ApiDescriptor":
        description = plugin.get("description_for_human") or ""
        interface = plugin.get("interface") or {}
        return cls(
            id=plugin.get("id"),
            interface_id=extract_interface_id(description),
            version=resolve_version(plugin),
            name=plugin.get("name_for_human"),
            interface=interface if isinstance(interface, dict) else {},
        )

    @property
    def paths(self) -> dict[str, Any]:
        paths = self.interface.get("paths")
        return paths if isinstance(paths, dict) else {}

    @property
    def first_path(self) -> Optional[str]:
        for path in self.paths:
            return path
        return None

    def path_methods(self) -> dict[str, Any]:
        path = self.first_path
        if path is None:
            return {}
        methods = self.paths.get(path)
        return methods if isinstance(methods, dict) else {}

    def operation(self, method: str) -> Optional[dict[str, Any]]:
        op = self.path_methods().get((method or "").lower())
        return op if isinstance(op, dict) else None


def extract_spec_url(description: str) -> str:
    m = _SPEC_URL_RE.search(description or "")
    return m.group(1) if m else ""


def extract_interface_id(description: str) -> str:
    spec_url = extract_spec_url(description)
    if not spec_url:
        return ""
    m = _INTERFACE_ID_RE.search(spec_url)
    return m.group(1) if m else ""


def resolve_version(plugin: dict[str, Any]) -> str:
    # plugin.version -> interface.version -> interface.info.version
    interface = plugin.get("interface")
    if not isinstance(interface, dict):
        interface = {}
    info = interface.get("info")
    if not isinstance(info, dict):
        info = {}

    for candidate in (plugin.get("version"), interface.get("version"), info.get("version")):
        if candidate:
            return str(candidate)
    return ""


def encode_descriptor(descriptor: ApiDescriptor) -> str:
    payload = descriptor.model_dump(mode="json", by_alias=True)
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_descriptor(token: str) -> ApiDescriptor:
    """
    Inverse of encode_descriptor().

    Raises ValueError (binascii.Error, JSONDecodeError and pydantic's
    ValidationError all subclass it) when the token is not a descriptor.
    """
    if not token:
        raise ValueError("Empty API selection.")
    raw = base64.b64decode(token.encode("ascii"))
    data = json.loads(raw.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("API selection does not decode to an object.")
    return ApiDescriptor.model_validate(data)


def try_decode_descriptor(token: str) -> Optional[ApiDescriptor]:
    """Decode for listing paths: anything undecodable counts as no selection."""
    try:
        return decode_descriptor(token)
    except (ValueError, UnicodeError):
        return None


# ----------------------------
# Catalog cache
# ----------------------------

class DescriptorCache:
    """
    Time-boxed cache of the plugin catalog, keyed by the first 20 characters
    of the token. Entries live in a caller-provided key-value store under
    `plugins_list_<prefix>` and `plugins_list_<prefix>_timestamp`, and are
    only ever overwritten, never evicted.
    """
    def __init__(
        self,
        store: Optional[MutableMapping[str, Any]] = None,
        *,
        endpoints: Optional[PlatformEndpoints] = None,
        clock: Callable[[], float] = time.time,
        ttl_s: float = CACHE_TTL_S,
        timeout_s: Optional[float] = 30.0,
    ):
        self.store: MutableMapping[str, Any] = store if store is not None else {}
        self.endpoints = endpoints or PlatformEndpoints()
        self.clock = clock
        self.ttl_s = ttl_s
        self.timeout_s = timeout_s

    @staticmethod
    def cache_key(token: str) -> str:
        return f"plugins_list_{token[:CACHE_KEY_PREFIX_LEN]}"

    async def fetch_catalog(self, token: str) -> Any:
        """Return the raw catalog response, from cache when fresh. Raises on failure."""
        key = self.cache_key(token)
        time_key = f"{key}_timestamp"
        now = self.clock()

        cached_time = self.store.get(time_key)
        if key in self.store and cached_time is not None and now - cached_time < self.ttl_s:
            logger.debug("catalog cache hit for %s", key)
            return self.store[key]

        logger.debug("catalog cache miss for %s", key)
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            resp = await client.post(self.endpoints.plugin_list_url, headers={"token": token})
            resp.raise_for_status()
            response = resp.json()

        self.store[key] = response
        self.store[time_key] = now
        return response

    async def get(self, token: str) -> list[dict[str, Any]]:
        """Plugin entries for `token`. Any failure degrades to an empty list."""
        if not token:
            return []
        try:
            response = await self.fetch_catalog(token)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("failed to load API catalog: %s", e)
            return []

        plugins = response.get("plugins") if isinstance(response, dict) else None
        if not isinstance(plugins, list):
            return []
        return plugins


# ----------------------------
# Option lists
# ----------------------------

def _api_option(entry: dict[str, Any]) -> Optional[SelectOption]:
    plugin = entry.get("plugin") if isinstance(entry, dict) else None
    if not isinstance(plugin, dict):
        return None

    descriptor = ApiDescriptor.from_plugin(plugin)
    human = plugin.get("description_for_human") or ""
    base_description = human.split("\n")[0] if human else ""
    spec_url = extract_spec_url(human)
    if spec_url:
        description = (
            f'{base_description}<br/>📖 <a href="{spec_url}" target="_blank">'
            "View Specification Document</a>"
        )
    else:
        description = base_description

    return SelectOption(
        name=str(descriptor.name or ""),
        value=encode_descriptor(descriptor),
        description=description,
    )


async def list_api_options(cache: DescriptorCache, token: str) -> list[SelectOption]:
    options: list[SelectOption] = []
    for entry in await cache.get(token):
        try:
            option = _api_option(entry)
        except (ValueError, TypeError) as e:
            logger.warning("skipping malformed catalog entry: %s", e)
            continue
        if option is not None:
            options.append(option)
    return options


def list_method_options(api_selection: str) -> list[SelectOption]:
    descriptor = try_decode_descriptor(api_selection)
    if descriptor is None:
        return []

    options: list[SelectOption] = []
    for verb, op in descriptor.path_methods().items():
        upper = verb.upper()
        summary = op.get("summary") if isinstance(op, dict) else None
        options.append(SelectOption(name=upper, value=upper, description=summary or f"{upper} request"))
    return options
