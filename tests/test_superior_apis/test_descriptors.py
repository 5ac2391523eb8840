import base64
import json

import httpx
import pytest

from superior_tools.superior_apis import (
    ApiDescriptor,
    DescriptorCache,
    decode_descriptor,
    encode_descriptor,
    extract_interface_id,
    list_api_options,
    list_method_options,
    resolve_version,
)
from superior_tools.superior_apis.descriptors import try_decode_descriptor

from conftest import WEATHER_INTERFACE


PLUGIN = {
    "id": 7,
    "name_for_human": "Weather",
    "description_for_human": (
        "Global weather lookups\n"
        "Docs: https://superiorapis.cteam.com.tw/interface/3b52426bfe33?DOC=SPEC&lang=en more"
    ),
    "interface": WEATHER_INTERFACE,
}

CATALOG = {"plugins": [{"plugin": PLUGIN}]}


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ----------------------------
# Codec
# ----------------------------

def test_encode_decode_roundtrip(weather_descriptor):
    token = encode_descriptor(weather_descriptor)
    assert decode_descriptor(token) == weather_descriptor


def test_encoded_token_is_base64_json_with_wire_keys(weather_descriptor):
    payload = json.loads(base64.b64decode(encode_descriptor(weather_descriptor)))
    assert list(payload) == ["id", "interfaceId", "version", "name", "interface"]
    assert payload["interfaceId"] == "3b52426bfe33"


def test_interface_id_is_extracted_from_spec_url_case_insensitively():
    assert extract_interface_id(PLUGIN["description_for_human"]) == "3b52426bfe33"
    assert extract_interface_id("https://example.com/interface/abc123") == ""
    assert extract_interface_id("https://example.com/page?doc=spec") == ""
    assert extract_interface_id("") == ""


def test_version_resolution_order():
    assert resolve_version({"version": "3", "interface": {"version": "2", "info": {"version": "1"}}}) == "3"
    assert resolve_version({"interface": {"version": "2", "info": {"version": "1"}}}) == "2"
    assert resolve_version({"interface": {"info": {"version": "1"}}}) == "1"
    assert resolve_version({}) == ""


def test_from_plugin_builds_self_contained_descriptor():
    d = ApiDescriptor.from_plugin(PLUGIN)
    assert d.id == 7
    assert d.interface_id == "3b52426bfe33"
    assert d.version == "1.2.0"
    assert d.first_path == "/weather"
    assert list(d.path_methods()) == ["get", "post"]


@pytest.mark.parametrize("bad", ["", "not-base64!!", base64.b64encode(b"[1,2]").decode(), base64.b64encode(b"{oops").decode()])
def test_undecodable_selection_is_no_selection(bad):
    assert try_decode_descriptor(bad) is None
    with pytest.raises(ValueError):
        decode_descriptor(bad)


# ----------------------------
# Method options
# ----------------------------

def test_method_options_follow_first_path(weather_selection):
    options = list_method_options(weather_selection)
    assert [o.value for o in options] == ["GET", "POST"]
    assert options[0].description == "Current weather"


def test_method_options_for_bad_selection_are_empty():
    assert list_method_options("%%%") == []
    assert list_method_options("") == []


# ----------------------------
# Cache
# ----------------------------

@pytest.mark.asyncio
async def test_cache_hits_within_five_minutes_and_refreshes_after(install_mock_httpx):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=CATALOG)

    install_mock_httpx(handler)
    clock = FakeClock()
    store: dict = {}
    cache = DescriptorCache(store, clock=clock)

    token = "t" * 32
    assert await cache.get(token) == CATALOG["plugins"]
    clock.now += 120
    assert await cache.get(token) == CATALOG["plugins"]
    assert len(calls) == 1

    clock.now += 181  # 301s after the first fetch
    await cache.get(token)
    assert len(calls) == 2

    assert calls[0].method == "POST"
    assert calls[0].url.path == "/manager/module/plugins/list_v3"
    assert calls[0].headers["token"] == token

    key = f"plugins_list_{token[:20]}"
    assert store[key] == CATALOG
    assert store[f"{key}_timestamp"] == clock.now


@pytest.mark.asyncio
async def test_cache_keys_by_token_prefix(install_mock_httpx):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=CATALOG)

    install_mock_httpx(handler)
    cache = DescriptorCache(clock=FakeClock())

    await cache.get("a" * 20 + "first")
    await cache.get("a" * 20 + "second")
    await cache.get("b" * 25)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_cache_failure_degrades_to_empty_list(install_mock_httpx):
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    install_mock_httpx(handler)
    store: dict = {}
    cache = DescriptorCache(store, clock=FakeClock())

    assert await cache.get("token-123") == []
    assert store == {}


@pytest.mark.asyncio
async def test_api_options_encode_each_plugin(install_mock_httpx):
    install_mock_httpx(lambda request: httpx.Response(200, json=CATALOG))
    cache = DescriptorCache(clock=FakeClock())

    options = await list_api_options(cache, "token-123")
    assert len(options) == 1
    option = options[0]
    assert option.name == "Weather"
    assert option.description.startswith("Global weather lookups<br/>")
    assert "View Specification Document" in option.description

    decoded = decode_descriptor(option.value)
    assert decoded.interface_id == "3b52426bfe33"
    assert decoded.interface == WEATHER_INTERFACE


@pytest.mark.asyncio
async def test_api_options_without_token_or_plugins(install_mock_httpx):
    install_mock_httpx(lambda request: httpx.Response(200, json={"plugins": "nope"}))
    cache = DescriptorCache(clock=FakeClock())

    assert await list_api_options(cache, "") == []
    assert await list_api_options(cache, "token-123") == []


@pytest.mark.asyncio
async def test_api_options_skip_malformed_catalog_entries(install_mock_httpx):
    catalog = {
        "plugins": [
            {"plugin": {**PLUGIN, "name_for_human": 123}},
            {"plugin": {**PLUGIN, "description_for_human": {"en": "hi"}}},
            "not an entry",
            {"plugin": {**PLUGIN, "name_for_human": "ok"}},
        ]
    }
    install_mock_httpx(lambda request: httpx.Response(200, json=catalog))
    cache = DescriptorCache(clock=FakeClock())

    options = await list_api_options(cache, "token-123")
    assert [o.name for o in options] == ["ok"]
