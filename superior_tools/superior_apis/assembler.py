"""
Request assembly for one gateway call.

assemble_request() is a single deterministic pass over a RequestOptions:

  1. decode the API selection (mandatory)
  2. resolve the method (explicit, else the first declared verb)
  3. url = base_uri + first path
  4. headers: token seed, then credential headers, user headers and mapped
     `header_*` fields. None of the later sources may replace `token`.
  5. query: user query (rows or JSON), then mapped `query_*` fields
  6. body: scenario JSON text, or mapped `body_*` fields for no_use_scenario
  7. Content-Type from the operation's first declared body type, unless set

send_request() issues the result with httpx and returns the decoded body.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union
from urllib.parse import urlencode

import httpx

from .config import GatewayCredentials, KeyValueRow, PlatformEndpoints, RequestOptions
from .descriptors import ApiDescriptor, decode_descriptor
from .errors import ApiCallError, BodyParseError, ConfigurationError
from .scenarios import is_template_scenario
from .schema_fields import BODY_METHODS, NO_USE_SCENARIO

logger = logging.getLogger(__name__)

TOKEN_HEADER = "token"

QUERY_PREFIX = "query_"
HEADER_PREFIX = "header_"
BODY_PREFIX = "body_"

_KNOWN_CONTENT_TYPES = (
    "multipart/form-data",
    "application/json",
    "application/x-www-form-urlencoded",
)

Row = Union[KeyValueRow, Mapping[str, Any]]


@dataclass
class ResolvedRequest:
    method: str
    url: str
    query: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, Any] = field(default_factory=dict)
    body: Optional[Any] = None
    timeout_s: Optional[float] = 30.0


# ----------------------------
# Helpers
# ----------------------------

def _header_value(headers: Mapping[str, Any], name: str) -> Optional[Any]:
    lowered = name.lower()
    for k, v in headers.items():
        if str(k).lower() == lowered:
            return v
    return None


def _rows_to_dict(rows: Optional[Iterable[Row]]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for row in rows or []:
        if isinstance(row, KeyValueRow):
            out[row.name] = row.value
        elif isinstance(row, Mapping) and "name" in row:
            out[str(row["name"])] = row.get("value", "")
    return out


def _parse_json_object(text: str, what: str) -> dict[str, Any]:
    if not (text or "").strip():
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise BodyParseError(f"Failed to parse {what} JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise BodyParseError(f"{what.capitalize()} JSON must be an object.")
    return parsed


def _without_token(headers: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in headers.items() if str(k).lower() != TOKEN_HEADER}


def infer_content_type(declared: str) -> str:
    for known in _KNOWN_CONTENT_TYPES:
        if known in declared:
            return known
    return declared


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _normalize_headers(headers: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in headers.items():
        if v is None:
            continue
        out[str(k)] = _stringify(v)
    return out


def _normalize_params(params: Mapping[str, Any]) -> dict[str, Union[str, list[str]]]:
    out: dict[str, Union[str, list[str]]] = {}
    for k, v in params.items():
        if v is None:
            continue
        out[str(k)] = [_stringify(x) for x in v] if isinstance(v, list) else _stringify(v)
    return out


# ----------------------------
# Assembly
# ----------------------------

def _decode_selection(api_selection: str) -> ApiDescriptor:
    if not api_selection:
        raise ConfigurationError("Please select an API from the list")
    try:
        return decode_descriptor(api_selection)
    except (ValueError, UnicodeError) as e:
        raise ConfigurationError(f"Invalid API selection: {e}") from e


def _resolve_headers(
    token: str,
    options: RequestOptions,
    credentials: Optional[GatewayCredentials],
) -> dict[str, Any]:
    headers: dict[str, Any] = {TOKEN_HEADER: token}

    if credentials is not None:
        headers.update(_without_token(credentials.extra_headers()))

    if options.send_headers:
        if options.specify_headers == "keypair":
            user_headers = _rows_to_dict(options.headers)
        else:
            user_headers = _parse_json_object(options.headers_json, "headers")
        headers.update(_without_token(user_headers))

    return headers


def _resolve_query(options: RequestOptions) -> dict[str, Any]:
    if not options.send_query:
        return {}
    if options.specify_query == "keypair":
        return _rows_to_dict(options.query_parameters)
    return _parse_json_object(options.query_parameters_json, "query parameters")


def _apply_mapped_fields(
    mapped: Mapping[str, Any], query: dict[str, Any], headers: dict[str, Any]
) -> dict[str, Any]:
    """Route mapped values into query/headers; returns the `body_*` values."""
    body: dict[str, Any] = {}
    for key, value in (mapped or {}).items():
        if key.startswith(QUERY_PREFIX):
            query[key[len(QUERY_PREFIX):]] = value
        elif key.startswith(HEADER_PREFIX):
            name = key[len(HEADER_PREFIX):]
            if name.lower() != TOKEN_HEADER:
                headers[name] = value
        elif key.startswith(BODY_PREFIX):
            body[key[len(BODY_PREFIX):]] = value
    return body


def _resolve_body(options: RequestOptions, mapped_body: dict[str, Any]) -> Optional[Any]:
    if is_template_scenario(options.scenario):
        text = options.effective_body_json() or ""
        if text.strip() in ("", "{}"):
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise BodyParseError(f"Failed to parse body JSON: {e}") from e

    if options.scenario == NO_USE_SCENARIO:
        return mapped_body or None

    return None


def _declared_content_type(descriptor: ApiDescriptor, method: str) -> Optional[str]:
    operation = descriptor.operation(method)
    request_body = operation.get("requestBody") if operation else None
    content = request_body.get("content") if isinstance(request_body, dict) else None
    if not isinstance(content, dict) or not content:
        return None
    return str(next(iter(content)))


def assemble_request(
    options: RequestOptions,
    *,
    credentials: Optional[GatewayCredentials] = None,
    endpoints: Optional[PlatformEndpoints] = None,
) -> ResolvedRequest:
    endpoints = endpoints or PlatformEndpoints()

    token = options.token
    if not token:
        raise ConfigurationError("Token is required")
    descriptor = _decode_selection(options.api_selection)

    path = descriptor.first_path
    verbs = list(descriptor.path_methods())
    if path is None or not verbs:
        raise ConfigurationError("The selected API does not declare any path or method")

    method = (options.method or verbs[0]).upper()
    base_uri = options.base_uri or endpoints.default_base_uri
    url = f"{base_uri}{path}"

    headers = _resolve_headers(token, options, credentials)
    query = _resolve_query(options)
    mapped_body = _apply_mapped_fields(options.mapped_fields, query, headers)
    body = _resolve_body(options, mapped_body)

    if method in BODY_METHODS and _header_value(headers, "Content-Type") is None:
        declared = _declared_content_type(descriptor, method)
        if declared:
            headers["Content-Type"] = infer_content_type(declared)

    return ResolvedRequest(
        method=method,
        url=url,
        query=query,
        headers=headers,
        body=body,
        timeout_s=options.timeout_s,
    )


# ----------------------------
# Sending
# ----------------------------

def _body_kwargs(headers: dict[str, str], body: Any) -> dict[str, Any]:
    if body is None:
        return {}

    ctype = (_header_value(headers, "Content-Type") or "").lower()

    if "application/x-www-form-urlencoded" in ctype and isinstance(body, dict):
        pairs = [(str(k), _stringify(v)) for k, v in body.items()]
        return {"content": urlencode(pairs)}

    if "multipart/form-data" in ctype and isinstance(body, dict):
        # httpx writes its own multipart Content-Type with the boundary
        for k in [k for k in headers if k.lower() == "content-type"]:
            del headers[k]
        return {"files": {str(k): (None, _stringify(v)) for k, v in body.items()}}

    if isinstance(body, str):
        return {"content": body}

    if not ctype:
        headers["Content-Type"] = "application/json"
    return {"content": json.dumps(body)}


def decode_response(resp: httpx.Response) -> Any:
    if not resp.content:
        return ""
    try:
        return resp.json()
    except ValueError:
        return resp.text


async def send_request(request: ResolvedRequest) -> dict[str, Any]:
    """
    Issue `request`. The decoded response is returned unmodified when it is
    a JSON object and under a "data" key otherwise. JSON arrays are wrapped
    as well ({"data": [...]}) so every item yields a single mapping.
    """
    headers = _normalize_headers(request.headers)
    params = _normalize_params(request.query)
    kwargs: dict[str, Any] = dict(
        method=request.method,
        url=request.url,
        params=params or None,
        timeout=request.timeout_s,
    )
    kwargs.update(_body_kwargs(headers, request.body))
    kwargs["headers"] = headers

    logger.debug("%s %s", request.method, request.url)
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.request(**kwargs)
    except httpx.HTTPError as e:
        raise ApiCallError(f"Request error: {type(e).__name__}: {e}") from e

    if not resp.is_success:
        raise ApiCallError(
            f"{resp.status_code} - {resp.text[:500]}",
            status_code=resp.status_code,
            response_text=resp.text,
        )

    result = decode_response(resp)
    return result if isinstance(result, dict) else {"data": result}
