import os
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import BodyParseError


TOKEN_ENV_VAR = "SUPERIORAPIS_TOKEN"

CATALOG_ORIGIN = "https://superiorapis-creator.cteam.com.tw"
STORE_ORIGIN = "https://superiorapis.cteam.com.tw"
DEFAULT_BASE_URI = "https://superiorapis-creator.cteam.com.tw"

SpecifyMode = Literal["keypair", "json"]


# ----------------------------
# Secrets
# ----------------------------

class SecretResolver:
    """
    Flexible secret resolver.
    Resolution order:
      1) explicit mapping passed at init
      2) os.environ
      3) optional fallback callable
    """
    def __init__(
        self,
        mapping: Optional[Mapping[str, str]] = None,
        fallback: Optional[Callable[[str], Optional[str]]] = None,
        auto_dotenv: bool = False,
        dotenv_path: Optional[str] = None,
        dotenv_override: bool = False,
    ):
        if auto_dotenv:
            load_dotenv(dotenv_path=dotenv_path, override=dotenv_override)

        self._mapping = dict(mapping or {})
        self._fallback = fallback

    def get(self, name: str) -> Optional[str]:
        if name in self._mapping:
            return self._mapping[name]
        if name in os.environ:
            return os.environ[name]
        if self._fallback is not None:
            return self._fallback(name)
        return None

    def require(self, name: str) -> str:
        v = self.get(name)
        if v is None:
            raise KeyError(f"Missing required secret: {name}")
        return v


# ----------------------------
# Platform endpoints
# ----------------------------

@dataclass(frozen=True)
class PlatformEndpoints:
    catalog_origin: str = CATALOG_ORIGIN
    store_origin: str = STORE_ORIGIN
    default_base_uri: str = DEFAULT_BASE_URI

    @property
    def plugin_list_url(self) -> str:
        return f"{self.catalog_origin}/manager/module/plugins/list_v3"

    @property
    def scenario_list_url(self) -> str:
        return f"{self.store_origin}/superiorapis_store/node/scenario_sample_list"

    @property
    def scenario_detail_url(self) -> str:
        return f"{self.store_origin}/superiorapis_store/node/scenario"


# ----------------------------
# Credentials
# ----------------------------

class GatewayCredentials(BaseModel):
    """Optional credential object: extra headers sent with every gateway call."""
    model_config = {"extra": "ignore"}

    headers: str = "{}"

    def extra_headers(self) -> dict[str, Any]:
        text = (self.headers or "").strip()
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise BodyParseError(f"Failed to parse credential headers JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise BodyParseError("Credential headers must be a JSON object.")
        return parsed


class McpSseCredentials(BaseModel):
    model_config = {"extra": "ignore"}

    sse_url: str
    sse_timeout: int = Field(default=60000, description="Milliseconds.")
    headers: str = ""


class McpHttpCredentials(BaseModel):
    model_config = {"extra": "ignore"}

    http_stream_url: str
    http_timeout: int = Field(default=60000, description="Milliseconds.")
    headers: str = ""


# ----------------------------
# Per-item options
# ----------------------------

@dataclass
class KeyValueRow:
    name: str
    value: Any = ""


@dataclass
class RequestOptions:
    """
    Everything one gateway call needs, resolved once per input item.

    body_json defaults to the scenario value, which is the pretty-printed
    request_content of the selected scenario.
    """
    token: str = ""
    api_selection: str = ""
    method: str = ""
    base_uri: str = DEFAULT_BASE_URI
    scenario: str = ""
    body_json: Optional[str] = None

    send_query: bool = False
    specify_query: SpecifyMode = "keypair"
    query_parameters: list[KeyValueRow] = field(default_factory=list)
    query_parameters_json: str = "{}"

    send_headers: bool = False
    specify_headers: SpecifyMode = "keypair"
    headers: list[KeyValueRow] = field(default_factory=list)
    headers_json: str = "{}"

    # resource-mapped values keyed "query_<name>", "header_<name>", "body_<name>"
    mapped_fields: dict[str, Any] = field(default_factory=dict)

    timeout_s: Optional[float] = 30.0

    def effective_body_json(self) -> str:
        return self.scenario if self.body_json is None else self.body_json
