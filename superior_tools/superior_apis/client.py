from __future__ import annotations

import logging
import dataclasses
from typing import Any, MutableMapping, Optional, Sequence

from .assembler import ResolvedRequest, assemble_request, send_request
from .config import (
    TOKEN_ENV_VAR,
    GatewayCredentials,
    PlatformEndpoints,
    RequestOptions,
    SecretResolver,
)
from .descriptors import (
    DescriptorCache,
    SelectOption,
    list_api_options,
    list_method_options,
    try_decode_descriptor,
)
from .errors import ApiCallError, SuperiorApisError
from .scenarios import ScenarioLoader
from .schema_fields import FieldSpec, body_fields, default_body, parameters_fields

logger = logging.getLogger(__name__)


class SuperiorApisClient:
    """
    Main entrypoint.

    Discovery (never raises):
      - api_options(token)            -> encoded API selections
      - method_options(selection)     -> verbs of the first path
      - scenario_options(...)         -> scenario templates + sentinels
      - parameters_fields / body_fields / default_body

    Execution (raises SuperiorApisError subclasses):
      - assemble(options)             -> ResolvedRequest
      - call(options)                 -> response dict
      - execute(items, continue_on_fail=...)

    The token falls back to SUPERIORAPIS_TOKEN through the SecretResolver
    when an options object or a discovery call leaves it empty.
    """

    def __init__(
        self,
        *,
        secrets: Optional[SecretResolver] = None,
        credentials: Optional[GatewayCredentials] = None,
        endpoints: Optional[PlatformEndpoints] = None,
        store: Optional[MutableMapping[str, Any]] = None,
        auto_dotenv: bool = False,
        dotenv_path: Optional[str] = None,
    ):
        self.secrets = secrets or SecretResolver(auto_dotenv=auto_dotenv, dotenv_path=dotenv_path)
        self.credentials = credentials
        self.endpoints = endpoints or PlatformEndpoints()
        self.cache = DescriptorCache(store, endpoints=self.endpoints)
        self.scenarios = ScenarioLoader(endpoints=self.endpoints)

    def _token(self, token: Optional[str]) -> str:
        return token or self.secrets.get(TOKEN_ENV_VAR) or ""

    # ----------------------------
    # Discovery
    # ----------------------------

    async def api_options(self, token: Optional[str] = None) -> list[SelectOption]:
        return await list_api_options(self.cache, self._token(token))

    def method_options(self, api_selection: str) -> list[SelectOption]:
        return list_method_options(api_selection)

    async def scenario_options(
        self, api_selection: str, method: str, token: Optional[str] = None
    ) -> list[SelectOption]:
        return await self.scenarios.scenario_options(api_selection, method, self._token(token))

    def parameters_fields(self, scenario: str, method: str, api_selection: str) -> list[FieldSpec]:
        return parameters_fields(scenario, method, api_selection)

    def body_fields(self, scenario: str, method: str, api_selection: str) -> list[FieldSpec]:
        return body_fields(scenario, method, api_selection)

    def default_body(self, api_selection: str, method: str) -> Optional[dict[str, Any]]:
        descriptor = try_decode_descriptor(api_selection)
        if descriptor is None:
            return None
        return default_body(descriptor, method)

    # ----------------------------
    # Execution
    # ----------------------------

    def assemble(self, options: RequestOptions) -> ResolvedRequest:
        if not options.token:
            options = dataclasses.replace(options, token=self._token(None))
        return assemble_request(options, credentials=self.credentials, endpoints=self.endpoints)

    async def call(self, options: RequestOptions) -> dict[str, Any]:
        return await send_request(self.assemble(options))

    async def execute(
        self,
        items: Sequence[RequestOptions],
        *,
        continue_on_fail: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Run items one after another. A failing item either becomes an
        {"error": message} record (continue_on_fail) or aborts the batch.
        """
        results: list[dict[str, Any]] = []
        for i, options in enumerate(items):
            try:
                results.append(await self._call_item(options))
            except SuperiorApisError as e:
                e.item_index = i
                if continue_on_fail:
                    logger.warning("item %d failed: %s", i, e)
                    results.append({"error": e.message})
                    continue
                raise
        return results

    async def _call_item(self, options: RequestOptions) -> dict[str, Any]:
        try:
            return await self.call(options)
        except SuperiorApisError:
            raise
        except Exception as e:
            raise ApiCallError(f"{type(e).__name__}: {e}") from e
