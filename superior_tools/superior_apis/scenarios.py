"""
Scenario templates: named, pre-captured request bodies for an API + method.

The list call is a best-effort discovery step. It never raises; failures
turn into sentinel options so the caller can still fall back to building
the body from the schema fields.
"""
from __future__ import annotations

import json
import asyncio
import logging
from typing import Any, Optional

import httpx

from .config import PlatformEndpoints
from .descriptors import ApiDescriptor, SelectOption, try_decode_descriptor
from .schema_fields import NO_USE_SCENARIO

logger = logging.getLogger(__name__)

NO_SCENARIO = "no_scenario"
SCENARIO_ERROR = "error"
SENTINEL_SCENARIOS = frozenset({"", NO_USE_SCENARIO, NO_SCENARIO, SCENARIO_ERROR})

USE_DEFAULT_OPTION = SelectOption(name="Use Default Request Body", value=NO_USE_SCENARIO)

_STATUS_OK = 1


def is_template_scenario(scenario: Optional[str]) -> bool:
    return bool(scenario) and scenario not in SENTINEL_SCENARIOS


class ScenarioLoader:
    def __init__(
        self,
        *,
        endpoints: Optional[PlatformEndpoints] = None,
        timeout_s: Optional[float] = 30.0,
        max_concurrency: int = 10,
    ):
        self.endpoints = endpoints or PlatformEndpoints()
        self.timeout_s = timeout_s
        self.max_concurrency = max_concurrency

    async def _fetch_list(
        self, client: httpx.AsyncClient, descriptor: ApiDescriptor, method: str, token: str
    ) -> Any:
        resp = await client.post(
            self.endpoints.scenario_list_url,
            headers={"token": token, "Content-Type": "application/json"},
            json={
                "method": method.lower(),
                "interface_id": descriptor.interface_id,
                "version": descriptor.version,
                "version_suffix": "",
            },
        )
        resp.raise_for_status()
        return resp.json()

    async def _scenario_option(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        scenario: dict[str, Any],
        token: str,
    ) -> SelectOption:
        scenario_id = scenario.get("scenario_id")
        name = str(scenario.get("scenario_name") or scenario_id)

        try:
            async with semaphore:
                resp = await client.get(
                    self.endpoints.scenario_detail_url,
                    params={"scenario_id": scenario_id},
                    headers={"token": token},
                )
            resp.raise_for_status()
            detail = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("failed to load scenario %s: %s", scenario_id, e)
        else:
            data = detail.get("data") if isinstance(detail, dict) else None
            content = data.get("request_content") if isinstance(data, dict) else None
            if content and detail.get("status") == _STATUS_OK:
                return SelectOption(name=name, value=json.dumps(content, indent=4, ensure_ascii=False))

        # degraded: the raw id stands in for the body text
        return SelectOption(name=name, value=str(scenario_id))

    async def list_scenarios(
        self, descriptor: ApiDescriptor, method: str, token: str
    ) -> list[SelectOption]:
        """
        Options for the scenario selector, always led by "Use Default Request Body".

        Detail fetches run concurrently and the list is returned only once
        every one of them has finished or fallen back.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                response = await self._fetch_list(client, descriptor, method, token)

                data = response.get("data") if isinstance(response, dict) else None
                items = data.get("list") if isinstance(data, dict) else None
                listed = data is not None and response.get("status") == _STATUS_OK
                if not listed or not isinstance(items, list) or not items:
                    return [
                        USE_DEFAULT_OPTION,
                        SelectOption(
                            name=f"No scenario templates available for {method.upper()} method",
                            value=NO_SCENARIO,
                        ),
                    ]

                semaphore = asyncio.Semaphore(max(1, self.max_concurrency))
                options = await asyncio.gather(
                    *(
                        self._scenario_option(client, semaphore, item, token)
                        for item in items
                        if isinstance(item, dict)
                    )
                )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("failed to load scenario list: %s", e)
            return [
                USE_DEFAULT_OPTION,
                SelectOption(
                    name="Failed to load scenario list. Please check network connection.",
                    value=SCENARIO_ERROR,
                ),
            ]

        return [USE_DEFAULT_OPTION, *options]

    async def scenario_options(self, api_selection: str, method: str, token: str) -> list[SelectOption]:
        """list_scenarios() keyed by the opaque selection; no selection or method means no options."""
        if not api_selection or not method:
            return []
        descriptor = try_decode_descriptor(api_selection)
        if descriptor is None:
            return []
        return await self.list_scenarios(descriptor, method, token)
