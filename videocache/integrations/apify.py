"""Apify actor-run API — the external asynchronous job API.

Docs: https://docs.apify.com/api/v2
Run lifecycle: POST /acts/{actorId}/runs → GET /actor-runs/{runId} → GET /actor-runs/{runId}/dataset/items
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from videocache.exceptions import JobFailedError, SubmissionError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.apify.com/v2"

# Reported when the status endpoint could not be reached; callers treat it as non-terminal.
STATUS_UNAVAILABLE = "UNAVAILABLE"


@dataclass
class RunStatus:
    status: str
    message: str = ""


class ApifyClient:
    """Async client for Apify actor runs. Holds one pooled HTTP client between open() and aclose()."""

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL, timeout: int = 30):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.open()
        return self._client

    async def submit(self, actor_id: str, params: dict[str, Any]) -> str:
        """Start an actor run and return its run id. No retry."""
        client = await self._http()
        start = time.monotonic()
        try:
            resp = await client.post(f"{self.base_url}/acts/{actor_id}/runs", json=params)
        except httpx.HTTPError as e:
            raise SubmissionError(f"Run request failed: {str(e)[:200]}", actor=actor_id) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if resp.status_code >= 300:
            raise SubmissionError(
                f"Run rejected with status {resp.status_code}",
                actor=actor_id, status=resp.status_code, body=resp.text[:200],
            )

        try:
            run_id = resp.json()["data"]["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise SubmissionError("Run response carried no run id", actor=actor_id) from e

        logger.info("Apify submit OK | actor=%s | run=%s | %dms", actor_id, run_id, elapsed_ms)
        return run_id

    async def get_status(self, run_id: str) -> RunStatus:
        """Return the provider status of a run.

        Transport errors and 5xx answers are reported as STATUS_UNAVAILABLE so the
        poller can try again; 4xx answers mean the run is unknown to the API.
        """
        client = await self._http()
        try:
            resp = await client.get(f"{self.base_url}/actor-runs/{run_id}")
        except httpx.HTTPError as e:
            logger.warning("Apify status unavailable | run=%s | %s", run_id, str(e)[:200])
            return RunStatus(STATUS_UNAVAILABLE, str(e)[:200])

        if resp.status_code >= 500:
            logger.warning("Apify status unavailable | run=%s | status=%d", run_id, resp.status_code)
            return RunStatus(STATUS_UNAVAILABLE, f"HTTP {resp.status_code}")
        if resp.status_code >= 300:
            raise JobFailedError(f"Status check rejected with {resp.status_code}", run=run_id)

        try:
            data = resp.json().get("data") or {}
            return RunStatus(data.get("status", ""), data.get("statusMessage") or "")
        except (ValueError, TypeError, AttributeError) as e:
            raise JobFailedError("Status response was not a run object", run=run_id) from e

    async def get_results(self, run_id: str) -> list[dict[str, Any]]:
        """Fetch the default dataset items of a finished run."""
        client = await self._http()
        start = time.monotonic()
        try:
            resp = await client.get(
                f"{self.base_url}/actor-runs/{run_id}/dataset/items",
                params={"format": "json"},
            )
        except httpx.HTTPError as e:
            raise JobFailedError(f"Dataset fetch failed: {str(e)[:200]}", run=run_id) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if resp.status_code >= 300:
            raise JobFailedError(f"Dataset fetch rejected with {resp.status_code}", run=run_id)

        try:
            dataset = resp.json()
        except ValueError as e:
            raise JobFailedError("Dataset response was not JSON", run=run_id, body=resp.text[:200]) from e
        if not isinstance(dataset, list):
            raise JobFailedError("Unexpected dataset format", run=run_id, type=type(dataset).__name__)

        logger.info("Apify dataset OK | run=%s | items=%d | %dms", run_id, len(dataset), elapsed_ms)
        return dataset
