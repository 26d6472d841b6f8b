"""
EMS API Client
Pull side of the block pipeline: latest block, block history and reading ingest.

Blocking requests calls run in a worker thread so the event loop stays free.
Every request carries an explicit timeout.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from core.errors import FetchError
from core.models import Block, HistoryBlock, Reading, to_block, to_history_blocks
from core.window import TimezoneLike

logger = logging.getLogger(__name__)

RETRY_DELAYS_SEC = (0.5, 1.5, 3.5)
RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


class EmsApiClient:
    """Client for the EMS backend REST API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        tz: TimezoneLike = "Asia/Kuala_Lumpur",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.tz = tz
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    # =========================================================================
    # Blocks
    # =========================================================================

    async def fetch_latest_block(self, simulator_id: str) -> Block:
        """Current block; an empty response yields a zero block"""
        payload = await asyncio.to_thread(
            self._get, "/api/v1/blocks/latest", {"simulator_id": simulator_id}
        )
        return to_block(payload, simulator_id, self.tz)

    async def fetch_block_history(self, simulator_id: str, limit: int = 10) -> List[HistoryBlock]:
        payload = await asyncio.to_thread(
            self._get, "/api/v1/blocks/history", {"simulator_id": simulator_id, "limit": limit}
        )
        return to_history_blocks(payload, self.tz)

    # =========================================================================
    # Readings
    # =========================================================================

    async def ingest_readings(self, simulator_id: str, readings: List[Reading], mode: str = "auto") -> None:
        body = {
            "simulator_id": simulator_id,
            "mode": mode,
            "ticks": [r.to_wire() for r in readings],
        }
        await asyncio.to_thread(self._post, "/api/v1/readings:ingest", body)

    # =========================================================================
    # Transport
    # =========================================================================

    def _get(self, endpoint: str, params: Dict[str, Any] = None) -> Any:
        """GET with a single retry on network failure"""
        try:
            return self._request("GET", endpoint, params=params)
        except FetchError as e:
            if e.status != 0:
                raise
            logger.warning("GET %s failed (%s); retrying once", endpoint, e)
            time.sleep(RETRY_DELAYS_SEC[0])
            return self._request("GET", endpoint, params=params)

    def _post(self, endpoint: str, data: Dict[str, Any]) -> Any:
        """POST with write headers; retried on network errors and retryable statuses"""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key

        for attempt, delay in enumerate((*RETRY_DELAYS_SEC, None)):
            try:
                return self._request("POST", endpoint, json=data, headers=headers)
            except FetchError as e:
                retryable = e.status == 0 or e.status in RETRYABLE_STATUS
                if delay is None or not retryable:
                    raise
                logger.warning("POST %s failed (attempt %d): %s", endpoint, attempt + 1, e)
                time.sleep(delay)

    def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"{method} {endpoint}: {e}") from e

        if not resp.ok:
            raise FetchError(_error_message(resp), resp.status_code)

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON response: {e}", resp.status_code) from e

    def close(self) -> None:
        self.session.close()


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"

    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            if payload.get(key):
                return str(payload[key])
    return f"HTTP {resp.status_code}"
