"""Async REST client for the detection backend."""
import ipaddress
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from ..errors import BackendRequestError, MalformedPayloadError, SocFeedError
from ..utils.logging import get_logger
from ..wire import BackendStats, WireThreat, parse_stats, parse_submitted_event, parse_threat

logger = get_logger("backend_client")

DEFAULT_TIMEOUT = 10.0


class BackendClient:
    """
    Thin wrapper over httpx.AsyncClient for the backend endpoints.

    Reads raise BackendRequestError or MalformedPayloadError so the caller
    can decide how to degrade. Actions (block, unblock, submit) report
    success as a bool and are never retried.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise BackendRequestError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise BackendRequestError(f"{method} {path}", response.status_code)
        return response

    async def _get_json(self, path: str, **kwargs) -> Any:
        response = await self._request("GET", path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayloadError(path, f"invalid JSON: {e}") from e

    async def fetch_threats(self, limit: int = 50) -> List[WireThreat]:
        """Backlog fetch. Entries that fail validation are logged and dropped one by one."""
        payload = await self._get_json("/api/threats", params={"limit": limit})
        if not isinstance(payload, list):
            raise MalformedPayloadError("threat backlog", f"expected a list, got {type(payload).__name__}")

        threats = []
        for entry in payload:
            try:
                threats.append(parse_threat(entry))
            except MalformedPayloadError as e:
                logger.warning(f"Dropping backlog entry: {e}")
        return threats

    async def fetch_statistics(self) -> BackendStats:
        return parse_stats(await self._get_json("/api/statistics"))

    async def block_ip(self, ip: str) -> bool:
        return await self._ip_action("block", ip)

    async def unblock_ip(self, ip: str) -> bool:
        return await self._ip_action("unblock", ip)

    async def submit_event(self, event: Any) -> bool:
        """Submit a network event; raises MalformedPayloadError before any request if it does not validate."""
        validated = parse_submitted_event(event)
        try:
            await self._request("POST", "/api/submit_event", json=validated.model_dump())
            return True
        except SocFeedError as e:
            logger.error(f"Failed to submit {validated.event_type} event: {e}")
            return False

    async def _ip_action(self, action: str, ip: str) -> bool:
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            logger.error(f"Refusing to {action} invalid IP address {ip!r}")
            return False

        try:
            await self._request("POST", f"/api/{action}/{quote(str(address), safe='')}")
        except SocFeedError as e:
            logger.error(f"Failed to {action} IP {address}: {e}")
            return False

        logger.info(f"Backend accepted {action} for {address}")
        return True
