import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ExchangeApiError(Exception):
    def __init__(self, status_code: int, message: str, code: str | None = None):
        self.status_code = status_code
        self.message = message
        self.code = code
        super().__init__(f"{status_code} {code or ''} {message}".strip())


class ExchangeApi:
    """Async HTTP client for the exchange endpoints."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ExchangeApiError(0, f"network error: {exc}", "NETWORK_ERROR") from exc
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400 or not data.get("success", False):
            raise ExchangeApiError(resp.status_code, str(data.get("message") or resp.reason_phrase), data.get("code"))
        return data

    async def hit(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/exchange/hit", json=payload)

    async def status(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/exchange/status/{session_id}")

    async def pair(self, token: str, sharing_category: str = "All") -> dict[str, Any]:
        return await self._request("GET", f"/exchange/pair/{token}", params={"sharing_category": sharing_category})

    async def respond(self, token: str, accept: bool) -> dict[str, Any]:
        return await self._request("POST", f"/exchange/pair/{token}", json={"accept": accept})

    async def initiate(self, session_id: str, sharing_category: str = "All") -> dict[str, Any]:
        return await self._request(
            "POST",
            "/exchange/initiate",
            json={"session_id": session_id, "sharing_category": sharing_category},
        )
