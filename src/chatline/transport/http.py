"""
REST client for the identity service that owns user accounts.
"""

from typing import Any, Optional

import httpx

from chatline.errors import ChatlineError


class HttpClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": "chatline/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def _auth_headers(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _unwrap(json_data: Any, key: str) -> Any:
        """Unwrap the standard account API response: { "success": true, <key>: <actual_data> }"""
        if isinstance(json_data, dict) and json_data.get("success") is False:
            raise ChatlineError("http_error", str(json_data.get("message") or "request failed"))
        if isinstance(json_data, dict) and key in json_data:
            return json_data[key]
        return json_data

    async def get(self, path: str, token: str, key: str) -> Any:
        resp = await self._client.get(path, headers=self._auth_headers(token))
        if resp.status_code >= 400:
            raise ChatlineError("http_error", f"HTTP {resp.status_code}: {resp.text[:200]}")
        return self._unwrap(resp.json(), key)

    async def close(self) -> None:
        await self._client.aclose()
