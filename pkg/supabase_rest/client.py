import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx


class SupabaseRestClient:
    """
    Async client for the hosted backend's REST, auth and storage gateways.

    Transport failures surface as httpx.TransportError, non-2xx responses as
    httpx.HTTPStatusError and undecodable bodies as ValueError.
    """

    def __init__(
        self,
        logger: logging.Logger,
        url: str,
        anon_key: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.logger = logger
        self.url = url.rstrip('/')
        self.anon_key = anon_key
        self.client = httpx.AsyncClient(
            headers={"apikey": anon_key},
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )
        # mutating calls against the user's remote resources are serialized
        self._write_lock = asyncio.Lock()
        self.logger.info(f"Supabase REST client initialized for {self.url}")

    async def close(self):
        await self.client.aclose()

    def headers(self, access_token: Optional[str] = None, **extra: str) -> Dict[str, str]:
        headers = {"apikey": self.anon_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        headers.update(extra)
        return headers

    def function_url(self, name: str) -> str:
        return f"{self.url}/functions/v1/{name}"

    def public_object_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{quote(path)}"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, f"{self.url}{path}", **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            self.logger.error(f"{method} {path} failed: {e}")
            raise

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Dict[str, str]] = None,
        order: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """GET /rest/v1/<table> with PostgREST filters, e.g. {"is_active": "eq.true"}."""
        params: Dict[str, str] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        response = await self._request("GET", f"/rest/v1/{table}", params=params, headers=self.headers(access_token))
        rows = response.json()
        if not isinstance(rows, list):
            raise ValueError(f"Expected a list of rows from {table}")
        return rows

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        """Resolve a bearer token to the identity service's user object."""
        response = await self._request("GET", "/auth/v1/user", headers=self.headers(access_token))
        user = response.json()
        if not isinstance(user, dict) or not user.get("id"):
            raise ValueError("Identity service returned no user id")
        return user

    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        access_token: Optional[str] = None,
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> str:
        """Upload bytes to blob storage and return the object's public URL."""
        headers = self.headers(
            access_token,
            **{
                "Content-Type": content_type,
                "Cache-Control": f"max-age={cache_control}",
                "x-upsert": "true" if upsert else "false",
            },
        )
        async with self._write_lock:
            await self._request("POST", f"/storage/v1/object/{bucket}/{quote(path)}", content=data, headers=headers)
        self.logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return self.public_object_url(bucket, path)
