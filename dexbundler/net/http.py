"""Thin async JSON client over httpx with upstream error mapping."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from dexbundler.errors import UpstreamRejected, UpstreamUnavailable

logger = structlog.get_logger()


class JsonApiClient:
    """JSON/GraphQL client for one upstream service.

    Transport failures, timeouts, 429 and 5xx responses raise
    UpstreamUnavailable (retryable); other 4xx responses raise
    UpstreamRejected.

    Usage:
        async with JsonApiClient("1inch", base_url, headers=auth) as api:
            data = await api.get("/1/quote", params={...})
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Accept": "application/json", **(headers or {})},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> JsonApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, json: Any) -> Any:
        return await self._request("POST", path, json=json)

    async def graphql(
        self, query: str, variables: dict[str, Any] | None = None, path: str = ""
    ) -> dict[str, Any]:
        """POST a GraphQL query and return its ``data`` object."""
        body = await self.post(path, {"query": query, "variables": variables or {}})
        if not isinstance(body, dict):
            raise UpstreamRejected(self.name, 200, "GraphQL response is not an object")
        if body.get("errors"):
            message = "; ".join(str(err.get("message", err)) for err in body["errors"])
            raise UpstreamRejected(self.name, 200, message)
        data = body.get("data")
        if not isinstance(data, dict):
            raise UpstreamRejected(self.name, 200, "GraphQL response has no data")
        return data

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(self.name, f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamUnavailable(self.name, str(e) or type(e).__name__) from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(
                "upstream_unavailable",
                source=self.name,
                path=path,
                status=response.status_code,
            )
            raise UpstreamUnavailable(self.name, response.text[:200], status=response.status_code)
        if response.status_code >= 400:
            raise UpstreamRejected(self.name, response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamRejected(self.name, response.status_code, "invalid JSON body") from e


__all__ = ["JsonApiClient"]
