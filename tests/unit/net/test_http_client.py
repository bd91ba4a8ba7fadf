"""Tests for the JSON API client's upstream error mapping."""

import asyncio
import json

import httpx
import pytest

from dexbundler.errors import UpstreamRejected, UpstreamUnavailable
from dexbundler.net.http import JsonApiClient


def make_client(handler, **kwargs) -> JsonApiClient:
    return JsonApiClient(
        "test_api", "https://api.example/v1", transport=httpx.MockTransport(handler), **kwargs
    )


def run(coro):
    return asyncio.run(coro)


class TestJsonApiClient:
    def test_get_passes_params_and_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"dstAmount": "42"})

        client = make_client(handler, headers={"Authorization": "Bearer k"})
        body = run(client.get("/quote", params={"src": "a", "amount": "1"}))

        assert body == {"dstAmount": "42"}
        assert seen[0].url.path == "/v1/quote"
        assert seen[0].url.params["src"] == "a"
        assert seen[0].headers["Authorization"] == "Bearer k"

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_statuses(self, status: int) -> None:
        client = make_client(lambda request: httpx.Response(status, text="busy"))
        with pytest.raises(UpstreamUnavailable) as excinfo:
            run(client.get("/quote"))
        assert excinfo.value.status == status

    def test_client_error_rejected(self) -> None:
        client = make_client(lambda request: httpx.Response(400, text="insufficient liquidity"))
        with pytest.raises(UpstreamRejected) as excinfo:
            run(client.get("/quote"))
        assert excinfo.value.status == 400
        assert "insufficient liquidity" in excinfo.value.body

    def test_transport_error_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamUnavailable):
            run(make_client(handler).get("/quote"))

    def test_timeout_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(UpstreamUnavailable, match="timeout"):
            run(make_client(handler).get("/quote"))

    def test_invalid_json_rejected(self) -> None:
        client = make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(UpstreamRejected, match="invalid JSON"):
            run(client.get("/quote"))


class TestGraphql:
    def test_returns_data(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            assert payload["variables"] == {"token": "0xabc"}
            return httpx.Response(200, json={"data": {"pools": []}})

        data = run(make_client(handler).graphql("query { pools }", {"token": "0xabc"}))
        assert data == {"pools": []}

    def test_errors_rejected(self) -> None:
        client = make_client(
            lambda request: httpx.Response(200, json={"errors": [{"message": "bad field"}]})
        )
        with pytest.raises(UpstreamRejected, match="bad field"):
            run(client.graphql("query { nope }"))

    def test_missing_data_rejected(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json={"data": None}))
        with pytest.raises(UpstreamRejected, match="no data"):
            run(client.graphql("query { pools }"))
