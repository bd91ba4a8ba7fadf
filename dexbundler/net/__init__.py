"""Transport layer: HTTP APIs, JSON-RPC and retry helpers."""

from dexbundler.net.http import JsonApiClient
from dexbundler.net.retry import retry_with_backoff
from dexbundler.net.rpc import ChainReader, RpcClient

__all__ = ["JsonApiClient", "RpcClient", "ChainReader", "retry_with_backoff"]
