"""Concurrent fan-out over route adapters."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from dexbundler.discovery.base import RouteAdapter
from dexbundler.models.pools import DexKind
from dexbundler.models.route import Path

if TYPE_CHECKING:
    from dexbundler.context import RoutingContext

logger = structlog.get_logger()


@dataclass
class DiscoveryResult:
    """Paths found plus which adapters answered."""

    paths: list[Path] = field(default_factory=list)
    responded: list[DexKind] = field(default_factory=list)
    timed_out: list[DexKind] = field(default_factory=list)
    failed: dict[DexKind, str] = field(default_factory=dict)


class RouteDiscoverer:
    """Runs every adapter concurrently.

    Each adapter gets ``adapter_timeout`` seconds and the whole fan-out is
    bounded by ``deadline``. An adapter that times out or fails contributes
    no paths; it never fails the query.
    """

    def __init__(
        self,
        adapters: Sequence[RouteAdapter],
        *,
        adapter_timeout: float = 3.0,
        deadline: float = 6.0,
    ) -> None:
        self.adapters = list(adapters)
        self.adapter_timeout = adapter_timeout
        self.deadline = deadline

    async def _run(
        self, adapter: RouteAdapter, ctx: RoutingContext, max_hops: int, result: DiscoveryResult
    ) -> list[Path]:
        try:
            paths = await asyncio.wait_for(
                adapter.find_paths(ctx, ctx.from_token, ctx.to_token, max_hops),
                timeout=self.adapter_timeout,
            )
        except TimeoutError:
            ctx.log.warning("adapter_timeout", dex=adapter.kind.value, timeout=self.adapter_timeout)
            result.timed_out.append(adapter.kind)
            return []
        except Exception as e:
            ctx.log.warning("adapter_failed", dex=adapter.kind.value, error=str(e))
            result.failed[adapter.kind] = str(e)
            return []
        result.responded.append(adapter.kind)
        return paths

    async def discover(self, ctx: RoutingContext, max_hops: int | None = None) -> DiscoveryResult:
        hops = ctx.config.max_hops if max_hops is None else max_hops
        result = DiscoveryResult()
        tasks = {
            asyncio.create_task(self._run(adapter, ctx, hops, result)): adapter
            for adapter in self.adapters
        }
        done, pending = await asyncio.wait(tasks, timeout=self.deadline)
        for task in pending:
            task.cancel()
            result.timed_out.append(tasks[task].kind)
            ctx.log.warning("adapter_deadline_exceeded", dex=tasks[task].kind.value)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        seen: set[str] = set()
        # Keep adapter order stable for deterministic ranking ties
        for task, adapter in tasks.items():
            if task not in done:
                continue
            for path in task.result():
                if path.hop_count > hops:
                    logger.debug("path_exceeds_max_hops", key=path.key, hops=path.hop_count)
                    continue
                if path.key in seen:
                    continue
                seen.add(path.key)
                result.paths.append(path)

        ctx.paths = list(result.paths)
        ctx.responded = list(result.responded)
        ctx.log.info(
            "discovery_complete",
            paths=len(result.paths),
            responded=[k.value for k in result.responded],
            timed_out=[k.value for k in result.timed_out],
            failed=[k.value for k in result.failed],
        )
        return result


__all__ = ["DiscoveryResult", "RouteDiscoverer"]
