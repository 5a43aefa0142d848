# autoscale_sdk/mock/mock_metric_collector.py
# SPDX-License-Identifier: Apache-2.0
"""
Mock metric collector used in conformance tests and local experiments.

Deterministic behavior:
- per-app counts from a mapping (unknown apps report `default_count`)
- per-app failures via `failing_apps`
- optional artificial latency for deadline tests
- open failures via `fail_open`
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

from autoscale_sdk.metrics.metrics_base import (
    BaseMetricCollector,
    OperationContext,
)


class MockBackendError(RuntimeError):
    """Stand-in for a backend/transport failure."""


class MockMetricCollector(BaseMetricCollector):
    """In-memory collector with scripted counts."""

    _component = "metrics_mock"

    def __init__(
        self,
        name: str = "mock-metrics",
        *,
        counts: Optional[Mapping[str, int]] = None,
        default_count: int = 0,
        failing_apps: Optional[Mapping[str, BaseException]] = None,
        latency_s: float = 0.0,
        fail_open: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        if latency_s < 0:
            raise ValueError("latency_s must be >= 0")
        self.counts: Dict[str, int] = dict(counts or {})
        self.default_count = int(default_count)
        self.failing_apps: Dict[str, BaseException] = dict(failing_apps or {})
        self.latency_s = float(latency_s)
        self.fail_open = fail_open
        self.open_calls = 0
        self.close_calls = 0
        self.connected = False

    async def _sleep(self) -> None:
        if self.latency_s:
            await asyncio.sleep(self.latency_s)

    async def _do_open(self, *, ctx: Optional[OperationContext] = None) -> None:
        self.open_calls += 1
        await self._sleep()
        if self.fail_open is not None:
            raise self.fail_open
        self.connected = True

    async def _do_close(self) -> None:
        self.close_calls += 1
        self.connected = False

    async def _do_collect(
        self,
        app: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> float:
        await self._sleep()
        err = self.failing_apps.get(app)
        if err is not None:
            raise err
        return float(self.counts.get(app, self.default_count))

    async def _do_health(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        return {"ok": self.connected, "server": "mock"}


__all__ = ["MockBackendError", "MockMetricCollector"]
