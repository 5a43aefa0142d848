# autoscale_sdk/metrics/metrics_base.py
# SPDX-License-Identifier: Apache-2.0
"""
Autoscale SDK — Metric Collector Protocol V1.0

Purpose
-------
A small, vendor-neutral contract for metric sources that feed an external
autoscaling control loop. A collector is opened once, sampled many times
for a given application, and closed once:

    collector = SomeCollector("queue-depth")
    collector.address = "..."          # backend-specific configuration
    await collector.open()
    count = await collector.collect_metric("my-app")
    await collector.close()

This file provides:

- Typed Python contracts for the collector lifecycle
- A normalized error taxonomy with machine-readable codes
- `OperationContext` for per-call deadlines and correlation IDs
- Metrics sink and deadline policy extension points
- `BaseMetricCollector` with lifecycle tracking, deadline enforcement and
  SIEM-safe instrumentation; backends override the `_do_*` hooks

Deliberate Non-Goals
--------------------
- No caching of samples; every call reaches the backend
- No retries or backoff; the polling loop owns retry policy
- No scaling decisions; collectors only report a number

Versioning
----------
Follow SemVer against METRICS_PROTOCOL_VERSION. Minor versions are strictly additive.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

METRICS_PROTOCOL_VERSION = "1.0.0"
METRICS_PROTOCOL_ID = "metrics/v1.0"
LOG = logging.getLogger(__name__)

# =============================================================================
# Normalized Errors
# =============================================================================

class MetricCollectorError(Exception):
    """
    Base exception for errors raised by the collector itself.

    Errors coming from a backend transport are *not* wrapped in this type;
    they propagate unchanged so that callers see what the backend reported.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (UPPER_SNAKE_CASE)
        retry_after_ms: Suggested delay before retry (None if not retryable)
        details: Additional JSON-serializable, SIEM-safe details
    """
    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retry_after_ms = retry_after_ms
        self.details = dict(details or {})

    def asdict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization and logging."""
        return {
            "message": self.message,
            "code": self.code,
            "retry_after_ms": self.retry_after_ms,
            "details": {k: self.details[k] for k in sorted(self.details)},
        }

class ConfigError(MetricCollectorError):
    """Collector configuration is incomplete or used out of order."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "BAD_CONFIG")
        super().__init__(message, **kwargs)

class CredentialError(MetricCollectorError):
    """Credentials could not be loaded (malformed or mismatched cert/key)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "AUTH_ERROR")
        super().__init__(message, **kwargs)

class BadRequest(MetricCollectorError):
    """Caller passed an invalid argument."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "BAD_REQUEST")
        super().__init__(message, **kwargs)

class NotOpen(MetricCollectorError):
    """Collector was sampled before open() or after close()."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "NOT_OPEN")
        super().__init__(message, **kwargs)

class DeadlineExceeded(MetricCollectorError):
    """Operation exceeded ctx.deadline_ms budget."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "DEADLINE_EXCEEDED")
        super().__init__(message, **kwargs)

# =============================================================================
# Context
# =============================================================================

@dataclass(frozen=True)
class OperationContext:
    """
    Per-call context for collector operations.

    Attributes:
        request_id: Correlation ID for the polling tick
        deadline_ms: Absolute epoch milliseconds when the call must give up
        traceparent: W3C Trace Context header for distributed tracing
        attrs: Additional attributes for middleware and query expansion
    """
    request_id: Optional[str] = None
    deadline_ms: Optional[int] = None
    traceparent: Optional[str] = None
    attrs: Mapping[str, Any] = None

    def __post_init__(self) -> None:
        if self.attrs is None:
            object.__setattr__(self, "attrs", {})

    def remaining_ms(self) -> Optional[int]:
        """
        Return remaining milliseconds until deadline, or None if no deadline set.
        Non-negative (0 if expired).
        """
        if self.deadline_ms is None:
            return None
        now_ms = int(time.time() * 1000)
        return max(0, self.deadline_ms - now_ms)

    @classmethod
    def with_timeout(cls, timeout_ms: int, **kwargs: Any) -> "OperationContext":
        """Build a context whose deadline is `timeout_ms` from now."""
        return cls(deadline_ms=int(time.time() * 1000) + int(timeout_ms), **kwargs)

QueryExpander = Callable[[Optional[OperationContext], str, str], str]
"""Host routine mapping (ctx, query, app) to the expanded query string."""

# =============================================================================
# Metrics Interface (SIEM-safe, low-cardinality)
# =============================================================================

class MetricsSink(Protocol):
    """
    Protocol for instrumentation of the collector itself.

    Must stay low-cardinality: no app names, no query text, no credentials.
    """
    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...

class NoopMetrics:
    """No-operation metrics sink for testing or when metrics are disabled."""
    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...

# =============================================================================
# Deadline policies
# =============================================================================

class DeadlinePolicy(Protocol):
    """Strategy to apply time budgets (ctx.deadline_ms) to awaits."""
    async def wrap(self, coro: Awaitable[Any], ctx: Optional[OperationContext]) -> Any: ...

class NoopDeadline:
    async def wrap(self, coro, ctx: Optional[OperationContext]):
        return await coro

class _BackendTimeout(Exception):
    """Carries a TimeoutError raised by the wrapped call past wait_for."""
    def __init__(self, err: BaseException) -> None:
        super().__init__(str(err))
        self.err = err

async def _box_backend_timeout(coro):
    try:
        return await coro
    except (asyncio.TimeoutError, TimeoutError) as exc:
        raise _BackendTimeout(exc) from None

class SimpleDeadline:
    """
    Enforces ctx.deadline_ms using asyncio.wait_for.

    Only expiry of the ctx budget becomes DeadlineExceeded; a TimeoutError
    raised by the wrapped call itself propagates as the same object.
    """
    async def wrap(self, coro, ctx: Optional[OperationContext]):
        if ctx is None or ctx.deadline_ms is None:
            return await coro
        rem = ctx.remaining_ms()
        if rem is not None and rem <= 0:
            coro.close()
            raise DeadlineExceeded("operation timed out (preflight)", details={"preflight": True})
        backend_err: Optional[BaseException] = None
        try:
            return await asyncio.wait_for(_box_backend_timeout(coro), timeout=rem / 1000.0)
        except _BackendTimeout as boxed:
            backend_err = boxed.err
        except asyncio.TimeoutError:
            raise DeadlineExceeded("operation timed out") from None
        # outside the handler: the original error keeps its own __context__
        raise backend_err

# =============================================================================
# Protocol
# =============================================================================

class LifecycleState(str, Enum):
    UNOPENED = "unopened"
    OPENED = "opened"
    CLOSED = "closed"

@runtime_checkable
class MetricCollectorProtocolV1(Protocol):
    """
    Contract consumed by the autoscaler host.

    The host constructs the collector, sets its configuration, calls
    `open()` once, calls `collect_metric()` on its own schedule (possibly
    concurrently) and calls `close()` once sampling has stopped.
    """

    @property
    def name(self) -> str: ...

    async def open(self, *, ctx: Optional[OperationContext] = None) -> None: ...

    async def close(self) -> None: ...

    async def collect_metric(
        self,
        app: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> float: ...

# =============================================================================
# Base collector
# =============================================================================

class BaseMetricCollector(MetricCollectorProtocolV1):
    """
    Base class for metric collectors.

    Handles lifecycle tracking, deadline enforcement and instrumentation.
    Backends override `_do_open`, `_do_collect`, `_do_close` and
    optionally `_do_health`.

    Errors raised by the `_do_*` hooks propagate as-is; the base class only
    records them.
    """

    _component = "metrics"

    def __init__(
        self,
        name: str,
        *,
        metrics: Optional[MetricsSink] = None,
        deadline_policy: Optional[DeadlinePolicy] = None,
    ) -> None:
        self._name = name
        self._metrics: MetricsSink = metrics or NoopMetrics()
        self._deadline: DeadlinePolicy = deadline_policy or SimpleDeadline()
        self._state = LifecycleState.UNOPENED

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, state={self._state.value})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is LifecycleState.OPENED

    async def __aenter__(self) -> "BaseMetricCollector":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # --- internal helpers ---

    def _record(
        self,
        op: str,
        t0: float,
        ok: bool,
        *,
        code: str = "OK",
        ctx: Optional[OperationContext] = None,
        **extra: Any,
    ) -> None:
        """Record operation metrics; never lets instrumentation break the call."""
        try:
            ms = (time.monotonic() - t0) * 1000.0
            x = dict(extra or {})
            if ctx:
                rem = ctx.remaining_ms()
                if rem is not None:
                    if rem < 1000: x["deadline_bucket"] = "<1s"
                    elif rem < 5000: x["deadline_bucket"] = "<5s"
                    elif rem < 15000: x["deadline_bucket"] = "<15s"
                    else: x["deadline_bucket"] = ">=15s"
            self._metrics.observe(
                component=self._component,
                op=op,
                ms=ms,
                ok=ok,
                code=code,
                extra=x or None,
            )
        except Exception:  # noqa: BLE001
            LOG.debug("metrics sink failed for %s.%s", self._component, op, exc_info=True)

    @staticmethod
    def _error_code(err: BaseException) -> str:
        if isinstance(err, MetricCollectorError):
            return err.code or type(err).__name__
        return type(err).__name__

    async def _apply_deadline(self, coro, ctx: Optional[OperationContext]):
        return await self._deadline.wrap(coro, ctx)

    @staticmethod
    def _fail_if_expired(ctx: Optional[OperationContext]) -> None:
        if ctx is None or ctx.deadline_ms is None:
            return
        if ctx.remaining_ms() == 0:
            raise DeadlineExceeded("operation timed out (preflight)", details={"preflight": True})

    def _require_open(self, op: str) -> None:
        if self._state is not LifecycleState.OPENED:
            raise NotOpen(
                f"collector {self._name!r} is not open",
                details={"op": op, "state": self._state.value},
            )

    # --- public API ---

    async def open(self, *, ctx: Optional[OperationContext] = None) -> None:
        """
        Establish the backend connection.

        On failure the collector stays in its previous (non-open) state and
        may be opened again once the cause is fixed.
        """
        if self._state is LifecycleState.OPENED:
            raise ConfigError(f"collector {self._name!r} already open")
        self._fail_if_expired(ctx)

        t0 = time.monotonic()
        try:
            await self._apply_deadline(self._do_open(ctx=ctx), ctx)
        except Exception as e:
            self._record("open", t0, False, code=self._error_code(e), ctx=ctx)
            raise
        self._state = LifecycleState.OPENED
        self._record("open", t0, True, ctx=ctx)
        LOG.debug("collector %r opened", self._name)

    async def close(self) -> None:
        """Release the backend connection. Never raises; safe in any state."""
        t0 = time.monotonic()
        try:
            await self._do_close()
        except Exception:  # noqa: BLE001
            LOG.debug("collector %r close failed", self._name, exc_info=True)
        self._state = LifecycleState.CLOSED
        self._record("close", t0, True)

    async def collect_metric(
        self,
        app: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> float:
        """
        Sample the metric for `app`.

        Raises NotOpen outside the opened state and DeadlineExceeded when
        the ctx budget runs out. Backend errors propagate unchanged; there
        is no fallback value.
        """
        if not isinstance(app, str):
            raise BadRequest("app must be a string", details={"type": type(app).__name__})
        self._require_open("collect_metric")
        self._fail_if_expired(ctx)

        t0 = time.monotonic()
        try:
            value = await self._apply_deadline(self._do_collect(app, ctx=ctx), ctx)
        except Exception as e:
            self._record("collect_metric", t0, False, code=self._error_code(e), ctx=ctx)
            raise
        self._record("collect_metric", t0, True, ctx=ctx)
        self._metrics.counter(component=self._component, name="samples", value=1)
        return float(value)

    async def health(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        """Check backend health over the open connection."""
        self._require_open("health")
        self._fail_if_expired(ctx)

        t0 = time.monotonic()
        try:
            h = await self._apply_deadline(self._do_health(ctx=ctx), ctx)
        except Exception as e:
            self._record("health", t0, False, code=self._error_code(e), ctx=ctx)
            raise
        self._record("health", t0, True, ctx=ctx)
        result = dict(h)
        result["ok"] = bool(h.get("ok", True))
        result.setdefault("server", "")
        return result

    # --- hooks to implement per backend (override these) ---

    async def _do_open(self, *, ctx: Optional[OperationContext] = None) -> None:
        """Connect to the backend with validated configuration."""
        raise NotImplementedError

    async def _do_close(self) -> None:
        """Release backend resources. Default is a no-op."""
        return None

    async def _do_collect(
        self,
        app: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> float:
        """Return the raw metric value for `app`."""
        raise NotImplementedError

    async def _do_health(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        """Return a health mapping with at least an `ok` key."""
        return {"ok": True}

# =============================================================================
# Public Exports
# =============================================================================

__all__ = [
    "METRICS_PROTOCOL_VERSION",
    "METRICS_PROTOCOL_ID",
    "MetricCollectorError",
    "ConfigError",
    "CredentialError",
    "BadRequest",
    "NotOpen",
    "DeadlineExceeded",
    "OperationContext",
    "QueryExpander",
    "MetricsSink",
    "NoopMetrics",
    "DeadlinePolicy",
    "NoopDeadline",
    "SimpleDeadline",
    "LifecycleState",
    "MetricCollectorProtocolV1",
    "BaseMetricCollector",
]
