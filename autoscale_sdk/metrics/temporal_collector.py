# autoscale_sdk/metrics/temporal_collector.py
# SPDX-License-Identifier: Apache-2.0
"""
Temporal metric collector for the Metric Collector Protocol V1.0.

Reports the number of running workflow executions in a Temporal namespace,
optionally narrowed by a visibility query, so an autoscaler can size a
worker pool to in-flight work.

Goals
-----
- Connect to a Temporal frontend with no credentials, mutual TLS, or an
  API key (TLS + `temporal-namespace` metadata on every call).
- Compose `ExecutionStatus="Running" AND (<query>)` per sample and expand
  `${APP_NAME}` placeholders for the sampled application.
- Surface backend errors unchanged; no retries, no caching.

Usage
-----
    from autoscale_sdk.metrics.temporal_collector import TemporalMetricCollector

    collector = TemporalMetricCollector("temporal-running")
    collector.address = "my-ns.a1b2c.tmprl.cloud:7233"
    collector.namespace = "my-ns.a1b2c"
    collector.api_key = "..."
    collector.query = 'TaskQueue="${APP_NAME}"'

    await collector.open()
    running = await collector.collect_metric("my-worker-app")
    await collector.close()

Or from the environment (`TEMPORAL_ADDRESS`, `TEMPORAL_NAMESPACE`, ...):

    collector = TemporalMetricCollector.from_env("temporal-running")
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Mapping,
    Optional,
    Protocol,
    Union,
)

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from temporalio.client import Client, TLSConfig

from autoscale_sdk.core.error_context import attach_context
from autoscale_sdk.metrics.metrics_base import (
    BaseMetricCollector,
    ConfigError,
    CredentialError,
    DeadlinePolicy,
    MetricsSink,
    OperationContext,
    QueryExpander,
)
from autoscale_sdk.metrics.query import compose_query, expand_metric_query

logger = logging.getLogger(__name__)

NAMESPACE_HEADER = "temporal-namespace"

ENV_ADDRESS = "TEMPORAL_ADDRESS"
ENV_NAMESPACE = "TEMPORAL_NAMESPACE"
ENV_API_KEY = "TEMPORAL_API_KEY"
ENV_CERT_DATA = "TEMPORAL_TLS_CERT_DATA"
ENV_KEY_DATA = "TEMPORAL_TLS_KEY_DATA"
ENV_CERT_PATH = "TEMPORAL_TLS_CERT"
ENV_KEY_PATH = "TEMPORAL_TLS_KEY"
ENV_QUERY = "TEMPORAL_METRIC_QUERY"


# --------------------------------------------------------------------------- #
# Transport seam
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class ConnectOptions:
    """
    Everything needed to dial a Temporal frontend.

    `tls` is False for plaintext, True for a bare TLS context (system roots,
    no client certificate) or a `TLSConfig` carrying a client key pair.
    `rpc_metadata` is sent as gRPC metadata on every outgoing call.
    """

    target_host: str
    namespace: str
    tls: Union[bool, TLSConfig] = False
    api_key: Optional[str] = field(default=None, repr=False)
    rpc_metadata: Mapping[str, str] = field(default_factory=dict)


class TemporalTransport(Protocol):
    """The subset of a Temporal client the collector needs."""

    async def count_workflows(self, query: str, *, timeout: Optional[timedelta] = None) -> int: ...

    async def check_health(self, *, timeout: Optional[timedelta] = None) -> bool: ...

    async def close(self) -> None: ...


DialFunc = Callable[[ConnectOptions], Awaitable[TemporalTransport]]


class TemporalClientTransport:
    """`TemporalTransport` backed by a `temporalio.client.Client`."""

    def __init__(self, client: Client) -> None:
        self._client: Optional[Client] = client

    @property
    def client(self) -> Client:
        if self._client is None:
            raise RuntimeError("temporal transport is closed")
        return self._client

    async def count_workflows(self, query: str, *, timeout: Optional[timedelta] = None) -> int:
        resp = await self.client.count_workflows(query, rpc_timeout=timeout)
        return resp.count

    async def check_health(self, *, timeout: Optional[timedelta] = None) -> bool:
        return await self.client.service_client.check_health(timeout=timeout)

    async def close(self) -> None:
        # temporalio clients have no explicit close; the underlying channel
        # is released once the last reference is gone.
        self._client = None


async def dial_temporal(options: ConnectOptions) -> TemporalTransport:
    """Default dial function: `Client.connect` with the composed options."""
    client = await Client.connect(
        options.target_host,
        namespace=options.namespace,
        tls=options.tls,
        api_key=options.api_key,
        rpc_metadata=dict(options.rpc_metadata),
    )
    return TemporalClientTransport(client)


# --------------------------------------------------------------------------- #
# Credentials
# --------------------------------------------------------------------------- #


def _as_bytes(value: Union[bytes, str, None]) -> bytes:
    if value is None:
        return b""
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def load_key_pair(cert: Union[bytes, str], key: Union[bytes, str]) -> TLSConfig:
    """
    Validate a PEM certificate chain and private key and build a TLSConfig.

    The first certificate in `cert` is the leaf; its public key must match
    `key`. Raises CredentialError on missing, malformed or mismatched input.
    """
    cert_pem = _as_bytes(cert)
    key_pem = _as_bytes(key)
    if not cert_pem:
        raise CredentialError("tls: client certificate required when a private key is set")
    if not key_pem:
        raise CredentialError("tls: private key required when a client certificate is set")

    try:
        chain = x509.load_pem_x509_certificates(cert_pem)
    except ValueError as exc:
        raise CredentialError("tls: failed to parse certificate PEM data") from exc

    try:
        private_key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CredentialError("tls: failed to parse private key PEM data") from exc

    spki = (
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    if chain[0].public_key().public_bytes(*spki) != private_key.public_key().public_bytes(*spki):
        raise CredentialError("tls: private key does not match public key")

    return TLSConfig(client_cert=cert_pem, client_private_key=key_pem)


# --------------------------------------------------------------------------- #
# Collector
# --------------------------------------------------------------------------- #


class TemporalMetricCollector(BaseMetricCollector):
    """
    MetricCollectorProtocolV1 implementation counting running Temporal workflows.

    Configuration is set as attributes after construction and read at
    `open()`:

    - address:   host:port of the Temporal frontend (required)
    - namespace: Temporal namespace (required)
    - cert, key: PEM client certificate chain and private key (optional pair)
    - api_key:   Temporal Cloud API key (optional)
    - query:     visibility query fragment ANDed with the running predicate

    If both a key pair and an API key are set, the API-key configuration
    wins and the key pair is ignored (a warning is logged).
    """

    _component = "metrics_temporal"

    def __init__(
        self,
        name: str,
        *,
        dial: Optional[DialFunc] = None,
        query_expander: Optional[QueryExpander] = None,
        metrics: Optional[MetricsSink] = None,
        deadline_policy: Optional[DeadlinePolicy] = None,
    ) -> None:
        super().__init__(name, metrics=metrics, deadline_policy=deadline_policy)
        self._dial: DialFunc = dial or dial_temporal
        self._expand: QueryExpander = query_expander or expand_metric_query
        self._transport: Optional[TemporalTransport] = None

        self.address: str = ""
        self.namespace: str = ""
        self.cert: Union[bytes, str] = b""
        self.key: Union[bytes, str] = b""
        self.api_key: str = ""
        self.query: str = ""

    @classmethod
    def from_env(
        cls,
        name: str,
        *,
        environ: Optional[Mapping[str, str]] = None,
        **kwargs: Any,
    ) -> "TemporalMetricCollector":
        """
        Build a collector configured from environment variables.

        Certificate and key are taken from TEMPORAL_TLS_CERT_DATA /
        TEMPORAL_TLS_KEY_DATA (PEM text) or, failing that, read from the
        files named by TEMPORAL_TLS_CERT / TEMPORAL_TLS_KEY.
        """
        env = os.environ if environ is None else environ
        collector = cls(name, **kwargs)
        collector.address = env.get(ENV_ADDRESS, "")
        collector.namespace = env.get(ENV_NAMESPACE, "")
        collector.api_key = env.get(ENV_API_KEY, "")
        collector.query = env.get(ENV_QUERY, "")
        collector.cert = env.get(ENV_CERT_DATA) or _read_pem_file(env.get(ENV_CERT_PATH))
        collector.key = env.get(ENV_KEY_DATA) or _read_pem_file(env.get(ENV_KEY_PATH))
        return collector

    @property
    def transport(self) -> Optional[TemporalTransport]:
        return self._transport

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def build_connect_options(self) -> ConnectOptions:
        """Validate configuration and compose dial options. Performs no I/O."""
        if not self.address:
            raise ConfigError("temporal address required")
        if not self.namespace:
            raise ConfigError("temporal namespace required")

        tls: Union[bool, TLSConfig] = False
        if self.cert or self.key:
            tls = load_key_pair(self.cert, self.key)

        if not self.api_key:
            return ConnectOptions(
                target_host=self.address,
                namespace=self.namespace,
                tls=tls,
            )

        if tls is not False:
            logger.warning(
                "collector %r: api key and client certificate both configured; "
                "using api key and ignoring the certificate",
                self.name,
            )
        return ConnectOptions(
            target_host=self.address,
            namespace=self.namespace,
            tls=True,
            api_key=self.api_key,
            rpc_metadata={NAMESPACE_HEADER: self.namespace},
        )

    def build_query(self, app: str, ctx: Optional[OperationContext] = None) -> str:
        """Return the expanded visibility query for a sample of `app`."""
        return self._expand(ctx, compose_query(self.query), app)

    @staticmethod
    def _rpc_timeout(ctx: Optional[OperationContext]) -> Optional[timedelta]:
        """Per-RPC timeout derived from ctx.deadline_ms (None when unbounded)."""
        if ctx is None:
            return None
        remaining = ctx.remaining_ms()
        if remaining is None:
            return None
        return timedelta(milliseconds=remaining)

    def _error_context(self, op: str, ctx: Optional[OperationContext]) -> Dict[str, Any]:
        details: Dict[str, Any] = {
            "operation": op,
            "collector": self.name,
            "namespace": self.namespace,
            "address": self.address,
        }
        if ctx is not None and ctx.request_id:
            details["request_id"] = ctx.request_id
        return details

    # ------------------------------------------------------------------ #
    # Backend hooks
    # ------------------------------------------------------------------ #

    async def _do_open(self, *, ctx: Optional[OperationContext] = None) -> None:
        options = self.build_connect_options()
        logger.debug(
            "dialing temporal at %s (namespace=%s, tls=%s, api_key=%s)",
            options.target_host,
            options.namespace,
            options.tls is not False,
            options.api_key is not None,
        )
        try:
            transport = await self._dial(options)
        except Exception as exc:
            attach_context(exc, self._component, **self._error_context("open", ctx))
            raise
        self._transport = transport

    async def _do_close(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        close = getattr(transport, "close", None)
        if close is None:
            return
        try:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        except Exception:  # noqa: BLE001
            logger.debug("collector %r: transport close failed", self.name, exc_info=True)

    async def _do_collect(
        self,
        app: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> float:
        query = self.build_query(app, ctx)
        try:
            count = await self._transport.count_workflows(query, timeout=self._rpc_timeout(ctx))
        except Exception as exc:
            attach_context(exc, self._component, **self._error_context("collect_metric", ctx))
            raise
        return float(count)

    async def _do_health(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        try:
            ok = await self._transport.check_health(timeout=self._rpc_timeout(ctx))
        except Exception as exc:
            attach_context(exc, self._component, **self._error_context("health", ctx))
            raise
        return {
            "ok": bool(ok),
            "server": "temporal",
            "namespace": self.namespace,
            "address": self.address,
        }


def _read_pem_file(path: Optional[str]) -> bytes:
    if not path:
        return b""
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc.strerror}", details={"path": path}) from exc


__all__ = [
    "NAMESPACE_HEADER",
    "ConnectOptions",
    "TemporalTransport",
    "TemporalClientTransport",
    "DialFunc",
    "dial_temporal",
    "load_key_pair",
    "TemporalMetricCollector",
]
