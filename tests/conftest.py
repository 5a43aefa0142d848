# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the metric collector test suite.

- `collector`: pluggable collector resolved from AUTOSCALE_COLLECTOR
  ("package.module:ClassName"), defaulting to the mock collector.
- `stub_transport` / `stub_dial`: in-memory stand-ins for the Temporal
  frontend, recording queries, timeouts and per-call metadata.
- `temporal_collector`: a TemporalMetricCollector wired to the stubs.
- `key_pair` / `other_key_pair`: freshly generated PEM cert + key pairs.
"""

from __future__ import annotations

import asyncio
import datetime
import importlib
import inspect
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from autoscale_sdk.metrics.temporal_collector import ConnectOptions, TemporalMetricCollector


# ---------------------------------------------------------------------------
# Pluggable collector
# ---------------------------------------------------------------------------

# Environment variable for fully-qualified collector class:
#   AUTOSCALE_COLLECTOR="package.module:ClassName"
COLLECTOR_ENV = "AUTOSCALE_COLLECTOR"
DEFAULT_COLLECTOR = "autoscale_sdk.mock.mock_metric_collector:MockMetricCollector"


class CollectorValidationError(RuntimeError):
    """Raised when the configured collector class cannot be used."""


def _load_class_from_spec(spec: str) -> type:
    """Load a class from a 'package.module:ClassName' string."""
    module_name, _, class_name = spec.partition(":")
    if not module_name or not class_name:
        raise CollectorValidationError(
            f"Invalid collector spec '{spec}'. Expected 'package.module:ClassName'."
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise CollectorValidationError(
            f"Failed to import collector module '{module_name}' for spec '{spec}'."
        ) from exc

    cls = getattr(module, class_name, None)
    if not inspect.isclass(cls):
        raise CollectorValidationError(
            f"Collector class '{class_name}' not found in module '{module_name}'."
        )
    return cls


@pytest.fixture
def collector():
    """Fresh, unopened collector with counts for apps 'a' (3) and 'b' (0)."""
    Collector = _load_class_from_spec(os.getenv(COLLECTOR_ENV, DEFAULT_COLLECTOR))
    try:
        return Collector("conformance", counts={"a": 3, "b": 0})
    except TypeError as exc:
        raise CollectorValidationError(
            f"Collector {Collector.__name__} must accept (name, counts=...)"
        ) from exc


# ---------------------------------------------------------------------------
# Temporal stubs
# ---------------------------------------------------------------------------

class StubTransport:
    """Records every call; returns `count` or raises `error`."""

    def __init__(
        self,
        count: int = 0,
        *,
        error: Optional[BaseException] = None,
        healthy: bool = True,
        delay_s: float = 0.0,
    ) -> None:
        self.count = count
        self.error = error
        self.healthy = healthy
        self.delay_s = delay_s
        self.metadata: Mapping[str, str] = {}
        self.queries: List[str] = []
        self.timeouts: List[Optional[datetime.timedelta]] = []
        self.seen_metadata: List[Dict[str, str]] = []
        self.close_calls = 0

    async def count_workflows(self, query: str, *, timeout=None) -> int:
        self.queries.append(query)
        self.timeouts.append(timeout)
        self.seen_metadata.append(dict(self.metadata))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.count

    async def check_health(self, *, timeout=None) -> bool:
        self.seen_metadata.append(dict(self.metadata))
        if self.error is not None:
            raise self.error
        return self.healthy

    async def close(self) -> None:
        self.close_calls += 1


class StubDial:
    """Dial function double: records ConnectOptions and hands out the transport."""

    def __init__(
        self,
        transport: StubTransport,
        *,
        error: Optional[BaseException] = None,
        delay_s: float = 0.0,
    ) -> None:
        self.transport = transport
        self.error = error
        self.delay_s = delay_s
        self.calls: List[ConnectOptions] = []

    async def __call__(self, options: ConnectOptions) -> StubTransport:
        self.calls.append(options)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        self.transport.metadata = dict(options.rpc_metadata)
        return self.transport

    @property
    def last(self) -> ConnectOptions:
        return self.calls[-1]


@pytest.fixture
def stub_transport() -> StubTransport:
    return StubTransport(count=7)


@pytest.fixture
def stub_dial(stub_transport: StubTransport) -> StubDial:
    return StubDial(stub_transport)


@pytest.fixture
def temporal_collector(stub_dial: StubDial) -> TemporalMetricCollector:
    c = TemporalMetricCollector("temporal-test", dial=stub_dial)
    c.address = "localhost:7233"
    c.namespace = "default"
    return c


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------

def make_key_pair(common_name: str = "autoscale-test") -> Tuple[bytes, bytes]:
    """Self-signed EC certificate and its PKCS#8 private key, both PEM."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return cert_pem, key_pem


@pytest.fixture(scope="session")
def key_pair() -> Tuple[bytes, bytes]:
    return make_key_pair("client")


@pytest.fixture(scope="session")
def other_key_pair() -> Tuple[bytes, bytes]:
    return make_key_pair("other")


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    for marker in (
        "metrics: Metric Collector Protocol V1.0 tests",
        "temporal: Temporal collector tests",
        "cli: Command-line interface tests",
    ):
        config.addinivalue_line("markers", marker)
