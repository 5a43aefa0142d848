# autoscale_sdk/metrics/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Metric Collector Protocol V1 - Public API

This module provides the public interface for metric collectors.
All public types are re-exported here for clean imports.
"""

from autoscale_sdk.metrics.metrics_base import (
    # Protocol version
    METRICS_PROTOCOL_VERSION,
    METRICS_PROTOCOL_ID,

    # Error types
    MetricCollectorError,
    ConfigError,
    CredentialError,
    BadRequest,
    NotOpen,
    DeadlineExceeded,

    # Context and metrics
    OperationContext,
    QueryExpander,
    MetricsSink,
    NoopMetrics,

    # Policies
    DeadlinePolicy,
    NoopDeadline,
    SimpleDeadline,

    # Protocol interface
    LifecycleState,
    MetricCollectorProtocolV1,
    BaseMetricCollector,
)
from autoscale_sdk.metrics.query import (
    RUNNING_EXECUTIONS_QUERY,
    compose_query,
    expand_metric_query,
)
from autoscale_sdk.metrics.temporal_collector import (
    NAMESPACE_HEADER,
    ConnectOptions,
    TemporalTransport,
    TemporalClientTransport,
    TemporalMetricCollector,
    dial_temporal,
    load_key_pair,
)

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
    "RUNNING_EXECUTIONS_QUERY",
    "compose_query",
    "expand_metric_query",
    "NAMESPACE_HEADER",
    "ConnectOptions",
    "TemporalTransport",
    "TemporalClientTransport",
    "TemporalMetricCollector",
    "dial_temporal",
    "load_key_pair",
]
