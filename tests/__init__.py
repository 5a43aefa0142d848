# SPDX-License-Identifier: Apache-2.0
"""
Autoscale SDK Tests

Conformance tests for the Metric Collector Protocol and the Temporal
collector, run against the mock collector and stub Temporal transports.
"""
