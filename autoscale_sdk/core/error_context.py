# autoscale_sdk/core/error_context.py
# SPDX-License-Identifier: Apache-2.0

"""
Error context utilities for metric collectors.

Collectors re-raise transport and service errors unmodified so that callers
see exactly what the backend reported. To still make those errors useful in
logs and post-mortems, this module attaches debugging metadata to the
exception object as attributes:

- `__autoscale_context__` (canonical)
- `__<component>_context__` (component-specific, e.g.
  `__metrics_temporal_context__`)

The exception's type, message and traceback are left untouched.

Typical usage
-------------

    from autoscale_sdk.core.error_context import attach_context

    try:
        count = await transport.count_workflows(query)
    except Exception as exc:
        attach_context(
            exc,
            component="metrics_temporal",
            operation="collect_metric",
            namespace="default",
        )
        raise

Later, in error handlers:

    except Exception as exc:
        context = get_context(exc)
        logger.error("sample failed", extra={"operation": context.get("operation")})

Multiple calls merge rather than overwrite, so several layers (collector,
host polling loop) can each contribute keys.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

logger = logging.getLogger(__name__)

_CANONICAL_ATTR = "__autoscale_context__"


def _component_attr(component: str) -> str:
    return f"__{component}_context__"


def attach_context(
    exc: BaseException,
    component: str,
    **context: Any,
) -> None:
    """
    Attach debugging context to an exception.

    If context already exists on the exception, the new keys are merged in.
    The `component` key is set on first attachment and never overwritten.

    Parameters
    ----------
    exc:
        The exception to enrich. Any BaseException is accepted.

    component:
        Origin of the context, e.g. "metrics_temporal" or "autoscaler_loop".
        Also used to build the component-specific attribute name.

    **context:
        Arbitrary keys. Common ones are `operation`, `namespace`,
        `request_id` and `app`. Never pass credentials here.

    Attachment is best-effort: a failure is logged at debug level and the
    original exception is left to propagate.
    """
    try:
        merged: MutableMapping[str, Any] = {}

        existing = getattr(exc, _CANONICAL_ATTR, None)
        if isinstance(existing, Mapping):
            merged.update(existing)

        merged.setdefault("component", component)
        merged.update(context)

        setattr(exc, _CANONICAL_ATTR, merged)
        setattr(exc, _component_attr(component), merged)
    except Exception as attachment_error:  # noqa: BLE001
        # Exceptions with __slots__ or read-only attributes end up here.
        logger.debug(
            "Failed to attach error context to %s: %s",
            type(exc).__name__,
            attachment_error,
            extra={"component": component},
        )


def get_context(
    exc: BaseException,
    *,
    component: Optional[str] = None,
) -> Mapping[str, Any]:
    """
    Retrieve attached context from an exception.

    When `component` is given, the component-specific attribute is tried
    first. Returns an empty dict if nothing is attached.
    """
    if component:
        ctx = getattr(exc, _component_attr(component), None)
        if isinstance(ctx, Mapping):
            return ctx

    ctx = getattr(exc, _CANONICAL_ATTR, None)
    if isinstance(ctx, Mapping):
        return ctx

    return {}


def has_context(
    exc: BaseException,
    *,
    component: Optional[str] = None,
) -> bool:
    """Return True if the exception carries non-empty context."""
    return len(get_context(exc, component=component)) > 0


__all__ = [
    "attach_context",
    "get_context",
    "has_context",
]
