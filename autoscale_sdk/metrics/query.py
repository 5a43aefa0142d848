# autoscale_sdk/metrics/query.py
# SPDX-License-Identifier: Apache-2.0
"""
Query helpers for workflow-count metrics.

Two steps turn a configured filter into the query sent to the backend:

1. `compose_query` ANDs the filter fragment with the fixed base predicate
   that selects running executions.
2. A query expander substitutes the sampled application into placeholders.
   `expand_metric_query` is the default expander; hosts may inject their own.

Neither step parses or validates the query language; fragments are
concatenated as-is.
"""

from __future__ import annotations

from typing import List, Mapping, Optional, Tuple

from autoscale_sdk.metrics.metrics_base import OperationContext

RUNNING_EXECUTIONS_QUERY = 'ExecutionStatus="Running"'

APP_NAME_VAR = "APP_NAME"

_SPECIAL_VARS = frozenset("*#$@!?-0123456789")


def compose_query(query_filter: Optional[str] = None) -> str:
    """
    Build the execution filter for a sample.

        >>> compose_query()
        'ExecutionStatus="Running"'
        >>> compose_query('TaskQueue="${APP_NAME}"')
        'ExecutionStatus="Running" AND (TaskQueue="${APP_NAME}")'
    """
    query = RUNNING_EXECUTIONS_QUERY
    if query_filter:
        query += " AND (" + query_filter + ")"
    return query


def _shell_name(s: str) -> Tuple[str, int]:
    """
    Read the variable name after a "$"; returns (name, width consumed).

    An empty name with a non-zero width is bad syntax ("${}" or an
    unterminated "${") and the consumed characters are dropped.
    """
    if s[0] == "{":
        if len(s) > 2 and s[1] in _SPECIAL_VARS and s[2] == "}":
            return s[1], 3
        end = s.find("}", 1)
        if end == -1:
            return "", 1
        if end == 1:
            return "", 2
        return s[1:end], end + 1
    if s[0] in _SPECIAL_VARS:
        return s[0], 1
    i = 0
    while i < len(s) and (s[i] == "_" or (s[i].isascii() and s[i].isalnum())):
        i += 1
    return s[:i], i


def expand_variables(query: str, variables: Mapping[str, str]) -> str:
    """
    Shell-style expansion of `$NAME` and `${NAME}`.

    Unknown variables expand to the empty string. Single-character special
    variables (`$1`, `$?`, `$-`, `$$` ...) are recognised and expand like any
    other name, so `$1x` becomes `x`. A "$" followed by anything else, or at
    the end of the query, is kept.
    """
    out: List[str] = []
    i = 0
    j = 0
    n = len(query)
    while j < n:
        if query[j] == "$" and j + 1 < n:
            out.append(query[i:j])
            name, width = _shell_name(query[j + 1:])
            if name:
                out.append(variables.get(name, ""))
            elif width == 0:
                out.append("$")
            j += width
            i = j + 1
        j += 1
    out.append(query[i:])
    return "".join(out)


def expand_metric_query(
    ctx: Optional[OperationContext],
    query: str,
    app: str,
) -> str:
    """
    Default host expansion: replace `$APP_NAME` / `${APP_NAME}` with `app`.

    `ctx` is accepted so custom expanders can read per-call attributes;
    this implementation ignores it.
    """
    return expand_variables(query, {APP_NAME_VAR: app})


__all__ = [
    "RUNNING_EXECUTIONS_QUERY",
    "APP_NAME_VAR",
    "compose_query",
    "expand_variables",
    "expand_metric_query",
]
