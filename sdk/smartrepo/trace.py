"""
Trace entries embedded in records.

Every write leaves an audit entry in the record's trace field. An entry is
built from, in increasing precedence:
- the caller's per-operation merge object
- the repository's fixed trace context
- the operation kind (``_op``) and timestamp (``_at``)

Invariants:
    - ``_op`` and ``_at`` are never overwritten by caller data
    - History is ordered oldest first
    - A bounded history never exceeds its limit and always keeps the newest entry
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import TraceStrategy

OP_KEY = "_op"
AT_KEY = "_at"


class TraceOp(str, Enum):
    """Operation kinds recorded in trace entries."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class TracePush:
    """Append entries to a trace history, keeping at most ``keep_last``.

    Attributes:
        entries: Entries to append, oldest first
        keep_last: History cap after the append (None keeps everything)
    """

    entries: tuple[dict[str, Any], ...]
    keep_last: int | None = None

    def apply(self, history: Any) -> list[dict[str, Any]]:
        existing = list(history) if isinstance(history, list) else []
        return trim_history(existing + list(self.entries), self.keep_last)


def trim_history(
    history: Sequence[dict[str, Any]], limit: int | None
) -> list[dict[str, Any]]:
    """Drop the oldest entries until at most ``limit`` remain."""
    if limit is None or len(history) <= limit:
        return list(history)
    return list(history[len(history) - limit :])


class TraceBuilder:
    """Builds trace entries and history updates for one trace strategy.

    Example:
        >>> builder = TraceBuilder(TraceStrategy.BOUNDED, limit=2, context={"actor": "u1"})
        >>> entry = builder.entry(TraceOp.UPDATE, at=1700000000000)
        >>> builder.push(entry).apply([{"_op": "create"}, {"_op": "update"}])[-1] == entry
        True
    """

    def __init__(
        self,
        strategy: TraceStrategy,
        limit: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.strategy = strategy
        self.limit = limit if strategy == TraceStrategy.BOUNDED else None
        self.context = dict(context or {})

    def entry(
        self,
        op: TraceOp,
        at: int,
        merge_trace: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        entry: dict[str, Any] = dict(merge_trace or {})
        entry.update(self.context)
        entry[OP_KEY] = TraceOp(op).value
        entry[AT_KEY] = at
        return entry

    def initial(self, entry: dict[str, Any]) -> Any:
        """Trace field value for a freshly created record."""
        if self.strategy == TraceStrategy.LATEST:
            return entry
        return [entry]

    def push(self, entry: dict[str, Any]) -> TracePush:
        return TracePush(entries=(entry,), keep_last=self.limit)
