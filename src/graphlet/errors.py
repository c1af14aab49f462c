"""Error types raised by the graphlet codec and the flow import pipeline.

All of them are fatal for the operation that raised them; callers decide
whether to abort the run (the CLI maps each class to its own exit code).
"""
from __future__ import annotations

import typing as t


class GraphletError(Exception):
    """Base class for every error raised by this package."""


class FormatError(GraphletError):
    """The edge stream violates the HPG v3 layout.

    `edge_index` and `offset` locate the offending record (offset in bytes
    from the start of the stream), `graphlet` is the internal graphlet
    counter at the time of failure when known.
    """

    def __init__(self, message: str, edge_index: t.Optional[int] = None, offset: t.Optional[int] = None, graphlet: t.Optional[int] = None):
        self.message = message
        self.edge_index = edge_index
        self.offset = offset
        self.graphlet = graphlet
        super().__init__(self._format())

    def _format(self) -> str:
        ctx = []
        if self.graphlet is not None:
            ctx.append(f"graphlet {self.graphlet}")
        if self.edge_index is not None:
            ctx.append(f"edge {self.edge_index}")
        if self.offset is not None:
            ctx.append(f"offset {self.offset}")
        if not ctx:
            return self.message
        return f"{self.message} ({', '.join(ctx)})"


class CapacityError(GraphletError):
    """Pre-sized storage would overflow; results are never truncated silently."""

    def __init__(self, message: str, limit: int):
        self.limit = limit
        super().__init__(f"{message} (limit {limit})")


class SourceError(GraphletError, OSError):
    """Source file missing, empty or unreadable, or target file unwritable."""

    def __init__(self, message: str, path: t.Any = None):
        self.path = path
        if path is not None:
            message = f"{message}: {path}"
        super().__init__(message)
