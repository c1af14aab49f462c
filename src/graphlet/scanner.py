"""Graphlet metadata scanner.

One forward pass over an edge stream that splits it into graphlets and
counts the distinct right-hand nodes of each partition:

    partition 1  protocols         (localIP_prot)
    partition 2  local ports       (prot_localPort*)
    partition 3  remote ports      (localPort*_remotePort*)
    partition 4  remote hosts      (remotePort*_remoteIP*)

Within a graphlet the partitions must be contiguous and appear in that
order. Pseudo-edges (edge labels, total bytes) count toward the graphlet's
edge count but never create nodes or move the partition.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import typing as t

from .edges import PARTITION, PSEUDO_RANKS, EdgeStream, Rank, partition_changed, total_bytes
from .errors import FormatError
from .keys import FixedKey, node_key

log = logging.getLogger("graphlet.scanner")

PROGRESS_INTERVAL = 12_501

ProgressCallback = t.Callable[[int, int], None]

# partition -> Graphlet count attribute
_COUNT_FIELDS = {
    1: "protocol_count",
    2: "local_port_count",
    3: "remote_port_count",
    4: "remote_ip_count",
}


@dataclasses.dataclass
class Graphlet:
    number: int
    tag_number: int
    start_index: int
    edge_count: int = 0
    protocol_count: int = 0
    local_port_count: int = 0
    remote_port_count: int = 0
    remote_ip_count: int = 0
    total_bytes: t.Optional[int] = None

    @property
    def end_index(self) -> int:
        return self.start_index + self.edge_count

    def to_dict(self) -> dict[str, t.Any]:
        return dataclasses.asdict(self)


class ScanState(enum.Enum):
    PARTITION_BOUNDARY = "partition_boundary"
    GRAPHLET_BOUNDARY = "graphlet_boundary"
    END_OF_STREAM = "end_of_stream"


class _Scanner:
    def __init__(self, stream: EdgeStream, progress: t.Optional[ProgressCallback], progress_interval: int):
        self.stream = stream
        self.progress = progress
        self.progress_interval = max(1, progress_interval)
        self.graphlets: list[Graphlet] = []
        self.current: t.Optional[Graphlet] = None
        self.partition: t.Optional[int] = None
        self.last_rank: t.Optional[Rank] = None
        self.nodes: set[FixedKey] = set()

    def transition(self, state: ScanState, index: int):
        """Single close-out path for partition, graphlet and stream ends.

        Idempotent: closing an already closed partition or graphlet is a no-op.
        """
        if self.current is not None and self.partition is not None:
            field = _COUNT_FIELDS[self.partition]
            setattr(self.current, field, getattr(self.current, field) + len(self.nodes))
        self.nodes = set()
        self.partition = None
        self.last_rank = None
        if state is ScanState.PARTITION_BOUNDARY or self.current is None:
            return
        self.current.edge_count = index - self.current.start_index
        log.debug("graphlet %d: %s", self.current.number, self.current)
        self.graphlets.append(self.current)
        self.current = None

    def _report(self, done: int, total: int):
        if self.progress is None:
            return
        try:
            self.progress(done, total)
        except Exception:
            log.exception("progress callback failed")

    def run(self) -> list[Graphlet]:
        stream = self.stream
        total = len(stream)
        start = stream.data_start()
        log.info("scanning %d edges (%s)", total - start, stream.source or "memory")

        for i in range(start, total):
            if (i - start) and (i - start) % self.progress_interval == 0:
                log.debug("scanned %d/%d edges", i - start, total - start)
                self._report(i - start, total - start)

            gnr = self.current.number if self.current is not None else len(self.graphlets)
            rank = stream.check_rank(i, graphlet=gnr)
            edge = stream[i]

            if rank in PSEUDO_RANKS:
                self._pseudo_edge(i, rank, edge)
                continue

            if self.current is None or edge.graphlet_number != self.current.tag_number:
                self.transition(ScanState.GRAPHLET_BOUNDARY, i)
                if rank != Rank.LOCALIP_PROT:
                    raise FormatError(
                        f"graphlet starts with {rank.name.lower()}, expected localip_prot",
                        edge_index=i,
                        offset=stream.offset_of(i),
                        graphlet=len(self.graphlets),
                    )
                self.current = Graphlet(number=len(self.graphlets), tag_number=edge.graphlet_number, start_index=i)
            elif partition_changed(rank, self.last_rank):
                if PARTITION[rank] < self.partition:
                    raise FormatError(
                        f"partition {PARTITION[rank]} after partition {self.partition}",
                        edge_index=i,
                        offset=stream.offset_of(i),
                        graphlet=self.current.number,
                    )
                self.transition(ScanState.PARTITION_BOUNDARY, i)

            self.nodes.add(node_key(rank, edge.right.raw))
            self.partition = PARTITION[rank]
            self.last_rank = rank

        self.transition(ScanState.END_OF_STREAM, total)
        self._report(total - start, total - start)

        if not self.graphlets:
            raise FormatError("no flows to display: stream holds no graphlet edges", edge_index=start, offset=stream.offset_of(start))
        log.info("found %d graphlets", len(self.graphlets))
        return self.graphlets

    def _pseudo_edge(self, i: int, rank: Rank, edge):
        if self.current is None:
            raise FormatError(
                f"{rank.name.lower()} edge outside of a graphlet",
                edge_index=i,
                offset=self.stream.offset_of(i),
                graphlet=len(self.graphlets),
            )
        if rank != Rank.TOTALBYTES:
            return
        if self.current.total_bytes is not None:
            raise FormatError(
                "second totalbytes edge in graphlet",
                edge_index=i,
                offset=self.stream.offset_of(i),
                graphlet=self.current.number,
            )
        if edge.graphlet_number != self.current.tag_number:
            log.warning(
                "totalbytes edge %d tagged graphlet %d, attributed to graphlet %d (tag %d)",
                i, edge.graphlet_number, self.current.number, self.current.tag_number,
            )
        self.current.total_bytes = total_bytes(edge)


def scan(stream: EdgeStream, progress: t.Optional[ProgressCallback] = None, progress_interval: int = PROGRESS_INTERVAL) -> list[Graphlet]:
    """Split `stream` into graphlets with per-partition unique node counts.

    `progress(done, total)` is called every `progress_interval` edges and
    once at the end; it is advisory and its failures are only logged.
    """
    return _Scanner(stream, progress, progress_interval).run()


class GraphletIndex:
    """Lookup of scanned graphlets by internal counter or on-disk number."""

    def __init__(self, graphlets: t.Iterable[Graphlet]):
        self._graphlets = list(graphlets)
        self._by_tag: dict[int, Graphlet] = {}
        for g in self._graphlets:
            # on-disk numbers wrap at 65536; keep the first occurrence
            self._by_tag.setdefault(g.tag_number, g)

    @classmethod
    def from_stream(cls, stream: EdgeStream, **kwargs) -> "GraphletIndex":
        return cls(scan(stream, **kwargs))

    def __len__(self) -> int:
        return len(self._graphlets)

    def __iter__(self) -> t.Iterator[Graphlet]:
        return iter(self._graphlets)

    def by_number(self, number: int) -> Graphlet:
        if not 0 <= number < len(self._graphlets):
            raise KeyError(f"no graphlet {number} (have {len(self._graphlets)})")
        return self._graphlets[number]

    def by_tag(self, tag_number: int) -> Graphlet:
        try:
            return self._by_tag[tag_number]
        except KeyError:
            raise KeyError(f"no graphlet tagged {tag_number}") from None
