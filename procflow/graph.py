"""
Control-transfer graph.

A directed multigraph whose nodes are either basic blocks (by arena index)
or value expressions for destinations that are not decoded blocks. Edges
carry a Guard. Parallel edges are kept; nodes are deduplicated by payload.
"""

from bisect import insort
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Union

from .model import Constant, Guard, Rvalue


class InvalidHandle(LookupError):
    """A node or edge handle that is not part of the graph."""


@dataclass(frozen=True)
class BlockNode:
    """Node standing for the basic block at `index` in the procedure arena."""
    index: int


@dataclass(frozen=True)
class ValueNode:
    """Node standing for a destination that is not a decoded block."""
    value: Rvalue


Node = Union[BlockNode, ValueNode]


@dataclass
class Edge:
    source: int
    target: int
    guard: Guard


class ControlTransferGraph:
    """
    Node and edge handles are integers allocated in insertion order.

    Iteration over nodes, edges, incoming and outgoing edges always follows
    insertion order, which keeps traversals deterministic.
    """

    def __init__(self):
        self._nodes: Dict[int, Node] = {}
        self._node_ids: Dict[Node, int] = {}
        self._edges: Dict[int, Edge] = {}
        self._out: Dict[int, List[int]] = {}
        self._in: Dict[int, List[int]] = {}
        self._next_node = 0
        self._next_edge = 0

    # -- nodes -------------------------------------------------------------

    def add_node(self, payload: Node) -> int:
        """Insert a node, or return the existing handle for `payload`."""
        if not isinstance(payload, (BlockNode, ValueNode)):
            raise TypeError(f"not a graph node: {payload!r}")
        existing = self._node_ids.get(payload)
        if existing is not None:
            return existing
        nid = self._next_node
        self._next_node += 1
        self._nodes[nid] = payload
        self._node_ids[payload] = nid
        self._out[nid] = []
        self._in[nid] = []
        return nid

    def find_node(self, payload: Node) -> Optional[int]:
        return self._node_ids.get(payload)

    def get_node(self, nid: int) -> Node:
        try:
            return self._nodes[nid]
        except KeyError:
            raise InvalidHandle(f"no node {nid}") from None

    def remove_node(self, nid: int) -> None:
        """Remove a node that has no edges left."""
        payload = self.get_node(nid)
        if self._in[nid] or self._out[nid]:
            raise InvalidHandle(f"node {nid} still has edges")
        del self._nodes[nid]
        del self._node_ids[payload]
        del self._in[nid]
        del self._out[nid]

    def nodes(self) -> Iterator[int]:
        return iter(list(self._nodes))

    def value_nodes(self) -> Iterator[int]:
        for nid, payload in list(self._nodes.items()):
            if isinstance(payload, ValueNode):
                yield nid

    def constant_nodes_at(self, offset: int) -> List[int]:
        """Value nodes holding a Constant equal to `offset`."""
        return [
            nid for nid, payload in self._nodes.items()
            if isinstance(payload, ValueNode)
            and isinstance(payload.value, Constant)
            and payload.value.value == offset
        ]

    def num_nodes(self) -> int:
        return len(self._nodes)

    # -- edges -------------------------------------------------------------

    def add_edge(self, source: int, target: int,
                 guard: Optional[Guard] = None) -> int:
        self.get_node(source)
        self.get_node(target)
        eid = self._next_edge
        self._next_edge += 1
        self._edges[eid] = Edge(source, target, guard or Guard.always())
        self._out[source].append(eid)
        self._in[target].append(eid)
        return eid

    def get_edge(self, eid: int) -> Edge:
        try:
            return self._edges[eid]
        except KeyError:
            raise InvalidHandle(f"no edge {eid}") from None

    def source(self, eid: int) -> int:
        return self.get_edge(eid).source

    def target(self, eid: int) -> int:
        return self.get_edge(eid).target

    def remove_edge(self, eid: int) -> None:
        edge = self.get_edge(eid)
        self._out[edge.source].remove(eid)
        self._in[edge.target].remove(eid)
        del self._edges[eid]

    def retarget(self, eid: int, target: int) -> None:
        """Point an existing edge at another node, keeping its handle."""
        edge = self.get_edge(eid)
        self.get_node(target)
        self._in[edge.target].remove(eid)
        insort(self._in[target], eid)
        edge.target = target

    def move_source(self, eid: int, source: int) -> None:
        """Make an existing edge originate from another node."""
        edge = self.get_edge(eid)
        self.get_node(source)
        self._out[edge.source].remove(eid)
        insort(self._out[source], eid)
        edge.source = source

    def incoming(self, nid: int) -> Iterator[int]:
        self.get_node(nid)
        return iter(list(self._in[nid]))

    def outgoing(self, nid: int) -> Iterator[int]:
        self.get_node(nid)
        return iter(list(self._out[nid]))

    def edges(self) -> Iterator[int]:
        return iter(list(self._edges))

    def num_edges(self) -> int:
        return len(self._edges)

    def __repr__(self) -> str:
        return (f"ControlTransferGraph({self.num_nodes()} nodes, "
                f"{self.num_edges()} edges)")
