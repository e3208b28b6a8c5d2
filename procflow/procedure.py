"""
Procedures: an arena of basic blocks plus their control-transfer graph.

Blocks are addressed by their index in `Procedure.blocks`. Graph nodes and
the entry refer to blocks by index, so a block can be rewritten in place
(e.g. truncated by a split) without invalidating anything pointing at it.
"""

import uuid
from bisect import bisect_right, insort
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .graph import BlockNode, ControlTransferGraph, InvalidHandle, ValueNode
from .model import BasicBlock, Constant, Rvalue

BlockRef = Union[int, BasicBlock]


class InvariantError(AssertionError):
    """A procedure violates one of the structural invariants."""


class Procedure:
    """A procedure under (or after) recovery."""

    def __init__(self, name: str, uuid_: Optional[str] = None):
        self.name = name
        self.uuid = uuid_ or str(uuid.uuid4())
        self.entry: Optional[int] = None
        self.blocks: List[BasicBlock] = []
        self.control_transfers = ControlTransferGraph()

        # Block start offset -> arena index, and the sorted starts
        self._starts: Dict[int, int] = {}
        self._start_list: List[int] = []

    # -- arena ---------------------------------------------------------------

    def add_block(self, block: BasicBlock, with_node: bool = True) -> int:
        """
        Append a block to the arena and give it a graph node.

        With `with_node=False` the caller adds the BlockNode itself, e.g. to
        rebuild a saved node order.
        """
        start = block.start
        if start in self._starts:
            raise InvariantError(f"a block already starts at 0x{start:X}")
        index = len(self.blocks)
        self.blocks.append(block)
        self._starts[start] = index
        insort(self._start_list, start)
        if with_node:
            self.control_transfers.add_node(BlockNode(index))
        return index

    def index_of(self, block: BlockRef) -> int:
        if isinstance(block, int):
            if not 0 <= block < len(self.blocks):
                raise InvalidHandle(f"no block {block}")
            return block
        for i, candidate in enumerate(self.blocks):
            if candidate is block:
                return i
        raise InvalidHandle(f"{block!r} is not part of {self.name}")

    def node_of(self, block: BlockRef) -> int:
        nid = self.control_transfers.find_node(BlockNode(self.index_of(block)))
        if nid is None:
            raise InvalidHandle(f"block {block!r} has no graph node")
        return nid

    def value_node(self, value: Rvalue) -> int:
        return self.control_transfers.add_node(ValueNode(value))

    @property
    def entry_block(self) -> Optional[BasicBlock]:
        if self.entry is None:
            return None
        return self.blocks[self.entry]

    def block_starting_at(self, offset: int) -> Optional[int]:
        return self._starts.get(offset)

    def next_block_start(self, offset: int) -> Optional[int]:
        """Smallest block start strictly greater than `offset`."""
        i = bisect_right(self._start_list, offset)
        if i < len(self._start_list):
            return self._start_list[i]
        return None

    def locate(self, offset: int) -> Optional[Tuple[int, int]]:
        """(block index, mnemonic index) of the mnemonic covering `offset`."""
        i = bisect_right(self._start_list, offset) - 1
        if i < 0:
            return None
        index = self._starts[self._start_list[i]]
        mne_index = self.blocks[index].index_of(offset)
        if mne_index is None:
            return None
        return index, mne_index

    def find_block_at(self, offset: int) -> Optional[BasicBlock]:
        loc = self.locate(offset)
        if loc is None:
            return None
        return self.blocks[loc[0]]

    # -- graph queries -------------------------------------------------------

    def incoming(self, block: BlockRef) -> List[int]:
        return list(self.control_transfers.incoming(self.node_of(block)))

    def outgoing(self, block: BlockRef) -> List[int]:
        return list(self.control_transfers.outgoing(self.node_of(block)))

    def node_content(self, nid: int) -> Union[BasicBlock, Rvalue]:
        """The block or value a graph node stands for."""
        payload = self.control_transfers.get_node(nid)
        if isinstance(payload, BlockNode):
            return self.blocks[payload.index]
        return payload.value

    def successors(self, block: BlockRef) -> List[Union[BasicBlock, Rvalue]]:
        graph = self.control_transfers
        return [self.node_content(graph.target(e)) for e in self.outgoing(block)]

    def predecessors(self, block: BlockRef) -> List[Union[BasicBlock, Rvalue]]:
        graph = self.control_transfers
        return [self.node_content(graph.source(e)) for e in self.incoming(block)]

    # -- ordering ------------------------------------------------------------

    def rev_postorder_indices(self) -> List[int]:
        """
        Reverse postorder of the blocks reachable from the entry.

        Depth-first, following outgoing edges in insertion order and only
        through block nodes.
        """
        if self.entry is None:
            return []
        graph = self.control_transfers
        root = self.node_of(self.entry)
        visited = {root}
        postorder: List[int] = []
        stack: List[Tuple[int, Iterator[int]]] = [(root, graph.outgoing(root))]

        while stack:
            nid, edges = stack[-1]
            for eid in edges:
                succ = graph.target(eid)
                if succ in visited:
                    continue
                if not isinstance(graph.get_node(succ), BlockNode):
                    continue
                visited.add(succ)
                stack.append((succ, graph.outgoing(succ)))
                break
            else:
                stack.pop()
                postorder.append(graph.get_node(nid).index)

        postorder.reverse()
        return postorder

    def rev_postorder(self) -> List[BasicBlock]:
        return [self.blocks[i] for i in self.rev_postorder_indices()]

    # -- misc ----------------------------------------------------------------

    def collect_calls(self) -> List[Rvalue]:
        """Targets of all `call` statements, in block order."""
        calls = []
        for block in self.blocks:
            for mne in block.mnemonics:
                for stmt in mne.statements:
                    if stmt.op == "call" and stmt.operands:
                        calls.append(stmt.operands[0])
        return calls

    def verify(self) -> None:
        """Raise InvariantError if the procedure is not well formed."""
        graph = self.control_transfers
        spans = []
        for index, block in enumerate(self.blocks):
            if not block.mnemonics:
                raise InvariantError(f"block {index} is empty")
            for prev, mne in zip(block.mnemonics, block.mnemonics[1:]):
                if prev.area.upper != mne.area.lower:
                    raise InvariantError(
                        f"block {index} has a gap at 0x{prev.area.upper:X}")
            if self._starts.get(block.start) != index:
                raise InvariantError(
                    f"block {index} at 0x{block.start:X} is not indexed")
            if graph.find_node(BlockNode(index)) is None:
                raise InvariantError(f"block {index} has no graph node")
            spans.append((block.area.lower, block.area.upper, index))

        spans.sort()
        for (_, upper, a), (lower, _, b) in zip(spans, spans[1:]):
            if lower < upper:
                raise InvariantError(f"blocks {a} and {b} overlap")

        for nid in graph.value_nodes():
            value = graph.get_node(nid).value
            if not isinstance(value, Constant) or not list(graph.incoming(nid)):
                continue
            loc = self.locate(value.value)
            if loc is not None:
                raise InvariantError(
                    f"constant target 0x{value.value:X} lands inside "
                    f"block {loc[0]}")

        if self.entry is not None and graph.find_node(BlockNode(self.entry)) is None:
            raise InvariantError("entry is not part of the graph")

    def to_dot(self) -> str:
        """Graphviz rendering of the control-transfer graph."""
        graph = self.control_transfers
        lines = ["digraph G {"]
        for nid in graph.nodes():
            payload = graph.get_node(nid)
            if isinstance(payload, BlockNode):
                block = self.blocks[payload.index]
                rows = [f"<tr><td>0x{block.area.lower:X}:0x{block.area.upper:X}</td></tr>"]
                for mne in block.mnemonics:
                    rows.append(f'<tr><td align="left">{_escape(str(mne))}</td></tr>')
                lines.append(
                    f'  n{nid} [label=<<table border="0">{"".join(rows)}'
                    f'</table>>,shape=record];')
            else:
                lines.append(
                    f'  n{nid} [label="{_escape(str(payload.value))}",shape=circle];')
        for eid in graph.edges():
            edge = graph.get_edge(eid)
            lines.append(
                f'  n{edge.source} -> n{edge.target} [label="{_escape(str(edge.guard))}"];')
        lines.append("}")
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return (f"Procedure({self.name!r}, {len(self.blocks)} blocks, "
                f"{self.control_transfers.num_edges()} edges)")


def _escape(text: str) -> str:
    return (text.replace("&", "&amp;").replace("<", "&lt;")
            .replace(">", "&gt;").replace('"', "&quot;"))


def incoming(procedure: Procedure, block: BlockRef) -> List[int]:
    """Handles of the edges entering `block`."""
    return procedure.incoming(block)


def outgoing(procedure: Procedure, block: BlockRef) -> List[int]:
    """Handles of the edges leaving `block`."""
    return procedure.outgoing(block)
