"""
Block splitting.

Keeps every block single-entry: when a control transfer lands inside a
block, the block is split so that the target becomes the first mnemonic
of a block of its own.

Boundary conflicts (a target strictly inside a mnemonic) are resolved by
letting the later-discovered boundary win: the straddling mnemonic is
narrowed to end at the target, the rest of the block is dropped together
with its outgoing edges, and the caller re-decodes from the target.
"""

from . import config
from .graph import ValueNode
from .model import BasicBlock, Constant, Guard, Mnemonic
from .procedure import Procedure


def split_block(procedure: Procedure, index: int, at: int) -> int:
    """
    Split block `index` so that a new block starts at `at`.

    The block keeps the mnemonics before `at` and its incoming edges. A new
    block takes the rest along with all outgoing edges, and the prefix falls
    through to it. Returns the arena index of the new block.
    """
    block = procedure.blocks[index]
    cut = block.index_of(at)
    if cut is None or cut == 0 or block.mnemonics[cut].area.lower != at:
        raise ValueError(
            f"0x{at:X} is not an inner mnemonic boundary of block {index}")

    graph = procedure.control_transfers
    prefix_node = procedure.node_of(index)
    outgoing = list(graph.outgoing(prefix_node))

    suffix = BasicBlock(block.mnemonics[cut:])
    block.mnemonics = block.mnemonics[:cut]
    suffix_index = procedure.add_block(suffix)
    suffix_node = procedure.node_of(suffix_index)

    for eid in outgoing:
        graph.move_source(eid, suffix_node)
    graph.add_edge(prefix_node, suffix_node, Guard.always())
    return suffix_index


def cut_block(procedure: Procedure, index: int, at: int) -> Mnemonic:
    """
    Resolve a target strictly inside a mnemonic of block `index`.

    Narrows that mnemonic to end at `at`, drops the mnemonics after it and
    every outgoing edge of the block, and adds an unconditional edge to the
    constant `at`. Returns the narrowed mnemonic.
    """
    block = procedure.blocks[index]
    pos = block.index_of(at)
    if pos is None or block.mnemonics[pos].area.lower == at:
        raise ValueError(f"0x{at:X} is not inside a mnemonic of block {index}")

    graph = procedure.control_transfers
    node = procedure.node_of(index)
    for eid in list(graph.outgoing(node)):
        target = graph.target(eid)
        graph.remove_edge(eid)
        if (isinstance(graph.get_node(target), ValueNode)
                and not list(graph.incoming(target))
                and not list(graph.outgoing(target))):
            graph.remove_node(target)

    narrowed = block.mnemonics[pos].narrowed(at)
    block.mnemonics = block.mnemonics[:pos] + [narrowed]
    target = procedure.value_node(Constant(at, config.ADDRESS_BITS))
    graph.add_edge(node, target, Guard.always())
    return narrowed
