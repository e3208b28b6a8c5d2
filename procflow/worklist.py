"""
Worklist driver: recovers a procedure by recursive descent from an entry.

Usage:
    proc = disassemble(decoder, tokens, 0)
    disassemble(decoder, tokens, 0x40, procedure=proc)   # extend in place
"""

import heapq
from typing import Any, List, Optional, Sequence, Set

from . import config
from .builder import Run, build_run
from .decoder import Decoder
from .model import BasicBlock, Constant, JumpDescriptor
from .procedure import Procedure
from .splitter import cut_block, split_block


class _Worklist:
    """State of one disassemble call."""

    def __init__(self, procedure: Procedure, decoder: Decoder,
                 tokens: Sequence, decoder_config: Any, verbose: bool):
        self.procedure = procedure
        self.decoder = decoder
        self.tokens = tokens
        self.end = len(tokens)
        self.decoder_config = decoder_config
        self.verbose = verbose

        self._pending: List[int] = []
        self._queued: Set[int] = set()

    def push(self, addr: int) -> None:
        if addr not in self._queued:
            self._queued.add(addr)
            heapq.heappush(self._pending, addr)

    def run(self) -> None:
        while self._pending:
            self.visit(heapq.heappop(self._pending))

    def visit(self, addr: int) -> None:
        proc = self.procedure
        loc = proc.locate(addr)

        if loc is not None:
            index, mne_index = loc
            mne = proc.blocks[index].mnemonics[mne_index]
            if mne.area.lower == addr:
                if mne_index > 0:
                    suffix = split_block(proc, index, addr)
                    if self.verbose:
                        print(f"  split block 0x{proc.blocks[index].start:08X} "
                              f"at 0x{addr:08X} (block {suffix})")
                self.resolve(addr)
                return

            narrowed = cut_block(proc, index, addr)
            if self.verbose:
                print(f"  boundary conflict at 0x{addr:08X}: "
                      f"narrowed {narrowed.opcode} to {narrowed.area}")

        run = build_run(self.decoder, self.tokens, addr, self.end, proc,
                        self.decoder_config)
        if run is None:
            if self.verbose:
                print(f"  nothing decoded at 0x{addr:08X}")
            return
        self.add_run(run)

    def add_run(self, run: Run) -> None:
        proc = self.procedure
        index = proc.add_block(BasicBlock(run.mnemonics))
        if self.verbose:
            print(f"  block 0x{run.start:08X}-0x{run.end:08X} "
                  f"({len(run.mnemonics)} mnemonics, {len(run.jumps)} jumps)")
            if run.narrowed is not None:
                print(f"  boundary conflict at 0x{run.end:08X}: "
                      f"narrowed {run.narrowed.opcode} to {run.narrowed.area}")

        self.resolve(run.start)
        source = proc.node_of(index)
        for desc in run.jumps:
            self.link(source, desc)

    def link(self, source: int, desc: JumpDescriptor) -> None:
        """Record an edge for one jump descriptor."""
        proc = self.procedure
        graph = proc.control_transfers
        target = desc.target

        if isinstance(target, Constant):
            index = proc.block_starting_at(target.value)
            if index is not None:
                graph.add_edge(source, proc.node_of(index), desc.guard)
                return
            self.push(target.value)

        graph.add_edge(source, proc.value_node(target), desc.guard)

    def resolve(self, addr: int) -> None:
        """Re-point edges into constant nodes at `addr` to the block there."""
        proc = self.procedure
        index = proc.block_starting_at(addr)
        if index is None:
            return
        graph = proc.control_transfers
        block_node = proc.node_of(index)
        for nid in graph.constant_nodes_at(addr):
            for eid in list(graph.incoming(nid)):
                graph.retarget(eid, block_node)
            if not list(graph.outgoing(nid)):
                graph.remove_node(nid)

    def stale_targets(self) -> List[int]:
        """Constant targets that now fall inside a block without starting one."""
        proc = self.procedure
        graph = proc.control_transfers
        stale = []
        for nid in graph.value_nodes():
            value = graph.get_node(nid).value
            if not isinstance(value, Constant) or not list(graph.incoming(nid)):
                continue
            if proc.locate(value.value) is not None:
                stale.append(value.value)
        return sorted(stale)

    def resolve_stale(self) -> None:
        """
        Revisit constant targets covered by blocks decoded after them.

        Covers targets left over from earlier calls and targets visited
        before a lower-addressed run grew over them.
        """
        while True:
            stale = self.stale_targets()
            if not stale:
                break
            for addr in stale:
                if self.verbose:
                    print(f"  revisiting stale target 0x{addr:08X}")
                self._queued.discard(addr)
                self.push(addr)
            self.run()


def disassemble(decoder: Decoder, tokens: Sequence, entry: int,
                procedure: Optional[Procedure] = None,
                name: Optional[str] = None,
                decoder_config: Any = None,
                verbose: bool = False) -> Procedure:
    """
    Recover the procedure reachable from `entry`.

    Builds a new procedure, or extends `procedure` in place when given. The
    entry of a procedure is set once, by the first call that decodes a
    block at its entry address.
    """
    if procedure is None:
        procedure = Procedure(name or config.PROCEDURE_NAME_FORMAT.format(entry))
    elif name is not None:
        procedure.name = name

    if verbose:
        print(f"Disassembling {procedure.name} from 0x{entry:08X} "
              f"({len(tokens)} tokens)")

    work = _Worklist(procedure, decoder, tokens, decoder_config, verbose)
    work.push(entry)
    work.run()
    work.resolve_stale()

    if procedure.entry is None:
        procedure.entry = procedure.block_starting_at(entry)

    procedure.verify()
    if verbose:
        print(f"  {len(procedure.blocks)} blocks, "
              f"{procedure.control_transfers.num_edges()} edges")
    return procedure
