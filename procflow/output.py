"""
Output writers for the disassembly tool.

Produces:
- JSON databases (summary.json, procedure.json)
- A Graphviz rendering of the control-transfer graph (procedure.dot)
- A human-readable ASM listing in reverse postorder (procedure.asm)
"""

import json
from pathlib import Path
from typing import Dict, List

from .graph import BlockNode
from .loader import BinaryImage
from .model import BasicBlock, Constant
from .procedure import Procedure


def procedure_stats(procedure: Procedure) -> Dict[str, int]:
    """Block, mnemonic and edge counts of a procedure."""
    graph = procedure.control_transfers
    return {
        "blocks": len(procedure.blocks),
        "mnemonics": sum(len(b) for b in procedure.blocks),
        "edges": graph.num_edges(),
        "unresolved_targets": len(list(graph.value_nodes())),
        "reachable_blocks": len(procedure.rev_postorder_indices()),
        "calls": len(procedure.collect_calls()),
    }


class OutputWriter:
    """
    Generates all output files for a recovered procedure.
    """

    def __init__(self, output_dir: str, procedure: Procedure,
                 image: BinaryImage):
        self.output_dir = Path(output_dir)
        self.procedure = procedure
        self.image = image

    def write_all(self, verbose: bool = False) -> None:
        """Write all output files."""
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if verbose:
            print(f"  Writing JSON databases to {self.output_dir}/")

        self._write_summary()
        self._write_procedure_json()

        if verbose:
            print(f"  Writing graph and listing to {self.output_dir}/")

        with open(self.output_dir / "procedure.dot", 'w') as f:
            f.write(self.procedure.to_dot())
        self._write_listing()

    def _va(self, offset: int) -> str:
        return f"0x{self.image.offset_to_va(offset):08X}"

    def _target_name(self, nid: int) -> str:
        """Display name of an edge target."""
        graph = self.procedure.control_transfers
        payload = graph.get_node(nid)
        if isinstance(payload, BlockNode):
            return f"loc_{self.image.offset_to_va(self.procedure.blocks[payload.index].start):08X}"
        if isinstance(payload.value, Constant):
            return self._va(payload.value.value)
        return str(payload.value)

    def _write_summary(self) -> None:
        """Write summary.json with statistics."""
        proc = self.procedure
        entry = proc.entry_block
        summary = {
            "binary": self.image.filepath,
            "base_address": f"0x{self.image.base_address:08X}",
            "procedure": proc.name,
            "uuid": proc.uuid,
            "entry": self._va(entry.start) if entry is not None else None,
        }
        summary.update(procedure_stats(proc))

        with open(self.output_dir / "summary.json", 'w') as f:
            json.dump(summary, f, indent=2)

    def _block_dict(self, index: int, block: BasicBlock) -> dict:
        proc = self.procedure
        graph = proc.control_transfers
        d = {
            "index": index,
            "uuid": block.uuid,
            "start": self._va(block.area.lower),
            "end": self._va(block.area.upper),
            "mnemonics": [
                {
                    "address": self._va(m.area.lower),
                    "size": m.area.size,
                    "opcode": m.opcode,
                    "operands": [str(o) for o in m.operands],
                }
                for m in block.mnemonics
            ],
            "successors": [
                {
                    "target": self._target_name(graph.target(eid)),
                    "guard": str(graph.get_edge(eid).guard),
                }
                for eid in proc.outgoing(index)
            ],
        }
        return d

    def _write_procedure_json(self) -> None:
        """Write procedure.json with blocks and their successors."""
        proc = self.procedure
        data = {
            "name": proc.name,
            "entry": proc.entry,
            "rev_postorder": proc.rev_postorder_indices(),
            "blocks": [self._block_dict(i, b) for i, b in enumerate(proc.blocks)],
            "calls": [
                self._va(c.value) if isinstance(c, Constant) else str(c)
                for c in proc.collect_calls()
            ],
        }
        with open(self.output_dir / "procedure.json", 'w') as f:
            json.dump(data, f, indent=2)

    def _listing_order(self) -> List[int]:
        """Blocks in reverse postorder, then unreachable ones by address."""
        order = self.procedure.rev_postorder_indices()
        seen = set(order)
        rest = sorted((i for i in range(len(self.procedure.blocks)) if i not in seen),
                      key=lambda i: self.procedure.blocks[i].start)
        return order + rest

    def _write_listing(self) -> None:
        """Write a human-readable ASM listing of the procedure."""
        proc = self.procedure
        graph = proc.control_transfers
        order = self._listing_order()
        reachable = set(proc.rev_postorder_indices())

        with open(self.output_dir / "procedure.asm", 'w') as f:
            # Header
            f.write(f"; ============================================================\n")
            f.write(f"; Procedure: {proc.name}\n")
            f.write(f"; Binary: {self.image.filepath}\n")
            f.write(f"; Blocks: {len(proc.blocks)}  Edges: {graph.num_edges()}\n")
            f.write(f"; ============================================================\n")

            for index in order:
                block = proc.blocks[index]
                f.write(f"\nloc_{self.image.offset_to_va(block.start):08X}:\n")
                if index not in reachable:
                    f.write(f"; unreachable from entry\n")

                preds = [self._target_name(graph.source(eid))
                         for eid in proc.incoming(index)]
                if preds:
                    f.write(f"                                        "
                            f"; XREF: {', '.join(preds)}\n")

                for mne in block.mnemonics:
                    raw = self.image.raw_data[mne.area.lower:mne.area.upper]
                    bytes_str = raw.hex()
                    if len(bytes_str) > 20:
                        bytes_str = bytes_str[:20] + ".."
                    ops = ", ".join(str(o) for o in mne.operands)
                    f.write(
                        f"  {self._va(mne.area.lower)}  {bytes_str:<22s}  "
                        f"{mne.opcode:<8s} {ops}\n"
                    )

                for eid in proc.outgoing(index):
                    guard = graph.get_edge(eid).guard
                    cond = "" if guard.is_always else f" if {guard}"
                    f.write(f"  ; -> {self._target_name(graph.target(eid))}{cond}\n")


def print_stats(procedure: Procedure, image: BinaryImage) -> None:
    """Print analysis statistics to stdout."""
    stats = procedure_stats(procedure)
    entry = procedure.entry_block

    print(f"\n{'=' * 60}")
    print(f"  Procedure Recovery Summary")
    print(f"{'=' * 60}")
    print(f"  Binary: {image.filepath}")
    entry_str = f"0x{image.offset_to_va(entry.start):08X}" if entry is not None else "none"
    print(f"  Base: 0x{image.base_address:08X}  Entry: {entry_str}")
    print(f"  Procedure: {procedure.name}")
    print(f"\n  Blocks:             {stats['blocks']:>10,d}")
    print(f"    reachable:        {stats['reachable_blocks']:>10,d}")
    print(f"  Mnemonics:          {stats['mnemonics']:>10,d}")
    print(f"  Control transfers:  {stats['edges']:>10,d}")
    print(f"  Unresolved targets: {stats['unresolved_targets']:>10,d}")
    print(f"  Calls:              {stats['calls']:>10,d}")
    print(f"\n{'=' * 60}")
