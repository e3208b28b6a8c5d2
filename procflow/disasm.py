"""
Main disassembly orchestrator.

Loads a binary, recovers the procedure at its entry (and at any extra
entries, incrementally), then writes the outputs and saves the result.
"""

import time
from pathlib import Path
from typing import List, Optional, Sequence

from . import config
from .cache import AnalysisCache
from .engine import X86Decoder
from .loader import BinaryImage, load_image
from .marshal import drop, load, save
from .output import OutputWriter, print_stats
from .procedure import Procedure
from .store import JsonStore
from .worklist import disassemble


class Disassembler:
    """
    Top-level disassembly orchestrator.

    Usage:
        d = Disassembler("path/to/code.bin", entry=0x1000, base_address=0x1000)
        d.run()
    """

    def __init__(self, binary_path: str,
                 entry: Optional[int] = None,
                 extra_entries: Sequence[int] = (),
                 base_address: int = 0,
                 mode: int = config.CS_MODE,
                 name: Optional[str] = None,
                 output_dir: Optional[str] = None,
                 stats_only: bool = False,
                 verbose: bool = False,
                 force: bool = False):
        self.binary_path = binary_path
        self.entry = base_address if entry is None else entry
        self.extra_entries = list(extra_entries)
        self.base_address = base_address
        self.mode = mode
        self.name = name
        self.output_dir = output_dir or config.DEFAULT_OUTPUT_DIR
        self.stats_only = stats_only
        self.verbose = verbose
        self.force = force

        # Initialized during run
        self.image: Optional[BinaryImage] = None
        self.decoder: Optional[X86Decoder] = None
        self.procedure: Optional[Procedure] = None

    def _params(self) -> dict:
        """Run parameters that the cached result depends on."""
        return {
            "entry": self.entry,
            "extra_entries": self.extra_entries,
            "base_address": self.base_address,
            "mode": self.mode,
            "name": self.name,
        }

    def _offset(self, va: int) -> int:
        off = self.image.va_to_offset(va)
        if off is None:
            raise ValueError(
                f"Address 0x{va:08X} is outside the image "
                f"(0x{self.image.base_address:08X}-0x{self.image.end_address:08X})")
        return off

    def run(self) -> bool:
        """
        Execute the full disassembly pipeline.

        Returns True on success.
        """
        t_start = time.time()

        # Phase 1: Load
        if self.verbose:
            print("Phase 1: Loading binary image...")
        self.image = load_image(self.binary_path, self.base_address)
        if self.verbose:
            print(f"  Loaded: {self.image.filepath} ({self.image.size:,d} bytes)")
            print(f"  Base: 0x{self.image.base_address:08X}  "
                  f"Entry: 0x{self.entry:08X}")

        entry_offset = self._offset(self.entry)
        extra_offsets: List[int] = [self._offset(va) for va in self.extra_entries]

        # Check cache
        cache = AnalysisCache(self.output_dir)
        store_path = Path(self.output_dir) / config.STORE_FILENAME
        if not self.force and cache.is_valid(self.binary_path, self._params()):
            self.procedure = load(cache.procedure_id, JsonStore(store_path))
            last_time = cache.get_last_run_time() or 0.0
            print(f"Cache hit - results unchanged (last run: "
                  f"{last_time:.1f}s)")
            if self.stats_only or self.verbose:
                print_stats(self.procedure, self.image)
            return True

        # Phase 2: Recursive descent from the entry
        if self.verbose:
            print("\nPhase 2: Recovering procedure...")
        self.decoder = X86Decoder(self.base_address, self.mode)
        tokens = self.image.raw_data
        self.procedure = disassemble(
            self.decoder, tokens, entry_offset,
            name=self.name or config.PROCEDURE_NAME_FORMAT.format(self.entry),
            verbose=self.verbose)

        # Phase 3: Extra entries extend the same procedure
        if extra_offsets and self.verbose:
            print(f"\nPhase 3: Extending from {len(extra_offsets)} extra entries...")
        for offset in extra_offsets:
            disassemble(self.decoder, tokens, offset,
                        procedure=self.procedure, verbose=self.verbose)

        elapsed = time.time() - t_start

        # Print stats
        if self.stats_only or self.verbose:
            print_stats(self.procedure, self.image)
            print(f"\n  Elapsed: {elapsed:.2f}s")

        # Phase 4: Output
        if not self.stats_only:
            if self.verbose:
                print(f"\nPhase 4: Writing output to {self.output_dir}/...")
            writer = OutputWriter(self.output_dir, self.procedure, self.image)
            writer.write_all(verbose=self.verbose)

            store = JsonStore(store_path)
            if cache.procedure_id is not None:
                # Replace the previous run's records
                drop(cache.procedure_id, store)
            procedure_id = save(self.procedure, store)
            cache.save(self.binary_path, self._params(), procedure_id, elapsed)

            if self.verbose:
                print(f"\n  Output written to {self.output_dir}/")

        print(f"Done in {elapsed:.2f}s")
        return True
