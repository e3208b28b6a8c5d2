"""
Binary image loader for raw code blobs.

Loads a flat binary and maps it at a base address, providing the
BinaryImage interface used by the disassembly pipeline.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class BinaryImage:
    """
    A raw binary mapped at `base_address`.

    Token positions used by the decoder are file offsets; virtual
    addresses are base_address + offset.
    """
    filepath: str
    raw_data: bytes
    base_address: int = 0

    @property
    def size(self) -> int:
        return len(self.raw_data)

    @property
    def end_address(self) -> int:
        return self.base_address + len(self.raw_data)

    def contains_va(self, va: int) -> bool:
        return self.base_address <= va < self.end_address

    def va_to_offset(self, va: int) -> Optional[int]:
        """Convert a virtual address to a file offset."""
        if not self.contains_va(va):
            return None
        return va - self.base_address

    def offset_to_va(self, offset: int) -> int:
        return self.base_address + offset

    def read_bytes(self, va: int, size: int) -> Optional[bytes]:
        """Read bytes at a virtual address."""
        off = self.va_to_offset(va)
        if off is None or off + size > len(self.raw_data):
            return None
        return self.raw_data[off:off + size]


def parse_address(s: str) -> int:
    """Parse an address like '0x00011000' or '4096'."""
    return int(s, 0)


def load_image(path: str, base_address: int = 0) -> BinaryImage:
    """
    Load a raw binary.

    Args:
        path: Path to the binary file.
        base_address: Virtual address of the first byte.

    Returns:
        A BinaryImage over the file contents.
    """
    bin_file = Path(path)
    if not bin_file.exists():
        raise FileNotFoundError(f"Binary file not found: {path}")
    if base_address < 0:
        raise ValueError(f"Invalid base address: {base_address:#x}")

    return BinaryImage(
        filepath=str(bin_file),
        raw_data=bin_file.read_bytes(),
        base_address=base_address,
    )
