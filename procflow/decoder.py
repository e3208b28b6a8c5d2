"""
Decoder contract.

A decoder turns tokens at a position into mnemonics and jump descriptors:

    new_position = decoder.match(position, end, state)

On success the decoder fills `state.mnemonics` (covering
[position, new_position)) and `state.jumps` and returns the new position.
On failure it returns None and leaves `state` untouched. A fresh
DecodeState is created for every call, so no decoder state leaks between
calls or procedures.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from . import config
from .model import Bound, Constant, Guard, JumpDescriptor, Mnemonic, Rvalue, Statement


class DecodeError(ValueError):
    """The decoder reported output that breaks the decoder contract."""


class DecodeState:
    """
    Mutable output of a single decode call.

    `mnemonic()` lays mnemonics out back to back starting at `address`;
    `jump()` records a control transfer of the mnemonic being decoded.
    """

    def __init__(self, tokens: Sequence, address: int, config: Any = None):
        self.tokens = tokens
        self.address = address
        self.config = config
        self.mnemonics: List[Mnemonic] = []
        self.jumps: List[JumpDescriptor] = []

    @property
    def next_address(self) -> int:
        if self.mnemonics:
            return self.mnemonics[-1].area.upper
        return self.address

    def mnemonic(self, length: int, opcode: str,
                 operands: Iterable[Rvalue] = (),
                 statements: Iterable[Statement] = ()) -> Mnemonic:
        if length <= 0:
            raise DecodeError(f"mnemonic {opcode!r} has length {length}")
        start = self.next_address
        mne = Mnemonic(Bound(start, start + length), opcode,
                       tuple(operands), tuple(statements))
        self.mnemonics.append(mne)
        return mne

    def jump(self, target: Union[int, Rvalue],
             guard: Optional[Guard] = None) -> JumpDescriptor:
        if isinstance(target, int):
            target = Constant(target, config.ADDRESS_BITS)
        desc = JumpDescriptor(target, guard or Guard.always())
        self.jumps.append(desc)
        return desc

    def reset(self) -> None:
        self.mnemonics = []
        self.jumps = []


class Decoder:
    """Base class for decoders. Subclasses implement `match`."""

    def match(self, position: int, end: int,
              state: DecodeState) -> Optional[int]:
        raise NotImplementedError


def check_decoded(state: DecodeState, position: int, new_position: int,
                  end: int) -> None:
    """Validate a successful decode against the contract."""
    if not state.mnemonics:
        raise DecodeError(f"decode at 0x{position:X} reported no mnemonics")
    if not position < new_position <= end:
        raise DecodeError(
            f"decode at 0x{position:X} returned position 0x{new_position:X} "
            f"(stream end 0x{end:X})")
    expected = position
    for mne in state.mnemonics:
        if mne.area.lower != expected:
            raise DecodeError(
                f"mnemonic {mne.opcode!r} at 0x{mne.area.lower:X} leaves a gap "
                f"(expected 0x{expected:X})")
        expected = mne.area.upper
    if expected != new_position:
        raise DecodeError(
            f"mnemonics end at 0x{expected:X} but decoder advanced to "
            f"0x{new_position:X}")


Handler = Callable[[DecodeState], bool]


class TableDecoder(Decoder):
    """
    Decoder driven by a table of token -> handler.

    The handler sees the state positioned on the token, emits mnemonics and
    jumps through it and returns True on a match.
    """

    def __init__(self, table: Dict[Any, Handler]):
        self.table = dict(table)

    def match(self, position: int, end: int,
              state: DecodeState) -> Optional[int]:
        if not 0 <= position < min(end, len(state.tokens)):
            return None
        handler = self.table.get(state.tokens[position])
        if handler is None:
            return None
        if not handler(state) or not state.mnemonics:
            state.reset()
            return None
        if state.next_address > end:
            # Instruction runs past the stream end
            state.reset()
            return None
        return state.next_address


def simple_op(opcode: str, *targets: Union[int, Rvalue],
              length: int = 1) -> Handler:
    """Handler for a one-mnemonic instruction with unconditional jumps."""
    def handler(state: DecodeState) -> bool:
        state.mnemonic(length, opcode)
        for target in targets:
            state.jump(target)
        return True
    return handler
