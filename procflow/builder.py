"""
Run builder: grows one basic block by repeated decode calls.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from . import config
from .decoder import Decoder, DecodeState, check_decoded
from .model import Constant, JumpDescriptor, Mnemonic
from .procedure import Procedure


@dataclass
class Run:
    """Mnemonics of a new block and the control transfers leaving it."""
    start: int
    end: int
    mnemonics: List[Mnemonic] = field(default_factory=list)
    jumps: List[JumpDescriptor] = field(default_factory=list)
    # Set when a mnemonic had to be narrowed to stop at an existing block
    narrowed: Optional[Mnemonic] = None


def decode_at(decoder: Decoder, tokens: Sequence, position: int, end: int,
              decoder_config: Any = None
              ) -> Optional[Tuple[int, DecodeState]]:
    """One decode call with a fresh state. None when nothing matches."""
    if not 0 <= position < end:
        return None
    state = DecodeState(tokens, position, decoder_config)
    new_position = decoder.match(position, end, state)
    if new_position is None:
        return None
    check_decoded(state, position, new_position, end)
    return new_position, state


def _fallthrough(position: int) -> JumpDescriptor:
    return JumpDescriptor(Constant(position, config.ADDRESS_BITS))


def build_run(decoder: Decoder, tokens: Sequence, start: int, end: int,
              procedure: Procedure, decoder_config: Any = None) -> Optional[Run]:
    """
    Decode a run of mnemonics starting at `start`.

    `start` must not be covered by a block of `procedure`. The run continues
    across decodes that report no jumps or a single unconditional jump to
    the next position, and stops at decode failure, at any other jump, or
    when it reaches the first mnemonic of an existing block.
    """
    run = Run(start, start)
    position = start
    pending: Optional[JumpDescriptor] = None

    while True:
        if position != start and procedure.block_starting_at(position) is not None:
            run.jumps = [pending or _fallthrough(position)]
            break

        decoded = decode_at(decoder, tokens, position, end, decoder_config)
        if decoded is None:
            # A fall-through into undecodable tokens stays a successor
            run.jumps = [pending] if pending else []
            break

        new_position, state = decoded
        boundary = procedure.next_block_start(position)
        if boundary is not None and boundary < new_position:
            # Existing block starts win over the new decode
            for mne in state.mnemonics:
                if mne.area.upper <= boundary:
                    run.mnemonics.append(mne)
                elif mne.area.lower < boundary:
                    run.narrowed = mne.narrowed(boundary)
                    run.mnemonics.append(run.narrowed)
            position = boundary
            run.jumps = [_fallthrough(position)]
            break

        run.mnemonics.extend(state.mnemonics)
        position = new_position

        if not state.jumps:
            pending = None
        elif len(state.jumps) == 1 and state.jumps[0].is_fallthrough(position):
            pending = state.jumps[0]
        else:
            run.jumps = list(state.jumps)
            break

    if not run.mnemonics:
        return None
    run.end = position
    return run
