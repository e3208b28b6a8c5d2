import pytest

from procflow.decoder import (DecodeError, DecodeState, Decoder, TableDecoder, check_decoded,
                              simple_op)
from procflow.model import Bound, Constant, Guard, Undefined, Variable
from procflow.worklist import disassemble


def test_state_lays_out_mnemonics_back_to_back() -> None:
    state = DecodeState([0] * 8, 2)
    state.mnemonic(2, "a")
    state.mnemonic(1, "b")
    assert [m.area for m in state.mnemonics] == [Bound(2, 4), Bound(4, 5)]
    assert state.next_address == 5


def test_state_jump_wraps_integer_targets() -> None:
    state = DecodeState([0], 0)
    desc = state.jump(7)
    assert desc.target == Constant(7, 64)
    assert desc.guard == Guard.always()
    state.jump(Undefined(), Guard.from_flag(Variable("c", 1)))
    assert len(state.jumps) == 2


def test_state_rejects_empty_mnemonic() -> None:
    with pytest.raises(DecodeError):
        DecodeState([0], 0).mnemonic(0, "bad")


def test_table_decoder_failure_leaves_state_untouched() -> None:
    def refuse(state: DecodeState) -> bool:
        state.mnemonic(1, "half")
        state.jump(3)
        return False

    dec = TableDecoder({0: simple_op("ok", 1), 1: refuse})
    state = DecodeState([0, 1, 2], 1)
    assert dec.match(1, 3, state) is None
    assert state.mnemonics == []
    assert state.jumps == []

    state = DecodeState([0, 1, 2], 2)
    assert dec.match(2, 3, state) is None

    state = DecodeState([0, 1, 2], 0)
    assert dec.match(0, 3, state) == 1
    assert state.jumps[0].target == Constant(1)


def test_check_decoded_enforces_contract() -> None:
    state = DecodeState([0] * 4, 0)
    with pytest.raises(DecodeError):
        check_decoded(state, 0, 1, 4)

    state.mnemonic(2, "a")
    check_decoded(state, 0, 2, 4)
    with pytest.raises(DecodeError):
        check_decoded(state, 0, 3, 4)
    with pytest.raises(DecodeError):
        check_decoded(state, 0, 5, 4)


def test_contract_breach_is_fatal() -> None:
    class Overshoot(Decoder):
        def match(self, position, end, state):
            state.mnemonic(1, "a")
            return position + 2

    with pytest.raises(DecodeError):
        disassemble(Overshoot(), [0, 1, 2], 0)
    assert issubclass(DecodeError, ValueError)


def test_instruction_past_stream_end_is_a_decode_failure() -> None:
    dec = TableDecoder({0: simple_op("a", length=2), 1: simple_op("b")})
    state = DecodeState([0], 0)
    assert dec.match(0, 1, state) is None
    assert state.mnemonics == []

    proc = disassemble(dec, [0], 0)
    assert proc.blocks == []
    assert proc.entry is None

    # A run that ends in a truncated instruction keeps what decoded before it
    proc = disassemble(dec, [1, 0], 0)
    assert [(m.opcode, m.area) for m in proc.blocks[0].mnemonics] == [("b", Bound(0, 1))]


def test_negative_positions_do_not_decode() -> None:
    dec = TableDecoder({0: simple_op("a", -1), 2: simple_op("b")})
    assert dec.match(-1, 3, DecodeState([0, 1, 2], -1)) is None

    proc = disassemble(dec, [0, 1, 2], 0)
    assert len(proc.blocks) == 1
    assert proc.successors(proc.entry_block) == [Constant(-1)]
