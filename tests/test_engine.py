import pytest

from procflow.decoder import DecodeState
from procflow.engine import X86Decoder, condition_guard
from procflow.model import Bound, Constant, Guard, Undefined, Variable
from procflow.procedure import incoming, outgoing
from procflow.worklist import disassemble

# xor eax, eax ; je +2 ; inc eax ; inc eax ; ret
CODE = bytes.fromhex("31c074024040c3")


def _decode(code: bytes, position: int = 0, base: int = 0) -> DecodeState:
    state = DecodeState(code, position)
    assert X86Decoder(base).match(position, len(code), state) is not None
    return state


def test_decodes_register_operands() -> None:
    state = _decode(CODE)
    (mne,) = state.mnemonics
    assert mne.opcode == "xor"
    assert mne.area == Bound(0, 2)
    assert mne.operands == (Variable("eax", 32), Variable("eax", 32))
    assert state.jumps == []


def test_conditional_jump_emits_both_successors() -> None:
    state = _decode(CODE, 2)
    taken, fall = state.jumps
    assert taken.target == Constant(6)
    assert taken.guard == Guard(Variable("ZF", 1), True)
    assert fall.target == Constant(4)
    assert fall.guard == taken.guard.negation()


def test_terminators() -> None:
    assert _decode(CODE, 6).jumps[0].target == Variable("ret_addr", 32)
    assert _decode(b"\xf4").jumps[0].target == Undefined()
    assert _decode(b"\xff\xe0").jumps[0].target == Variable("eax", 32)


def test_target_below_base_is_symbolic() -> None:
    # jmp 0x0 from 0x1000
    state = _decode(bytes.fromhex("e9fbefffff"), base=0x1000)
    assert state.jumps[0].target == Variable("0x00000000", 32)


def test_truncated_instruction_does_not_match() -> None:
    state = DecodeState(b"\xe8\x00", 0)
    assert X86Decoder().match(0, 2, state) is None
    assert state.mnemonics == []


def test_unsupported_mode() -> None:
    with pytest.raises(ValueError):
        X86Decoder(mode=16)


def test_compound_condition_guard() -> None:
    assert condition_guard("jnz") == Guard(Variable("ZF", 1), False)
    assert condition_guard("ja") == Guard.from_flag(Variable("ja", 1))


def test_disassemble_x86() -> None:
    proc = disassemble(X86Decoder(), CODE, 0)

    areas = sorted((b.area.lower, b.area.upper) for b in proc.blocks)
    assert areas == [(0, 4), (4, 6), (6, 7)]
    head = proc.entry_block
    mid = proc.blocks[proc.block_starting_at(4)]
    tail = proc.blocks[proc.block_starting_at(6)]
    assert head.area == Bound(0, 4)
    assert len(outgoing(proc, head)) == 2
    assert (len(incoming(proc, mid)), len(outgoing(proc, mid))) == (1, 1)
    assert (len(incoming(proc, tail)), len(outgoing(proc, tail))) == (2, 1)
    assert proc.successors(tail) == [Variable("ret_addr", 32)]
    assert proc.rev_postorder()[0] is head


def test_calls_do_not_end_blocks() -> None:
    # call 0x5 ; ret
    proc = disassemble(X86Decoder(), bytes.fromhex("e800000000c3"), 0)
    assert len(proc.blocks) == 1
    assert proc.blocks[0].area == Bound(0, 6)
    (call,) = proc.collect_calls()
    assert isinstance(call, Constant)
    assert call.value == 5
