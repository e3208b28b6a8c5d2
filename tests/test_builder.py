from procflow.builder import build_run
from procflow.decoder import DecodeState, TableDecoder, simple_op
from procflow.model import BasicBlock, Bound, Constant, Guard, JumpDescriptor, Mnemonic, Variable
from procflow.procedure import Procedure


def _procedure_with_block(lower: int, upper: int) -> Procedure:
    proc = Procedure("test")
    proc.add_block(BasicBlock([Mnemonic(Bound(lower, upper), "existing")]))
    return proc


def test_run_continues_across_fallthrough_jumps() -> None:
    dec = TableDecoder({0: simple_op("a", 1), 1: simple_op("b", 2), 2: simple_op("c", 0)})
    run = build_run(dec, [0, 1, 2], 0, 3, Procedure("test"))
    assert [m.opcode for m in run.mnemonics] == ["a", "b", "c"]
    assert (run.start, run.end) == (0, 3)
    assert run.jumps == [JumpDescriptor(Constant(0))]


def test_run_stops_at_existing_block_start() -> None:
    dec = TableDecoder({0: simple_op("a", 1), 1: simple_op("b", 2)})
    run = build_run(dec, [0, 1, 2], 0, 3, _procedure_with_block(2, 3))
    assert run.end == 2
    assert run.jumps == [JumpDescriptor(Constant(2))]


def test_run_without_jumps_falls_through_into_existing_block() -> None:
    dec = TableDecoder({0: simple_op("a"), 1: simple_op("b")})
    run = build_run(dec, [0, 1, 2], 0, 3, _procedure_with_block(2, 3))
    assert [m.opcode for m in run.mnemonics] == ["a", "b"]
    assert run.jumps == [JumpDescriptor(Constant(2))]


def test_straddling_mnemonic_is_narrowed_to_existing_block() -> None:
    dec = TableDecoder({0: simple_op("wide", 2, length=2)})
    run = build_run(dec, [0, 1, 2], 0, 3, _procedure_with_block(1, 2))
    assert run.mnemonics[0].area == Bound(0, 1)
    assert run.narrowed is run.mnemonics[0]
    assert run.end == 1
    assert run.jumps == [JumpDescriptor(Constant(1))]


def test_pending_fallthrough_survives_decode_failure() -> None:
    dec = TableDecoder({0: simple_op("a", 1)})
    run = build_run(dec, [0, 99], 0, 2, Procedure("test"))
    assert run.end == 1
    assert run.jumps == [JumpDescriptor(Constant(1))]

    dec = TableDecoder({0: simple_op("a")})
    run = build_run(dec, [0, 99], 0, 2, Procedure("test"))
    assert run.jumps == []


def test_conditional_jump_ends_run() -> None:
    flag = Variable("ZF", 1)

    def branch(state: DecodeState) -> bool:
        state.mnemonic(1, "jz")
        state.jump(5, Guard.from_flag(flag))
        state.jump(1, Guard(flag, False))
        return True

    dec = TableDecoder({0: branch, 1: simple_op("b", 2)})
    run = build_run(dec, [0, 1, 2], 0, 3, Procedure("test"))
    assert run.end == 1
    assert [j.target for j in run.jumps] == [Constant(5), Constant(1)]


def test_nothing_decoded() -> None:
    dec = TableDecoder({})
    assert build_run(dec, [0, 1], 0, 2, Procedure("test")) is None
    assert build_run(dec, [], 0, 0, Procedure("test")) is None
