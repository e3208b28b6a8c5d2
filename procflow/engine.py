"""
x86 decoder using Capstone.

Decodes one instruction per call into a mnemonic with operands and jump
descriptors, for use with `disassemble()`. Token positions are offsets
into the byte stream; instruction addresses are base_address + position.
"""

from typing import Optional, Tuple

from capstone import Cs, CS_ARCH_X86, CS_MODE_32, CS_MODE_64, CsError, CsInsn
from capstone import CS_OP_IMM, CS_OP_MEM, CS_OP_REG

from . import config
from .decoder import Decoder, DecodeState
from .model import Constant, Guard, Rvalue, Statement, Undefined, Variable


_CS_MODES = {32: CS_MODE_32, 64: CS_MODE_64}

# Conditional jumps that test a single flag: mnemonic -> (flag, expected)
_FLAG_CONDITIONS = {
    "jo": ("OF", True), "jno": ("OF", False),
    "jb": ("CF", True), "jnae": ("CF", True), "jc": ("CF", True),
    "jae": ("CF", False), "jnb": ("CF", False), "jnc": ("CF", False),
    "je": ("ZF", True), "jz": ("ZF", True),
    "jne": ("ZF", False), "jnz": ("ZF", False),
    "js": ("SF", True), "jns": ("SF", False),
    "jp": ("PF", True), "jpe": ("PF", True),
    "jnp": ("PF", False), "jpo": ("PF", False),
}


def condition_guard(mnemonic: str) -> Guard:
    """Guard under which a conditional branch is taken."""
    if mnemonic in _FLAG_CONDITIONS:
        flag, expected = _FLAG_CONDITIONS[mnemonic]
        return Guard(Variable(flag, 1), expected)
    # Compound conditions (ja, jle, loop, jecxz...) get a named predicate
    return Guard.from_flag(Variable(mnemonic, 1))


class X86Decoder(Decoder):
    """
    Capstone-backed x86 decoder.

    Emits, per instruction:
      - jmp imm: unconditional jump to the target
      - jcc/loop/jcxz: taken target under the condition, fall-through
        under its negation
      - indirect jmp: jump to a variable naming the operand
      - ret: jump to the symbolic return address
      - hlt/ud2/int3: jump to an undefined value
      - call: a `call` statement carrying the callee address, no jump
    Anything else only produces a mnemonic, and the run continues.
    """

    def __init__(self, base_address: int = 0, mode: int = config.CS_MODE):
        if mode not in _CS_MODES:
            raise ValueError(f"Unsupported x86 mode: {mode} (expected 32 or 64)")
        self.base_address = base_address
        self.mode = mode
        self._mask = (1 << mode) - 1
        self._cs = Cs(CS_ARCH_X86, _CS_MODES[mode])
        self._cs.detail = True

    def decode_one(self, tokens, position: int, end: int) -> Optional[CsInsn]:
        """Decode the instruction at `position`, or None."""
        limit = min(end, len(tokens), position + config.MAX_INSN_BYTES)
        if position >= limit:
            return None
        code = bytes(tokens[position:limit])
        for insn in self._cs.disasm(code, self.base_address + position, 1):
            return insn
        return None

    def _operand(self, insn: CsInsn, op) -> Rvalue:
        """Convert a Capstone operand to a value expression."""
        bits = (op.size or self.mode // 8) * 8
        if op.type == CS_OP_IMM:
            return Constant(op.imm & self._mask, bits)
        if op.type == CS_OP_REG:
            return Variable(insn.reg_name(op.reg), bits)
        if op.type == CS_OP_MEM:
            parts = []
            if op.mem.base != 0:
                parts.append(insn.reg_name(op.mem.base))
            if op.mem.index != 0:
                index = insn.reg_name(op.mem.index)
                parts.append(f"{index}*{op.mem.scale}" if op.mem.scale != 1 else index)
            if op.mem.disp or not parts:
                parts.append(f"0x{op.mem.disp & self._mask:X}")
            return Variable(f"[{' + '.join(parts)}]", bits)
        return Undefined()

    def _target(self, value: Rvalue) -> Rvalue:
        """Map an absolute branch target to a token position."""
        if isinstance(value, Constant):
            if value.value < self.base_address:
                return Variable(f"0x{value.value:08X}", self.mode)
            return Constant(value.value - self.base_address, config.ADDRESS_BITS)
        return value

    def match(self, position: int, end: int,
              state: DecodeState) -> Optional[int]:
        insn = self.decode_one(state.tokens, position, end)
        if insn is None:
            return None

        mnemonic = insn.mnemonic
        try:
            operands: Tuple[Rvalue, ...] = tuple(
                self._operand(insn, op) for op in insn.operands)
        except CsError:
            operands = ()

        statements = ()
        if mnemonic in config.CALL_MNEMONICS and operands:
            statements = (Statement("call", (operands[0],)),)

        state.mnemonic(insn.size, mnemonic, operands, statements)
        next_position = position + insn.size

        if mnemonic in config.JMP_MNEMONICS:
            if operands:
                state.jump(self._target(operands[0]))
            else:
                state.jump(Undefined())
        elif mnemonic in config.COND_JMP_MNEMONICS:
            guard = condition_guard(mnemonic)
            if operands:
                state.jump(self._target(operands[0]), guard)
            else:
                state.jump(Undefined(), guard)
            state.jump(next_position, guard.negation())
        elif mnemonic in config.RET_MNEMONICS:
            state.jump(Variable(config.RETURN_TARGET, self.mode))
        elif mnemonic in config.TRAP_MNEMONICS:
            state.jump(Undefined())

        return next_position
