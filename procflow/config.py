"""
Configuration constants for the procflow disassembler.

Defines instruction classification, decoder defaults, naming, and the
on-disk formats used by the store and the result cache.
"""

# ============================================================
# Procedures
# ============================================================

# Default procedure name, formatted with the entry offset
PROCEDURE_NAME_FORMAT = "func_{:08X}"

# Width (bits) of constant addresses produced by decoders
ADDRESS_BITS = 64

# ============================================================
# Instruction Classification (x86)
# ============================================================

CALL_MNEMONICS = {"call"}
RET_MNEMONICS = {"ret", "retn", "retf", "iret", "iretd", "iretq"}
JMP_MNEMONICS = {"jmp", "ljmp"}
COND_JMP_MNEMONICS = {
    "jo", "jno", "jb", "jnb", "jnae", "jae", "jc", "jnc",
    "jz", "je", "jnz", "jne", "jbe", "jna", "ja", "jnbe",
    "js", "jns", "jp", "jpe", "jnp", "jpo",
    "jl", "jnge", "jge", "jnl", "jle", "jng", "jg", "jnle",
    "jcxz", "jecxz", "jrcxz",
    "loop", "loope", "loopz", "loopne", "loopnz",
}
BRANCH_MNEMONICS = JMP_MNEMONICS | COND_JMP_MNEMONICS

# Instructions after which execution does not continue
TRAP_MNEMONICS = {"hlt", "ud2", "int3"}

# Symbolic target of a return instruction
RETURN_TARGET = "ret_addr"

# ============================================================
# Disassembly Engine Settings
# ============================================================

# Capstone x86 mode (32 or 64)
CS_MODE = 32

# Longest x86 instruction in bytes
MAX_INSN_BYTES = 15

# ============================================================
# Output Settings
# ============================================================

DEFAULT_OUTPUT_DIR = "procflow_output"

# ============================================================
# Store / Cache Settings
# ============================================================

STORE_FILENAME = "procedures.json"
STORE_VERSION = 1

CACHE_FILENAME = ".procflow_cache.json"
CACHE_VERSION = 1
