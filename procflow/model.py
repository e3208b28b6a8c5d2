"""
Core data model for procedure recovery.

Bounds, value expressions, guards, mnemonics and basic blocks. Everything
here except BasicBlock is immutable and hashable, so values can be used
directly as graph node keys.
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class Bound:
    """Half-open interval [lower, upper) of token offsets."""
    lower: int
    upper: int

    def __post_init__(self):
        if self.lower < 0 or self.upper < self.lower:
            raise ValueError(f"invalid bound [{self.lower}, {self.upper})")

    @property
    def size(self) -> int:
        return self.upper - self.lower

    def __contains__(self, offset: int) -> bool:
        return self.lower <= offset < self.upper

    def overlaps(self, other: "Bound") -> bool:
        return self.lower < other.upper and other.lower < self.upper

    def __str__(self) -> str:
        return f"[0x{self.lower:X}, 0x{self.upper:X})"


# ============================================================
# Value expressions
# ============================================================

class Rvalue:
    """Base class of all value expressions."""

    def to_dict(self) -> dict:
        raise NotImplementedError


@dataclass(frozen=True)
class Constant(Rvalue):
    value: int
    size: int = 64

    def to_dict(self) -> dict:
        return {"kind": "constant", "value": self.value, "size": self.size}

    def __str__(self) -> str:
        return f"0x{self.value:X}"


@dataclass(frozen=True)
class Variable(Rvalue):
    name: str
    size: int
    offset: int = 0
    subscript: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "kind": "variable",
            "name": self.name,
            "size": self.size,
            "offset": self.offset,
            "subscript": self.subscript,
        }

    def __str__(self) -> str:
        if self.subscript is None:
            return self.name
        return f"{self.name}_{self.subscript}"


@dataclass(frozen=True)
class Undefined(Rvalue):

    def to_dict(self) -> dict:
        return {"kind": "undefined"}

    def __str__(self) -> str:
        return "?"


def rvalue_from_dict(d: dict) -> Rvalue:
    kind = d.get("kind")
    if kind == "constant":
        return Constant(d["value"], d["size"])
    if kind == "variable":
        return Variable(d["name"], d["size"], d.get("offset", 0),
                        d.get("subscript"))
    if kind == "undefined":
        return Undefined()
    raise ValueError(f"unknown value kind: {kind!r}")


# ============================================================
# Guards and semantics
# ============================================================

@dataclass(frozen=True)
class Guard:
    """
    Condition qualifying a control transfer.

    A guard without a flag is always true. Otherwise the transfer is taken
    when `flag` evaluates to `expected`.
    """
    flag: Optional[Rvalue] = None
    expected: bool = True

    @classmethod
    def always(cls) -> "Guard":
        return cls()

    @classmethod
    def from_flag(cls, flag: Rvalue) -> "Guard":
        return cls(flag, True)

    @property
    def is_always(self) -> bool:
        return self.flag is None

    def negation(self) -> "Guard":
        if self.flag is None:
            raise ValueError("cannot negate an unconditional guard")
        return Guard(self.flag, not self.expected)

    def to_dict(self) -> dict:
        if self.flag is None:
            return {}
        return {"flag": self.flag.to_dict(), "expected": self.expected}

    @classmethod
    def from_dict(cls, d: dict) -> "Guard":
        if not d:
            return cls()
        return cls(rvalue_from_dict(d["flag"]), d["expected"])

    def __str__(self) -> str:
        if self.flag is None:
            return "true"
        return str(self.flag) if self.expected else f"!{self.flag}"


@dataclass(frozen=True)
class Statement:
    """One flat semantic micro-operation of a mnemonic."""
    op: str
    operands: Tuple[Rvalue, ...] = ()
    assignee: Optional[Rvalue] = None

    def to_dict(self) -> dict:
        return {
            "op": self.op,
            "operands": [o.to_dict() for o in self.operands],
            "assignee": self.assignee.to_dict() if self.assignee else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Statement":
        assignee = d.get("assignee")
        return cls(
            d["op"],
            tuple(rvalue_from_dict(o) for o in d.get("operands", [])),
            rvalue_from_dict(assignee) if assignee else None,
        )

    def __str__(self) -> str:
        args = ", ".join(str(o) for o in self.operands)
        if self.assignee is not None:
            return f"{self.assignee} := {self.op} {args}".rstrip()
        return f"{self.op} {args}".rstrip()


@dataclass(frozen=True)
class Mnemonic:
    """A single decoded instruction covering a fixed token range."""
    area: Bound
    opcode: str
    operands: Tuple[Rvalue, ...] = ()
    statements: Tuple[Statement, ...] = ()

    def narrowed(self, upper: int) -> "Mnemonic":
        """Copy of this mnemonic cut short to end at `upper`."""
        return replace(self, area=Bound(self.area.lower, upper))

    def to_dict(self) -> dict:
        return {
            "area": [self.area.lower, self.area.upper],
            "opcode": self.opcode,
            "operands": [o.to_dict() for o in self.operands],
            "statements": [s.to_dict() for s in self.statements],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Mnemonic":
        lower, upper = d["area"]
        return cls(
            Bound(lower, upper),
            d["opcode"],
            tuple(rvalue_from_dict(o) for o in d.get("operands", [])),
            tuple(Statement.from_dict(s) for s in d.get("statements", [])),
        )

    def __str__(self) -> str:
        ops = ", ".join(str(o) for o in self.operands)
        return f"{self.opcode} {ops}".rstrip()


@dataclass(frozen=True)
class JumpDescriptor:
    """A candidate control transfer reported by the decoder."""
    target: Rvalue
    guard: Guard = field(default_factory=Guard.always)

    def is_fallthrough(self, position: int) -> bool:
        """True for an unconditional jump to `position`."""
        return (self.guard.is_always and isinstance(self.target, Constant)
                and self.target.value == position)


# ============================================================
# Basic blocks
# ============================================================

def _check_contiguous(mnemonics: List[Mnemonic]) -> None:
    for prev, mne in zip(mnemonics, mnemonics[1:]):
        if prev.area.upper != mne.area.lower:
            raise ValueError(
                f"mnemonic at 0x{mne.area.lower:X} does not follow "
                f"mnemonic ending at 0x{prev.area.upper:X}")


@dataclass(eq=False)
class BasicBlock:
    """
    Ordered, gap-free sequence of mnemonics.

    Blocks are compared by identity. `same_content` compares mnemonics.
    """
    mnemonics: List[Mnemonic] = field(default_factory=list)
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        self.mnemonics = list(self.mnemonics)
        _check_contiguous(self.mnemonics)

    @classmethod
    def from_mnemonics(cls, mnemonics: Iterable[Mnemonic]) -> "BasicBlock":
        return cls(list(mnemonics))

    @property
    def area(self) -> Bound:
        if not self.mnemonics:
            raise ValueError("empty basic block has no area")
        return Bound(self.mnemonics[0].area.lower, self.mnemonics[-1].area.upper)

    @property
    def start(self) -> int:
        return self.area.lower

    def append(self, mne: Mnemonic) -> None:
        if self.mnemonics and self.mnemonics[-1].area.upper != mne.area.lower:
            raise ValueError(
                f"mnemonic at 0x{mne.area.lower:X} does not continue block "
                f"ending at 0x{self.area.upper:X}")
        self.mnemonics.append(mne)

    def index_of(self, offset: int) -> Optional[int]:
        """Index of the mnemonic covering `offset`, or None."""
        for i, mne in enumerate(self.mnemonics):
            if offset in mne.area:
                return i
        return None

    def same_content(self, other: "BasicBlock") -> bool:
        return self.mnemonics == other.mnemonics

    def to_dict(self) -> dict:
        return {"mnemonics": [m.to_dict() for m in self.mnemonics]}

    def __len__(self) -> int:
        return len(self.mnemonics)

    def __repr__(self) -> str:
        if not self.mnemonics:
            return "BasicBlock(<empty>)"
        return f"BasicBlock({self.area}, {len(self.mnemonics)} mnemonics)"
