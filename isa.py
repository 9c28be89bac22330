"""ISA: instruction set, tagged instructions and the byte-stream encoding."""

from __future__ import annotations

from enum import IntEnum
from typing import NamedTuple


class OpCode(IntEnum):
    """Keeps opcodes from all operations (value = encoded byte)."""

    NOP = 0

    NEXT = ord(">")  # ptr += 1
    PREV = ord("<")  # ptr -= 1
    INC = ord("+")  # tape[ptr] += 1
    DEC = ord("-")  # tape[ptr] -= 1
    PUT = ord(".")  # write tape[ptr]
    GET = ord(",")  # read into tape[ptr]
    JUMP = ord("[")  # jump past matching LOOP if tape[ptr] == 0
    LOOP = ord("]")  # jump back to matching JUMP if tape[ptr] != 0

    # compressed forms, followed by a count byte in the encoded stream
    CNEXT = ord("{")
    CPREV = ord("}")
    CINC = ord("&")
    CDEC = ord("|")


# source byte -> simple opcode
SIMPLE_OPCODES: dict[int, OpCode] = {
    int(op): op
    for op in (
        OpCode.NEXT,
        OpCode.PREV,
        OpCode.INC,
        OpCode.DEC,
        OpCode.PUT,
        OpCode.GET,
        OpCode.JUMP,
        OpCode.LOOP,
    )
}

COMPRESSED_FORM: dict[OpCode, OpCode] = {
    OpCode.NEXT: OpCode.CNEXT,
    OpCode.PREV: OpCode.CPREV,
    OpCode.INC: OpCode.CINC,
    OpCode.DEC: OpCode.CDEC,
}

COMPRESSED_OPCODES = frozenset(COMPRESSED_FORM.values())

# The count field is one byte wide in the encoded stream.
MAX_COUNT = 255


class CompressionOverflow(OverflowError):
    """Raised when a run length does not fit into the count field."""

    def __init__(self, opcode: OpCode, run_length: int) -> None:
        self.opcode = opcode
        self.run_length = run_length
        super().__init__(f"run of {opcode.name} too long to compress: {run_length} (max {MAX_COUNT})")


class Instruction(NamedTuple):
    """One slot of the compiled program.

    `arg` is the run count for compressed opcodes, the raw source byte for
    NOP and 0 for every other opcode.
    """

    opcode: OpCode
    arg: int = 0


def encode_instr(instr: Instruction) -> bytes:
    """Encode a single instruction.

    Simple opcodes take one byte, compressed opcodes take two (opcode, count).
    NOP is always encoded as 0x00 so that a comment byte which happens to
    look like a compressed opcode can never be mistaken for one.
    """
    op, arg = instr
    if op in COMPRESSED_OPCODES:
        if not (1 <= arg <= MAX_COUNT):
            raise CompressionOverflow(op, arg)
        return bytes((int(op), arg))
    if op == OpCode.NOP:
        return b"\x00"
    return bytes((int(op),))


def encode_stream(code: list[Instruction]) -> bytes:
    """Encode a whole instruction stream to bytes."""
    return b"".join(encode_instr(instr) for instr in code)


def decode_stream(blob: bytes) -> list[Instruction]:
    """Decode an encoded stream back into instructions.

    Unknown bytes decode to NOP carrying the byte.
    Raises EOFError if a compressed opcode has no count byte.
    """
    code: list[Instruction] = []
    pc = 0
    while pc < len(blob):
        b = blob[pc]
        if b in SIMPLE_OPCODES:
            code.append(Instruction(SIMPLE_OPCODES[b]))
            pc += 1
            continue
        if b in COMPRESSED_OPCODES:
            if pc + 1 >= len(blob):
                err = f"End of program: missing count byte for {OpCode(b).name} at offset {pc}"
                raise EOFError(err)
            code.append(Instruction(OpCode(b), blob[pc + 1]))
            pc += 2
            continue
        code.append(Instruction(OpCode.NOP, b))
        pc += 1
    return code


def mnemonic(instr: Instruction) -> str:
    """Get operation mnemonic."""
    op, arg = instr
    if op in COMPRESSED_OPCODES:
        return f"{op.name} {arg}"
    if op == OpCode.NOP and arg:
        return f"NOP {arg:#04x}"
    return op.name


def listing(code: list[Instruction]) -> str:
    """Produce a disassembly: one `<index> - <HEX> - <MNEMONIC>` line per slot."""
    lines: list[str] = []
    for idx, instr in enumerate(code):
        try:
            hexbytes = encode_instr(instr).hex().upper()
        except CompressionOverflow:
            hexbytes = "??"
        lines.append(f"{idx} - {hexbytes} - {mnemonic(instr)}")
    return "\n".join(lines)
