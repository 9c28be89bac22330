"""Instruction encoding tests."""

from __future__ import annotations

import pytest
from isa import CompressionOverflow, Instruction, OpCode, decode_stream, encode_instr, listing, mnemonic


def test_simple_instructions_take_one_byte() -> None:
    assert encode_instr(Instruction(OpCode.INC)) == b"+"
    assert encode_instr(Instruction(OpCode.LOOP)) == b"]"


def test_compressed_instructions_carry_count_byte() -> None:
    assert encode_instr(Instruction(OpCode.CNEXT, 10)) == b"{\n"
    assert encode_instr(Instruction(OpCode.CDEC, 255)) == b"|\xff"


def test_nop_encodes_as_zero() -> None:
    assert encode_instr(Instruction(OpCode.NOP, ord("{"))) == b"\x00"


@pytest.mark.parametrize("count", [0, 256, 1000])
def test_count_must_fit_one_byte(count: int) -> None:
    with pytest.raises(CompressionOverflow):
        encode_instr(Instruction(OpCode.CINC, count))


def test_decode_stream() -> None:
    code = decode_stream(b"&\x05[>+<-]x")
    assert code[0] == Instruction(OpCode.CINC, 5)
    assert code[1] == Instruction(OpCode.JUMP)
    assert code[-1] == Instruction(OpCode.NOP, ord("x"))
    assert len(code) == 8


def test_decode_count_byte_may_look_like_an_opcode() -> None:
    # count 43 is the byte '+'
    assert decode_stream(b"{+.") == [Instruction(OpCode.CNEXT, 43), Instruction(OpCode.PUT)]


def test_decode_truncated_stream() -> None:
    with pytest.raises(EOFError):
        decode_stream(b"++&")


def test_mnemonic() -> None:
    assert mnemonic(Instruction(OpCode.CPREV, 7)) == "CPREV 7"
    assert mnemonic(Instruction(OpCode.GET)) == "GET"
    assert mnemonic(Instruction(OpCode.NOP, 0x20)) == "NOP 0x20"


def test_listing() -> None:
    code = [Instruction(OpCode.CINC, 2), Instruction(OpCode.PUT)]
    assert listing(code) == "0 - 2602 - CINC 2\n1 - 2E - PUT"
