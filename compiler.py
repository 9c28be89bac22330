"""Module: compile raw program text into a compressed instruction stream.

This module contains:
- compress(source) -> run-length compressed list of instructions
- pack(code) -> the same stream with no-op slots removed
- resolve(code) -> JumpTable with O(1) bracket targets
- Compiler class that chains the three passes into a Program
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from isa import (
    COMPRESSED_FORM,
    MAX_COUNT,
    SIMPLE_OPCODES,
    CompressionOverflow,
    Instruction,
    OpCode,
    encode_stream,
    listing,
)

try:
    from config import DEFAULTS

    DEFAULT_MIN_RUN = DEFAULTS.get("min_run", 2)
    DEFAULT_OVERFLOW = str(DEFAULTS.get("overflow", "split"))
except Exception:
    DEFAULT_MIN_RUN = 2
    DEFAULT_OVERFLOW = "split"


class UnmatchedBracket(SyntaxError):
    """Raised when brackets do not nest; `position` indexes the instruction stream."""

    def __init__(self, position: int, msg: str) -> None:
        self.position = position
        super().__init__(f"{msg} at instruction {position}")


@dataclass
class JumpTable:
    """Bidirectional bracket map: `jumps` is open->close, `loops` is close->open."""

    jumps: dict[int, int] = field(default_factory=dict)
    loops: dict[int, int] = field(default_factory=dict)


@dataclass
class Program:
    """Compiled program ready for the processor."""

    code: list[Instruction]
    jumps: JumpTable


def _as_bytes(source: bytes | bytearray | str) -> bytes:
    if isinstance(source, str):
        return source.encode("utf-8")
    return bytes(source)


def _emit_run(code: list[Instruction], op: OpCode, run: int, min_run: int) -> None:
    """Append a run of `run` copies of `op`, split into chunks that fit MAX_COUNT."""
    cop = COMPRESSED_FORM[op]
    while run > MAX_COUNT:
        code.append(Instruction(cop, MAX_COUNT))
        run -= MAX_COUNT
    if run >= min_run:
        code.append(Instruction(cop, run))
    else:
        code.extend(Instruction(op) for _ in range(run))


def compress(
    source: bytes | bytearray | str,
    min_run: int | None = DEFAULT_MIN_RUN,
    overflow: str = DEFAULT_OVERFLOW,
) -> list[Instruction]:
    """Run-length compress the source into instructions.

    A maximal run of `min_run` or more identical move/arithmetic bytes becomes
    one compressed instruction. Runs longer than MAX_COUNT are split when
    `overflow` is "split" and rejected with CompressionOverflow when it is
    "error". `min_run=None` turns compression off. Unrecognized bytes become
    NOP slots. The source is not modified.
    """
    src = _as_bytes(source)
    code: list[Instruction] = []
    idx = 0
    n = len(src)
    while idx < n:
        b = src[idx]
        op = SIMPLE_OPCODES.get(b)
        if op is None:
            code.append(Instruction(OpCode.NOP, b))
            idx += 1
            continue
        if min_run is None or op not in COMPRESSED_FORM:
            code.append(Instruction(op))
            idx += 1
            continue

        # scan forward to find length of the run
        run = 1
        while idx + run < n and src[idx + run] == b:
            run += 1
        idx += run

        if run < min_run:
            code.extend(Instruction(op) for _ in range(run))
            continue
        if run > MAX_COUNT:
            if overflow == "error":
                raise CompressionOverflow(COMPRESSED_FORM[op], run)
            logging.debug("compress: splitting run of %s (%d) into chunks of %d", op.name, run, MAX_COUNT)
        _emit_run(code, op, run, min_run)
    return code


def pack(code: list[Instruction]) -> list[Instruction]:
    """Re-pack the stream without NOP slots."""
    return [instr for instr in code if instr.opcode != OpCode.NOP]


def resolve(code: list[Instruction]) -> JumpTable:
    """Match brackets in one pass and return the jump table.

    Raises UnmatchedBracket at the stray ']' or at the oldest unclosed '['.
    """
    table = JumpTable()
    stack: list[int] = []
    for idx, (op, _) in enumerate(code):
        if op == OpCode.JUMP:
            stack.append(idx)
        elif op == OpCode.LOOP:
            if not stack:
                raise UnmatchedBracket(idx, "unexpected ']'")
            x = stack.pop()
            table.jumps[x] = idx
            table.loops[idx] = x
    if stack:
        raise UnmatchedBracket(stack[0], "missing ']' for '['")
    return table


class Compiler:
    """Compiler: transforms program text into a Program (code + jump table)."""

    def __init__(
        self,
        source: bytes | bytearray | str,
        min_run: int | None = DEFAULT_MIN_RUN,
        overflow: str = DEFAULT_OVERFLOW,
        pack: bool = True,
    ):
        """Create a Compiler for `source` with the given compression settings."""
        self.source = _as_bytes(source)
        self.min_run = min_run
        self.overflow = overflow
        self.pack = pack
        self.code: list[Instruction] = []
        self.jumps = JumpTable()

    def compile(self) -> Program:
        """Compress, optionally pack and resolve jumps."""
        code = compress(self.source, min_run=self.min_run, overflow=self.overflow)
        logging.debug("Compiler: %d source bytes -> %d instructions", len(self.source), len(code))
        if self.pack:
            code = pack(code)
            logging.debug("Compiler: packed to %d instructions", len(code))
        self.jumps = resolve(code)
        logging.debug("Jumps: %s", self.jumps.jumps)
        logging.debug("Loops: %s", self.jumps.loops)
        self.code = code
        return Program(self.code, self.jumps)

    def encode(self) -> bytes:
        """Encode the compiled code into the byte layout used by .bin files."""
        return encode_stream(self.code)


def compile_source(source: bytes | bytearray | str, config: dict[str, Any] | None = None) -> Program:
    """Compile `source` using compression settings from `config`."""
    cfg = dict(config) if config is not None else {}
    comp = Compiler(
        source,
        min_run=cfg.get("min_run", DEFAULT_MIN_RUN),
        overflow=cfg.get("overflow", DEFAULT_OVERFLOW),
        pack=cfg.get("pack", True),
    )
    return comp.compile()


def compile_file(
    input_path: str | Path,
    out_bin: str | Path | None = None,
    config: dict[str, Any] | None = None,
    debug: bool = False,
) -> str:
    """Compile a source file and write the binary.

    Returns the binary path. If out_bin is not provided it is derived from
    input_path ("<stem>.bin"). With debug also writes "<bin>.hex" listing.
    """
    p = Path(input_path)
    if not p.exists():
        err = f"Source file not found: {input_path}"
        raise FileNotFoundError(err)

    program = compile_source(p.read_bytes(), config)
    out_bin_path = p.with_suffix(".bin") if out_bin is None else Path(out_bin)
    out_bin_path.write_bytes(encode_stream(program.code))

    if debug:
        Path(str(out_bin_path) + ".hex").write_text(listing(program.code), encoding="utf-8")

    return str(out_bin_path)


# --- CLI ---
if __name__ == "__main__":
    import sys

    from config import ConfigError, load_config

    ap = argparse.ArgumentParser(description="Compile tape program source to VM binary")
    ap.add_argument("input", help="source file (e.g. program.bf)")
    ap.add_argument("-o", "--out", help="output binary file (default: <input>.bin)")
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument("--debug", action="store_true", help="write additional debug hex file (<out>.hex)")
    args = ap.parse_args()

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e, file=sys.stderr)
        sys.exit(2)

    try:
        out_bin = compile_file(args.input, out_bin=args.out, config=cfg, debug=args.debug)
    except (UnmatchedBracket, CompressionOverflow, FileNotFoundError) as e:
        print("Compile error:", e, file=sys.stderr)
        sys.exit(1)
    print(out_bin)
