"""Processor (Datapath + ControlUnit) and CLI wrapper.

Provides VM execution against a fixed-size byte tape, logging
initialization and an optional tape dump for debugging.
"""

from __future__ import annotations

import argparse
import io
import logging
import sys
from pathlib import Path
from typing import Any, BinaryIO

from compiler import JumpTable, Program, UnmatchedBracket, compile_source, resolve
from config import DEFAULTS, ConfigError, load_config
from isa import CompressionOverflow, Instruction, OpCode, decode_stream, mnemonic

LOGFILE = "vm.log"

RUNNING = "running"
HALTED = "halted"
FAULTED = "faulted"
PAUSED = "paused"


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stderr
    (stdout belongs to the program being run).
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.INFO
    root.setLevel(lvl)

    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(levelname)-5s %(message)s"

    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter(file_fmt))
    root.addHandler(fh)

    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


class OutOfBounds(MemoryError):
    """Raised when the cell pointer leaves the tape under the "fault" bounds policy."""

    def __init__(self, position: int, tape_cells: int) -> None:
        self.position = position
        self.tape_cells = tape_cells
        super().__init__(f"cell pointer {position} out of tape range (0..{tape_cells - 1})")


class Datapath:
    """Datapath (tape + pointers + I/O streams) for the VM."""

    code: list[Instruction]
    jumps: JumpTable

    tape_cells: int
    tape: bytearray
    bounds: str
    eof: str

    PC: int
    PTR: int

    tick: int
    tick_limit: int | None
    state: str
    lenient_log: bool

    stdin: BinaryIO | None
    stdout: BinaryIO | None
    output_buffer: bytearray
    input_closed: bool

    def __init__(
        self,
        code: list[Instruction],
        jumps: JumpTable,
        tape_cells: int = 30000,
        bounds: str = "fault",
        eof: str = "zero",
        tick_limit: int | None = None,
        lenient_log: bool = False,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
    ) -> None:
        """Initialize Datapath state with a zeroed tape."""
        self.code = code
        self.jumps = jumps

        self.tape_cells = int(tape_cells)
        if self.tape_cells <= 0:
            err = "Tape must have at least one cell"
            raise MemoryError(err)
        self.tape = bytearray(self.tape_cells)
        self.bounds = bounds
        self.eof = eof

        # registers/state
        self.PC = 0
        self.PTR = 0

        self.tick = 0
        self.tick_limit = tick_limit
        self.state = RUNNING
        self.lenient_log = bool(lenient_log)

        self.stdin = stdin
        self.stdout = stdout
        self.output_buffer = bytearray()
        self.input_closed = False

    @property
    def cell(self) -> int:
        """Value of the current cell."""
        return self.tape[self.PTR]

    def move(self, delta: int) -> None:
        """Move the cell pointer by `delta` applying the bounds policy."""
        new_ptr = self.PTR + delta
        if 0 <= new_ptr < self.tape_cells:
            self.PTR = new_ptr
            return
        if self.bounds == "wrap":
            self.PTR = new_ptr % self.tape_cells
            logging.debug("move: pointer %d wrapped to %d", new_ptr, self.PTR)
            return
        raise OutOfBounds(new_ptr, self.tape_cells)

    def add(self, delta: int) -> None:
        """Add `delta` to the current cell modulo 256."""
        self.tape[self.PTR] = (self.tape[self.PTR] + delta) & 0xFF

    def read_input(self) -> None:
        """Read one byte into the current cell, applying the EOF policy."""
        data = b""
        if self.stdin is not None and not self.input_closed:
            data = self.stdin.read(1)
        if data:
            self.tape[self.PTR] = data[0]
            logging.debug("[IN] got %d", data[0])
            return
        if not self.input_closed:
            self.input_closed = True
            logging.debug("[IN] end of input")
        if self.eof == "zero":
            self.tape[self.PTR] = 0

    def write_output(self) -> None:
        """Write the current cell to the output stream."""
        ch = self.tape[self.PTR]
        self.output_buffer.append(ch)
        if self.stdout is not None:
            self.stdout.write(bytes((ch,)))
        logging.debug("[OUT] wrote %d -> char: %r", ch, chr(ch))

    def flush(self) -> None:
        """Flush the output stream, if any."""
        if self.stdout is not None:
            self.stdout.flush()


class ControlUnit:
    """Control unit implementing the FETCH-DECODE-EXEC loop for the Datapath."""

    dp: Datapath

    def __init__(self, dp: Datapath) -> None:
        """Create a ControlUnit bound to `dp`."""
        self.dp = dp
        self._stop_requested = False

    def request_stop(self) -> None:
        """Ask the run loop to pause before the next instruction."""
        self._stop_requested = True

    def _log_step(self, instr: Instruction) -> None:
        dp = self.dp
        logging.debug(
            "STATE: %-8s TICK: %6d PC: %5d PTR: %5d CELL: %3d\tINSTR: %s",
            dp.state.upper(),
            dp.tick,
            dp.PC,
            dp.PTR,
            dp.cell,
            mnemonic(instr),
        )

    def run(self) -> tuple[bytes, int, str]:
        """Execute until halt, fault or pause and return (output, ticks, state).

        Runtime faults are re-raised after output is flushed and the state is
        set to "faulted". A paused run can be resumed by calling run() again.
        """
        dp = self.dp
        if dp.state in (HALTED, FAULTED):
            return bytes(dp.output_buffer), dp.tick, dp.state

        dp.state = RUNNING
        self._stop_requested = False
        trace = not dp.lenient_log and logging.getLogger().isEnabledFor(logging.DEBUG)
        code = dp.code
        code_len = len(code)
        try:
            while dp.PC < code_len:
                if self._stop_requested or (dp.tick_limit is not None and dp.tick >= dp.tick_limit):
                    dp.state = PAUSED
                    logging.debug("Paused at tick %d PC %d", dp.tick, dp.PC)
                    break
                instr = code[dp.PC]
                if trace:
                    self._log_step(instr)
                self.exec(instr)
                dp.tick += 1
            else:
                dp.state = HALTED
                logging.debug("PC %d out of range -> HALT after %d ticks", dp.PC, dp.tick)
        except (OutOfBounds, OSError) as e:
            dp.state = FAULTED
            logging.error("Fault at tick %d PC %d: %s", dp.tick, dp.PC, e)
            raise
        finally:
            dp.flush()

        return bytes(dp.output_buffer), dp.tick, dp.state

    def exec(self, instr: Instruction) -> None:  # noqa: C901
        """Execute one instruction and advance PC."""
        dp = self.dp
        opcode, arg = instr

        if opcode == OpCode.NEXT:
            dp.move(1)
        elif opcode == OpCode.PREV:
            dp.move(-1)
        elif opcode == OpCode.INC:
            dp.add(1)
        elif opcode == OpCode.DEC:
            dp.add(-1)
        elif opcode == OpCode.PUT:
            dp.write_output()
        elif opcode == OpCode.GET:
            dp.read_input()
        elif opcode == OpCode.JUMP:
            if dp.cell == 0:
                dp.PC = dp.jumps.jumps[dp.PC]
        elif opcode == OpCode.LOOP:
            if dp.cell != 0:
                dp.PC = dp.jumps.loops[dp.PC]
        elif opcode == OpCode.CNEXT:
            dp.move(arg)
        elif opcode == OpCode.CPREV:
            dp.move(-arg)
        elif opcode == OpCode.CINC:
            dp.add(arg)
        elif opcode == OpCode.CDEC:
            dp.add(-arg)
        # NOP and unknown opcodes fall through
        dp.PC += 1


def dump_tape(dp: Datapath, path: str | Path) -> None:
    """Write registers, non-zero tape cells and the jump table to `path`."""
    with open(path, "w", encoding="utf-8") as f:
        f.write("=== TAPE DUMP ===\n")
        f.write(f"tape_cells: {dp.tape_cells}  PC: {dp.PC}  PTR: {dp.PTR}  ticks: {dp.tick}  state: {dp.state}\n\n")
        for i, v in enumerate(dp.tape):
            if v:
                ch = chr(v) if 32 <= v < 127 else f"\\x{v:02X}"
                f.write(f"{i:08d}: {v:3d}  '{ch}'\n")
        f.write("\n=== JUMPS ===\n")
        for open_pos, close_pos in sorted(dp.jumps.jumps.items()):
            f.write(f"[ {open_pos:6d} -> ] {close_pos:6d}\n")
        f.write("\n=== END DUMP ===\n")


# ---------- Public API ----------
def make_datapath(
    program: Program,
    config: dict[str, Any] | None = None,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> Datapath:
    """Build a Datapath for `program` using runtime settings from `config`."""
    cfg = dict(config) if config is not None else {}
    return Datapath(
        program.code,
        program.jumps,
        tape_cells=cfg.get("tape_cells", DEFAULTS["tape_cells"]),
        bounds=cfg.get("bounds", DEFAULTS["bounds"]),
        eof=cfg.get("eof", DEFAULTS["eof"]),
        tick_limit=cfg.get("tick_limit", DEFAULTS["tick_limit"]),
        lenient_log=cfg.get("lenient_log", DEFAULTS["lenient_log"]),
        stdin=stdin,
        stdout=stdout,
    )


def run_program(
    program: Program,
    config: dict[str, Any] | None = None,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> tuple[bytes, int, str]:
    """Run a compiled program and return (output, ticks, state)."""
    dp = make_datapath(program, config, stdin, stdout)
    logging.info("Program length %d", len(program.code))
    return ControlUnit(dp).run()


def run_source(
    source: bytes | bytearray | str,
    config: dict[str, Any] | None = None,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> tuple[bytes, int, str]:
    """Compile and run program text."""
    return run_program(compile_source(source, config), config, stdin, stdout)


def run_bytes(
    code_bytes: bytes,
    config: dict[str, Any] | None = None,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> tuple[bytes, int, str]:
    """Decode an encoded (.bin) stream, resolve jumps and run it."""
    code = decode_stream(code_bytes)
    return run_program(Program(code, resolve(code)), config, stdin, stdout)


# ---------- CLI ----------
def main(argv: list[str] | None = None) -> int:
    """Command line entry point; returns the process exit status."""
    ap = argparse.ArgumentParser(
        description="Tape VM runner. Accepts program source or a compiled binary (.bin). "
        "Program input is read from --input or standard input."
    )
    ap.add_argument("program", nargs="?", help="program source or program.bin (compiled code).")
    ap.add_argument("-e", "--eval", dest="code", default=None, help="program text given on the command line")
    ap.add_argument("--input", default=None, help="file to use as program input (default: stdin)")
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument("--debug", action="store_true", help="enable debug logging to logfile (per-step trace).")
    ap.add_argument("--logfile", default=LOGFILE, help="path to processor log")
    ap.add_argument("--console", action="store_true", help="also echo logs to stderr")
    ap.add_argument("--dump", default=None, help="write a tape dump to this path after the run")
    args = ap.parse_args(argv)

    if args.program is None and args.code is None:
        ap.error("either a program file or --eval is required")

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e, file=sys.stderr)
        return 2

    try:
        if args.code is not None:
            program = compile_source(args.code, cfg)
        else:
            prog_path = Path(args.program)
            if not prog_path.exists():
                print("Program file not found:", args.program, file=sys.stderr)
                return 2
            if prog_path.suffix == ".bin":
                code = decode_stream(prog_path.read_bytes())
                program = Program(code, resolve(code))
            else:
                program = compile_source(prog_path.read_bytes(), cfg)
    except (UnmatchedBracket, CompressionOverflow, EOFError) as e:
        print("Compile error:", e, file=sys.stderr)
        return 1

    in_stream: BinaryIO = sys.stdin.buffer
    if args.input:
        input_path = Path(args.input)
        if not input_path.exists():
            print("Input file not found:", args.input, file=sys.stderr)
            return 2
        in_stream = io.BytesIO(input_path.read_bytes())

    dp = make_datapath(program, cfg, stdin=in_stream, stdout=sys.stdout.buffer)
    logging.info("Program length %d", len(program.code))
    cu = ControlUnit(dp)
    status = 0
    try:
        out, ticks, state = cu.run()
        logging.info("TICKS: %d STATE: %s", ticks, state)
    except (OutOfBounds, OSError) as e:
        print("Runtime fault:", e, file=sys.stderr)
        status = 1
    except KeyboardInterrupt:
        print("Interrupted at tick", dp.tick, file=sys.stderr)
        status = 130

    if args.dump:
        dump_tape(dp, args.dump)
    return status


if __name__ == "__main__":
    sys.exit(main())
