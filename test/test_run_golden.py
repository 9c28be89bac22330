"""Golden-test runner for the source -> compressed code -> VM pipeline.

This test loads golden YAML records and runs the compilation -> VM pipeline,
then compares produced outputs (stdout, code, hex, ticks, state, tape, log,
errors) against the expectations in the golden files.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import processor
import pytest
from compiler import Compiler, UnmatchedBracket
from config import load_config
from isa import CompressionOverflow, listing
from processor import ControlUnit, OutOfBounds, make_datapath


def _mismatch(msg_title: str, got_text: str, expected_text: str) -> str:
    return f"{msg_title}\n--- got ---\n{got_text}\n--- expected ---\n{expected_text}"


def _check_error(expect: dict[str, Any], error: Exception | None) -> None:
    if "error" not in expect:
        if error is not None:
            raise AssertionError(f"unexpected error: {type(error).__name__}: {error}")
        return
    assert error is not None, f"expected {expect['error']} but the run succeeded"
    assert type(error).__name__ == expect["error"]
    if "error_position" in expect:
        assert getattr(error, "position", None) == int(expect["error_position"])


def _close_logging() -> None:
    root = logging.getLogger()
    for h in list(root.handlers):
        h.flush()
        h.close()
        root.removeHandler(h)
    root.setLevel(logging.WARNING)


@pytest.mark.golden_test("golden/*.yaml")
def test_translator_and_vm(golden: Any) -> None:  # noqa: C901
    """Run one golden record: compile, run and compare outputs."""
    assert "__yaml_load_error__" not in golden, golden.get("__yaml_load_error__")
    src = golden.get("source")
    if src is None:
        pytest.skip("No source provided in golden record")

    cfg = load_config(golden.get("config"))
    expect = golden.get("expect") or {}

    comp = Compiler(src, min_run=cfg["min_run"], overflow=cfg["overflow"], pack=cfg["pack"])
    try:
        program = comp.compile()
    except (UnmatchedBracket, CompressionOverflow) as e:
        _check_error(expect, e)
        return

    code_bytes = comp.encode()
    code_hex = listing(program.code)

    if "out_code" in expect:
        expected_code = expect["out_code"]
        assert isinstance(expected_code, (bytes, bytearray)), "golden.out_code must be binary"
        assert bytes(expected_code) == code_bytes, "machine code bytes mismatch"

    if "out_code_hex" in expect:
        exp_code_hex = (expect["out_code_hex"] or "").strip()
        if code_hex.strip() != exp_code_hex:
            raise AssertionError(_mismatch("code hex mismatch", code_hex, exp_code_hex))

    stdin = io.BytesIO(str(golden.get("in_stdin", "")).encode("latin-1"))
    stdout = io.BytesIO()

    with tempfile.TemporaryDirectory() as tmp:
        log_path = os.path.join(tmp, "vm.log")
        processor.init_logging(logfile=log_path, debug=True, console=False)

        dp = make_datapath(program, cfg, stdin=stdin, stdout=stdout)
        cu = ControlUnit(dp)
        error: Exception | None = None
        try:
            cu.run()
        except OutOfBounds as e:
            error = e

        _close_logging()
        log_text = Path(log_path).read_text(encoding="utf-8")

    _check_error(expect, error)

    # output reaches the stream even when the run faults
    assert stdout.getvalue() == bytes(dp.output_buffer)

    if "out_stdout" in expect:
        got = bytes(dp.output_buffer).decode("latin-1")
        if got != expect["out_stdout"]:
            raise AssertionError(_mismatch("stdout mismatch", repr(got), repr(expect["out_stdout"])))

    if "ticks" in expect:
        assert dp.tick == int(expect["ticks"]), f"ticks mismatch: got {dp.tick} expected {expect['ticks']}"

    if "state" in expect:
        assert dp.state == expect["state"], f"state mismatch: got {dp.state} expected {expect['state']}"

    if "pointer" in expect:
        assert dp.PTR == int(expect["pointer"])

    if "tape" in expect:
        tape_expect = expect["tape"]
        assert isinstance(tape_expect, dict), "expect.tape must be dict"
        for k, v in tape_expect.items():
            addr = int(k)
            assert 0 <= addr < dp.tape_cells, f"tape addr {addr} out of bounds"
            assert dp.tape[addr] == int(v), f"tape[{addr}] mismatch: got {dp.tape[addr]} expected {v}"

    for needle in expect.get("log_contains", []):
        assert needle in log_text, f"log does not contain {needle!r}"
