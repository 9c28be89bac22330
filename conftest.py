"""File for tests."""

import io
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
import yaml

HELLO_WORLD = (
    "++++++++[>++++[>++>+++>+++>+<<<<-]>+>+>->>+[<]<-]"
    ">>.>---.+++++++..+++.>>.<-.<.+++.------.--------.>>+.>++."
)


def pytest_configure(config: Any) -> None:
    """Configure the tests."""
    config.addinivalue_line(
        "markers",
        "golden_test(pattern): parameterize test with YAML files matching pattern",
    )


def _iter_marker_patterns(node: Any) -> Iterator[str]:
    """Yield pattern strings from golden_test markers on `node`."""
    for m in node.iter_markers(name="golden_test"):
        if m.args:
            yield m.args[0]
        else:
            yield "golden/*.yaml"


def _load_golden(p: Path) -> Any:
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        data = {"__yaml_load_error__": str(e)}
    if isinstance(data, dict):
        data.setdefault("__path__", str(p))
        data.setdefault("__name__", p.name)
    return data


def pytest_generate_tests(metafunc: Any) -> None:
    """Generate tests (parametrization) from YAML golden files."""
    if "golden" not in metafunc.fixturenames:
        return

    patterns: list[str] = list(_iter_marker_patterns(metafunc.definition)) or ["golden/*.yaml"]
    root = Path(metafunc.config.rootpath)

    files: list[Path] = []
    for pat in patterns:
        files.extend(sorted(root.glob(pat)))

    if not files:
        return

    metafunc.parametrize("golden", [_load_golden(p) for p in files], ids=[p.name for p in files])


@pytest.fixture
def hello_world() -> str:
    """The textbook program printing "Hello World!\\n"."""
    return HELLO_WORLD


@pytest.fixture
def run_vm() -> Callable[..., tuple[bytes, int, str]]:
    """Compile and run a program on in-memory streams; returns (output, ticks, state)."""
    from config import load_config
    from processor import run_source

    def _run(source: str | bytes, stdin: bytes = b"", **overrides: Any) -> tuple[bytes, int, str]:
        cfg = load_config(overrides or None)
        out = io.BytesIO()
        result = run_source(source, cfg, stdin=io.BytesIO(stdin), stdout=out)
        assert out.getvalue() == result[0]
        return result

    return _run
