#!/usr/bin/env python3
"""
Fill out_code (!!binary) and out_code_hex in a golden YAML record.
Usage: python generate_golden_fields.py path/to/golden.yaml
"""

import os
import sys

import yaml

from compiler import Compiler
from config import ConfigError, load_config
from isa import listing


def compile_golden_source(src_code, config):
    comp = Compiler(
        src_code,
        min_run=config["min_run"],
        overflow=config["overflow"],
        pack=config["pack"],
    )
    program = comp.compile()
    return comp.encode(), listing(program.code)


def main(path):
    if not os.path.exists(path):
        print("File not found:", path)
        sys.exit(2)

    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}

    src_code = doc.get("source")
    if src_code is None:
        print("No 'source' found in YAML - nothing to compile")
        sys.exit(2)

    try:
        cfg = load_config(doc.get("config"))
    except ConfigError as e:
        print("Bad config in golden:", e)
        sys.exit(2)

    code_bytes, code_hex = compile_golden_source(src_code, cfg)

    # place generated fields under expect, creating it if needed
    target = doc.setdefault("expect", {})
    target["out_code"] = code_bytes  # bytes -> yaml !!binary
    target["out_code_hex"] = code_hex

    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(doc, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    print(f"Updated {path} with out_code (!!binary) and out_code_hex (text).")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: generate_golden_fields.py path/to/golden.yaml")
        sys.exit(1)
    main(sys.argv[1])
