"""Check that batch action handlers include audit logging.

Usage:
    python -m scripts.check_admin_patterns [path ...]

Without arguments the crudadmin package is scanned.
"""

from __future__ import annotations

import ast
import sys
from pathlib import Path

AUDIT_CALLS = {"record_admin_action", "_audit"}


def _decorator_is_batch_action(dec: ast.AST) -> bool:
    if not isinstance(dec, ast.Call):
        return False
    func = dec.func
    if isinstance(func, ast.Name):
        return func.id == "batch_action"
    return isinstance(func, ast.Attribute) and func.attr == "batch_action"


def _function_has_admin_audit(func: ast.AST) -> bool:
    for node in ast.walk(func):
        if not isinstance(node, ast.Call):
            continue
        if isinstance(node.func, ast.Name) and node.func.id in AUDIT_CALLS:
            return True
        if isinstance(node.func, ast.Attribute) and node.func.attr in AUDIT_CALLS:
            return True
    return False


def iter_batch_handlers(tree: ast.AST):
    for node in ast.walk(tree):
        if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        if any(_decorator_is_batch_action(dec) for dec in node.decorator_list):
            yield node


def find_missing(paths: list[Path]) -> list[str]:
    missing: list[str] = []
    for path in paths:
        files = sorted(path.rglob("*.py")) if path.is_dir() else [path]
        for source in files:
            tree = ast.parse(source.read_text(), filename=str(source))
            for func in iter_batch_handlers(tree):
                if not _function_has_admin_audit(func):
                    missing.append(f"{source}:{func.lineno} ({func.name})")
    return missing


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if args:
        paths = [Path(a) for a in args]
    else:
        paths = [Path(__file__).resolve().parents[1] / "crudadmin"]

    try:
        missing = find_missing(paths)
    except SyntaxError as exc:
        print(f"❌ Syntax error: {exc}")
        return 1

    if missing:
        print("⚠️  Batch actions missing an admin audit record:")
        for entry in missing:
            print(f" - {entry}")
        return 1

    print("✅ Batch actions include an admin audit record")
    return 0


if __name__ == "__main__":
    sys.exit(main())
