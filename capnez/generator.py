"""Build a Cap'n Proto schema from a tree of Python sources."""

from __future__ import annotations

import argparse
import ast
import subprocess
import sys
from pathlib import Path

from .model import (
    GENERATED_DIR,
    SCHEMA_FILE,
    CircularDependencyError,
    StructRegistry,
    render_schema,
)
from .scanner import (
    UnsupportedTypeError,
    collect_interfaces,
    collect_structs,
    register_structs,
)


class SchemaGenerationError(Exception):
    """Raised when a schema cannot be produced."""


def new_schema_id() -> str:
    """Ask the Cap'n Proto compiler for a fresh file id."""
    try:
        result = subprocess.run(
            ["capnpc", "-i"], capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SchemaGenerationError("Failed to run capnpc -i") from exc
    return result.stdout.strip().lstrip("@")


def _parse(path: Path) -> ast.Module:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise SchemaGenerationError(f"Failed to read {path}") from exc
    try:
        return ast.parse(text, filename=str(path))
    except SyntaxError as exc:
        raise SchemaGenerationError(f"Failed to parse {path}") from exc


def build_schema(source_dir: str | Path, schema_id: str | None = None) -> str:
    """Scan every Python file below source_dir and render the schema text."""
    root = Path(source_dir)
    if not root.is_dir():
        raise SchemaGenerationError(f"{root} is not a directory")
    trees = [_parse(path) for path in sorted(root.rglob("*.py")) if path.is_file()]

    registry = StructRegistry()
    for tree in trees:
        register_structs(tree, registry)

    structs = []
    interfaces = []
    for tree in trees:
        structs.extend(collect_structs(tree, registry))
        interfaces.extend(collect_interfaces(tree))

    if schema_id is None:
        schema_id = new_schema_id()
    return render_schema(schema_id.strip().lstrip("@"), structs, interfaces)


def generate_schema(
    source_dir: str | Path, out_dir: str | Path, schema_id: str | None = None
) -> Path:
    """Write the schema to out_dir/generated/schema.capnp and return its path."""
    output = Path(out_dir) / GENERATED_DIR
    output.mkdir(parents=True, exist_ok=True)
    schema = build_schema(source_dir, schema_id)
    schema_path = output / SCHEMA_FILE
    schema_path.write_text(schema, encoding="utf-8")
    print(f"Final schema file contents: {schema_path.read_text(encoding='utf-8')!r}")
    return schema_path


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="capnez", description="Generate a Cap'n Proto schema from Python sources."
    )
    parser.add_argument("source_dir", help="directory holding the annotated sources")
    parser.add_argument("out_dir", help="directory to write generated/schema.capnp into")
    parser.add_argument("--schema-id", help="file id to use instead of asking capnpc")
    args = parser.parse_args(argv)
    try:
        path = generate_schema(args.source_dir, args.out_dir, args.schema_id)
    except (SchemaGenerationError, UnsupportedTypeError, CircularDependencyError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())