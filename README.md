# capnez

capnez reads a tree of Python source files and writes a Cap'n Proto schema
(`schema.capnp`). The schema describes the classes and interfaces in those
files that are marked for it. The sources are parsed, not imported, so the
scanner recognises markings by the names of their decorators.

## Installation

```
pip install capnez
```

capnez has no runtime dependencies. To get a fresh schema id it runs
`capnpc -i`, so the Cap'n Proto compiler must be on your `PATH`. You can skip
that step by passing an id of your own.

## Marking classes

```python
from dataclasses import dataclass

from capnez.markers import capnp


@capnp
@dataclass
class HelloReply:
    message: str
```

`capnez.markers` provides these helpers:

- `capnp(obj)` marks a class, an enum or a protocol. It raises `TypeError` for anything that is not a class.
- `capnp_bytes(cls)` marks a class as carried as raw bytes, and also applies `capnp`. It raises `TypeError` for enums and for non-classes.
- `is_capnp_bytes(obj)` accepts a marked class or an instance of one. It tells whether that class was marked with `capnp_bytes`.
- `capnp_schema(obj)` returns the text of `$OUT_DIR/generated/schema.capnp`. It raises `RuntimeError` if `OUT_DIR` is not set.
- `is_capnp_bytes` and `capnp_schema` raise `TypeError` for a class that is not marked.

### What the scanner looks for

The scanner walks every `*.py` file below the source directory, in sorted
order. In each file it looks at the top-level classes and treats them as
follows:

- **A class with a decorator named `capnp` becomes a struct.** Its fields are its annotated class attributes, in order. `ClassVar` annotations are skipped.
- **A class with `Protocol` or `ABC` among its bases, and a decorator named `capnp`, becomes an interface.**
  - Each method becomes an interface method.
  - `self` and `cls` are dropped from the parameters.
  - Every other parameter must be annotated, otherwise `UnsupportedTypeError` is raised.
  - A missing return annotation, or a return annotation of `None`, means the method has no result.
- **A class counts as serde-serialised if it has a decorator named `serde`, or a `derive(...)` call that names `Serialize` or `Deserialize`.** The scanner only checks the decorator names. capnez does not define these decorators itself.

Names are converted on the way into the schema:

- Struct and interface names are written in PascalCase.
- Field, method and parameter names are written in camelCase.

### Type mapping

| Annotation | Schema type |
|---|---|
| `str`, `String` | `Text` |
| `u32` | `UInt32` |
| `int`, `u64` | `UInt64` |
| `f32` | `Float32` |
| `float`, `f64` | `Float64` |
| `bool` | `Bool` |
| `bytes` | `List(UInt8)` |
| `list[X]`, `List[X]`, `Vec[X]`, `Sequence[X]`, `tuple[X, ...]`, `Tuple[X, ...]` | `List(X)` |
| `Optional[X]`, `Option[X]`, `X \| None` | a union with `value @0 :X` and `none @1 :Void` |
| any other name | a struct of that name, in PascalCase |

Some rules apply on top of the table:

- A name that refers to a serde-serialised class not marked `capnp` maps to `List(UInt8)` instead of a struct. This leaves room for its serialised bytes.
- Annotations written as strings are parsed first.
- A union of two non-`None` types raises `capnez.scanner.UnsupportedTypeError`.
- An expression that is not a type name raises `capnez.scanner.UnsupportedTypeError`.
- A generic name without a type parameter raises `capnez.scanner.UnsupportedTypeError`.

## Generating a schema

From Python:

```python
from capnez.generator import build_schema, generate_schema, new_schema_id

text = build_schema("src", "0xd1a2b3c4d5e6f708")   # schema text only
path = generate_schema("src", "build")              # writes build/generated/schema.capnp
```

- If `schema_id` is omitted or `None`, `new_schema_id()` asks `capnpc -i` for a new one. A leading `@` on the id is removed.
- Structs are emitted in dependency order, followed by the interfaces.
- Structs that depend on each other in a cycle raise `capnez.model.CircularDependencyError`.
- A source directory that is missing or cannot be parsed raises `capnez.generator.SchemaGenerationError`, as does a failed `capnpc` call.
- `generate_schema` prints the written schema text and returns its path.

From the command line:

```
capnez SOURCE_DIR OUT_DIR [--schema-id ID]
```

The command writes `OUT_DIR/generated/schema.capnp` and prints its path. On
an error it prints a message to standard error and exits with status 1.

## Lower-level building blocks

`capnez.model` holds the schema model and these helpers:

- The model classes are `TypeKind`, `CapnpType`, `CapnpStruct`, `CapnpInterface` and `StructRegistry`.
- `to_pascal_case` and `to_camel_case` convert names.
- `topo_sort` orders structs by their dependencies.
- `render_schema(schema_id, structs, interfaces)` produces the schema text.

`capnez.scanner` builds that model from `ast` trees with these functions:

- `has_attrs`
- `map_type`
- `register_structs`
- `collect_structs`
- `collect_interfaces`

## Sparse matrix example

`capnez.sparse_matrix` is a small worked example. It provides these names:

- `SparseMatrix(rows, cols)` stores only non-zero entries. `insert(row, col, value)` raises `IndexError` for a position outside the matrix.
- `MatrixEntry` is a single entry. It can be encoded as compact JSON with `to_json_bytes()` and decoded with `MatrixEntry.from_json_bytes(data)`. Decoding raises `ValueError` on malformed input.
- `multiply(a, b)` returns the product, leaving out zero sums. It returns `None` when `a.cols != b.rows`.

To run the example:

```
capnez-sparse-matrix [--output PATH]
```

The command does the following:

1. It multiplies two fixed sample matrices.
2. It writes the result as a single-segment Cap'n Proto message, holding `rows`, `cols` and a list of JSON-encoded entries. The default path is `$OUT_DIR/target/result.bin`, or `./target/result.bin` when `OUT_DIR` is unset.
3. It reads the message back and checks that it matches the result.

## What capnez does not do

- It only writes the schema text. It does not compile the schema into code, and it does not add serialisation support to generated code.
- It provides no RPC client or server for the interfaces it describes.
- Apart from the fixed layout used by the sparse matrix example, it does not read or write Cap'n Proto messages.