"""Sparse matrices with JSON-encoded entries stored in a Cap'n Proto message."""

from __future__ import annotations

import argparse
import json
import os
import struct
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

from .markers import capnp

_WORD = 8
_POINTER_ELEMENTS = 6
_BYTE_ELEMENTS = 2
_STRUCT_POINTER = 0
_LIST_POINTER = 1


@dataclass(frozen=True)
class MatrixEntry:
    """One non-zero value of a sparse matrix."""

    row: int
    col: int
    value: float

    def to_json_bytes(self) -> bytes:
        """Encode the entry as compact JSON."""
        document = {"row": self.row, "col": self.col, "value": float(self.value)}
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_json_bytes(cls, data: bytes) -> MatrixEntry:
        """Decode an entry from the JSON produced by to_json_bytes."""
        try:
            document = json.loads(data)
            row, col, value = document["row"], document["col"], document["value"]
        except (ValueError, TypeError, KeyError) as exc:
            raise ValueError(f"invalid matrix entry: {exc}") from exc
        if not all(isinstance(index, int) and not isinstance(index, bool) for index in (row, col)):
            raise ValueError("matrix entry indices must be integers")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("matrix entry value must be a number")
        return cls(row, col, float(value))


@capnp
@dataclass
class SparseMatrix:
    """A matrix of the given shape holding only its non-zero entries."""

    rows: int
    cols: int
    values: list[MatrixEntry] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.rows < 0 or self.cols < 0:
            raise ValueError("matrix dimensions must not be negative")

    def insert(self, row: int, col: int, value: float) -> None:
        """Append an entry; raise IndexError if it lies outside the matrix."""
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError("Index out of bounds")
        self.values.append(MatrixEntry(row, col, value))


def multiply(a: SparseMatrix, b: SparseMatrix) -> SparseMatrix | None:
    """Return a × b, or None when the inner dimensions differ."""
    if a.cols != b.rows:
        return None

    b_rows: list[dict[int, float]] = [{} for _ in range(b.rows)]
    for entry in b.values:
        b_rows[entry.row][entry.col] = entry.value

    a_rows: dict[int, list[MatrixEntry]] = defaultdict(list)
    for entry in a.values:
        a_rows[entry.row].append(entry)

    result = SparseMatrix(a.rows, b.cols)
    for a_row in sorted(a_rows):
        sums: dict[int, float] = {}
        for a_entry in a_rows[a_row]:
            for b_col, b_value in b_rows[a_entry.col].items():
                sums[b_col] = sums.get(b_col, 0.0) + a_entry.value * b_value
        for col, value in sums.items():
            if value != 0.0:
                result.insert(a_row, col, value)
    return result


def _struct_pointer(offset: int, data_words: int, pointer_count: int) -> int:
    return _STRUCT_POINTER | (offset & 0x3FFFFFFF) << 2 | data_words << 32 | pointer_count << 48


def _list_pointer(offset: int, element_size: int, count: int) -> int:
    return _LIST_POINTER | (offset & 0x3FFFFFFF) << 2 | element_size << 32 | count << 35


def _pointer_offset(word: int) -> int:
    raw = (word >> 2) & 0x3FFFFFFF
    return raw - (1 << 30) if raw & 0x20000000 else raw


def _encode_message(matrix: SparseMatrix) -> bytes:
    """Encode a matrix as a single-segment Cap'n Proto message."""
    payloads = [entry.to_json_bytes() for entry in matrix.values]
    list_start = 3
    segment = bytearray(_WORD * (list_start + len(payloads)))
    struct.pack_into("<Q", segment, 0, _struct_pointer(0, 1, 1))
    struct.pack_into("<II", segment, _WORD, matrix.rows, matrix.cols)
    struct.pack_into("<Q", segment, 2 * _WORD, _list_pointer(0, _POINTER_ELEMENTS, len(payloads)))
    for index, payload in enumerate(payloads):
        pointer_word = list_start + index
        content_word = len(segment) // _WORD
        offset = content_word - (pointer_word + 1)
        struct.pack_into(
            "<Q", segment, pointer_word * _WORD,
            _list_pointer(offset, _BYTE_ELEMENTS, len(payload)),
        )
        segment += payload + bytes(-len(payload) % _WORD)
    header = struct.pack("<II", 0, len(segment) // _WORD)
    return header + bytes(segment)


def _decode_message(data: bytes) -> SparseMatrix:
    """Decode a message written by _encode_message."""
    if len(data) < 8:
        raise ValueError("message is too short")
    extra_segments, size = struct.unpack_from("<II", data, 0)
    if extra_segments != 0:
        raise ValueError("expected a single-segment message")
    segment = data[8:8 + size * _WORD]
    if len(segment) != size * _WORD:
        raise ValueError("message is truncated")

    def word(index: int) -> int:
        if not 0 <= index < size:
            raise ValueError("pointer out of bounds")
        return struct.unpack_from("<Q", segment, index * _WORD)[0]

    root = word(0)
    if root & 3 != _STRUCT_POINTER:
        raise ValueError("root is not a struct")
    start = 1 + _pointer_offset(root)
    data_words = (root >> 32) & 0xFFFF
    pointer_count = root >> 48
    if data_words < 1 or pointer_count < 1:
        raise ValueError("root struct is too small")
    word(start)
    rows, cols = struct.unpack_from("<II", segment, start * _WORD)

    values_index = start + data_words
    values_pointer = word(values_index)
    matrix = SparseMatrix(rows, cols)
    if values_pointer == 0:
        return matrix
    if values_pointer & 3 != _LIST_POINTER or (values_pointer >> 32) & 7 != _POINTER_ELEMENTS:
        raise ValueError("values is not a list of pointers")
    list_start = values_index + 1 + _pointer_offset(values_pointer)
    for index in range(values_pointer >> 35):
        pointer_index = list_start + index
        pointer = word(pointer_index)
        if pointer & 3 != _LIST_POINTER or (pointer >> 32) & 7 != _BYTE_ELEMENTS:
            raise ValueError("value is not a byte list")
        begin = (pointer_index + 1 + _pointer_offset(pointer)) * _WORD
        count = pointer >> 35
        if begin < 0 or begin + count > len(segment):
            raise ValueError("byte list out of bounds")
        entry = MatrixEntry.from_json_bytes(segment[begin:begin + count])
        matrix.insert(entry.row, entry.col, entry.value)
    return matrix


def _build_matrix(rows: int, cols: int, entries: list[tuple[int, int, float]]) -> SparseMatrix:
    matrix = SparseMatrix(rows, cols)
    for row, col, value in entries:
        matrix.insert(row, col, value)
    return matrix


def _default_output() -> Path:
    return Path(os.environ.get("OUT_DIR", ".")) / "target" / "result.bin"


def main(argv: list[str] | None = None) -> int:
    """Multiply two sample matrices, store the result and read it back."""
    parser = argparse.ArgumentParser(
        prog="sparse-matrix", description="Multiply sample sparse matrices and serialize the result."
    )
    parser.add_argument("--output", type=Path, default=None, help="file to write the message to")
    args = parser.parse_args(argv)
    path: Path = args.output if args.output is not None else _default_output()

    a = _build_matrix(3, 4, [(0, 0, 1.0), (0, 2, 2.0), (1, 1, 3.0), (2, 0, 4.0), (2, 3, 5.0)])
    b = _build_matrix(4, 2, [(0, 0, 1.0), (1, 1, 2.0), (2, 0, 3.0), (3, 1, 4.0)])
    result = multiply(a, b)
    if result is None:
        raise ValueError("Matrix dimensions should be compatible")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(_encode_message(result))
    print(f"\nSerialized to {path}")

    restored = _decode_message(path.read_bytes())
    if (restored.rows, restored.cols) != (result.rows, result.cols):
        raise RuntimeError("deserialized dimensions differ")
    if len(restored.values) != len(result.values):
        raise RuntimeError("deserialized entry count differs")
    for got, expected in zip(restored.values, result.values):
        if (got.row, got.col) != (expected.row, expected.col) or abs(got.value - expected.value) >= 1e-6:
            raise RuntimeError("deserialized entry differs")
    print("Deserialization passed!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())