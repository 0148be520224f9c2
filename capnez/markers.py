"""Decorators that mark classes for schema generation."""

from __future__ import annotations

import enum
import inspect
import os
from pathlib import Path
from typing import Any, TypeVar

from .model import GENERATED_DIR, SCHEMA_FILE

T = TypeVar("T")

_CAPNP_FLAG = "__capnp__"
_BYTES_FLAG = "__capnp_bytes__"


def capnp(obj: T) -> T:
    """Mark a class, enum or protocol as a Cap'n Proto item."""
    if not inspect.isclass(obj):
        raise TypeError(
            "The @capnp decorator can only be used on classes, enums, and protocols"
        )
    setattr(obj, _CAPNP_FLAG, True)
    if _BYTES_FLAG not in vars(obj):
        setattr(obj, _BYTES_FLAG, False)
    return obj


def capnp_bytes(cls: T) -> T:
    """Mark a class as a Cap'n Proto item carried as raw bytes."""
    if not inspect.isclass(cls) or issubclass(cls, enum.Enum):
        raise TypeError("The @capnp_bytes decorator can only be used on classes")
    setattr(cls, _BYTES_FLAG, True)
    return capnp(cls)


def _marked_class(obj: Any) -> type:
    cls = obj if inspect.isclass(obj) else type(obj)
    if not vars(cls).get(_CAPNP_FLAG, False):
        raise TypeError(f"{cls.__name__} is not marked with @capnp")
    return cls


def is_capnp_bytes(obj: Any) -> bool:
    """Whether a marked class (or an instance of one) was declared with @capnp_bytes."""
    return bool(vars(_marked_class(obj))[_BYTES_FLAG])


def capnp_schema(obj: Any) -> str:
    """Return the generated schema text found under $OUT_DIR/generated."""
    _marked_class(obj)
    out_dir = os.environ.get("OUT_DIR")
    if not out_dir:
        raise RuntimeError("OUT_DIR is not set; cannot locate the generated schema")
    return (Path(out_dir) / GENERATED_DIR / SCHEMA_FILE).read_text(encoding="utf-8")