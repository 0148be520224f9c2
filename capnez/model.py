"""Schema model: Cap'n Proto types, structs, interfaces and rendering."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

GENERATED_DIR = "generated"
SCHEMA_FILE = "schema.capnp"


class TypeKind(enum.Enum):
    """The kinds of Cap'n Proto type the generator emits."""

    TEXT = "Text"
    UINT32 = "UInt32"
    UINT64 = "UInt64"
    FLOAT32 = "Float32"
    FLOAT64 = "Float64"
    BOOL = "Bool"
    BYTES = "List(UInt8)"
    LIST = "List"
    OPTIONAL = "Optional"
    STRUCT = "Struct"


_CONTAINERS = frozenset({TypeKind.LIST, TypeKind.OPTIONAL})


@dataclass(frozen=True)
class CapnpType:
    """A Cap'n Proto field type."""

    kind: TypeKind
    inner: CapnpType | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if self.kind in _CONTAINERS and self.inner is None:
            raise ValueError(f"{self.kind.value} type needs an inner type")
        if self.kind is TypeKind.STRUCT and not self.name:
            raise ValueError("struct type needs a name")

    @classmethod
    def text(cls) -> CapnpType:
        return cls(TypeKind.TEXT)

    @classmethod
    def list_of(cls, inner: CapnpType) -> CapnpType:
        return cls(TypeKind.LIST, inner=inner)

    @classmethod
    def optional(cls, inner: CapnpType) -> CapnpType:
        return cls(TypeKind.OPTIONAL, inner=inner)

    @classmethod
    def struct(cls, name: str) -> CapnpType:
        return cls(TypeKind.STRUCT, name=name)

    def __str__(self) -> str:
        if self.kind is TypeKind.LIST:
            return f"List({self.inner})"
        if self.kind is TypeKind.OPTIONAL:
            return f"union {{\n  value @0 :{self.inner};\n  none @1 :Void;\n}}"
        if self.kind is TypeKind.STRUCT:
            return str(self.name)
        return self.kind.value


Field = tuple[str, int, CapnpType]
Method = tuple[str, list[tuple[str, CapnpType]], "CapnpType | None"]


@dataclass
class CapnpStruct:
    """A struct to be emitted in the schema."""

    name: str
    fields: list[Field] = field(default_factory=list)
    has_serde: bool = False
    is_bytes: bool = False

    def dependencies(self) -> set[str]:
        """Names of structs this struct refers to directly or one level down."""
        deps: set[str] = set()
        for _, _, ty in self.fields:
            if ty.kind is TypeKind.STRUCT:
                deps.add(ty.name)
            elif ty.kind in _CONTAINERS and ty.inner.kind is TypeKind.STRUCT:
                deps.add(ty.inner.name)
        return deps


@dataclass
class CapnpInterface:
    """An interface to be emitted in the schema."""

    name: str
    methods: list[Method] = field(default_factory=list)


@dataclass
class StructRegistry:
    """Records which struct names are Cap'n Proto structs and which are serde ones."""

    _entries: dict[str, tuple[bool, bool]] = field(default_factory=dict)

    def register_serde_struct(self, name: str) -> None:
        capnp, _ = self._entries.get(name, (False, False))
        self._entries[name] = (capnp, True)

    def register_capnp_struct(self, name: str) -> None:
        _, serde = self._entries.get(name, (False, False))
        self._entries[name] = (True, serde)

    def is_serde_struct(self, name: str) -> bool:
        return self._entries.get(name, (False, False))[1]

    def is_capnp_struct(self, name: str) -> bool:
        return self._entries.get(name, (False, False))[0]


class CircularDependencyError(ValueError):
    """Raised when struct definitions refer to each other in a cycle."""


def to_pascal_case(name: str) -> str:
    return "".join(word[:1].upper() + word[1:] for word in name.split("_"))


def to_camel_case(name: str) -> str:
    words = name.split("_")
    head = words[0][:1].lower() + words[0][1:]
    return head + "".join(word[:1].upper() + word[1:] for word in words[1:])


def topo_sort(structs: list[CapnpStruct]) -> list[int]:
    """Order struct indices by a depth-first walk of their dependencies."""
    positions: dict[str, int] = {}
    for index, struct in enumerate(structs):
        positions.setdefault(struct.name, index)

    visited: set[int] = set()
    in_progress: set[int] = set()
    order: list[int] = []

    def visit(index: int) -> None:
        if index in in_progress:
            raise CircularDependencyError(
                "Circular dependency detected in struct definitions"
            )
        if index in visited:
            return
        in_progress.add(index)
        for dep in sorted(structs[index].dependencies()):
            target = positions.get(dep)
            if target is not None:
                visit(target)
        in_progress.discard(index)
        visited.add(index)
        order.append(index)

    for index in range(len(structs)):
        if index not in visited:
            visit(index)
    order.reverse()
    return order


def render_schema(
    schema_id: str,
    structs: list[CapnpStruct],
    interfaces: list[CapnpInterface],
) -> str:
    """Render the complete schema text."""
    parts = [f"@{schema_id};\n"]
    for index in topo_sort(structs):
        struct = structs[index]
        parts.append(f"struct {struct.name} {{\n")
        parts.extend(f"  {name} @{ordinal} :{ty};\n" for name, ordinal, ty in struct.fields)
        parts.append("}\n\n")
    for interface in interfaces:
        parts.append(f"interface {interface.name} {{\n")
        for name, params, ret in interface.methods:
            args = ", ".join(f"{pname} :{pty}" for pname, pty in params)
            suffix = f" -> {ret}" if ret is not None else ""
            parts.append(f"  {name} @0 ({args}){suffix};\n")
        parts.append("}\n\n")
    return "".join(parts)