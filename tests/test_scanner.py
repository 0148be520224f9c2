import ast

import pytest

from capnez.model import CapnpInterface, CapnpType, StructRegistry, TypeKind
from capnez.scanner import (
    UnsupportedTypeError,
    collect_interfaces,
    collect_structs,
    has_attrs,
    map_type,
    register_structs,
)

HELLO = '''
@derive(Serialize, Deserialize)
class Information:
    major: str
    age: u32


@capnp
@derive(Serialize, Deserialize)
class HelloRequest:
    name: str
    information: Information


@capnp
@serde
class HelloReply:
    message: str


@capnp
class HelloWorld(Protocol):
    def say_hello(self, request: HelloRequest) -> HelloReply: ...
'''


def _decorators(src):
    return ast.parse(src).body[0].decorator_list


def _ann(src):
    return ast.parse(src, mode="eval").body


@pytest.mark.parametrize(
    "src, expected",
    [
        ("@capnp\nclass A: pass", (True, False)),
        ("@capnez.markers.capnp\n@serde\nclass A: pass", (True, True)),
        ("@derive(Debug)\nclass A: pass", (False, False)),
        ("@derive(Clone, serde.Deserialize)\nclass A: pass", (False, True)),
        ("@dataclass\nclass A: pass", (False, False)),
    ],
)
def test_has_attrs(src, expected):
    assert has_attrs(_decorators(src)) == expected


@pytest.mark.parametrize(
    "src, expected",
    [
        ("str", CapnpType.text()),
        ("list[u64]", CapnpType.list_of(CapnpType(TypeKind.UINT64))),
        ("Optional[float]", CapnpType.optional(CapnpType(TypeKind.FLOAT64))),
        ("int | None", CapnpType.optional(CapnpType(TypeKind.UINT64))),
        ("typing.List[bool]", CapnpType.list_of(CapnpType(TypeKind.BOOL))),
        ("'matrix_entry'", CapnpType.struct("MatrixEntry")),
        ("Vec[SparseMatrix]", CapnpType.list_of(CapnpType.struct("SparseMatrix"))),
    ],
)
def test_map_type(src, expected):
    assert map_type(_ann(src), StructRegistry()) == expected


def test_serde_only_struct_maps_to_bytes():
    registry = StructRegistry()
    registry.register_serde_struct("Information")
    assert map_type(_ann("Information"), registry) == CapnpType(TypeKind.BYTES)
    registry.register_capnp_struct("Information")
    assert map_type(_ann("Information"), registry) == CapnpType.struct("Information")


@pytest.mark.parametrize("src", ["lambda: 0", "Optional", "Optional[()]", "int | str"])
def test_unsupported_types(src):
    with pytest.raises(UnsupportedTypeError):
        map_type(_ann(src), StructRegistry())


def test_register_structs():
    registry = StructRegistry()
    register_structs(ast.parse(HELLO), registry)
    assert registry.is_serde_struct("Information")
    assert not registry.is_capnp_struct("Information")
    assert registry.is_capnp_struct("HelloRequest")
    assert registry.is_serde_struct("HelloReply")
    assert not registry.is_capnp_struct("HelloWorld")


def test_collect_structs():
    structs = collect_structs(ast.parse(HELLO), StructRegistry())
    assert [s.name for s in structs] == ["HelloRequest", "HelloReply"]
    request = structs[0]
    assert request.has_serde
    assert not request.is_bytes
    assert request.fields == [
        ("name", 0, CapnpType.text()),
        ("information", 1, CapnpType(TypeKind.BYTES)),
    ]


def test_collect_structs_across_modules_needs_registration():
    user = ast.parse("@capnp\nclass Holder:\n    info: Information\n")
    other = ast.parse("@serde\nclass Information:\n    x: str\n")
    unregistered = collect_structs(user, StructRegistry())
    assert unregistered[0].fields[0][2] == CapnpType.struct("Information")
    registry = StructRegistry()
    register_structs(other, registry)
    registered = collect_structs(user, registry)
    assert registered[0].fields[0][2] == CapnpType(TypeKind.BYTES)


def test_field_names_and_class_vars():
    src = "@capnp\nclass Grid:\n    kind: ClassVar[str]\n    row_count: u32\n    def area(self): return 0\n"
    (grid,) = collect_structs(ast.parse(src), StructRegistry())
    assert grid.fields == [("rowCount", 0, CapnpType(TypeKind.UINT32))]


def test_collect_interfaces():
    interfaces = collect_interfaces(ast.parse(HELLO))
    assert interfaces == [
        CapnpInterface(
            "HelloWorld",
            [("sayHello", [("request", CapnpType.struct("HelloRequest"))], CapnpType.struct("HelloReply"))],
        )
    ]


def test_interface_uses_empty_registry():
    src = "@capnp\nclass Store(Protocol):\n    def put(self, info: Information) -> None: ...\n"
    (store,) = collect_interfaces(ast.parse(src))
    assert store.methods == [("put", [("info", CapnpType.struct("Information"))], None)]


def test_unmarked_protocol_is_ignored():
    src = "class Store(Protocol):\n    def put(self, x: str): ...\n"
    assert collect_interfaces(ast.parse(src)) == []


def test_interface_parameter_needs_annotation():
    src = "@capnp\nclass Store(Protocol):\n    def put(self, value): ...\n"
    with pytest.raises(UnsupportedTypeError):
        collect_interfaces(ast.parse(src))