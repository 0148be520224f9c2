import pytest

from capnez.model import (
    CapnpInterface,
    CapnpStruct,
    CapnpType,
    CircularDependencyError,
    StructRegistry,
    TypeKind,
    render_schema,
    to_camel_case,
    to_pascal_case,
    topo_sort,
)


def test_scalar_rendering():
    assert str(CapnpType.text()) == "Text"
    assert str(CapnpType(TypeKind.UINT32)) == "UInt32"
    assert str(CapnpType(TypeKind.BYTES)) == "List(UInt8)"


def test_list_rendering():
    assert str(CapnpType.list_of(CapnpType.struct("Point"))) == "List(Point)"


def test_optional_rendering():
    rendered = str(CapnpType.optional(CapnpType(TypeKind.FLOAT64)))
    assert rendered == "union {\n  value @0 :Float64;\n  none @1 :Void;\n}"


def test_container_requires_inner():
    with pytest.raises(ValueError):
        CapnpType(TypeKind.LIST)
    with pytest.raises(ValueError):
        CapnpType(TypeKind.STRUCT)


@pytest.mark.parametrize(
    "raw, expected",
    [("hello_world", "HelloWorld"), ("Person", "Person"), ("sparse_matrix_data", "SparseMatrixData")],
)
def test_to_pascal_case(raw, expected):
    assert to_pascal_case(raw) == expected


def test_to_camel_case():
    assert to_camel_case("say_hello") == "sayHello"
    assert to_camel_case("major") == "major"
    assert to_camel_case("Name") == "name"


def test_dependencies_one_level_deep():
    struct = CapnpStruct(
        "Holder",
        [
            ("a", 0, CapnpType.struct("Alpha")),
            ("b", 1, CapnpType.list_of(CapnpType.struct("Beta"))),
            ("c", 2, CapnpType.optional(CapnpType.struct("Gamma"))),
            ("d", 3, CapnpType.list_of(CapnpType.list_of(CapnpType.struct("Delta")))),
            ("e", 4, CapnpType.text()),
        ],
    )
    assert struct.dependencies() == {"Alpha", "Beta", "Gamma"}


def test_registry_flags_are_independent():
    registry = StructRegistry()
    registry.register_serde_struct("Info")
    registry.register_capnp_struct("Request")
    registry.register_capnp_struct("Info")
    assert registry.is_serde_struct("Info")
    assert registry.is_capnp_struct("Info")
    assert registry.is_capnp_struct("Request")
    assert not registry.is_serde_struct("Request")
    assert not registry.is_capnp_struct("Unknown")


def test_topo_sort_places_dependents_first():
    structs = [
        CapnpStruct("Leaf", [("x", 0, CapnpType.text())]),
        CapnpStruct("Root", [("leaf", 0, CapnpType.struct("Leaf"))]),
    ]
    order = topo_sort(structs)
    assert sorted(order) == [0, 1]
    assert order.index(1) < order.index(0)


def test_topo_sort_ignores_unknown_dependencies():
    structs = [CapnpStruct("Only", [("x", 0, CapnpType.struct("Elsewhere"))])]
    assert topo_sort(structs) == [0]


def test_topo_sort_detects_cycle():
    structs = [
        CapnpStruct("A", [("b", 0, CapnpType.struct("B"))]),
        CapnpStruct("B", [("a", 0, CapnpType.optional(CapnpType.struct("A")))]),
    ]
    with pytest.raises(CircularDependencyError):
        topo_sort(structs)


def test_render_schema_structs_and_interfaces():
    person = CapnpStruct(
        "Person",
        [("name", 0, CapnpType.text()), ("age", 1, CapnpType(TypeKind.UINT32))],
    )
    greeter = CapnpInterface(
        "HelloWorld",
        [("sayHello", [("request", CapnpType.struct("HelloRequest"))], CapnpType.struct("HelloReply"))],
    )
    schema = render_schema("0xabc", [person], [greeter])
    assert schema.startswith("@0xabc;\n")
    assert "struct Person {\n  name @0 :Text;\n  age @1 :UInt32;\n}\n\n" in schema
    assert (
        "interface HelloWorld {\n  sayHello @0 (request :HelloRequest) -> HelloReply;\n}\n\n"
        in schema
    )
    assert schema.index("struct Person") < schema.index("interface HelloWorld")


def test_render_method_without_return():
    iface = CapnpInterface("Sink", [("push", [], None)])
    schema = render_schema("0x1", [], [iface])
    assert schema == "@0x1;\ninterface Sink {\n  push @0 ();\n}\n\n"