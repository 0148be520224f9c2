"""Extract Cap'n Proto structs and interfaces from Python syntax trees."""

from __future__ import annotations

import ast
from collections.abc import Iterable, Iterator

from .model import (
    CapnpInterface,
    CapnpStruct,
    CapnpType,
    StructRegistry,
    TypeKind,
    to_camel_case,
    to_pascal_case,
)

_SERDE_DERIVES = frozenset({"Serialize", "Deserialize"})
_INTERFACE_BASES = frozenset({"Protocol", "ABC"})
_OPTIONAL_NAMES = frozenset({"Optional", "Option"})
_LIST_NAMES = frozenset({"list", "List", "Vec", "Sequence", "tuple", "Tuple"})
_RECEIVERS = frozenset({"self", "cls"})
_SCALARS = {
    "str": TypeKind.TEXT,
    "String": TypeKind.TEXT,
    "u32": TypeKind.UINT32,
    "u64": TypeKind.UINT64,
    "int": TypeKind.UINT64,
    "f32": TypeKind.FLOAT32,
    "f64": TypeKind.FLOAT64,
    "float": TypeKind.FLOAT64,
    "bool": TypeKind.BOOL,
    "bytes": TypeKind.BYTES,
}


class UnsupportedTypeError(TypeError):
    """Raised for an annotation that has no Cap'n Proto counterpart."""


def _path_name(node: ast.AST) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def _decorator_name(node: ast.AST) -> str | None:
    if isinstance(node, ast.Call):
        node = node.func
    return _path_name(node)


def _is_none(node: ast.AST) -> bool:
    return isinstance(node, ast.Constant) and node.value is None


def has_attrs(decorators: Iterable[ast.expr]) -> tuple[bool, bool]:
    """Return whether the decorators mark a capnp item and a serde item."""
    capnp = serde = False
    for decorator in decorators:
        name = _decorator_name(decorator)
        if name == "capnp":
            capnp = True
        elif name == "serde":
            serde = True
        elif name == "derive" and isinstance(decorator, ast.Call):
            serde = serde or any(
                isinstance(arg, (ast.Name, ast.Attribute)) and _path_name(arg) in _SERDE_DERIVES
                for arg in decorator.args
            )
    return capnp, serde


def _generic_arg(node: ast.Subscript, registry: StructRegistry) -> CapnpType:
    argument = node.slice
    if isinstance(argument, ast.Tuple):
        if not argument.elts:
            raise UnsupportedTypeError("Generic type must have a type parameter")
        argument = argument.elts[0]
    return map_type(argument, registry)


def _named_type(name: str, registry: StructRegistry) -> CapnpType:
    pascal = to_pascal_case(name)
    if registry.is_serde_struct(pascal) and not registry.is_capnp_struct(pascal):
        return CapnpType(TypeKind.BYTES)
    return CapnpType.struct(pascal)


def map_type(annotation: ast.expr, registry: StructRegistry) -> CapnpType:
    """Map a type annotation to a Cap'n Proto type."""
    if isinstance(annotation, ast.Constant) and isinstance(annotation.value, str):
        try:
            parsed = ast.parse(annotation.value, mode="eval").body
        except SyntaxError as exc:
            raise UnsupportedTypeError(f"Unsupported type {annotation.value!r}") from exc
        return map_type(parsed, registry)

    if isinstance(annotation, ast.BinOp) and isinstance(annotation.op, ast.BitOr):
        if _is_none(annotation.right):
            return CapnpType.optional(map_type(annotation.left, registry))
        if _is_none(annotation.left):
            return CapnpType.optional(map_type(annotation.right, registry))
        raise UnsupportedTypeError("Unsupported type: union of several types")

    subscript = annotation if isinstance(annotation, ast.Subscript) else None
    name = _path_name(subscript.value if subscript is not None else annotation)
    if name is None:
        raise UnsupportedTypeError(f"Unsupported type {ast.dump(annotation)}")

    if name in _SCALARS:
        return CapnpType(_SCALARS[name])
    if name in _OPTIONAL_NAMES or name in _LIST_NAMES:
        if subscript is None:
            raise UnsupportedTypeError("Generic type must have a type parameter")
        inner = _generic_arg(subscript, registry)
        if name in _OPTIONAL_NAMES:
            return CapnpType.optional(inner)
        return CapnpType.list_of(inner)
    return _named_type(name, registry)


def _is_interface(node: ast.ClassDef) -> bool:
    return any(_path_name(base) in _INTERFACE_BASES for base in node.bases)


def _struct_classes(tree: ast.Module) -> Iterator[ast.ClassDef]:
    for node in tree.body:
        if isinstance(node, ast.ClassDef) and not _is_interface(node):
            yield node


def _is_class_var(annotation: ast.expr) -> bool:
    target = annotation.value if isinstance(annotation, ast.Subscript) else annotation
    return _path_name(target) == "ClassVar"


def register_structs(tree: ast.Module, registry: StructRegistry) -> None:
    """Record every top-level struct's capnp and serde markings."""
    for node in _struct_classes(tree):
        capnp, serde = has_attrs(node.decorator_list)
        name = to_pascal_case(node.name)
        if serde:
            registry.register_serde_struct(name)
        if capnp:
            registry.register_capnp_struct(name)


def _make_struct(
    node: ast.ClassDef, name: str, has_serde: bool, registry: StructRegistry
) -> CapnpStruct:
    if has_serde:
        registry.register_serde_struct(name)
    registry.register_capnp_struct(name)
    annotated = [
        stmt
        for stmt in node.body
        if isinstance(stmt, ast.AnnAssign)
        and isinstance(stmt.target, ast.Name)
        and not _is_class_var(stmt.annotation)
    ]
    fields = [
        (to_camel_case(stmt.target.id), ordinal, map_type(stmt.annotation, registry))
        for ordinal, stmt in enumerate(annotated)
    ]
    return CapnpStruct(name, fields, has_serde=has_serde)


def collect_structs(tree: ast.Module, registry: StructRegistry) -> list[CapnpStruct]:
    """Collect the capnp-marked structs of a module."""
    for node in _struct_classes(tree):
        _, serde = has_attrs(node.decorator_list)
        if serde:
            registry.register_serde_struct(to_pascal_case(node.name))

    structs = []
    for node in _struct_classes(tree):
        capnp, serde = has_attrs(node.decorator_list)
        name = to_pascal_case(node.name)
        if serde:
            registry.register_serde_struct(name)
        if capnp:
            registry.register_capnp_struct(name)
            structs.append(_make_struct(node, name, serde, registry))
    return structs


def _make_interface(node: ast.ClassDef) -> CapnpInterface:
    registry = StructRegistry()
    methods = []
    for item in node.body:
        if not isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        positional = [*item.args.posonlyargs, *item.args.args]
        if positional and positional[0].arg in _RECEIVERS:
            positional = positional[1:]
        params = []
        for arg in [*positional, *item.args.kwonlyargs]:
            if arg.annotation is None:
                raise UnsupportedTypeError(
                    f"Parameter {arg.arg!r} of {item.name} has no type annotation"
                )
            params.append((to_camel_case(arg.arg), map_type(arg.annotation, registry)))
        if item.returns is None or _is_none(item.returns):
            ret = None
        else:
            ret = map_type(item.returns, registry)
        methods.append((to_camel_case(item.name), params, ret))
    return CapnpInterface(to_pascal_case(node.name), methods)


def collect_interfaces(tree: ast.Module) -> list[CapnpInterface]:
    """Collect capnp-marked protocol classes as interfaces."""
    return [
        _make_interface(node)
        for node in tree.body
        if isinstance(node, ast.ClassDef)
        and _is_interface(node)
        and has_attrs(node.decorator_list)[0]
    ]