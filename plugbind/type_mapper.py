"""Type mapping from IR type idents to Rust and TypeScript type references.

Each mapper has a logical form (the type as user code sees it) and a wire
form (the type at the function-call boundary): primitives cross by value,
everything else as a ``FatPtr`` to a serialized buffer.
"""

import re
from typing import Iterable

from .casing import field_wire_key, to_pascal_case, to_snake_case
from .errors import UnsupportedSchemaError
from .types import (
    Alias, Container, Custom, Enum, GenericArgument, List, Map, Primitive,
    PrimitiveType, String, Struct, Tuple, TypeIdent, TypeMap, Unit,
)

RUST_KEYWORDS = {
    "as", "async", "await", "break", "const", "continue", "crate", "dyn", "else",
    "enum", "extern", "false", "fn", "for", "if", "impl", "in", "let", "loop",
    "match", "mod", "move", "mut", "pub", "ref", "return", "self", "static",
    "struct", "super", "trait", "true", "type", "unsafe", "use", "where", "while",
}

# Keywords that stay reserved even as raw identifiers
RUST_PATH_KEYWORDS = {"crate", "self", "Self", "super"}


class RustTypeMapper:
    """Maps IR type idents to Rust types"""

    TARGET = "rust"

    @classmethod
    def format_ident(cls, ident: TypeIdent, types: TypeMap, scope: Iterable[str] = ()) -> str:
        scope = tuple(scope)
        ty = types.resolve(ident, scope)
        args = [cls.format_ident(a, types, scope) for a in ident.generic_args]

        if isinstance(ty, (Alias, Struct, Enum)):
            return _with_args(ty.name, args, "<", ">")
        if isinstance(ty, Container):
            return f"Option<{args[0]}>"
        if isinstance(ty, List):
            return f"Vec<{args[0]}>"
        if isinstance(ty, Map):
            return f"{ty.name}<{args[0]}, {args[1]}>"
        if isinstance(ty, Custom):
            return ty.rs_ty
        if isinstance(ty, GenericArgument):
            return ty.name
        if isinstance(ty, PrimitiveType):
            return ty.kind.value
        if isinstance(ty, String):
            return "String"
        if isinstance(ty, Tuple):
            if len(args) == 1:
                return f"({args[0]},)"
            return "(" + ", ".join(args) + ")"
        if isinstance(ty, Unit):
            return "()"
        raise UnsupportedSchemaError(f"Cannot format type {ty!r}", cls.TARGET)

    @classmethod
    def format_raw_ident(cls, ident: TypeIdent, types: TypeMap) -> str:
        """Type of the ``_raw`` runtime methods: serialized bytes for non-primitives"""
        if types.is_primitive(ident):
            return cls.format_ident(ident, types)
        types.resolve(ident)
        return "Vec<u8>"

    @classmethod
    def format_wasm_ident(cls, ident: TypeIdent, types: TypeMap) -> str:
        """Type at the WASM boundary"""
        if types.is_primitive(ident):
            return f"<{ident.name} as WasmAbi>::AbiType"
        types.resolve(ident)
        return "FatPtr"

    @classmethod
    def format_field_name(cls, name: str) -> str:
        return cls.escape(to_snake_case(name))

    @classmethod
    def format_variant_name(cls, name: str) -> str:
        return to_pascal_case(name)

    @classmethod
    def escape(cls, name: str) -> str:
        if name in RUST_PATH_KEYWORDS:
            raise UnsupportedSchemaError(f"`{name}` cannot be used as an identifier", cls.TARGET)
        if name in RUST_KEYWORDS:
            return f"r#{name}"
        return name


class TsTypeMapper:
    """Maps IR type idents to TypeScript types"""

    TARGET = "typescript"

    TS_PRIMITIVES = {
        Primitive.BOOL: "boolean",
        Primitive.F32: "number",
        Primitive.F64: "number",
        Primitive.I8: "number",
        Primitive.I16: "number",
        Primitive.I32: "number",
        Primitive.I64: "bigint",
        Primitive.I128: "bigint",
        Primitive.U8: "number",
        Primitive.U16: "number",
        Primitive.U32: "number",
        Primitive.U64: "bigint",
        Primitive.U128: "bigint",
    }

    @classmethod
    def format_ident(cls, ident: TypeIdent, types: TypeMap, scope: Iterable[str] = ()) -> str:
        scope = tuple(scope)
        ty = types.resolve(ident, scope)
        args = [cls.format_ident(a, types, scope) for a in ident.generic_args]

        if isinstance(ty, (Alias, Struct, Enum)):
            return _with_args(ty.name, args, "<", ">")
        if isinstance(ty, Container):
            return f"{args[0]} | null"
        if isinstance(ty, List):
            return f"Array<{args[0]}>"
        if isinstance(ty, Map):
            return f"Record<{args[0]}, {args[1]}>"
        if isinstance(ty, Custom):
            return ty.ts_ty
        if isinstance(ty, GenericArgument):
            return ty.name
        if isinstance(ty, PrimitiveType):
            return cls.TS_PRIMITIVES[ty.kind]
        if isinstance(ty, String):
            return "string"
        if isinstance(ty, Tuple):
            return "[" + ", ".join(args) + "]"
        if isinstance(ty, Unit):
            return "void"
        raise UnsupportedSchemaError(f"Cannot format type {ty!r}", cls.TARGET)

    @classmethod
    def format_wasm_ident(cls, ident: TypeIdent, types: TypeMap) -> str:
        ty = types.resolve(ident)
        if isinstance(ty, PrimitiveType):
            return cls.TS_PRIMITIVES[ty.kind]
        return "FatPtr"

    @classmethod
    def format_field_name(cls, name: str) -> str:
        """Property name; identical to the wire key"""
        key = field_wire_key(name)
        if re.fullmatch(r"[A-Za-z_$][A-Za-z0-9_$]*", key):
            return key
        return f'"{key}"'


def _with_args(name: str, args: list[str], open_: str, close: str) -> str:
    if not args:
        return name
    return f"{name}{open_}{', '.join(args)}{close}"
