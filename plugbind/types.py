"""Data types for the binding IR.

Everything here is immutable: the IR is built once by whatever extracts it
from annotated sources, handed to a generator, and discarded afterwards.
Types refer to each other through ``TypeIdent`` values that are resolved
against a ``TypeMap``.
"""

import re
from dataclasses import dataclass
from enum import Enum as _PyEnum
from typing import Iterable, Iterator, Optional, Union

from .casing import Casing
from .errors import UnsupportedSchemaError


class Primitive(_PyEnum):
    BOOL = "bool"
    F32 = "f32"
    F64 = "f64"
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    I128 = "i128"
    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    U128 = "u128"

    @property
    def bits(self) -> int:
        if self is Primitive.BOOL:
            return 1
        return int(self.value[1:])

    @property
    def is_float(self) -> bool:
        return self in (Primitive.F32, Primitive.F64)

    @property
    def is_signed(self) -> bool:
        return self.value.startswith("i")

    @property
    def is_wide(self) -> bool:
        """Whether the value needs more than a 32-bit machine word"""
        return self.bits > 32


@dataclass(frozen=True, order=True)
class TypeIdent:
    """A type name plus its generic arguments"""
    name: str
    generic_args: tuple["TypeIdent", ...] = ()

    def __str__(self) -> str:
        if self.name == TUPLE_NAME:
            if len(self.generic_args) == 1:
                return f"({self.generic_args[0]},)"
            return "(" + ", ".join(str(a) for a in self.generic_args) + ")"
        if not self.generic_args:
            return self.name
        return f"{self.name}<" + ", ".join(str(a) for a in self.generic_args) + ">"

    @classmethod
    def parse(cls, text: str) -> "TypeIdent":
        """Parse ``Name<Arg, Arg>`` or ``(A, B)`` notation"""
        ident, rest = _parse_ident(text.strip())
        if rest.strip():
            raise ValueError(f"Trailing characters in type {text!r}: {rest!r}")
        return ident


_NAME_RE = re.compile(r"\s*([A-Za-z_][A-Za-z0-9_:]*)")


def _parse_list(text: str, close: str) -> tuple[list[TypeIdent], str]:
    items = []
    text = text.lstrip()
    while not text.startswith(close):
        item, text = _parse_ident(text)
        items.append(item)
        text = text.lstrip()
        if text.startswith(","):
            text = text[1:].lstrip()
        elif not text.startswith(close):
            raise ValueError(f"Expected ',' or '{close}' at {text!r}")
    return items, text[1:]


def _parse_ident(text: str) -> tuple[TypeIdent, str]:
    text = text.lstrip()
    if text.startswith("("):
        items, rest = _parse_list(text[1:], ")")
        if not items:
            return TypeIdent(UNIT_NAME), rest
        return TypeIdent(TUPLE_NAME, tuple(items)), rest

    m = _NAME_RE.match(text)
    if not m:
        raise ValueError(f"Expected a type name at {text!r}")
    name = m.group(1)
    rest = text[m.end():].lstrip()
    if rest.startswith("<"):
        args, rest = _parse_list(rest[1:], ">")
        return TypeIdent(name, tuple(args)), rest
    return TypeIdent(name), rest


UNIT_NAME = "()"
TUPLE_NAME = "Tuple"


@dataclass(frozen=True)
class Field:
    """Struct field"""
    name: str
    ty: TypeIdent
    doc_lines: tuple[str, ...] = ()


@dataclass(frozen=True)
class EnumOptions:
    """Selects how an enum is encoded on the wire"""
    variant_casing: Casing = Casing.ORIGINAL
    tag_prop_name: Optional[str] = None
    content_prop_name: Optional[str] = None
    untagged: bool = False

    def __post_init__(self):
        if self.content_prop_name and not self.tag_prop_name:
            raise UnsupportedSchemaError("Enum content property requires a tag property")
        if self.untagged and self.tag_prop_name:
            raise UnsupportedSchemaError("Untagged enums cannot declare a tag property")

    @property
    def encoding(self) -> "EnumEncoding":
        if self.untagged:
            return EnumEncoding.UNTAGGED
        if self.tag_prop_name and self.content_prop_name:
            return EnumEncoding.ADJACENT
        if self.tag_prop_name:
            return EnumEncoding.INTERNAL
        return EnumEncoding.EXTERNAL


class EnumEncoding(_PyEnum):
    EXTERNAL = "external"    # "Variant" / {"Variant": payload}
    ADJACENT = "adjacent"    # {tag: "Variant", content: payload}
    INTERNAL = "internal"    # {tag: "Variant", ...payload fields}
    UNTAGGED = "untagged"    # payload


# --- Type variants ---


@dataclass(frozen=True)
class Alias:
    name: str
    aliased: TypeIdent


@dataclass(frozen=True)
class Container:
    """Optional value; ``inner`` is the declared generic parameter"""
    name: str = "Option"
    inner: TypeIdent = TypeIdent("T")


@dataclass(frozen=True)
class Custom:
    """Escape hatch: literal type strings per target"""
    ident: TypeIdent
    rs_ty: str
    ts_ty: str

    @property
    def name(self) -> str:
        return self.ident.name


@dataclass(frozen=True)
class Variant:
    name: str
    ty: "Type"
    doc_lines: tuple[str, ...] = ()


@dataclass(frozen=True)
class Enum:
    name: str
    generics: tuple[str, ...] = ()
    variants: tuple[Variant, ...] = ()
    options: EnumOptions = EnumOptions()
    doc_lines: tuple[str, ...] = ()


@dataclass(frozen=True)
class GenericArgument:
    name: str


@dataclass(frozen=True)
class List:
    name: str = "Vec"
    inner: TypeIdent = TypeIdent("T")


@dataclass(frozen=True)
class Map:
    name: str = "BTreeMap"
    key: TypeIdent = TypeIdent("K")
    value: TypeIdent = TypeIdent("V")


@dataclass(frozen=True)
class PrimitiveType:
    kind: Primitive

    @property
    def name(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class String:
    name: str = "String"


@dataclass(frozen=True)
class Struct:
    name: str
    generics: tuple[str, ...] = ()
    fields: tuple[Field, ...] = ()
    doc_lines: tuple[str, ...] = ()


@dataclass(frozen=True)
class Tuple:
    items: tuple[TypeIdent, ...] = ()

    @property
    def name(self) -> str:
        return str(TypeIdent(TUPLE_NAME, self.items))


@dataclass(frozen=True)
class Unit:
    name: str = UNIT_NAME


Type = Union[Alias, Container, Custom, Enum, GenericArgument, List, Map,
             PrimitiveType, String, Struct, Tuple, Unit]


def type_generics(ty: Type) -> tuple[str, ...]:
    """Names of the generic parameters a type is declared with"""
    if isinstance(ty, (Struct, Enum)):
        return ty.generics
    if isinstance(ty, (Container, List)):
        return (ty.inner.name,)
    if isinstance(ty, Map):
        return (ty.key.name, ty.value.name)
    return ()


# --- Functions ---


@dataclass(frozen=True)
class FunctionArg:
    name: str
    ty: TypeIdent


@dataclass(frozen=True)
class Function:
    """Function signature crossing the plugin boundary"""
    name: str
    args: tuple[FunctionArg, ...] = ()
    return_type: Optional[TypeIdent] = None
    is_async: bool = False
    doc_lines: tuple[str, ...] = ()
    modifiers: tuple[str, ...] = ()


class FunctionList:
    """Functions in declaration order; names are unique"""

    def __init__(self, functions: Iterable[Function] = ()):
        self._functions: list[Function] = []
        for function in functions:
            self.add(function)

    def add(self, function: Function):
        if function.name in self:
            raise UnsupportedSchemaError(f"Duplicate function: {function.name}")
        self._functions.append(function)

    def __contains__(self, name: object) -> bool:
        return any(f.name == name for f in self._functions)

    def __iter__(self) -> Iterator[Function]:
        return iter(self._functions)

    def __len__(self) -> int:
        return len(self._functions)

    def __repr__(self) -> str:
        return f"FunctionList({[f.name for f in self._functions]!r})"


# --- Type map ---


BYTES = Custom(
    ident=TypeIdent("Bytes"),
    rs_ty="serde_bytes::ByteBuf",
    ts_ty="Uint8Array",
)


def builtin_types() -> dict[str, Type]:
    """Types every TypeMap can resolve without them being declared"""
    builtins: dict[str, Type] = {p.value: PrimitiveType(p) for p in Primitive}
    builtins.update({
        "String": String(),
        "Option": Container(),
        "Vec": List(),
        "BTreeMap": Map(),
        "HashMap": Map(name="HashMap"),
        "Bytes": BYTES,
        UNIT_NAME: Unit(),
        TUPLE_NAME: Tuple(),
    })
    return builtins


def type_name(ty: Type) -> str:
    return ty.name


class TypeMap(dict):
    """Maps type names to their definitions"""

    @classmethod
    def from_types(cls, types: Iterable[Type]) -> "TypeMap":
        type_map = cls(builtin_types())
        for ty in types:
            if isinstance(ty, GenericArgument):
                continue
            type_map[type_name(ty)] = ty
        return type_map

    def resolve(self, ident: TypeIdent, scope: Iterable[str] = ()) -> Type:
        """Look up the definition for ``ident``.

        ``scope`` holds the generic parameter names visible at the use site.
        """
        if ident.name in scope:
            if ident.generic_args:
                raise UnsupportedSchemaError(f"Generic argument {ident.name} cannot take arguments")
            return GenericArgument(ident.name)

        ty = self.get(ident.name)
        if ty is None:
            raise UnsupportedSchemaError(f"Unresolved type: {ident}")

        if isinstance(ty, Tuple):
            return Tuple(ident.generic_args)

        expected = len(type_generics(ty))
        if len(ident.generic_args) != expected:
            raise UnsupportedSchemaError(
                f"Type {ident.name} expects {expected} generic argument(s), got {ident}"
            )
        return ty

    def is_primitive(self, ident: TypeIdent) -> bool:
        return isinstance(self.get(ident.name), PrimitiveType)

    def declarations(self) -> list[Type]:
        """Declared (non-builtin) types, ordered by name"""
        builtins = builtin_types()
        return sorted(
            (ty for name, ty in self.items() if builtins.get(name) != ty),
            key=type_name,
        )

    def referenced_types(self, idents: Iterable[TypeIdent]) -> set[str]:
        """Names of declared types reachable from ``idents``"""
        seen: set[str] = set()
        stack = list(idents)
        builtins = builtin_types()
        while stack:
            ident = stack.pop()
            stack.extend(ident.generic_args)
            ty = self.get(ident.name)
            if ty is None or ident.name in seen:
                continue
            if builtins.get(ident.name) != ty:
                seen.add(ident.name)
            stack.extend(_child_idents(ty))
        return seen


def _child_idents(ty: Type) -> list[TypeIdent]:
    if isinstance(ty, Alias):
        return [ty.aliased]
    if isinstance(ty, Struct):
        return [f.ty for f in ty.fields if f.ty.name not in ty.generics]
    if isinstance(ty, Enum):
        idents = []
        for variant in ty.variants:
            idents.extend(i for i in _child_idents(variant.ty) if i.name not in ty.generics)
        return idents
    if isinstance(ty, Tuple):
        return list(ty.items)
    return []
