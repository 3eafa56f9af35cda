"""Common Generator - state and helpers shared by all binding generators"""

from dataclasses import dataclass
from typing import Iterable

from .casing import field_wire_key, to_camel_case, to_pascal_case, to_snake_case, variant_wire_key
from .errors import UnsupportedSchemaError
from .types import Enum, Field, FunctionList, Struct, Tuple, TypeMap, Unit, Variant

GENERATED_NOTICE = "AUTO-GENERATED - DO NOT EDIT"


@dataclass
class BindingsConfig:
    """Settings that are not part of the IR"""
    # Rust path holding the plugin's implementations of exported functions
    plugin_impl_path: str = "crate"
    # Rust path holding the host's implementations of imported functions
    runtime_impl_path: str = "super"
    msgpack_package: str = "@msgpack/msgpack"


class CommonGenerator:
    """Base for generators; subclasses return ``{file name: contents}``"""

    TARGET = ""

    def __init__(
        self,
        import_functions: FunctionList,
        export_functions: FunctionList,
        types: TypeMap,
        serializable: Iterable[str] = (),
        deserializable: Iterable[str] = (),
        config: BindingsConfig = None,
    ):
        self.import_functions = import_functions
        self.export_functions = export_functions
        self.types = types
        self.serializable = set(serializable)
        self.deserializable = set(deserializable)
        self.config = config or BindingsConfig()

    def generate(self) -> dict[str, str]:
        raise NotImplementedError

    def notice(self, comment: str = "//") -> str:
        return f"{comment} {GENERATED_NOTICE}"

    def declared_types(self) -> list:
        """Structs, enums and aliases to declare, sorted by name"""
        names = self.serializable | self.deserializable
        return [ty for ty in self.types.declarations() if ty.name in names]

    def unsupported(self, message: str) -> UnsupportedSchemaError:
        return UnsupportedSchemaError(message, self.TARGET)

    def check_names(self):
        """Reject IR whose names collide once rendered.

        Imports and exports share the ``__fp_gen_`` symbol namespace, and
        fields and variants must stay distinct both as target identifiers
        and as wire keys.
        """
        shared = [f.name for f in self.import_functions if f.name in self.export_functions]
        if shared:
            raise self.unsupported(f"Functions declared as both import and export: {', '.join(shared)}")
        for functions in (self.import_functions, self.export_functions):
            self.check_unique("Function", [(f.name, to_camel_case(f.name)) for f in functions])

        for ty in self.declared_types():
            if isinstance(ty, Struct):
                self.check_fields(ty.name, ty.fields)
            elif isinstance(ty, Enum):
                casing = ty.options.variant_casing
                labels = [f"{ty.name}::{v.name}" for v in ty.variants]
                self.check_unique("Variant", zip(labels, (to_pascal_case(v.name) for v in ty.variants)))
                self.check_unique("Variant", zip(labels, (variant_wire_key(v.name, casing) for v in ty.variants)))
                for variant in ty.variants:
                    if isinstance(variant.ty, Struct):
                        self.check_fields(f"{ty.name}::{variant.name}", variant.ty.fields)

    def check_fields(self, owner: str, fields: Iterable[Field]):
        fields = list(fields)
        labels = [f"{owner}.{f.name}" for f in fields]
        self.check_unique("Field", zip(labels, (to_snake_case(f.name) for f in fields)))
        self.check_unique("Field", zip(labels, (field_wire_key(f.name) for f in fields)))

    def check_unique(self, kind: str, entries: Iterable[tuple[str, str]]):
        """``entries`` pairs a display name with what it renders to"""
        seen = {}
        for label, rendered in entries:
            if rendered in seen:
                raise self.unsupported(f"{kind}s {seen[rendered]} and {label} both render as `{rendered}`")
            seen[rendered] = label

    def check_variant(self, enum: Enum, variant: Variant, single_payload: bool):
        """Reject variant payloads the target's enum encoding cannot express"""
        ty = variant.ty
        if isinstance(ty, (Unit, Struct)):
            return
        if isinstance(ty, Tuple):
            if not ty.items:
                raise self.unsupported(f"Empty tuple payload in {enum.name}::{variant.name}")
            if single_payload and len(ty.items) != 1:
                raise self.unsupported(
                    f"Variant {enum.name}::{variant.name} must have exactly one "
                    f"positional payload, found {len(ty.items)}"
                )
            return
        raise self.unsupported(f"Unsupported type for enum variant {enum.name}::{variant.name}: {ty!r}")


def format_doc_lines(doc_lines: Iterable[str], prefix: str = "///", indent: str = "") -> list[str]:
    lines = []
    for line in doc_lines:
        text = f"{prefix} {line}" if line else prefix
        lines.append(f"{indent}{text}".rstrip())
    return lines


def format_jsdoc(doc_lines: Iterable[str], indent: str = "") -> list[str]:
    doc_lines = list(doc_lines)
    if not doc_lines:
        return []
    lines = [f"{indent}/**"]
    lines.extend(f"{indent} * {line}".rstrip() for line in doc_lines)
    lines.append(f"{indent} */")
    return lines


def indent_lines(lines: Iterable[str], indent: str = "    ") -> list[str]:
    return [f"{indent}{line}" if line else line for line in lines]
