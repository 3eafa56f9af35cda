"""Loader for JSON documents holding an already-extracted IR"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .casing import Casing
from .errors import LoaderError, UnsupportedSchemaError
from .types import (
    Alias, Custom, Enum, EnumOptions, Field, Function, FunctionArg, FunctionList,
    Struct, Tuple, Type, TypeIdent, TypeMap, Unit, Variant,
)

logger = logging.getLogger(__name__)


@dataclass
class LoadedIR:
    """Complete loaded IR, ready for ``generate_bindings``"""
    import_functions: FunctionList = field(default_factory=FunctionList)
    export_functions: FunctionList = field(default_factory=FunctionList)
    serializable_types: list[Type] = field(default_factory=list)
    deserializable_types: list[Type] = field(default_factory=list)


class IRLoader:
    """Builds IR values from a JSON document.

    Without explicit ``serializable``/``deserializable`` lists the sets are
    inferred from the signatures: the plugin sends import arguments and
    export results, and receives the rest.
    """

    def __init__(self, content: str):
        try:
            self.document = json.loads(content)
        except json.JSONDecodeError as e:
            raise LoaderError(f"Invalid IR document: {e}") from e
        if not isinstance(self.document, dict):
            raise LoaderError("IR document must be a JSON object")

    def load(self) -> LoadedIR:
        try:
            types = [self._parse_type(t) for t in self.document.get("types", [])]
            imports = FunctionList(self._parse_function(f) for f in self.document.get("imports", []))
            exports = FunctionList(self._parse_function(f) for f in self.document.get("exports", []))
        except (KeyError, TypeError, ValueError) as e:
            raise LoaderError(f"Malformed IR document: {e!r}") from e

        by_name = {ty.name: ty for ty in types}
        type_map = TypeMap.from_types(types)
        serializable = self._type_set("serializable", by_name)
        deserializable = self._type_set("deserializable", by_name)

        if serializable is None:
            sent = [a.ty for f in imports for a in f.args]
            sent += [f.return_type for f in exports if f.return_type]
            serializable = self._reachable(type_map, sent, by_name)
        if deserializable is None:
            received = [a.ty for f in exports for a in f.args]
            received += [f.return_type for f in imports if f.return_type]
            deserializable = self._reachable(type_map, received, by_name)

        logger.debug(
            "loaded IR: %d type(s), %d import(s), %d export(s)", len(types), len(imports), len(exports)
        )
        return LoadedIR(imports, exports, serializable, deserializable)

    def _type_set(self, key: str, by_name: dict[str, Type]) -> Optional[list[Type]]:
        names = self.document.get(key)
        if names is None:
            return None
        missing = [n for n in names if n not in by_name]
        if missing:
            raise LoaderError(f"Unknown type(s) in {key}: {missing}")
        return [by_name[n] for n in names]

    @staticmethod
    def _reachable(type_map: TypeMap, idents: list[TypeIdent], by_name: dict[str, Type]) -> list[Type]:
        names = type_map.referenced_types(idents)
        return [by_name[n] for n in sorted(names) if n in by_name]

    @staticmethod
    def _ident(text: str) -> TypeIdent:
        return TypeIdent.parse(text)

    def _parse_fields(self, fields: list[dict]) -> tuple[Field, ...]:
        return tuple(
            Field(name=f["name"], ty=self._ident(f["type"]), doc_lines=tuple(f.get("doc", ())))
            for f in fields
        )

    def _parse_variant(self, data: dict[str, Any]) -> Variant:
        if "fields" in data:
            ty = Struct(name=data["name"], fields=self._parse_fields(data["fields"]))
        elif "tuple" in data:
            ty = Tuple(tuple(self._ident(t) for t in data["tuple"]))
        else:
            ty = Unit()
        return Variant(name=data["name"], ty=ty, doc_lines=tuple(data.get("doc", ())))

    def _parse_type(self, data: dict[str, Any]) -> Type:
        kind = data["kind"]
        name = data["name"]
        doc = tuple(data.get("doc", ()))
        generics = tuple(data.get("generics", ()))

        if kind == "struct":
            return Struct(name, generics, self._parse_fields(data.get("fields", [])), doc)
        if kind == "enum":
            opts = data.get("options", {})
            try:
                options = EnumOptions(
                    variant_casing=Casing.from_str(opts.get("variant_casing", "original")),
                    tag_prop_name=opts.get("tag"),
                    content_prop_name=opts.get("content"),
                    untagged=bool(opts.get("untagged", False)),
                )
            except UnsupportedSchemaError as e:
                raise LoaderError(f"Enum {name}: {e}") from e
            variants = tuple(self._parse_variant(v) for v in data.get("variants", []))
            return Enum(name, generics, variants, options, doc)
        if kind == "alias":
            return Alias(name, self._ident(data["type"]))
        if kind == "custom":
            return Custom(TypeIdent(name), rs_ty=data["rs_ty"], ts_ty=data["ts_ty"])
        raise LoaderError(f"Unknown type kind {kind!r} for {name}")

    def _parse_function(self, data: dict[str, Any]) -> Function:
        ret = data.get("return")
        return Function(
            name=data["name"],
            args=tuple(FunctionArg(a["name"], self._ident(a["type"])) for a in data.get("args", [])),
            return_type=self._ident(ret) if ret else None,
            is_async=bool(data.get("async", False)),
            doc_lines=tuple(data.get("doc", ())),
            modifiers=tuple(data.get("modifiers", ())),
        )
