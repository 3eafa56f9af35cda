"""MessagePack framing of non-primitive values.

``WireCodec`` maps logical Python values onto the structures every target
serializes for a given IR type, and back:

- structs are dicts keyed by declared field name; on the wire the keys come
  from ``casing.field_wire_key`` and ``None`` options are omitted,
- enums are ``EnumValue(variant, payload)`` and use one of the four
  encodings selected by their ``EnumOptions``,
- tuples are Python tuples, lists lists, maps dicts, ``Bytes`` is ``bytes``.
"""

from dataclasses import dataclass
from typing import Any

import msgpack

from . import abi
from .casing import field_wire_key, variant_wire_key
from .errors import WireError
from .types import (
    Alias, Container, Custom, Enum, EnumEncoding, GenericArgument, List, Map,
    PrimitiveType, String, Struct, Tuple, TypeIdent, TypeMap, Unit, Variant,
)

_MSGPACK_INT_MIN = -(1 << 63)
_MSGPACK_INT_MAX = (1 << 64) - 1


@dataclass(frozen=True)
class EnumValue:
    """Logical value of an enum: the declared variant name plus its payload"""
    variant: str
    payload: Any = None


def substitute(ident: TypeIdent, bindings: dict[str, TypeIdent]) -> TypeIdent:
    """Replace generic parameter names in ``ident`` with concrete types"""
    if not ident.generic_args and ident.name in bindings:
        return bindings[ident.name]
    return TypeIdent(ident.name, tuple(substitute(a, bindings) for a in ident.generic_args))


class WireCodec:
    def __init__(self, types: TypeMap):
        self.types = types

    # --- bytes ---

    def encode(self, value: Any, ident: TypeIdent) -> bytes:
        return msgpack.packb(self.to_wire(value, ident), use_bin_type=True)

    def decode(self, data: bytes, ident: TypeIdent) -> Any:
        try:
            unpacked = msgpack.unpackb(data, raw=False, strict_map_key=False)
        except (ValueError, msgpack.UnpackException) as e:
            raise WireError(f"Invalid MessagePack payload for {ident}: {e}") from e
        return self.from_wire(unpacked, ident)

    # --- linear memory ---

    def export_value(self, memory: abi.LinearMemory, value: Any, ident: TypeIdent) -> int:
        """Serialize into a freshly allocated buffer owned by the receiver"""
        payload = self.encode(value, ident)
        fat_ptr = memory.malloc(len(payload))
        memory.write(fat_ptr, payload)
        return fat_ptr

    def import_value(self, memory: abi.LinearMemory, fat_ptr: int, ident: TypeIdent) -> Any:
        """Parse a received buffer once and release it"""
        payload = memory.read(fat_ptr)
        memory.free(fat_ptr)
        return self.decode(payload, ident)

    # --- structures ---

    def to_wire(self, value: Any, ident: TypeIdent) -> Any:
        ty = self.types.resolve(ident)

        if isinstance(ty, PrimitiveType):
            return self._check_primitive(value, ty, ident)
        if isinstance(ty, String):
            return self._expect(value, str, ident)
        if isinstance(ty, Unit):
            if value is not None:
                raise WireError(f"Expected None for {ident}, got {value!r}")
            return None
        if isinstance(ty, Alias):
            return self.to_wire(value, ty.aliased)
        if isinstance(ty, Container):
            return None if value is None else self.to_wire(value, ident.generic_args[0])
        if isinstance(ty, Custom):
            return value
        if isinstance(ty, List):
            inner = ident.generic_args[0]
            return [self.to_wire(item, inner) for item in self._expect(value, (list, tuple), ident)]
        if isinstance(ty, Map):
            key, val = ident.generic_args
            return {
                self.to_wire(k, key): self.to_wire(v, val)
                for k, v in self._expect(value, dict, ident).items()
            }
        if isinstance(ty, Tuple):
            return self._tuple_to_wire(value, ty.items, ident)
        if isinstance(ty, Struct):
            return self._fields_to_wire(value, ty, self._bindings(ty.generics, ident))
        if isinstance(ty, Enum):
            return self._enum_to_wire(value, ty, ident)
        if isinstance(ty, GenericArgument):
            raise WireError(f"Unbound generic argument: {ty.name}")
        raise WireError(f"Cannot serialize type {ty!r}")

    def from_wire(self, data: Any, ident: TypeIdent) -> Any:
        ty = self.types.resolve(ident)

        if isinstance(ty, PrimitiveType):
            if ty.kind.is_float and isinstance(data, int) and not isinstance(data, bool):
                data = float(data)
            return self._check_primitive(data, ty, ident)
        if isinstance(ty, String):
            return self._expect(data, str, ident)
        if isinstance(ty, Unit):
            if data is not None:
                raise WireError(f"Expected nil for {ident}, got {data!r}")
            return None
        if isinstance(ty, Alias):
            return self.from_wire(data, ty.aliased)
        if isinstance(ty, Container):
            return None if data is None else self.from_wire(data, ident.generic_args[0])
        if isinstance(ty, Custom):
            return data
        if isinstance(ty, List):
            inner = ident.generic_args[0]
            return [self.from_wire(item, inner) for item in self._expect(data, list, ident)]
        if isinstance(ty, Map):
            key, val = ident.generic_args
            return {
                self.from_wire(k, key): self.from_wire(v, val)
                for k, v in self._expect(data, dict, ident).items()
            }
        if isinstance(ty, Tuple):
            return self._tuple_from_wire(data, ty.items, ident)
        if isinstance(ty, Struct):
            return self._fields_from_wire(data, ty, self._bindings(ty.generics, ident))
        if isinstance(ty, Enum):
            return self._enum_from_wire(data, ty, ident)
        if isinstance(ty, GenericArgument):
            raise WireError(f"Unbound generic argument: {ty.name}")
        raise WireError(f"Cannot deserialize type {ty!r}")

    # --- helpers ---

    @staticmethod
    def _bindings(generics: tuple[str, ...], ident: TypeIdent) -> dict[str, TypeIdent]:
        return dict(zip(generics, ident.generic_args))

    @staticmethod
    def _expect(value: Any, kind, ident: TypeIdent) -> Any:
        if not isinstance(value, kind):
            raise WireError(f"Expected {ident}, got {type(value).__name__}: {value!r}")
        return value

    def _check_primitive(self, value: Any, ty: PrimitiveType, ident: TypeIdent) -> Any:
        kind = ty.kind
        if kind.bits == 1:
            return self._expect(value, bool, ident)
        if kind.is_float:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise WireError(f"Expected {ident}, got {value!r}")
            return float(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise WireError(f"Expected {ident}, got {value!r}")
        if kind.is_signed:
            low, high = -(1 << (kind.bits - 1)), (1 << (kind.bits - 1)) - 1
        else:
            low, high = 0, (1 << kind.bits) - 1
        if not low <= value <= high:
            raise WireError(f"{value} out of range for {ident}")
        if not _MSGPACK_INT_MIN <= value <= _MSGPACK_INT_MAX:
            raise WireError(f"{value} exceeds the MessagePack integer range")
        return value

    def _tuple_to_wire(self, value: Any, items: tuple[TypeIdent, ...], ident: TypeIdent) -> list:
        value = self._expect(value, (list, tuple), ident)
        if len(value) != len(items):
            raise WireError(f"Expected {len(items)} items for {ident}, got {len(value)}")
        return [self.to_wire(v, item) for v, item in zip(value, items)]

    def _tuple_from_wire(self, data: Any, items: tuple[TypeIdent, ...], ident: TypeIdent) -> tuple:
        data = self._expect(data, list, ident)
        if len(data) != len(items):
            raise WireError(f"Expected {len(items)} items for {ident}, got {len(data)}")
        return tuple(self.from_wire(d, item) for d, item in zip(data, items))

    def _is_optional(self, field_ty: TypeIdent) -> bool:
        return isinstance(self.types.get(field_ty.name), Container)

    def _fields_to_wire(self, value: Any, ty: Struct, bindings: dict[str, TypeIdent]) -> dict:
        value = self._expect(value, dict, TypeIdent(ty.name))
        unknown = set(value) - {f.name for f in ty.fields}
        if unknown:
            raise WireError(f"Unknown field(s) for {ty.name}: {sorted(unknown)}")
        result = {}
        for f in ty.fields:
            field_ty = substitute(f.ty, bindings)
            item = value.get(f.name)
            if item is None and self._is_optional(field_ty):
                continue
            if f.name not in value:
                raise WireError(f"Missing field {ty.name}.{f.name}")
            key = field_wire_key(f.name)
            if key in result:
                raise WireError(f"Field {ty.name}.{f.name} reuses wire key {key!r}")
            result[key] = self.to_wire(item, field_ty)
        return result

    def _fields_from_wire(self, data: Any, ty: Struct, bindings: dict[str, TypeIdent]) -> dict:
        data = self._expect(data, dict, TypeIdent(ty.name))
        result = {}
        for f in ty.fields:
            field_ty = substitute(f.ty, bindings)
            key = field_wire_key(f.name)
            if key not in data:
                if self._is_optional(field_ty):
                    result[f.name] = None
                    continue
                raise WireError(f"Missing field {ty.name}.{key}")
            result[f.name] = self.from_wire(data[key], field_ty)
        return result

    def _payload_to_wire(self, payload: Any, variant: Variant, bindings: dict[str, TypeIdent]) -> Any:
        vty = variant.ty
        if isinstance(vty, Unit):
            return None
        if isinstance(vty, Struct):
            return self._fields_to_wire(payload, vty, bindings)
        if isinstance(vty, Tuple):
            items = tuple(substitute(i, bindings) for i in vty.items)
            if len(items) == 1:
                return self.to_wire(payload, items[0])
            return self._tuple_to_wire(payload, items, TypeIdent(variant.name))
        raise WireError(f"Unsupported payload for variant {variant.name}")

    def _payload_from_wire(self, data: Any, variant: Variant, bindings: dict[str, TypeIdent]) -> Any:
        vty = variant.ty
        if isinstance(vty, Unit):
            if data is not None:
                raise WireError(f"Unexpected payload for unit variant {variant.name}")
            return None
        if isinstance(vty, Struct):
            return self._fields_from_wire(data, vty, bindings)
        if isinstance(vty, Tuple):
            items = tuple(substitute(i, bindings) for i in vty.items)
            if len(items) == 1:
                return self.from_wire(data, items[0])
            return self._tuple_from_wire(data, items, TypeIdent(variant.name))
        raise WireError(f"Unsupported payload for variant {variant.name}")

    def _find_variant(self, ty: Enum, name: str, by_wire_key: bool = False) -> Variant:
        for variant in ty.variants:
            key = variant_wire_key(variant.name, ty.options.variant_casing) if by_wire_key else variant.name
            if key == name:
                return variant
        raise WireError(f"Unknown variant {name!r} for enum {ty.name}")

    def _enum_to_wire(self, value: Any, ty: Enum, ident: TypeIdent) -> Any:
        value = self._expect(value, EnumValue, ident)
        variant = self._find_variant(ty, value.variant)
        bindings = self._bindings(ty.generics, ident)
        key = variant_wire_key(variant.name, ty.options.variant_casing)
        payload = self._payload_to_wire(value.payload, variant, bindings)
        options = ty.options
        encoding = options.encoding
        is_unit = isinstance(variant.ty, Unit)

        if encoding is EnumEncoding.UNTAGGED:
            return payload
        if encoding is EnumEncoding.EXTERNAL:
            return key if is_unit else {key: payload}
        if encoding is EnumEncoding.ADJACENT:
            if is_unit:
                return {options.tag_prop_name: key}
            return {options.tag_prop_name: key, options.content_prop_name: payload}

        # internally tagged: the payload must itself be a map
        if is_unit:
            return {options.tag_prop_name: key}
        if not isinstance(payload, dict):
            raise WireError(f"Internally tagged variant {ty.name}::{variant.name} needs a map payload")
        return {options.tag_prop_name: key, **payload}

    def _enum_from_wire(self, data: Any, ty: Enum, ident: TypeIdent) -> EnumValue:
        bindings = self._bindings(ty.generics, ident)
        options = ty.options
        encoding = options.encoding

        if encoding is EnumEncoding.UNTAGGED:
            for variant in ty.variants:
                try:
                    return EnumValue(variant.name, self._payload_from_wire(data, variant, bindings))
                except WireError:
                    continue
            raise WireError(f"Data did not match any variant of untagged enum {ty.name}")

        if encoding is EnumEncoding.EXTERNAL:
            if isinstance(data, str):
                variant = self._find_variant(ty, data, by_wire_key=True)
                return EnumValue(variant.name, self._payload_from_wire(None, variant, bindings))
            data = self._expect(data, dict, ident)
            if len(data) != 1:
                raise WireError(f"Externally tagged {ty.name} must have exactly one key")
            (key, payload), = data.items()
            variant = self._find_variant(ty, key, by_wire_key=True)
            return EnumValue(variant.name, self._payload_from_wire(payload, variant, bindings))

        data = self._expect(data, dict, ident)
        tag = options.tag_prop_name
        if tag not in data:
            raise WireError(f"Missing tag {tag!r} for enum {ty.name}")
        variant = self._find_variant(ty, data[tag], by_wire_key=True)

        if encoding is EnumEncoding.ADJACENT:
            payload = data.get(options.content_prop_name)
            return EnumValue(variant.name, self._payload_from_wire(payload, variant, bindings))

        if isinstance(variant.ty, Unit):
            return EnumValue(variant.name, None)
        rest = {k: v for k, v in data.items() if k != tag}
        return EnumValue(variant.name, self._payload_from_wire(rest, variant, bindings))
