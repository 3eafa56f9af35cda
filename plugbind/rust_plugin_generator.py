"""Rust Plugin Generator - generates guest-side bindings for a WASM plugin"""

import logging

from . import abi
from .casing import field_wire_key, variant_wire_key
from .common_generator import CommonGenerator, format_doc_lines, indent_lines
from .type_mapper import RustTypeMapper
from .types import (
    Alias, Container, Enum, EnumEncoding, Field, Function, Struct, Tuple, Unit,
)

logger = logging.getLogger(__name__)


def rust_name(item) -> str:
    """Rust identifier for a function or argument"""
    return RustTypeMapper.escape(item.name)


class RustTypesRenderer:
    """Renders ``types.rs``; shared by the plugin and the wasmer runtime.

    ``serialize`` and ``deserialize`` name the types that side sends and
    receives, which decides the serde derives.
    """

    def __init__(self, generator: CommonGenerator, serialize: set[str], deserialize: set[str]):
        self.generator = generator
        self.types = generator.types
        self.serialize = serialize
        self.deserialize = deserialize

    def render(self) -> str:
        lines = [
            self.generator.notice(),
            "#![allow(unused_imports)]",
            "use serde::{Deserialize, Serialize};",
            "use std::collections::{BTreeMap, HashMap};",
            "",
        ]
        for ty in self.generator.declared_types():
            if isinstance(ty, Alias):
                lines.extend(self._alias(ty))
            elif isinstance(ty, Struct):
                lines.extend(self._struct(ty))
            elif isinstance(ty, Enum):
                lines.extend(self._enum(ty))
            else:
                continue
            lines.append("")
        return "\n".join(lines)

    def _derives(self, name: str) -> str:
        derives = ["Clone", "Debug", "PartialEq"]
        if name in self.serialize:
            derives.append("Serialize")
        if name in self.deserialize:
            derives.append("Deserialize")
        return f"#[derive({', '.join(sorted(derives))})]"

    def _alias(self, ty: Alias) -> list[str]:
        target = RustTypeMapper.format_ident(ty.aliased, self.types)
        return [f"pub type {ty.name} = {target};"]

    def _declared_name(self, name: str, generics: tuple[str, ...]) -> str:
        if not generics:
            return name
        return f"{name}<{', '.join(generics)}>"

    def _struct(self, ty: Struct) -> list[str]:
        lines = format_doc_lines(ty.doc_lines)
        lines.append(self._derives(ty.name))
        lines.append(f"pub struct {self._declared_name(ty.name, ty.generics)} {{")
        lines.extend(indent_lines(self._fields(ty.fields, ty.generics, "pub ")))
        lines.append("}")
        return lines

    def _fields(self, fields: tuple[Field, ...], scope: tuple[str, ...], visibility: str) -> list[str]:
        lines = []
        for f in fields:
            lines.extend(format_doc_lines(f.doc_lines))
            ident = RustTypeMapper.format_field_name(f.name)
            attrs = []
            if isinstance(self.types.resolve(f.ty, scope), Container):
                attrs.append("default")
            key = field_wire_key(f.name)
            if ident.replace("r#", "", 1) != key:
                attrs.append(f'rename = "{key}"')
            if "default" in attrs:
                attrs.append('skip_serializing_if = "Option::is_none"')
            if attrs:
                lines.append(f"#[serde({', '.join(attrs)})]")
            lines.append(f"{visibility}{ident}: {RustTypeMapper.format_ident(f.ty, self.types, scope)},")
        return lines

    def _enum(self, ty: Enum) -> list[str]:
        options = ty.options
        encoding = options.encoding
        lines = format_doc_lines(ty.doc_lines)
        lines.append(self._derives(ty.name))
        if encoding is EnumEncoding.ADJACENT:
            lines.append(f'#[serde(tag = "{options.tag_prop_name}", content = "{options.content_prop_name}")]')
        elif encoding is EnumEncoding.INTERNAL:
            lines.append(f'#[serde(tag = "{options.tag_prop_name}")]')
        elif encoding is EnumEncoding.UNTAGGED:
            lines.append("#[serde(untagged)]")
        lines.append(f"pub enum {self._declared_name(ty.name, ty.generics)} {{")

        for variant in ty.variants:
            # serde can only merge a map payload into an internally tagged enum
            self.generator.check_variant(ty, variant, single_payload=encoding is EnumEncoding.INTERNAL)
            body = format_doc_lines(variant.doc_lines)
            name = RustTypeMapper.format_variant_name(variant.name)
            key = variant_wire_key(variant.name, options.variant_casing)
            if name != key and encoding is not EnumEncoding.UNTAGGED:
                body.append(f'#[serde(rename = "{key}")]')
            vty = variant.ty
            if isinstance(vty, Unit):
                body.append(f"{name},")
            elif isinstance(vty, Struct):
                body.append(f"{name} {{")
                body.extend(indent_lines(self._fields(vty.fields, ty.generics, "")))
                body.append("},")
            elif isinstance(vty, Tuple):
                items = ", ".join(RustTypeMapper.format_ident(i, self.types, ty.generics) for i in vty.items)
                body.append(f"{name}({items}),")
            lines.extend(indent_lines(body))

        lines.append("}")
        return lines


class RustPluginGenerator(CommonGenerator):
    """Generates ``types.rs``, ``functions.rs`` and ``mod.rs`` for the guest"""

    TARGET = "rust-plugin"

    def generate(self) -> dict[str, str]:
        self.check_names()
        types = RustTypesRenderer(self, self.serializable, self.deserializable).render()
        logger.debug("rendered %s types.rs", self.TARGET)
        functions = self.generate_functions()
        logger.debug("rendered %s functions.rs", self.TARGET)
        return {
            "types.rs": types,
            "functions.rs": functions,
            "mod.rs": self.generate_mod(),
        }

    def generate_mod(self) -> str:
        lines = [
            self.notice(),
            "#![allow(clippy::all)]",
            "mod functions;",
            "mod types;",
            "",
            "pub use functions::*;",
            "pub use types::*;",
            "",
            "// Symbols the host expects every plugin to export.",
            f"pub use fp_bindgen_support::guest::io::{{{abi.MALLOC_SYMBOL}, {abi.FREE_SYMBOL}}};",
            f"pub use fp_bindgen_support::guest::r#async::{abi.GUEST_RESOLVE_SYMBOL};",
            "",
        ]
        return "\n".join(lines)

    def generate_functions(self) -> str:
        lines = [
            self.notice(),
            "use super::types::*;",
            "use fp_bindgen_support::{",
            "    common::{abi::WasmAbi, mem::FatPtr},",
            "    guest::{",
            "        r#async::{task::Task, AsyncValue, HostFuture},",
            "        io::{export_value_to_host, from_fat_ptr, import_value_from_host, malloc, to_fat_ptr},",
            "    },",
            "};",
            "",
        ]
        lines.extend(self._extern_block())
        lines.append("")
        for function in self.import_functions:
            lines.extend(self._import_wrapper(function))
            lines.append("")
        for function in self.export_functions:
            lines.extend(self._export_wrapper(function))
            lines.append("")
        return "\n".join(lines)

    # --- imports: host functions called from the guest ---

    def _wasm_signature(self, function: Function) -> tuple[str, str]:
        args = ", ".join(
            f"{rust_name(arg)}: {RustTypeMapper.format_wasm_ident(arg.ty, self.types)}" for arg in function.args
        )
        if function.is_async:
            ret = " -> FatPtr"
        elif function.return_type is None or self._is_unit(function.return_type):
            ret = ""
        else:
            ret = f" -> {RustTypeMapper.format_wasm_ident(function.return_type, self.types)}"
        return args, ret

    def _extern_block(self) -> list[str]:
        lines = [
            f'#[link(wasm_import_module = "{abi.IMPORT_MODULE}")]',
            'extern "C" {',
            f"    fn {abi.HOST_RESOLVE_SYMBOL}(async_value_ptr: FatPtr);",
        ]
        for function in self.import_functions:
            args, ret = self._wasm_signature(function)
            lines.append(f"    fn {abi.function_symbol(function.name)}({args}){ret};")
        lines.append("}")
        return lines

    def _is_unit(self, ident) -> bool:
        return isinstance(self.types.resolve(ident), Unit)

    def _logical_signature(self, function: Function) -> str:
        args = ", ".join(
            f"{rust_name(arg)}: {RustTypeMapper.format_ident(arg.ty, self.types)}" for arg in function.args
        )
        ret = ""
        if function.return_type is not None and not self._is_unit(function.return_type):
            ret = f" -> {RustTypeMapper.format_ident(function.return_type, self.types)}"
        modifiers = "".join(f"{m} " for m in function.modifiers if m != "async")
        if function.is_async:
            modifiers += "async "
        return f"pub {modifiers}fn {rust_name(function)}({args}){ret}"

    def _import_wrapper(self, function: Function) -> list[str]:
        lines = format_doc_lines(function.doc_lines)
        lines.append(f"{self._logical_signature(function)} {{")

        call_args = []
        for arg in function.args:
            if self.types.is_primitive(arg.ty):
                call_args.append(f"{rust_name(arg)}.to_abi()")
            else:
                lines.append(f"    let {rust_name(arg)} = export_value_to_host(&{rust_name(arg)});")
                call_args.append(rust_name(arg))
        call = f"{abi.function_symbol(function.name)}({', '.join(call_args)})"

        ret = function.return_type
        has_result = ret is not None and not self._is_unit(ret)
        lines.append("    unsafe {")
        if function.is_async:
            lines.append(f"        let ret = {call};")
            lines.append("        let result_ptr = HostFuture::new(ret).await;")
            if has_result:
                lines.append("        import_value_from_host(result_ptr)")
            else:
                lines.append("        import_value_from_host::<()>(result_ptr);")
        elif not has_result:
            lines.append(f"        {call};")
        elif self.types.is_primitive(ret):
            lines.append(f"        let ret = {call};")
            lines.append("        WasmAbi::from_abi(ret)")
        else:
            lines.append(f"        let ret = {call};")
            lines.append("        import_value_from_host(ret)")
        lines.append("    }")
        lines.append("}")
        return lines

    # --- exports: guest functions called from the host ---

    def _export_wrapper(self, function: Function) -> list[str]:
        symbol = abi.function_symbol(function.name)
        args, ret = self._wasm_signature(function)
        lines = [
            "#[doc(hidden)]",
            "#[no_mangle]",
            f'pub extern "C" fn {symbol}({args}){ret} {{',
        ]

        for arg in function.args:
            ty = RustTypeMapper.format_ident(arg.ty, self.types)
            if self.types.is_primitive(arg.ty):
                lines.append(f"    let {rust_name(arg)}: {ty} = WasmAbi::from_abi({rust_name(arg)});")
            else:
                lines.append(f"    let {rust_name(arg)} = unsafe {{ import_value_from_host::<{ty}>({rust_name(arg)}) }};")

        arg_names = ", ".join(rust_name(a) for a in function.args)
        call = f"{self.config.plugin_impl_path}::{rust_name(function)}({arg_names})"
        ret_ident = function.return_type
        has_result = ret_ident is not None and not self._is_unit(ret_ident)

        if function.is_async:
            lines.extend(indent_lines(self._async_export_body(call)))
        elif not has_result:
            lines.append(f"    {call};")
        elif self.types.is_primitive(ret_ident):
            lines.append(f"    let ret = {call};")
            lines.append("    ret.to_abi()")
        else:
            lines.append(f"    let ret = {call};")
            lines.append("    export_value_to_host(&ret)")
        lines.append("}")
        return lines

    def _async_export_body(self, call: str) -> list[str]:
        # Returns the handle straight away; status is written last, then the
        # host is told exactly once.
        return [
            f"let len = {abi.ASYNC_VALUE_SIZE};",
            "let ptr = malloc(len);",
            "let fat_ptr = to_fat_ptr(ptr, len);",
            "let ptr = ptr as *mut AsyncValue;",
            "unsafe { ptr.write(AsyncValue::new()) };",
            "Task::spawn(Box::pin(async move {",
            f"    let ret = {call}.await;",
            "    unsafe {",
            "        let (result_ptr, result_len) = from_fat_ptr(export_value_to_host(&ret));",
            "        (*ptr).ptr = result_ptr as u32;",
            "        (*ptr).len = result_len;",
            "        (*ptr).status = 1;",
            f"        {abi.HOST_RESOLVE_SYMBOL}(fat_ptr);",
            "    }",
            "}));",
            "fat_ptr",
        ]
