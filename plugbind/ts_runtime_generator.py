"""TypeScript Runtime Generator - generates a JS-engine host runtime for plugins"""

import logging

from . import abi
from .casing import to_camel_case, variant_wire_key
from .common_generator import CommonGenerator, format_jsdoc, indent_lines
from .type_mapper import TsTypeMapper
from .types import (
    Alias, Container, Enum, EnumEncoding, Field, Function, Struct, Tuple, Unit,
)

logger = logging.getLogger(__name__)


class TsRuntimeGenerator(CommonGenerator):
    """Generates ``types.ts`` and ``index.ts``"""

    TARGET = "ts-runtime"

    def generate(self) -> dict[str, str]:
        self.check_names()
        types = self.generate_types()
        logger.debug("rendered %s types.ts", self.TARGET)
        index = self.generate_index()
        logger.debug("rendered %s index.ts", self.TARGET)
        return {"types.ts": types, "index.ts": index}

    # --- types.ts ---

    def generate_types(self) -> str:
        lines = [self.notice(), ""]
        for ty in self.declared_types():
            if isinstance(ty, Alias):
                lines.append(f"export type {ty.name} = {self._format(ty.aliased)};")
            elif isinstance(ty, Struct):
                lines.extend(self._struct(ty))
            elif isinstance(ty, Enum):
                lines.extend(self._enum(ty))
            else:
                continue
            lines.append("")
        return "\n".join(lines)

    def _format(self, ident, scope=()) -> str:
        return TsTypeMapper.format_ident(ident, self.types, scope)

    def _declared_name(self, name: str, generics: tuple[str, ...]) -> str:
        if not generics:
            return name
        return f"{name}<{', '.join(generics)}>"

    def _fields(self, fields: tuple[Field, ...], scope: tuple[str, ...]) -> list[str]:
        result = []
        for f in fields:
            key = TsTypeMapper.format_field_name(f.name)
            ty = self.types.resolve(f.ty, scope)
            if isinstance(ty, Container):
                # absent on the wire when None
                result.append(f"{key}?: {self._format(f.ty.generic_args[0], scope)}")
            else:
                result.append(f"{key}: {self._format(f.ty, scope)}")
        return result

    def _struct(self, ty: Struct) -> list[str]:
        lines = format_jsdoc(ty.doc_lines)
        lines.append(f"export type {self._declared_name(ty.name, ty.generics)} = {{")
        for f, line in zip(ty.fields, self._fields(ty.fields, ty.generics)):
            lines.extend(format_jsdoc(f.doc_lines, "    "))
            lines.append(f"    {line};")
        lines.append("};")
        return lines

    def _enum(self, ty: Enum) -> list[str]:
        options = ty.options
        encoding = options.encoding
        tag = options.tag_prop_name
        content = options.content_prop_name
        lines = format_jsdoc(ty.doc_lines)
        lines.append(f"export type {self._declared_name(ty.name, ty.generics)} =")

        for variant in ty.variants:
            self.check_variant(ty, variant, single_payload=True)
            key = variant_wire_key(variant.name, options.variant_casing)
            vty = variant.ty

            if isinstance(vty, Unit):
                if encoding is EnumEncoding.UNTAGGED:
                    member = "null"
                elif tag:
                    member = f'{{ {tag}: "{key}" }}'
                else:
                    member = f'"{key}"'
            elif isinstance(vty, Struct):
                fields = "; ".join(self._fields(vty.fields, ty.generics))
                if encoding is EnumEncoding.UNTAGGED:
                    member = f"{{ {fields} }}"
                elif encoding is EnumEncoding.ADJACENT:
                    member = f'{{ {tag}: "{key}"; {content}: {{ {fields} }} }}'
                elif encoding is EnumEncoding.INTERNAL:
                    member = f'{{ {tag}: "{key}"; {fields} }}'
                else:
                    member = f'{{ {key}: {{ {fields} }} }}'
            elif isinstance(vty, Tuple):
                inner = self._format(vty.items[0], ty.generics)
                if encoding is EnumEncoding.UNTAGGED:
                    member = inner
                elif encoding is EnumEncoding.ADJACENT:
                    member = f'{{ {tag}: "{key}"; {content}: {inner} }}'
                elif encoding is EnumEncoding.INTERNAL:
                    member = f'{{ {tag}: "{key}" }} & {inner}'
                else:
                    member = f"{{ {key}: {inner} }}"
            else:
                raise self.unsupported(f"Unsupported type for enum variant: {vty!r}")

            lines.extend(format_jsdoc(variant.doc_lines, "    "))
            lines.append(f"    | {member}")

        if not ty.variants:
            lines.append("    never")
        lines[-1] += ";"
        return lines

    # --- index.ts ---

    def _declarations(self, functions, optional: bool) -> list[str]:
        # Plugins can always omit exports, while runtimes must provide all imports.
        marker = "?" if optional else ""
        decls = []
        for function in functions:
            args = ", ".join(f"{to_camel_case(a.name)}: {self._format(a.ty)}" for a in function.args)
            ret = self._format(function.return_type) if function.return_type else "void"
            if function.is_async:
                ret = f"Promise<{ret}>"
            decls.append(f"{to_camel_case(function.name)}{marker}: ({args}) => {ret}")
        return decls

    def _type_names(self) -> list[str]:
        return [ty.name for ty in self.declared_types() if isinstance(ty, (Alias, Struct, Enum))]

    def generate_index(self) -> str:
        lines = [
            self.notice(),
            f'import {{ encode, decode }} from "{self.config.msgpack_package}";',
            "",
        ]
        type_names = self._type_names()
        if type_names:
            lines.append("import type {")
            lines.extend(f"    {name}," for name in type_names)
            lines.append('} from "./types";')
            lines.append("")

        lines.append("type FatPtr = bigint;")
        lines.append("")
        lines.append("export type Imports = {")
        lines.extend(f"    {d};" for d in self._declarations(self.import_functions, optional=False))
        lines.append("};")
        lines.append("")
        lines.append("export type Exports = {")
        lines.extend(f"    {d};" for d in self._declarations(self.export_functions, optional=True))
        lines.append("};")
        lines.append("")
        lines.extend(self._runtime_prelude())

        lines.append("    const { instance } = await WebAssembly.instantiate(plugin, {")
        lines.append(f"        {abi.IMPORT_MODULE}: {{")
        lines.append(f"            {abi.HOST_RESOLVE_SYMBOL}: resolvePromise,")
        for function in self.import_functions:
            lines.extend(indent_lines(self._import_wrapper(function), " " * 12))
        lines.append("        },")
        lines.append("    });")
        lines.append("")
        lines.extend(self._get_exports())
        lines.append("")
        lines.append("    return {")
        for function in self.export_functions:
            lines.extend(indent_lines(self._export_wrapper(function), " " * 8))
        lines.append("    };")
        lines.append("}")
        lines.append("")
        lines.extend(self._fat_ptr_helpers())
        return "\n".join(lines)

    def _runtime_prelude(self) -> list[str]:
        return [
            "/**",
            " * Represents an unrecoverable error in the FP runtime.",
            " *",
            " * After this, your only recourse is to create a new runtime, probably with a different WASM plugin.",
            " */",
            "export class FPRuntimeError extends Error {",
            "    constructor(message: string) {",
            "        super(message);",
            "    }",
            "}",
            "",
            "/**",
            " * Creates a runtime for executing the given plugin.",
            " *",
            " * @param plugin The raw WASM plugin.",
            " * @param importFunctions The host functions that may be imported by the plugin.",
            " * @returns The functions that may be exported by the plugin.",
            " */",
            "export async function createRuntime(",
            "    plugin: ArrayBuffer,",
            "    importFunctions: Imports",
            "): Promise<Exports> {",
            "    const promises = new Map<FatPtr, (result: unknown) => void>();",
            "",
            "    function assignAsyncValue<T>(fatPtr: FatPtr, result: T) {",
            "        const [ptr, len] = fromFatPtr(fatPtr);",
            "        const buffer = new Uint32Array(memory.buffer, ptr, len / 4);",
            "        if (buffer[0] !== 0) {",
            '            throw new FPRuntimeError("Tried to assign async value that was already assigned");',
            "        }",
            "        const [resultPtr, resultLen] = fromFatPtr(serializeObject(result));",
            "        buffer[1] = resultPtr;",
            "        buffer[2] = resultLen;",
            "        buffer[0] = 1; // Set status to ready.",
            "    }",
            "",
            "    function createAsyncValue(): FatPtr {",
            f"        const len = {abi.ASYNC_VALUE_SIZE}; // status, ptr, len",
            "        const fatPtr = malloc(len);",
            "        const [ptr] = fromFatPtr(fatPtr);",
            "        const buffer = new Uint8Array(memory.buffer, ptr, len);",
            "        buffer.fill(0);",
            "        return fatPtr;",
            "    }",
            "",
            "    function parseObject<T>(fatPtr: FatPtr): T {",
            "        const [ptr, len] = fromFatPtr(fatPtr);",
            "        const buffer = new Uint8Array(memory.buffer, ptr, len);",
            "        const object = decode(buffer) as unknown as T;",
            "        free(fatPtr);",
            "        return object;",
            "    }",
            "",
            "    function promiseFromPtr<T>(ptr: FatPtr): Promise<T> {",
            "        return new Promise<T>((resolve) => {",
            "            promises.set(ptr, resolve as (result: unknown) => void);",
            "        });",
            "    }",
            "",
            "    function resolvePromise(ptr: FatPtr) {",
            "        const resolve = promises.get(ptr);",
            "        if (!resolve) {",
            '            throw new FPRuntimeError("Tried to resolve unknown promise");',
            "        }",
            "        const [asyncPtr, asyncLen] = fromFatPtr(ptr);",
            "        const buffer = new Uint32Array(memory.buffer, asyncPtr, asyncLen / 4);",
            "        switch (buffer[0]) {",
            "            case 0:",
            '                throw new FPRuntimeError("Tried to resolve promise that is not ready");',
            "            case 1:",
            "                promises.delete(ptr);",
            "                resolve(parseObject(toFatPtr(buffer[1]!, buffer[2]!)));",
            "                free(ptr);",
            "                break;",
            "            default:",
            '                throw new FPRuntimeError("Unexpected status: " + buffer[0]);',
            "        }",
            "    }",
            "",
            "    function serializeObject<T>(object: T): FatPtr {",
            "        const serialized = encode(object);",
            "        const fatPtr = malloc(serialized.length);",
            "        const [ptr, len] = fromFatPtr(fatPtr);",
            "        const buffer = new Uint8Array(memory.buffer, ptr, len);",
            "        buffer.set(serialized);",
            "        return fatPtr;",
            "    }",
            "",
        ]

    def _get_exports(self) -> list[str]:
        return [
            "    const getExport = <T>(name: string): T => {",
            "        const exp = instance.exports[name];",
            "        if (!exp) {",
            '            throw new FPRuntimeError(`Plugin did not export expected symbol: "${name}"`);',
            "        }",
            "        return exp as unknown as T;",
            "    };",
            "",
            f'    const memory = getExport<WebAssembly.Memory>("{abi.MEMORY_SYMBOL}");',
            f'    const malloc = getExport<(len: number) => FatPtr>("{abi.MALLOC_SYMBOL}");',
            f'    const free = getExport<(ptr: FatPtr) => void>("{abi.FREE_SYMBOL}");',
            f'    const resolveFuture = getExport<(ptr: FatPtr) => void>("{abi.GUEST_RESOLVE_SYMBOL}");',
        ]

    def _fat_ptr_helpers(self) -> list[str]:
        return [
            "function fromFatPtr(fatPtr: FatPtr): [ptr: number, len: number] {",
            "    return [",
            "        Number.parseInt((fatPtr >> 32n).toString()),",
            "        Number.parseInt((fatPtr & 0xffff_ffffn).toString()),",
            "    ];",
            "}",
            "",
            "function toFatPtr(ptr: number, len: number): FatPtr {",
            "    return (BigInt(ptr) << 32n) | BigInt(len);",
            "}",
            "",
        ]

    def _has_result(self, ident) -> bool:
        return ident is not None and not isinstance(self.types.resolve(ident), Unit)

    def _import_wrapper(self, function: Function) -> list[str]:
        """Host callback the guest calls through ``__fp_gen_<name>``"""
        name = function.name
        params = []
        parse_args = []
        for arg in function.args:
            arg_name = to_camel_case(arg.name)
            if self.types.is_primitive(arg.ty):
                params.append(f"{arg_name}: {TsTypeMapper.format_wasm_ident(arg.ty, self.types)}")
            else:
                params.append(f"{arg.name}_ptr: FatPtr")
                parse_args.append(
                    f"    const {arg_name} = parseObject<{self._format(arg.ty)}>({arg.name}_ptr);"
                )
        args = ", ".join(to_camel_case(a.name) for a in function.args)
        call = f"importFunctions.{to_camel_case(name)}({args})"

        ret = function.return_type
        if function.is_async:
            return_type = ": FatPtr"
        elif not self._has_result(ret):
            return_type = ""
        else:
            return_type = f": {TsTypeMapper.format_wasm_ident(ret, self.types)}"

        lines = [f"{abi.function_symbol(name)}: ({', '.join(params)}){return_type} => {{"]
        lines.extend(parse_args)
        if function.is_async:
            lines.extend([
                "    const _async_result_ptr = createAsyncValue();",
                f"    {call}",
                "        .then((result) => {",
                "            assignAsyncValue(_async_result_ptr, result);",
                "            resolveFuture(_async_result_ptr);",
                "        })",
                "        .catch((error) => {",
                "            console.error(",
                f'                \'Unrecoverable exception trying to call async host function "{name}"\',',
                "                error",
                "            );",
                "        });",
                "    return _async_result_ptr;",
            ])
        elif not self._has_result(ret):
            lines.append(f"    {call};")
        elif self.types.is_primitive(ret):
            lines.append(f"    return {call};")
        else:
            lines.append(f"    return serializeObject({call});")
        lines.append("},")
        return lines

    def _export_wrapper(self, function: Function) -> list[str]:
        """Typed callable for a guest export"""
        name = function.name
        camel = to_camel_case(name)
        symbol = abi.function_symbol(name)
        serialize_args = [
            f"const {a.name}_ptr = serializeObject({to_camel_case(a.name)});"
            for a in function.args if not self.types.is_primitive(a.ty)
        ]

        # Trivial functions can simply be returned as is:
        if not serialize_args and not function.is_async:
            ret = function.return_type
            if not self._has_result(ret) or self.types.is_primitive(ret):
                return [f"{camel}: instance.exports.{symbol} as any,"]

        params = ", ".join(f"{to_camel_case(a.name)}: {self._format(a.ty)}" for a in function.args)
        call_args = ", ".join(
            to_camel_case(a.name) if self.types.is_primitive(a.ty) else f"{a.name}_ptr"
            for a in function.args
        )
        ret = function.return_type
        ret_ty = self._format(ret) if self._has_result(ret) else "void"
        if function.is_async:
            fn_call = f"return promiseFromPtr<{ret_ty}>(export_fn({call_args}));"
        elif not self._has_result(ret):
            fn_call = f"export_fn({call_args});"
        elif self.types.is_primitive(ret):
            fn_call = f"return export_fn({call_args});"
        else:
            fn_call = f"return parseObject<{ret_ty}>(export_fn({call_args}));"

        lines = [
            f"{camel}: (() => {{",
            f"    const export_fn = instance.exports.{symbol} as any;",
            "    if (!export_fn) return;",
            "",
            f"    return ({params}) => {{",
        ]
        lines.extend(f"        {line}" for line in serialize_args)
        lines.append(f"        {fn_call}")
        lines.append("    };")
        lines.append("})(),")
        return lines
