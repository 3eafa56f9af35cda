"""Rust Runtime Generator - generates a wasmer-based host runtime for plugins"""

import logging

from . import abi
from .common_generator import CommonGenerator, format_doc_lines, indent_lines
from .rust_plugin_generator import RustTypesRenderer, rust_name
from .type_mapper import RustTypeMapper
from .types import Function, TypeIdent, Unit

logger = logging.getLogger(__name__)

ENV_TYPE = "FunctionEnvMut<Arc<RuntimeInstanceData>>"

# Methods every generated `Runtime` defines
RUNTIME_METHODS = {"new", "default_store", "function_env_mut"}


class RustRuntimeGenerator(CommonGenerator):
    """Generates ``types.rs`` and ``bindings.rs`` for the native host"""

    TARGET = "rust-wasmer-runtime"

    def generate(self) -> dict[str, str]:
        self.check_names()
        self.check_export_methods()
        # Same declarations as the plugin, with the derive sets inverted:
        # what the plugin serializes, the runtime deserializes.
        types = RustTypesRenderer(self, self.deserializable, self.serializable).render()
        logger.debug("rendered %s types.rs", self.TARGET)
        bindings = self.generate_bindings()
        logger.debug("rendered %s bindings.rs", self.TARGET)
        return {"types.rs": types, "bindings.rs": bindings}

    def check_export_methods(self):
        """Each export becomes ``<name>`` and ``<name>_raw`` on ``Runtime``"""
        methods = {}
        for function in self.export_functions:
            for method in (function.name, f"{function.name}_raw"):
                if method in RUNTIME_METHODS:
                    raise self.unsupported(f"Export {function.name} collides with Runtime::{method}")
                if method in methods:
                    raise self.unsupported(
                        f"Exports {methods[method]} and {function.name} both define Runtime::{method}"
                    )
                methods[method] = function.name
        for function in self.import_functions:
            if any(arg.name == "env" for arg in function.args):
                raise self.unsupported(f"Import {function.name} cannot take an argument named `env`")

    def _has_result(self, ident) -> bool:
        return ident is not None and not isinstance(self.types.resolve(ident), Unit)

    def generate_bindings(self) -> str:
        lines = [
            self.notice(),
            "use super::types::*;",
            "use fp_bindgen_support::{",
            "    common::{abi::WasmAbi, mem::FatPtr},",
            "    host::{",
            "        errors::{InvocationError, RuntimeError},",
            "        mem::{",
            "            deserialize_from_slice, export_to_guest, export_to_guest_raw, import_from_guest,",
            "            import_from_guest_raw, serialize_to_vec,",
            "        },",
            "        r#async::{create_future_value, future::ModuleRawFuture, resolve_async_value},",
            "        runtime::RuntimeInstanceData,",
            "    },",
            "};",
            "use std::sync::{mpsc, Arc, OnceLock};",
            "use wasmer::{",
            "    imports, AsStoreMut, Function, FunctionEnv, FunctionEnvMut, Imports, Instance, Module,",
            "    Singlepass, Store,",
            "};",
            "",
            "pub struct Runtime {",
            "    store: Store,",
            "    instance: Instance,",
            "    env: FunctionEnv<Arc<RuntimeInstanceData>>,",
            "}",
            "",
            "impl Runtime {",
        ]
        lines.extend(indent_lines(self._runtime_methods()))
        for function in self.export_functions:
            lines.append("")
            lines.extend(indent_lines(self._export_methods(function)))
        lines.append("}")
        lines.append("")
        lines.extend(self._create_imports())
        if any(f.is_async for f in self.import_functions):
            lines.append("")
            lines.extend(self._async_executor())
        for function in self.import_functions:
            lines.append("")
            lines.extend(self._import_callback(function))
        lines.append("")
        return "\n".join(lines)

    def _runtime_methods(self) -> list[str]:
        return [
            "pub fn new(wasm_module: impl AsRef<[u8]>) -> Result<Self, RuntimeError> {",
            "    let mut store = Self::default_store();",
            "    let module = Module::new(&store, wasm_module)?;",
            "    let env = FunctionEnv::new(&mut store, Arc::new(RuntimeInstanceData::default()));",
            "    let import_object = create_imports(&mut store, &env);",
            "    let instance = Instance::new(&mut store, &module, &import_object)?;",
            "    let env_from_instance = RuntimeInstanceData::from_instance(&mut store, &instance);",
            "    Arc::get_mut(env.as_mut(&mut store)).unwrap().copy_from(env_from_instance);",
            "    Ok(Self { store, instance, env })",
            "}",
            "",
            "fn default_store() -> wasmer::Store {",
            "    Store::new(Singlepass::default())",
            "}",
            "",
            "fn function_env_mut(&mut self) -> FunctionEnvMut<Arc<RuntimeInstanceData>> {",
            "    self.env.clone().into_mut(&mut self.store)",
            "}",
        ]

    def _async_executor(self) -> list[str]:
        """Process-wide executor that drives async host functions"""
        return [
            "fn async_import_executor() -> &'static tokio::runtime::Runtime {",
            "    static EXECUTOR: OnceLock<tokio::runtime::Runtime> = OnceLock::new();",
            "    EXECUTOR.get_or_init(|| {",
            "        tokio::runtime::Builder::new_multi_thread()",
            "            .enable_all()",
            "            .build()",
            '            .expect("failed to start the async import executor")',
            "    })",
            "}",
        ]

    def _wasm_args_type(self, function: Function) -> str:
        wasm_args = [RustTypeMapper.format_wasm_ident(a.ty, self.types) for a in function.args]
        if len(wasm_args) == 1:
            return wasm_args[0]
        return f"({', '.join(wasm_args)})"

    def _export_methods(self, function: Function) -> list[str]:
        """Logical and ``_raw`` methods for calling a guest export"""
        name = rust_name(function)
        raw_name = f"{function.name}_raw"
        symbol = abi.function_symbol(function.name)
        modifiers = "".join(f"{m} " for m in function.modifiers if m != "async")
        if function.is_async:
            modifiers += "async "

        args = "".join(f", {rust_name(a)}: {RustTypeMapper.format_ident(a.ty, self.types)}" for a in function.args)
        raw_args = "".join(f", {rust_name(a)}: {RustTypeMapper.format_raw_ident(a.ty, self.types)}" for a in function.args)
        arg_names = ", ".join(rust_name(a) for a in function.args)
        wasm_arg_names = "".join(f", {rust_name(a)}.to_abi()" for a in function.args)

        ret = function.return_type
        has_result = self._has_result(ret)
        return_type = RustTypeMapper.format_ident(ret, self.types) if has_result else "()"

        if function.is_async:
            # async results are always serialized, primitives included
            raw_return_type = "Vec<u8>"
            wasm_return_type = "FatPtr"
        elif has_result:
            raw_return_type = RustTypeMapper.format_raw_ident(ret, self.types)
            wasm_return_type = RustTypeMapper.format_wasm_ident(ret, self.types)
        else:
            raw_return_type = "()"
            wasm_return_type = "()"

        lines = format_doc_lines(function.doc_lines)
        lines.append(
            f"pub {modifiers}fn {name}(&mut self{args}) -> Result<{return_type}, InvocationError> {{"
        )
        for arg in function.args:
            if not self.types.is_primitive(arg.ty):
                lines.append(f"    let {rust_name(arg)} = serialize_to_vec(&{rust_name(arg)});")
        lines.append(f"    let result = self.{raw_name}({arg_names});")
        if function.is_async:
            lines.append("    let result = result.await;")
        deserialize = function.is_async or (has_result and not self.types.is_primitive(ret))
        if deserialize:
            lines.append("    let result = result.map(|ref data| deserialize_from_slice(data));")
        lines.append("    result")
        lines.append("}")

        lines.append(
            f"pub {modifiers}fn {raw_name}(&mut self{raw_args}) -> Result<{raw_return_type}, InvocationError> {{"
        )
        for arg in function.args:
            if not self.types.is_primitive(arg.ty):
                lines.append(f"    let {rust_name(arg)} = export_to_guest_raw(&mut self.function_env_mut(), {rust_name(arg)});")
        lines.extend([
            "    let function = self",
            "        .instance",
            "        .exports",
            f"        .get_typed_function::<{self._wasm_args_type(function)}, {wasm_return_type}>"
            f'(&self.store, "{symbol}")',
            f'        .map_err(|_| InvocationError::FunctionNotExported("{symbol}".to_owned()))?;',
            f"    let result = function.call(&mut self.store{wasm_arg_names})?;",
        ])
        if function.is_async:
            lines.append("    let result = ModuleRawFuture::new(self.function_env_mut(), result).await;")
        elif has_result and not self.types.is_primitive(ret):
            lines.append("    let result = import_from_guest_raw(&mut self.function_env_mut(), result);")
        elif has_result:
            lines.append("    let result = WasmAbi::from_abi(result);")
        lines.append("    Ok(result)")
        lines.append("}")
        return lines

    def _create_imports(self) -> list[str]:
        lines = [
            "fn create_imports(store: &mut Store, env: &FunctionEnv<Arc<RuntimeInstanceData>>) -> Imports {",
            "    imports! {",
            f'        "{abi.IMPORT_MODULE}" => {{',
            f'            "{abi.HOST_RESOLVE_SYMBOL}" => Function::new_typed_with_env(store, env, resolve_async_value),',
        ]
        for function in self.import_functions:
            lines.append(
                f'            "{abi.function_symbol(function.name)}" => '
                f"Function::new_typed_with_env(store, env, _{function.name}),"
            )
        lines.extend([
            "        }",
            "    }",
            "}",
        ])
        return lines

    def _import_arg(self, name: str, ty: TypeIdent) -> str:
        if self.types.is_primitive(ty):
            return f"let {name} = WasmAbi::from_abi({name});"
        rs_ty = RustTypeMapper.format_ident(ty, self.types)
        return f"let {name} = import_from_guest::<{rs_ty}>(&mut env, {name});"

    def _import_callback(self, function: Function) -> list[str]:
        """Host function the guest calls through ``__fp_gen_<name>``"""
        name = function.name
        wasm_args = "".join(
            f", {rust_name(a)}: {RustTypeMapper.format_wasm_ident(a.ty, self.types)}" for a in function.args
        )
        ret = function.return_type
        has_result = self._has_result(ret)
        if function.is_async:
            wrapper_return = " -> FatPtr"
        elif has_result:
            wrapper_return = f" -> {RustTypeMapper.format_wasm_ident(ret, self.types)}"
        else:
            wrapper_return = ""

        lines = [f"pub fn _{name}(mut env: {ENV_TYPE}{wasm_args}){wrapper_return} {{"]
        lines.extend(f"    {self._import_arg(rust_name(a), a.ty)}" for a in function.args)
        arg_names = ", ".join(rust_name(a) for a in function.args)
        lines.append(f"    let result = {self.config.runtime_impl_path}::{rust_name(function)}({arg_names});")

        if function.is_async:
            # The store stays with this callback, so the result is written and
            # the handle resolved here once the executor task completes.
            lines.extend([
                "    let async_ptr = create_future_value(&mut env);",
                "    let (sender, receiver) = mpsc::channel();",
                "    async_import_executor().spawn(async move {",
                "        let _ = sender.send(serialize_to_vec(&result.await));",
                "    });",
                "    let result = receiver",
                "        .recv()",
                f'        .expect("async import `{name}` did not complete");',
                "    let result_ptr = export_to_guest_raw(&mut env, &result);",
                "    env.data()",
                "        .clone()",
                "        .guest_resolve_async_value(&mut env.as_store_mut(), async_ptr, result_ptr);",
                "    async_ptr",
            ])
        elif has_result and self.types.is_primitive(ret):
            lines.append("    result.to_abi()")
        elif has_result:
            lines.append("    export_to_guest(&mut env, &result)")
        lines.append("}")
        return lines
