from dataclasses import replace

import pytest

from plugbind.common_generator import BindingsConfig
from plugbind.errors import UnsupportedSchemaError
from plugbind.rust_runtime_generator import RustRuntimeGenerator
from plugbind.types import Function, FunctionArg, FunctionList, TypeMap

from conftest import ident


def block(source: str, start: str) -> str:
    begin = source.index(start)
    return source[begin:source.index("\n}\n", begin)]


def render(scenario, **kwargs) -> dict:
    return RustRuntimeGenerator(scenario["imports"], scenario["exports"], scenario["types"], **kwargs).generate()


def test_files(scenario):
    files = render(scenario)
    assert set(files) == {"types.rs", "bindings.rs"}
    assert files["bindings.rs"].startswith("// AUTO-GENERATED - DO NOT EDIT")


def test_runtime_struct(scenario):
    bindings = render(scenario)["bindings.rs"]
    assert "pub struct Runtime {\n    store: Store,\n    instance: Instance," in bindings
    assert "pub fn new(wasm_module: impl AsRef<[u8]>) -> Result<Self, RuntimeError> {" in bindings
    assert "resolve_pending" not in bindings


def test_primitive_export_methods(scenario):
    bindings = render(scenario)["bindings.rs"]
    assert "    pub fn add(&mut self, a: i32, b: i32) -> Result<i32, InvocationError> {" in bindings
    raw = bindings[bindings.index("pub fn add_raw("):]
    raw = raw[:raw.index("\n    }\n")]
    assert raw.startswith("pub fn add_raw(&mut self, a: i32, b: i32) -> Result<i32, InvocationError> {")
    assert (
        ".get_typed_function::<(<i32 as WasmAbi>::AbiType, <i32 as WasmAbi>::AbiType), "
        '<i32 as WasmAbi>::AbiType>(&self.store, "__fp_gen_add")'
    ) in raw
    assert 'InvocationError::FunctionNotExported("__fp_gen_add".to_owned())' in raw
    assert "export_to_guest_raw" not in raw
    assert "WasmAbi::from_abi(result)" in raw


def test_async_export_methods(scenario):
    bindings = render(scenario)["bindings.rs"]
    assert "pub async fn fetch(&mut self, url: String) -> Result<serde_bytes::ByteBuf, InvocationError> {" in bindings
    assert "pub async fn fetch_raw(&mut self, url: Vec<u8>) -> Result<Vec<u8>, InvocationError> {" in bindings
    assert "let url = serialize_to_vec(&url);" in bindings
    assert '.get_typed_function::<FatPtr, FatPtr>(&self.store, "__fp_gen_fetch")' in bindings
    assert "ModuleRawFuture::new(self.function_env_mut(), result).await" in bindings


def test_imports_registered(scenario):
    imports = block(render(scenario)["bindings.rs"], "fn create_imports(")
    assert '"fp" => {' in imports
    assert '"__fp_host_resolve_async_value" => Function::new_typed_with_env(store, env, resolve_async_value),' in imports
    assert '"__fp_gen_sum" => Function::new_typed_with_env(store, env, _sum),' in imports
    assert '"__fp_gen_download" => Function::new_typed_with_env(store, env, _download),' in imports


def test_sync_import_callback(scenario):
    callback = block(render(scenario)["bindings.rs"], "pub fn _sum(")
    assert callback.startswith(
        "pub fn _sum(mut env: FunctionEnvMut<Arc<RuntimeInstanceData>>, "
        "a: <i32 as WasmAbi>::AbiType, b: <i32 as WasmAbi>::AbiType) -> <i32 as WasmAbi>::AbiType {"
    )
    assert "let result = super::sum(a, b);" in callback
    assert "result.to_abi()" in callback


def test_async_import_resolved_after_executor_completes(scenario):
    bindings = render(scenario)["bindings.rs"]
    callback = block(bindings, "pub fn _download(")
    assert callback.startswith(
        "pub fn _download(mut env: FunctionEnvMut<Arc<RuntimeInstanceData>>, url: FatPtr) -> FatPtr {"
    )
    assert "let url = import_from_guest::<String>(&mut env, url);" in callback
    assert "let async_ptr = create_future_value(&mut env);" in callback
    assert "async_import_executor().spawn(async move {" in callback
    assert "thread" not in callback

    # the result lands in guest memory and the handle is resolved once,
    # only after the executor task has delivered it
    spawned = callback.index("async_import_executor().spawn(")
    received = callback.index(".recv()")
    written = callback.index("let result_ptr = export_to_guest_raw(&mut env, &result);")
    resolved = callback.index(".guest_resolve_async_value(&mut env.as_store_mut(), async_ptr, result_ptr);")
    assert spawned < received < written < resolved
    assert bindings.count("guest_resolve_async_value(") == 1
    assert callback.rstrip().endswith("async_ptr")

    executor = block(bindings, "fn async_import_executor()")
    assert "static EXECUTOR: OnceLock<tokio::runtime::Runtime> = OnceLock::new();" in executor
    assert "new_multi_thread()" in executor


def test_no_executor_without_async_imports(add_function):
    bindings = RustRuntimeGenerator(
        FunctionList([add_function]), FunctionList(), TypeMap.from_types([]),
    ).generate()["bindings.rs"]
    assert "async_import_executor" not in bindings


def test_runtime_impl_path(scenario):
    bindings = render(scenario, config=BindingsConfig(runtime_impl_path="crate::host"))["bindings.rs"]
    assert "let result = crate::host::sum(a, b);" in bindings
    assert "let result = crate::host::download(url);" in bindings


def test_keyword_names_are_escaped():
    export = Function("type", args=(FunctionArg("fn", ident("String")),), return_type=ident("i32"))
    callback = replace(export, name="loop")
    bindings = RustRuntimeGenerator(
        FunctionList([callback]), FunctionList([export]), TypeMap.from_types([]),
    ).generate()["bindings.rs"]

    assert "    pub fn r#type(&mut self, r#fn: String) -> Result<i32, InvocationError> {" in bindings
    assert "        let r#fn = serialize_to_vec(&r#fn);" in bindings
    assert "        let result = self.type_raw(r#fn);" in bindings
    assert "    pub fn type_raw(&mut self, r#fn: Vec<u8>) -> Result<i32, InvocationError> {" in bindings
    assert '"__fp_gen_type")' in bindings
    assert "pub fn _loop(mut env: FunctionEnvMut<Arc<RuntimeInstanceData>>, r#fn: FatPtr)" in bindings
    assert "let result = super::r#loop(r#fn);" in bindings


@pytest.mark.parametrize("names, message", [
    (["new"], "Export new collides with Runtime::new"),
    (["default_store"], "Runtime::default_store"),
    (["function_env_mut"], "Runtime::function_env_mut"),
    (["x", "x_raw"], "Exports x and x_raw both define Runtime::x_raw"),
])
def test_export_method_collisions(names, message):
    exports = FunctionList([Function(name) for name in names])
    generator = RustRuntimeGenerator(FunctionList(), exports, TypeMap.from_types([]))
    with pytest.raises(UnsupportedSchemaError, match=message):
        generator.generate()


def test_import_argument_named_env_rejected():
    imports = FunctionList([Function("notify", args=(FunctionArg("env", ident("u8")),))])
    generator = RustRuntimeGenerator(imports, FunctionList(), TypeMap.from_types([]))
    with pytest.raises(UnsupportedSchemaError, match="argument named `env`"):
        generator.generate()


def test_types_derives_are_inverted(sample_ir):
    types = TypeMap.from_types(sample_ir.serializable_types + sample_ir.deserializable_types)
    source = RustRuntimeGenerator(
        sample_ir.import_functions,
        sample_ir.export_functions,
        types,
        serializable={t.name for t in sample_ir.serializable_types},
        deserializable={t.name for t in sample_ir.deserializable_types},
    ).generate()["types.rs"]
    assert "#[derive(Clone, Debug, Deserialize, PartialEq)]\npub struct RequestOptions {" in source
    assert "#[derive(Clone, Debug, PartialEq, Serialize)]\npub struct Response {" in source


def test_sample_bindings(sample_ir):
    types = TypeMap.from_types(sample_ir.serializable_types + sample_ir.deserializable_types)
    bindings = RustRuntimeGenerator(
        sample_ir.import_functions, sample_ir.export_functions, types,
    ).generate()["bindings.rs"]

    assert "pub fn translate(&mut self, point: Point, dx: i32) -> Result<Point, InvocationError> {" in bindings
    assert "let result = result.map(|ref data| deserialize_from_slice(data));" in bindings
    assert "let point = export_to_guest_raw(&mut self.function_env_mut(), point);" in bindings
    assert "let result = import_from_guest_raw(&mut self.function_env_mut(), result);" in bindings

    log = block(bindings, "pub fn _log(")
    assert log.startswith("pub fn _log(mut env: FunctionEnvMut<Arc<RuntimeInstanceData>>, message: FatPtr) {")
    assert "super::log(message);" in log

    make_request = block(bindings, "pub fn _make_request(")
    assert "let opts = import_from_guest::<RequestOptions>(&mut env, opts);" in make_request
    assert "async_import_executor().spawn(" in make_request
    assert "guest_resolve_async_value(" in make_request
