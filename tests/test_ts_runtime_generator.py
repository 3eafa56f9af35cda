import pytest

from plugbind.common_generator import BindingsConfig
from plugbind.errors import UnsupportedSchemaError
from plugbind.ts_runtime_generator import TsRuntimeGenerator
from plugbind.types import (
    Enum, Field, Function, FunctionArg, FunctionList, Struct, Tuple, TypeMap,
    Variant,
)

from conftest import ENCODINGS, LABEL, ident, shape_enum


def render(scenario, **kwargs) -> dict:
    return TsRuntimeGenerator(scenario["imports"], scenario["exports"], scenario["types"], **kwargs).generate()


def section(source: str, start: str, end: str) -> str:
    begin = source.index(start)
    return source[begin:source.index(end, begin)]


@pytest.fixture
def sample_files(sample_ir):
    types = TypeMap.from_types(sample_ir.serializable_types + sample_ir.deserializable_types)
    return TsRuntimeGenerator(
        sample_ir.import_functions,
        sample_ir.export_functions,
        types,
        serializable={t.name for t in sample_ir.serializable_types},
        deserializable={t.name for t in sample_ir.deserializable_types},
    ).generate()


def test_files(scenario):
    files = render(scenario)
    assert set(files) == {"types.ts", "index.ts"}
    for contents in files.values():
        assert contents.startswith("// AUTO-GENERATED - DO NOT EDIT")


def test_declarations(scenario):
    index = render(scenario)["index.ts"]
    imports = section(index, "export type Imports = {", "};")
    exports = section(index, "export type Exports = {", "};")
    assert "    sum: (a: number, b: number) => number;" in imports
    assert "    download: (url: string) => Promise<Uint8Array>;" in imports
    assert "    add?: (a: number, b: number) => number;" in exports
    assert "    fetch?: (url: string) => Promise<Uint8Array>;" in exports


def test_runtime_symbols(scenario):
    index = render(scenario)["index.ts"]
    assert 'import { encode, decode } from "@msgpack/msgpack";' in index
    assert "            __fp_host_resolve_async_value: resolvePromise," in index
    assert 'const malloc = getExport<(len: number) => FatPtr>("__fp_malloc");' in index
    assert 'const free = getExport<(ptr: FatPtr) => void>("__fp_free");' in index
    assert 'const resolveFuture = getExport<(ptr: FatPtr) => void>("__fp_guest_resolve_async_value");' in index
    assert "const len = 12; // status, ptr, len" in index
    assert "export class FPRuntimeError extends Error {" in index


def test_msgpack_package_is_configurable(scenario):
    index = render(scenario, config=BindingsConfig(msgpack_package="./msgpack.js"))["index.ts"]
    assert 'import { encode, decode } from "./msgpack.js";' in index


def test_resolve_promise_order(scenario):
    index = render(scenario)["index.ts"]
    resolve = section(index, "function resolvePromise(", "function serializeObject")
    assert "Tried to resolve unknown promise" in resolve
    assert "Tried to resolve promise that is not ready" in resolve
    deleted = resolve.index("promises.delete(ptr);")
    parsed = resolve.index("resolve(parseObject(toFatPtr(buffer[1]!, buffer[2]!)));")
    freed = resolve.index("free(ptr);")
    assert deleted < parsed < freed


def test_trivial_export_passes_through(scenario):
    index = render(scenario)["index.ts"]
    assert "        add: instance.exports.__fp_gen_add as any," in index


def test_async_export_wrapper(scenario):
    index = render(scenario)["index.ts"]
    wrapper = section(index, "fetch: (() => {", "})(),")
    assert "const export_fn = instance.exports.__fp_gen_fetch as any;" in wrapper
    assert "return (url: string) => {" in wrapper
    assert "const url_ptr = serializeObject(url);" in wrapper
    assert "return promiseFromPtr<Uint8Array>(export_fn(url_ptr));" in wrapper


def test_async_import_wrapper(scenario):
    index = render(scenario)["index.ts"]
    wrapper = section(index, "__fp_gen_download: (", "            },")
    assert wrapper.startswith("__fp_gen_download: (url_ptr: FatPtr): FatPtr => {")
    assert "const url = parseObject<string>(url_ptr);" in wrapper
    assert "const _async_result_ptr = createAsyncValue();" in wrapper
    assert "importFunctions.download(url)" in wrapper
    assert wrapper.index("assignAsyncValue(_async_result_ptr, result);") < wrapper.index(
        "resolveFuture(_async_result_ptr);"
    )
    assert "return _async_result_ptr;" in wrapper


def test_sync_import_wrapper(scenario):
    index = render(scenario)["index.ts"]
    wrapper = section(index, "__fp_gen_sum: (", "            },")
    assert wrapper.startswith("__fp_gen_sum: (a: number, b: number): number => {")
    assert "return importFunctions.sum(a, b);" in wrapper


def test_async_unit_import_assigns_value():
    notify = Function("notify", is_async=True)
    index = TsRuntimeGenerator(FunctionList([notify]), FunctionList(), TypeMap.from_types([])).generate()["index.ts"]
    wrapper = section(index, "__fp_gen_notify: (", "            },")
    assert "assignAsyncValue(_async_result_ptr, result);" in wrapper
    assert "    notify: () => Promise<void>;" in index


def test_non_primitive_return_is_parsed():
    point = Struct("Point", fields=(Field("x", ident("i32")), Field("y", ident("i32"))))
    functions = FunctionList([
        Function("get_point", return_type=ident("Point")),
        Function("get_flag", return_type=ident("bool")),
        Function("reset"),
    ])
    index = TsRuntimeGenerator(
        FunctionList(), functions, TypeMap.from_types([point]), deserializable={"Point"},
    ).generate()["index.ts"]
    assert "getPoint: instance.exports" not in index
    assert "return parseObject<Point>(export_fn());" in index
    assert "        getFlag: instance.exports.__fp_gen_get_flag as any," in index
    assert "        reset: instance.exports.__fp_gen_reset as any," in index
    assert "    getPoint?: () => Point;" in index
    assert "import type {\n    Point,\n} from \"./types\";" in index


def test_sample_types(sample_files):
    source = sample_files["types.ts"]
    assert "/**\n * A point on the plane.\n */\nexport type Point = {\n    x: number;\n    y: number;\n};" in source
    assert "    statusCode: number;\n    body: Uint8Array;" in source
    assert "    headers: Record<string, string>;\n    body?: Uint8Array;" in source
    assert 'export type Method =\n    | "GET"\n    | "POST"\n    | "DELETE";' in source
    assert (
        "export type RequestError =\n"
        '    | { type: "offline" }\n'
        '    | { type: "noRoute"; payload: { reason: string } }\n'
        '    | { type: "serverError"; payload: number };'
    ) in source
    assert "export type HttpResult = Outcome<Response, RequestError>;" in source
    assert "export type Outcome<T, E> =\n    | { Ok: T }\n    | { Err: E };" in source


def test_sample_index(sample_files):
    index = sample_files["index.ts"]
    assert "    makeRequest: (opts: RequestOptions) => Promise<HttpResult>;" in index
    assert "    log: (message: string) => void;" in index
    assert "    translate?: (point: Point, dx: number) => Point;" in index
    assert "const point_ptr = serializeObject(point);" in index
    assert "return parseObject<Point>(export_fn(point_ptr, dx));" in index
    assert "__fp_gen_make_request: (opts_ptr: FatPtr): FatPtr => {" in index
    assert "__fp_gen_log: (message_ptr: FatPtr) => {" in index


@pytest.mark.parametrize("encoding, members", [
    ("external", ['"empty"', "{ circle: { radius: number } }", "{ labelled: Label }"]),
    ("adjacent", [
        '{ type: "empty" }',
        '{ type: "circle"; payload: { radius: number } }',
        '{ type: "labelled"; payload: Label }',
    ]),
    ("internal", ['{ kind: "EMPTY" }', '{ kind: "CIRCLE"; radius: number }', '{ kind: "LABELLED" } & Label']),
    ("untagged", ["null", "{ radius: number }", "Label"]),
])
def test_enum_unions(encoding, members):
    types = TypeMap.from_types([LABEL, shape_enum(ENCODINGS[encoding])])
    source = TsRuntimeGenerator(FunctionList(), FunctionList(), types, serializable={"Label", "Shape"}).generate()["types.ts"]
    expected = "export type Shape =\n" + "\n".join(f"    | {m}" for m in members) + ";"
    assert expected in source
    assert "export type Label = {\n    textValue: string;\n    hint?: string;\n};" in source


def test_empty_enum():
    types = TypeMap.from_types([Enum("Never")])
    source = TsRuntimeGenerator(FunctionList(), FunctionList(), types, serializable={"Never"}).generate()["types.ts"]
    assert "export type Never =\n    never;" in source


def test_tuple_variant_needs_single_item():
    enum = Enum("Pair", variants=(Variant("Both", Tuple((ident("i32"), ident("i32")))),))
    generator = TsRuntimeGenerator(FunctionList(), FunctionList(), TypeMap.from_types([enum]), serializable={"Pair"})
    with pytest.raises(UnsupportedSchemaError, match=r"\[ts-runtime\] Variant Pair::Both"):
        generator.generate()


def test_unresolved_argument():
    bad = Function("bad", args=(FunctionArg("thing", ident("Missing")),))
    generator = TsRuntimeGenerator(FunctionList(), FunctionList([bad]), TypeMap.from_types([]))
    with pytest.raises(UnsupportedSchemaError, match="Unresolved type: Missing"):
        generator.generate()
