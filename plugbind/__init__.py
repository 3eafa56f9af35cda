"""
WASM Plugin Binding Generator Package

Takes an IR of types and functions and generates:
  1. Rust guest bindings for the plugin (rust-plugin)
  2. A wasmer-based Rust host runtime (rust-wasmer-runtime)
  3. A TypeScript host runtime for JS engines (ts-runtime)
"""

from .types import (
    Alias, Container, Custom, Enum, EnumOptions, Field, Function, FunctionArg,
    FunctionList, GenericArgument, List, Map, Primitive, PrimitiveType, String,
    Struct, Tuple, TypeIdent, TypeMap, Unit, Variant,
)
from .casing import Casing
from .common_generator import BindingsConfig
from .errors import (
    GenerationError, LoaderError, OutputError, PlugbindError, UnsupportedSchemaError,
    WireError,
)
from .generator import BindingsType, generate_bindings, render_bindings
from .loader import IRLoader, LoadedIR
from .rust_plugin_generator import RustPluginGenerator
from .rust_runtime_generator import RustRuntimeGenerator
from .ts_runtime_generator import TsRuntimeGenerator
from .type_mapper import RustTypeMapper, TsTypeMapper
from .wire import EnumValue, WireCodec

__all__ = [
    'Alias', 'Container', 'Custom', 'Enum', 'EnumOptions', 'Field', 'Function',
    'FunctionArg', 'FunctionList', 'GenericArgument', 'List', 'Map', 'Primitive',
    'PrimitiveType', 'String', 'Struct', 'Tuple', 'TypeIdent', 'TypeMap', 'Unit',
    'Variant', 'Casing', 'BindingsConfig',
    'PlugbindError', 'GenerationError', 'LoaderError', 'OutputError',
    'UnsupportedSchemaError', 'WireError',
    'BindingsType', 'generate_bindings', 'render_bindings',
    'IRLoader', 'LoadedIR', 'RustTypeMapper', 'TsTypeMapper',
    'RustPluginGenerator', 'RustRuntimeGenerator', 'TsRuntimeGenerator',
    'EnumValue', 'WireCodec',
]
