"""Generation entry point: selects a generator, renders and writes bindings"""

import logging
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from .common_generator import BindingsConfig
from .errors import OutputError
from .formatter import Formatter, identity
from .rust_plugin_generator import RustPluginGenerator
from .rust_runtime_generator import RustRuntimeGenerator
from .ts_runtime_generator import TsRuntimeGenerator
from .types import FunctionList, Type, TypeMap

logger = logging.getLogger(__name__)


class BindingsType(Enum):
    RUST_PLUGIN = "rust-plugin"
    RUST_WASMER_RUNTIME = "rust-wasmer-runtime"
    TS_RUNTIME = "ts-runtime"

    @classmethod
    def from_str(cls, value: str) -> "BindingsType":
        for bindings_type in cls:
            if bindings_type.value == value:
                return bindings_type
        choices = ", ".join(f"`{t.value}`" for t in cls)
        raise ValueError(f"Bindings type must be one of {choices}, was: `{value}`")


GENERATORS = {
    BindingsType.RUST_PLUGIN: RustPluginGenerator,
    BindingsType.RUST_WASMER_RUNTIME: RustRuntimeGenerator,
    BindingsType.TS_RUNTIME: TsRuntimeGenerator,
}


def _names(types: Iterable[Type]) -> set[str]:
    return {ty.name for ty in types}


def render_bindings(
    import_functions: FunctionList,
    export_functions: FunctionList,
    serializable_types: Iterable[Type],
    deserializable_types: Iterable[Type],
    bindings_type: str,
    formatter: Optional[Formatter] = None,
    config: Optional[BindingsConfig] = None,
) -> dict[str, str]:
    """Render all files for one target without touching the filesystem.

    ``serializable_types`` are the types the plugin sends to the host and
    ``deserializable_types`` those it receives.
    """
    target = BindingsType.from_str(bindings_type)
    serializable_types = list(serializable_types)
    deserializable_types = list(deserializable_types)
    types = TypeMap.from_types(serializable_types + deserializable_types)

    generator = GENERATORS[target](
        import_functions,
        export_functions,
        types,
        serializable=_names(serializable_types),
        deserializable=_names(deserializable_types),
        config=config,
    )
    logger.debug(
        "generating %s bindings: %d import(s), %d export(s), %d type(s)",
        target.value, len(import_functions), len(export_functions), len(types.declarations()),
    )
    files = generator.generate()

    formatter = formatter or identity
    return {name: formatter(name, contents) for name, contents in files.items()}


def write_bindings(files: dict[str, str], path) -> dict[str, Path]:
    output_dir = Path(path)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputError(f"Could not create output directory {output_dir}: {e}") from e

    written = {}
    for filename, contents in files.items():
        file_path = output_dir / filename
        try:
            file_path.write_text(contents)
        except OSError as e:
            raise OutputError(f"Could not write bindings file {file_path}: {e}") from e
        logger.info("wrote %s", file_path)
        written[filename] = file_path
    return written


def generate_bindings(
    import_functions: FunctionList,
    export_functions: FunctionList,
    serializable_types: Iterable[Type],
    deserializable_types: Iterable[Type],
    bindings_type: str,
    path,
    formatter: Optional[Formatter] = None,
    config: Optional[BindingsConfig] = None,
) -> dict[str, Path]:
    """Generate bindings for ``bindings_type`` into the directory ``path``.

    Everything is rendered before the first file is written, so a schema
    error leaves the output location untouched.
    """
    files = render_bindings(
        import_functions,
        export_functions,
        serializable_types,
        deserializable_types,
        bindings_type,
        formatter=formatter,
        config=config,
    )
    return write_bindings(files, path)
