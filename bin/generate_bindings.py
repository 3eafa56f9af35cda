#!/usr/bin/env python3
"""
WASM Plugin Binding Generator

Reads an IR document (JSON) and generates bindings for:
  1. rust-plugin          - guest-side Rust bindings
  2. rust-wasmer-runtime  - wasmer host runtime
  3. ts-runtime           - TypeScript host runtime

Usage:
    python generate_bindings.py plugin.json --output-dir generated/
    python generate_bindings.py plugin.json -o generated/ -t ts-runtime --prettier
"""

import argparse
import logging
import sys
import time
from pathlib import Path

# Add parent directory to path so plugbind package can be found
sys.path.insert(0, str(Path(__file__).parent.parent))

from plugbind import BindingsConfig, BindingsType, IRLoader
from plugbind.errors import PlugbindError
from plugbind.formatter import chain, identity, prettier, rustfmt
from plugbind.generator import render_bindings, write_bindings


def main():
    start_time = time.perf_counter()

    parser = argparse.ArgumentParser(description="Generate WASM plugin bindings from an IR document")
    parser.add_argument("ir_file", help="Path to IR document (JSON)")
    parser.add_argument("--output-dir", "-o", default="generated", help="Output directory")
    parser.add_argument(
        "--target", "-t", action="append", choices=[t.value for t in BindingsType],
        help="Target to generate (repeatable, default: all)",
    )
    parser.add_argument("--plugin-impl-path", default="crate", help="Rust path of the plugin's export implementations")
    parser.add_argument("--runtime-impl-path", default="super", help="Rust path of the host's import implementations")
    parser.add_argument("--rustfmt", action="store_true", help="Format Rust output with rustfmt")
    parser.add_argument("--prettier", action="store_true", help="Format TypeScript output with prettier")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = BindingsConfig(
        plugin_impl_path=args.plugin_impl_path,
        runtime_impl_path=args.runtime_impl_path,
    )
    formatters = []
    if args.rustfmt:
        formatters.append(rustfmt())
    if args.prettier:
        formatters.append(prettier())
    formatter = chain(*formatters) if formatters else identity

    targets = args.target or [t.value for t in BindingsType]
    output_dir = Path(args.output_dir)

    try:
        ir = IRLoader(Path(args.ir_file).read_text()).load()

        # Render every target first so a schema error leaves no partial output
        rendered = {
            target: render_bindings(
                ir.import_functions,
                ir.export_functions,
                ir.serializable_types,
                ir.deserializable_types,
                target,
                formatter=formatter,
                config=config,
            )
            for target in targets
        }
        for target, files in rendered.items():
            target_dir = output_dir / target if len(targets) > 1 else output_dir
            for path in write_bindings(files, target_dir).values():
                print(f"Generated: {path}")
    except (PlugbindError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)

    elapsed = time.perf_counter() - start_time
    print(f"Generation completed in {elapsed*1000:.2f} ms")


if __name__ == "__main__":
    main()
