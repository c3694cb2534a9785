import argparse
import sys
from pathlib import Path

from .analysis.ffi import emit_modules, write_modules
from .analysis.ffi_emit_utils import module_file
from .analysis.ffi_profiles import TARGETS, native_for_arch, profile_by_name


def _split_list(value: str) -> set[str]:
    return {item.strip() for item in value.split(",") if item.strip()}


def main() -> None:
    parser = argparse.ArgumentParser(description="Translate Rust winapi-style FFI declarations to Zig or C.")
    parser.add_argument("paths", nargs="+", help="Rust source files, or directories searched for *.rs files.")
    parser.add_argument(
        "--root",
        default=None,
        help="Crate source root used to derive module paths (default: each directory argument, or the directory of a file argument).",
    )
    parser.add_argument(
        "--target",
        choices=TARGETS,
        default="zig",
        help="Output language (default: zig).",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write one file per module below this directory instead of printing to stdout.",
    )
    parser.add_argument(
        "--pointer-syntax",
        choices=("optional", "c"),
        default=None,
        help="Zig pointer spelling: optional single pointers (?*T, default) or C pointers ([*c]T).",
    )
    parser.add_argument(
        "--library",
        default="user32",
        help="Library for extern blocks without #[link(name = ...)] (default: user32, use '' for none).",
    )
    parser.add_argument(
        "--arch",
        default="x86_64",
        help="Native architecture evaluated by #[cfg] and used for layout (default: x86_64).",
    )
    parser.add_argument(
        "--pointer-width",
        type=int,
        default=None,
        help="Native pointer width in bits (default: derived from --arch).",
    )
    parser.add_argument(
        "--os",
        dest="target_os",
        default="windows",
        help="Native target_os for #[cfg] and C long widths (default: windows).",
    )
    parser.add_argument(
        "--features",
        default=None,
        help="Comma-separated cargo features enabled for #[cfg(feature)] (default: all).",
    )
    parser.add_argument(
        "--unresolved",
        choices=("placeholder", "omit"),
        default="placeholder",
        help="Emit placeholders for unresolved references, or omit the declaration (default: placeholder).",
    )
    parser.add_argument(
        "--no-layout-asserts",
        action="store_true",
        help="Do not emit size/offset assertions for structs.",
    )
    parser.add_argument(
        "--jobs",
        type=int,
        default=None,
        help="Worker threads (default: executor default).",
    )
    parser.add_argument(
        "--verbose",
        default="",
        help="Comma-separated list of log channels (expand, resolve, emit, pipeline, or 'all').",
    )
    parser.add_argument(
        "--report",
        default=None,
        help="Also write the diagnostics report to this path.",
    )
    args = parser.parse_args()

    if args.jobs is not None and args.jobs < 1:
        raise ValueError("--jobs must be >= 1")
    profile_by_name(args.target, args.pointer_syntax)
    native = native_for_arch(
        args.arch,
        pointer_width=args.pointer_width,
        os=args.target_os,
        features=frozenset(_split_list(args.features)) if args.features is not None else None,
    )

    modules, report = emit_modules(
        args.paths,
        root=args.root,
        target=args.target,
        pointer_syntax=args.pointer_syntax,
        native=native,
        default_library=args.library or None,
        unresolved=args.unresolved,
        layout_asserts=not args.no_layout_asserts,
        jobs=args.jobs,
        verbose=_split_list(args.verbose),
    )

    if args.output:
        for path in write_modules(modules, args.output, args.target):
            print(path)
    else:
        profile = profile_by_name(args.target, args.pointer_syntax)
        for module, text in modules.items():
            if len(modules) > 1:
                parts = tuple(part for part in module.split("::") if part)
                print(f"// ---- {module_file(parts, profile)}")
            print(text, end="")

    rendered = report.render()
    print(rendered, end="", file=sys.stderr)
    if args.report:
        Path(args.report).write_text(rendered, encoding="utf-8")
    if report.aborted or report.error_count:
        sys.exit(1)
