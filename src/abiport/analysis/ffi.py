import os
from pathlib import Path

from .ffi_diagnostics import ERROR, PARSE_ERROR, Diagnostic, DiagnosticReport, Location
from .ffi_emit_utils import module_file
from .ffi_frontend import parse_source
from .ffi_pipeline import TranslateOptions, translate
from .ffi_profiles import NativeTarget, profile_by_name
from .ffi_syntax import SourceFile


CRATE_ROOT_FILES = {"lib", "main"}


def _discover(paths: list[str]) -> list[tuple[str, str]]:
    """``(file, base)`` pairs; files found under a directory argument use it as their base."""

    out: list[tuple[str, str]] = []
    for path in paths:
        if os.path.isdir(path):
            found = sorted(str(p) for p in Path(path).rglob("*.rs") if p.is_file())
            out.extend((found_path, path) for found_path in found)
        elif os.path.isfile(path):
            out.append((path, os.path.dirname(path) or "."))
        else:
            raise ValueError(f"No such file or directory: {path}")
    seen: set[str] = set()
    unique = []
    for path, base in out:
        key = os.path.abspath(path)
        if key in seen:
            continue
        seen.add(key)
        unique.append((path, base))
    return unique


def collect_source_paths(paths: list[str]) -> list[str]:
    """Expand directories into their ``*.rs`` files (sorted), keep files as given."""

    return [path for path, _base in _discover(paths)]


def module_path_for(path: str, root: str | None) -> str:
    """Rust module path of a source file relative to the crate root directory."""

    if root is None:
        root = os.path.dirname(path) or "."
    rel = os.path.relpath(path, root)
    if rel.startswith(".."):
        raise ValueError(f"{path} is not below the crate root {root}")
    parts = list(Path(rel).with_suffix("").parts)
    if parts and parts[-1] == "mod":
        parts.pop()
    elif len(parts) == 1 and parts[0] in CRATE_ROOT_FILES:
        parts.pop()
    return "::".join(parts)


def load_corpus(paths: list[str], root: str | None = None) -> list[SourceFile]:
    """Parse every source file; without ``root`` a directory argument is its own crate root.

    A file that cannot be read becomes an empty module carrying a parse error.
    """

    corpus: list[SourceFile] = []
    for path, base in _discover(paths):
        module = module_path_for(path, root if root is not None else base)
        try:
            text = Path(path).read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError) as exc:
            source = SourceFile(module=module, path=path, items=[])
            source.diagnostics.append(Diagnostic(ERROR, PARSE_ERROR, module or None, f"cannot read source: {exc}", Location(path)))
            corpus.append(source)
            continue
        corpus.append(parse_source(text, path, module))
    return corpus


def emit_modules(
    paths: list[str],
    root: str | None = None,
    target: str = "zig",
    pointer_syntax: str | None = None,
    native: NativeTarget | None = None,
    default_library: str | None = None,
    unresolved: str = "placeholder",
    layout_asserts: bool = True,
    jobs: int | None = None,
    verbose: set[str] | None = None,
) -> tuple[dict[str, str], DiagnosticReport]:
    profile = profile_by_name(target, pointer_syntax)
    options = TranslateOptions(
        native=native or NativeTarget(),
        default_library=default_library,
        unresolved=unresolved,
        layout_asserts=layout_asserts,
        jobs=jobs,
        verbose=frozenset(verbose or ()),
    )
    corpus = load_corpus(paths, root)
    return translate(corpus, profile, options)


def write_modules(modules: dict[str, str], output_dir: str, target: str = "zig") -> list[str]:
    """Write one file per module below ``output_dir``; returns the written paths."""

    profile = profile_by_name(target)
    written: list[str] = []
    for module, text in modules.items():
        parts = tuple(part for part in module.split("::") if part)
        dest = Path(output_dir) / module_file(parts, profile)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(text, encoding="utf-8")
        written.append(str(dest))
    return written
