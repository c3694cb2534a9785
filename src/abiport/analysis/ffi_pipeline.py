"""``translate``: the two-phase, barrier-separated translation run.

Phase 1 expands every file on a worker pool. Once all of those futures are
done the symbol table is filled by this thread alone, frozen, and names are
assigned. Phase 2 emits every file on the pool again; each task owns its
resolver and collector, and results are merged back in corpus order.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .ffi_diagnostics import DiagnosticReport, make_log
from .ffi_emit import UNRESOLVED_MODES, EmitOptions, FileEmitter
from .ffi_emit_rename import assign_names
from .ffi_expand import ExpandedFile, ExpandOptions, expand_file
from .ffi_ir import split_path
from .ffi_profiles import NativeTarget, TargetProfile
from .ffi_symbols import collect
from .ffi_syntax import SourceFile


LOG_CHANNELS = ("expand", "resolve", "emit", "pipeline")


@dataclass(frozen=True)
class TranslateOptions:
    native: NativeTarget = NativeTarget()
    default_library: Optional[str] = None
    unresolved: str = "placeholder"
    layout_asserts: bool = True
    jobs: Optional[int] = None
    verbose: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.unresolved not in UNRESOLVED_MODES:
            raise ValueError(f"unresolved must be one of {', '.join(UNRESOLVED_MODES)}, not {self.unresolved!r}")
        if self.jobs is not None and self.jobs < 1:
            raise ValueError("jobs must be >= 1")
        unknown = set(self.verbose) - set(LOG_CHANNELS) - {"all"}
        if unknown:
            raise ValueError(f"unknown log channel(s): {', '.join(sorted(unknown))}")


def translate(
    corpus: Sequence[SourceFile],
    profile: TargetProfile,
    options: Optional[TranslateOptions] = None,
) -> tuple[dict[str, str], DiagnosticReport]:
    """Translate a corpus of parsed files for ``profile``.

    Returns the emitted text keyed by each file's module path (in corpus
    order) and the merged diagnostics report. A name collision aborts the
    run after collection and no modules are returned.
    """

    options = options or TranslateOptions()
    verbose = set(options.verbose)
    log = make_log("pipeline", verbose)
    expand_log = make_log("expand", verbose)
    emit_log = make_log("emit", verbose)
    resolve_log = make_log("resolve", verbose)
    expand_options = ExpandOptions(native=options.native, default_library=options.default_library)

    with ThreadPoolExecutor(max_workers=options.jobs) as pool:
        expanded: list[ExpandedFile] = list(pool.map(lambda source: expand_file(source, expand_options, expand_log), corpus))

        # barrier: every expansion is complete before anything is registered
        files = [(item.module, split_path(item.source.module)) for item in expanded]
        table, collisions = collect(files, log)
        report = DiagnosticReport()
        if collisions:
            for item in expanded:
                report.records.extend(item.source.diagnostics)
                report.records.extend(item.diagnostics)
            report.records.extend(collisions)
            report.aborted = True
            if log is not None:
                log(f"aborted: {len(collisions)} name collision(s)")
            return {}, report

        names = assign_names(files, table, profile)
        emit_options = EmitOptions(unresolved=options.unresolved, layout_asserts=options.layout_asserts)

        def emit(index: int):
            root, file = files[index]
            emitter = FileEmitter(root, file, table, names, profile, options.native, emit_options, emit_log, resolve_log)
            return emitter.emit(), emitter.diagnostics.records

        results = list(pool.map(emit, range(len(files))))

    modules: dict[str, str] = {}
    for item, (text, records) in zip(expanded, results):
        modules[item.source.module] = text
        report.records.extend(item.source.diagnostics)
        report.records.extend(item.diagnostics)
        report.records.extend(records)
    if log is not None:
        log(f"{len(modules)} module(s), {report.error_count} error(s), {report.warning_count} warning(s)")
    return modules, report
