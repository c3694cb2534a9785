from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Iterator, Optional


ERROR = "error"
WARNING = "warning"
FATAL = "fatal"

PARSE_ERROR = "parse-error"
UNSUPPORTED_CONSTRUCT = "unsupported-construct"
UNRESOLVED_REFERENCE = "unresolved-reference"
NAME_COLLISION = "name-collision"
MAPPING_ERROR = "mapping-error"
LAYOUT_MISMATCH = "layout-mismatch"
VALUE_CYCLE = "value-cycle"


@dataclass(frozen=True)
class Location:
    file: str
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        if self.line is None:
            return self.file
        if self.column is None:
            return f"{self.file}:{self.line}"
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(frozen=True)
class Diagnostic:
    severity: str
    kind: str
    qualified_name: Optional[str]
    message: str
    location: Optional[Location] = None

    def render(self) -> str:
        name = self.qualified_name or "<unknown>"
        where = f" ({self.location})" if self.location is not None else ""
        return f"{self.severity}[{self.kind}] {name}: {self.message}{where}"


class TranslationError(Exception):
    kind = MAPPING_ERROR

    def __init__(self, message: str, qualified_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.qualified_name = qualified_name


class MappingError(TranslationError):
    kind = MAPPING_ERROR


class UnresolvedReferenceError(TranslationError):
    kind = UNRESOLVED_REFERENCE


class UnsupportedConstructError(TranslationError):
    kind = UNSUPPORTED_CONSTRUCT


class NameCollisionError(TranslationError):
    kind = NAME_COLLISION


class LayoutError(TranslationError):
    kind = MAPPING_ERROR


class ValueCycleError(LayoutError):
    kind = VALUE_CYCLE

    def __init__(self, cycle: list[str]) -> None:
        super().__init__("by-value reference cycle: " + " -> ".join(cycle), cycle[0] if cycle else None)
        self.cycle = cycle


class ParseError(TranslationError):
    kind = PARSE_ERROR

    def __init__(self, message: str, location: Optional[Location] = None) -> None:
        super().__init__(message)
        self.location = location


class DiagnosticsCollector:
    """Accumulates per-item failures for one unit of work.

    Collectors are never shared between workers; the pipeline merges them in
    corpus order once every worker finished.
    """

    def __init__(self, log=None) -> None:
        self.records: list[Diagnostic] = []
        self._log = log

    def add(
        self,
        severity: str,
        kind: str,
        qualified_name: Optional[str],
        message: str,
        location: Optional[Location] = None,
    ) -> Diagnostic:
        record = Diagnostic(severity, kind, qualified_name, message, location)
        self.records.append(record)
        if self._log is not None:
            self._log(record.render())
        return record

    def error(self, kind: str, qualified_name: Optional[str], message: str, location: Optional[Location] = None) -> Diagnostic:
        return self.add(ERROR, kind, qualified_name, message, location)

    def warning(self, kind: str, qualified_name: Optional[str], message: str, location: Optional[Location] = None) -> Diagnostic:
        return self.add(WARNING, kind, qualified_name, message, location)

    def record_exception(self, exc: TranslationError, qualified_name: Optional[str], location: Optional[Location]) -> Diagnostic:
        return self.error(exc.kind, exc.qualified_name or qualified_name, exc.message, location)

    def extend(self, records) -> None:
        self.records.extend(records)

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class DiagnosticReport:
    records: list[Diagnostic] = field(default_factory=list)
    aborted: bool = False

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __getitem__(self, index: int) -> Diagnostic:
        return self.records[index]

    @property
    def error_count(self) -> int:
        return sum(1 for record in self.records if record.severity in {ERROR, FATAL})

    @property
    def warning_count(self) -> int:
        return sum(1 for record in self.records if record.severity == WARNING)

    def of_kind(self, kind: str) -> list[Diagnostic]:
        return [record for record in self.records if record.kind == kind]

    def render(self) -> str:
        lines = [record.render() for record in self.records]
        summary = f"{self.error_count} error(s), {self.warning_count} warning(s)"
        if self.aborted:
            summary += "; run aborted"
        lines.append(summary)
        return "\n".join(lines) + "\n"


def make_log(channel: str, verbose: Optional[set[str]]):
    if not verbose or (channel not in verbose and "all" not in verbose):
        return None

    def _log(message: str, *, _channel: str = channel) -> None:
        print(f"[abiport:{_channel}] {message}", file=sys.stderr)

    return _log
