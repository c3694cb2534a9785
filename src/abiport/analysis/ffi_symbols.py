"""Corpus-wide symbol table (phase 1).

Registration happens on a single thread once every file has been expanded.
After :meth:`SymbolTable.freeze` the table is only read, so resolver workers
share it without locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .ffi_diagnostics import FATAL, NAME_COLLISION, Diagnostic, NameCollisionError
from .ffi_emit_signatures import decl_signature, signature_digest
from .ffi_ir import (
    AliasDecl,
    ConstantDecl,
    EnumDecl,
    FunctionDecl,
    ModuleDecl,
    OpaqueDecl,
    StructDecl,
    walk_modules,
)


@dataclass(frozen=True)
class Symbol:
    path: tuple[str, ...]
    kind: str  # module | struct | union | enum | alias | const | function | opaque | variant | assoc
    decl: object
    file: tuple[str, ...]
    member: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return "::".join(self.path)

    @property
    def is_type(self) -> bool:
        return self.kind in {"struct", "union", "enum", "alias", "opaque"}

    def signature(self) -> tuple:
        return (self.kind, self.member, decl_signature(self.decl) if self.decl is not None else None)


def _decl_kind(decl) -> str:
    if isinstance(decl, StructDecl):
        return decl.kind
    if isinstance(decl, EnumDecl):
        return "enum"
    if isinstance(decl, AliasDecl):
        return "alias"
    if isinstance(decl, ConstantDecl):
        return "const"
    if isinstance(decl, FunctionDecl):
        return "function"
    if isinstance(decl, OpaqueDecl):
        return "opaque"
    if isinstance(decl, ModuleDecl):
        return "module"
    raise TypeError(f"not a declaration: {decl!r}")


class SymbolTable:
    def __init__(self) -> None:
        self._entries: dict[tuple[str, ...], Symbol] = {}
        self._modules: dict[tuple[str, ...], ModuleDecl] = {}
        self._files: list[tuple[str, ...]] = []
        self._frozen = False

    def __contains__(self, path: tuple[str, ...]) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, path: tuple[str, ...]) -> Optional[Symbol]:
        return self._entries.get(path)

    def module(self, path: tuple[str, ...]) -> Optional[ModuleDecl]:
        return self._modules.get(path)

    def is_module(self, path: tuple[str, ...]) -> bool:
        if path == ():
            return True
        symbol = self._entries.get(path)
        return symbol is not None and symbol.kind == "module"

    @property
    def files(self) -> list[tuple[str, ...]]:
        return list(self._files)

    def symbols(self) -> Iterable[Symbol]:
        return self._entries.values()

    def freeze(self) -> None:
        self._frozen = True

    def register(self, symbol: Symbol) -> None:
        if self._frozen:
            raise RuntimeError("symbol table is read-only after collection")
        existing = self._entries.get(symbol.path)
        if existing is None:
            self._entries[symbol.path] = symbol
            return
        if existing.kind == "module" and symbol.kind == "module":
            # implicit parents give way to real module declarations
            if existing.decl is None:
                self._entries[symbol.path] = symbol
                return
            if symbol.decl is None:
                return
        first = existing.signature()
        second = symbol.signature()
        if first == second:
            return
        where = _location_of(existing.decl)
        raise NameCollisionError(
            f"{symbol.kind} conflicts with {existing.kind} declared at {where} "
            f"(signatures {signature_digest(first)} and {signature_digest(second)})",
            symbol.qualified_name,
        )

    def register_module_tree(self, root: ModuleDecl, file: tuple[str, ...], errors: list[Diagnostic]) -> None:
        self._files.append(file)
        for depth in range(1, len(root.path)):
            self._register_safe(Symbol(root.path[:depth], "module", None, root.path[:depth]), None, errors)
        for module in walk_modules(root):
            if module.path:
                self._register_safe(Symbol(module.path, "module", module, file), module, errors)
            self._modules.setdefault(module.path, module)
            for decl in module.declarations():
                if isinstance(decl, ModuleDecl):
                    continue
                self._register_safe(Symbol(decl.path, _decl_kind(decl), decl, file), decl, errors)
                if isinstance(decl, EnumDecl):
                    # C-like variants are module-level constants; tagged ones live under the enum.
                    base = decl.module if decl.style == "clike" else decl.path
                    for variant in decl.variants:
                        self._register_safe(Symbol(base + (variant.name,), "variant", decl, file, variant.name), decl, errors)
                if isinstance(decl, StructDecl):
                    for const in decl.constants:
                        self._register_safe(Symbol(decl.path + (const.name,), "assoc", decl, file, const.name), decl, errors)

    def _register_safe(self, symbol: Symbol, decl, errors: list[Diagnostic]) -> None:
        try:
            self.register(symbol)
        except NameCollisionError as exc:
            errors.append(Diagnostic(FATAL, NAME_COLLISION, exc.qualified_name, exc.message, getattr(decl, "location", None)))


def _location_of(decl) -> str:
    location = getattr(decl, "location", None)
    return str(location) if location is not None else "<unknown>"


def collect(modules: Iterable[tuple[ModuleDecl, tuple[str, ...]]], log=None) -> tuple[SymbolTable, list[Diagnostic]]:
    """Register every declaration of every expanded file, in corpus order."""

    table = SymbolTable()
    errors: list[Diagnostic] = []
    for root, file in modules:
        table.register_module_tree(root, file, errors)
    table.freeze()
    if log is not None:
        log(f"registered {len(table)} symbol(s), {len(errors)} collision(s)")
    return table, errors
