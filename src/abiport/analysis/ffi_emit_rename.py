"""Target-legal, collision-free identifiers for every emitted declaration.

Names are assigned once, single-threaded, after the symbol table is frozen
and before any file is rendered, so every worker spells a cross-file
reference the same way the defining file does.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .ffi_emit_utils import _sanitize_identifier
from .ffi_ir import EnumDecl, FunctionDecl, ImportDecl, ModuleDecl, SkippedItem, StructDecl, qualify
from .ffi_profiles import TargetProfile
from .ffi_symbols import SymbolTable


class NameScope:
    def __init__(self, profile: TargetProfile, taken: Iterable[str] = ()) -> None:
        self.profile = profile
        self.taken: set[str] = set(taken)

    def assign(self, base: str) -> str:
        base = _sanitize_identifier(base) or "_anon"
        if self.profile.is_reserved(base):
            base = base + "_"
        if base not in self.taken:
            self.taken.add(base)
            return base
        idx = 2
        while True:
            candidate = f"{base}_{idx}"
            if candidate not in self.taken and not self.profile.is_reserved(candidate):
                self.taken.add(candidate)
                return candidate
            idx += 1

    def reserve(self, name: str) -> None:
        self.taken.add(name)


@dataclass
class NameMap:
    names: dict[str, str] = field(default_factory=dict)
    reexports: dict[tuple[tuple[str, ...], str], str] = field(default_factory=dict)
    scopes: dict[tuple[str, ...], frozenset[str]] = field(default_factory=dict)
    file_names: dict[tuple[str, ...], frozenset[str]] = field(default_factory=dict)

    def name_of(self, qualified: str) -> str:
        name = self.names.get(qualified)
        if name is None:
            raise KeyError(f"no emitted name for {qualified}")
        return name

    def get(self, qualified: str) -> Optional[str]:
        return self.names.get(qualified)

    def scope_names(self, module: tuple[str, ...]) -> frozenset[str]:
        return self.scopes.get(module, frozenset())


def _owned(table: SymbolTable, decl) -> bool:
    symbol = table.get(decl.path)
    return symbol is not None and symbol.decl is decl


def _assign_zig_module(module: ModuleDecl, table: SymbolTable, names: NameMap, profile: TargetProfile, inherited: frozenset[str]) -> set[str]:
    scope = NameScope(profile, inherited)
    nested: list[ModuleDecl] = []
    for item in module.items:
        if isinstance(item, SkippedItem):
            continue
        if isinstance(item, ImportDecl):
            if item.public and not item.glob and item.alias:
                names.reexports[(module.path, item.alias)] = scope.assign(item.alias)
            continue
        if isinstance(item, ModuleDecl):
            names.names[item.qualified_name] = scope.assign(item.name)
            nested.append(item)
            continue
        if not _owned(table, item):
            continue
        names.names[item.qualified_name] = scope.assign(item.name)
        if isinstance(item, EnumDecl):
            if item.style == "clike":
                for variant in item.variants:
                    names.names[qualify(item.module, variant.name)] = scope.assign(variant.name)
            else:
                members = NameScope(profile)
                for variant in item.variants:
                    names.names[qualify(item.path, variant.name)] = members.assign(variant.name)
        if isinstance(item, StructDecl) and item.constants:
            members = NameScope(profile, field_names(item, profile))
            for const in item.constants:
                names.names[qualify(item.path, const.name)] = members.assign(const.name)
    visible = inherited | scope.taken
    names.scopes[module.path] = frozenset(visible)
    used = set(scope.taken)
    for child in nested:
        used |= _assign_zig_module(child, table, names, profile, frozenset(visible))
    return used


def _assign_c_file(root: ModuleDecl, table: SymbolTable, names: NameMap, profile: TargetProfile) -> set[str]:
    scope = NameScope(profile)
    modules = []

    def visit(module: ModuleDecl) -> None:
        modules.append(module.path)
        for item in module.items:
            if isinstance(item, (SkippedItem, ImportDecl)):
                continue
            if isinstance(item, ModuleDecl):
                visit(item)
                continue
            if not _owned(table, item):
                continue
            names.names[item.qualified_name] = scope.assign(item.name)
            if isinstance(item, FunctionDecl):
                scope.reserve(item.linkage_name)
            if isinstance(item, EnumDecl):
                for variant in item.variants:
                    if item.style == "clike":
                        names.names[qualify(item.module, variant.name)] = scope.assign(variant.name)
                    else:
                        names.names[qualify(item.path, variant.name)] = scope.assign(f"{item.name}_{variant.name}")
            if isinstance(item, StructDecl):
                for const in item.constants:
                    names.names[qualify(item.path, const.name)] = scope.assign(f"{item.name}_{const.name}")

    visit(root)
    taken = frozenset(scope.taken)
    for path in modules:
        names.scopes[path] = taken
    return set(scope.taken)


def field_names(decl: StructDecl, profile: TargetProfile) -> list[str]:
    scope = NameScope(profile)
    return [scope.assign(member.name) for member in decl.fields]


def param_names(params, profile: TargetProfile, taken: Iterable[str]) -> list[str]:
    scope = NameScope(profile, taken)
    out = []
    for idx, param in enumerate(params):
        base = param.name if param.name and param.name != "_" else f"arg{idx}"
        out.append(scope.assign(base))
    return out


def assign_names(files: Iterable[tuple[ModuleDecl, tuple[str, ...]]], table: SymbolTable, profile: TargetProfile) -> NameMap:
    """Assign emitted names for every file, in corpus order."""

    names = NameMap()
    for root, file in files:
        if profile.name == "c":
            used = _assign_c_file(root, table, names, profile)
        else:
            used = _assign_zig_module(root, table, names, profile, frozenset())
        names.file_names[file] = frozenset(used)
    return names
