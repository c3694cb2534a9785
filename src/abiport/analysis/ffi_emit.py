"""Per-file emission: resolve, lay out, map, order, then hand off to a renderer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .ffi_diagnostics import (
    ERROR,
    LAYOUT_MISMATCH,
    MAPPING_ERROR,
    UNRESOLVED_REFERENCE,
    VALUE_CYCLE,
    WARNING,
    DiagnosticsCollector,
    LayoutError,
    MappingError,
    TranslationError,
    ValueCycleError,
)
from .ffi_emit_rename import NameMap, field_names, param_names
from .ffi_ir import (
    AliasDecl,
    ConstantDecl,
    EnumDecl,
    FunctionDecl,
    ImportDecl,
    LayoutMode,
    ModuleDecl,
    OpaqueDecl,
    SkippedItem,
    StructDecl,
    TypeRef,
    split_path,
)
from .ffi_layout import LayoutCalculator, StructLayout
from .ffi_mapper import POINTEE, VALUE, TargetType, map_function, map_type
from .ffi_profiles import NativeTarget, TargetProfile
from .ffi_resolve import Resolver
from .ffi_symbols import SymbolTable


UNRESOLVED_MODES = ("placeholder", "omit")


@dataclass(frozen=True)
class EmitOptions:
    unresolved: str = "placeholder"
    layout_asserts: bool = True


@dataclass
class Prepared:
    decl: object
    name: str
    unresolved: bool = False
    fields: list[tuple[str, TargetType]] = field(default_factory=list)
    layout: Optional[StructLayout] = None
    packed_integer: bool = False
    params: list[tuple[str, TargetType]] = field(default_factory=list)
    returns: Optional[TargetType] = None
    callconv: Optional[str] = None
    target: Optional[TargetType] = None
    constants: list[tuple[str, ConstantDecl]] = field(default_factory=list)
    variants: list[tuple[str, Optional[int]]] = field(default_factory=list)
    value_deps: list[str] = field(default_factory=list)
    name_deps: list[str] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return self.decl.qualified_name


@dataclass
class Reexport:
    decl: ImportDecl
    name: Optional[str]
    target: object  # symbol path tuple or primitive name


@dataclass
class PreparedModule:
    decl: ModuleDecl
    name: Optional[str]
    entries: list = field(default_factory=list)


def _type_deps(type_ref: Optional[TypeRef], by_value: bool, value: list[str], names: list[str]) -> None:
    if type_ref is None:
        return
    if type_ref.kind == "path":
        if type_ref.resolved is not None:
            (value if by_value else names).append(type_ref.resolved)
        return
    if type_ref.kind == "pointer":
        _type_deps(type_ref.target, False, value, names)
    elif type_ref.kind == "array":
        _type_deps(type_ref.target, by_value, value, names)
    elif type_ref.kind == "fnptr":
        for param in type_ref.params:
            _type_deps(param, False, value, names)
        _type_deps(type_ref.returns, False, value, names)


def order_entries(entries: list, deps_of) -> list:
    """Depth-first in source order: dependencies precede their dependents."""

    index: dict[str, int] = {}
    for idx, entry in enumerate(entries):
        if isinstance(entry, Prepared):
            index.setdefault(entry.qualified_name, idx)

    order: list = []
    visited: set[int] = set()
    visiting: set[int] = set()

    def visit(node: int) -> None:
        if node in visited or node in visiting:
            return
        visiting.add(node)
        entry = entries[node]
        if isinstance(entry, Prepared):
            for dep in deps_of(entry):
                target = index.get(dep)
                if target is not None:
                    visit(target)
        visiting.remove(node)
        visited.add(node)
        order.append(entry)

    for idx in range(len(entries)):
        visit(idx)
    return order


class FileEmitter:
    def __init__(
        self,
        root: ModuleDecl,
        file: tuple[str, ...],
        table: SymbolTable,
        names: NameMap,
        profile: TargetProfile,
        native: NativeTarget,
        options: Optional[EmitOptions] = None,
        log=None,
        resolve_log=None,
    ) -> None:
        self.root = root
        self.file = file
        self.table = table
        self.names = names
        self.profile = profile
        self.native = native
        self.options = options or EmitOptions()
        self._log = log
        self.diagnostics = DiagnosticsCollector(log)
        self.resolver = Resolver(table, native, resolve_log)
        self.layouts = LayoutCalculator(self.resolver.resolved_decl, native.pointer_bytes)

    def lookup(self, qualified: str):
        return self.resolver.resolved_decl(qualified)

    def emit(self) -> str:
        tree = self.prepare_module(self.root)
        if self.profile.name == "c":
            from .ffi_emit_c import CRenderer

            renderer = CRenderer(self)
        else:
            from .ffi_emit_zig import ZigRenderer

            renderer = ZigRenderer(self)
        text = renderer.render(tree)
        if self._log is not None:
            self._log(f"{'::'.join(self.file) or '<root>'}: {len(text.splitlines())} line(s)")
        return text

    # preparation

    def prepare_module(self, module: ModuleDecl) -> PreparedModule:
        out = PreparedModule(module, self.names.get(module.qualified_name) if module.path != self.file else None)
        for item in module.items:
            if isinstance(item, ModuleDecl):
                out.entries.append(self.prepare_module(item))
            elif isinstance(item, SkippedItem):
                out.entries.append(item)
            elif isinstance(item, ImportDecl):
                if item.public:
                    reexport = self._prepare_reexport(item)
                    if reexport is not None:
                        out.entries.append(reexport)
            else:
                symbol = self.table.get(item.path)
                if symbol is None or symbol.decl is not item:
                    continue
                prepared = self.prepare(item)
                if prepared is not None:
                    out.entries.append(prepared)
        return out

    def _prepare_reexport(self, imp: ImportDecl) -> Optional[Reexport]:
        target = self.resolver.resolve_import(imp)
        where = "::".join(imp.target) + ("::*" if imp.glob else "")
        if target is None:
            self.diagnostics.error(UNRESOLVED_REFERENCE, "::".join(imp.module + (imp.alias or "*",)), f"cannot resolve re-export {where}", imp.location)
            return None
        if imp.glob and not (isinstance(target, tuple) and self.table.is_module(target)):
            self.diagnostics.error(UNRESOLVED_REFERENCE, "::".join(imp.module), f"glob re-export {where} does not name a module", imp.location)
            return None
        name = None if imp.glob else self.names.reexports.get((imp.module, imp.alias or ""))
        return Reexport(imp, name, target)

    def prepare(self, decl) -> Optional[Prepared]:
        qualified = decl.qualified_name
        try:
            resolution = self.resolver.resolve_declaration(decl)
        except TranslationError as exc:
            self.diagnostics.record_exception(exc, qualified, decl.location)
            return None
        except (ArithmeticError, ValueError) as exc:
            self.diagnostics.error(MAPPING_ERROR, qualified, f"cannot evaluate: {exc}", decl.location)
            return None
        for missing in resolution.unresolved:
            self.diagnostics.error(UNRESOLVED_REFERENCE, qualified, f"cannot resolve {missing}", decl.location)
        if resolution.unresolved and self.options.unresolved == "omit":
            return None
        prepared = Prepared(resolution.decl, self.names.name_of(qualified), unresolved=bool(resolution.unresolved))
        try:
            if isinstance(decl, StructDecl):
                self._prepare_struct(prepared)
            elif isinstance(decl, EnumDecl):
                self._prepare_enum(prepared)
            elif isinstance(decl, FunctionDecl):
                self._prepare_function(prepared)
            elif isinstance(decl, AliasDecl):
                self._prepare_alias(prepared)
            elif isinstance(decl, ConstantDecl):
                self._prepare_constant(prepared)
            elif not isinstance(decl, OpaqueDecl):
                raise MappingError(f"cannot emit {type(decl).__name__}")
        except ValueCycleError as exc:
            self.diagnostics.error(VALUE_CYCLE, qualified, exc.message, decl.location)
            return None
        except TranslationError as exc:
            self.diagnostics.record_exception(exc, qualified, decl.location)
            return None
        except (ArithmeticError, ValueError) as exc:
            self.diagnostics.error(MAPPING_ERROR, qualified, f"cannot evaluate: {exc}", decl.location)
            return None
        return prepared

    def _mismatch(self, decl, exact: bool, message: str) -> None:
        severity = ERROR if exact else WARNING
        self.diagnostics.add(severity, LAYOUT_MISMATCH, decl.qualified_name, message, decl.location)

    def _prepare_struct(self, prepared: Prepared) -> None:
        decl: StructDecl = prepared.decl
        names = field_names(decl, self.profile)
        prepared.fields = [(name, map_type(member.type, self.profile, self.lookup, VALUE)) for name, member in zip(names, decl.fields)]
        for member in decl.fields:
            _type_deps(member.type, True, prepared.value_deps, prepared.name_deps)
        try:
            prepared.layout = self.layouts.of_struct(decl)
        except ValueCycleError:
            raise
        except LayoutError:
            prepared.layout = None
        if decl.storage is not None and prepared.layout is not None:
            try:
                storage = self.layouts.of_type(decl.storage)
            except LayoutError:
                storage = None
            if storage is not None and storage.size != prepared.layout.size:
                self._mismatch(
                    decl,
                    True,
                    f"declared storage is {storage.size} byte(s) but the members need {prepared.layout.size}",
                )
        if decl.layout == LayoutMode.TRANSPARENT and decl.fields:
            underlying = self._underlying(decl.fields[0].type)
            enum = self.enum_behind(underlying)
            if underlying.kind == "primitive":
                integer = underlying.name not in {"bool", "void", "f32", "f64"}
            else:
                integer = enum is not None and enum.style == "clike"
            prepared.packed_integer = integer and self.profile.name == "zig"
            if self.profile.name == "zig" and not integer:
                self._mismatch(decl, decl.exact, "transparent wrapper over a non-integer field is emitted as an extern struct")
        for const in decl.constants:
            key = f"{decl.qualified_name}::{const.name}"
            prepared.constants.append((self.names.name_of(key), const))

    def _prepare_enum(self, prepared: Prepared) -> None:
        decl: EnumDecl = prepared.decl
        prepared.target = map_type(decl.discriminant_type, self.profile, self.lookup, VALUE)
        _type_deps(decl.discriminant_type, True, prepared.value_deps, prepared.name_deps)
        base = decl.module if decl.style == "clike" else decl.path
        for variant in decl.variants:
            key = "::".join(base + (variant.name,))
            prepared.variants.append((self.names.name_of(key), variant.value))

    def _prepare_function(self, prepared: Prepared) -> None:
        decl: FunctionDecl = prepared.decl
        if self.profile.name == "c" and self.profile.is_reserved(decl.linkage_name):
            raise MappingError(f"linkage name {decl.linkage_name!r} is reserved in C")
        mapped = map_function(decl, self.profile, self.lookup)
        seed = self.names.scope_names(decl.module)
        prepared.params = list(zip(param_names(decl.params, self.profile, seed), mapped.params))
        prepared.returns = mapped.returns
        prepared.callconv = mapped.callconv
        for param in decl.params:
            _type_deps(param.type, False, prepared.value_deps, prepared.name_deps)
        _type_deps(decl.returns, False, prepared.value_deps, prepared.name_deps)

    def _prepare_alias(self, prepared: Prepared) -> None:
        decl: AliasDecl = prepared.decl
        if decl.target.is_void():
            prepared.target = TargetType("builtin", self.profile.opaque_pointee, decl_kind="void")
        else:
            prepared.target = map_type(decl.target, self.profile, self.lookup, POINTEE)
        _type_deps(decl.target, True, prepared.value_deps, prepared.name_deps)

    def _prepare_constant(self, prepared: Prepared) -> None:
        decl: ConstantDecl = prepared.decl
        prepared.target = map_type(decl.type, self.profile, self.lookup, VALUE)
        _type_deps(decl.type, True, prepared.value_deps, prepared.name_deps)
        if decl.guid and not prepared.unresolved:
            try:
                size = self.layouts.of_type(decl.type).size
            except LayoutError:
                size = None
            if size is not None and size != 16:
                self._mismatch(decl, True, f"GUID type is {size} byte(s), expected 16")

    # helpers shared by renderers

    def _underlying(self, type_ref: TypeRef) -> TypeRef:
        """Follow aliases to the type that gives ``type_ref`` its shape."""

        seen: set[str] = set()
        while type_ref.kind == "path" and type_ref.resolved is not None and type_ref.resolved not in seen:
            seen.add(type_ref.resolved)
            decl = self.lookup(type_ref.resolved)
            if not isinstance(decl, AliasDecl):
                break
            type_ref = decl.target
        return type_ref

    def struct_behind(self, type_ref: TypeRef) -> Optional[StructDecl]:
        type_ref = self._underlying(type_ref)
        if type_ref.kind == "path" and type_ref.resolved is not None:
            decl = self.lookup(type_ref.resolved)
            if isinstance(decl, StructDecl):
                return decl
        return None

    def enum_behind(self, type_ref: TypeRef) -> Optional[EnumDecl]:
        type_ref = self._underlying(type_ref)
        if type_ref.kind == "path" and type_ref.resolved is not None:
            decl = self.lookup(type_ref.resolved)
            if isinstance(decl, EnumDecl):
                return decl
        return None

    def symbol_file(self, qualified: str) -> Optional[tuple[str, ...]]:
        symbol = self.table.get(split_path(qualified))
        return symbol.file if symbol is not None else None

    def kind_of(self, qualified: str) -> Optional[str]:
        symbol = self.table.get(split_path(qualified))
        return symbol.kind if symbol is not None else None
