from __future__ import annotations

import math

from .ffi_emit import FileEmitter, Prepared, PreparedModule, Reexport, order_entries
from .ffi_emit_rename import NameScope, field_names
from .ffi_emit_utils import _escape_string, _format_hex, _format_int, _indent, _sanitize_identifier, relative_import
from .ffi_ir import (
    PRIMITIVES,
    AliasDecl,
    ConstantDecl,
    EnumDecl,
    FunctionDecl,
    LayoutMode,
    OpaqueDecl,
    SkippedItem,
    StructDecl,
    TypeRef,
    qualify,
    split_path,
)
from .ffi_mapper import POINTEE, TargetType, map_type


class ZigRenderer:
    def __init__(self, emitter: FileEmitter) -> None:
        self.emitter = emitter
        self.profile = emitter.profile
        self.names = emitter.names
        self.table = emitter.table
        self.file = emitter.file
        self._imports: dict[tuple[str, ...], str] = {}
        self._alias_scope = NameScope(self.profile, self._alias_seed())

    def _alias_seed(self) -> set[str]:
        seed = set(self.names.file_names.get(self.file, frozenset()))
        # parameters may not shadow a container-level declaration either
        for symbol in self.table.symbols():
            if symbol.file == self.file and isinstance(symbol.decl, FunctionDecl) and symbol.member is None:
                seed.update(_sanitize_identifier(param.name) for param in symbol.decl.params if param.name)
        return seed

    # references

    def _import(self, file: tuple[str, ...]) -> str:
        alias = self._imports.get(file)
        if alias is None:
            alias = self._alias_scope.assign(file[-1] if file else self.profile.root_file)
            self._imports[file] = alias
        return alias

    def ref(self, qualified: str, scope: tuple[str, ...]) -> str:
        path = split_path(qualified)
        symbol = self.table.get(path)
        if symbol is None:
            return self.placeholder(qualified)
        file = symbol.file
        rel = path[len(file) :]
        if file == self.file:
            parts: list[str] = []
            current = scope[len(file) :]
            start = 0
            while start < len(rel) - 1 and start < len(current) and rel[start] == current[start]:
                start += 1
        else:
            parts = [self._import(file)]
            start = 0
        if not rel:
            return parts[0] if parts else "@This()"
        for idx in range(start, len(rel)):
            parts.append(self.names.name_of(qualify(file + rel[: idx + 1], "")))
        return ".".join(parts)

    def placeholder(self, what: str) -> str:
        return f'@compileError("unresolved type {_escape_string(what)}")'

    def type_text(self, target: TargetType, scope: tuple[str, ...]) -> str:
        if target.kind == "builtin":
            return target.name
        if target.kind == "decl":
            return self.ref(target.name, scope)
        if target.kind == "unresolved":
            return self.placeholder(target.name)
        if target.kind == "pointer":
            pointee = self.type_text(target.target, scope)
            const = "const " if target.const else ""
            if target.c_pointer:
                return f"[*c]{const}{pointee}"
            return f"{'?' if target.nullable else ''}*{const}{pointee}"
        if target.kind == "array":
            return f"[{target.count}]{self.type_text(target.target, scope)}"
        if target.kind == "fnptr":
            params = [self.type_text(param, scope) for param in target.params]
            if target.variadic:
                params.append("...")
            returns = self.type_text(target.returns, scope)
            prefix = "?" if target.nullable else ""
            return f"{prefix}*const fn ({', '.join(params)}) callconv({target.callconv}) {returns}"
        raise ValueError(f"unknown target type kind {target.kind!r}")

    # values

    def value_text(self, value, type_ref: TypeRef, scope: tuple[str, ...], nested: bool = False) -> str:
        emitter = self.emitter
        underlying = emitter._underlying(type_ref)
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str):
            return f'"{_escape_string(value)}"'
        if underlying.kind in {"pointer", "fnptr"}:
            return "null" if value == 0 else f"@ptrFromInt({_format_int(value)})"
        if isinstance(value, float):
            return self._float_text(value, underlying)
        if isinstance(value, list):
            element = underlying.target if underlying.kind == "array" else TypeRef.primitive("u32")
            return ".{ " + ", ".join(self.value_text(item, element, scope, True) for item in value) + " }"
        if isinstance(value, dict):
            struct = emitter.struct_behind(type_ref)
            if struct is None:
                raise ValueError(f"struct literal for non-struct type {type_ref.describe()}")
            parts = []
            for fname, member in zip(field_names(struct, self.profile), struct.fields):
                if member.name in value:
                    parts.append(f".{fname} = {self.value_text(value[member.name], member.type, scope, True)}")
            return ".{ " + ", ".join(parts) + " }"
        enum = emitter.enum_behind(type_ref)
        if enum is not None and enum.style == "tagged":
            return f"@enumFromInt({_format_int(value)})"
        if nested:
            prim = emitter.resolver.primitive_of(underlying)
            bits = PRIMITIVES[prim][0] if prim is not None else None
            return _format_hex(value, bits)
        return _format_int(value)

    def _float_text(self, value: float, underlying: TypeRef) -> str:
        if not math.isnan(value) and not math.isinf(value):
            return repr(value)
        prim = self.emitter.resolver.primitive_of(underlying)
        float_type = prim if prim in {"f32", "f64"} else "f64"
        if math.isnan(value):
            return f"std.math.nan({float_type})"
        return f"{'-' if value < 0 else ''}std.math.inf({float_type})"

    # declarations

    def render(self, tree: PreparedModule) -> str:
        body = self._module_body(tree)
        lines = ["// Generated by abiport", 'const std = @import("std");']
        for file, alias in self._imports.items():
            lines.append(f'const {alias} = @import("{relative_import(self.file, file, self.profile)}");')
        lines.append("")
        lines.extend(body)
        return "\n".join(lines).rstrip() + "\n"

    def _module_body(self, module: PreparedModule) -> list[str]:
        scope = module.decl.path
        lines: list[str] = []
        entries = order_entries(module.entries, lambda entry: entry.value_deps)
        for entry in entries:
            if isinstance(entry, SkippedItem):
                label = entry.name or "item"
                lines.append(f"// skipped {label}: {entry.reason}")
                lines.append("")
                continue
            if isinstance(entry, PreparedModule):
                lines.append(f"pub const {entry.name} = struct {{")
                lines.extend(_indent(self._module_body(entry)))
                lines.append("};")
                lines.append("")
                continue
            if isinstance(entry, Reexport):
                lines.extend(self._reexport(entry, scope))
                continue
            lines.extend(self._declaration(entry, scope))
            lines.append("")
        while lines and not lines[-1]:
            lines.pop()
        return lines

    def _reexport(self, entry: Reexport, scope: tuple[str, ...]) -> list[str]:
        target = entry.target
        if entry.decl.glob:
            return [f"pub usingnamespace {self.ref('::'.join(target), scope)};"]
        if isinstance(target, str):
            if target == "void":
                return [f"pub const {entry.name} = {self.profile.opaque_pointee};"]
            spelled = map_type(TypeRef.primitive(target), self.profile, self.emitter.lookup, POINTEE)
            return [f"pub const {entry.name} = {spelled.name};"]
        symbol = self.table.get(target)
        if symbol is None or symbol.member is not None:
            return []
        return [f"pub const {entry.name} = {self.ref(symbol.qualified_name, scope)};"]

    def _declaration(self, prepared: Prepared, scope: tuple[str, ...]) -> list[str]:
        decl = prepared.decl
        if isinstance(decl, StructDecl):
            return self._struct(prepared, scope)
        if isinstance(decl, EnumDecl):
            return self._enum(prepared, scope)
        if isinstance(decl, FunctionDecl):
            return self._function(prepared, scope)
        if isinstance(decl, AliasDecl):
            return [f"pub const {prepared.name} = {self.type_text(prepared.target, scope)};"]
        if isinstance(decl, ConstantDecl):
            return [self._constant(prepared.name, decl, prepared.target, scope)]
        if isinstance(decl, OpaqueDecl):
            return [f"pub const {prepared.name} = opaque {{}};"]
        raise ValueError(f"cannot render {decl!r}")

    def _constant(self, name: str, decl: ConstantDecl, target: TargetType, scope: tuple[str, ...], public: str = "pub ") -> str:
        type_text = self.type_text(target, scope)
        if decl.value is None:
            value = f'@compileError("unresolved value of {_escape_string(decl.qualified_name)}")'
        else:
            value = self.value_text(decl.value, decl.type, scope)
        return f"{public}const {name}: {type_text} = {value};"

    def _struct(self, prepared: Prepared, scope: tuple[str, ...]) -> list[str]:
        decl: StructDecl = prepared.decl
        layout = prepared.layout
        lines: list[str] = []
        if prepared.packed_integer:
            fname, ftype = prepared.fields[0]
            backing = self.type_text(ftype, scope)
            lines.append(f"pub const {prepared.name} = packed struct({backing}) {{")
            lines.append(f"    {fname}: {backing},")
        else:
            keyword = "extern union" if decl.kind == "union" else "extern struct"
            lines.append(f"pub const {prepared.name} = {keyword} {{")
            for idx, (fname, ftype) in enumerate(prepared.fields):
                lines.append(f"    {fname}: {self.type_text(ftype, scope)}{self._field_align(decl, prepared, idx)},")
        if prepared.constants:
            lines.append("")
            ctype = TargetType("decl", name=decl.qualified_name)
            for cname, const in prepared.constants:
                if const.value is None:
                    lines.append(f"    pub const {cname}: {self.type_text(ctype, scope)} = @compileError(\"unresolved value\");")
                    continue
                inner = self.value_text(const.value, const.type, scope)
                lines.append(f"    pub const {cname}: {self.type_text(ctype, scope)} = .{{ .{prepared.fields[0][0]} = {inner} }};")
        lines.append("};")
        if layout is not None and self.emitter.options.layout_asserts and not prepared.unresolved:
            lines.extend(self._asserts(prepared))
        return lines

    def _field_align(self, decl: StructDecl, prepared: Prepared, idx: int) -> str:
        layout = prepared.layout
        if decl.layout == LayoutMode.PACKED and decl.pack:
            natural = layout.members[idx].align if layout is not None else None
            if natural is None:
                return " align(1)" if decl.pack == 1 else ""
            if decl.pack < natural:
                return f" align({decl.pack})"
        if idx == 0 and decl.align and (layout is None or decl.align > layout.members[0].align):
            return f" align({decl.align})"
        return ""

    def _asserts(self, prepared: Prepared) -> list[str]:
        decl: StructDecl = prepared.decl
        layout = prepared.layout
        name = prepared.name
        lines = ["comptime {"]
        lines.append(f'    if (@sizeOf({name}) != {layout.size}) @compileError("{name} size");')
        if decl.kind != "union" and not prepared.packed_integer:
            for (fname, _), offset in zip(prepared.fields, layout.offsets):
                lines.append(f'    if (@offsetOf({name}, "{fname}") != {offset}) @compileError("{name}.{fname} offset");')
        lines.append("}")
        return lines

    def _enum(self, prepared: Prepared, scope: tuple[str, ...]) -> list[str]:
        decl: EnumDecl = prepared.decl
        backing = self.type_text(prepared.target, scope)
        if decl.style == "clike":
            lines = [f"pub const {prepared.name} = {backing};"]
            for vname, value in prepared.variants:
                text = _format_int(value) if value is not None else '@compileError("unresolved value")'
                lines.append(f"pub const {vname}: {prepared.name} = {text};")
            return lines
        lines = [f"pub const {prepared.name} = enum({backing}) {{"]
        for vname, value in prepared.variants:
            text = _format_int(value) if value is not None else '@compileError("unresolved value")'
            lines.append(f"    {vname} = {text},")
        lines.append("    _,")
        lines.append("};")
        return lines

    def _function(self, prepared: Prepared, scope: tuple[str, ...]) -> list[str]:
        decl: FunctionDecl = prepared.decl
        params = [(pname, self.type_text(ptype, scope)) for pname, ptype in prepared.params]
        returns = self.type_text(prepared.returns, scope)
        callconv = f"callconv({prepared.callconv})"
        if prepared.name != decl.linkage_name:
            types = [ptype for _, ptype in params]
            if decl.variadic:
                types.append("...")
            options = f'.name = "{_escape_string(decl.linkage_name)}"'
            if decl.library:
                options += f', .library_name = "{_escape_string(decl.library)}"'
            return [
                f"pub const {prepared.name} = @extern(*const fn ({', '.join(types)}) {callconv} {returns}, .{{ {options} }});"
            ]
        library = f' "{_escape_string(decl.library)}"' if decl.library else ""
        head = f"pub extern{library} fn {prepared.name}("
        if not params and not decl.variadic:
            return [f"{head}) {callconv} {returns};"]
        lines = [head]
        for pname, ptype in params:
            lines.append(f"    {pname}: {ptype},")
        if decl.variadic:
            lines.append("    ...")
        lines.append(f") {callconv} {returns};")
        return lines
