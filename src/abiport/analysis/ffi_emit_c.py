from __future__ import annotations

import math

from .ffi_emit import FileEmitter, Prepared, PreparedModule, Reexport, order_entries
from .ffi_emit_rename import field_names
from .ffi_emit_utils import _escape_string, _format_hex, _format_int, _sanitize_identifier, relative_import
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
)
from .ffi_mapper import TargetType


_STUBBED_KINDS = {"struct", "union"}


def _referenced(target: TargetType, out: list[str]) -> None:
    if target.kind == "decl":
        out.append(target.name)
    elif target.kind in {"pointer", "array"}:
        _referenced(target.target, out)
    elif target.kind == "fnptr":
        for param in target.params:
            _referenced(param, out)
        _referenced(target.returns, out)


class CRenderer:
    def __init__(self, emitter: FileEmitter) -> None:
        self.emitter = emitter
        self.profile = emitter.profile
        self.names = emitter.names
        self.table = emitter.table
        self.file = emitter.file
        self._includes: list[tuple[str, ...]] = []
        self._stubbed: set[str] = set()
        self._needs_math = False

    # references

    def _include(self, file: tuple[str, ...]) -> None:
        if file != self.file and file not in self._includes:
            self._includes.append(file)

    def base_name(self, target: TargetType) -> str:
        if target.kind == "builtin":
            return target.name
        if target.kind == "unresolved":
            return self.placeholder(target.name)
        file = self.emitter.symbol_file(target.name)
        if file is None:
            return self.placeholder(target.name)
        self._include(file)
        return self.names.name_of(target.name)

    def placeholder(self, what: str) -> str:
        return "UNRESOLVED_" + _sanitize_identifier(what.replace("::", "_")).strip("_")

    def render_type(self, target: TargetType, name: str, const: bool = False) -> str:
        if target.kind in {"builtin", "decl", "unresolved"}:
            base = self.base_name(target)
            if const:
                base = "const " + base
            if name:
                return f"{base} {name}"
            return base

        if target.kind == "pointer":
            quals = "const" if const else ""
            if name:
                inner = f"*{name}" if not quals else f"* {quals} {name}"
            else:
                inner = "*" if not quals else f"* {quals}"
            if target.target.needs_parens():
                inner = f"({inner})"
            return self.render_type(target.target, inner, target.const)

        if target.kind == "array":
            inner = f"{name}[{target.count}]" if name else f"[{target.count}]"
            return self.render_type(target.target, inner, const)

        if target.kind == "fnptr":
            params = [self.render_type(param, "") for param in target.params]
            if target.variadic:
                params.append("...")
            callconv = f"{target.callconv} " if target.callconv else ""
            quals = " const " if const else ""
            inner = f"({callconv}*{quals}{name})({', '.join(params) or 'void'})"
            return self.render_type(target.returns, inner)

        raise ValueError(f"unknown target type kind {target.kind!r}")

    # values

    def value_text(self, value, type_ref: TypeRef, nested: bool = False) -> str:
        emitter = self.emitter
        underlying = emitter._underlying(type_ref)
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str):
            return f'"{_escape_string(value)}"'
        if isinstance(value, float):
            return self._float_text(value)
        if isinstance(value, list):
            element = underlying.target if underlying.kind == "array" else TypeRef.primitive("u32")
            return "{ " + ", ".join(self.value_text(item, element, True) for item in value) + " }"
        if isinstance(value, dict):
            struct = emitter.struct_behind(type_ref)
            if struct is None:
                raise ValueError(f"struct literal for non-struct type {type_ref.describe()}")
            parts = []
            for fname, member in zip(field_names(struct, self.profile), struct.fields):
                if member.name in value:
                    parts.append(f".{fname} = {self.value_text(value[member.name], member.type, True)}")
            return "{ " + ", ".join(parts) + " }"
        if nested:
            prim = emitter.resolver.primitive_of(underlying)
            bits = PRIMITIVES[prim][0] if prim is not None else None
            return _format_hex(value, bits)
        return _format_int(value)

    def _float_text(self, value: float) -> str:
        if math.isnan(value):
            self._needs_math = True
            return "NAN"
        if math.isinf(value):
            self._needs_math = True
            return "-INFINITY" if value < 0 else "INFINITY"
        return repr(value)

    # file

    def _flatten(self, module: PreparedModule, out: list) -> None:
        for entry in module.entries:
            if isinstance(entry, PreparedModule):
                self._flatten(entry, out)
            else:
                out.append(entry)

    def _order_deps(self, prepared: Prepared) -> list[str]:
        deps = list(prepared.value_deps)
        for name in prepared.name_deps:
            if self.emitter.kind_of(name) not in _STUBBED_KINDS:
                deps.append(name)
        return deps

    def _plan_stubs(self, entries: list) -> list[str]:
        """Structs and unions named before their definition in this header."""

        defined: set[str] = set()
        stubs: list[str] = []
        for entry in entries:
            if not isinstance(entry, Prepared):
                continue
            refs: list[str] = []
            for _, target in entry.fields + entry.params:
                _referenced(target, refs)
            for target in (entry.returns, entry.target):
                if target is not None:
                    _referenced(target, refs)
            for ref in refs:
                if ref in defined or ref in stubs or self.emitter.kind_of(ref) not in _STUBBED_KINDS:
                    continue
                stubs.append(ref)
            if isinstance(entry.decl, StructDecl):
                defined.add(entry.qualified_name)
        return stubs

    def render(self, tree: PreparedModule) -> str:
        flat: list = []
        self._flatten(tree, flat)
        entries = order_entries(flat, self._order_deps)
        stubs = self._plan_stubs(entries)
        self._stubbed = set(stubs)

        body: list[str] = []
        for entry in entries:
            if isinstance(entry, SkippedItem):
                body.append(f"/* skipped {entry.name or 'item'}: {entry.reason} */")
                body.append("")
                continue
            if isinstance(entry, Reexport):
                self._reexport(entry)
                continue
            body.extend(self._declaration(entry))
            body.append("")

        stub_lines = []
        for ref in stubs:
            kind = self.emitter.kind_of(ref)
            name = self.base_name(TargetType("decl", name=ref))
            stub_lines.append(f"typedef {kind} {name} {name};")

        lines = ["/* Generated by abiport */", "#pragma once", "", "#include <stdbool.h>", "#include <stddef.h>", "#include <stdint.h>"]
        if self._needs_math:
            lines.append("#include <math.h>")
        for file in self._includes:
            lines.append(f'#include "{relative_import(self.file, file, self.profile)}"')
        lines.append("")
        if stub_lines:
            lines.extend(stub_lines)
            lines.append("")
        lines.extend(body)
        return "\n".join(lines).rstrip() + "\n"

    def _reexport(self, entry: Reexport) -> None:
        target = entry.target
        if not isinstance(target, tuple):
            return
        symbol = self.table.get(target)
        if symbol is not None:
            self._include(symbol.file)

    def _declaration(self, prepared: Prepared) -> list[str]:
        decl = prepared.decl
        if isinstance(decl, StructDecl):
            return self._struct(prepared)
        if isinstance(decl, EnumDecl):
            return self._enum(prepared)
        if isinstance(decl, FunctionDecl):
            return self._function(prepared)
        if isinstance(decl, AliasDecl):
            return [f"typedef {self.render_type(prepared.target, prepared.name)};"]
        if isinstance(decl, ConstantDecl):
            return [self._constant(prepared.name, decl, prepared.target)]
        if isinstance(decl, OpaqueDecl):
            return [f"typedef struct {prepared.name} {prepared.name};"]
        raise ValueError(f"cannot render {decl!r}")

    def _constant(self, name: str, decl: ConstantDecl, target: TargetType) -> str:
        if decl.value is None:
            return f"#define {name} {self.placeholder(decl.qualified_name)}"
        value = decl.value
        if isinstance(value, (list, dict)):
            return f"static const {self.render_type(target, name)} = {self.value_text(value, decl.type)};"
        if isinstance(value, (bool, str)):
            return f"#define {name} {self.value_text(value, decl.type)}"
        return f"#define {name} (({self.render_type(target, '')}){self.value_text(value, decl.type)})"

    def _struct(self, prepared: Prepared) -> list[str]:
        decl: StructDecl = prepared.decl
        name = prepared.name
        layout = prepared.layout
        keyword = decl.kind
        lines: list[str] = []
        packed = decl.layout == LayoutMode.PACKED and decl.pack
        if packed:
            lines.append(f"#pragma pack(push, {decl.pack})")
        if prepared.qualified_name in self._stubbed:
            lines.append(f"{keyword} {name} {{")
        else:
            lines.append(f"typedef {keyword} {name} {{")
        for idx, (fname, ftype) in enumerate(prepared.fields):
            align = ""
            if idx == 0 and decl.align and (layout is None or decl.align > layout.members[0].align):
                align = f"_Alignas({decl.align}) "
            lines.append(f"    {align}{self.render_type(ftype, fname)};")
        lines.append("};" if prepared.qualified_name in self._stubbed else f"}} {name};")
        if packed:
            lines.append("#pragma pack(pop)")
        for cname, const in prepared.constants:
            if const.value is None:
                lines.append(f"#define {cname} {self.placeholder(const.qualified_name)}")
                continue
            lines.append(f"#define {cname} (({name}){{ {self.value_text(const.value, const.type)} }})")
        if layout is not None and self.emitter.options.layout_asserts and not prepared.unresolved:
            lines.append(f'_Static_assert(sizeof({name}) == 0x{layout.size:x}, "{name} size");')
            if decl.kind != "union":
                for (fname, _), offset in zip(prepared.fields, layout.offsets):
                    lines.append(f'_Static_assert(offsetof({name}, {fname}) == 0x{offset:x}, "{name}.{fname} offset");')
        return lines

    def _enum(self, prepared: Prepared) -> list[str]:
        name = prepared.name
        lines = [f"typedef {self.render_type(prepared.target, name)};"]
        for vname, value in prepared.variants:
            text = _format_int(value) if value is not None else self.placeholder(vname)
            lines.append(f"#define {vname} (({name}){text})")
        return lines

    def _function(self, prepared: Prepared) -> list[str]:
        decl: FunctionDecl = prepared.decl
        params = [self.render_type(ptype, pname) for pname, ptype in prepared.params]
        if decl.variadic:
            params.append("...")
        callconv = f"{prepared.callconv} " if prepared.callconv else ""
        inner = f"{callconv}{decl.linkage_name}({', '.join(params) or 'void'})"
        lines = [f"{self.render_type(prepared.returns, inner)};"]
        if prepared.name != decl.linkage_name:
            lines.append(f"#define {prepared.name} {decl.linkage_name}")
        return lines

