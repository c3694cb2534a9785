from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Callable, Optional

from .ffi_diagnostics import LayoutError, ValueCycleError
from .ffi_ir import PRIMITIVES, AliasDecl, EnumDecl, LayoutMode, OpaqueDecl, StructDecl, TypeRef


@dataclass(frozen=True)
class Layout:
    size: int
    align: int


@dataclass
class StructLayout:
    size: int
    align: int
    offsets: list[int] = field(default_factory=list)
    members: list[Layout] = field(default_factory=list)

    def as_layout(self) -> Layout:
        return Layout(self.size, self.align)


def _round_up(value: int, align: int) -> int:
    if align <= 1:
        return value
    return (value + align - 1) // align * align


class LayoutCalculator:
    """Sizes, alignments and field offsets of resolved declarations.

    ``lookup`` maps a qualified name to its resolved declaration (or None).
    Results are cached per qualified name, so one calculator should live as
    long as the resolver feeding it.
    """

    def __init__(self, lookup: Callable[[str], Optional[object]], pointer_bytes: int) -> None:
        self._lookup = lookup
        self.pointer_bytes = pointer_bytes
        self._structs: dict[str, StructLayout] = {}
        self._failed: dict[str, LayoutError] = {}
        self._stack: list[str] = []

    def _decl(self, qualified: Optional[str]):
        if qualified is None:
            raise LayoutError("layout of an unresolved type is unknown")
        decl = self._lookup(qualified)
        if decl is None:
            raise LayoutError(f"layout of {qualified} is unknown", qualified)
        return decl

    def of_type(self, type_ref: TypeRef) -> Layout:
        if type_ref.kind == "primitive":
            bits, _signed, _ = PRIMITIVES[type_ref.name]
            if bits == 0:
                raise LayoutError("void has no size")
            size = self.pointer_bytes if bits is None else bits // 8
            return Layout(size, size)
        if type_ref.kind in {"pointer", "fnptr"}:
            return Layout(self.pointer_bytes, self.pointer_bytes)
        if type_ref.kind == "array":
            if type_ref.count is None:
                raise LayoutError(f"array {type_ref.describe()} has no known length")
            element = self.of_type(type_ref.target)
            return Layout(element.size * type_ref.count, element.align)
        decl = self._decl(type_ref.resolved)
        if isinstance(decl, StructDecl):
            return self.of_struct(decl).as_layout()
        if isinstance(decl, EnumDecl):
            return self.of_type(decl.discriminant_type)
        if isinstance(decl, AliasDecl):
            return self.of_type(decl.target)
        if isinstance(decl, OpaqueDecl):
            raise LayoutError(f"opaque type {decl.qualified_name} has no size", decl.qualified_name)
        raise LayoutError(f"{type_ref.describe()} is not a type")

    def of_struct(self, decl: StructDecl) -> StructLayout:
        key = decl.qualified_name
        cached = self._structs.get(key)
        if cached is not None:
            return cached
        if key in self._failed:
            raise self._failed[key]
        if key in self._stack:
            cycle = self._stack[self._stack.index(key) :] + [key]
            raise ValueCycleError(cycle)
        self._stack.append(key)
        try:
            out = self._compute(decl)
        except LayoutError as exc:
            self._failed[key] = exc
            raise
        finally:
            self._stack.pop()
        self._structs[key] = out
        return out

    def _compute(self, decl: StructDecl) -> StructLayout:
        members = [self.of_type(member.type) for member in decl.fields]
        if decl.layout == LayoutMode.TRANSPARENT and members:
            return StructLayout(members[0].size, members[0].align, [0], members)
        pack = decl.pack if decl.layout == LayoutMode.PACKED else None
        aligns = [min(member.align, pack) if pack else member.align for member in members]
        align = max(aligns, default=1)
        if decl.align:
            align = max(align, decl.align)
        if decl.kind == "union":
            size = max((member.size for member in members), default=0)
            return StructLayout(_round_up(size, align), align, [0] * len(members), members)
        offsets: list[int] = []
        offset = 0
        for member, member_align in zip(members, aligns):
            offset = _round_up(offset, member_align)
            offsets.append(offset)
            offset += member.size
        return StructLayout(_round_up(offset, align), align, offsets, members)

    def encode(self, type_ref: TypeRef, value) -> bytes:
        """Little-endian bytes of a folded constant, padding zeroed."""

        if type_ref.kind == "primitive":
            bits, signed, is_float = PRIMITIVES[type_ref.name]
            size = self.pointer_bytes if bits is None else bits // 8
            if is_float:
                return struct.pack("<f" if size == 4 else "<d", float(value))
            return int(value).to_bytes(size, "little", signed=signed)
        if type_ref.kind in {"pointer", "fnptr"}:
            return int(value).to_bytes(self.pointer_bytes, "little", signed=False)
        if type_ref.kind == "array":
            return b"".join(self.encode(type_ref.target, item) for item in value)
        decl = self._decl(type_ref.resolved)
        if isinstance(decl, AliasDecl):
            return self.encode(decl.target, value)
        if isinstance(decl, EnumDecl):
            return self.encode(decl.discriminant_type, value)
        if not isinstance(decl, StructDecl) or not isinstance(value, dict):
            raise LayoutError(f"cannot encode {value!r} as {type_ref.describe()}")
        layout = self.of_struct(decl)
        buffer = bytearray(layout.size)
        for member, offset in zip(decl.fields, layout.offsets):
            if member.name not in value:
                continue
            data = self.encode(member.type, value[member.name])
            buffer[offset : offset + len(data)] = data
        return bytes(buffer)
