"""Phase 2 name resolution and constant folding.

Each worker owns one :class:`Resolver`; it reads the frozen symbol table and
keeps private caches, resolving declarations of other modules lazily when a
layout or constant needs them.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Optional, Union

from .ffi_diagnostics import MappingError, UnresolvedReferenceError
from .ffi_ir import (
    PRIMITIVE_ALIAS_MODULES,
    PRIMITIVES,
    AliasDecl,
    ConstantDecl,
    ConstExpr,
    EnumDecl,
    FunctionDecl,
    ImportDecl,
    ModuleDecl,
    OpaqueDecl,
    StructDecl,
    TypeRef,
    VariantDecl,
    c_alias_target,
    split_path,
)
from .ffi_profiles import NativeTarget
from .ffi_symbols import Symbol, SymbolTable


_MAX_DEPTH = 24

# A lookup lands on a symbol path or on a primitive type name.
Target = Union[tuple[str, ...], str]

_IN_PROGRESS = object()


@dataclass
class Resolution:
    decl: object
    unresolved: list[str] = field(default_factory=list)


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _float_div(a: float, b: float) -> float:
    # IEEE 754: x / 0.0 is a signed infinity, 0.0 / 0.0 is NaN
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        negative = (a < 0) != (math.copysign(1.0, b) < 0)
        return -math.inf if negative else math.inf
    return a / b


def _float_rem(a: float, b: float) -> float:
    if b == 0 or math.isinf(a):
        return math.nan
    return math.fmod(a, b)


class Resolver:
    def __init__(self, table: SymbolTable, native: NativeTarget, log=None) -> None:
        self.table = table
        self.native = native
        self._log = log
        self._imports: dict[int, object] = {}
        self._resolved: dict[tuple[str, ...], Optional[object]] = {}
        self._values: dict[tuple[str, ...], object] = {}
        self._value_stack: list[tuple[str, ...]] = []
        self._enum_values: dict[tuple[str, ...], dict[str, int]] = {}

    # path lookup

    def lookup(self, segments: tuple[str, ...], scope: tuple[str, ...]) -> Optional[Target]:
        hit = self._resolve_path(segments, scope, 0)
        if hit is not None:
            return hit
        return self.primitive_for(segments)

    def primitive_for(self, segments: tuple[str, ...]) -> Optional[str]:
        if not segments:
            return None
        name = segments[-1]
        prefix = segments[:-1]
        if prefix[:1] == ("crate",):
            prefix = prefix[1:]
        if not prefix and name in PRIMITIVES and name != "void":
            return name
        alias = c_alias_target(name, self.native.os)
        if alias is None:
            return None
        if not prefix or prefix in PRIMITIVE_ALIAS_MODULES or prefix[-1] == "ctypes":
            return alias
        return None

    def _resolve_path(self, segments: tuple[str, ...], scope: tuple[str, ...], depth: int) -> Optional[Target]:
        if depth > _MAX_DEPTH or not segments:
            return None
        head = segments[0]
        if head == "crate":
            return self._walk((), segments[1:], depth)
        if head == "self":
            return self._walk(scope, segments[1:], depth)
        if head == "super":
            base = scope
            rest = segments
            while rest and rest[0] == "super":
                if not base:
                    return None
                base = base[:-1]
                rest = rest[1:]
            return self._walk(base, rest, depth)
        hit = self._walk(scope, segments, depth)
        if hit is None and scope:
            hit = self._walk((), segments, depth)
        return hit

    def _walk(self, base: tuple[str, ...], segments: tuple[str, ...], depth: int) -> Optional[Target]:
        if not segments:
            return base if base and self.table.is_module(base) else None
        current = base
        for idx, name in enumerate(segments):
            hit = self._lookup_in(current, name, depth)
            if hit is None:
                return None
            if isinstance(hit, str):
                return hit if idx == len(segments) - 1 else None
            current = hit
        return current

    def _lookup_in(self, module: tuple[str, ...], name: str, depth: int) -> Optional[Target]:
        path = module + (name,)
        if path in self.table:
            return path
        decl = self.table.module(module)
        if decl is None:
            return None
        imports = decl.imports
        for imp in imports:
            if not imp.glob and imp.alias == name:
                hit = self._resolve_import(imp, depth + 1)
                if hit is not None:
                    return hit
        for imp in imports:
            if not imp.glob:
                continue
            target = self._resolve_import(imp, depth + 1)
            if isinstance(target, tuple) and target != module:
                hit = self._lookup_in(target, name, depth + 1)
                if hit is not None:
                    return hit
        return None

    def resolve_import(self, imp: ImportDecl) -> Optional[Target]:
        return self._resolve_import(imp, 0)

    def _resolve_import(self, imp: ImportDecl, depth: int) -> Optional[Target]:
        key = id(imp)
        cached = self._imports.get(key, None)
        if cached is _IN_PROGRESS:
            return None
        if key in self._imports:
            return cached  # type: ignore[return-value]
        if depth > _MAX_DEPTH:
            return None
        self._imports[key] = _IN_PROGRESS
        segments = imp.target
        if segments[:1] in {("crate",), ("self",), ("super",)}:
            hit = self._resolve_path(segments, imp.module, depth)
        else:
            # edition 2015 paths are crate-absolute; 2018 ones are relative
            hit = self._walk((), segments, depth)
            if hit is None and imp.module:
                hit = self._walk(imp.module, segments, depth)
        if hit is None:
            hit = self.primitive_for(segments)
        self._imports[key] = hit
        return hit

    def symbol(self, qualified: Optional[str]) -> Optional[Symbol]:
        if qualified is None:
            return None
        return self.table.get(split_path(qualified))

    # types

    def resolve_type(self, type_ref: TypeRef, scope: tuple[str, ...], unresolved: list[str]) -> TypeRef:
        if type_ref.kind == "primitive":
            return type_ref
        if type_ref.kind == "pointer":
            return dataclasses.replace(type_ref, target=self.resolve_type(type_ref.target, scope, unresolved))
        if type_ref.kind == "array":
            element = self.resolve_type(type_ref.target, scope, unresolved)
            count = self.array_count(type_ref.length, scope)
            return dataclasses.replace(type_ref, target=element, count=count)
        if type_ref.kind == "fnptr":
            params = tuple(self.resolve_type(param, scope, unresolved) for param in type_ref.params)
            returns = self.resolve_type(type_ref.returns, scope, unresolved) if type_ref.returns is not None else TypeRef.void()
            return dataclasses.replace(type_ref, params=params, returns=returns)
        generics = tuple(self.resolve_type(arg, scope, unresolved) for arg in type_ref.generics)
        hit = self.lookup(type_ref.segments, scope)
        if isinstance(hit, str):
            return TypeRef.primitive(hit)
        if hit is None:
            unresolved.append(type_ref.describe())
            return dataclasses.replace(type_ref, generics=generics)
        symbol = self.table.get(hit)
        if symbol is None or not symbol.is_type:
            kind = symbol.kind if symbol is not None else "module"
            unresolved.append(f"{type_ref.describe()} (names a {kind}, not a type)")
            return dataclasses.replace(type_ref, generics=generics)
        return dataclasses.replace(type_ref, generics=generics, resolved=symbol.qualified_name)

    def array_count(self, length: Optional[ConstExpr], scope: tuple[str, ...]) -> int:
        if length is None:
            raise MappingError("array without a length")
        value = self.fold(length, scope, "usize")
        if isinstance(value, bool) or not isinstance(value, int):
            raise MappingError(f"array length {length.describe()} is not an integer")
        if value < 0:
            raise MappingError(f"array length {length.describe()} is negative")
        return value

    def primitive_of(self, type_ref: Optional[TypeRef], scope: tuple[str, ...] = ()) -> Optional[str]:
        """Primitive behind a type, following aliases; pointers count as usize."""

        seen: set[str] = set()
        while type_ref is not None:
            if type_ref.kind == "primitive":
                return type_ref.name
            if type_ref.kind in {"pointer", "fnptr"}:
                return "usize"
            if type_ref.kind != "path":
                return None
            if type_ref.resolved is None:
                type_ref = self.resolve_type(type_ref, scope, [])
                if type_ref.kind != "path":
                    continue
                if type_ref.resolved is None:
                    return None
            if type_ref.resolved in seen:
                return None
            seen.add(type_ref.resolved)
            symbol = self.symbol(type_ref.resolved)
            if symbol is None:
                return None
            decl = symbol.decl
            if isinstance(decl, AliasDecl):
                type_ref = decl.target
                scope = decl.module
                continue
            if isinstance(decl, EnumDecl):
                type_ref = decl.discriminant_type
                scope = decl.module
                continue
            return None
        return None

    def resolved_decl(self, qualified: str):
        """Resolved copy of any declaration in the corpus, or None."""

        path = split_path(qualified)
        if path in self._resolved:
            return self._resolved[path]
        symbol = self.table.get(path)
        if symbol is None or symbol.decl is None or symbol.kind in {"variant", "assoc", "module"}:
            return None
        self._resolved[path] = None
        try:
            resolution = self.resolve_declaration(symbol.decl)
        except (MappingError, UnresolvedReferenceError):
            return None
        self._resolved[path] = resolution.decl
        return resolution.decl

    def resolve_declaration(self, decl) -> Resolution:
        unresolved: list[str] = []
        scope = decl.module
        if isinstance(decl, StructDecl):
            fields = [dataclasses.replace(member, type=self.resolve_type(member.type, scope, unresolved)) for member in decl.fields]
            storage = self.resolve_type(decl.storage, scope, unresolved) if decl.storage is not None else None
            constants = [self._resolve_constant(const, unresolved, owner=decl) for const in decl.constants]
            out = dataclasses.replace(decl, fields=fields, storage=storage, constants=constants)
        elif isinstance(decl, EnumDecl):
            discriminant = self.resolve_type(decl.discriminant_type, scope, unresolved)
            values = self.enum_values(decl) if not unresolved else {}
            variants = [VariantDecl(variant.name, variant.expr, values.get(variant.name)) for variant in decl.variants]
            out = dataclasses.replace(decl, discriminant_type=discriminant, variants=variants)
        elif isinstance(decl, FunctionDecl):
            params = [dataclasses.replace(param, type=self.resolve_type(param.type, scope, unresolved)) for param in decl.params]
            out = dataclasses.replace(decl, params=params, returns=self.resolve_type(decl.returns, scope, unresolved))
        elif isinstance(decl, AliasDecl):
            out = dataclasses.replace(decl, target=self.resolve_type(decl.target, scope, unresolved))
        elif isinstance(decl, ConstantDecl):
            out = self._resolve_constant(decl, unresolved)
        elif isinstance(decl, (OpaqueDecl, ModuleDecl)):
            out = decl
        else:
            raise TypeError(f"cannot resolve {decl!r}")
        if unresolved and self._log is not None:
            self._log(f"{decl.qualified_name}: unresolved {', '.join(unresolved)}")
        return Resolution(out, unresolved)

    def _resolve_constant(self, decl: ConstantDecl, unresolved: list[str], owner: Optional[StructDecl] = None) -> ConstantDecl:
        scope = owner.module if owner is not None else decl.module
        type_ref = self.resolve_type(decl.type, scope, unresolved)
        if unresolved:
            return dataclasses.replace(decl, type=type_ref)
        path = decl.path
        value = self.constant_value(path, decl, scope, owner)
        return dataclasses.replace(decl, type=type_ref, value=value)

    # constant folding

    def value_of(self, path: tuple[str, ...]):
        symbol = self.table.get(path)
        if symbol is None:
            raise UnresolvedReferenceError(f"cannot resolve {'::'.join(path)}")
        if symbol.kind == "const":
            return self.constant_value(path, symbol.decl, symbol.decl.module, None)
        if symbol.kind == "variant":
            values = self.enum_values(symbol.decl)
            return values[symbol.member]
        if symbol.kind == "assoc":
            owner = symbol.decl
            for const in owner.constants:
                if const.name == symbol.member:
                    return self.constant_value(path, const, owner.module, owner)
        raise MappingError(f"{symbol.qualified_name} is a {symbol.kind}, not a constant")

    def constant_value(self, path: tuple[str, ...], decl: ConstantDecl, scope: tuple[str, ...], owner: Optional[StructDecl]):
        if path in self._values:
            return self._values[path]
        if path in self._value_stack:
            cycle = self._value_stack[self._value_stack.index(path) :] + [path]
            raise MappingError("constant depends on itself: " + " -> ".join("::".join(p) for p in cycle), "::".join(path))
        self._value_stack.append(path)
        try:
            value = self.fold(decl.expr, scope, decl.type, owner=owner)
            value = self.check_value(value, decl.type, scope, "::".join(path))
        finally:
            self._value_stack.pop()
        self._values[path] = value
        return value

    def enum_values(self, decl: EnumDecl) -> dict[str, int]:
        path = decl.path
        cached = self._enum_values.get(path)
        if cached is not None:
            return cached
        if path in self._value_stack:
            raise MappingError(f"discriminants of {decl.qualified_name} depend on themselves", decl.qualified_name)
        prim = self.primitive_of(decl.discriminant_type, decl.module)
        if prim is None or PRIMITIVES[prim][2] or prim in {"bool", "void"}:
            raise MappingError(f"enum discriminant type {decl.discriminant_type.describe()} is not an integer", decl.qualified_name)
        values: dict[str, int] = {}
        self._value_stack.append(path)
        try:
            previous: Optional[int] = None
            for variant in decl.variants:
                if variant.expr is not None:
                    value = self.fold(variant.expr, decl.module, prim, partial=values)
                else:
                    value = 0 if previous is None else previous + 1
                if isinstance(value, bool) or not isinstance(value, int):
                    raise MappingError(f"discriminant of {variant.name} is not an integer", decl.qualified_name)
                self._check_int(value, prim, f"{decl.qualified_name}::{variant.name}")
                values[variant.name] = value
                previous = value
        finally:
            self._value_stack.pop()
        self._enum_values[path] = values
        return values

    def fold(self, expr: ConstExpr, scope: tuple[str, ...], hint=None, owner: Optional[StructDecl] = None, partial=None):
        """Evaluate a constant expression. ``hint`` is the expected type
        (a TypeRef or a primitive name) and only steers `!` and shifts."""

        prim = hint if isinstance(hint, str) else self.primitive_of(hint, scope) if hint is not None else None
        kind = expr.kind
        if kind in {"int", "float", "bool", "str"}:
            return expr.value
        if kind == "path":
            return self._fold_path(expr.segments, scope, owner, partial)
        if kind == "unary":
            operand = self.fold(expr.operands[0], scope, hint, owner, partial)
            if expr.value == "-":
                if isinstance(operand, bool) or not isinstance(operand, (int, float)):
                    raise MappingError(f"cannot negate {expr.operands[0].describe()}")
                return -operand
            if isinstance(operand, bool):
                return not operand
            if not isinstance(operand, int):
                raise MappingError(f"cannot apply ! to {expr.operands[0].describe()}")
            return self._wrap(~operand, prim) if prim is not None else ~operand
        if kind == "binary":
            return self._fold_binary(expr, scope, hint, prim, owner, partial)
        if kind == "cast":
            operand = self.fold(expr.operands[0], scope, None, owner, partial)
            return self._cast(operand, expr.type, scope)
        if kind == "array":
            element_hint = hint.target if isinstance(hint, TypeRef) and hint.kind == "array" else None
            return [self.fold(op, scope, element_hint, owner, partial) for op in expr.operands]
        if kind == "repeat":
            element_hint = hint.target if isinstance(hint, TypeRef) and hint.kind == "array" else None
            element = self.fold(expr.operands[0], scope, element_hint, owner, partial)
            count = self.array_count(expr.operands[1], scope)
            return [element] * count
        if kind == "struct":
            return self._fold_struct(expr, scope, owner, partial)
        raise MappingError(f"cannot evaluate {expr.describe()}")

    def _fold_path(self, segments: tuple[str, ...], scope: tuple[str, ...], owner: Optional[StructDecl], partial):
        if segments[:1] == ("Self",) and owner is not None and len(segments) == 2:
            return self.value_of(owner.path + (segments[1],))
        hit = self._resolve_path(segments, scope, 0)
        if hit is None or isinstance(hit, str):
            raise UnresolvedReferenceError(f"cannot resolve constant {'::'.join(segments)}")
        symbol = self.table.get(hit)
        if partial is not None and symbol is not None and symbol.kind == "variant" and symbol.member in partial:
            if symbol.decl.path in self._value_stack:
                return partial[symbol.member]
        return self.value_of(hit)

    def _fold_binary(self, expr: ConstExpr, scope, hint, prim, owner, partial):
        op = expr.value
        left = self.fold(expr.operands[0], scope, hint, owner, partial)
        right_hint = None if op in {"<<", ">>"} else hint
        right = self.fold(expr.operands[1], scope, right_hint, owner, partial)
        if op == "&&":
            return bool(left) and bool(right)
        if op == "||":
            return bool(left) or bool(right)
        if op in {"==", "!=", "<", ">", "<=", ">="}:
            return {
                "==": left == right,
                "!=": left != right,
                "<": left < right,
                ">": left > right,
                "<=": left <= right,
                ">=": left >= right,
            }[op]
        if isinstance(left, bool) and isinstance(right, bool) and op in {"&", "|", "^"}:
            return {"&": left and right, "|": left or right, "^": left != right}[op]
        if isinstance(left, float) or isinstance(right, float):
            if op == "+":
                return left + right
            if op == "-":
                return left - right
            if op == "*":
                return left * right
            if op == "/":
                return _float_div(left, right)
            if op == "%":
                return _float_rem(left, right)
            raise MappingError(f"operator {op} is not defined on floats")
        if not isinstance(left, int) or not isinstance(right, int):
            raise MappingError(f"cannot evaluate {expr.describe()}")
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op in {"/", "%"}:
            if right == 0:
                raise MappingError(f"division by zero in {expr.describe()}")
            quotient = _trunc_div(left, right)
            return quotient if op == "/" else left - quotient * right
        if op == "&":
            return left & right
        if op == "|":
            return left | right
        if op == "^":
            return left ^ right
        if op == "<<":
            value = left << right
            return self._wrap(value, prim) if prim is not None else value
        if op == ">>":
            return left >> right
        raise MappingError(f"unknown operator {op}")

    def _fold_struct(self, expr: ConstExpr, scope, owner, partial):
        hit = self._resolve_path(expr.segments, scope, 0)
        symbol = self.table.get(hit) if isinstance(hit, tuple) else None
        if symbol is None or symbol.kind not in {"struct", "union", "alias"}:
            raise UnresolvedReferenceError(f"cannot resolve struct {'::'.join(expr.segments)}")
        decl = symbol.decl
        if isinstance(decl, AliasDecl):
            target = self.resolve_type(decl.target, decl.module, [])
            decl = self.symbol(target.resolved).decl if target.resolved else None
            if not isinstance(decl, StructDecl):
                raise MappingError(f"{'::'.join(expr.segments)} is not a struct")
        given = dict(expr.fields)
        values: dict[str, object] = {}
        for member in decl.fields:
            if member.name not in given:
                if decl.kind == "union":
                    continue
                raise MappingError(f"missing field {member.name} in {expr.describe()}")
            field_type = self.resolve_type(member.type, decl.module, [])
            values[member.name] = self.check_value(
                self.fold(given.pop(member.name), scope, field_type, owner, partial),
                field_type,
                decl.module,
                f"{decl.qualified_name}.{member.name}",
            )
        if given:
            raise MappingError(f"unknown field(s) {', '.join(sorted(given))} in {expr.describe()}")
        return values

    def _cast(self, value, type_ref: Optional[TypeRef], scope):
        prim = self.primitive_of(type_ref, scope)
        if prim is None:
            raise MappingError(f"cannot cast to {type_ref.describe() if type_ref else '?'}")
        bits, _signed, is_float = PRIMITIVES[prim]
        if prim == "bool":
            raise MappingError("casts to bool are not allowed")
        if is_float:
            return float(value)
        if isinstance(value, float):
            # float to int casts saturate
            low, high = self._int_range(prim)
            if math.isnan(value):
                return 0
            if math.isinf(value):
                return high if value > 0 else low
            return max(low, min(high, int(value)))
        return self._wrap(int(value), prim)

    def _int_range(self, prim: str) -> tuple[int, int]:
        bits, signed, _ = PRIMITIVES[prim]
        if bits is None:
            bits = self.native.pointer_width
        if signed:
            return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        return 0, (1 << bits) - 1

    def _wrap(self, value: int, prim: str) -> int:
        bits, signed, is_float = PRIMITIVES[prim]
        if is_float or prim in {"bool", "void"}:
            return value
        if bits is None:
            bits = self.native.pointer_width
        value &= (1 << bits) - 1
        if signed and value >= 1 << (bits - 1):
            value -= 1 << bits
        return value

    def _check_int(self, value: int, prim: str, where: str) -> None:
        low, high = self._int_range(prim)
        if not low <= value <= high:
            raise MappingError(f"value {value} does not fit {prim}", where)

    def check_value(self, value, type_ref: Optional[TypeRef], scope: tuple[str, ...], where: str):
        """Check a folded value against its declared type; returns it normalized."""

        if type_ref is None:
            return value
        prim = self.primitive_of(type_ref, scope)
        if prim is not None:
            if prim == "bool":
                if not isinstance(value, bool):
                    raise MappingError(f"expected a bool, found {value!r}", where)
                return value
            if PRIMITIVES[prim][2]:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise MappingError(f"expected a float, found {value!r}", where)
                return float(value)
            if isinstance(value, bool) or not isinstance(value, int):
                raise MappingError(f"expected an integer, found {value!r}", where)
            self._check_int(value, prim, where)
            return value
        if type_ref.kind == "array":
            if not isinstance(value, list):
                raise MappingError(f"expected an array, found {value!r}", where)
            if type_ref.count is not None and len(value) != type_ref.count:
                raise MappingError(f"expected {type_ref.count} element(s), found {len(value)}", where)
            element = type_ref.target
            if element is not None and element.kind == "path" and element.resolved is None:
                element = self.resolve_type(element, scope, [])
            return [self.check_value(item, element, scope, where) for item in value]
        return value
