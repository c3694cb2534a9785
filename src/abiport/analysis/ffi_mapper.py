from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .ffi_diagnostics import MappingError
from .ffi_ir import PRIMITIVES, AliasDecl, EnumDecl, FunctionDecl, OpaqueDecl, StructDecl, TypeRef
from .ffi_profiles import TargetProfile


VALUE = "value"
RETURN = "return"
POINTEE = "pointee"


@dataclass(frozen=True)
class TargetType:
    """A type expressed in target terms; renderers only spell it out."""

    kind: str  # builtin | decl | pointer | array | fnptr | unresolved
    name: Optional[str] = None
    decl_kind: Optional[str] = None
    target: Optional["TargetType"] = None
    const: bool = False
    nullable: bool = False
    c_pointer: bool = False
    count: Optional[int] = None
    callconv: Optional[str] = None
    params: tuple["TargetType", ...] = ()
    returns: Optional["TargetType"] = None
    variadic: bool = False

    def needs_parens(self) -> bool:
        return self.kind in {"array", "fnptr"}

    def is_void(self) -> bool:
        return self.kind == "builtin" and self.decl_kind == "void"


def _decl_kind(decl) -> str:
    if isinstance(decl, StructDecl):
        return decl.kind
    if isinstance(decl, EnumDecl):
        return "enum"
    if isinstance(decl, AliasDecl):
        return "alias"
    if isinstance(decl, OpaqueDecl):
        return "opaque"
    return "unknown"


def _unsized(type_ref: TypeRef, lookup: Callable[[str], Optional[object]], seen: Optional[set[str]] = None) -> Optional[str]:
    """Name of the unsized thing behind ``type_ref`` (void or opaque), if any."""

    if type_ref.kind == "primitive":
        return "void" if type_ref.is_void() else None
    if type_ref.kind != "path" or type_ref.resolved is None:
        return None
    seen = seen if seen is not None else set()
    if type_ref.resolved in seen:
        return None
    seen.add(type_ref.resolved)
    decl = lookup(type_ref.resolved)
    if isinstance(decl, OpaqueDecl):
        return decl.qualified_name
    if isinstance(decl, AliasDecl):
        return _unsized(decl.target, lookup, seen)
    return None


def map_calling_convention(callconv: str, profile: TargetProfile, variadic: bool = False) -> str:
    if callconv in {"Rust", "rust-call", "rust-intrinsic"}:
        raise MappingError(f'extern "{callconv}" functions have no stable ABI')
    spelled = profile.calling_convention(callconv)
    if spelled is None:
        raise MappingError(f'calling convention "{callconv}" is not supported by the {profile.name} target')
    if variadic and callconv not in profile.variadic_conventions:
        raise MappingError(f'variadic functions require the C calling convention, not "{callconv}"')
    return spelled


def map_primitive(name: str, profile: TargetProfile) -> TargetType:
    bits, signed, is_float = PRIMITIVES[name]
    if name == "void":
        return TargetType("builtin", profile.void_name, decl_kind="void")
    if name == "bool":
        return TargetType("builtin", profile.bool_name, decl_kind="bool")
    if is_float:
        spelled = profile.float_names.get(bits)
        if spelled is None:
            raise MappingError(f"{name} has no {profile.name} equivalent")
        return TargetType("builtin", spelled, decl_kind="float")
    if bits is None:
        unsigned_name, signed_name = profile.pointer_integer_names
        return TargetType("builtin", signed_name if signed else unsigned_name, decl_kind="int")
    spelled = profile.integer_name(bits, signed)
    if spelled is None:
        raise MappingError(f"{bits}-bit integers ({name}) are not available in {profile.name}")
    return TargetType("builtin", spelled, decl_kind="int")


def map_type(
    type_ref: TypeRef,
    profile: TargetProfile,
    lookup: Callable[[str], Optional[object]],
    position: str = VALUE,
) -> TargetType:
    """Map a resolved type reference to the target.

    ``lookup`` returns the declaration behind a qualified name. ``position``
    says where the type appears: values may not be void or opaque, return
    types may be void, pointees may be anything.
    """

    if type_ref.kind == "primitive":
        if type_ref.is_void() and position == VALUE:
            raise MappingError("void (the unit type) cannot be used by value")
        return map_primitive(type_ref.name, profile)

    if type_ref.kind == "pointer":
        if type_ref.target.is_void():
            pointee = TargetType("builtin", profile.opaque_pointee, decl_kind="void")
        else:
            pointee = map_type(type_ref.target, profile, lookup, POINTEE)
        unsized = _unsized(type_ref.target, lookup) is not None
        c_pointer = profile.native_pointer_syntax == "c" and not (unsized and profile.name == "zig")
        return TargetType("pointer", target=pointee, const=not type_ref.mutable, nullable=True, c_pointer=c_pointer)

    if type_ref.kind == "array":
        if type_ref.count is None:
            raise MappingError(f"array {type_ref.describe()} has no constant length")
        element = map_type(type_ref.target, profile, lookup, VALUE)
        return TargetType("array", target=element, count=type_ref.count)

    if type_ref.kind == "fnptr":
        callconv = map_calling_convention(type_ref.callconv or "C", profile, type_ref.variadic)
        params = tuple(map_type(param, profile, lookup, VALUE) for param in type_ref.params)
        returns = map_type(type_ref.returns or TypeRef.void(), profile, lookup, RETURN)
        return TargetType(
            "fnptr",
            callconv=callconv,
            params=params,
            returns=returns,
            nullable=type_ref.nullable,
            variadic=type_ref.variadic,
        )

    if type_ref.generics:
        raise MappingError(f"generic type {type_ref.describe()} has no C representation")
    if type_ref.resolved is None:
        return TargetType("unresolved", name=type_ref.describe())
    decl = lookup(type_ref.resolved)
    if position != POINTEE:
        unsized = _unsized(type_ref, lookup)
        if unsized == "void" and position == VALUE:
            raise MappingError(f"{type_ref.describe()} is void and cannot be used by value")
        if unsized is not None and unsized != "void":
            raise MappingError(f"opaque type {unsized} cannot be used by value")
    return TargetType("decl", name=type_ref.resolved, decl_kind=_decl_kind(decl))


@dataclass(frozen=True)
class MappedFunction:
    callconv: str
    params: tuple[TargetType, ...]
    returns: TargetType


def map_function(decl: FunctionDecl, profile: TargetProfile, lookup: Callable[[str], Optional[object]]) -> MappedFunction:
    callconv = map_calling_convention(decl.callconv, profile, decl.variadic)
    params = tuple(map_type(param.type, profile, lookup, VALUE) for param in decl.params)
    returns = map_type(decl.returns, profile, lookup, RETURN)
    return MappedFunction(callconv, params, returns)
