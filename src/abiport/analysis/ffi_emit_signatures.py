from __future__ import annotations

import hashlib
from typing import Optional

from .ffi_ir import (
    AliasDecl,
    ConstantDecl,
    ConstExpr,
    EnumDecl,
    FunctionDecl,
    ImportDecl,
    ModuleDecl,
    OpaqueDecl,
    SkippedItem,
    StructDecl,
    TypeRef,
)


def type_signature(type_ref: Optional[TypeRef]) -> tuple:
    if type_ref is None:
        return ("none",)
    if type_ref.kind == "primitive":
        return ("prim", type_ref.name)
    if type_ref.kind == "pointer":
        return ("ptr", type_ref.mutable, type_signature(type_ref.target))
    if type_ref.kind == "array":
        return ("arr", expr_signature(type_ref.length), type_ref.count, type_signature(type_ref.target))
    if type_ref.kind == "fnptr":
        return (
            "fn",
            type_ref.callconv,
            tuple(type_signature(param) for param in type_ref.params),
            type_signature(type_ref.returns),
            type_ref.nullable,
            type_ref.variadic,
        )
    return ("path", type_ref.segments, tuple(type_signature(arg) for arg in type_ref.generics))


def expr_signature(expr: Optional[ConstExpr]) -> tuple:
    if expr is None:
        return ("none",)
    return (
        expr.kind,
        expr.value,
        expr.suffix,
        expr.segments,
        tuple(expr_signature(op) for op in expr.operands),
        type_signature(expr.type) if expr.type is not None else None,
        tuple((name, expr_signature(value)) for name, value in expr.fields),
    )


def _struct_signature(decl: StructDecl) -> tuple:
    members = tuple((member.name, type_signature(member.type)) for member in decl.fields)
    constants = tuple(decl_signature(const) for const in decl.constants)
    return (
        decl.kind,
        decl.layout.value,
        decl.pack,
        decl.align,
        decl.exact,
        type_signature(decl.storage) if decl.storage is not None else None,
        members,
        constants,
    )


def decl_signature(decl) -> tuple:
    """Structural identity of a declaration, ignoring where it was written."""

    if isinstance(decl, StructDecl):
        return ("struct", decl.name, _struct_signature(decl))
    if isinstance(decl, EnumDecl):
        variants = tuple((variant.name, expr_signature(variant.expr)) for variant in decl.variants)
        return ("enum", decl.name, decl.style, type_signature(decl.discriminant_type), variants)
    if isinstance(decl, FunctionDecl):
        params = tuple((param.name, type_signature(param.type)) for param in decl.params)
        return (
            "fn",
            decl.name,
            decl.callconv,
            params,
            type_signature(decl.returns),
            decl.linkage_name,
            decl.library,
            decl.variadic,
        )
    if isinstance(decl, AliasDecl):
        return ("alias", decl.name, type_signature(decl.target))
    if isinstance(decl, ConstantDecl):
        return ("const", decl.name, type_signature(decl.type), expr_signature(decl.expr), decl.guid)
    if isinstance(decl, OpaqueDecl):
        return ("opaque", decl.name)
    if isinstance(decl, ModuleDecl):
        return ("module", decl.path, tuple(decl_signature(item) for item in decl.items))
    if isinstance(decl, ImportDecl):
        return ("use", decl.alias, decl.target, decl.glob, decl.public)
    if isinstance(decl, SkippedItem):
        return ("skipped", decl.name, decl.reason)
    return ("unknown", repr(decl))


def signature_digest(sig: tuple) -> str:
    data = repr(sig).encode("utf-8", "replace")
    return hashlib.sha1(data).hexdigest()[:8]
