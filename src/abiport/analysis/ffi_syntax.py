"""Typed syntax nodes handed to the translation core by a front end.

A front end turns one source file into a :class:`SourceFile` holding its
top-level items in source order. Macro invocations and attributes are not
interpreted by the front end; their bodies are kept as token trees
(:class:`Tok` / :class:`Group`) for the expander to recognize.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from .ffi_diagnostics import Diagnostic, Location


@dataclass(frozen=True)
class Tok:
    kind: str  # ident | number | string | char | punct | lifetime
    value: str
    location: Optional[Location] = None


@dataclass(frozen=True)
class Group:
    delimiter: str  # "(" | "[" | "{"
    tokens: tuple["TokenTree", ...] = ()
    location: Optional[Location] = None


TokenTree = Union[Tok, Group]


@dataclass(frozen=True)
class Attribute:
    tokens: tuple[TokenTree, ...]
    inner: bool = False

    @property
    def name(self) -> Optional[str]:
        if self.tokens and isinstance(self.tokens[0], Tok) and self.tokens[0].kind == "ident":
            return self.tokens[0].value
        return None


# Types


@dataclass(frozen=True)
class PathSegment:
    name: str
    generics: tuple["SynType", ...] = ()


@dataclass(frozen=True)
class PathType:
    segments: tuple[PathSegment, ...]


@dataclass(frozen=True)
class PtrType:
    mutable: bool
    target: "SynType"


@dataclass(frozen=True)
class ArrayType:
    element: "SynType"
    length: "SynExpr"


@dataclass(frozen=True)
class FnParam:
    name: Optional[str]
    type: "SynType"


@dataclass(frozen=True)
class FnType:
    abi: Optional[str]  # None: Rust ABI, "C" for a bare `extern`
    params: tuple[FnParam, ...]
    returns: Optional["SynType"]
    variadic: bool = False


@dataclass(frozen=True)
class TupleType:
    elements: tuple["SynType", ...]


@dataclass(frozen=True)
class UnsupportedType:
    description: str


SynType = Union[PathType, PtrType, ArrayType, FnType, TupleType, UnsupportedType]


# Expressions


@dataclass(frozen=True)
class LitExpr:
    kind: str  # int | float | bool | str
    value: object
    suffix: Optional[str] = None


@dataclass(frozen=True)
class PathExpr:
    segments: tuple[str, ...]


@dataclass(frozen=True)
class UnaryExpr:
    op: str
    operand: "SynExpr"


@dataclass(frozen=True)
class BinaryExpr:
    op: str
    left: "SynExpr"
    right: "SynExpr"


@dataclass(frozen=True)
class CastExpr:
    operand: "SynExpr"
    type: SynType


@dataclass(frozen=True)
class ArrayExpr:
    elements: tuple["SynExpr", ...]


@dataclass(frozen=True)
class RepeatExpr:
    element: "SynExpr"
    count: "SynExpr"


@dataclass(frozen=True)
class StructExpr:
    path: tuple[str, ...]
    fields: tuple[tuple[str, "SynExpr"], ...]


@dataclass(frozen=True)
class UnsupportedExpr:
    description: str


SynExpr = Union[LitExpr, PathExpr, UnaryExpr, BinaryExpr, CastExpr, ArrayExpr, RepeatExpr, StructExpr, UnsupportedExpr]


# Items


@dataclass
class UseTree:
    segments: tuple[str, ...]
    alias: Optional[str] = None
    glob: bool = False


@dataclass
class Field:
    name: str
    type: SynType
    attrs: list[Attribute] = field(default_factory=list)


@dataclass
class Variant:
    name: str
    value: Optional[SynExpr] = None
    attrs: list[Attribute] = field(default_factory=list)
    has_data: bool = False


@dataclass
class Param:
    name: str
    type: SynType


@dataclass
class UseItem:
    trees: list[UseTree]
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class ConstItem:
    name: str
    type: SynType
    value: SynExpr
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class StaticItem:
    name: str
    type: SynType
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class TypeAliasItem:
    name: str
    type: SynType
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class StructItem:
    kind: str  # struct | union
    name: str
    fields: list[Field]
    tuple_fields: bool = False
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class EnumItem:
    name: str
    variants: list[Variant]
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class ForeignFn:
    name: str
    params: list[Param]
    returns: Optional[SynType]
    variadic: bool = False
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class ForeignType:
    name: str
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class ForeignBlock:
    abi: Optional[str]
    items: list[Union[ForeignFn, StaticItem, ForeignType]]
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class ModItem:
    name: str
    items: Optional[list["Item"]]  # None for `mod name;`
    public: bool = False
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class MacroItem:
    name: str
    body: Group
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class OtherItem:
    """An item the core never translates (function bodies, impls, traits...)."""

    kind: str
    name: Optional[str] = None
    attrs: list[Attribute] = field(default_factory=list)
    location: Optional[Location] = None


Item = Union[
    UseItem,
    ConstItem,
    StaticItem,
    TypeAliasItem,
    StructItem,
    EnumItem,
    ForeignBlock,
    ModItem,
    MacroItem,
    OtherItem,
]


@dataclass
class SourceFile:
    """One parsed file. ``module`` is its Rust module path (``"um::winuser"``,
    empty for the crate root); ``diagnostics`` carries front-end failures."""

    module: str
    path: str
    items: list[Item]
    attrs: list[Attribute] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
