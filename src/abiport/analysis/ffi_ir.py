from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Union

from .ffi_diagnostics import Location


class LayoutMode(enum.Enum):
    C = "c"
    PACKED = "packed"
    TRANSPARENT = "transparent"
    ALIGNED = "aligned"
    RUST = "rust"


# name -> (bits, signed, float); None bits means pointer-sized.
PRIMITIVES: dict[str, tuple[Optional[int], bool, bool]] = {
    "i8": (8, True, False),
    "i16": (16, True, False),
    "i32": (32, True, False),
    "i64": (64, True, False),
    "i128": (128, True, False),
    "u8": (8, False, False),
    "u16": (16, False, False),
    "u32": (32, False, False),
    "u64": (64, False, False),
    "u128": (128, False, False),
    "isize": (None, True, False),
    "usize": (None, False, False),
    "f32": (32, True, True),
    "f64": (64, True, True),
    "bool": (8, False, False),
    "void": (0, False, False),
}

# Modules whose C type names resolve to primitives without a declaration.
PRIMITIVE_ALIAS_MODULES: tuple[tuple[str, ...], ...] = (
    ("ctypes",),
    ("winapi", "ctypes"),
    ("std", "os", "raw"),
    ("core", "os", "raw"),
    ("std", "ffi"),
    ("core", "ffi"),
    ("libc",),
)

C_TYPE_ALIASES: dict[str, str] = {
    "c_char": "i8",
    "c_schar": "i8",
    "c_uchar": "u8",
    "c_short": "i16",
    "c_ushort": "u16",
    "c_int": "i32",
    "c_uint": "u32",
    "c_longlong": "i64",
    "c_ulonglong": "u64",
    "c_float": "f32",
    "c_double": "f64",
    "c_void": "void",
    "wchar_t": "u16",
    "size_t": "usize",
    "ssize_t": "isize",
    "ptrdiff_t": "isize",
    "intptr_t": "isize",
    "uintptr_t": "usize",
    "__int8": "i8",
    "__uint8": "u8",
    "__int16": "i16",
    "__uint16": "u16",
    "__int32": "i32",
    "__uint32": "u32",
    "__int64": "i64",
    "__uint64": "u64",
}


def c_alias_target(name: str, os: str) -> Optional[str]:
    # long stays 32-bit on LLP64 (windows), pointer-sized elsewhere.
    if name == "c_long":
        return "i32" if os == "windows" else "isize"
    if name == "c_ulong":
        return "u32" if os == "windows" else "usize"
    return C_TYPE_ALIASES.get(name)


def qualify(module: tuple[str, ...], name: str) -> str:
    return "::".join(module + (name,)) if name else "::".join(module)


def split_path(text: str) -> tuple[str, ...]:
    if not text:
        return ()
    return tuple(part for part in text.split("::") if part)


@dataclass(frozen=True)
class ConstExpr:
    kind: str  # int | float | bool | str | path | unary | binary | cast | array | repeat | struct
    value: object = None
    suffix: Optional[str] = None
    operands: tuple["ConstExpr", ...] = ()
    segments: tuple[str, ...] = ()
    type: Optional["TypeRef"] = None
    fields: tuple[tuple[str, "ConstExpr"], ...] = ()

    @classmethod
    def integer(cls, value: int, suffix: Optional[str] = None) -> "ConstExpr":
        return cls(kind="int", value=value, suffix=suffix)

    def describe(self) -> str:
        if self.kind in {"int", "float"}:
            return f"{self.value}{self.suffix or ''}"
        if self.kind == "bool":
            return "true" if self.value else "false"
        if self.kind == "str":
            return repr(self.value)
        if self.kind == "path":
            return "::".join(self.segments)
        if self.kind == "unary":
            return f"{self.value}{self.operands[0].describe()}"
        if self.kind == "binary":
            return f"({self.operands[0].describe()} {self.value} {self.operands[1].describe()})"
        if self.kind == "cast":
            return f"({self.operands[0].describe()} as {self.type.describe() if self.type else '?'})"
        if self.kind == "array":
            return "[" + ", ".join(op.describe() for op in self.operands) + "]"
        if self.kind == "repeat":
            return f"[{self.operands[0].describe()}; {self.operands[1].describe()}]"
        if self.kind == "struct":
            inner = ", ".join(f"{name}: {expr.describe()}" for name, expr in self.fields)
            return "::".join(self.segments) + " { " + inner + " }"
        return "?"


@dataclass(frozen=True)
class TypeRef:
    kind: str  # primitive | pointer | array | fnptr | path
    name: Optional[str] = None
    mutable: bool = False
    target: Optional["TypeRef"] = None
    length: Optional[ConstExpr] = None
    count: Optional[int] = None
    segments: tuple[str, ...] = ()
    generics: tuple["TypeRef", ...] = ()
    resolved: Optional[str] = None
    callconv: Optional[str] = None
    params: tuple["TypeRef", ...] = ()
    returns: Optional["TypeRef"] = None
    nullable: bool = False
    variadic: bool = False

    @classmethod
    def primitive(cls, name: str) -> "TypeRef":
        return cls(kind="primitive", name=name)

    @classmethod
    def void(cls) -> "TypeRef":
        return cls(kind="primitive", name="void")

    @classmethod
    def pointer(cls, target: "TypeRef", mutable: bool) -> "TypeRef":
        return cls(kind="pointer", target=target, mutable=mutable)

    @classmethod
    def array(cls, target: "TypeRef", length: ConstExpr) -> "TypeRef":
        return cls(kind="array", target=target, length=length)

    @classmethod
    def path(cls, segments: tuple[str, ...], generics: tuple["TypeRef", ...] = ()) -> "TypeRef":
        return cls(kind="path", segments=segments, generics=generics)

    def is_void(self) -> bool:
        return self.kind == "primitive" and self.name == "void"

    def needs_parens(self) -> bool:
        return self.kind in {"array", "fnptr"}

    def describe(self) -> str:
        if self.kind == "primitive":
            return "()" if self.name == "void" else (self.name or "?")
        if self.kind == "pointer":
            inner = self.target.describe() if self.target else "?"
            return f"*{'mut' if self.mutable else 'const'} {inner}"
        if self.kind == "array":
            count = self.count if self.count is not None else (self.length.describe() if self.length else "?")
            return f"[{self.target.describe() if self.target else '?'}; {count}]"
        if self.kind == "fnptr":
            params = [param.describe() for param in self.params]
            if self.variadic:
                params.append("...")
            text = f'extern "{self.callconv}" fn(' + ", ".join(params) + ")"
            if self.returns is not None and not self.returns.is_void():
                text += " -> " + self.returns.describe()
            return f"Option<{text}>" if self.nullable else text
        text = "::".join(self.segments)
        if self.generics:
            text += "<" + ", ".join(arg.describe() for arg in self.generics) + ">"
        return text


class _Declared:
    module: tuple[str, ...]
    name: str

    @property
    def qualified_name(self) -> str:
        return qualify(self.module, self.name)

    @property
    def path(self) -> tuple[str, ...]:
        return self.module + (self.name,)


@dataclass
class FieldDecl:
    name: str
    type: TypeRef


@dataclass
class ParamDecl:
    name: str
    type: TypeRef


@dataclass
class VariantDecl:
    name: str
    expr: Optional[ConstExpr] = None
    value: Optional[int] = None


@dataclass
class ConstantDecl(_Declared):
    module: tuple[str, ...]
    name: str
    type: TypeRef
    expr: ConstExpr
    value: object = None
    guid: bool = False
    owner: Optional[str] = None
    public: bool = True
    location: Optional[Location] = None


@dataclass
class StructDecl(_Declared):
    module: tuple[str, ...]
    name: str
    kind: str = "struct"
    fields: list[FieldDecl] = field(default_factory=list)
    layout: LayoutMode = LayoutMode.C
    pack: Optional[int] = None
    align: Optional[int] = None
    exact: bool = True
    storage: Optional[TypeRef] = None
    constants: list[ConstantDecl] = field(default_factory=list)
    public: bool = True
    location: Optional[Location] = None


@dataclass
class EnumDecl(_Declared):
    module: tuple[str, ...]
    name: str
    style: str = "clike"  # clike | tagged
    discriminant_type: TypeRef = field(default_factory=lambda: TypeRef.primitive("u32"))
    variants: list[VariantDecl] = field(default_factory=list)
    repr_explicit: bool = True
    public: bool = True
    location: Optional[Location] = None


@dataclass
class FunctionDecl(_Declared):
    module: tuple[str, ...]
    name: str
    callconv: str
    params: list[ParamDecl]
    returns: TypeRef
    linkage_name: str
    library: Optional[str] = None
    variadic: bool = False
    public: bool = True
    location: Optional[Location] = None


@dataclass
class AliasDecl(_Declared):
    module: tuple[str, ...]
    name: str
    target: TypeRef
    public: bool = True
    location: Optional[Location] = None


@dataclass
class OpaqueDecl(_Declared):
    module: tuple[str, ...]
    name: str
    public: bool = True
    location: Optional[Location] = None


@dataclass
class ImportDecl:
    module: tuple[str, ...]
    alias: Optional[str]
    target: tuple[str, ...]
    glob: bool = False
    public: bool = False
    location: Optional[Location] = None


@dataclass
class SkippedItem:
    module: tuple[str, ...]
    name: Optional[str]
    reason: str
    location: Optional[Location] = None


@dataclass
class ModuleDecl:
    path: tuple[str, ...]
    items: list = field(default_factory=list)
    file_path: Optional[str] = None
    inline: bool = False
    public: bool = True
    location: Optional[Location] = None

    @property
    def module(self) -> tuple[str, ...]:
        return self.path[:-1]

    @property
    def name(self) -> str:
        return self.path[-1] if self.path else ""

    @property
    def qualified_name(self) -> str:
        return "::".join(self.path)

    @property
    def imports(self) -> list[ImportDecl]:
        return [item for item in self.items if isinstance(item, ImportDecl)]

    def declarations(self) -> list["Declaration"]:
        return [item for item in self.items if not isinstance(item, (ImportDecl, SkippedItem))]


Declaration = Union[StructDecl, EnumDecl, FunctionDecl, AliasDecl, ConstantDecl, OpaqueDecl, ModuleDecl]


def walk_modules(module: ModuleDecl):
    yield module
    for item in module.items:
        if isinstance(item, ModuleDecl):
            yield from walk_modules(item)
