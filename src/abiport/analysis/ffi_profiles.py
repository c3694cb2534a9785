from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class NativeTarget:
    """The native ABI the declarations are evaluated against (cfg, layout)."""

    arch: str = "x86_64"
    pointer_width: int = 64
    os: str = "windows"
    # None enables every cargo feature.
    features: Optional[frozenset[str]] = None

    @property
    def pointer_bytes(self) -> int:
        return self.pointer_width // 8

    @property
    def family(self) -> str:
        return "windows" if self.os == "windows" else "unix"

    def has_feature(self, name: str) -> bool:
        return self.features is None or name in self.features


_ARCH_POINTER_WIDTHS = {
    "x86": 32,
    "i686": 32,
    "arm": 32,
    "x86_64": 64,
    "aarch64": 64,
}


def native_for_arch(arch: str, pointer_width: Optional[int] = None, os: str = "windows", features=None) -> NativeTarget:
    if pointer_width is None:
        if arch not in _ARCH_POINTER_WIDTHS:
            raise ValueError(f"unknown architecture {arch!r}; pass an explicit pointer width")
        pointer_width = _ARCH_POINTER_WIDTHS[arch]
    if pointer_width not in {32, 64}:
        raise ValueError("pointer width must be 32 or 64")
    return NativeTarget(arch=arch, pointer_width=pointer_width, os=os, features=features)


@dataclass(frozen=True)
class TargetProfile:
    name: str
    file_extension: str
    root_file: str
    native_pointer_syntax: str
    available_integer_widths: frozenset[int]
    supported_calling_conventions: dict[str, str] = field(compare=False)
    reserved_word_list: frozenset[str] = frozenset()
    reserved_patterns: tuple[str, ...] = ()
    integer_names: dict[tuple[int, bool], str] = field(default_factory=dict, compare=False)
    pointer_integer_names: tuple[str, str] = ("usize", "isize")
    float_names: dict[int, str] = field(default_factory=dict, compare=False)
    bool_name: str = "bool"
    void_name: str = "void"
    opaque_pointee: str = "void"
    variadic_conventions: frozenset[str] = frozenset({"C", "cdecl"})
    forward_declarations: bool = False

    def is_reserved(self, name: str) -> bool:
        if name in self.reserved_word_list:
            return True
        return any(re.match(pattern, name) for pattern in self.reserved_patterns)

    def calling_convention(self, source: str) -> Optional[str]:
        return self.supported_calling_conventions.get(normalize_abi(source))

    def integer_name(self, bits: int, signed: bool) -> Optional[str]:
        if bits not in self.available_integer_widths:
            return None
        return self.integer_names.get((bits, signed))


def normalize_abi(abi: str) -> str:
    if abi.endswith("-unwind"):
        abi = abi[: -len("-unwind")]
    return abi


ZIG_KEYWORDS = frozenset(
    {
        "addrspace", "align", "allowzero", "and", "anyframe", "anytype", "asm", "async",
        "await", "break", "callconv", "catch", "comptime", "const", "continue", "defer",
        "else", "enum", "errdefer", "error", "export", "extern", "fn", "for", "if",
        "inline", "linksection", "noalias", "noinline", "nosuspend", "opaque", "or",
        "orelse", "packed", "pub", "resume", "return", "struct", "suspend", "switch",
        "test", "threadlocal", "try", "union", "unreachable", "usingnamespace", "var",
        "volatile", "while",
    }
)

ZIG_PRIMITIVE_NAMES = frozenset(
    {
        "anyerror", "anyframe", "anyopaque", "bool", "c_char", "c_int", "c_long",
        "c_longdouble", "c_longlong", "c_short", "c_uint", "c_ulong", "c_ulonglong",
        "c_ushort", "comptime_float", "comptime_int", "f16", "f32", "f64", "f80", "f128",
        "false", "isize", "noreturn", "null", "true", "type", "undefined", "usize", "void",
        "std", "_",
    }
)

C_KEYWORDS = frozenset(
    {
        "auto", "break", "case", "char", "const", "continue", "default", "do", "double",
        "else", "enum", "extern", "float", "for", "goto", "if", "inline", "int", "long",
        "register", "restrict", "return", "short", "signed", "sizeof", "static", "struct",
        "switch", "typedef", "union", "unsigned", "void", "volatile", "while", "_Alignas",
        "_Alignof", "_Atomic", "_Bool", "_Complex", "_Generic", "_Imaginary", "_Noreturn",
        "_Static_assert", "_Thread_local", "bool", "true", "false", "NULL", "offsetof",
        "size_t", "ptrdiff_t", "intptr_t", "uintptr_t", "wchar_t",
    }
)


def zig_profile(pointer_syntax: str = "optional") -> TargetProfile:
    if pointer_syntax not in {"optional", "c"}:
        raise ValueError(f"unknown zig pointer syntax {pointer_syntax!r}")
    return TargetProfile(
        name="zig",
        file_extension=".zig",
        root_file="lib",
        native_pointer_syntax=pointer_syntax,
        available_integer_widths=frozenset({8, 16, 32, 64, 128}),
        supported_calling_conventions={
            "C": ".C",
            "cdecl": ".C",
            "system": "std.os.windows.WINAPI",
            "stdcall": ".Stdcall",
            "fastcall": ".Fastcall",
            "thiscall": ".Thiscall",
            "vectorcall": ".Vectorcall",
            "win64": ".Win64",
            "sysv64": ".SysV",
            "aapcs": ".AAPCS",
        },
        reserved_word_list=ZIG_KEYWORDS | ZIG_PRIMITIVE_NAMES,
        reserved_patterns=(r"^[iu][0-9]+$",),
        integer_names={(bits, signed): f"{'i' if signed else 'u'}{bits}" for bits in (8, 16, 32, 64, 128) for signed in (True, False)},
        pointer_integer_names=("usize", "isize"),
        float_names={32: "f32", 64: "f64"},
        bool_name="bool",
        void_name="void",
        opaque_pointee="anyopaque",
        forward_declarations=False,
    )


def c_profile() -> TargetProfile:
    return TargetProfile(
        name="c",
        file_extension=".h",
        root_file="lib",
        native_pointer_syntax="c",
        available_integer_widths=frozenset({8, 16, 32, 64}),
        supported_calling_conventions={
            "C": "",
            "cdecl": "__cdecl",
            "system": "__stdcall",
            "stdcall": "__stdcall",
            "fastcall": "__fastcall",
            "thiscall": "__thiscall",
            "vectorcall": "__vectorcall",
        },
        reserved_word_list=C_KEYWORDS,
        reserved_patterns=(r"^u?int[0-9]+_t$", r"^u?int(_least|_fast)[0-9]+_t$", r"^UNRESOLVED_"),
        integer_names={(bits, signed): f"{'' if signed else 'u'}int{bits}_t" for bits in (8, 16, 32, 64) for signed in (True, False)},
        pointer_integer_names=("uintptr_t", "intptr_t"),
        float_names={32: "float", 64: "double"},
        bool_name="bool",
        void_name="void",
        opaque_pointee="void",
        forward_declarations=True,
    )


ZIG_PROFILE = zig_profile()
C_PROFILE = c_profile()

TARGETS = ("zig", "c")


def profile_by_name(name: str, pointer_syntax: Optional[str] = None) -> TargetProfile:
    if name == "zig":
        return zig_profile(pointer_syntax or "optional")
    if name == "c":
        if pointer_syntax not in {None, "c"}:
            raise ValueError("the c target only supports native C pointers")
        return C_PROFILE
    raise ValueError(f"unknown target {name!r} (expected one of: {', '.join(TARGETS)})")
