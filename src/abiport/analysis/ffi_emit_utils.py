from __future__ import annotations

import posixpath
from typing import Optional

from .ffi_profiles import TargetProfile


def _sanitize_identifier(name: str) -> str:
    if not name:
        return name
    if name.startswith("r#"):
        name = name[2:]
    cleaned = []
    for ch in name:
        if ch.isalnum() or ch == "_":
            cleaned.append(ch)
        else:
            cleaned.append("_")
    out = "".join(cleaned)
    if out[0].isdigit():
        out = "_" + out
    return out


def module_file(path: tuple[str, ...], profile: TargetProfile) -> str:
    """Output file of a module, relative to the output root."""

    if not path:
        return profile.root_file + profile.file_extension
    return "/".join(path) + profile.file_extension


def relative_import(from_path: tuple[str, ...], to_path: tuple[str, ...], profile: TargetProfile) -> str:
    source = module_file(from_path, profile)
    target = module_file(to_path, profile)
    return posixpath.relpath(target, posixpath.dirname(source) or ".")


def _format_int(value: int) -> str:
    if value < 0x100:
        return str(value)
    return f"0x{value:X}"


def _format_hex(value: int, bits: Optional[int]) -> str:
    # fixed-width hex, used inside aggregate literals such as GUIDs
    if value < 0 or not bits:
        return _format_int(value)
    return f"0x{value:0{bits // 4}X}"


def _escape_string(text: str) -> str:
    out = []
    for ch in text:
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ord(ch) < 0x20 or ord(ch) > 0x7E:
            out.append(f"\\x{ord(ch):02x}" if ord(ch) < 0x100 else ch)
        else:
            out.append(ch)
    return "".join(out)


def _indent(lines: list[str], prefix: str = "    ") -> list[str]:
    return [prefix + line if line else line for line in lines]
