import os
import sys
import unittest


REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
sys.path.insert(0, SRC_ROOT)


from abiport.analysis.ffi_diagnostics import UNRESOLVED_REFERENCE  # noqa: E402
from abiport.analysis.ffi_frontend import parse_source  # noqa: E402
from abiport.analysis.ffi_pipeline import TranslateOptions, translate  # noqa: E402
from abiport.analysis.ffi_profiles import profile_by_name  # noqa: E402


def _translate(files, target: str = "zig", pointer_syntax=None, **kwargs):
    corpus = [parse_source(text, (module.replace("::", "/") or "lib") + ".rs", module) for module, text in files]
    return translate(corpus, profile_by_name(target, pointer_syntax), TranslateOptions(**kwargs))


def _zig(text: str, **kwargs) -> str:
    modules, report = _translate([("", text)], **kwargs)
    return modules[""]


CREATE_FILE = """
#[link(name = "kernel32")]
extern "system" {
    pub fn CreateFileW(
        lpFileName: *const u16,
        dwDesiredAccess: u32,
        dwShareMode: u32,
        lpSecurityAttributes: *mut c_void,
        hTemplateFile: *mut c_void,
    ) -> *mut c_void;
}
"""


class ZigFunctionTests(unittest.TestCase):
    def test_extern_function(self) -> None:
        modules, report = _translate([("", CREATE_FILE)])
        self.assertEqual(report.error_count, 0)
        self.assertEqual(
            modules[""],
            "// Generated by abiport\n"
            'const std = @import("std");\n'
            "\n"
            'pub extern "kernel32" fn CreateFileW(\n'
            "    lpFileName: ?*const u16,\n"
            "    dwDesiredAccess: u32,\n"
            "    dwShareMode: u32,\n"
            "    lpSecurityAttributes: ?*anyopaque,\n"
            "    hTemplateFile: ?*anyopaque,\n"
            ") callconv(std.os.windows.WINAPI) ?*anyopaque;\n",
        )

    def test_function_without_parameters_fits_one_line(self) -> None:
        text = _zig('extern "system" { pub fn GetTickCount() -> u32; }', default_library="kernel32")
        self.assertIn('pub extern "kernel32" fn GetTickCount() callconv(std.os.windows.WINAPI) u32;', text)

    def test_variadic_function(self) -> None:
        text = _zig('extern "C" { pub fn printf(fmt: *const i8, ...) -> i32; }')
        self.assertIn("pub extern fn printf(\n    fmt: ?*const i8,\n    ...\n) callconv(.C) i32;", text)

    def test_renamed_functions_bind_their_linkage_name(self) -> None:
        text = _zig('extern "C" { pub fn error(); }')
        self.assertIn('pub const error_ = @extern(*const fn () callconv(.C) void, .{ .name = "error" });', text)
        text = _zig('#[link(name = "kernel32")]\nextern "system" { #[link_name = "SleepEx"] pub fn Sleep2(ms: u32) -> u32; }')
        self.assertIn(
            'pub const Sleep2 = @extern(*const fn (u32) callconv(std.os.windows.WINAPI) u32, .{ .name = "SleepEx", .library_name = "kernel32" });',
            text,
        )

    def test_function_pointer_alias(self) -> None:
        text = _zig("FN!{stdcall WNDPROC(hwnd: *mut c_void, u32,) -> isize}")
        self.assertIn("pub const WNDPROC = ?*const fn (?*anyopaque, u32) callconv(std.os.windows.WINAPI) isize;", text)


class ZigTypeTests(unittest.TestCase):
    def test_struct_with_layout_assertions(self) -> None:
        text = _zig("#[repr(C)] pub struct POINT { pub x: i32, pub y: i32 }")
        self.assertIn(
            "pub const POINT = extern struct {\n"
            "    x: i32,\n"
            "    y: i32,\n"
            "};\n"
            "comptime {\n"
            '    if (@sizeOf(POINT) != 8) @compileError("POINT size");\n'
            '    if (@offsetOf(POINT, "x") != 0) @compileError("POINT.x offset");\n'
            '    if (@offsetOf(POINT, "y") != 4) @compileError("POINT.y offset");\n'
            "}\n",
            text,
        )
        self.assertNotIn("comptime", _zig("#[repr(C)] pub struct POINT { x: i32 }", layout_asserts=False))

    def test_packed_struct_fields_carry_alignment(self) -> None:
        text = _zig("#[repr(C, packed)] pub struct P { a: u8, b: u32 }")
        self.assertIn("    a: u8,\n    b: u32 align(1),\n", text)
        self.assertIn('if (@sizeOf(P) != 5) @compileError("P size");', text)

    def test_union(self) -> None:
        text = _zig("UNION!{union U { [u64; 1], a a_mut: u64, b b_mut: [u8; 8], }}")
        self.assertIn("pub const U = extern union {\n    a: u64,\n    b: [8]u8,\n};", text)

    def test_self_referential_struct(self) -> None:
        text = _zig("STRUCT!{struct NODE { next: *mut NODE, value: u32, }}")
        self.assertIn("    next: ?*NODE,\n", text)
        self.assertIn('if (@sizeOf(NODE) != 16) @compileError("NODE size");', text)

    def test_handles_are_opaque(self) -> None:
        text = _zig("DECLARE_HANDLE!{HWND, HWND__}")
        self.assertIn("pub const HWND__ = opaque {};", text)
        self.assertIn("pub const HWND = ?*HWND__;", text)

    def test_void_alias_is_anyopaque(self) -> None:
        self.assertIn("pub const VOID = anyopaque;", _zig("pub type VOID = c_void;"))

    def test_c_pointer_syntax(self) -> None:
        text = _zig("pub type P = *mut u32;\npub type H = *mut c_void;", pointer_syntax="c")
        self.assertIn("pub const P = [*c]u32;", text)
        self.assertIn("pub const H = ?*anyopaque;", text)

    def test_clike_enum(self) -> None:
        text = _zig("ENUM!{enum COLOR { RED = 1, GREEN, }}")
        self.assertIn("pub const COLOR = u32;\npub const RED: COLOR = 1;\npub const GREEN: COLOR = 2;", text)

    def test_tagged_enum_is_non_exhaustive(self) -> None:
        text = _zig("#[repr(u8)] pub enum Kind { A, B = 5 }")
        self.assertIn("pub const Kind = enum(u8) {\n    A = 0,\n    B = 5,\n    _,\n};", text)

    def test_bitflags(self) -> None:
        text = _zig("bitflags! { pub struct Flags: u32 { const A = 1; const B = 2; const AB = Self::A.bits | Self::B.bits; } }")
        self.assertIn(
            "pub const Flags = packed struct(u32) {\n"
            "    bits: u32,\n"
            "\n"
            "    pub const A: Flags = .{ .bits = 1 };\n"
            "    pub const B: Flags = .{ .bits = 2 };\n"
            "    pub const AB: Flags = .{ .bits = 3 };\n"
            "};",
            text,
        )


class ZigConstantTests(unittest.TestCase):
    def test_integer_constants(self) -> None:
        text = _zig("pub const MAX_PATH: usize = 260;\npub const FLAG: u32 = 1 << 31;\npub const NEG: i32 = -1;")
        self.assertIn("pub const MAX_PATH: usize = 0x104;", text)
        self.assertIn("pub const FLAG: u32 = 0x80000000;", text)
        self.assertIn("pub const NEG: i32 = -1;", text)

    def test_guid_constant(self) -> None:
        text = _zig(
            """
            STRUCT!{struct GUID { Data1: c_ulong, Data2: c_ushort, Data3: c_ushort, Data4: [c_uchar; 8], }}
            DEFINE_GUID!{IID_Test, 0x12345678, 0x9ABC, 0xDEF0, 0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x07, 0x08}
            """
        )
        self.assertIn(
            "pub const IID_Test: GUID = .{ .Data1 = 0x12345678, .Data2 = 0x9ABC, .Data3 = 0xDEF0, "
            ".Data4 = .{ 0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x07, 0x08 } };",
            text,
        )

    def test_non_finite_floats(self) -> None:
        modules, report = _translate([("", "pub const POS_INF: f64 = 1.0 / 0.0;\npub const NEG_INF: f32 = -1.0 / 0.0;\npub const QNAN: f32 = 0.0 / 0.0;\npub type DWORD = u32;")])
        text = modules[""]
        self.assertEqual(report.error_count, 0)
        self.assertIn("pub const POS_INF: f64 = std.math.inf(f64);", text)
        self.assertIn("pub const NEG_INF: f32 = -std.math.inf(f32);", text)
        self.assertIn("pub const QNAN: f32 = std.math.nan(f32);", text)
        self.assertIn("pub const DWORD = u32;", text)

    def test_definitions_precede_by_value_users(self) -> None:
        text = _zig("pub const P: POINT = POINT { x: 1, y: 2 };\n#[repr(C)] pub struct POINT { x: i32, y: i32 }")
        self.assertLess(text.index("pub const POINT = extern struct"), text.index("pub const P: POINT"))
        self.assertIn("pub const P: POINT = .{ .x = 0x00000001, .y = 0x00000002 };", text)


class ZigModuleTests(unittest.TestCase):
    def test_nested_modules_become_containers(self) -> None:
        text = _zig("pub mod inner { pub type A = u8; }\npub type B = inner::A;")
        self.assertIn("pub const inner = struct {\n    pub const A = u8;\n};", text)
        self.assertIn("pub const B = inner.A;", text)

    def test_cross_file_references_import_the_defining_file(self) -> None:
        modules, report = _translate(
            [
                ("shared::windef", "#[repr(C)] pub struct POINT { x: i32, y: i32 }"),
                ("um::winuser", "use shared::windef::POINT;\n#[repr(C)] pub struct LINE { a: POINT, b: POINT }"),
            ]
        )
        self.assertEqual(report.error_count, 0)
        text = modules["um::winuser"]
        self.assertIn('const windef = @import("../shared/windef.zig");', text)
        self.assertIn("    a: windef.POINT,\n", text)
        self.assertIn('if (@sizeOf(LINE) != 16) @compileError("LINE size");', text)

    def test_public_reexports(self) -> None:
        modules, _ = _translate(
            [
                ("shared::minwindef", "pub type DWORD = u32;"),
                ("um", "pub use shared::minwindef::DWORD;\npub use winapi::ctypes::c_int;"),
            ]
        )
        text = modules["um"]
        self.assertIn("pub const DWORD = minwindef.DWORD;", text)
        # c_int is a Zig primitive name
        self.assertIn("pub const c_int_ = i32;", text)

    def test_skipped_items_leave_a_comment(self) -> None:
        text = _zig("pub static COUNT: u32 = 0;")
        self.assertIn("// skipped COUNT: statics are not translated", text)


class ZigUnresolvedTests(unittest.TestCase):
    TEXT = "#[repr(C)] pub struct S { a: MISSING, b: u32 }\npub type OK = u8;"

    def test_placeholder_mode(self) -> None:
        modules, report = _translate([("", self.TEXT)])
        self.assertIn('    a: @compileError("unresolved type MISSING"),\n', modules[""])
        self.assertNotIn("@sizeOf(S)", modules[""])
        self.assertEqual([(diag.kind, diag.qualified_name) for diag in report.of_kind(UNRESOLVED_REFERENCE)], [(UNRESOLVED_REFERENCE, "S")])

    def test_omit_mode(self) -> None:
        modules, report = _translate([("", self.TEXT)], unresolved="omit")
        self.assertNotIn("pub const S", modules[""])
        self.assertIn("pub const OK = u8;", modules[""])
        self.assertEqual(len(report.of_kind(UNRESOLVED_REFERENCE)), 1)


if __name__ == "__main__":
    unittest.main()
