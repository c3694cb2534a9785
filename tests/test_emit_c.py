import os
import sys
import unittest


REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
sys.path.insert(0, SRC_ROOT)


from abiport.analysis.ffi_diagnostics import MAPPING_ERROR  # noqa: E402
from abiport.analysis.ffi_frontend import parse_source  # noqa: E402
from abiport.analysis.ffi_pipeline import TranslateOptions, translate  # noqa: E402
from abiport.analysis.ffi_profiles import C_PROFILE, ZIG_PROFILE  # noqa: E402


def _translate(files, profile=C_PROFILE, **kwargs):
    corpus = [parse_source(text, (module.replace("::", "/") or "lib") + ".rs", module) for module, text in files]
    return translate(corpus, profile, TranslateOptions(**kwargs))


def _header(text: str, **kwargs) -> str:
    modules, _ = _translate([("", text)], **kwargs)
    return modules[""]


class CFunctionTests(unittest.TestCase):
    def test_extern_function(self) -> None:
        modules, report = _translate(
            [
                (
                    "",
                    """
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
                    """,
                )
            ]
        )
        self.assertEqual(report.error_count, 0)
        self.assertEqual(
            modules[""],
            "/* Generated by abiport */\n"
            "#pragma once\n"
            "\n"
            "#include <stdbool.h>\n"
            "#include <stddef.h>\n"
            "#include <stdint.h>\n"
            "\n"
            "void *__stdcall CreateFileW(const uint16_t *lpFileName, uint32_t dwDesiredAccess, "
            "uint32_t dwShareMode, void *lpSecurityAttributes, void *hTemplateFile);\n",
        )

    def test_no_parameters_and_variadics(self) -> None:
        text = _header('extern "C" { pub fn GetVersion() -> u32; pub fn printf(fmt: *const i8, ...) -> i32; }')
        self.assertIn("uint32_t GetVersion(void);", text)
        self.assertIn("int32_t printf(const int8_t *fmt, ...);", text)

    def test_reserved_linkage_name_is_an_error(self) -> None:
        modules, report = _translate([("", 'extern "C" { pub fn int(); }')])
        self.assertNotIn("int(", modules[""])
        self.assertEqual([(diag.kind, diag.qualified_name) for diag in report], [(MAPPING_ERROR, "int")])

    def test_function_pointer_typedef(self) -> None:
        text = _header("FN!{stdcall WNDPROC(hwnd: *mut c_void, u32,) -> isize}")
        self.assertIn("typedef intptr_t (__stdcall *WNDPROC)(void *, uint32_t);", text)


class CTypeTests(unittest.TestCase):
    def test_struct_with_static_asserts(self) -> None:
        text = _header("#[repr(C)] pub struct POINT { x: i32, y: i32, tag: [u8; 4] }")
        self.assertIn(
            "typedef struct POINT {\n"
            "    int32_t x;\n"
            "    int32_t y;\n"
            "    uint8_t tag[4];\n"
            "} POINT;\n"
            '_Static_assert(sizeof(POINT) == 0xc, "POINT size");\n'
            '_Static_assert(offsetof(POINT, x) == 0x0, "POINT.x offset");\n'
            '_Static_assert(offsetof(POINT, y) == 0x4, "POINT.y offset");\n'
            '_Static_assert(offsetof(POINT, tag) == 0x8, "POINT.tag offset");\n',
            text,
        )

    def test_forward_references_get_stubs(self) -> None:
        text = _header("#[repr(C)] pub struct A { next: *mut B }\n#[repr(C)] pub struct B { a: *mut A }")
        self.assertIn("typedef struct B B;\n", text)
        self.assertIn("typedef struct A {\n    B *next;\n} A;", text)
        self.assertIn("struct B {\n    A *a;\n};", text)
        self.assertNotIn("typedef struct A A;", text)
        self.assertLess(text.index("typedef struct B B;"), text.index("typedef struct A {"))

    def test_self_referential_struct_is_stubbed(self) -> None:
        text = _header("STRUCT!{struct NODE { next: *mut NODE, value: u32, }}")
        self.assertIn("typedef struct NODE NODE;", text)
        self.assertIn("struct NODE {\n    NODE *next;\n    uint32_t value;\n};", text)

    def test_packed_struct_uses_pragma_pack(self) -> None:
        text = _header("#[repr(C, packed)] pub struct P { a: u8, b: u32 }")
        self.assertIn("#pragma pack(push, 1)\ntypedef struct P {\n    uint8_t a;\n    uint32_t b;\n} P;\n#pragma pack(pop)\n", text)
        self.assertIn('_Static_assert(sizeof(P) == 0x5, "P size");', text)

    def test_union_asserts_size_only(self) -> None:
        text = _header("UNION!{union U { [u64; 1], a a_mut: u64, b b_mut: [u8; 8], }}")
        self.assertIn("typedef union U {\n    uint64_t a;\n    uint8_t b[8];\n} U;", text)
        self.assertNotIn("offsetof(U", text)

    def test_128_bit_integers_are_rejected(self) -> None:
        modules, report = _translate([("", "pub type BIG = u128;\npub type SMALL = u64;")])
        self.assertNotIn("BIG", modules[""])
        self.assertIn("typedef uint64_t SMALL;", modules[""])
        self.assertEqual([(diag.kind, diag.qualified_name) for diag in report], [(MAPPING_ERROR, "BIG")])
        zig, report = _translate([("", "pub type BIG = u128;")], profile=ZIG_PROFILE)
        self.assertIn("pub const BIG = u128;", zig[""])
        self.assertEqual(report.error_count, 0)

    def test_enums(self) -> None:
        text = _header("ENUM!{enum COLOR { RED = 1, }}\n#[repr(u32)] pub enum Kind { A, B }")
        self.assertIn("typedef uint32_t COLOR;\n#define RED ((COLOR)1)", text)
        self.assertIn("typedef uint32_t Kind;\n#define Kind_A ((Kind)0)\n#define Kind_B ((Kind)1)", text)

    def test_bitflags(self) -> None:
        text = _header("bitflags! { pub struct Flags: u32 { const A = 1; const B = 2; } }")
        self.assertIn("typedef struct Flags {\n    uint32_t bits;\n} Flags;\n#define Flags_A ((Flags){ 1 })\n#define Flags_B ((Flags){ 2 })", text)

    def test_handles(self) -> None:
        text = _header("DECLARE_HANDLE!{HWND, HWND__}")
        self.assertIn("typedef struct HWND__ HWND__;", text)
        self.assertIn("typedef HWND__ *HWND;", text)

    def test_nested_modules_flatten(self) -> None:
        text = _header("pub mod inner { pub type A = u8; }\npub type B = inner::A;")
        self.assertIn("typedef uint8_t A;\n\ntypedef A B;", text)


class CConstantTests(unittest.TestCase):
    def test_scalar_constants_are_macros(self) -> None:
        text = _header("pub const X: u32 = 1;\npub const BIG: u64 = 0x100000000;\npub const NEG: i16 = -2;")
        self.assertIn("#define X ((uint32_t)1)", text)
        self.assertIn("#define BIG ((uint64_t)0x100000000)", text)
        self.assertIn("#define NEG ((int16_t)-2)", text)

    def test_non_finite_floats_use_math_macros(self) -> None:
        text = _header("pub const POS_INF: f64 = 1.0 / 0.0;\npub const QNAN: f32 = 0.0 / 0.0;\npub const R: f64 = 5.5 % 2.0;")
        self.assertIn("#include <math.h>\n", text)
        self.assertIn("#define POS_INF ((double)INFINITY)", text)
        self.assertIn("#define QNAN ((float)NAN)", text)
        self.assertIn("#define R ((double)1.5)", text)
        self.assertNotIn("math.h", _header("pub const X: u32 = 1;"))

    def test_guid_is_a_static_initializer(self) -> None:
        text = _header(
            """
            STRUCT!{struct GUID { Data1: c_ulong, Data2: c_ushort, Data3: c_ushort, Data4: [c_uchar; 8], }}
            DEFINE_GUID!{IID_Test, 0x12345678, 0x9ABC, 0xDEF0, 0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x07, 0x08}
            """
        )
        self.assertIn(
            "static const GUID IID_Test = { .Data1 = 0x12345678, .Data2 = 0x9ABC, .Data3 = 0xDEF0, "
            ".Data4 = { 0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x07, 0x08 } };",
            text,
        )
        self.assertIn('_Static_assert(sizeof(GUID) == 0x10, "GUID size");', text)


class CFileTests(unittest.TestCase):
    def test_cross_file_references_include_the_defining_header(self) -> None:
        modules, report = _translate(
            [
                ("shared::windef", "#[repr(C)] pub struct POINT { x: i32, y: i32 }"),
                ("um::winuser", "use shared::windef::POINT;\n#[repr(C)] pub struct LINE { a: POINT, b: POINT }"),
            ]
        )
        self.assertEqual(report.error_count, 0)
        text = modules["um::winuser"]
        self.assertIn('#include "../shared/windef.h"', text)
        self.assertIn("    POINT a;\n    POINT b;\n", text)

    def test_unresolved_placeholder(self) -> None:
        text = _header("#[repr(C)] pub struct S { a: MISSING }")
        self.assertIn("    UNRESOLVED_MISSING a;\n", text)
        self.assertNotIn("sizeof(S)", text)


if __name__ == "__main__":
    unittest.main()
