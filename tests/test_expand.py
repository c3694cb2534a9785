import os
import sys
import unittest


REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
sys.path.insert(0, SRC_ROOT)


from abiport.analysis.ffi_diagnostics import ERROR, LAYOUT_MISMATCH, UNSUPPORTED_CONSTRUCT, WARNING  # noqa: E402
from abiport.analysis.ffi_expand import ExpandOptions, expand_file  # noqa: E402
from abiport.analysis.ffi_frontend import parse_source  # noqa: E402
from abiport.analysis.ffi_ir import (  # noqa: E402
    AliasDecl,
    ConstantDecl,
    EnumDecl,
    FunctionDecl,
    LayoutMode,
    ModuleDecl,
    OpaqueDecl,
    SkippedItem,
    StructDecl,
)
from abiport.analysis.ffi_profiles import NativeTarget, native_for_arch  # noqa: E402


def _expand(text: str, native: NativeTarget = NativeTarget(), module: str = "", default_library=None):
    source = parse_source(text, "lib.rs", module)
    return expand_file(source, ExpandOptions(native=native, default_library=default_library))


class MacroExpansionTests(unittest.TestCase):
    def test_struct_macro_preserves_field_order(self) -> None:
        expanded = _expand("STRUCT!{struct RECT { right: i32, left: i32, bottom: i32, top: i32, }}")
        (decl,) = expanded.module.items
        self.assertIsInstance(decl, StructDecl)
        self.assertEqual([member.name for member in decl.fields], ["right", "left", "bottom", "top"])
        self.assertEqual(decl.layout, LayoutMode.C)
        self.assertTrue(decl.exact)
        self.assertEqual(expanded.diagnostics, [])

    def test_struct_macro_with_packed_repr(self) -> None:
        expanded = _expand("STRUCT!{#[repr(packed)] struct P { a: u8, b: u32, }}")
        decl = expanded.module.items[0]
        self.assertEqual(decl.layout, LayoutMode.PACKED)
        self.assertEqual(decl.pack, 1)

    def test_enum_macro_is_clike_with_u32_default(self) -> None:
        expanded = _expand("ENUM!{enum COLOR { RED = 1, GREEN, BLUE = 8, }}")
        decl = expanded.module.items[0]
        self.assertIsInstance(decl, EnumDecl)
        self.assertEqual(decl.style, "clike")
        self.assertEqual(decl.discriminant_type.segments, ("u32",))
        self.assertEqual([variant.name for variant in decl.variants], ["RED", "GREEN", "BLUE"])
        self.assertIsNone(decl.variants[1].expr)

    def test_enum_macro_with_backing_type(self) -> None:
        decl = _expand("ENUM!{enum SMALL: u8 { A, }}").module.items[0]
        self.assertEqual(decl.discriminant_type.segments, ("u8",))

    def test_define_guid_builds_a_struct_literal(self) -> None:
        expanded = _expand("DEFINE_GUID!{IID_IUnknown, 0x00000000, 0x0000, 0x0000, 0xc0, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x46}")
        (decl,) = expanded.module.items
        self.assertIsInstance(decl, ConstantDecl)
        self.assertTrue(decl.guid)
        self.assertEqual(decl.type.segments, ("GUID",))
        self.assertEqual(decl.expr.kind, "struct")
        self.assertEqual([name for name, _ in decl.expr.fields], ["Data1", "Data2", "Data3", "Data4"])
        data4 = dict(decl.expr.fields)["Data4"]
        self.assertEqual([op.value for op in data4.operands], [0xC0, 0, 0, 0, 0, 0, 0, 0x46])

    def test_define_guid_with_wrong_arity_is_unsupported(self) -> None:
        expanded = _expand("DEFINE_GUID!{IID_Short, 1, 2, 3}")
        self.assertIsInstance(expanded.module.items[0], SkippedItem)
        self.assertEqual([diag.kind for diag in expanded.diagnostics], [UNSUPPORTED_CONSTRUCT])
        self.assertEqual(expanded.diagnostics[0].qualified_name, "IID_Short")

    def test_bitflags_become_transparent_struct_with_constants(self) -> None:
        expanded = _expand(
            """
            bitflags! {
                pub struct Access: u32 {
                    const READ = 1;
                    const WRITE = 2;
                    const BOTH = Self::READ.bits | Self::WRITE.bits;
                }
            }
            """
        )
        (decl,) = expanded.module.items
        self.assertEqual(decl.layout, LayoutMode.TRANSPARENT)
        self.assertEqual([member.name for member in decl.fields], ["bits"])
        self.assertEqual([const.name for const in decl.constants], ["READ", "WRITE", "BOTH"])
        self.assertEqual(decl.constants[0].module, ("Access",))

    def test_declare_handle_yields_opaque_and_pointer_alias(self) -> None:
        items = _expand("DECLARE_HANDLE!{HWND, HWND__}").module.items
        self.assertIsInstance(items[0], OpaqueDecl)
        self.assertEqual(items[0].name, "HWND__")
        self.assertIsInstance(items[1], AliasDecl)
        self.assertEqual(items[1].target.kind, "pointer")
        self.assertEqual(items[1].target.target.segments, ("HWND__",))

    def test_union_macro_picks_storage_by_pointer_width(self) -> None:
        text = "UNION!{union U { [u32; 2] [u64; 2], a a_mut: u64, b b_mut: [u8; 16], }}"
        wide = _expand(text).module.items[0]
        narrow = _expand(text, native_for_arch("x86")).module.items[0]
        self.assertEqual(wide.kind, "union")
        self.assertEqual([member.name for member in wide.fields], ["a", "b"])
        self.assertEqual(wide.storage.target.segments, ("u64",))
        self.assertEqual(narrow.storage.target.segments, ("u32",))

    def test_fn_macro_is_a_nullable_function_pointer_alias(self) -> None:
        decl = _expand("FN!{stdcall WNDPROC(hwnd: HWND, u32,) -> isize}").module.items[0]
        self.assertIsInstance(decl, AliasDecl)
        self.assertEqual(decl.target.kind, "fnptr")
        self.assertEqual(decl.target.callconv, "system")
        self.assertTrue(decl.target.nullable)
        self.assertEqual(len(decl.target.params), 2)

    def test_bitfield_macro_produces_nothing(self) -> None:
        expanded = _expand("BITFIELD!{FLAGS bits: u32 [ a set_a[0..1], ]}")
        self.assertEqual(expanded.module.items, [])
        self.assertEqual(expanded.diagnostics, [])

    def test_unknown_macro_is_skipped_with_diagnostic(self) -> None:
        expanded = _expand("RIDL!{interface IFoo(IFooVtbl) {}}\npub const OK: u32 = 1;")
        skipped, const = expanded.module.items
        self.assertIsInstance(skipped, SkippedItem)
        self.assertIsInstance(const, ConstantDecl)
        (diag,) = expanded.diagnostics
        self.assertEqual(diag.kind, UNSUPPORTED_CONSTRUCT)
        self.assertEqual(diag.severity, ERROR)


class LiteralItemTests(unittest.TestCase):
    def test_extern_block_carries_library_and_linkage(self) -> None:
        expanded = _expand(
            """
            #[link(name = "kernel32")]
            extern "system" {
                #[link_name = "SleepEx"]
                pub fn Sleep2(ms: u32, alertable: i32) -> u32;
                pub fn printf(fmt: *const i8, ...) -> i32;
            }
            """
        )
        sleep, printf = expanded.module.items
        self.assertIsInstance(sleep, FunctionDecl)
        self.assertEqual(sleep.linkage_name, "SleepEx")
        self.assertEqual(sleep.library, "kernel32")
        self.assertEqual(sleep.callconv, "system")
        self.assertEqual([param.name for param in sleep.params], ["ms", "alertable"])
        self.assertTrue(printf.variadic)

    def test_default_library_applies_without_link_attribute(self) -> None:
        expanded = _expand('extern "system" { pub fn GetTickCount() -> u32; }', default_library="user32")
        self.assertEqual(expanded.module.items[0].library, "user32")

    def test_struct_without_repr_warns(self) -> None:
        expanded = _expand("pub struct LOOSE { a: u32 }")
        self.assertEqual(expanded.module.items[0].layout, LayoutMode.RUST)
        (diag,) = expanded.diagnostics
        self.assertEqual((diag.severity, diag.kind), (WARNING, LAYOUT_MISMATCH))

    def test_packed_with_align_on_repr_c_is_an_error(self) -> None:
        expanded = _expand("#[repr(C, packed(2), align(8))] pub struct ODD { a: u32 }")
        self.assertEqual([(diag.severity, diag.kind) for diag in expanded.diagnostics], [(ERROR, LAYOUT_MISMATCH)])

    def test_data_carrying_enum_is_unsupported(self) -> None:
        expanded = _expand("#[repr(u8)] pub enum Shape { Circle(u32), Square }")
        self.assertIsInstance(expanded.module.items[0], SkippedItem)
        self.assertEqual(expanded.diagnostics[0].kind, UNSUPPORTED_CONSTRUCT)
        self.assertEqual(expanded.diagnostics[0].qualified_name, "Shape")

    def test_enum_without_variants_is_opaque(self) -> None:
        self.assertIsInstance(_expand("pub enum HKEY__ {}").module.items[0], OpaqueDecl)

    def test_statics_and_function_bodies_warn(self) -> None:
        expanded = _expand("pub static COUNT: u32 = 0;\npub fn helper() {}")
        self.assertEqual([diag.severity for diag in expanded.diagnostics], [WARNING, WARNING])
        self.assertEqual([item.name for item in expanded.module.items], ["COUNT", "helper"])

    def test_inline_modules_nest(self) -> None:
        expanded = _expand("pub mod a { pub mod b { pub type T = u8; } }", module="um")
        outer = expanded.module.items[0]
        self.assertIsInstance(outer, ModuleDecl)
        self.assertEqual(outer.path, ("um", "a"))
        inner = outer.items[0]
        self.assertEqual(inner.path, ("um", "a", "b"))
        self.assertEqual(inner.items[0].qualified_name, "um::a::b::T")

    def test_references_are_unsupported(self) -> None:
        expanded = _expand("#[repr(C)] pub struct R { s: &'static u8 }")
        self.assertIsInstance(expanded.module.items[0], SkippedItem)
        self.assertEqual(expanded.diagnostics[0].kind, UNSUPPORTED_CONSTRUCT)


class CfgTests(unittest.TestCase):
    TEXT = """
    #[cfg(target_pointer_width = "64")]
    pub type ULONG_PTR = u64;
    #[cfg(target_pointer_width = "32")]
    pub type ULONG_PTR = u32;
    #[cfg(all(target_arch = "x86", not(feature = "nope")))]
    pub const ON_X86: u32 = 1;
    #[cfg(feature = "winuser")]
    pub const WINUSER: u32 = 1;
    """

    def test_pointer_width_selects_one_definition(self) -> None:
        items = _expand(self.TEXT).module.items
        aliases = [item for item in items if isinstance(item, AliasDecl)]
        self.assertEqual(len(aliases), 1)
        self.assertEqual(aliases[0].target.segments, ("u64",))

        items = _expand(self.TEXT, native_for_arch("x86", features=frozenset())).module.items
        aliases = [item for item in items if isinstance(item, AliasDecl)]
        self.assertEqual(aliases[0].target.segments, ("u32",))
        self.assertEqual([item.name for item in items if isinstance(item, ConstantDecl)], ["ON_X86"])

    def test_features_default_to_enabled(self) -> None:
        names = [item.name for item in _expand(self.TEXT).module.items]
        self.assertIn("WINUSER", names)
        self.assertNotIn("ON_X86", names)
        names = [item.name for item in _expand(self.TEXT, NativeTarget(features=frozenset({"winuser"}))).module.items]
        self.assertIn("WINUSER", names)

    def test_cfg_attr_applies_attributes_conditionally(self) -> None:
        text = 'STRUCT!{#[cfg_attr(target_arch = "x86", repr(packed))] struct S { a: u8, b: u32, }}'
        self.assertEqual(_expand(text).module.items[0].layout, LayoutMode.C)
        self.assertEqual(_expand(text, native_for_arch("x86")).module.items[0].layout, LayoutMode.PACKED)

    def test_cfg_on_fields(self) -> None:
        text = '#[repr(C)] pub struct S { a: u32, #[cfg(target_arch = "x86")] pad: u32, b: u32 }'
        decl = _expand(text).module.items[0]
        self.assertEqual([member.name for member in decl.fields], ["a", "b"])

    def test_expansion_is_deterministic(self) -> None:
        first = _expand(self.TEXT)
        second = _expand(self.TEXT)
        self.assertEqual(first.module, second.module)
        self.assertEqual(first.diagnostics, second.diagnostics)


if __name__ == "__main__":
    unittest.main()
