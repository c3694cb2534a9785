import os
import struct
import sys
import unittest


REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
sys.path.insert(0, SRC_ROOT)


from abiport.analysis.ffi_diagnostics import LayoutError, ValueCycleError  # noqa: E402
from abiport.analysis.ffi_expand import ExpandOptions, expand_file  # noqa: E402
from abiport.analysis.ffi_frontend import parse_source  # noqa: E402
from abiport.analysis.ffi_ir import FieldDecl, LayoutMode, StructDecl, TypeRef  # noqa: E402
from abiport.analysis.ffi_layout import LayoutCalculator  # noqa: E402
from abiport.analysis.ffi_profiles import NativeTarget, native_for_arch  # noqa: E402
from abiport.analysis.ffi_resolve import Resolver  # noqa: E402
from abiport.analysis.ffi_symbols import collect  # noqa: E402


GUID_SOURCE = """
STRUCT!{struct GUID {
    Data1: c_ulong,
    Data2: c_ushort,
    Data3: c_ushort,
    Data4: [c_uchar; 8],
}}
DEFINE_GUID!{IID_Test, 0x12345678, 0x9ABC, 0xDEF0, 0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x07, 0x08}
"""


def _calculator(text: str, native: NativeTarget = NativeTarget()):
    source = parse_source(text, "lib.rs")
    expanded = expand_file(source, ExpandOptions(native=native))
    table, _ = collect([(expanded.module, ())])
    resolver = Resolver(table, native)
    return resolver, LayoutCalculator(resolver.resolved_decl, native.pointer_bytes)


def _primitive_struct(*types: TypeRef, **kwargs) -> StructDecl:
    fields = [FieldDecl(f"f{idx}", type_ref) for idx, type_ref in enumerate(types)]
    return StructDecl((), "S", fields=fields, **kwargs)


class StructLayoutTests(unittest.TestCase):
    def test_int_pointer_int_on_64_bit(self) -> None:
        decl = _primitive_struct(TypeRef.primitive("u32"), TypeRef.pointer(TypeRef.void(), True), TypeRef.primitive("u32"))
        layout = LayoutCalculator(lambda name: None, 8).of_struct(decl)
        self.assertEqual(layout.size, 24)
        self.assertEqual(layout.align, 8)
        self.assertEqual(layout.offsets, [0, 8, 16])

    def test_int_pointer_int_on_32_bit(self) -> None:
        decl = _primitive_struct(TypeRef.primitive("u32"), TypeRef.pointer(TypeRef.void(), True), TypeRef.primitive("u32"))
        layout = LayoutCalculator(lambda name: None, 4).of_struct(decl)
        self.assertEqual(layout.size, 12)
        self.assertEqual(layout.offsets, [0, 4, 8])

    def test_packed_struct_drops_padding(self) -> None:
        decl = _primitive_struct(TypeRef.primitive("u8"), TypeRef.primitive("u32"), layout=LayoutMode.PACKED, pack=1)
        layout = LayoutCalculator(lambda name: None, 8).of_struct(decl)
        self.assertEqual((layout.size, layout.align, layout.offsets), (5, 1, [0, 1]))

    def test_pack_two_caps_member_alignment(self) -> None:
        decl = _primitive_struct(TypeRef.primitive("u8"), TypeRef.primitive("u64"), layout=LayoutMode.PACKED, pack=2)
        layout = LayoutCalculator(lambda name: None, 8).of_struct(decl)
        self.assertEqual((layout.size, layout.offsets), (10, [0, 2]))

    def test_explicit_alignment_rounds_size(self) -> None:
        decl = _primitive_struct(TypeRef.primitive("u32"), layout=LayoutMode.ALIGNED, align=16)
        layout = LayoutCalculator(lambda name: None, 8).of_struct(decl)
        self.assertEqual((layout.size, layout.align), (16, 16))

    def test_union_takes_largest_member(self) -> None:
        decl = _primitive_struct(TypeRef.primitive("u8"), TypeRef.primitive("u64"), kind="union")
        layout = LayoutCalculator(lambda name: None, 8).of_struct(decl)
        self.assertEqual((layout.size, layout.offsets), (8, [0, 0]))

    def test_transparent_struct_is_its_field(self) -> None:
        decl = _primitive_struct(TypeRef.primitive("u16"), layout=LayoutMode.TRANSPARENT)
        layout = LayoutCalculator(lambda name: None, 8).of_struct(decl)
        self.assertEqual((layout.size, layout.align), (2, 2))

    def test_void_fields_have_no_layout(self) -> None:
        decl = _primitive_struct(TypeRef.void())
        with self.assertRaises(LayoutError):
            LayoutCalculator(lambda name: None, 8).of_struct(decl)


class ResolvedLayoutTests(unittest.TestCase):
    def test_nested_structs_and_arrays(self) -> None:
        _, layouts = _calculator(
            """
            #[repr(C)] pub struct POINT { x: i32, y: i32 }
            pub type LONG_PTR = isize;
            #[repr(C)] pub struct MSG { hwnd: *mut u8, message: u32, pt: [POINT; 2], extra: LONG_PTR }
            """
        )
        msg = layouts.of_type(TypeRef(kind="path", segments=("MSG",), resolved="MSG"))
        self.assertEqual(msg.size, 40)
        decl = layouts._lookup("MSG")
        self.assertEqual(layouts.of_struct(decl).offsets, [0, 8, 12, 32])

    def test_self_referential_struct_through_pointer(self) -> None:
        _, layouts = _calculator("STRUCT!{struct NODE { next: *mut NODE, value: u32, }}")
        layout = layouts.of_struct(layouts._lookup("NODE"))
        self.assertEqual((layout.size, layout.offsets), (16, [0, 8]))

    def test_by_value_cycle_is_reported_for_each_member(self) -> None:
        _, layouts = _calculator("#[repr(C)] pub struct A { b: B }\n#[repr(C)] pub struct B { a: A }")
        with self.assertRaises(ValueCycleError) as ctx:
            layouts.of_struct(layouts._lookup("A"))
        self.assertEqual(ctx.exception.cycle, ["A", "B", "A"])
        with self.assertRaises(ValueCycleError):
            layouts.of_struct(layouts._lookup("B"))


class GuidTests(unittest.TestCase):
    def test_guid_constant_has_native_byte_image(self) -> None:
        resolver, layouts = _calculator(GUID_SOURCE)
        const = resolver.resolved_decl("IID_Test")
        self.assertEqual(const.value["Data1"], 0x12345678)
        self.assertEqual(const.value["Data4"], [1, 2, 3, 4, 5, 6, 7, 8])
        self.assertEqual(layouts.of_type(const.type).size, 16)
        image = layouts.encode(const.type, const.value)
        self.assertEqual(image, struct.pack("<IHH8B", 0x12345678, 0x9ABC, 0xDEF0, 1, 2, 3, 4, 5, 6, 7, 8))
        self.assertEqual(len(image), 16)

    def test_guid_layout_matches_on_32_bit(self) -> None:
        resolver, layouts = _calculator(GUID_SOURCE, native_for_arch("x86"))
        const = resolver.resolved_decl("IID_Test")
        self.assertEqual(len(layouts.encode(const.type, const.value)), 16)

    def test_encode_zeroes_padding(self) -> None:
        resolver, layouts = _calculator(
            "#[repr(C)] pub struct PAD { a: u8, b: u32 }\npub const P: PAD = PAD { a: 0xAA, b: 1 };"
        )
        const = resolver.resolved_decl("P")
        self.assertEqual(layouts.encode(const.type, const.value), b"\xaa\x00\x00\x00\x01\x00\x00\x00")


if __name__ == "__main__":
    unittest.main()
