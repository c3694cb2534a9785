"""Lower syntax items and the closed set of winapi declaration macros to IR.

The expander works on one file at a time and never consults the symbol
table. Items it cannot lower are recorded as ``unsupported-construct``
diagnostics (plus a :class:`SkippedItem` marker) and expansion continues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .ffi_diagnostics import (
    LAYOUT_MISMATCH,
    UNSUPPORTED_CONSTRUCT,
    Diagnostic,
    DiagnosticsCollector,
    ParseError,
    TranslationError,
    UnsupportedConstructError,
)
from .ffi_ir import (
    AliasDecl,
    ConstantDecl,
    ConstExpr,
    EnumDecl,
    FieldDecl,
    FunctionDecl,
    ImportDecl,
    LayoutMode,
    ModuleDecl,
    OpaqueDecl,
    ParamDecl,
    SkippedItem,
    StructDecl,
    TypeRef,
    VariantDecl,
    qualify,
    split_path,
)
from .ffi_profiles import NativeTarget
from .ffi_syntax import (
    ArrayExpr,
    ArrayType,
    Attribute,
    BinaryExpr,
    CastExpr,
    ConstItem,
    EnumItem,
    ForeignBlock,
    ForeignFn,
    ForeignType,
    FnType,
    Group,
    LitExpr,
    MacroItem,
    ModItem,
    OtherItem,
    PathExpr,
    PathType,
    PtrType,
    RepeatExpr,
    SourceFile,
    StaticItem,
    StructExpr,
    StructItem,
    Tok,
    TupleType,
    TypeAliasItem,
    UnaryExpr,
    UnsupportedExpr,
    UnsupportedType,
    UseItem,
)
from .ffi_tokens import TokenCursor, split_commas


_MACRO_HANDLERS: dict[str, Optional[str]] = {
    "STRUCT": "_macro_struct",
    "ENUM": "_macro_enum",
    "DEFINE_GUID": "_macro_guid",
    "bitflags": "_macro_bitflags",
    "DECLARE_HANDLE": "_macro_handle",
    "UNION": "_macro_union",
    "FN": "_macro_fn",
    "BITFIELD": None,
}

RECOGNIZED_MACROS = tuple(_MACRO_HANDLERS)

# winapi's FN! spells the convention by its x86 name.
_FN_MACRO_ABIS = {"stdcall": "system", "cdecl": "C"}


@dataclass(frozen=True)
class ExpandOptions:
    native: NativeTarget = NativeTarget()
    default_library: Optional[str] = None


@dataclass
class ExpandedFile:
    source: SourceFile
    module: ModuleDecl
    diagnostics: list[Diagnostic] = field(default_factory=list)


@dataclass
class _Repr:
    c: bool = False
    packed: Optional[int] = None
    align: Optional[int] = None
    transparent: bool = False
    integer: Optional[str] = None
    present: bool = False


def expand_file(source: SourceFile, options: Optional[ExpandOptions] = None, log=None) -> ExpandedFile:
    return Expander(source, options or ExpandOptions(), log=log).expand()


class Expander:
    def __init__(self, source: SourceFile, options: ExpandOptions, log=None) -> None:
        self.source = source
        self.native = options.native
        self.default_library = options.default_library
        self.diagnostics = DiagnosticsCollector(log)
        self._log = log

    def expand(self) -> ExpandedFile:
        module = ModuleDecl(split_path(self.source.module), file_path=self.source.path)
        if self._cfg_enabled(self._attrs(self.source.attrs)):
            self._expand_items(self.source.items, module)
        if self._log is not None:
            self._log(f"{self.source.path}: {len(module.items)} item(s) in {module.qualified_name or '<crate>'}")
        return ExpandedFile(self.source, module, list(self.diagnostics.records))

    # items

    def _expand_items(self, items, module: ModuleDecl) -> None:
        for item in items:
            attrs = self._attrs(item.attrs)
            if not self._cfg_enabled(attrs):
                continue
            name = _macro_subject(item.body) if isinstance(item, MacroItem) else getattr(item, "name", None)
            qualified = qualify(module.path, name) if name else (module.qualified_name or None)
            try:
                self._expand_item(item, attrs, module)
            except TranslationError as exc:
                self.diagnostics.record_exception(exc, qualified, item.location)
                module.items.append(SkippedItem(module.path, name, exc.message, item.location))

    def _expand_item(self, item, attrs: list[Attribute], module: ModuleDecl) -> None:
        path = module.path
        if isinstance(item, UseItem):
            for tree in item.trees:
                module.items.append(ImportDecl(path, tree.alias, tree.segments, tree.glob, item.public, item.location))
            return
        if isinstance(item, ConstItem):
            qualified = qualify(path, item.name)
            module.items.append(
                ConstantDecl(
                    path,
                    item.name,
                    self._lower_type(item.type, qualified),
                    self._lower_expr(item.value, qualified),
                    public=item.public,
                    location=item.location,
                )
            )
            return
        if isinstance(item, TypeAliasItem):
            target = self._lower_type(item.type, qualify(path, item.name))
            module.items.append(AliasDecl(path, item.name, target, item.public, item.location))
            return
        if isinstance(item, StructItem):
            module.items.append(self._lower_struct(item, attrs, path))
            return
        if isinstance(item, EnumItem):
            module.items.append(self._lower_enum(item, attrs, path))
            return
        if isinstance(item, ForeignBlock):
            self._lower_foreign_block(item, attrs, module)
            return
        if isinstance(item, ModItem):
            if item.items is None:
                return
            child = ModuleDecl(path + (item.name,), file_path=self.source.path, inline=True, public=item.public, location=item.location)
            self._expand_items(item.items, child)
            module.items.append(child)
            return
        if isinstance(item, MacroItem):
            self._expand_macro(item, attrs, module)
            return
        if isinstance(item, StaticItem):
            self._skip_warning(module, item.name, "statics are not translated", item.location)
            return
        if isinstance(item, OtherItem):
            what = item.kind if item.kind != "function" else "function with a body"
            self._skip_warning(module, item.name, f"{what} is not a declaration", item.location)
            return
        raise UnsupportedConstructError(f"unknown item {type(item).__name__}")

    def _skip_warning(self, module: ModuleDecl, name: Optional[str], message: str, location) -> None:
        qualified = qualify(module.path, name) if name else (module.qualified_name or None)
        self.diagnostics.warning(UNSUPPORTED_CONSTRUCT, qualified, message, location)
        module.items.append(SkippedItem(module.path, name, message, location))

    def _lower_struct(self, item: StructItem, attrs: list[Attribute], module: tuple[str, ...]) -> StructDecl:
        qualified = qualify(module, item.name)
        repr_ = self._parse_repr(attrs, qualified)
        fields = [FieldDecl(field_.name, self._lower_type(field_.type, qualified)) for field_ in item.fields if self._cfg_enabled(self._attrs(field_.attrs))]
        decl = StructDecl(module, item.name, item.kind, fields, public=item.public, location=item.location)
        self._apply_struct_repr(decl, repr_, item.location)
        return decl

    def _apply_struct_repr(self, decl: StructDecl, repr_: _Repr, location) -> None:
        if repr_.integer is not None:
            raise UnsupportedConstructError(f"repr({repr_.integer}) is only meaningful on enums", decl.qualified_name)
        decl.exact = repr_.present
        decl.pack = repr_.packed
        decl.align = repr_.align
        if repr_.transparent:
            decl.layout = LayoutMode.TRANSPARENT
            if len(decl.fields) != 1:
                raise UnsupportedConstructError("repr(transparent) requires exactly one field", decl.qualified_name)
        elif repr_.packed is not None:
            decl.layout = LayoutMode.PACKED
        elif repr_.align is not None:
            decl.layout = LayoutMode.ALIGNED
        elif repr_.c:
            decl.layout = LayoutMode.C
        else:
            decl.layout = LayoutMode.RUST
            self.diagnostics.warning(
                LAYOUT_MISMATCH,
                decl.qualified_name,
                f"{decl.kind} has no repr; translating with C layout",
                location,
            )
        if repr_.packed is not None and repr_.align is not None:
            message = f"packed({repr_.packed}) combined with align({repr_.align}) has no exact equivalent"
            if repr_.c:
                self.diagnostics.error(LAYOUT_MISMATCH, decl.qualified_name, message, location)
            else:
                self.diagnostics.warning(LAYOUT_MISMATCH, decl.qualified_name, message, location)

    def _lower_enum(self, item: EnumItem, attrs: list[Attribute], module: tuple[str, ...]):
        qualified = qualify(module, item.name)
        if not item.variants:
            return OpaqueDecl(module, item.name, item.public, item.location)
        for variant in item.variants:
            if variant.has_data:
                raise UnsupportedConstructError(f"variant {variant.name} carries data", qualified)
        repr_ = self._parse_repr(attrs, qualified)
        if repr_.packed is not None or repr_.align is not None or repr_.transparent:
            raise UnsupportedConstructError("layout hints other than an integer repr on an enum", qualified)
        explicit = repr_.integer is not None or repr_.c
        if repr_.integer is not None:
            discriminant = TypeRef.path((repr_.integer,))
        else:
            discriminant = TypeRef.path(("i32",))
            if not repr_.c:
                self.diagnostics.warning(LAYOUT_MISMATCH, qualified, "enum has no repr; assuming a 32-bit signed discriminant", item.location)
        variants = [
            VariantDecl(variant.name, self._lower_expr(variant.value, qualified) if variant.value is not None else None)
            for variant in item.variants
            if self._cfg_enabled(self._attrs(variant.attrs))
        ]
        return EnumDecl(module, item.name, "tagged", discriminant, variants, explicit, item.public, item.location)

    def _lower_foreign_block(self, block: ForeignBlock, attrs: list[Attribute], module: ModuleDecl) -> None:
        library = self._link_name(attrs) or self.default_library
        abi = block.abi or "C"
        for foreign in block.items:
            item_attrs = self._attrs(foreign.attrs)
            if not self._cfg_enabled(item_attrs):
                continue
            qualified = qualify(module.path, foreign.name)
            try:
                if isinstance(foreign, ForeignFn):
                    params = [ParamDecl(param.name, self._lower_type(param.type, qualified)) for param in foreign.params]
                    returns = self._lower_type(foreign.returns, qualified) if foreign.returns is not None else TypeRef.void()
                    linkage = self._string_attr(item_attrs, "link_name") or foreign.name
                    module.items.append(
                        FunctionDecl(
                            module.path,
                            foreign.name,
                            abi,
                            params,
                            returns,
                            linkage,
                            library,
                            foreign.variadic,
                            foreign.public,
                            foreign.location,
                        )
                    )
                elif isinstance(foreign, ForeignType):
                    module.items.append(OpaqueDecl(module.path, foreign.name, foreign.public, foreign.location))
                else:
                    self._skip_warning(module, foreign.name, "extern statics are not translated", foreign.location)
            except TranslationError as exc:
                self.diagnostics.record_exception(exc, qualified, foreign.location)
                module.items.append(SkippedItem(module.path, foreign.name, exc.message, foreign.location))

    # macros

    def _expand_macro(self, item: MacroItem, attrs: list[Attribute], module: ModuleDecl) -> None:
        subject = _macro_subject(item.body)
        qualified = qualify(module.path, subject) if subject else (module.qualified_name or None)
        if item.name not in _MACRO_HANDLERS:
            raise UnsupportedConstructError(f"unrecognized macro {item.name}!", qualified)
        handler_name = _MACRO_HANDLERS[item.name]
        if handler_name is None:
            # bitfield accessors only; the host struct already carries the storage
            return
        handler = getattr(self, handler_name)
        cursor = TokenCursor(item.body.tokens, item.location)
        try:
            decls = handler(cursor, module.path, item)
        except ParseError as exc:
            raise UnsupportedConstructError(f"malformed {item.name}! invocation: {exc.message}", qualified) from exc
        if self._log is not None:
            self._log(f"{item.name}! -> {', '.join(getattr(decl, 'name', '?') for decl in decls)}")
        module.items.extend(decls)

    def _macro_struct(self, cursor: TokenCursor, module: tuple[str, ...], item: MacroItem) -> list:
        attrs = self._attrs(cursor.parse_attrs())
        cursor.parse_visibility()
        cursor.expect_ident("struct")
        name = cursor.expect_ident()
        fields = cursor.sub(cursor.expect_group("{")).parse_named_fields()
        cursor.expect_end()
        qualified = qualify(module, name)
        repr_ = self._parse_repr(attrs, qualified)
        repr_.c = True
        repr_.present = True
        decl = StructDecl(
            module,
            name,
            "struct",
            [FieldDecl(field_.name, self._lower_type(field_.type, qualified)) for field_ in fields if self._cfg_enabled(self._attrs(field_.attrs))],
            public=True,
            location=item.location,
        )
        self._apply_struct_repr(decl, repr_, item.location)
        return [decl]

    def _macro_enum(self, cursor: TokenCursor, module: tuple[str, ...], item: MacroItem) -> list:
        cursor.parse_attrs()
        cursor.parse_visibility()
        cursor.expect_ident("enum")
        name = cursor.expect_ident()
        discriminant = TypeRef.path(("u32",))
        if cursor.eat_punct(":"):
            discriminant = self._lower_type(cursor.parse_type(), qualify(module, name))
        variants = cursor.sub(cursor.expect_group("{")).parse_variants()
        cursor.expect_end()
        qualified = qualify(module, name)
        lowered = []
        for variant in variants:
            if variant.has_data:
                raise UnsupportedConstructError(f"variant {variant.name} carries data", qualified)
            if not self._cfg_enabled(self._attrs(variant.attrs)):
                continue
            expr = self._lower_expr(variant.value, qualified) if variant.value is not None else None
            lowered.append(VariantDecl(variant.name, expr))
        return [EnumDecl(module, name, "clike", discriminant, lowered, True, True, item.location)]

    def _macro_guid(self, cursor: TokenCursor, module: tuple[str, ...], item: MacroItem) -> list:
        parts = split_commas(cursor.tokens)
        if len(parts) != 12:
            raise ParseError(f"expected a name and 11 components, found {len(parts)} argument(s)", item.location)
        name_cursor = TokenCursor(parts[0], item.location)
        name = name_cursor.expect_ident()
        name_cursor.expect_end()
        qualified = qualify(module, name)
        values = []
        for part in parts[1:]:
            part_cursor = TokenCursor(part, item.location)
            values.append(self._lower_expr(part_cursor.parse_expr(), qualified))
            part_cursor.expect_end()
        literal = ConstExpr(
            kind="struct",
            segments=("GUID",),
            fields=(
                ("Data1", values[0]),
                ("Data2", values[1]),
                ("Data3", values[2]),
                ("Data4", ConstExpr(kind="array", operands=tuple(values[3:]))),
            ),
        )
        return [ConstantDecl(module, name, TypeRef.path(("GUID",)), literal, guid=True, location=item.location)]

    def _macro_bitflags(self, cursor: TokenCursor, module: tuple[str, ...], item: MacroItem) -> list:
        decls = []
        while not cursor.at_end():
            attrs = self._attrs(cursor.parse_attrs())
            public = cursor.parse_visibility()
            cursor.expect_ident("struct")
            name = cursor.expect_ident()
            qualified = qualify(module, name)
            cursor.expect_punct(":")
            bits_type = self._lower_type(cursor.parse_type(), qualified)
            body = cursor.sub(cursor.expect_group("{"))
            struct_path = module + (name,)
            constants = []
            while not body.at_end():
                const_attrs = self._attrs(body.parse_attrs())
                body.expect_ident("const")
                const_name = body.expect_ident()
                body.expect_punct("=")
                expr = self._lower_expr(body.parse_expr(), qualified)
                body.expect_punct(";")
                if self._cfg_enabled(const_attrs):
                    constants.append(
                        ConstantDecl(struct_path, const_name, bits_type, expr, owner=qualified, location=item.location)
                    )
            if not self._cfg_enabled(attrs):
                continue
            decls.append(
                StructDecl(
                    module,
                    name,
                    "struct",
                    [FieldDecl("bits", bits_type)],
                    layout=LayoutMode.TRANSPARENT,
                    constants=constants,
                    public=public,
                    location=item.location,
                )
            )
        return decls

    def _macro_handle(self, cursor: TokenCursor, module: tuple[str, ...], item: MacroItem) -> list:
        handle = cursor.expect_ident()
        cursor.expect_punct(",")
        opaque = cursor.expect_ident()
        cursor.eat_punct(",")
        cursor.expect_end()
        return [
            OpaqueDecl(module, opaque, True, item.location),
            AliasDecl(module, handle, TypeRef.pointer(TypeRef.path((opaque,)), mutable=True), True, item.location),
        ]

    def _macro_union(self, cursor: TokenCursor, module: tuple[str, ...], item: MacroItem) -> list:
        attrs = self._attrs(cursor.parse_attrs())
        cursor.parse_visibility()
        cursor.expect_ident("union")
        name = cursor.expect_ident()
        qualified = qualify(module, name)
        body = cursor.sub(cursor.expect_group("{"))
        cursor.expect_end()
        storages = []
        while body.is_group("["):
            storages.append(body.parse_type())
        body.expect_punct(",")
        fields = []
        while not body.at_end():
            field_attrs = self._attrs(body.parse_attrs())
            body.parse_visibility()
            field_name = body.expect_ident()
            if body.is_ident():
                body.next()  # the `_mut` accessor name
            body.expect_punct(":")
            field_type = self._lower_type(body.parse_type(), qualified)
            if self._cfg_enabled(field_attrs):
                fields.append(FieldDecl(field_name, field_type))
            if not body.eat_punct(","):
                break
        body.expect_end()
        if not storages or len(storages) > 2:
            raise ParseError("expected one or two storage arrays", item.location)
        storage = storages[0] if len(storages) == 1 or self.native.pointer_width == 32 else storages[1]
        decl = StructDecl(module, name, "union", fields, storage=self._lower_type(storage, qualified), public=True, location=item.location)
        repr_ = self._parse_repr(attrs, qualified)
        repr_.c = True
        repr_.present = True
        self._apply_struct_repr(decl, repr_, item.location)
        return [decl]

    def _macro_fn(self, cursor: TokenCursor, module: tuple[str, ...], item: MacroItem) -> list:
        convention = cursor.expect_ident()
        if convention not in _FN_MACRO_ABIS:
            raise ParseError(f"unknown calling convention {convention!r}", item.location)
        name = cursor.expect_ident()
        qualified = qualify(module, name)
        inner = cursor.sub(cursor.expect_group("("))
        params = []
        while not inner.at_end():
            if inner.is_ident() and inner.is_punct(":", 1) and not inner.is_punct("::", 1):
                inner.next()
                inner.next()
            params.append(self._lower_type(inner.parse_type(), qualified))
            if not inner.eat_punct(","):
                break
        inner.expect_end()
        returns = cursor.parse_return_type()
        cursor.expect_end()
        target = TypeRef(
            kind="fnptr",
            callconv=_FN_MACRO_ABIS[convention],
            params=tuple(params),
            returns=self._lower_type(returns, qualified) if returns is not None else TypeRef.void(),
            nullable=True,
        )
        return [AliasDecl(module, name, target, True, item.location)]

    # attributes

    def _attrs(self, attrs: list[Attribute]) -> list[Attribute]:
        """Expand `cfg_attr` against the native target."""

        out: list[Attribute] = []
        for attr in attrs:
            if attr.name != "cfg_attr":
                out.append(attr)
                continue
            group = attr.tokens[1] if len(attr.tokens) > 1 else None
            if not isinstance(group, Group):
                continue
            parts = split_commas(group.tokens)
            if parts and self._eval_cfg(parts[0]):
                out.extend(self._attrs([Attribute(tuple(part), attr.inner) for part in parts[1:]]))
        return out

    def _cfg_enabled(self, attrs: list[Attribute]) -> bool:
        for attr in attrs:
            if attr.name != "cfg":
                continue
            group = attr.tokens[1] if len(attr.tokens) > 1 else None
            if isinstance(group, Group) and not self._eval_cfg(list(group.tokens)):
                return False
        return True

    def _eval_cfg(self, tokens) -> bool:
        if not tokens or not isinstance(tokens[0], Tok):
            return False
        name = tokens[0].value
        if len(tokens) == 2 and isinstance(tokens[1], Group) and name in {"all", "any", "not"}:
            results = [self._eval_cfg(part) for part in split_commas(tokens[1].tokens)]
            if name == "all":
                return all(results)
            if name == "any":
                return any(results)
            return not results[0] if results else True
        if len(tokens) == 3 and isinstance(tokens[2], Tok) and tokens[2].kind == "string":
            value = tokens[2].value[1:-1]
            if name == "target_pointer_width":
                return value == str(self.native.pointer_width)
            if name == "target_arch":
                return value == self.native.arch
            if name == "target_os":
                return value == self.native.os
            if name == "target_family":
                return value == self.native.family
            if name == "feature":
                return self.native.has_feature(value)
            return False
        if len(tokens) == 1 and name in {"windows", "unix"}:
            return self.native.family == name
        return False

    def _parse_repr(self, attrs: list[Attribute], qualified: Optional[str]) -> _Repr:
        repr_ = _Repr()
        for attr in attrs:
            if attr.name != "repr":
                continue
            group = attr.tokens[1] if len(attr.tokens) > 1 else None
            if not isinstance(group, Group):
                raise UnsupportedConstructError("malformed repr attribute", qualified)
            repr_.present = True
            for part in split_commas(group.tokens):
                head = part[0]
                if not isinstance(head, Tok):
                    raise UnsupportedConstructError("malformed repr attribute", qualified)
                arg = _group_int(part[1]) if len(part) > 1 else None
                if head.value == "C":
                    repr_.c = True
                elif head.value == "packed":
                    repr_.packed = arg or 1
                elif head.value == "align" and arg:
                    repr_.align = arg
                elif head.value == "transparent":
                    repr_.transparent = True
                elif head.value in {"u8", "u16", "u32", "u64", "i8", "i16", "i32", "i64", "usize", "isize"}:
                    repr_.integer = head.value
                else:
                    raise UnsupportedConstructError(f"unknown repr hint {head.value!r}", qualified)
        return repr_

    def _link_name(self, attrs: list[Attribute]) -> Optional[str]:
        for attr in attrs:
            if attr.name != "link" or len(attr.tokens) < 2 or not isinstance(attr.tokens[1], Group):
                continue
            for part in split_commas(attr.tokens[1].tokens):
                if len(part) == 3 and isinstance(part[0], Tok) and part[0].value == "name" and isinstance(part[2], Tok):
                    return part[2].value[1:-1]
        return None

    def _string_attr(self, attrs: list[Attribute], name: str) -> Optional[str]:
        for attr in attrs:
            if attr.name == name and len(attr.tokens) == 3 and isinstance(attr.tokens[2], Tok) and attr.tokens[2].kind == "string":
                return attr.tokens[2].value[1:-1]
        return None

    # types and expressions

    def _lower_type(self, syn, qualified: Optional[str]) -> TypeRef:
        if isinstance(syn, PtrType):
            return TypeRef.pointer(self._lower_type(syn.target, qualified), syn.mutable)
        if isinstance(syn, ArrayType):
            return TypeRef.array(self._lower_type(syn.element, qualified), self._lower_expr(syn.length, qualified))
        if isinstance(syn, FnType):
            params = tuple(self._lower_type(param.type, qualified) for param in syn.params)
            returns = self._lower_type(syn.returns, qualified) if syn.returns is not None else TypeRef.void()
            return TypeRef(kind="fnptr", callconv=syn.abi or "Rust", params=params, returns=returns, variadic=syn.variadic)
        if isinstance(syn, TupleType):
            if syn.elements:
                raise UnsupportedConstructError("tuple types have no FFI layout", qualified)
            return TypeRef.void()
        if isinstance(syn, PathType):
            names = tuple(segment.name for segment in syn.segments)
            generics = tuple(self._lower_type(arg, qualified) for segment in syn.segments for arg in segment.generics)
            if names[-1] == "Option" and len(generics) == 1 and generics[0].kind == "fnptr":
                return TypeRef(
                    kind="fnptr",
                    callconv=generics[0].callconv,
                    params=generics[0].params,
                    returns=generics[0].returns,
                    variadic=generics[0].variadic,
                    nullable=True,
                )
            return TypeRef.path(names, generics)
        if isinstance(syn, UnsupportedType):
            raise UnsupportedConstructError(f"{syn.description} types are not FFI declarations", qualified)
        raise UnsupportedConstructError(f"unsupported type {type(syn).__name__}", qualified)

    def _lower_expr(self, syn, qualified: Optional[str]) -> ConstExpr:
        if isinstance(syn, LitExpr):
            return ConstExpr(kind=syn.kind, value=syn.value, suffix=syn.suffix)
        if isinstance(syn, PathExpr):
            return ConstExpr(kind="path", segments=syn.segments)
        if isinstance(syn, UnaryExpr):
            return ConstExpr(kind="unary", value=syn.op, operands=(self._lower_expr(syn.operand, qualified),))
        if isinstance(syn, BinaryExpr):
            return ConstExpr(
                kind="binary",
                value=syn.op,
                operands=(self._lower_expr(syn.left, qualified), self._lower_expr(syn.right, qualified)),
            )
        if isinstance(syn, CastExpr):
            return ConstExpr(kind="cast", operands=(self._lower_expr(syn.operand, qualified),), type=self._lower_type(syn.type, qualified))
        if isinstance(syn, ArrayExpr):
            return ConstExpr(kind="array", operands=tuple(self._lower_expr(element, qualified) for element in syn.elements))
        if isinstance(syn, RepeatExpr):
            return ConstExpr(kind="repeat", operands=(self._lower_expr(syn.element, qualified), self._lower_expr(syn.count, qualified)))
        if isinstance(syn, StructExpr):
            return ConstExpr(
                kind="struct",
                segments=syn.path,
                fields=tuple((name, self._lower_expr(value, qualified)) for name, value in syn.fields),
            )
        if isinstance(syn, UnsupportedExpr):
            raise UnsupportedConstructError(f"{syn.description} is not a constant expression", qualified)
        raise UnsupportedConstructError(f"unsupported expression {type(syn).__name__}", qualified)


def _group_int(tree) -> Optional[int]:
    if not isinstance(tree, Group) or len(tree.tokens) != 1:
        return None
    tok = tree.tokens[0]
    if isinstance(tok, Tok) and tok.kind == "number":
        try:
            return int(tok.value.replace("_", ""), 0)
        except ValueError:
            return None
    return None


def _macro_subject(body: Group) -> Optional[str]:
    """Best-effort declared name of a macro invocation, for diagnostics."""

    tokens = body.tokens
    for idx, tok in enumerate(tokens):
        if not isinstance(tok, Tok) or tok.kind != "ident":
            continue
        if tok.value in {"struct", "enum", "union", "interface", "class"} and idx + 1 < len(tokens):
            nxt = tokens[idx + 1]
            if isinstance(nxt, Tok) and nxt.kind == "ident":
                return nxt.value
            return None
        if tok.value in {"pub", "stdcall", "cdecl"}:
            continue
        return tok.value
    return None
