"""Reference front end: Rust declaration source -> :mod:`ffi_syntax` nodes.

lark lexes the file and checks delimiter balance, producing token trees;
items are then read off the top-level token trees with a :class:`TokenCursor`.
A malformed item is reported as a ``ParseError`` diagnostic and skipped.
"""

from __future__ import annotations

from typing import Optional

from lark import Lark, Token, Transformer
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

from .ffi_diagnostics import ERROR, PARSE_ERROR, Diagnostic, Location, ParseError
from .ffi_syntax import (
    ConstItem,
    EnumItem,
    ForeignBlock,
    ForeignFn,
    ForeignType,
    Group,
    Item,
    MacroItem,
    ModItem,
    OtherItem,
    Param,
    SourceFile,
    StaticItem,
    StructItem,
    Tok,
    TypeAliasItem,
    UseItem,
    UseTree,
)
from .ffi_tokens import TokenCursor


TOKEN_TREE_GRAMMAR = r"""
start: _tt*

_tt: paren | bracket | brace | IDENT | NUMBER | STRING | CHAR | LIFETIME | PUNCT

paren: LPAR _tt* RPAR
bracket: LSQB _tt* RSQB
brace: LBRACE _tt* RBRACE

LPAR: "("
RPAR: ")"
LSQB: "["
RSQB: "]"
LBRACE: "{"
RBRACE: "}"

IDENT: /(r#)?[A-Za-z_][A-Za-z0-9_]*/
NUMBER: /(0x[0-9a-fA-F_]+|0o[0-7_]+|0b[01_]+|[0-9][0-9_]*(\.[0-9][0-9_]*)?([eE][+-]?[0-9_]+)?)([iu](8|16|32|64|128|size)|f32|f64)?/
STRING.2: /b?"(\\.|[^"\\])*"/
CHAR.2: /b?'(\\u\{[0-9a-fA-F_]+\}|\\x[0-9a-fA-F]{2}|\\.|[^'\\\n])'/
LIFETIME: /'[A-Za-z_][A-Za-z0-9_]*/
PUNCT: /[!#$%&*+,\-.\/:;<=>?@^|~]/

LINE_COMMENT: /\/\/[^\n]*/
BLOCK_COMMENT: /\/\*(.|\n)*?\*\//

%import common.WS
%ignore WS
%ignore LINE_COMMENT
%ignore BLOCK_COMMENT
"""

_PARSER = Lark(TOKEN_TREE_GRAMMAR, parser="lalr", start="start")

_TERMINAL_KINDS = {
    "IDENT": "ident",
    "NUMBER": "number",
    "STRING": "string",
    "CHAR": "char",
    "LIFETIME": "lifetime",
    "PUNCT": "punct",
}


class _TokenTreeBuilder(Transformer):
    def __init__(self, path: str) -> None:
        super().__init__()
        self._path = path

    def _location(self, token: Token) -> Location:
        return Location(self._path, token.line, token.column)

    def _convert(self, child):
        if isinstance(child, Token):
            return Tok(_TERMINAL_KINDS[child.type], str(child), self._location(child))
        return child

    def _group(self, delimiter: str, children) -> Group:
        opener = children[0]
        inner = tuple(self._convert(child) for child in children[1:-1])
        return Group(delimiter, inner, self._location(opener))

    def paren(self, children) -> Group:
        return self._group("(", children)

    def bracket(self, children) -> Group:
        return self._group("[", children)

    def brace(self, children) -> Group:
        return self._group("{", children)

    def start(self, children) -> list:
        return [self._convert(child) for child in children]


def tokenize(text: str, path: str) -> list:
    """Lex ``text`` into balanced token trees."""

    try:
        tree = _PARSER.parse(text)
    except UnexpectedInput as exc:
        raise ParseError(_describe_lark_error(exc), _lark_location(exc, path)) from exc
    return _TokenTreeBuilder(path).transform(tree)


def _describe_lark_error(exc: UnexpectedInput) -> str:
    if isinstance(exc, UnexpectedCharacters):
        return f"unexpected character {exc.char!r}"
    if isinstance(exc, UnexpectedEOF):
        return "unexpected end of file (unclosed delimiter)"
    if isinstance(exc, UnexpectedToken):
        if exc.token.type == "$END":
            return "unexpected end of file (unclosed delimiter)"
        return f"unexpected {exc.token!s} (unbalanced delimiter)"
    return str(exc)


def _lark_location(exc: UnexpectedInput, path: str) -> Location:
    line = getattr(exc, "line", None)
    column = getattr(exc, "column", None)
    if not isinstance(line, int) or line < 0:
        line = None
    if not isinstance(column, int) or column < 0:
        column = None
    return Location(path, line, column)


def parse_source(text: str, path: str, module: str = "") -> SourceFile:
    """Parse one file; failures are carried on ``SourceFile.diagnostics``."""

    source = SourceFile(module=module, path=path, items=[])
    try:
        trees = tokenize(text, path)
    except ParseError as exc:
        source.diagnostics.append(Diagnostic(ERROR, PARSE_ERROR, module or None, exc.message, exc.location))
        return source

    cursor = TokenCursor(trees, Location(path))
    source.attrs = cursor.parse_attrs(inner=True)
    source.items = _parse_items(cursor, source)
    return source


def _parse_items(cursor: TokenCursor, source: SourceFile) -> list[Item]:
    items: list[Item] = []
    while not cursor.at_end():
        start = cursor.pos
        try:
            item = _parse_item(cursor, source)
        except ParseError as exc:
            source.diagnostics.append(Diagnostic(ERROR, PARSE_ERROR, source.module or None, exc.message, exc.location))
            cursor.pos = start
            cursor.skip_item()
            continue
        if item is not None:
            items.append(item)
    return items


def _parse_item(cursor: TokenCursor, source: SourceFile) -> Optional[Item]:
    attrs = cursor.parse_attrs()
    location = cursor.location()
    public = cursor.parse_visibility()

    if cursor.eat_punct(";"):
        return None
    if cursor.eat_ident("use"):
        trees = _parse_use_tree(cursor, ())
        cursor.expect_punct(";")
        return UseItem(trees, public, attrs, location)
    if cursor.is_ident("const") and not cursor.is_ident("fn", 1) and not cursor.is_ident("unsafe", 1):
        cursor.next()
        name = cursor.expect_ident()
        cursor.expect_punct(":")
        type_ = cursor.parse_type()
        cursor.expect_punct("=")
        value = cursor.parse_expr()
        cursor.expect_punct(";")
        return ConstItem(name, type_, value, public, attrs, location)
    if cursor.eat_ident("static"):
        cursor.eat_ident("mut")
        name = cursor.expect_ident()
        cursor.expect_punct(":")
        type_ = cursor.parse_type()
        if cursor.eat_punct("="):
            cursor.parse_expr()
        cursor.expect_punct(";")
        return StaticItem(name, type_, public, attrs, location)
    if cursor.eat_ident("type"):
        name = cursor.expect_ident()
        if cursor.is_punct("<"):
            cursor.skip_item()
            return OtherItem("generic type alias", name, attrs, location)
        cursor.expect_punct("=")
        type_ = cursor.parse_type()
        cursor.expect_punct(";")
        return TypeAliasItem(name, type_, public, attrs, location)
    if cursor.is_ident("struct") or (cursor.is_ident("union") and cursor.is_ident(offset=1)):
        return _parse_struct(cursor, public, attrs, location)
    if cursor.eat_ident("enum"):
        name = cursor.expect_ident()
        if cursor.is_punct("<"):
            cursor.skip_item()
            return OtherItem("generic enum", name, attrs, location)
        body = cursor.expect_group("{")
        variants = cursor.sub(body).parse_variants()
        return EnumItem(name, variants, public, attrs, location)
    if cursor.is_ident("mod"):
        cursor.next()
        name = cursor.expect_ident()
        if cursor.eat_punct(";"):
            return ModItem(name, None, public, attrs, location)
        body = cursor.sub(cursor.expect_group("{"))
        body.parse_attrs(inner=True)
        return ModItem(name, _parse_items(body, source), public, attrs, location)
    if cursor.is_ident("extern") and cursor.is_ident("crate", 1):
        cursor.skip_item()
        return None
    if _starts_foreign_block(cursor):
        cursor.eat_ident("unsafe")
        abi = cursor.parse_abi()
        body = cursor.sub(cursor.expect_group("{"))
        body.parse_attrs(inner=True)
        return ForeignBlock(abi, _parse_foreign_items(body), attrs, location)
    if cursor.is_ident("macro_rules") and cursor.is_punct("!", 1):
        cursor.pos += 2
        name = cursor.expect_ident()
        cursor.skip_item()
        return OtherItem("macro_rules", name, attrs, location)
    if _is_macro_call(cursor):
        segments = cursor.parse_path_segments(generics=False)
        cursor.expect_punct("!")
        tok = cursor.peek()
        if not isinstance(tok, Group):
            raise cursor.error("expected macro body")
        cursor.next()
        cursor.eat_punct(";")
        return MacroItem(segments[-1].name, tok, attrs, location)
    for keyword in ("impl", "trait", "fn", "const", "unsafe", "async", "extern", "auto"):
        if cursor.is_ident(keyword):
            kind, name = _describe_other(cursor)
            cursor.skip_item()
            return OtherItem(kind, name, attrs, location)
    raise cursor.error("expected item")


def _parse_struct(cursor: TokenCursor, public: bool, attrs, location) -> Item:
    kind = cursor.expect_ident()
    name = cursor.expect_ident()
    if cursor.is_punct("<"):
        cursor.skip_item()
        return OtherItem(f"generic {kind}", name, attrs, location)
    if cursor.eat_punct(";"):
        return StructItem(kind, name, [], False, public, attrs, location)
    if cursor.is_group("("):
        fields = cursor.sub(cursor.expect_group("(")).parse_tuple_fields()
        cursor.expect_punct(";")
        return StructItem(kind, name, fields, True, public, attrs, location)
    fields = cursor.sub(cursor.expect_group("{")).parse_named_fields()
    return StructItem(kind, name, fields, False, public, attrs, location)


def _starts_foreign_block(cursor: TokenCursor) -> bool:
    offset = 1 if cursor.is_ident("unsafe") else 0
    if not cursor.is_ident("extern", offset):
        return False
    nxt = cursor.peek(offset + 1)
    if isinstance(nxt, Tok) and nxt.kind == "string":
        return cursor.is_group("{", offset + 2)
    return cursor.is_group("{", offset + 1)


def _is_macro_call(cursor: TokenCursor) -> bool:
    offset = 0
    if cursor.is_punct("::"):
        offset = 2
    while cursor.is_ident(offset=offset):
        if cursor.is_punct("::", offset + 1):
            offset += 3
            continue
        return cursor.is_punct("!", offset + 1) and not cursor.is_punct("!=", offset + 1)
    return False


def _describe_other(cursor: TokenCursor) -> tuple[str, Optional[str]]:
    offset = 0
    while offset < 6:
        tok = cursor.peek(offset)
        if not isinstance(tok, Tok):
            break
        if tok.kind == "ident" and tok.value in {"fn", "trait", "impl"}:
            kind = "function" if tok.value == "fn" else tok.value
            nxt = cursor.peek(offset + 1)
            name = nxt.value if isinstance(nxt, Tok) and nxt.kind == "ident" and tok.value != "impl" else None
            return kind, name
        offset += 1
    return "item", None


def _parse_use_tree(cursor: TokenCursor, prefix: tuple[str, ...]) -> list[UseTree]:
    cursor.eat_punct("::")
    if cursor.eat_punct("*"):
        return [UseTree(prefix, None, True)]
    if cursor.is_group("{"):
        inner = cursor.sub(cursor.expect_group("{"))
        trees: list[UseTree] = []
        while not inner.at_end():
            if inner.is_ident("self") and not inner.is_punct("::", 1):
                inner.next()
                alias = prefix[-1] if prefix else None
                if inner.eat_ident("as"):
                    alias = inner.expect_ident()
                trees.append(UseTree(prefix, alias))
            else:
                trees.extend(_parse_use_tree(inner, prefix))
            if not inner.eat_punct(","):
                break
        inner.expect_end()
        return trees
    name = cursor.expect_ident()
    if cursor.eat_punct("::"):
        return _parse_use_tree(cursor, prefix + (name,))
    alias = name
    if cursor.eat_ident("as"):
        alias = cursor.expect_ident()
    return [UseTree(prefix + (name,), alias)]


def _parse_foreign_items(cursor: TokenCursor) -> list:
    items: list = []
    while not cursor.at_end():
        attrs = cursor.parse_attrs()
        location = cursor.location()
        public = cursor.parse_visibility()
        cursor.eat_ident("safe")
        cursor.eat_ident("unsafe")
        if cursor.eat_ident("fn"):
            name = cursor.expect_ident()
            if cursor.is_punct("<"):
                raise cursor.error("generic foreign function")
            params, variadic = _parse_params(cursor.sub(cursor.expect_group("(")))
            returns = cursor.parse_return_type()
            cursor.expect_punct(";")
            items.append(ForeignFn(name, params, returns, variadic, public, attrs, location))
            continue
        if cursor.eat_ident("static"):
            cursor.eat_ident("mut")
            name = cursor.expect_ident()
            cursor.expect_punct(":")
            type_ = cursor.parse_type()
            cursor.expect_punct(";")
            items.append(StaticItem(name, type_, public, attrs, location))
            continue
        if cursor.eat_ident("type"):
            name = cursor.expect_ident()
            cursor.expect_punct(";")
            items.append(ForeignType(name, public, attrs, location))
            continue
        raise cursor.error("expected foreign item")
    return items


def _parse_params(cursor: TokenCursor) -> tuple[list[Param], bool]:
    params: list[Param] = []
    variadic = False
    while not cursor.at_end():
        cursor.parse_attrs()
        if cursor.eat_punct("..."):
            variadic = True
            cursor.eat_punct(",")
            break
        cursor.eat_ident("mut")
        name = cursor.expect_ident()
        cursor.expect_punct(":")
        params.append(Param(name, cursor.parse_type()))
        if not cursor.eat_punct(","):
            break
    cursor.expect_end()
    return params, variadic
