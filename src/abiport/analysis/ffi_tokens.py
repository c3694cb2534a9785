from __future__ import annotations

import re
from typing import Optional, Sequence

from .ffi_diagnostics import Location, ParseError
from .ffi_syntax import (
    ArrayExpr,
    ArrayType,
    Attribute,
    BinaryExpr,
    CastExpr,
    Field,
    FnParam,
    FnType,
    Group,
    LitExpr,
    PathExpr,
    PathSegment,
    PathType,
    PtrType,
    RepeatExpr,
    StructExpr,
    SynExpr,
    SynType,
    Tok,
    TokenTree,
    TupleType,
    UnaryExpr,
    UnsupportedExpr,
    UnsupportedType,
    Variant,
)


_NUMBER_RE = re.compile(
    r"^(?P<body>0x[0-9a-fA-F_]+|0o[0-7_]+|0b[01_]+|[0-9][0-9_]*(?:\.[0-9][0-9_]*)?(?:[eE][+-]?[0-9_]+)?)"
    r"(?P<suffix>[iu](?:8|16|32|64|128|size)|f32|f64)?$"
)

_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "0": "\0", "\\": "\\", "'": "'", '"': '"'}

# Binary operators by precedence, loosest first. Multi-character operators
# arrive as adjacent single-character punctuation.
_BINARY_LEVELS: list[tuple[str, ...]] = [
    ("||",),
    ("&&",),
    ("==", "!=", "<=", ">=", "<", ">"),
    ("|",),
    ("^",),
    ("&",),
    ("<<", ">>"),
    ("+", "-"),
    ("*", "/", "%"),
]


def parse_number(text: str) -> LitExpr:
    match = _NUMBER_RE.match(text)
    if match is None:
        raise ValueError(f"malformed numeric literal {text!r}")
    body = match.group("body").replace("_", "")
    suffix = match.group("suffix")
    lowered = body.lower()
    if lowered.startswith("0x"):
        return LitExpr("int", int(lowered[2:], 16), suffix)
    if lowered.startswith("0o"):
        return LitExpr("int", int(lowered[2:], 8), suffix)
    if lowered.startswith("0b"):
        return LitExpr("int", int(lowered[2:], 2), suffix)
    if suffix in {"f32", "f64"} or "." in body or "e" in lowered:
        return LitExpr("float", float(body), suffix)
    return LitExpr("int", int(body), suffix)


def unescape(text: str) -> str:
    out: list[str] = []
    idx = 0
    while idx < len(text):
        ch = text[idx]
        if ch != "\\" or idx + 1 >= len(text):
            out.append(ch)
            idx += 1
            continue
        nxt = text[idx + 1]
        if nxt == "x":
            out.append(chr(int(text[idx + 2 : idx + 4], 16)))
            idx += 4
            continue
        if nxt == "u" and text[idx + 2 : idx + 3] == "{":
            end = text.index("}", idx)
            out.append(chr(int(text[idx + 3 : end].replace("_", ""), 16)))
            idx = end + 1
            continue
        out.append(_ESCAPES.get(nxt, nxt))
        idx += 2
    return "".join(out)


def literal_from_token(tok: Tok) -> LitExpr:
    if tok.kind == "number":
        return parse_number(tok.value)
    if tok.kind == "string":
        body = tok.value[1:] if tok.value.startswith("b") else tok.value
        return LitExpr("str", unescape(body[1:-1]))
    if tok.kind == "char":
        body = tok.value[1:] if tok.value.startswith("b") else tok.value
        return LitExpr("int", ord(unescape(body[1:-1])), "u8" if tok.value.startswith("b") else "u32")
    raise ValueError(f"token {tok.value!r} is not a literal")


def split_commas(tokens: Sequence[TokenTree]) -> list[list[TokenTree]]:
    parts: list[list[TokenTree]] = [[]]
    for tok in tokens:
        if isinstance(tok, Tok) and tok.kind == "punct" and tok.value == ",":
            parts.append([])
            continue
        parts[-1].append(tok)
    if not parts[-1]:
        parts.pop()
    return parts


def token_location(tree: Optional[TokenTree]) -> Optional[Location]:
    if tree is None:
        return None
    return tree.location


class TokenCursor:
    """Sequential reader over one level of a token tree."""

    def __init__(self, tokens: Sequence[TokenTree], end_location: Optional[Location] = None) -> None:
        self.tokens = list(tokens)
        self.pos = 0
        self._end_location = end_location

    # primitive access

    def peek(self, offset: int = 0) -> Optional[TokenTree]:
        idx = self.pos + offset
        if 0 <= idx < len(self.tokens):
            return self.tokens[idx]
        return None

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def next(self) -> TokenTree:
        tok = self.peek()
        if tok is None:
            raise self.error("unexpected end of input")
        self.pos += 1
        return tok

    def location(self) -> Optional[Location]:
        tok = self.peek()
        if tok is None:
            if self.tokens:
                return token_location(self.tokens[-1])
            return self._end_location
        return token_location(tok)

    def error(self, message: str) -> ParseError:
        tok = self.peek()
        if tok is not None:
            found = tok.value if isinstance(tok, Tok) else tok.delimiter
            message = f"{message} (found {found!r})"
        return ParseError(message, self.location())

    def is_punct(self, chars: str, offset: int = 0) -> bool:
        for idx, ch in enumerate(chars):
            tok = self.peek(offset + idx)
            if not isinstance(tok, Tok) or tok.kind != "punct" or tok.value != ch:
                return False
        return True

    def is_ident(self, value: Optional[str] = None, offset: int = 0) -> bool:
        tok = self.peek(offset)
        if not isinstance(tok, Tok) or tok.kind != "ident":
            return False
        return value is None or tok.value == value

    def is_group(self, delimiter: str, offset: int = 0) -> bool:
        tok = self.peek(offset)
        return isinstance(tok, Group) and tok.delimiter == delimiter

    def eat_punct(self, chars: str) -> bool:
        if self.is_punct(chars):
            self.pos += len(chars)
            return True
        return False

    def eat_ident(self, value: str) -> bool:
        if self.is_ident(value):
            self.pos += 1
            return True
        return False

    def expect_punct(self, chars: str) -> None:
        if not self.eat_punct(chars):
            raise self.error(f"expected {chars!r}")

    def expect_ident(self, value: Optional[str] = None) -> str:
        if not self.is_ident(value):
            raise self.error(f"expected {value!r}" if value else "expected identifier")
        tok = self.next()
        assert isinstance(tok, Tok)
        return _strip_raw(tok.value)

    def expect_group(self, delimiter: str) -> Group:
        if not self.is_group(delimiter):
            raise self.error(f"expected {delimiter!r} group")
        tok = self.next()
        assert isinstance(tok, Group)
        return tok

    def expect_end(self) -> None:
        if not self.at_end():
            raise self.error("unexpected trailing tokens")

    def sub(self, group: Group) -> "TokenCursor":
        return TokenCursor(group.tokens, group.location)

    def skip_item(self) -> None:
        """Skip to just after the next `;` or brace group at this level."""

        while not self.at_end():
            tok = self.next()
            if isinstance(tok, Group) and tok.delimiter == "{":
                self.eat_punct(";")
                return
            if isinstance(tok, Tok) and tok.kind == "punct" and tok.value == ";":
                return

    # attributes and visibility

    def parse_attrs(self, inner: bool = False) -> list[Attribute]:
        attrs: list[Attribute] = []
        while True:
            if inner and self.is_punct("#!") and self.is_group("[", 2):
                self.pos += 2
                attrs.append(Attribute(self.expect_group("[").tokens, inner=True))
                continue
            if not inner and self.is_punct("#") and self.is_group("[", 1):
                self.pos += 1
                attrs.append(Attribute(self.expect_group("[").tokens))
                continue
            return attrs

    def parse_visibility(self) -> bool:
        if not self.eat_ident("pub"):
            return False
        # pub(crate), pub(super), pub(in path) are all visible for FFI purposes.
        if self.is_group("("):
            self.next()
        return True

    # paths and types

    def parse_path_segments(self, generics: bool = True) -> tuple[PathSegment, ...]:
        segments: list[PathSegment] = []
        self.eat_punct("::")
        while True:
            name = self.expect_ident()
            args: tuple[SynType, ...] = ()
            if generics:
                if self.is_punct("::<"):
                    self.pos += 2
                    args = self._parse_generic_args()
                elif self.is_punct("<") and not self.is_punct("<<"):
                    args = self._parse_generic_args()
            segments.append(PathSegment(name, args))
            if self.is_punct("::") and not self.is_punct("::<") and self.is_ident(offset=2):
                self.pos += 2
                continue
            return tuple(segments)

    def _parse_generic_args(self) -> tuple[SynType, ...]:
        self.expect_punct("<")
        args: list[SynType] = []
        while not self.is_punct(">"):
            tok = self.peek()
            if isinstance(tok, Tok) and tok.kind == "lifetime":
                self.next()
            else:
                args.append(self.parse_type())
            if not self.eat_punct(","):
                break
        self.expect_punct(">")
        return tuple(args)

    def parse_type(self) -> SynType:
        tok = self.peek()
        if tok is None:
            raise self.error("expected type")
        if self.eat_punct("*"):
            if self.eat_ident("mut"):
                return PtrType(True, self.parse_type())
            self.expect_ident("const")
            return PtrType(False, self.parse_type())
        if self.eat_punct("&"):
            lifetime = self.peek()
            if isinstance(lifetime, Tok) and lifetime.kind == "lifetime":
                self.next()
            self.eat_ident("mut")
            self.parse_type()
            return UnsupportedType("reference")
        if self.is_punct("!"):
            self.next()
            return UnsupportedType("never type")
        if self.is_group("["):
            inner = self.sub(self.expect_group("["))
            element = inner.parse_type()
            if not inner.eat_punct(";"):
                inner.expect_end()
                return UnsupportedType("slice")
            length = inner.parse_expr()
            inner.expect_end()
            return ArrayType(element, length)
        if self.is_group("("):
            inner = self.sub(self.expect_group("("))
            elements: list[SynType] = []
            while not inner.at_end():
                elements.append(inner.parse_type())
                if not inner.eat_punct(","):
                    break
            inner.expect_end()
            if len(elements) == 1:
                return elements[0]
            return TupleType(tuple(elements))
        if self.is_ident("unsafe") or self.is_ident("extern") or self.is_ident("fn"):
            return self._parse_fn_type()
        if self.is_ident("dyn") or self.is_ident("impl"):
            self.next()
            self.parse_type()
            return UnsupportedType("trait object")
        if self.is_punct("::") or self.is_ident():
            return PathType(self.parse_path_segments())
        raise self.error("expected type")

    def parse_abi(self) -> Optional[str]:
        """Parse `extern "abi"`; a bare `extern` means the C ABI."""

        if not self.eat_ident("extern"):
            return None
        tok = self.peek()
        if isinstance(tok, Tok) and tok.kind == "string":
            self.next()
            return tok.value[1:-1]
        return "C"

    def _parse_fn_type(self) -> FnType:
        self.eat_ident("unsafe")
        abi = self.parse_abi()
        self.expect_ident("fn")
        inner = self.sub(self.expect_group("("))
        params: list[FnParam] = []
        variadic = False
        while not inner.at_end():
            inner.parse_attrs()
            if inner.eat_punct("..."):
                variadic = True
                break
            name: Optional[str] = None
            if inner.is_ident() and inner.is_punct(":", 1) and not inner.is_punct("::", 1):
                name = inner.expect_ident()
                inner.expect_punct(":")
            params.append(FnParam(name, inner.parse_type()))
            if not inner.eat_punct(","):
                break
        inner.eat_punct(",")
        inner.expect_end()
        returns = self.parse_return_type()
        return FnType(abi, tuple(params), returns, variadic)

    def parse_return_type(self) -> Optional[SynType]:
        if self.eat_punct("->"):
            return self.parse_type()
        return None

    # expressions

    def parse_expr(self) -> SynExpr:
        return self._parse_binary(0)

    def _peek_operator(self, level: int) -> Optional[str]:
        for op in sorted(_BINARY_LEVELS[level], key=len, reverse=True):
            if not self.is_punct(op):
                continue
            if len(op) == 1:
                # single-character operators must not start `<<`, `&&`, `<=`, `->`...
                follow = self.peek(1)
                if isinstance(follow, Tok) and follow.kind == "punct":
                    if follow.value == "=" or (follow.value == op and op in "<>&|"):
                        continue
                    if op == "-" and follow.value == ">":
                        continue
            return op
        return None

    def _parse_binary(self, level: int) -> SynExpr:
        if level >= len(_BINARY_LEVELS):
            return self._parse_cast()
        left = self._parse_binary(level + 1)
        while True:
            op = self._peek_operator(level)
            if op is None:
                return left
            self.pos += len(op)
            right = self._parse_binary(level + 1)
            left = BinaryExpr(op, left, right)

    def _parse_cast(self) -> SynExpr:
        # unary operators bind tighter than `as`
        expr = self._parse_unary()
        while self.eat_ident("as"):
            expr = CastExpr(expr, self.parse_type())
        return expr

    def _parse_unary(self) -> SynExpr:
        if self.is_punct("-") and not self.is_punct("->"):
            self.next()
            return UnaryExpr("-", self._parse_unary())
        if self.is_punct("!") and not self.is_punct("!="):
            self.next()
            return UnaryExpr("!", self._parse_unary())
        if self.is_punct("&") or self.is_punct("*"):
            self.next()
            self._parse_unary()
            return UnsupportedExpr("reference")
        return self._parse_postfix()

    def _parse_postfix(self) -> SynExpr:
        expr = self._parse_primary()
        while self.is_punct(".") and not self.is_punct(".."):
            self.next()
            member = self.expect_ident()
            called = False
            if self.is_group("("):
                args = self.expect_group("(")
                if args.tokens:
                    return UnsupportedExpr(f"method call {member}")
                called = True
            # bitflags values are their bits
            if member != "bits":
                return UnsupportedExpr(f"member access {member}{'()' if called else ''}")
        return expr

    def _parse_primary(self) -> SynExpr:
        tok = self.peek()
        if tok is None:
            raise self.error("expected expression")
        if isinstance(tok, Group):
            self.next()
            inner = self.sub(tok)
            if tok.delimiter == "(":
                if inner.at_end():
                    return UnsupportedExpr("unit value")
                expr = inner.parse_expr()
                if not inner.at_end():
                    return UnsupportedExpr("tuple")
                return expr
            if tok.delimiter == "[":
                if inner.at_end():
                    return ArrayExpr(())
                first = inner.parse_expr()
                if inner.eat_punct(";"):
                    count = inner.parse_expr()
                    inner.expect_end()
                    return RepeatExpr(first, count)
                elements = [first]
                while inner.eat_punct(","):
                    if inner.at_end():
                        break
                    elements.append(inner.parse_expr())
                inner.expect_end()
                return ArrayExpr(tuple(elements))
            return UnsupportedExpr("block")
        if tok.kind in {"number", "string", "char"}:
            self.next()
            return literal_from_token(tok)
        if tok.kind == "ident":
            if tok.value in {"true", "false"}:
                self.next()
                return LitExpr("bool", tok.value == "true")
            if tok.value in {"unsafe", "if", "match", "loop"}:
                return UnsupportedExpr(tok.value)
            segments = tuple(seg.name for seg in self.parse_path_segments(generics=False))
            if self.is_group("{"):
                return self._parse_struct_literal(segments, self.expect_group("{"))
            if self.is_group("("):
                self.next()
                return UnsupportedExpr(f"call to {'::'.join(segments)}")
            return PathExpr(segments)
        if self.is_punct("::"):
            return PathExpr(tuple(seg.name for seg in self.parse_path_segments(generics=False)))
        raise self.error("expected expression")

    def _parse_struct_literal(self, path: tuple[str, ...], body: Group) -> SynExpr:
        inner = self.sub(body)
        fields: list[tuple[str, SynExpr]] = []
        while not inner.at_end():
            if inner.is_punct(".."):
                return UnsupportedExpr("struct update syntax")
            name = inner.expect_ident()
            if inner.eat_punct(":"):
                fields.append((name, inner.parse_expr()))
            else:
                fields.append((name, PathExpr((name,))))
            if not inner.eat_punct(","):
                break
        inner.expect_end()
        return StructExpr(path, tuple(fields))

    # field and variant lists

    def parse_named_fields(self) -> list[Field]:
        fields: list[Field] = []
        while not self.at_end():
            attrs = self.parse_attrs()
            self.parse_visibility()
            name = self.expect_ident()
            self.expect_punct(":")
            fields.append(Field(name, self.parse_type(), attrs))
            if not self.eat_punct(","):
                break
        self.expect_end()
        return fields

    def parse_tuple_fields(self) -> list[Field]:
        fields: list[Field] = []
        while not self.at_end():
            attrs = self.parse_attrs()
            self.parse_visibility()
            fields.append(Field(str(len(fields)), self.parse_type(), attrs))
            if not self.eat_punct(","):
                break
        self.expect_end()
        return fields

    def parse_variants(self) -> list[Variant]:
        variants: list[Variant] = []
        while not self.at_end():
            attrs = self.parse_attrs()
            name = self.expect_ident()
            has_data = False
            if self.is_group("(") or self.is_group("{"):
                self.next()
                has_data = True
            value = None
            if self.eat_punct("="):
                value = self.parse_expr()
            variants.append(Variant(name, value, attrs, has_data))
            if not self.eat_punct(","):
                break
        self.expect_end()
        return variants


def _strip_raw(name: str) -> str:
    return name[2:] if name.startswith("r#") else name
