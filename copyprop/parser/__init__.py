"""Reader for the textual IR.

The accepted syntax is the subset of LLVM assembly that clang emits at -O0
for scalar C code: globals, declarations and definitions built from
alloca/load/store, integer arithmetic, icmp, integer casts, getelementptr,
call and the usual terminators. Linkage, attributes and the module header
are kept so the module prints back the way it was read. Comments are
skipped.
"""

import re
from typing import cast

from copyprop.ir.nodes import (
    Alloca,
    Argument,
    AttributeGroup,
    BasicBlock,
    Binary,
    BinaryOp,
    Branch,
    Call,
    Cast,
    CastOp,
    Comparison,
    ComparisonOp,
    CString,
    Function,
    GetElementPtr,
    GlobalVariable,
    Goto,
    Integer,
    Load,
    Module,
    Op,
    Return,
    Store,
    Undef,
    Unreachable,
    Value,
    ZeroInitializer,
)
from copyprop.ir.types import (
    ArrayType,
    IntType,
    Type,
    bool_type,
    ptr_type,
    void_type,
)
from copyprop.parser.lexer import IRParseError, Lexer, Token, TokenType
from copyprop.source import Span

binary_ops = {op.value: op for op in BinaryOp}
comparison_ops = {op.value: op for op in ComparisonOp}
cast_ops = {op.value: op for op in CastOp}

binary_flags = {"nsw", "nuw", "exact", "disjoint"}

module_id_re = re.compile(r"; ModuleID = '([^'\n]*)'")

linkages = {
    "private",
    "internal",
    "external",
    "common",
    "weak",
    "linkonce",
    "linkonce_odr",
    "weak_odr",
    "available_externally",
}

# Words that may decorate a definition or an operand without changing it.
ignored_words = {
    "dso_local",
    "dso_preemptable",
    "hidden",
    "protected",
    "default",
    "local_unnamed_addr",
    "noundef",
    "nonnull",
    "signext",
    "zeroext",
    "noalias",
    "nocapture",
    "readonly",
    "writeonly",
    "tail",
    "musttail",
    "notail",
    "nounwind",
    "noinline",
    "optnone",
    "uwtable",
    "mustprogress",
    "norecurse",
}


class Parser:
    def __init__(self, lexer: Lexer) -> None:
        self._lexer = lexer
        self._tokens: list[Token] = []
        self._current = 0
        self.module = Module()
        self._functions: dict[str, Function] = {}
        self._globals: dict[str, GlobalVariable] = {}
        self._bodies: list[tuple[Function, int]] = []
        self._group_refs: dict[int, Token] = {}

    def parse(self) -> Module:
        match = module_id_re.match(self._lexer.source)
        if match:
            self.module.module_id = match.group(1)
        while not self.at_end():
            self.parse_top_level()
        # Bodies are parsed after every signature is known, so calls may
        # refer to functions defined later in the file.
        for fn, position in self._bodies:
            self._current = position
            FunctionParser(self, fn).parse_body()
        for number, token in self._group_refs.items():
            if not self.module.attribute_groups[number].defined:
                raise self.error(f"use of undefined attribute group #{number}", token)
        return self.module

    def peek(self, rel_pos: int = 0) -> Token:
        pos = self._current + rel_pos
        if pos >= len(self._tokens):
            count = pos - len(self._tokens) + 1
            for i in range(count):
                self._tokens.append(self._lexer.next_token())
        return self._tokens[pos]

    def check(self, type: TokenType) -> bool:
        return self.peek().type == type

    def check_word(self, *words: str) -> bool:
        return self.check(TokenType.WORD) and self.peek().value in words

    def at_end(self) -> bool:
        return self.check(TokenType.END_OF_FILE)

    def next(self) -> Token:
        if not self.at_end():
            self._current += 1
        return self.peek(-1)

    def match(self, type: TokenType) -> bool:
        if self.check(type):
            self.next()
            return True
        return False

    def match_word(self, *words: str) -> bool:
        if self.check_word(*words):
            self.next()
            return True
        return False

    def error(self, message: str, token: Token | None = None) -> IRParseError:
        if token is None:
            token = self.peek()
        return IRParseError(message, token.span)

    def expect(self, type: TokenType, message: str) -> Token:
        if self.check(type):
            return self.next()
        raise self.error(message)

    def expect_word(self, word: str) -> Token:
        if self.check_word(word):
            return self.next()
        raise self.error(f"expected '{word}'")

    def skip_ignored(self) -> None:
        while self.check_word(*ignored_words) or self.check(TokenType.ATTR_GROUP):
            self.next()

    def parse_attributes(self) -> list[str]:
        words = []
        while self.check_word(*ignored_words):
            words.append(cast(str, self.next().value))
        return words

    def parse_attr_group(self) -> AttributeGroup | None:
        if self.check(TokenType.ATTR_GROUP):
            return self.attribute_group(self.next())
        return None

    def attribute_group(self, token: Token) -> AttributeGroup:
        number = cast(int, token.value)
        group = self.module.attribute_groups.get(number)
        if group is None:
            group = AttributeGroup(number)
            self.module.attribute_groups[number] = group
            self._group_refs[number] = token
        return group

    def skip_align(self) -> int | None:
        """Parse an optional trailing ', align N'."""
        if self.check(TokenType.COMMA) and self.peek(1).type == TokenType.WORD and self.peek(1).value == "align":
            self.next()
            self.next()
            return cast(int, self.expect(TokenType.INTEGER, "expected alignment").value)
        return None

    def parse_type(self) -> Type:
        token = self.peek()
        if self.match(TokenType.LBRACKET):
            size = cast(int, self.expect(TokenType.INTEGER, "expected array size").value)
            self.expect_word("x")
            element = self.parse_type()
            self.expect(TokenType.RBRACKET, "expected ']' after array type")
            return ArrayType(element, size)
        if token.type != TokenType.WORD:
            raise self.error("expected type")
        word = cast(str, token.value)
        if word == "void":
            self.next()
            return void_type
        if word == "ptr":
            self.next()
            return ptr_type
        if word.startswith("i") and word[1:].isdigit():
            self.next()
            return IntType(int(word[1:]))
        raise self.error(f"unknown type '{word}'")

    def parse_top_level(self) -> None:
        if self.match_word("source_filename"):
            self.expect(TokenType.EQUAL, "expected '='")
            token = self.expect(TokenType.STRING, "expected file name")
            self.module.source_filename = cast(str, token.value)
        elif self.match_word("target"):
            kind = self.expect(TokenType.WORD, "expected 'datalayout' or 'triple'")
            self.expect(TokenType.EQUAL, "expected '='")
            token = self.expect(TokenType.STRING, "expected target string")
            if kind.value == "datalayout":
                self.module.datalayout = cast(str, token.value)
            elif kind.value == "triple":
                self.module.triple = cast(str, token.value)
            else:
                raise self.error(f"unknown target property '{kind.value}'", kind)
        elif self.match_word("attributes"):
            token = self.expect(TokenType.ATTR_GROUP, "expected attribute group")
            group = self.attribute_group(token)
            if group.defined:
                raise self.error(f"redefinition of attribute group #{group.number}", token)
            self.expect(TokenType.EQUAL, "expected '='")
            start, end = self.skip_braces()
            group.attributes = split_attributes(
                self._lexer.source[start.end : end.start]
            )
            group.defined = True
        elif self.check(TokenType.GLOBAL):
            self.parse_global()
        elif self.match_word("declare"):
            fn = self.parse_signature(declaration=True)
            self.add_function(fn)
        elif self.match_word("define"):
            fn = self.parse_signature(declaration=False)
            self.add_function(fn)
            if not self.check(TokenType.LBRACE):
                raise self.error("expected '{' before function body")
            self._bodies.append((fn, self._current))
            self.skip_braces()
        else:
            raise self.error("expected global, declaration or definition")

    def skip_braces(self) -> tuple[Token, Token]:
        """Skip a braced block and return its opening and closing tokens."""
        start = self.expect(TokenType.LBRACE, "expected '{'")
        depth = 1
        while True:
            if self.at_end():
                raise self.error("unterminated '{'")
            token = self.next()
            if token.type == TokenType.LBRACE:
                depth += 1
            elif token.type == TokenType.RBRACE:
                depth -= 1
                if not depth:
                    return start, token

    def parse_global(self) -> None:
        name_token = self.next()
        name = cast(str, name_token.value)
        if name in self._globals or name in self._functions:
            raise self.error(f"redefinition of @{name}", name_token)
        self.expect(TokenType.EQUAL, "expected '=' after global name")
        linkage = ""
        unnamed_addr = False
        qualifiers = []
        while True:
            if self.check_word(*linkages):
                linkage = cast(str, self.next().value)
            elif self.match_word("unnamed_addr"):
                unnamed_addr = True
            elif self.check_word(*ignored_words):
                qualifiers.append(cast(str, self.next().value))
            else:
                break
        if self.match_word("constant"):
            constant = True
        else:
            self.expect_word("global")
            constant = False
        value_type = self.parse_type()
        initializer = None
        if not self.check(TokenType.COMMA) and linkage != "external":
            initializer = self.parse_constant(value_type)
        align = self.skip_align()
        var = GlobalVariable(
            name,
            value_type,
            initializer,
            constant=constant,
            linkage=linkage,
            unnamed_addr=unnamed_addr,
            align=align,
            span=name_token.span,
            qualifiers=qualifiers,
        )
        self._globals[name] = var
        self.module.globals.append(var)

    def parse_constant(self, type: Type) -> Value:
        token = self.peek()
        if token.type == TokenType.INTEGER:
            self.next()
            if not isinstance(type, IntType):
                raise self.error("integer constant must have integer type", token)
            return Integer(cast(int, token.value), type, token.span)
        if token.type == TokenType.CSTRING:
            self.next()
            value = CString(cast(bytes, token.value), token.span)
            if value.type != type:
                raise self.error(f"string constant does not have type {type}", token)
            return value
        if self.match_word("true", "false"):
            if type != bool_type:
                raise self.error("boolean constant must have type i1", token)
            return Integer(1 if token.value == "true" else 0, bool_type, token.span)
        if self.match_word("zeroinitializer"):
            return ZeroInitializer(type)
        if self.match_word("undef", "poison"):
            return Undef(type)
        if token.type == TokenType.GLOBAL:
            return self.global_value(self.next())
        raise self.error("expected constant")

    def global_value(self, token: Token) -> Value:
        name = cast(str, token.value)
        if name in self._globals:
            return self._globals[name]
        if name in self._functions:
            return self._functions[name]
        raise self.error(f"use of undefined global @{name}", token)

    def parse_signature(self, declaration: bool) -> Function:
        prefix = []
        while self.check_word(*linkages) or self.check_word(*ignored_words):
            prefix.append(cast(str, self.next().value))
        return_type = self.parse_type()
        name_token = self.expect(TokenType.GLOBAL, "expected function name")
        self.expect(TokenType.LPAREN, "expected '(' after function name")
        args: list[Argument] = []
        var_arg = False
        while not self.match(TokenType.RPAREN):
            if self.match(TokenType.ELLIPSIS):
                var_arg = True
                self.expect(TokenType.RPAREN, "expected ')' after '...'")
                break
            type = self.parse_type()
            attrs = self.parse_attributes()
            name = ""
            span = self.peek().span
            if self.check(TokenType.LOCAL):
                name = cast(str, self.next().value)
            elif not declaration:
                raise self.error("expected argument name")
            args.append(Argument(type, name, span, attrs))
            if not self.match(TokenType.COMMA):
                self.expect(TokenType.RPAREN, "expected ')' after arguments")
                break
        suffix = []
        attr_group = None
        while True:
            if self.check_word(*ignored_words) or self.check_word("unnamed_addr"):
                suffix.append(cast(str, self.next().value))
            elif self.check(TokenType.ATTR_GROUP):
                attr_group = self.attribute_group(self.next())
            else:
                break
        return Function(
            cast(str, name_token.value),
            args,
            return_type=return_type,
            var_arg=var_arg,
            span=name_token.span,
            prefix=prefix,
            suffix=suffix,
            attr_group=attr_group,
        )

    def add_function(self, fn: Function) -> None:
        if fn.name in self._globals:
            raise self.error(f"redefinition of @{fn.name}")
        if fn.name in self._functions:
            raise self.error(f"redefinition of @{fn.name}")
        self._functions[fn.name] = fn
        self.module.functions.append(fn)


class FunctionParser:
    """Parses one function body with its own local namespace."""

    def __init__(self, parser: Parser, fn: Function) -> None:
        self.parser = parser
        self.fn = fn
        self.locals: dict[str, Value] = {}
        self.blocks: dict[str, BasicBlock] = {}
        self.defined_blocks: set[str] = set()
        self.block_refs: dict[str, Token] = {}
        self.next_slot = 0
        for arg in fn.args:
            self.define(arg, arg.name or None, None)

    def define(self, value: Value, name: str | None, token: Token | None) -> None:
        # Unnamed and numbered values both take the next slot number.
        if name is None or name.isdigit():
            key = str(self.next_slot)
            if name is not None and name != key:
                raise self.parser.error(
                    f"value numbered %{name} but expected %{key}", token
                )
            self.next_slot += 1
            value.name = ""
        else:
            key = name
            value.name = name
        if key in self.locals:
            raise self.parser.error(f"redefinition of %{key}", token)
        self.locals[key] = value

    def block(self, token: Token) -> BasicBlock:
        name = cast(str, token.value)
        block = self.blocks.get(name)
        if block is None:
            block = BasicBlock("" if name.isdigit() else name)
            self.blocks[name] = block
            self.block_refs[name] = token
        return block

    def parse_body(self) -> None:
        p = self.parser
        p.expect(TokenType.LBRACE, "expected '{'")
        current: BasicBlock | None = None
        while not p.match(TokenType.RBRACE):
            if p.at_end():
                raise p.error("unterminated function body")
            if p.check(TokenType.LABEL):
                token = p.next()
                current = self.start_block(token)
            elif current is None:
                # Unlabeled entry block.
                current = BasicBlock()
                self.next_slot += 1
                self.fn.blocks.append(current)
            else:
                if current.terminated:
                    raise p.error("instruction after terminator")
                current.ops.append(self.parse_op())
        for name, token in self.block_refs.items():
            if name not in self.defined_blocks:
                raise p.error(f"use of undefined label %{name}", token)
        if not self.fn.blocks:
            raise p.error(f"function @{self.fn.name} has no blocks")

    def start_block(self, token: Token) -> BasicBlock:
        name = cast(str, token.value)
        if name in self.defined_blocks:
            raise self.parser.error(f"redefinition of label {name}", token)
        if name.isdigit():
            key = str(self.next_slot)
            if name != key:
                raise self.parser.error(
                    f"label numbered {name} but expected {key}", token
                )
            self.next_slot += 1
        block = self.block(token)
        self.defined_blocks.add(name)
        self.fn.blocks.append(block)
        return block

    def value(self, type: Type) -> Value:
        p = self.parser
        token = p.peek()
        if token.type == TokenType.LOCAL:
            p.next()
            name = cast(str, token.value)
            if name not in self.locals:
                raise p.error(f"use of undefined value %{name}", token)
            return self.locals[name]
        return p.parse_constant(type)

    def typed_value(self) -> Value:
        p = self.parser
        type = p.parse_type()
        p.skip_ignored()
        return self.value(type)

    def label(self) -> BasicBlock:
        p = self.parser
        p.expect_word("label")
        return self.block(p.expect(TokenType.LOCAL, "expected label"))

    def parse_op(self) -> Op:
        p = self.parser
        name_token = None
        if p.check(TokenType.LOCAL):
            name_token = p.next()
            p.expect(TokenType.EQUAL, "expected '=' after result name")
        prefix = p.parse_attributes()
        token = p.peek()
        word = token.value if token.type == TokenType.WORD else None
        if word is None:
            raise p.error("expected instruction")
        p.next()
        op = self.parse_instruction(cast(str, word), token)
        if isinstance(op, Call):
            op.prefix = prefix
        if op.is_void:
            if name_token is not None:
                raise p.error("cannot name a void value", name_token)
        else:
            self.define(
                op,
                None if name_token is None else cast(str, name_token.value),
                name_token,
            )
        return op

    def parse_instruction(self, word: str, token: Token) -> Op:
        p = self.parser
        span = token.span
        if word == "alloca":
            type = p.parse_type()
            return Alloca(type, p.skip_align(), span)
        if word == "load":
            type = p.parse_type()
            p.expect(TokenType.COMMA, "expected ',' after load type")
            src = self.typed_value()
            return Load(type, src, p.skip_align(), span)
        if word == "store":
            src = self.typed_value()
            p.expect(TokenType.COMMA, "expected ',' after stored value")
            dest = self.typed_value()
            return Store(src, dest, p.skip_align(), span)
        if word in binary_ops:
            flags = []
            while p.check_word(*binary_flags):
                flags.append(cast(str, p.next().value))
            type = p.parse_type()
            left = self.value(type)
            p.expect(TokenType.COMMA, "expected ',' between operands")
            right = self.value(type)
            return Binary(binary_ops[word], left, right, flags, span)
        if word == "icmp":
            pred = p.peek()
            if pred.value not in comparison_ops:
                raise p.error("expected icmp predicate")
            p.next()
            type = p.parse_type()
            left = self.value(type)
            p.expect(TokenType.COMMA, "expected ',' between operands")
            right = self.value(type)
            return Comparison(comparison_ops[cast(str, pred.value)], left, right, span)
        if word in cast_ops:
            value = self.typed_value()
            p.expect_word("to")
            return Cast(cast_ops[word], value, p.parse_type(), span)
        if word == "getelementptr":
            inbounds = p.match_word("inbounds")
            source_type = p.parse_type()
            p.expect(TokenType.COMMA, "expected ',' after source type")
            ptr = self.typed_value()
            indices = []
            while p.match(TokenType.COMMA):
                indices.append(self.typed_value())
            return GetElementPtr(source_type, ptr, indices, inbounds, span)
        if word == "call":
            return self.parse_call(span)
        if word == "br":
            if p.check_word("label"):
                return Goto(self.label(), span)
            cond = self.typed_value()
            p.expect(TokenType.COMMA, "expected ',' after condition")
            true = self.label()
            p.expect(TokenType.COMMA, "expected ',' between labels")
            false = self.label()
            return Branch(cond, true, false, span)
        if word == "ret":
            if p.match_word("void"):
                return Return(None, span)
            return Return(self.typed_value(), span)
        if word == "unreachable":
            return Unreachable(span)
        raise p.error(f"unknown instruction '{word}'", token)

    def parse_call(self, span: Span) -> Call:
        p = self.parser
        p.skip_ignored()
        return_type = p.parse_type()
        if p.match(TokenType.LPAREN):
            # Explicit function type of a variadic callee; the callee's own
            # signature is authoritative.
            while not p.match(TokenType.RPAREN):
                if p.at_end():
                    raise p.error("unterminated function type")
                p.next()
        callee_token = p.expect(TokenType.GLOBAL, "expected callee")
        callee = p.global_value(callee_token)
        if not isinstance(callee, Function):
            raise p.error(f"@{callee.name} is not a function", callee_token)
        if callee.return_type != return_type:
            raise p.error(f"return type mismatch calling @{callee.name}", callee_token)
        p.expect(TokenType.LPAREN, "expected '(' before call arguments")
        args: list[Value] = []
        arg_attrs: list[list[str]] = []
        while not p.match(TokenType.RPAREN):
            type = p.parse_type()
            arg_attrs.append(p.parse_attributes())
            args.append(self.value(type))
            if not p.match(TokenType.COMMA):
                p.expect(TokenType.RPAREN, "expected ')' after call arguments")
                break
        attr_group = p.parse_attr_group()
        if len(args) < len(callee.args) or (
            not callee.var_arg and len(args) != len(callee.args)
        ):
            raise p.error(f"wrong number of arguments to @{callee.name}", callee_token)
        return Call(callee, args, span, arg_attrs=arg_attrs, attr_group=attr_group)


def split_attributes(text: str) -> list[str]:
    """Split the body of an attribute group at top-level whitespace."""
    attrs = []
    current: list[str] = []
    depth = 0
    quoted = False
    for c in text:
        if c == '"':
            quoted = not quoted
        elif not quoted and c == "(":
            depth += 1
        elif not quoted and c == ")":
            depth -= 1
        if c.isspace() and not quoted and not depth:
            if current:
                attrs.append("".join(current))
                current = []
        else:
            current.append(c)
    if current:
        attrs.append("".join(current))
    return attrs


def parse(text: str) -> Module:
    return Parser(Lexer(text)).parse()


__all__ = ["IRParseError", "Parser", "parse", "split_attributes"]
