from dataclasses import dataclass
from enum import Enum, auto

from copyprop.source import Span


class IRParseError(Exception):
    def __init__(self, message: str, span: Span | None = None) -> None:
        if span is not None:
            message = f"{span}: {message}"
        super().__init__(message)
        self.span = span


class TokenType(Enum):
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    LBRACE = auto()
    RBRACE = auto()
    COMMA = auto()
    EQUAL = auto()
    STAR = auto()
    ELLIPSIS = auto()

    INTEGER = auto()
    STRING = auto()
    CSTRING = auto()
    WORD = auto()
    LABEL = auto()
    LOCAL = auto()
    GLOBAL = auto()
    ATTR_GROUP = auto()

    END_OF_FILE = auto()


@dataclass
class Token:
    type: TokenType
    span: Span
    value: str | int | bytes | None = None
    start: int = 0
    end: int = 0


operators = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    ",": TokenType.COMMA,
    "=": TokenType.EQUAL,
    "*": TokenType.STAR,
}


def is_ident_char(c: str) -> bool:
    return c.isalnum() or c in "$._-"


@dataclass
class Position:
    index: int
    line: int
    column: int


class Lexer:
    def __init__(self, source: str) -> None:
        self.source = source
        self._pos = Position(0, 1, 1)

    def peek(self, offset: int = 0) -> str:
        index = self._pos.index + offset
        if index >= len(self.source):
            return "\0"
        return self.source[index]

    def next(self) -> str:
        c = self.peek()
        if c == "\n":
            self._pos = Position(self._pos.index + 1, self._pos.line + 1, 1)
        else:
            self._pos = Position(
                self._pos.index + 1, self._pos.line, self._pos.column + 1
            )
        return c

    def at_end(self) -> bool:
        return self._pos.index >= len(self.source)

    def match(self, c: str) -> bool:
        if self.peek() == c:
            self.next()
            return True
        return False

    def span(self, start_pos: Position | None = None) -> Span:
        if start_pos is None:
            start_pos = self._pos
        return Span(start_pos.line, start_pos.column, self._pos.line, self._pos.column)

    def token(
        self,
        type: TokenType,
        start_pos: Position | None = None,
        value: str | int | bytes | None = None,
    ) -> Token:
        if start_pos is None:
            start_pos = self._pos
        return Token(
            type, self.span(start_pos), value, start_pos.index, self._pos.index
        )

    def error(self, message: str, start_pos: Position | None = None) -> IRParseError:
        return IRParseError(message, self.span(start_pos))

    def skip_whitespace(self) -> None:
        while not self.at_end():
            c = self.peek()
            if c in " \t\r\n":
                self.next()
            elif c == ";":
                self.skip_comment()
            else:
                break

    def skip_comment(self) -> None:
        while not self.at_end() and self.peek() != "\n":
            self.next()

    def identifier(self) -> str:
        start = self._pos
        if self.match('"'):
            while self.peek() != '"':
                if self.at_end():
                    raise self.error("unterminated quoted name", start)
                self.next()
            self.next()
            return self.source[start.index + 1 : self._pos.index - 1]
        while is_ident_char(self.peek()):
            self.next()
        return self.source[start.index : self._pos.index]

    def sigil(self, type: TokenType) -> Token:
        start = self._pos
        self.next()
        name = self.identifier()
        if not name:
            raise self.error("expected name after sigil", start)
        return self.token(type, start, name)

    def word(self) -> Token:
        start = self._pos
        while is_ident_char(self.peek()):
            self.next()
        text = self.source[start.index : self._pos.index]
        if self.match(":"):
            return self.token(TokenType.LABEL, start, text)
        return self.token(TokenType.WORD, start, text)

    def number(self) -> Token:
        start = self._pos
        if self.peek() == "-":
            self.next()
        while self.peek().isdigit():
            self.next()
        text = self.source[start.index : self._pos.index]
        if text == "-":
            raise self.error("invalid number", start)
        if self.match(":"):
            return self.token(TokenType.LABEL, start, text)
        return self.token(TokenType.INTEGER, start, int(text))

    def string(self, start: Position) -> bytes:
        self.next()
        value = bytearray()
        while self.peek() != '"':
            if self.at_end():
                raise self.error("unterminated string literal", start)
            c = self.next()
            if c == "\\":
                if self.peek() == "\\":
                    self.next()
                    value.append(ord("\\"))
                    continue
                digits = self.next() + self.next()
                try:
                    value.append(int(digits, 16))
                except ValueError:
                    raise self.error(f"invalid escape \\{digits}", start) from None
            else:
                value.extend(c.encode())
        self.next()
        return bytes(value)

    def next_token(self) -> Token:
        self.skip_whitespace()
        if self.at_end():
            return self.token(TokenType.END_OF_FILE)
        start = self._pos
        c = self.peek()
        if c == "%":
            return self.sigil(TokenType.LOCAL)
        if c == "@":
            return self.sigil(TokenType.GLOBAL)
        if c == "#":
            self.next()
            if not self.peek().isdigit():
                raise self.error("expected attribute group number", start)
            group = self.number()
            return self.token(TokenType.ATTR_GROUP, start, group.value)
        if c == "c" and self.peek(1) == '"':
            self.next()
            return self.token(TokenType.CSTRING, start, self.string(start))
        if c == '"':
            return self.token(TokenType.STRING, start, self.string(start).decode())
        if c.isdigit() or (c == "-" and self.peek(1).isdigit()):
            return self.number()
        if self.source.startswith("...", self._pos.index):
            self.next()
            self.next()
            self.next()
            return self.token(TokenType.ELLIPSIS, start)
        if c.isalpha() or c in "$._":
            return self.word()
        if c in operators:
            self.next()
            return self.token(operators[c], start)
        raise self.error(f"unexpected character {c!r}", start)

    def __next__(self) -> Token:
        token = self.next_token()
        if token.type == TokenType.END_OF_FILE:
            raise StopIteration
        return token

    def __iter__(self) -> "Lexer":
        return self
