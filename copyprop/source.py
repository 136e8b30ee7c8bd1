from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Source:
    name: str
    file: str
    text: str

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines(keepends=False)

    def get_lines(self, span: Span, context_lines_before: int = 2, context_lines_after: int = 2) -> str:
        lines = self.lines
        start_line = max(span.line - context_lines_before - 1, 0)
        end_line = min(span.end_line + context_lines_after, len(lines))
        return "\n".join(lines[start_line:end_line])


@dataclass(unsafe_hash=True)
class Span:
    line: int
    column: int
    end_line: int
    end_column: int

    @property
    def start(self):
        return (self.line, self.column)

    @property
    def end(self):
        return (self.end_line, self.end_column)

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


no_span = Span(0, 0, 0, 0)
