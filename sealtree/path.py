"""
Path — parsing for bracketed path expressions.

A path expression is a chain of selectors applied left to right:

    ["bar"]["foobar"][2]

A quoted selector looks up a branch key; an integer selector indexes a
sequence. Both single and double quotes are accepted, with backslash
escapes for the quote character and backslash itself.
"""

import re
from dataclasses import dataclass

from sealtree.errors import PathSyntaxError

_SELECTOR = re.compile(
    r"""\[\s*(?:
        "(?P<dq>(?:[^"\\]|\\.)*)"
      | '(?P<sq>(?:[^'\\]|\\.)*)'
      | (?P<index>-?\d+)
    )\s*\]""",
    re.VERBOSE,
)
_ESCAPE = re.compile(r"\\(.)")


@dataclass(frozen=True)
class Selector:
    """One step of a path: a branch key or a sequence index."""

    key: str | None = None
    index: int | None = None

    @property
    def is_index(self) -> bool:
        return self.index is not None

    def __str__(self) -> str:
        if self.is_index:
            return f"[{self.index}]"
        escaped = self.key.replace("\\", "\\\\").replace('"', '\\"')
        return f'["{escaped}"]'


def parse_path(expression: str) -> list[Selector]:
    """Parse a path expression into selectors. The whole string must match."""
    selectors = []
    pos = 0
    text = expression.strip()
    while pos < len(text):
        match = _SELECTOR.match(text, pos)
        if match is None:
            raise PathSyntaxError(
                f"Invalid path expression {expression!r} at offset {pos}"
            )
        if match.group("index") is not None:
            selectors.append(Selector(index=int(match.group("index"))))
        else:
            raw = match.group("dq") if match.group("dq") is not None else match.group("sq")
            selectors.append(Selector(key=_ESCAPE.sub(r"\1", raw)))
        pos = match.end()
        while pos < len(text) and text[pos].isspace():
            pos += 1
    return selectors


def format_path(selectors) -> str:
    return "".join(str(selector) for selector in selectors)
