# askdb/core/sql_lexer.py
"""
Character-level scanner for a single SQL statement.

It understands just enough of PostgreSQL lexing to tell code apart from
string literals, quoted identifiers and comments. Both the extractor and the
validator rely on it, so keywords hidden in a literal or a comment never count.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class _Mode(Enum):
    CODE = "code"
    SINGLE_QUOTE = "single_quote"
    ESCAPE_QUOTE = "escape_quote"
    DOLLAR_QUOTE = "dollar_quote"
    DOUBLE_QUOTE = "double_quote"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"


_DOLLAR_TAG = re.compile(r"\$[A-Za-z_]*\$")
_IDENT_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_$")


@dataclass
class ScanResult:
    # Code with literal bodies blanked and comments replaced by a space
    stripped: str
    paren_depth: int = 0
    # Goes negative when a ")" closes nothing
    min_paren_depth: int = 0
    open_quote: Optional[str] = None
    open_block_comment: bool = False
    # Offsets into `stripped` of semicolons outside literals and comments
    semicolons: List[int] = field(default_factory=list)
    # Same semicolons as offsets into the scanned input
    raw_semicolons: List[int] = field(default_factory=list)

    @property
    def balanced(self) -> bool:
        return self.paren_depth == 0 and self.min_paren_depth >= 0

    @property
    def terminated(self) -> bool:
        return self.open_quote is None and not self.open_block_comment


def scan(sql: str) -> ScanResult:
    out: List[str] = []
    mode = _Mode.CODE
    depth = 0
    comment_depth = 0
    dollar_tag = ""
    min_depth = 0
    semis: List[int] = []
    raw_semis: List[int] = []
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""
        prev = sql[i - 1] if i > 0 else ""
        prev2 = sql[i - 2] if i > 1 else ""

        if mode is _Mode.CODE:
            if ch == "'":
                # E'...' takes backslash escapes; a trailing E of a longer word does not count
                if prev in ("E", "e") and prev2 not in _IDENT_CHARS:
                    mode = _Mode.ESCAPE_QUOTE
                else:
                    mode = _Mode.SINGLE_QUOTE
                out.append("'")
            elif ch == "$" and prev not in _IDENT_CHARS and _DOLLAR_TAG.match(sql, i):
                dollar_tag = _DOLLAR_TAG.match(sql, i).group(0)
                mode = _Mode.DOLLAR_QUOTE
                out.append(dollar_tag)
                i += len(dollar_tag) - 1
            elif ch == '"':
                mode = _Mode.DOUBLE_QUOTE
                out.append('"')
            elif ch == "-" and nxt == "-":
                mode = _Mode.LINE_COMMENT
                out.append(" ")
                i += 1
            elif ch == "/" and nxt == "*":
                mode = _Mode.BLOCK_COMMENT
                comment_depth = 1
                out.append(" ")
                i += 1
            else:
                if ch == "(":
                    depth += 1
                elif ch == ")":
                    depth -= 1
                    min_depth = min(min_depth, depth)
                elif ch == ";":
                    semis.append(len(out))
                    raw_semis.append(i)
                out.append(ch)

        elif mode is _Mode.SINGLE_QUOTE:
            if ch == "'":
                if nxt == "'":  # escaped quote
                    i += 1
                else:
                    mode = _Mode.CODE
                    out.append("'")
            elif ch == "\n":
                out.append("\n")

        elif mode is _Mode.ESCAPE_QUOTE:
            if ch == "\\":
                if nxt == "\n":
                    out.append("\n")
                i += 1
            elif ch == "'":
                if nxt == "'":
                    i += 1
                else:
                    mode = _Mode.CODE
                    out.append("'")
            elif ch == "\n":
                out.append("\n")

        elif mode is _Mode.DOLLAR_QUOTE:
            if sql.startswith(dollar_tag, i):
                mode = _Mode.CODE
                out.append(dollar_tag)
                i += len(dollar_tag) - 1
            elif ch == "\n":
                out.append("\n")

        elif mode is _Mode.DOUBLE_QUOTE:
            if ch == '"':
                if nxt == '"':
                    i += 1
                else:
                    mode = _Mode.CODE
                    out.append('"')
            elif ch == "\n":
                out.append("\n")

        elif mode is _Mode.LINE_COMMENT:
            if ch == "\n":
                mode = _Mode.CODE
                out.append("\n")

        elif mode is _Mode.BLOCK_COMMENT:
            if ch == "/" and nxt == "*":
                comment_depth += 1
                i += 1
            elif ch == "*" and nxt == "/":
                comment_depth -= 1
                if comment_depth == 0:
                    mode = _Mode.CODE
                i += 1
            elif ch == "\n":
                out.append("\n")

        i += 1

    open_quote = None
    if mode in (_Mode.SINGLE_QUOTE, _Mode.ESCAPE_QUOTE):
        open_quote = "'"
    elif mode is _Mode.DOLLAR_QUOTE:
        open_quote = dollar_tag
    elif mode is _Mode.DOUBLE_QUOTE:
        open_quote = '"'

    return ScanResult(
        stripped="".join(out),
        paren_depth=depth,
        min_paren_depth=min_depth,
        open_quote=open_quote,
        open_block_comment=mode is _Mode.BLOCK_COMMENT,
        semicolons=semis,
        raw_semicolons=raw_semis,
    )


def strip_comments_and_literals(sql: str) -> str:
    return scan(sql).stripped


def last_code_line(stripped: str) -> str:
    """Last non-blank line of already-stripped SQL, whitespace trimmed."""
    for line in reversed(stripped.splitlines()):
        if line.strip():
            return line.strip()
    return ""


_WORD_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_")


def top_level_words(stripped: str) -> List[str]:
    """Lower-cased bare words outside any parentheses."""
    words: List[str] = []
    depth = 0
    cur: List[str] = []
    for ch in stripped + " ":
        if ch in _WORD_CHARS and depth == 0:
            cur.append(ch)
            continue
        if cur:
            words.append("".join(cur).lower())
            cur = []
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
    return words
