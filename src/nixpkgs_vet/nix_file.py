"""A lexical model of Nix files.

This is not a Nix parser. Files are split into tokens with enough structure
(bracket nesting, string and path boundaries) to answer the few questions the
checks ask: what a binding at a given position looks like, which path
expressions a file contains, and how far a ``with`` expression reaches.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
import os
import re

from nixpkgs_vet.exceptions import VetError, with_context
from nixpkgs_vet.location import LineIndex
from nixpkgs_vet.ratchet import CallPackageArgumentInfo


class TokenKind(str, Enum):
    WHITESPACE = "whitespace"
    COMMENT = "comment"
    STRING = "string"
    PATH = "path"
    SEARCH_PATH = "search_path"
    URI = "uri"
    NUMBER = "number"
    IDENT = "ident"
    PUNCT = "punct"


TRIVIA = frozenset({TokenKind.WHITESPACE, TokenKind.COMMENT})
OPENERS = {"(": ")", "[": "]", "{": "}", "${": "}"}
CLOSERS = frozenset({")", "]", "}"})


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    start: int
    end: int
    interpolated: bool = False
    # Parser tokens this lexeme stands for; strings and interpolated paths
    # count their delimiters, literal runs and interpolated tokens.
    weight: int = 1

    @property
    def is_trivia(self) -> bool:
        return self.kind in TRIVIA

    def is_punct(self, text: str) -> bool:
        return self.kind is TokenKind.PUNCT and self.text == text

    def is_keyword(self, text: str) -> bool:
        return self.kind is TokenKind.IDENT and self.text == text


_WHITESPACE_RE = re.compile(r"[ \t\r\n]+")
_LINE_COMMENT_RE = re.compile(r"#[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_SEARCH_PATH_RE = re.compile(r"<[A-Za-z0-9._+\-]+(?:/[A-Za-z0-9._+\-]+)*>")
_URI_RE = re.compile(r"[A-Za-z][A-Za-z0-9+\-.]*:[A-Za-z0-9%/?:@&=+$,\-_.!~*']+")
_PATH_RE = re.compile(r"(?:~|[A-Za-z0-9._+\-]*)(?:/[A-Za-z0-9._+\-]+)+")
_PATH_INTERPOLATED_START_RE = re.compile(r"(?:~|[A-Za-z0-9._+\-]*)(?:/[A-Za-z0-9._+\-]*)*/(?=\$\{)")
_PATH_CONTINUATION_RE = re.compile(r"[A-Za-z0-9._+\-/]*")
_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_'\-]*")
_PUNCT = ("...", "${", "==", "!=", "<=", ">=", "&&", "||", "->", "//", "++")


class NixSyntaxError(ValueError):
    pass


class _Lexer:
    def __init__(self, text: str) -> None:
        self.text = text

    def tokens(self) -> list[Token]:
        tokens, _end = self._run(0, stop_at_close=False)
        return tokens

    def _run(self, pos: int, *, stop_at_close: bool) -> tuple[list[Token], int]:
        """Tokenize from ``pos``; with ``stop_at_close``, stop before the ``}`` closing an interpolation."""
        tokens: list[Token] = []
        depth = 0
        while pos < len(self.text):
            token = self._next(pos)
            if token.kind is TokenKind.PUNCT:
                if token.text in OPENERS:
                    depth += 1
                elif token.text in CLOSERS:
                    if depth == 0:
                        if stop_at_close and token.text == "}":
                            return tokens, pos
                        raise NixSyntaxError(f"unbalanced {token.text!r} at offset {pos}")
                    depth -= 1
            tokens.append(token)
            pos = token.end
        if stop_at_close:
            raise NixSyntaxError("unterminated interpolation")
        return tokens, pos

    def _interpolation(self, pos: int) -> tuple[int, int]:
        # ``pos`` points just past ``${``; returns the offset just past the
        # matching ``}`` and the weight of the whole interpolation.
        tokens, end = self._run(pos, stop_at_close=True)
        return end + 1, 2 + sum(token.weight for token in tokens if not token.is_trivia)

    def _next(self, pos: int) -> Token:
        text = self.text
        for kind, pattern in (
            (TokenKind.WHITESPACE, _WHITESPACE_RE),
            (TokenKind.COMMENT, _LINE_COMMENT_RE),
            (TokenKind.COMMENT, _BLOCK_COMMENT_RE),
        ):
            match = pattern.match(text, pos)
            if match:
                return Token(kind, match.group(), pos, match.end())
        if text.startswith('"', pos):
            return self._string(pos)
        if text.startswith("''", pos):
            return self._indented_string(pos)
        match = _SEARCH_PATH_RE.match(text, pos)
        if match:
            return Token(TokenKind.SEARCH_PATH, match.group(), pos, match.end())
        match = _URI_RE.match(text, pos)
        if match:
            return Token(TokenKind.URI, match.group(), pos, match.end())
        path = self._path(pos)
        if path is not None:
            return path
        match = _NUMBER_RE.match(text, pos)
        if match:
            return Token(TokenKind.NUMBER, match.group(), pos, match.end())
        match = _IDENT_RE.match(text, pos)
        if match:
            return Token(TokenKind.IDENT, match.group(), pos, match.end())
        for punct in _PUNCT:
            if text.startswith(punct, pos):
                return Token(TokenKind.PUNCT, punct, pos, pos + len(punct))
        return Token(TokenKind.PUNCT, text[pos], pos, pos + 1)

    def _path(self, pos: int) -> Token | None:
        text = self.text
        match = _PATH_INTERPOLATED_START_RE.match(text, pos) or _PATH_RE.match(text, pos)
        if match is None:
            return None
        end = match.end()
        interpolated = False
        weight = 1
        while text.startswith("${", end):
            interpolated = True
            end, inner = self._interpolation(end + 2)
            weight += inner
            continuation = _PATH_CONTINUATION_RE.match(text, end).end()
            if continuation > end:
                weight += 1
            end = continuation
        return Token(TokenKind.PATH, text[pos:end], pos, end, interpolated, weight)

    def _string(self, pos: int) -> Token:
        text = self.text
        index = pos + 1
        interpolated = False
        # Start and end delimiters.
        weight = 2
        literal = False
        while index < len(text):
            char = text[index]
            if char == "\\":
                literal = True
                index += 2
            elif text.startswith("$${", index):
                literal = True
                index += 3
            elif char == '"':
                if literal:
                    weight += 1
                return Token(TokenKind.STRING, text[pos:index + 1], pos, index + 1, interpolated, weight)
            elif text.startswith("${", index):
                if literal:
                    weight += 1
                interpolated, literal = True, False
                index, inner = self._interpolation(index + 2)
                weight += inner
            else:
                literal = True
                index += 1
        raise NixSyntaxError(f"unterminated string at offset {pos}")

    def _indented_string(self, pos: int) -> Token:
        text = self.text
        index = pos + 2
        interpolated = False
        weight = 2
        literal = False
        while index < len(text):
            if text.startswith("'''", index) or text.startswith("''$", index):
                literal = True
                index += 3
            elif text.startswith("''\\", index):
                literal = True
                index += 4
            elif text.startswith("''", index):
                if literal:
                    weight += 1
                end = index + 2
                return Token(TokenKind.STRING, text[pos:end], pos, end, interpolated, weight)
            elif text.startswith("${", index):
                if literal:
                    weight += 1
                interpolated, literal = True, False
                index, inner = self._interpolation(index + 2)
                weight += inner
            else:
                literal = True
                index += 1
        raise NixSyntaxError(f"unterminated indented string at offset {pos}")


def tokenize(text: str) -> list[Token]:
    return _Lexer(text).tokens()


class ResolvedKind(str, Enum):
    INTERPOLATED = "interpolated"
    SEARCH_PATH = "search_path"
    ABSOLUTE = "absolute"
    HOME_RELATIVE = "home_relative"
    OUTSIDE = "outside"
    UNRESOLVABLE = "unresolvable"
    WITHIN = "within"


@dataclass(frozen=True)
class ResolvedPath:
    kind: ResolvedKind
    # Relative to the base directory, only for WITHIN.
    relative: str | None = None
    error: str = ""


def _matching_close(tokens: list[Token], start: int) -> int | None:
    depth = 0
    for index in range(start, len(tokens)):
        token = tokens[index]
        if token.kind is not TokenKind.PUNCT:
            continue
        if token.text in OPENERS:
            depth += 1
        elif token.text in CLOSERS:
            depth -= 1
            if depth == 0:
                return index
    return None


_ATOMS = frozenset(
    {
        TokenKind.IDENT,
        TokenKind.PATH,
        TokenKind.SEARCH_PATH,
        TokenKind.STRING,
        TokenKind.URI,
        TokenKind.NUMBER,
    }
)
_NOT_AN_ARGUMENT = frozenset({"let", "in", "with", "if", "then", "else", "assert", "inherit", "or"})


def _argument_end(tokens: list[Token], start: int) -> int | None:
    """Index just past the function argument starting at ``start``.

    An argument is a bracketed group (an attribute set may carry ``rec``) or a
    single literal or identifier, followed by any ``.attr`` selections and an
    optional ``or`` default.
    """
    if start >= len(tokens):
        return None
    token = tokens[start]
    if token.is_keyword("rec"):
        if start + 1 >= len(tokens) or not tokens[start + 1].is_punct("{"):
            return None
        start += 1
        token = tokens[start]
    if token.kind is TokenKind.PUNCT and token.text in {"(", "[", "{"}:
        close = _matching_close(tokens, start)
        if close is None:
            return None
        end = close + 1
    elif token.kind in _ATOMS and token.text not in _NOT_AN_ARGUMENT:
        end = start + 1
    else:
        return None
    while end < len(tokens) and tokens[end].is_punct("."):
        name = end + 1
        if name >= len(tokens):
            return None
        if tokens[name].is_punct("${"):
            close = _matching_close(tokens, name)
            if close is None:
                return None
            end = close + 1
        elif tokens[name].kind in {TokenKind.IDENT, TokenKind.STRING}:
            end = name + 1
        else:
            return None
    if end < len(tokens) and tokens[end].is_keyword("or"):
        return _argument_end(tokens, end + 1)
    return end


def _expression_end(tokens: list[Token], start: int) -> int:
    """Index of the token ending the expression that begins at ``start``.

    The expression ends before the first ``;``, ``,``, ``then``, ``else`` or
    ``in`` at its own nesting level, or before the bracket closing the
    enclosing group. Nested ``let``/``in``, ``if``/``then``/``else``,
    ``with``/``assert`` and their ``;`` are tracked as nesting.
    """
    stack: list[str] = []
    index = start
    while index < len(tokens):
        token = tokens[index]
        if token.is_trivia:
            index += 1
            continue
        text = token.text
        is_punct = token.kind is TokenKind.PUNCT
        is_ident = token.kind is TokenKind.IDENT
        if not stack:
            if is_punct and (text in {";", ","} or text in CLOSERS):
                return index
            if is_ident and text in {"then", "else", "in"}:
                return index
        if is_punct and text in OPENERS:
            stack.append(OPENERS[text])
        elif is_punct and text in CLOSERS:
            if stack and stack[-1] == text:
                stack.pop()
        elif is_punct and text == ";" and stack and stack[-1] in {"with", "assert"}:
            stack.pop()
        elif is_ident and text in {"let", "if", "with", "assert"}:
            stack.append(text)
        elif is_ident and text == "in" and stack and stack[-1] == "let":
            stack.pop()
        elif is_ident and text == "then" and stack and stack[-1] == "if":
            stack[-1] = "then"
        elif is_ident and text == "else" and stack and stack[-1] == "then":
            stack.pop()
        index += 1
    return index


class NixFile:
    """A parsed Nix file, cached per worker in a ``NixFileStore``."""

    def __init__(self, path: Path, text: str) -> None:
        self.path = path
        self.text = text
        self.line_index = LineIndex(text)
        try:
            self.tokens = tokenize(text)
        except NixSyntaxError as exc:
            raise VetError(f"Could not parse Nix file {path}: {exc}") from exc
        self.significant = [token for token in self.tokens if not token.is_trivia]

    def line(self, token: Token) -> int:
        return self.line_index.line(token.start)

    def path_tokens(self) -> list[Token]:
        return [
            token
            for token in self.significant
            if token.kind in {TokenKind.PATH, TokenKind.SEARCH_PATH}
        ]

    def with_extents(self) -> list[tuple[int, int]]:
        """(start, end) indices into ``significant`` for each ``with`` expression."""
        extents: list[tuple[int, int]] = []
        for index, token in enumerate(self.significant):
            if token.is_keyword("with"):
                end = _expression_end(self.significant, index)
                extents.append((index, end))
        return extents

    def token_count(self, start: int = 0, end: int | None = None) -> int:
        """Parser-level token count of ``significant[start:end]``."""
        return sum(token.weight for token in self.significant[start:end])

    def is_single_string(self) -> bool:
        return len(self.significant) == 1 and self.significant[0].kind is TokenKind.STRING

    def call_package_argument_info_at(
        self, line: int, column: int, nixpkgs_path: Path
    ) -> tuple[CallPackageArgumentInfo | None, str]:
        """Describe the binding whose attribute starts at ``line``:``column``.

        Returns the ``callPackage`` arguments if the bound value is literally
        ``callPackage <arg1> <arg2>`` (or ``pkgs.callPackage``), together with
        the source text of the whole binding.
        """
        offset = self.line_index.offset(line, column)
        start = next(
            (index for index, token in enumerate(self.significant) if token.start == offset),
            None,
        )
        if start is None:
            raise VetError(f"No attribute binding at {self.path}:{line}:{column}")
        equals = start
        while equals < len(self.significant) and not self.significant[equals].is_punct("="):
            if self.significant[equals].is_punct(";"):
                raise VetError(f"Location {self.path}:{line}:{column} is not a binding")
            equals += 1
        if equals >= len(self.significant):
            raise VetError(f"Location {self.path}:{line}:{column} is not a binding")
        end = _expression_end(self.significant, equals + 1)
        stop = self.significant[end].end if end < len(self.significant) else len(self.text)
        definition = self.text[self.significant[start].start:stop]
        value = self.significant[equals + 1:end]
        return self._call_package_info(value, nixpkgs_path), definition

    def _call_package_info(
        self, value: list[Token], nixpkgs_path: Path
    ) -> CallPackageArgumentInfo | None:
        if value[:1] and value[0].is_keyword("callPackage"):
            rest = value[1:]
        elif (
            len(value) >= 3
            and value[0].is_keyword("pkgs")
            and value[1].is_punct(".")
            and value[2].is_keyword("callPackage")
        ):
            rest = value[3:]
        else:
            return None
        first_end = _argument_end(rest, 0)
        if first_end is None or _argument_end(rest, first_end) != len(rest):
            return None
        first, second = rest[:first_end], rest[first_end:]
        if second[0].is_keyword("rec"):
            second = second[1:]
        empty_arg = len(second) == 2 and second[0].is_punct("{") and second[1].is_punct("}")
        relative_path = None
        if len(first) == 1 and first[0].kind is TokenKind.PATH and not first[0].interpolated:
            resolved = self.static_resolve_path(first[0], nixpkgs_path)
            if resolved.kind is ResolvedKind.WITHIN:
                relative_path = resolved.relative
        return CallPackageArgumentInfo(relative_path=relative_path, empty_arg=empty_arg)

    def static_resolve_path(self, token: Token, base_dir: Path) -> ResolvedPath:
        """Resolve a path token of this file against ``base_dir`` without evaluating anything."""
        text = token.text
        if token.kind is TokenKind.SEARCH_PATH:
            return ResolvedPath(ResolvedKind.SEARCH_PATH)
        if token.interpolated:
            return ResolvedPath(ResolvedKind.INTERPOLATED)
        if text.startswith("/"):
            return ResolvedPath(ResolvedKind.ABSOLUTE)
        if text.startswith("~"):
            return ResolvedPath(ResolvedKind.HOME_RELATIVE)
        target = Path(os.path.normpath(self.path.parent / text))
        base = Path(os.path.normpath(base_dir))
        try:
            relative = target.relative_to(base)
        except ValueError:
            return ResolvedPath(ResolvedKind.OUTSIDE)
        if not target.exists():
            return ResolvedPath(ResolvedKind.UNRESOLVABLE, error="No such file or directory")
        return ResolvedPath(ResolvedKind.WITHIN, relative=relative.as_posix())


class NixFileStore:
    """Parsed files keyed by absolute path. Owned by exactly one worker."""

    def __init__(self) -> None:
        self._entries: dict[Path, NixFile] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, path: Path) -> NixFile:
        key = Path(os.path.abspath(path))
        cached = self._entries.get(key)
        if cached is not None:
            return cached
        with with_context(f"Could not read Nix file {key}"):
            text = key.read_text(encoding="utf-8")
        parsed = NixFile(key, text)
        self._entries[key] = parsed
        return parsed
